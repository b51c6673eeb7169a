"""Tests for line sources."""

import io
import os
import sys
import time

import pytest

from logsegment.config import Config
from logsegment.models import NormalRecord
from logsegment.segmenter import Segmenter
from logsegment.sources import (
    FileLineSource,
    FollowFileLineSource,
    IterableLineSource,
    ProcessLineSource,
    ReadSignal,
    SourceReadError,
    StreamLineSource,
    backlog_offset,
    open_source,
    strip_terminator,
)

HEADER = "<INFO> 05-Jan-2024::10:00:00.000 L T: msg"


def drain(source, limit: int = 100) -> list:
    """Read until EOF or TIMEOUT (inclusive)."""
    items = []
    for _ in range(limit):
        item = source.read_line()
        items.append(item)
        if isinstance(item, ReadSignal):
            break
    return items


@pytest.fixture
def pipe():
    r, w = os.pipe()
    reader = os.fdopen(r, "rb", buffering=0)
    writer = os.fdopen(w, "wb", buffering=0)
    yield reader, writer
    for f in (reader, writer):
        if not f.closed:
            f.close()


class TestStripTerminator:
    def test_newline(self):
        assert strip_terminator("abc\n") == "abc"

    def test_crlf(self):
        assert strip_terminator("abc\r\n") == "abc"

    def test_lone_carriage_return_kept(self):
        assert strip_terminator("abc\r") == "abc\r"

    def test_only_one_terminator(self):
        assert strip_terminator("abc\n\n") == "abc\n"


class TestIterableLineSource:
    def test_lines_then_eof(self):
        src = IterableLineSource(["a\n", "b"])
        assert drain(src) == ["a", "b", ReadSignal.EOF]

    def test_timeout_passthrough(self):
        src = IterableLineSource(["a", ReadSignal.TIMEOUT, "b"])
        assert src.read_line() == "a"
        assert src.read_line() is ReadSignal.TIMEOUT
        assert src.read_line() == "b"

    def test_eof_repeats(self):
        src = IterableLineSource([])
        assert src.read_line() is ReadSignal.EOF
        assert src.read_line() is ReadSignal.EOF


class TestFileLineSource:
    def test_reads_all_lines(self, tmp_path):
        f = tmp_path / "test.log"
        f.write_text("line one\nline two\nline three\n")
        with FileLineSource(str(f)) as src:
            assert drain(src) == ["line one", "line two", "line three", ReadSignal.EOF]

    def test_crlf_stripped_once(self, tmp_path):
        f = tmp_path / "test.log"
        f.write_bytes(b"one\r\ntwo\r\n")
        with FileLineSource(str(f)) as src:
            assert drain(src) == ["one", "two", ReadSignal.EOF]

    def test_single_line_no_trailing_newline(self, tmp_path):
        f = tmp_path / "test.log"
        f.write_text("only line")
        with FileLineSource(str(f)) as src:
            assert drain(src) == ["only line", ReadSignal.EOF]

    def test_blank_lines_kept(self, tmp_path):
        f = tmp_path / "test.log"
        f.write_text("a\n\n  \nb\n")
        with FileLineSource(str(f)) as src:
            assert drain(src) == ["a", "", "  ", "b", ReadSignal.EOF]

    def test_empty_file(self, tmp_path):
        f = tmp_path / "test.log"
        f.write_text("")
        with FileLineSource(str(f)) as src:
            assert src.read_line() is ReadSignal.EOF

    def test_invalid_utf8_replaced(self, tmp_path):
        f = tmp_path / "test.log"
        f.write_bytes(b"caf\xe9\n")
        with FileLineSource(str(f)) as src:
            assert src.read_line() == "caf\ufffd"

    def test_strict_decoding_error_is_read_error(self, tmp_path):
        f = tmp_path / "test.log"
        f.write_bytes(b"caf\xe9\n")
        with FileLineSource(str(f), errors="strict") as src:
            with pytest.raises(SourceReadError):
                src.read_line()

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(SourceReadError):
            FileLineSource(str(tmp_path / "missing.log"))

    def test_lone_carriage_return_not_a_line_end(self, tmp_path):
        f = tmp_path / "test.log"
        f.write_bytes(b"a\rb\n")
        with FileLineSource(str(f)) as src:
            assert drain(src) == ["a\rb", ReadSignal.EOF]

    def test_file_and_pipe_agree(self, tmp_path, pipe):
        data = b"<INFO> 05-Jan-2024::10:00:00.000 L T: progress 10%\rprogress 50%\nnext\n"
        f = tmp_path / "test.log"
        f.write_bytes(data)
        reader, writer = pipe
        writer.write(data)
        writer.close()

        with FileLineSource(str(f)) as src:
            from_file = list(Segmenter(src))
        from_pipe = list(Segmenter(StreamLineSource(reader)))

        assert from_file == from_pipe
        assert len(from_file) == 1
        assert from_file[0].message == "progress 10%\rprogress 50%\nnext"
        assert from_file[0].raw.encode() + b"\n" == data

    def test_context_manager_closes(self, tmp_path):
        f = tmp_path / "test.log"
        f.write_text("x\n")
        with FileLineSource(str(f)) as src:
            pass
        assert src._file.closed


class TestStreamLineSource:
    def test_reads_until_eof(self, pipe):
        reader, writer = pipe
        writer.write(b"one\ntwo\n")
        writer.close()
        src = StreamLineSource(reader)
        assert drain(src) == ["one", "two", ReadSignal.EOF]

    def test_trailing_partial_line_at_eof(self, pipe):
        reader, writer = pipe
        writer.write(b"one\ntail")
        writer.close()
        src = StreamLineSource(reader)
        assert drain(src) == ["one", "tail", ReadSignal.EOF]

    def test_timeout_when_no_data(self, pipe):
        reader, _ = pipe
        with StreamLineSource(reader, timeout=0.05) as src:
            start = time.monotonic()
            assert src.read_line() is ReadSignal.TIMEOUT
            assert time.monotonic() - start < 2

    def test_partial_line_waits_for_terminator(self, pipe):
        reader, writer = pipe
        with StreamLineSource(reader, timeout=0.05) as src:
            writer.write(b"hel")
            assert src.read_line() is ReadSignal.TIMEOUT
            writer.write(b"lo\n")
            assert src.read_line() == "hello"

    def test_multibyte_split_across_writes(self, pipe):
        reader, writer = pipe
        with StreamLineSource(reader, timeout=0.05) as src:
            data = "naïve\n".encode("utf-8")
            writer.write(data[:3])
            assert src.read_line() is ReadSignal.TIMEOUT
            writer.write(data[3:])
            assert src.read_line() == "naïve"

    def test_data_after_timeout(self, pipe):
        reader, writer = pipe
        with StreamLineSource(reader, timeout=0.05) as src:
            writer.write(b"a\n")
            assert src.read_line() == "a"
            assert src.read_line() is ReadSignal.TIMEOUT
            writer.write(b"b\n")
            writer.close()
            assert drain(src) == ["b", ReadSignal.EOF]

    def test_does_not_close_borrowed_stream(self, pipe):
        reader, _ = pipe
        with StreamLineSource(reader, timeout=0.05):
            pass
        assert not reader.closed

    def test_segmenter_flushes_on_live_pipe(self, pipe):
        reader, writer = pipe
        with StreamLineSource(reader, timeout=0.05) as src:
            seg = Segmenter(src)
            writer.write(f"{HEADER}\ncontinued\n".encode())
            record = next(seg)
            assert isinstance(record, NormalRecord)
            assert record.message == "msg\ncontinued"
            writer.write(f"{HEADER}\n".encode())
            writer.close()
            assert next(seg).message == "msg"
            assert list(seg) == []


class TestProcessLineSource:
    def test_reads_process_output(self):
        args = [sys.executable, "-c", "print('a'); print('b')"]
        with ProcessLineSource(args) as src:
            assert drain(src) == ["a", "b", ReadSignal.EOF]

    def test_timeout_and_terminate(self):
        args = [sys.executable, "-c", "import time; time.sleep(30)"]
        src = ProcessLineSource(args, timeout=0.05)
        try:
            assert src.read_line() is ReadSignal.TIMEOUT
            assert src.returncode is None
        finally:
            src.close()
        assert src.returncode is not None

    def test_missing_command_raises(self, tmp_path):
        with pytest.raises(SourceReadError):
            ProcessLineSource([str(tmp_path / "no-such-binary")])


class TestBacklogOffset:
    def _offset_text(self, tmp_path, content: bytes, lines: int) -> bytes:
        f = tmp_path / "b.log"
        f.write_bytes(content)
        with open(f, "rb") as fh:
            offset = backlog_offset(fh, lines)
        return content[offset:]

    def test_last_two_lines(self, tmp_path):
        assert self._offset_text(tmp_path, b"1\n2\n3\n4\n", 2) == b"3\n4\n"

    def test_zero_means_end(self, tmp_path):
        assert self._offset_text(tmp_path, b"1\n2\n", 0) == b""

    def test_more_than_available(self, tmp_path):
        assert self._offset_text(tmp_path, b"1\n2\n", 10) == b"1\n2\n"

    def test_no_trailing_newline(self, tmp_path):
        assert self._offset_text(tmp_path, b"1\n2\n3", 2) == b"2\n3"

    def test_empty_file(self, tmp_path):
        assert self._offset_text(tmp_path, b"", 5) == b""

    def test_spans_chunks(self, tmp_path):
        content = b"".join(b"%05d\n" % i for i in range(30000))
        assert self._offset_text(tmp_path, content, 3) == b"29997\n29998\n29999\n"


class TestFollowFileLineSource:
    def test_backlog_then_timeout(self, tmp_path):
        f = tmp_path / "app.log"
        f.write_text("1\n2\n3\n")
        with FollowFileLineSource(str(f), timeout=0.05, backlog=2) as src:
            assert drain(src) == ["2", "3", ReadSignal.TIMEOUT]

    def test_picks_up_appended_lines(self, tmp_path):
        f = tmp_path / "app.log"
        f.write_text("existing line\n")
        with FollowFileLineSource(str(f), timeout=0.05, backlog=0) as src:
            assert src.read_line() is ReadSignal.TIMEOUT
            with open(f, "a") as fh:
                fh.write("new line 1\nnew line 2\n")
            assert drain(src) == ["new line 1", "new line 2", ReadSignal.TIMEOUT]

    def test_partial_line_held_back(self, tmp_path):
        f = tmp_path / "app.log"
        f.write_text("")
        with FollowFileLineSource(str(f), timeout=0.05) as src:
            with open(f, "a") as fh:
                fh.write("half")
            assert src.read_line() is ReadSignal.TIMEOUT
            with open(f, "a") as fh:
                fh.write(" done\n")
            assert src.read_line() == "half done"

    def test_file_created_later(self, tmp_path):
        f = tmp_path / "later.log"
        with FollowFileLineSource(str(f), timeout=0.05) as src:
            assert src.read_line() is ReadSignal.TIMEOUT
            f.write_text("hello\n")
            assert src.read_line() == "hello"

    def test_truncation(self, tmp_path):
        f = tmp_path / "app.log"
        f.write_text("aaaa\nbbbb\n")
        with FollowFileLineSource(str(f), timeout=0.05) as src:
            assert drain(src) == ["aaaa", "bbbb", ReadSignal.TIMEOUT]
            f.write_text("c\n")
            assert src.read_line() == "c"

    def test_rotation(self, tmp_path):
        f = tmp_path / "app.log"
        f.write_text("old\n")
        with FollowFileLineSource(str(f), timeout=0.05) as src:
            assert src.read_line() == "old"
            rotated = tmp_path / "app.log.1"
            os.rename(f, rotated)
            with open(rotated, "a") as fh:
                fh.write("last of old\n")
            f.write_text("first of new\n")
            assert drain(src) == ["last of old", "first of new", ReadSignal.TIMEOUT]

    def test_rotation_keeps_unterminated_tail_separate(self, tmp_path):
        f = tmp_path / "app.log"
        f.write_text("old\nhalf")
        with FollowFileLineSource(str(f), timeout=0.05) as src:
            assert src.read_line() == "old"
            os.rename(f, tmp_path / "app.log.1")
            f.write_text("first of new\n")
            assert drain(src) == ["half", "first of new", ReadSignal.TIMEOUT]

    def test_eof_after_close(self, tmp_path):
        f = tmp_path / "app.log"
        f.write_text("")
        src = FollowFileLineSource(str(f), timeout=0.05)
        src.close()
        assert src.read_line() is ReadSignal.EOF


class TestOpenSource:
    def test_static_file(self, tmp_path):
        f = tmp_path / "a.log"
        f.write_text("x\n")
        with open_source(Config(path=str(f))) as src:
            assert isinstance(src, FileLineSource)

    def test_follow_file(self, tmp_path):
        f = tmp_path / "a.log"
        f.write_text("x\n")
        with open_source(Config(path=str(f), follow=True, timeout_ms=20)) as src:
            assert isinstance(src, FollowFileLineSource)
            assert src.read_line() == "x"
            assert src.read_line() is ReadSignal.TIMEOUT

    def test_command(self):
        cfg = Config(command=(sys.executable, "-c", "print('hi')"))
        with open_source(cfg) as src:
            assert isinstance(src, ProcessLineSource)
            assert src.read_line() == "hi"

    def test_stdin(self, monkeypatch, pipe):
        reader, writer = pipe
        monkeypatch.setattr(sys, "stdin", io.TextIOWrapper(io.BufferedReader(reader)))
        writer.write(b"from stdin\n")
        writer.close()
        with open_source(Config(path="-")) as src:
            assert isinstance(src, StreamLineSource)
            assert drain(src) == ["from stdin", ReadSignal.EOF]
