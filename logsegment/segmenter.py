"""Stream segmenter — turns a line source into a lazy sequence of records.

Lines that do not parse as headers are merged into the message of the record
that is currently open. Only one line is ever read ahead: the header that
closes the open record, which is held in a single slot and classified again on
the next call.
"""

import logging
from typing import Iterable, Iterator

from logsegment.carry import SeverityCarry
from logsegment.classifier import classify_line
from logsegment.models import ContinuationRecord, NormalRecord, Record, RecordHeader, Severity
from logsegment.sources import IterableLineSource, LineSource, ReadSignal, SourceReadError

logger = logging.getLogger(__name__)


class _OpenRecord:
    """Mutable record under construction. Frozen into a NormalRecord on emit."""

    def __init__(self, header: RecordHeader, line: str):
        self.header = header
        self.lines = [line]

    def append(self, line: str) -> None:
        self.lines.append(line)

    def freeze(self) -> NormalRecord:
        first = self.lines[0][self.header.message_offset:]
        return NormalRecord(
            severity=self.header.severity,
            timestamp=self.header.timestamp,
            logger=self.header.logger,
            thread=self.header.thread,
            message="\n".join([first] + self.lines[1:]),
            raw="\n".join(self.lines),
        )


class Segmenter:
    """Iterator of NormalRecord / ContinuationRecord over one LineSource.

    Not thread-safe; one instance owns its source's read position, its
    lookahead slot, and its severity carry. The caller owns closing the source.
    """

    def __init__(self, source: LineSource):
        self._source = source
        self._lookahead: str | None = None
        self._carry = SeverityCarry()
        self._exhausted = False
        self.records_emitted = 0
        self.lines_consumed = 0

    @property
    def carry(self) -> Severity | None:
        return self._carry.get()

    def __iter__(self) -> Iterator[Record]:
        return self

    def __next__(self) -> Record:
        if self._exhausted:
            raise StopIteration
        try:
            record = self._next_record()
        except SourceReadError:
            # Fatal source error: report once, then stay finished
            self._exhausted = True
            raise
        if record is None:
            self._exhausted = True
            logger.debug("Stream ended: %d records from %d lines",
                         self.records_emitted, self.lines_consumed)
            raise StopIteration
        self.records_emitted += 1
        return record

    def _take_line(self) -> "str | ReadSignal":
        if self._lookahead is not None:
            line, self._lookahead = self._lookahead, None
            return line
        line = self._source.read_line()
        if not isinstance(line, ReadSignal):
            self.lines_consumed += 1
        return line

    def _next_record(self) -> Record | None:
        # Idle: wait for a line. A timeout with nothing open is not the end.
        while True:
            line = self._take_line()
            if line is ReadSignal.EOF:
                return None
            if line is not ReadSignal.TIMEOUT:
                break

        header = classify_line(line)
        if header is None:
            return ContinuationRecord(text=line, severity=self._carry.get())

        self._carry.set(header.severity)
        record = _OpenRecord(header, line)

        # Accumulating
        while True:
            line = self._take_line()
            if line is ReadSignal.TIMEOUT:
                logger.debug("Read timeout, flushing record from %s", header.logger)
                return record.freeze()
            if line is ReadSignal.EOF:
                self._exhausted = True
                return record.freeze()
            if classify_line(line) is not None:
                self._lookahead = line
                return record.freeze()
            record.append(line)


def segment_lines(lines: Iterable["str | ReadSignal"]) -> Iterator[Record]:
    """Segment an in-memory sequence of lines."""
    return Segmenter(IterableLineSource(lines))
