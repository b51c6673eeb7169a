"""logsegment — split raw log lines into multi-line, severity-tagged records."""

from logsegment.classifier import classify_line
from logsegment.models import ContinuationRecord, NormalRecord, Record, RecordHeader, Severity
from logsegment.segmenter import Segmenter, segment_lines
from logsegment.sources import (
    FileLineSource,
    FollowFileLineSource,
    IterableLineSource,
    LineSource,
    ProcessLineSource,
    ReadSignal,
    SourceReadError,
    StreamLineSource,
    open_source,
)

__all__ = [
    "classify_line",
    "ContinuationRecord",
    "FileLineSource",
    "FollowFileLineSource",
    "IterableLineSource",
    "LineSource",
    "NormalRecord",
    "ProcessLineSource",
    "ReadSignal",
    "Record",
    "RecordHeader",
    "Segmenter",
    "segment_lines",
    "Severity",
    "SourceReadError",
    "StreamLineSource",
    "open_source",
]
