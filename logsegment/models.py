"""Record model — severity enum, parsed header, and the two record kinds."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Union


class Severity(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @classmethod
    def from_token(cls, token: str) -> "Severity | None":
        """Map a bracketed wire token (e.g. ``WARN``) to a Severity, or None."""
        return SEVERITY_TOKENS.get(token)


# Wire tokens are case-sensitive; short forms are legacy aliases.
SEVERITY_TOKENS = {
    "DEBUG": Severity.DEBUG,
    "INFO": Severity.INFO,
    "WARN": Severity.WARNING,
    "WARNING": Severity.WARNING,
    "ERR": Severity.ERROR,
    "ERROR": Severity.ERROR,
    "CRIT": Severity.CRITICAL,
    "CRITICAL": Severity.CRITICAL,
}


@dataclass(frozen=True)
class RecordHeader:
    severity: Severity
    timestamp: datetime   # UTC, millisecond precision
    logger: str
    thread: str
    message_offset: int   # index into the header line where the message starts


@dataclass(frozen=True)
class NormalRecord:
    severity: Severity
    timestamp: datetime
    logger: str
    thread: str
    message: str   # header message plus merged continuation lines, "\n"-joined
    raw: str       # verbatim text of every contributing line, "\n"-joined

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": "normal",
            "severity": self.severity.value,
            "timestamp": format_timestamp(self.timestamp),
            "logger": self.logger,
            "thread": self.thread,
            "message": self.message,
        }


@dataclass(frozen=True)
class ContinuationRecord:
    text: str
    severity: Severity | None = None   # inherited; None before any header

    @property
    def raw(self) -> str:
        return self.text

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": "continuation",
            "severity": self.severity.value if self.severity else None,
            "text": self.text,
        }


Record = Union[NormalRecord, ContinuationRecord]


def format_timestamp(ts: datetime) -> str:
    """ISO 8601 with millisecond precision and a ``Z`` suffix."""
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"
