"""Header line classifier.

Recognizes lines of the form::

    <ERROR> 05-Jan-2024::10:00:00.123 some.logger Thread-1: message text

and returns the parsed header, or None for anything else. A None result is the
normal outcome for the body lines of multi-line messages, so nothing here
raises on malformed input.
"""

import logging
import re
from datetime import datetime, timezone

from logsegment.models import RecordHeader, Severity

logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(
    r"^(\d{2})-([A-Z][a-z]{2})-(\d{4})::(\d{2}):(\d{2}):(\d{2})\.(\d{3})$"
)

# Fixed English abbreviations so parsing does not depend on the process locale.
MONTHS = {
    "Jan": 1, "Feb": 2, "Mar": 3, "Apr": 4, "May": 5, "Jun": 6,
    "Jul": 7, "Aug": 8, "Sep": 9, "Oct": 10, "Nov": 11, "Dec": 12,
}

THREAD_DELIMITER = ": "
DASH_PREFIX = "- "


def parse_timestamp(text: str) -> datetime | None:
    """Parse ``DD-Mon-YYYY::HH:MM:SS.mmm`` into a UTC datetime, or None."""
    match = DATE_PATTERN.match(text)
    if not match:
        return None

    day, month_name, year, hour, minute, second, millis = match.groups()
    month = MONTHS.get(month_name)
    if month is None:
        return None

    try:
        return datetime(
            int(year), month, int(day),
            int(hour), int(minute), int(second), int(millis) * 1000,
            tzinfo=timezone.utc,
        )
    except ValueError:
        # e.g. 31-Feb or 25:00:00
        return None


def _field(line: str, start: int) -> tuple[str, int] | None:
    """Return the text from ``start`` up to the next space and the index after it."""
    end = line.find(" ", start)
    if end <= start:
        return None
    return line[start:end], end + 1


def classify_line(line: str) -> RecordHeader | None:
    """Parse a header line. Returns None if the line is not a header."""
    if not line.startswith("<"):
        return None

    close = line.find(">")
    if close == -1:
        return None

    severity = Severity.from_token(line[1:close])
    if severity is None:
        logger.debug("Unknown severity token %r", line[1:close])
        return None

    if line[close + 1:close + 2] != " ":
        return None

    date_field = _field(line, close + 2)
    if date_field is None:
        return None
    date_text, pos = date_field

    timestamp = parse_timestamp(date_text)
    if timestamp is None:
        logger.debug("Unparseable header date %r", date_text)
        return None

    logger_field = _field(line, pos)
    if logger_field is None:
        return None
    logger_name, pos = logger_field

    thread_end = line.find(THREAD_DELIMITER, pos)
    if thread_end <= pos:
        return None
    thread = line[pos:thread_end]

    offset = thread_end + len(THREAD_DELIMITER)
    if line.startswith(DASH_PREFIX, offset):
        offset += len(DASH_PREFIX)

    if offset >= len(line):
        logger.debug("Header without message text: %r", line)
        return None

    return RecordHeader(
        severity=severity,
        timestamp=timestamp,
        logger=logger_name,
        thread=thread,
        message_offset=offset,
    )
