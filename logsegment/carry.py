"""Severity carried forward from the most recent header."""

from logsegment.models import Severity


class SeverityCarry:
    def __init__(self):
        self._severity: Severity | None = None

    def get(self) -> Severity | None:
        return self._severity

    def set(self, severity: Severity) -> None:
        self._severity = severity
