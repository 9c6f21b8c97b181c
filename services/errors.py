"""Domain exceptions raised by the services and translated by the HTTP layer."""

from __future__ import annotations


class MonitorError(Exception):
    """Base error; ``kind`` is a stable machine-readable identifier."""

    kind = "error"


class UpstreamError(MonitorError):
    """The sensor provider rejected a request or returned unusable data."""

    kind = "upstream"


class ValidationError(MonitorError):
    kind = "validation"


class OffsetConflictError(ValidationError):
    """A calibration offset would overlap another offset on the same channel."""

    kind = "offset_conflict"

    def __init__(self, channel_id: str, conflicting_id: str) -> None:
        super().__init__("Overlapping offset period exists for this sensor")
        self.channel_id = channel_id
        self.conflicting_id = conflicting_id


class AuthenticationError(MonitorError):
    kind = "invalid_password"

    def __init__(self, message: str = "Invalid password") -> None:
        super().__init__(message)


class RecordNotFoundError(MonitorError, KeyError):
    kind = "not_found"

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0]) if self.args else ""


class DuplicateReadingError(MonitorError):
    kind = "duplicate_reading"


class PartialWriteError(MonitorError):
    """A batched write failed after ``written`` rows were already stored."""

    kind = "partial_write"

    def __init__(self, message: str, written: int) -> None:
        super().__init__(message)
        self.written = written


class AnalysisError(MonitorError):
    kind = "analysis"
