from __future__ import annotations


class SchedulingError(ValueError):
    """Base class for scheduler failures.

    `kind` is the stable name reported in run summaries and API payloads.
    """

    kind = "SchedulingError"

    def __init__(self, message: str, **context) -> None:
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_row(self) -> dict:
        return {"error": self.kind, "message": self.message, **self.context}


class NoCompatibleResource(SchedulingError):
    kind = "NoCompatibleResource"


class NoUsableCapacity(SchedulingError):
    kind = "NoUsableCapacity"


class DanglingResourceReference(SchedulingError):
    kind = "DanglingResourceReference"


class BatchNotFound(SchedulingError):
    kind = "BatchNotFound"


class CalendarExhausted(SchedulingError):
    kind = "CalendarExhausted"


class ConcurrentRescheduleConflict(SchedulingError):
    kind = "ConcurrentRescheduleConflict"
