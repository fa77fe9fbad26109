from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Union


PRIORITY_RANK: dict[str, int] = {
    "critical": 4,
    "high": 3,
    "medium": 2,
    "low": 1,
}


def parse_priority(value: str | None) -> str:
    p = str(value or "").strip().lower()
    if p not in PRIORITY_RANK:
        raise ValueError(f"unsupported priority: {value!r}")
    return p


def priority_rank(value: str) -> int:
    return PRIORITY_RANK.get(str(value or "").strip().lower(), 0)


# ---------- Urgency directives ----------


@dataclass(frozen=True)
class PassToFront:
    pass


@dataclass(frozen=True)
class Normal:
    pass


@dataclass(frozen=True)
class SendToBack:
    pass


@dataclass(frozen=True)
class InsertAfterResource:
    resource_id: str


Urgency = Union[PassToFront, Normal, SendToBack, InsertAfterResource]

_INSERT_AFTER_PREFIXES = ("insert-after-resource:", "atras_de_forma:")


def parse_urgency(value: str | None) -> Urgency:
    """Map a stored urgency tag to its directive.

    Accepts the canonical tags plus the legacy ones still present in older
    exports (passa_frente, vai_fim_fila, atras_de_forma:<id>).
    """
    s = str(value or "").strip()
    if not s or s.lower() == "normal":
        return Normal()
    low = s.lower()
    if low in {"pass-to-front", "passa_frente"}:
        return PassToFront()
    if low in {"send-to-back", "vai_fim_fila"}:
        return SendToBack()
    for prefix in _INSERT_AFTER_PREFIXES:
        if low.startswith(prefix):
            resource_id = s[len(prefix):].strip()
            if not resource_id:
                raise ValueError(f"urgency without mold id: {value!r}")
            return InsertAfterResource(resource_id=resource_id)
    raise ValueError(f"unsupported urgency: {value!r}")


def format_urgency(urgency: Urgency) -> str:
    if isinstance(urgency, PassToFront):
        return "pass-to-front"
    if isinstance(urgency, SendToBack):
        return "send-to-back"
    if isinstance(urgency, InsertAfterResource):
        return f"insert-after-resource:{urgency.resource_id}"
    return "normal"


# ---------- Catalog ----------


@dataclass(frozen=True)
class Mold:
    mold_id: str
    code: str
    max_height: float
    max_width: float
    max_length: float
    capacity: int
    setup_minutes: int = 0
    is_available: bool = True
    name: str | None = None


@dataclass(frozen=True)
class WorkOrder:
    work_order_id: str
    priority: str
    urgency: Urgency = Normal()
    deadline: date | None = None
    urgency_marked_at: datetime | None = None
    code: str | None = None
    name: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class PieceEnvelope:
    height: float
    width: float
    length: float

    @property
    def group_key(self) -> tuple[float, float]:
        return (self.height, self.width)


@dataclass(frozen=True)
class PieceRequest:
    request_id: str
    work_order_id: str
    height: float
    width: float
    length: float
    quantity: int
    unit_minutes: float
    priority: str = "medium"
    mold_id: str | None = None
    notes: str | None = None

    @property
    def envelope(self) -> PieceEnvelope:
        return PieceEnvelope(height=self.height, width=self.width, length=self.length)


@dataclass(frozen=True)
class DayOverride:
    day: date
    is_holiday: bool = False
    shift_start: time | None = None
    shift_end: time | None = None
    name: str | None = None


# ---------- Schedule ----------


@dataclass
class Batch:
    batch_id: str
    request_id: str
    work_order_id: str
    mold_id: str
    height: float
    width: float
    length: float
    quantity: int
    unit_minutes: float
    split_index: int
    start: datetime | None = None
    end: datetime | None = None
    setup_applied: bool = False
    setup_minutes: int = 0
    delay_minutes: int = 0
    sequence: int | None = None
    predecessor_id: str | None = None
    queue_position: int | None = None
    status: str = "scheduled"

    @property
    def group_key(self) -> tuple[float, float]:
        return (self.height, self.width)

    @property
    def production_minutes(self) -> float:
        return self.quantity * self.unit_minutes

    def to_row(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "request_id": self.request_id,
            "work_order_id": self.work_order_id,
            "mold_id": self.mold_id,
            "height": self.height,
            "width": self.width,
            "length": self.length,
            "quantity": self.quantity,
            "unit_minutes": self.unit_minutes,
            "split_index": self.split_index,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "setup_applied": self.setup_applied,
            "setup_minutes": self.setup_minutes,
            "delay_minutes": self.delay_minutes,
            "sequence": self.sequence,
            "predecessor_id": self.predecessor_id,
            "queue_position": self.queue_position,
            "status": self.status,
        }


@dataclass
class AuditEntry:
    id: int
    timestamp: str
    category: str
    message: str
    details: str | None = None
