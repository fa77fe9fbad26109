from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime

from precastplan.core.models import Batch, Mold, PieceEnvelope
from precastplan.scheduler.calendar import WorkCalendar
from precastplan.scheduler.packer import rank_molds

MAX_ALTERNATIVES = 2


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime
    quantity: int

    def to_row(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat(), "quantity": self.quantity}


@dataclass(frozen=True)
class Projection:
    mold_id: str
    mold_code: str
    capacity: int
    num_batches: int
    start: datetime
    end: datetime
    setup_applied: bool
    windows: tuple[Window, ...] = ()
    mold_name: str | None = None

    def to_row(self) -> dict:
        return {
            "mold_id": self.mold_id,
            "mold_code": self.mold_code,
            "mold_name": self.mold_name,
            "capacity": self.capacity,
            "num_batches": self.num_batches,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "setup_applied": self.setup_applied,
            "windows": [w.to_row() for w in self.windows],
        }


@dataclass(frozen=True)
class Suggestion:
    selected: Projection
    quantity: int
    unit_minutes: float
    alternatives: tuple[Projection, ...] = field(default_factory=tuple)

    @property
    def start(self) -> datetime:
        return self.selected.start

    @property
    def end(self) -> datetime:
        return self.selected.end

    @property
    def num_batches(self) -> int:
        return self.selected.num_batches

    @property
    def total_minutes(self) -> float:
        return self.quantity * self.unit_minutes

    def to_row(self) -> dict:
        return {
            "window": {"start": self.start.isoformat(), "end": self.end.isoformat()},
            "selected_mold": self.selected.to_row(),
            "num_batches": self.num_batches,
            "total_pieces": self.quantity,
            "total_minutes": self.total_minutes,
            "alternatives": [a.to_row() for a in self.alternatives],
        }


def chain_tails(committed: list[Batch]) -> dict[str, Batch]:
    """Last batch of every mold chain (highest sequence, then latest end)."""
    tails: dict[str, Batch] = {}
    for b in committed:
        cur = tails.get(b.mold_id)
        if cur is None or ((b.sequence or 0), b.end or datetime.min) > ((cur.sequence or 0), cur.end or datetime.min):
            tails[b.mold_id] = b
    return tails


def project_on_mold(
    *,
    mold: Mold,
    capacity: int,
    envelope: PieceEnvelope,
    quantity: int,
    unit_minutes: float,
    tail: Batch | None,
    calendar: WorkCalendar,
    now: datetime,
) -> Projection:
    """Project `quantity` pieces onto the end of a mold's chain without placing anything."""
    if tail is not None and tail.end is not None:
        # A tail that already ended does not hold the mold back past `now`.
        cursor = max(tail.end, now)
    else:
        cursor = calendar.next_working_instant(now)

    setup_applied = tail is not None and tail.group_key != envelope.group_key
    if setup_applied and mold.setup_minutes > 0:
        cursor = calendar.advance_working_minutes(cursor, mold.setup_minutes)

    num_batches = math.ceil(quantity / capacity) if quantity > 0 else 0
    windows: list[Window] = []
    remaining = quantity
    for _ in range(num_batches):
        qty = min(capacity, remaining)
        start = calendar.next_working_instant(cursor)
        end = calendar.advance_working_minutes(start, qty * unit_minutes)
        windows.append(Window(start=start, end=end, quantity=qty))
        remaining -= qty
        cursor = end

    start = windows[0].start if windows else calendar.next_working_instant(cursor)
    end = windows[-1].end if windows else start
    return Projection(
        mold_id=mold.mold_id,
        mold_code=mold.code,
        mold_name=mold.name,
        capacity=capacity,
        num_batches=num_batches,
        start=start,
        end=end,
        setup_applied=setup_applied,
        windows=tuple(windows),
    )


def estimate_availability(
    *,
    envelope: PieceEnvelope,
    quantity: int,
    unit_minutes: float,
    molds: list[Mold],
    committed: list[Batch],
    calendar: WorkCalendar,
    now: datetime,
    mold_id: str | None = None,
) -> Suggestion:
    """Earliest delivery window for a hypothetical piece type.

    Uses the packer ranking to pick a mold, then projects after the current tail
    of that mold's chain. The two next-best molds are projected independently as
    alternatives. Committed batches are only read.
    """
    if int(quantity) <= 0:
        raise ValueError(f"quantity must be > 0, got {quantity}")
    if float(unit_minutes) < 0:
        raise ValueError(f"unit_minutes must be >= 0, got {unit_minutes}")

    ranked = rank_molds(envelope, molds, mold_id=mold_id)
    tails = chain_tails(committed)

    projections = [
        project_on_mold(
            mold=mold,
            capacity=capacity,
            envelope=envelope,
            quantity=int(quantity),
            unit_minutes=float(unit_minutes),
            tail=tails.get(mold.mold_id),
            calendar=calendar,
            now=now,
        )
        for mold, capacity in ranked[: 1 + MAX_ALTERNATIVES]
    ]
    return Suggestion(
        selected=projections[0],
        quantity=int(quantity),
        unit_minutes=float(unit_minutes),
        alternatives=tuple(projections[1:]),
    )
