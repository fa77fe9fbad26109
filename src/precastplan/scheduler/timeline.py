from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from precastplan.core.errors import CalendarExhausted, DanglingResourceReference, SchedulingError
from precastplan.core.models import Batch, Mold
from precastplan.scheduler.calendar import WorkCalendar

logger = logging.getLogger(__name__)


@dataclass
class ScheduleRun:
    placed: list[Batch] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)
    chains: dict[str, list[Batch]] = field(default_factory=dict)


class ResourceScheduler:
    """Time-stamps batches on per-mold finish-to-start chains.

    Each mold keeps its own cursor (end of its last placed batch). Molds run in
    parallel; they only compete through the order of the global sequence.
    """

    def __init__(
        self,
        *,
        calendar: WorkCalendar,
        molds: list[Mold],
        now: datetime,
        tails: dict[str, Batch] | None = None,
    ) -> None:
        self.calendar = calendar
        self.molds = {m.mold_id: m for m in molds}
        self.now = now
        self._last: dict[str, Batch] = dict(tails or {})
        self._cursor: dict[str, datetime] = {
            mold_id: b.end for mold_id, b in self._last.items() if b.end is not None
        }
        self._chain_len: dict[str, int] = {
            mold_id: int(b.sequence or 0) for mold_id, b in self._last.items()
        }

    def place(self, batch: Batch) -> Batch:
        """Assign start/end to one batch and advance its mold cursor."""
        mold = self.molds.get(batch.mold_id)
        if mold is None:
            raise DanglingResourceReference(
                f"batch {batch.batch_id} references unknown mold {batch.mold_id}",
                batch_id=batch.batch_id,
                request_id=batch.request_id,
                mold_id=batch.mold_id,
            )

        prev = self._last.get(mold.mold_id)
        earliest = self._cursor.get(mold.mold_id)
        if earliest is None:
            earliest = self.calendar.next_working_instant(self.now)

        setup_applied = prev is not None and prev.group_key != batch.group_key
        if setup_applied and mold.setup_minutes > 0:
            earliest = self.calendar.advance_working_minutes(earliest, mold.setup_minutes)

        start = self.calendar.next_working_instant(earliest)
        end = self.calendar.advance_working_minutes(start, batch.production_minutes)

        batch.start = start
        batch.end = end
        batch.setup_applied = setup_applied
        batch.setup_minutes = int(mold.setup_minutes) if setup_applied else 0
        batch.predecessor_id = prev.batch_id if prev is not None else None
        batch.sequence = self._chain_len.get(mold.mold_id, 0) + 1
        batch.delay_minutes = 0
        batch.status = "scheduled"

        self._cursor[mold.mold_id] = end
        self._last[mold.mold_id] = batch
        self._chain_len[mold.mold_id] = batch.sequence
        return batch

    def _snapshot(self) -> tuple[dict, dict, dict]:
        return dict(self._cursor), dict(self._last), dict(self._chain_len)

    def _restore(self, snapshot: tuple[dict, dict, dict]) -> None:
        cursor, last, chain_len = snapshot
        self._cursor = dict(cursor)
        self._last = dict(last)
        self._chain_len = dict(chain_len)

    def schedule(self, sequence: list[Batch]) -> ScheduleRun:
        """Place `sequence` in order.

        The batches of one piece request are contiguous in the sequence. When a
        request runs out of calendar, its batches already placed are taken back
        and the mold cursors return to where they were before the request.
        """
        run = ScheduleRun()
        abandoned: set[str] = set()
        current: str | None = None
        snapshot = self._snapshot()
        placed_before = 0
        for batch in sequence:
            if batch.request_id in abandoned:
                continue
            if batch.request_id != current:
                current = batch.request_id
                snapshot = self._snapshot()
                placed_before = len(run.placed)
            try:
                self.place(batch)
            except DanglingResourceReference as exc:
                logger.warning("Skipping batch %s: %s", batch.batch_id, exc.message)
                run.failures.append(exc.to_row())
                continue
            except CalendarExhausted as exc:
                # Later batches of the same request would land past the calendar too.
                logger.warning("Calendar exhausted for batch %s: %s", batch.batch_id, exc.message)
                abandoned.add(batch.request_id)
                self._restore(snapshot)
                for dropped in run.placed[placed_before:]:
                    chain = run.chains[dropped.mold_id]
                    chain.remove(dropped)
                    if not chain:
                        del run.chains[dropped.mold_id]
                del run.placed[placed_before:]
                run.failures.append(
                    failure_row(exc, batch_id=batch.batch_id, request_id=batch.request_id, mold_id=batch.mold_id)
                )
                continue
            run.placed.append(batch)
            run.chains.setdefault(batch.mold_id, []).append(batch)
        return run


def failure_row(exc: SchedulingError, **context) -> dict:
    row = exc.to_row()
    row.update({k: v for k, v in context.items() if v is not None})
    return row
