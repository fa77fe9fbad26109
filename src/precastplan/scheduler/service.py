from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from precastplan.core.errors import ConcurrentRescheduleConflict, NoCompatibleResource, NoUsableCapacity
from precastplan.core.models import Batch, PieceEnvelope
from precastplan.data.repository import Repository
from precastplan.scheduler.delay import apply_delay
from precastplan.scheduler.estimate import Suggestion, estimate_availability
from precastplan.scheduler.packer import pack_request
from precastplan.scheduler.queue import build_queue
from precastplan.scheduler.timeline import ResourceScheduler, failure_row

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 30


class ReadWriteLock:
    """Many readers or one writer. Waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):
        with self._cond:
            self._cond.wait_for(lambda: not self._writer and self._writers_waiting == 0)
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @contextmanager
    def write(self, *, timeout: float | None = None, operation: str = "write"):
        with self._cond:
            self._writers_waiting += 1
            try:
                acquired = self._cond.wait_for(lambda: not self._writer and self._readers == 0, timeout=timeout)
            finally:
                self._writers_waiting -= 1
            if not acquired:
                self._cond.notify_all()
                raise ConcurrentRescheduleConflict(
                    f"{operation} could not acquire the schedule within {timeout}s",
                    operation=operation,
                    timeout_seconds=timeout,
                )
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class RescheduleResult:
    run_id: int
    asof: datetime
    committed: list[Batch] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    @property
    def batch_count(self) -> int:
        return len(self.committed)

    def to_row(self) -> dict:
        return {
            "run_id": self.run_id,
            "asof": self.asof.isoformat(),
            "batch_count": self.batch_count,
            "failures": list(self.failures),
            "batches": [b.to_row() for b in self.committed],
        }


class ScheduleService:
    """The four schedule operations over the persisted catalog.

    `reschedule` and `apply_delay` are writers, `suggest_date` and
    `get_schedule` are readers.
    """

    def __init__(
        self,
        repo: Repository,
        *,
        clock: Callable[[], datetime] = datetime.now,
        lock_timeout: float | None = None,
    ):
        self.repo = repo
        self.clock = clock
        self._lock_timeout = lock_timeout
        self._lock = ReadWriteLock()

    def lock_timeout(self) -> float:
        if self._lock_timeout is not None:
            return float(self._lock_timeout)
        return float(
            self.repo.get_config_int(key="schedule_lock_timeout_seconds", default=DEFAULT_LOCK_TIMEOUT_SECONDS)
        )

    # ---------- Reschedule ----------
    def reschedule(self) -> RescheduleResult:
        """Recompute the whole schedule from the catalog and commit it atomically."""
        with self._lock.write(timeout=self.lock_timeout(), operation="reschedule"):
            now = self.clock()
            calendar = self.repo.get_work_calendar()
            molds = self.repo.get_molds_model()
            work_orders = self.repo.get_work_orders_model(active_only=True)
            active_ids = {wo.work_order_id for wo in work_orders}
            requests = [r for r in self.repo.get_piece_requests_model() if r.work_order_id in active_ids]
            logger.info(
                "Reschedule as of %s: %d work orders, %d piece requests, %d molds",
                now.isoformat(),
                len(work_orders),
                len(requests),
                len(molds),
            )

            failures: list[dict] = []
            batches_by_order: dict[str, list[Batch]] = {}
            for request in requests:
                try:
                    batches = pack_request(request, molds)
                except (NoCompatibleResource, NoUsableCapacity) as exc:
                    logger.warning("Request %s not packed: %s", request.request_id, exc.message)
                    failures.append(
                        failure_row(exc, request_id=request.request_id, work_order_id=request.work_order_id)
                    )
                    continue
                batches_by_order.setdefault(request.work_order_id, []).extend(batches)

            sequence = build_queue(
                work_orders=work_orders,
                batches_by_order=batches_by_order,
                requests={r.request_id: r for r in requests},
            )
            run = ResourceScheduler(calendar=calendar, molds=molds, now=now).schedule(sequence)
            failures.extend(run.failures)

            run_id = self.repo.replace_schedule(batches=run.placed, asof=now, failures=failures)

        logger.info("Reschedule run %s committed %d batches (%d failures)", run_id, len(run.placed), len(failures))
        self.repo.log_audit(
            "SCHEDULE",
            "Reschedule",
            f"Run: {run_id}, batches: {len(run.placed)}, failures: {len(failures)}",
        )
        return RescheduleResult(run_id=run_id, asof=now, committed=run.placed, failures=failures)

    async def reschedule_async(self) -> RescheduleResult:
        # Keeps the NiceGUI event loop responsive while the schedule is recomputed.
        return await asyncio.to_thread(self.reschedule)

    # ---------- Suggest date ----------
    def suggest_date(
        self,
        *,
        envelope: PieceEnvelope,
        quantity: int,
        unit_minutes: float,
        mold_id: str | None = None,
    ) -> Suggestion:
        """Earliest delivery window for a new piece type. Does not touch the committed schedule."""
        with self._lock.read():
            return estimate_availability(
                envelope=envelope,
                quantity=quantity,
                unit_minutes=unit_minutes,
                molds=self.repo.get_molds_model(),
                committed=self.repo.get_batches_model(),
                calendar=self.repo.get_work_calendar(),
                now=self.clock(),
                mold_id=mold_id,
            )

    # ---------- Delay ----------
    def apply_delay(self, *, batch_id: str, delay_minutes: int) -> dict:
        with self._lock.write(timeout=self.lock_timeout(), operation="apply_delay"):
            committed = self.repo.get_batches_model()
            affected = apply_delay(committed, batch_id, delay_minutes)
            self.repo.update_batches(affected)

        logger.info("Delay of %s min on batch %s moved %d batches", delay_minutes, batch_id, len(affected))
        self.repo.log_audit(
            "SCHEDULE",
            "Delay",
            f"Batch: {batch_id}, minutes: {delay_minutes}, affected: {len(affected)}",
        )
        return {
            "affected_batch_count": len(affected),
            "batch_ids": [b.batch_id for b in affected],
        }

    # ---------- Reads ----------
    def get_schedule(self) -> list[dict]:
        """Committed batches grouped by mold, each group in chain order."""
        with self._lock.read():
            batches = self.repo.get_batches_model()
            molds = {m.mold_id: m for m in self.repo.get_molds_model()}

        groups: dict[str, list[Batch]] = {}
        for b in batches:
            groups.setdefault(b.mold_id, []).append(b)

        out: list[dict] = []
        for mold_id in sorted(groups):
            mold = molds.get(mold_id)
            chain = sorted(groups[mold_id], key=lambda b: b.sequence or 0)
            out.append(
                {
                    "mold_id": mold_id,
                    "mold_code": mold.code if mold is not None else None,
                    "mold_name": mold.name if mold is not None else None,
                    "batches": [b.to_row() for b in chain],
                }
            )
        return out

    def get_last_run(self) -> dict | None:
        return self.repo.get_last_run()
