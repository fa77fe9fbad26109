from __future__ import annotations

from datetime import timedelta

from precastplan.core.errors import BatchNotFound
from precastplan.core.models import Batch


def apply_delay(batches: list[Batch], batch_id: str, delay_minutes: int) -> list[Batch]:
    """Push a batch and everything after it on the same mold by `delay_minutes`.

    Pure translation of start/end: setup decisions do not change when the whole
    tail of a chain moves together. Batches of other molds are not touched.
    Returns the affected batches in chain order.
    """
    delay_minutes = int(delay_minutes)
    if delay_minutes <= 0:
        raise ValueError(f"delay_minutes must be > 0, got {delay_minutes}")

    target = next((b for b in batches if b.batch_id == batch_id), None)
    if target is None:
        raise BatchNotFound(f"batch not found: {batch_id}", batch_id=batch_id)

    chain = sorted(
        (b for b in batches if b.mold_id == target.mold_id and (b.sequence or 0) >= (target.sequence or 0)),
        key=lambda b: b.sequence or 0,
    )
    delta = timedelta(minutes=delay_minutes)
    for b in chain:
        if b.start is not None:
            b.start = b.start + delta
        if b.end is not None:
            b.end = b.end + delta
        b.delay_minutes = int(b.delay_minutes or 0) + delay_minutes
    target.status = "delayed"
    return chain
