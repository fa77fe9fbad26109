from __future__ import annotations

import math

from precastplan.core.errors import NoCompatibleResource, NoUsableCapacity
from precastplan.core.models import Batch, Mold, PieceEnvelope, PieceRequest


def effective_capacity(mold: Mold, envelope: PieceEnvelope) -> int:
    """Pieces per cycle: declared capacity, bounded by how many pieces fit along the mold length."""
    if envelope.length <= 0:
        return 0
    by_length = math.floor(mold.max_length / envelope.length)
    return max(0, min(int(mold.capacity), int(by_length)))


def fits_envelope(mold: Mold, envelope: PieceEnvelope) -> bool:
    return mold.max_height >= envelope.height and mold.max_width >= envelope.width


def rank_molds(
    envelope: PieceEnvelope,
    molds: list[Mold],
    *,
    mold_id: str | None = None,
) -> list[tuple[Mold, int]]:
    """Compatible molds with their effective capacity, best first.

    Order: capacity DESC, max_length ASC (tightest fit), mold_id.
    """
    candidates = [m for m in molds if m.is_available and fits_envelope(m, envelope)]
    if mold_id is not None:
        candidates = [m for m in candidates if m.mold_id == mold_id]
    if not candidates:
        raise NoCompatibleResource(
            f"no available mold fits piece {envelope.height}x{envelope.width}",
            height=envelope.height,
            width=envelope.width,
            mold_id=mold_id,
        )

    ranked = [(m, effective_capacity(m, envelope)) for m in candidates]
    ranked = [(m, cap) for m, cap in ranked if cap >= 1]
    if not ranked:
        raise NoUsableCapacity(
            f"no compatible mold can hold a piece of length {envelope.length}",
            length=envelope.length,
            mold_id=mold_id,
        )

    ranked.sort(key=lambda x: (-x[1], x[0].max_length, x[0].mold_id))
    return ranked


def split_quantity(quantity: int, capacity: int) -> list[int]:
    """[capacity, capacity, ..., remainder]; empty for quantity <= 0."""
    if capacity < 1:
        raise ValueError(f"capacity must be >= 1, got {capacity}")
    out: list[int] = []
    remaining = int(quantity)
    while remaining > 0:
        qty = min(capacity, remaining)
        out.append(qty)
        remaining -= qty
    return out


def pack_request(request: PieceRequest, molds: list[Mold]) -> list[Batch]:
    """Select a mold for the request and split it into unscheduled batches."""
    mold, capacity = rank_molds(request.envelope, molds, mold_id=request.mold_id)[0]
    return [
        Batch(
            batch_id=f"{request.request_id}-{idx:03d}",
            request_id=request.request_id,
            work_order_id=request.work_order_id,
            mold_id=mold.mold_id,
            height=request.height,
            width=request.width,
            length=request.length,
            quantity=qty,
            unit_minutes=request.unit_minutes,
            split_index=idx,
        )
        for idx, qty in enumerate(split_quantity(request.quantity, capacity), start=1)
    ]
