from __future__ import annotations

from datetime import date, datetime

from precastplan.core.models import (
    Batch,
    InsertAfterResource,
    PassToFront,
    PieceRequest,
    SendToBack,
    WorkOrder,
    priority_rank,
)


def work_order_sort_key(wo: WorkOrder) -> tuple:
    # Priority DESC, deadline ASC (missing last), id for a stable tie-break.
    return (-priority_rank(wo.priority), wo.deadline or date.max, wo.work_order_id)


def order_batches_within(batches: list[Batch], requests: dict[str, PieceRequest]) -> list[Batch]:
    """Order one work order's batches: request priority DESC, then request id, then split index.

    Request ids compare as plain strings, so "R-10" comes before "R-2". Batches
    of the same request stay contiguous and in split order.
    """

    def _key(b: Batch) -> tuple:
        req = requests.get(b.request_id)
        rank = priority_rank(req.priority) if req is not None else 0
        return (-rank, b.request_id, b.split_index)

    return sorted(batches, key=_key)


def build_queue(
    *,
    work_orders: list[WorkOrder],
    batches_by_order: dict[str, list[Batch]],
    requests: dict[str, PieceRequest],
) -> list[Batch]:
    """Build the global production sequence.

    1. Bucket work orders by urgency (front / default / back).
    2. Sort each bucket by priority, deadline, id.
    3. Inside a work order: piece-request priority, keeping the split order.
    4. Pass-to-front orders are prepended in marking order (latest marked ends
       up first), normal orders appended, send-to-back appended last.
    5. Insert-after-resource orders are spliced right after the last batch
       already on the target mold, or appended when that mold has none.

    Pure function: the same inputs always give the same sequence.
    """
    front: list[WorkOrder] = []
    default: list[WorkOrder] = []
    back: list[WorkOrder] = []
    for wo in work_orders:
        if isinstance(wo.urgency, PassToFront):
            front.append(wo)
        elif isinstance(wo.urgency, SendToBack):
            back.append(wo)
        else:
            default.append(wo)

    front.sort(key=work_order_sort_key)
    default.sort(key=work_order_sort_key)
    back.sort(key=work_order_sort_key)

    def _order_batches(wo: WorkOrder) -> list[Batch]:
        return order_batches_within(list(batches_by_order.get(wo.work_order_id) or []), requests)

    sequence: list[Batch] = []

    # Prepending reverses the iteration order, so walk from oldest mark to newest
    # and, among equal marks, from lowest rank to highest.
    marked = sorted(
        enumerate(front),
        key=lambda x: (x[1].urgency_marked_at or datetime.min, -x[0]),
    )
    for _rank, wo in marked:
        sequence[0:0] = _order_batches(wo)

    for wo in default:
        if isinstance(wo.urgency, InsertAfterResource):
            continue
        sequence.extend(_order_batches(wo))

    for wo in back:
        sequence.extend(_order_batches(wo))

    for wo in default:
        if not isinstance(wo.urgency, InsertAfterResource):
            continue
        batches = _order_batches(wo)
        if not batches:
            continue
        target = wo.urgency.resource_id
        last_idx = -1
        for idx, b in enumerate(sequence):
            if b.mold_id == target:
                last_idx = idx
        if last_idx >= 0:
            sequence[last_idx + 1:last_idx + 1] = batches
        else:
            sequence.extend(batches)

    for pos, b in enumerate(sequence, start=1):
        b.queue_position = pos
    return sequence
