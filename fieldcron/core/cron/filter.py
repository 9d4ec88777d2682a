"""Candidate filter & deduplicator."""

from __future__ import annotations

from fieldcron.core.cron.types import CronTask, WorkOrder


def filter_candidates(candidates: list[WorkOrder], task: CronTask) -> list[WorkOrder]:
    """Reduce fetched work orders to the ones ``task`` should request.

    Drops ids already requested (or repeated within the batch), types outside
    ``task.types_of_work_order``, and anything farther than
    ``task.driving_radius``. Unknown distance counts as out of range.
    Order of ``candidates`` is kept.
    """
    seen = set(task.requested_wo_ids)
    types = set(task.types_of_work_order)
    accepted: list[WorkOrder] = []
    for wo in candidates:
        if wo.id in seen:
            continue
        if wo.type_id not in types:
            continue
        if wo.distance is None or wo.distance > task.driving_radius:
            continue
        seen.add(wo.id)
        accepted.append(wo)
    return accepted
