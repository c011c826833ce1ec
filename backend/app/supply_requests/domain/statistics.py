"""
Aggregations over the non-deleted supply requests of a project.

The SQL repository computes the header rollups in the database; the item level
figures (equipment usage, cycle times) are folded here over loaded aggregates
because the line items live in a JSON column.
"""
from collections import OrderedDict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from app.supply_requests.domain.models import (
    EquipmentUsage,
    SupplyRequest,
    SupplyRequestPriority,
    SupplyRequestStatus,
)

SECONDS_PER_DAY = 60 * 60 * 24
TOP_EQUIPMENT_LIMIT = 10

_APPROVAL_OUTCOMES = frozenset(
    {
        SupplyRequestStatus.APPROVED,
        SupplyRequestStatus.ORDERED,
        SupplyRequestStatus.PARTIALLY_DELIVERED,
        SupplyRequestStatus.DELIVERED,
        SupplyRequestStatus.CANCELLED,
    }
)


def empty_status_counts() -> Dict[str, int]:
    return {status.value: 0 for status in SupplyRequestStatus}


def empty_priority_counts() -> Dict[str, int]:
    return {priority.value: 0 for priority in SupplyRequestPriority}


def _live(requests: Iterable[SupplyRequest]) -> List[SupplyRequest]:
    return [request for request in requests if not request.is_deleted]


def count_by_priority(requests: Iterable[SupplyRequest]) -> Dict[str, int]:
    counts = empty_priority_counts()
    for request in _live(requests):
        counts[request.priority.value] += 1
    return counts


def top_requested_equipment(
    requests: Iterable[SupplyRequest],
    limit: int = TOP_EQUIPMENT_LIMIT,
) -> List[EquipmentUsage]:
    totals: "OrderedDict[str, List]" = OrderedDict()
    for request in _live(requests):
        for item in request.items:
            entry = totals.setdefault(item.equipment_id, [item.equipment_name, 0.0, 0.0])
            entry[1] += item.quantity_requested
            entry[2] += item.quantity_delivered

    usage = [
        EquipmentUsage(
            equipment_id=equipment_id,
            equipment_name=name,
            total_requested=requested,
            total_delivered=delivered,
        )
        for equipment_id, (name, requested, delivered) in totals.items()
    ]
    usage.sort(key=lambda entry: entry.total_requested, reverse=True)
    return usage[:limit]


def _average_days(spans: Sequence[float]) -> float:
    if not spans:
        return 0.0
    return round(sum(spans) / len(spans) / SECONDS_PER_DAY, 1)


def _span(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return (end - start).total_seconds()


def average_approval_days(requests: Iterable[SupplyRequest]) -> float:
    spans = [
        _span(request.created_at, request.approved_at)
        for request in _live(requests)
        if request.status in _APPROVAL_OUTCOMES
    ]
    return _average_days([span for span in spans if span is not None])


def average_delivery_days(requests: Iterable[SupplyRequest]) -> float:
    spans = [
        _span(request.approved_at, request.delivered_at)
        for request in _live(requests)
        if request.status == SupplyRequestStatus.DELIVERED
    ]
    return _average_days([span for span in spans if span is not None])
