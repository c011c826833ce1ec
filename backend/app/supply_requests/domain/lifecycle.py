"""
Supply request state machine.

Every function here takes the current aggregate and returns a new one; the
aggregate is never mutated in place. Guards raise domain errors before any
value is changed so a failed transition leaves nothing half-applied.
"""
from dataclasses import replace
from datetime import datetime
from typing import Any, Collection, Iterable, Mapping, Optional, Sequence

from app.supply_requests.domain.errors import InvalidState, ValidationError
from app.supply_requests.domain.models import (
    RequestedEquipmentItem,
    SupplyRequest,
    SupplyRequestStatus,
)

EDITABLE_STATUSES = frozenset({SupplyRequestStatus.PENDING})
DELETABLE_STATUSES = frozenset({SupplyRequestStatus.PENDING, SupplyRequestStatus.REJECTED})
ORDERABLE_STATUSES = frozenset({SupplyRequestStatus.APPROVED})
CANCELLABLE_STATUSES = frozenset({SupplyRequestStatus.APPROVED, SupplyRequestStatus.ORDERED})
DELIVERABLE_STATUSES = frozenset(
    {
        SupplyRequestStatus.APPROVED,
        SupplyRequestStatus.ORDERED,
        SupplyRequestStatus.PARTIALLY_DELIVERED,
    }
)
OVERDUE_EXEMPT_STATUSES = frozenset({SupplyRequestStatus.DELIVERED, SupplyRequestStatus.CANCELLED})
REVISABLE_FIELDS = frozenset({"description", "name", "required_date", "priority", "items"})

# Statuses in which the approved quantities drive delivery.
_APPROVED_STATUSES = frozenset(
    {
        SupplyRequestStatus.APPROVED,
        SupplyRequestStatus.ORDERED,
        SupplyRequestStatus.PARTIALLY_DELIVERED,
        SupplyRequestStatus.DELIVERED,
        SupplyRequestStatus.CANCELLED,
    }
)


def require_status(
    request: SupplyRequest,
    allowed: Collection[SupplyRequestStatus],
    message: str,
) -> None:
    if request.is_deleted:
        raise InvalidState("Supply request has been deleted")
    if request.status not in allowed:
        raise InvalidState(f"{message} (current status: {request.status.value})")


def total_estimated_cost(items: Iterable[RequestedEquipmentItem]) -> float:
    return sum(item.estimated_total_cost for item in items)


def is_approved(request: SupplyRequest) -> bool:
    return request.approved_at is not None and request.status in _APPROVED_STATUSES


def delivery_target(request: SupplyRequest, item: RequestedEquipmentItem) -> float:
    if is_approved(request):
        return item.quantity_approved
    return item.quantity_requested


def is_fully_delivered(request: SupplyRequest) -> bool:
    return all(
        item.quantity_delivered >= delivery_target(request, item)
        for item in request.items
    )


def completion_percentage(request: SupplyRequest) -> int:
    target = sum(delivery_target(request, item) for item in request.items)
    if target <= 0:
        return 0
    delivered = sum(item.quantity_delivered for item in request.items)
    return round(delivered / target * 100)


def is_overdue(request: SupplyRequest, now: datetime) -> bool:
    if request.status in OVERDUE_EXEMPT_STATUSES:
        return False
    return request.required_date < now


def _check_known_ids(
    request: SupplyRequest, quantities: Mapping[str, float], label: str
) -> None:
    known = {item.equipment_id for item in request.items}
    unknown = sorted(set(quantities) - known)
    if unknown:
        raise ValidationError(
            f"{label} reference equipment not in this request: {', '.join(unknown)}"
        )


def revise(
    request: SupplyRequest,
    now: datetime,
    changes: Mapping[str, Any],
) -> SupplyRequest:
    """Apply descriptive edits and, when given, a replacement item list."""
    require_status(request, EDITABLE_STATUSES, "Can only edit pending supply requests")
    unknown = set(changes) - REVISABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    values = dict(changes)
    if "items" in values:
        items: Sequence[RequestedEquipmentItem] = tuple(values["items"])
        if not items:
            raise ValidationError("At least one equipment item must be requested")
        values["items"] = items
        values["total_estimated_cost"] = total_estimated_cost(items)
    return replace(request, updated_at=now, **values)


def approve(
    request: SupplyRequest,
    approver_id: str,
    now: datetime,
    approved_quantities: Optional[Mapping[str, float]] = None,
    approval_notes: Optional[str] = None,
    expected_delivery_date: Optional[datetime] = None,
) -> SupplyRequest:
    require_status(request, {SupplyRequestStatus.PENDING}, "Can only approve pending supply requests")
    approved_quantities = approved_quantities or {}
    _check_known_ids(request, approved_quantities, "Approved quantities")

    items = []
    for item in request.items:
        quantity = approved_quantities.get(item.equipment_id, item.quantity_requested)
        if quantity < 0:
            raise ValidationError(
                f"Approved quantity for {item.equipment_name} cannot be negative"
            )
        if quantity > item.quantity_requested:
            raise ValidationError(
                f"Approved quantity for {item.equipment_name} exceeds the requested "
                f"quantity ({quantity} > {item.quantity_requested})"
            )
        items.append(
            replace(
                item,
                quantity_approved=quantity,
                estimated_total_cost=item.estimated_unit_cost * quantity,
            )
        )

    return replace(
        request,
        status=SupplyRequestStatus.APPROVED,
        items=tuple(items),
        total_approved_cost=sum(item.estimated_total_cost for item in items),
        approved_by=approver_id,
        approved_at=now,
        approval_notes=approval_notes,
        expected_delivery_date=expected_delivery_date,
        updated_at=now,
    )


def reject(
    request: SupplyRequest,
    rejecter_id: str,
    now: datetime,
    rejection_reason: str,
) -> SupplyRequest:
    require_status(request, {SupplyRequestStatus.PENDING}, "Can only reject pending supply requests")
    if not rejection_reason or not rejection_reason.strip():
        raise ValidationError("Rejection reason is required")

    # approved_by records whoever acted on the approval gate.
    return replace(
        request,
        status=SupplyRequestStatus.REJECTED,
        approved_by=rejecter_id,
        approved_at=now,
        rejection_reason=rejection_reason.strip(),
        updated_at=now,
    )


def place_order(
    request: SupplyRequest,
    now: datetime,
    supplier_name: Optional[str] = None,
    supplier_contact: Optional[str] = None,
    purchase_order_number: Optional[str] = None,
    expected_delivery_date: Optional[datetime] = None,
) -> SupplyRequest:
    require_status(request, ORDERABLE_STATUSES, "Can only order approved supply requests")
    return replace(
        request,
        status=SupplyRequestStatus.ORDERED,
        ordered_at=now,
        supplier_name=supplier_name if supplier_name is not None else request.supplier_name,
        supplier_contact=(
            supplier_contact if supplier_contact is not None else request.supplier_contact
        ),
        purchase_order_number=purchase_order_number,
        expected_delivery_date=(
            expected_delivery_date
            if expected_delivery_date is not None
            else request.expected_delivery_date
        ),
        updated_at=now,
    )


def record_delivery(
    request: SupplyRequest,
    now: datetime,
    delivered_quantities: Optional[Mapping[str, float]] = None,
    delivery_notes: Optional[str] = None,
    actual_cost: Optional[float] = None,
    supplier_name: Optional[str] = None,
) -> SupplyRequest:
    require_status(
        request,
        DELIVERABLE_STATUSES,
        "Can only record deliveries for approved or ordered supply requests",
    )
    if actual_cost is not None and actual_cost < 0:
        raise ValidationError("Actual cost must be non-negative")

    if delivered_quantities is None:
        items = [
            replace(
                item,
                quantity_delivered=max(item.quantity_delivered, delivery_target(request, item)),
            )
            for item in request.items
        ]
    else:
        if not delivered_quantities:
            raise ValidationError("Delivered quantities must name at least one item")
        _check_known_ids(request, delivered_quantities, "Delivered quantities")
        items = []
        for item in request.items:
            delta = delivered_quantities.get(item.equipment_id, 0)
            if delta < 0:
                raise ValidationError(
                    f"Delivered quantity for {item.equipment_name} cannot be negative"
                )
            delivered = item.quantity_delivered + delta
            ceiling = max(item.quantity_approved, item.quantity_requested)
            if delivered > ceiling:
                raise ValidationError(
                    f"Delivered quantity for {item.equipment_name} would exceed "
                    f"{ceiling} ({delivered} in total)"
                )
            items.append(replace(item, quantity_delivered=delivered))

    updated = replace(request, items=tuple(items))
    fully_delivered = is_fully_delivered(updated)
    delivered_at = request.delivered_at
    if fully_delivered and delivered_at is None:
        delivered_at = now

    return replace(
        updated,
        status=(
            SupplyRequestStatus.DELIVERED
            if fully_delivered
            else SupplyRequestStatus.PARTIALLY_DELIVERED
        ),
        delivered_at=delivered_at,
        delivery_notes=delivery_notes if delivery_notes is not None else request.delivery_notes,
        actual_cost=actual_cost if actual_cost is not None else request.actual_cost,
        supplier_name=supplier_name if supplier_name is not None else request.supplier_name,
        updated_at=now,
    )


def cancel(
    request: SupplyRequest,
    now: datetime,
    reason: Optional[str] = None,
) -> SupplyRequest:
    require_status(
        request, CANCELLABLE_STATUSES, "Can only cancel approved or ordered supply requests"
    )
    if any(item.quantity_delivered > 0 for item in request.items):
        raise InvalidState("Cannot cancel a supply request after deliveries were recorded")
    return replace(
        request,
        status=SupplyRequestStatus.CANCELLED,
        cancelled_at=now,
        cancellation_reason=reason,
        updated_at=now,
    )


def soft_delete(request: SupplyRequest, actor_id: str, now: datetime) -> SupplyRequest:
    require_status(
        request, DELETABLE_STATUSES, "Can only delete pending or rejected supply requests"
    )
    return replace(
        request,
        is_deleted=True,
        deleted_at=now,
        deleted_by=actor_id,
        updated_at=now,
    )
