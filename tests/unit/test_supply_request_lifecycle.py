from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from app.supply_requests.domain import lifecycle
from app.supply_requests.domain.errors import InvalidState, ValidationError
from app.supply_requests.domain.models import (
    RequestedEquipmentItem,
    SupplyRequest,
    SupplyRequestPriority,
    SupplyRequestStatus,
)

CREATED = datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc)
LATER = CREATED + timedelta(days=2)


def make_item(equipment_id="cement", requested=10.0, unit_cost=10.0, **overrides):
    values = dict(
        equipment_id=equipment_id,
        equipment_name=equipment_id.title(),
        equipment_category="materials",
        unit_of_measure="pieces",
        quantity_requested=requested,
        estimated_unit_cost=unit_cost,
        estimated_total_cost=requested * unit_cost,
    )
    values.update(overrides)
    return RequestedEquipmentItem(**values)


def make_request(items=None, **overrides):
    items = tuple(items) if items is not None else (
        make_item("cement", 10, 10.0),
        make_item("rebar", 4, 5.0),
    )
    values = dict(
        id="req-1",
        business_id="business-1",
        project_id="project-1",
        requested_by="requester-1",
        description="Foundation pour",
        requested_date=CREATED,
        required_date=CREATED + timedelta(days=7),
        priority=SupplyRequestPriority.MEDIUM,
        status=SupplyRequestStatus.PENDING,
        items=items,
        total_estimated_cost=lifecycle.total_estimated_cost(items),
        created_at=CREATED,
        updated_at=CREATED,
    )
    values.update(overrides)
    return SupplyRequest(**values)


def quantities(request, attribute):
    return {item.equipment_id: getattr(item, attribute) for item in request.items}


# ==================== approve ====================

def test_approve_defaults_every_item_to_requested_quantity():
    approved = lifecycle.approve(make_request(), approver_id="admin-1", now=LATER)

    assert approved.status == SupplyRequestStatus.APPROVED
    assert approved.approved_by == "admin-1"
    assert approved.approved_at == LATER
    assert quantities(approved, "quantity_approved") == {"cement": 10, "rebar": 4}
    assert approved.total_approved_cost == 120.0


def test_approve_accepts_reduced_quantity_and_reprices_item():
    approved = lifecycle.approve(
        make_request(),
        approver_id="admin-1",
        now=LATER,
        approved_quantities={"cement": 6},
        approval_notes="Half now",
    )

    cement = approved.items[0]
    assert cement.quantity_approved == 6
    assert cement.estimated_total_cost == 60.0
    assert approved.total_approved_cost == 80.0
    assert approved.approval_notes == "Half now"
    # The request-level estimate stays what was asked for.
    assert approved.total_estimated_cost == 120.0


def test_approve_accepts_zero_quantity():
    approved = lifecycle.approve(
        make_request(), approver_id="admin-1", now=LATER, approved_quantities={"rebar": 0}
    )

    assert quantities(approved, "quantity_approved") == {"cement": 10, "rebar": 0}


def test_approve_rejects_quantity_above_requested():
    request = make_request()

    with pytest.raises(ValidationError):
        lifecycle.approve(
            request, approver_id="admin-1", now=LATER, approved_quantities={"cement": 11}
        )
    assert request.status == SupplyRequestStatus.PENDING


def test_approve_rejects_negative_quantity():
    with pytest.raises(ValidationError):
        lifecycle.approve(
            make_request(), approver_id="admin-1", now=LATER, approved_quantities={"cement": -1}
        )


def test_approve_rejects_unknown_equipment_id():
    with pytest.raises(ValidationError) as exc:
        lifecycle.approve(
            make_request(), approver_id="admin-1", now=LATER, approved_quantities={"ghost": 1}
        )
    assert "ghost" in exc.value.message


@pytest.mark.parametrize(
    "status",
    [
        SupplyRequestStatus.APPROVED,
        SupplyRequestStatus.REJECTED,
        SupplyRequestStatus.DELIVERED,
        SupplyRequestStatus.CANCELLED,
    ],
)
def test_approve_requires_pending(status):
    with pytest.raises(InvalidState):
        lifecycle.approve(make_request(status=status), approver_id="admin-1", now=LATER)


# ==================== reject ====================

def test_reject_records_reason_and_actor():
    rejected = lifecycle.reject(
        make_request(), rejecter_id="admin-1", now=LATER, rejection_reason="  Over budget "
    )

    assert rejected.status == SupplyRequestStatus.REJECTED
    assert rejected.rejection_reason == "Over budget"
    assert rejected.approved_by == "admin-1"
    assert rejected.approved_at == LATER


def test_reject_requires_reason():
    with pytest.raises(ValidationError):
        lifecycle.reject(make_request(), rejecter_id="admin-1", now=LATER, rejection_reason="  ")


def test_second_reject_fails_and_keeps_first_reason():
    rejected = lifecycle.reject(
        make_request(), rejecter_id="admin-1", now=LATER, rejection_reason="Over budget"
    )

    with pytest.raises(InvalidState):
        lifecycle.reject(
            rejected, rejecter_id="admin-1", now=LATER, rejection_reason="Changed mind"
        )
    assert rejected.rejection_reason == "Over budget"


# ==================== place_order ====================

def test_place_order_keeps_existing_expected_date_when_omitted():
    expected = CREATED + timedelta(days=5)
    approved = lifecycle.approve(
        make_request(), approver_id="admin-1", now=LATER, expected_delivery_date=expected
    )

    ordered = lifecycle.place_order(
        approved, now=LATER, supplier_name="BuildMart", purchase_order_number="PO-77"
    )

    assert ordered.status == SupplyRequestStatus.ORDERED
    assert ordered.ordered_at == LATER
    assert ordered.supplier_name == "BuildMart"
    assert ordered.purchase_order_number == "PO-77"
    assert ordered.expected_delivery_date == expected


def test_place_order_requires_approval():
    with pytest.raises(InvalidState):
        lifecycle.place_order(make_request(), now=LATER)


# ==================== record_delivery ====================

def approved_request(**approve_kwargs):
    return lifecycle.approve(make_request(), approver_id="admin-1", now=LATER, **approve_kwargs)


def test_delivery_without_quantities_completes_every_item():
    delivered = lifecycle.record_delivery(approved_request(), now=LATER, actual_cost=115.0)

    assert delivered.status == SupplyRequestStatus.DELIVERED
    assert delivered.delivered_at == LATER
    assert delivered.actual_cost == 115.0
    assert quantities(delivered, "quantity_delivered") == {"cement": 10, "rebar": 4}
    assert lifecycle.completion_percentage(delivered) == 100


def test_delivery_without_quantities_uses_approved_targets():
    delivered = lifecycle.record_delivery(
        approved_request(approved_quantities={"cement": 6}), now=LATER
    )

    assert quantities(delivered, "quantity_delivered") == {"cement": 6, "rebar": 4}
    assert delivered.status == SupplyRequestStatus.DELIVERED


def test_delivery_without_quantities_keeps_deliveries_above_target():
    partial = lifecycle.record_delivery(
        approved_request(approved_quantities={"cement": 6}),
        now=LATER,
        delivered_quantities={"cement": 9},
    )
    assert partial.status == SupplyRequestStatus.PARTIALLY_DELIVERED

    delivered = lifecycle.record_delivery(partial, now=LATER)

    assert quantities(delivered, "quantity_delivered") == {"cement": 9, "rebar": 4}
    assert delivered.status == SupplyRequestStatus.DELIVERED


def test_partial_delivery_accumulates_until_complete():
    request = approved_request()

    partial = lifecycle.record_delivery(request, now=LATER, delivered_quantities={"cement": 3})
    assert partial.status == SupplyRequestStatus.PARTIALLY_DELIVERED
    assert partial.delivered_at is None
    assert lifecycle.completion_percentage(partial) == 21

    finish = LATER + timedelta(days=1)
    complete = lifecycle.record_delivery(
        partial, now=finish, delivered_quantities={"cement": 7, "rebar": 4}
    )
    assert complete.status == SupplyRequestStatus.DELIVERED
    assert complete.delivered_at == finish
    assert quantities(complete, "quantity_delivered") == {"cement": 10, "rebar": 4}


def test_delivery_overwrites_only_supplied_fields():
    request = replace(approved_request(), supplier_name="BuildMart", actual_cost=50.0)

    partial = lifecycle.record_delivery(
        request, now=LATER, delivered_quantities={"cement": 1}, delivery_notes="First truck"
    )
    assert partial.supplier_name == "BuildMart"
    assert partial.actual_cost == 50.0
    assert partial.delivery_notes == "First truck"

    updated = lifecycle.record_delivery(
        partial, now=LATER, delivered_quantities={"cement": 1}, actual_cost=70.0
    )
    assert updated.actual_cost == 70.0
    assert updated.delivery_notes == "First truck"


def test_delivery_with_empty_map_is_rejected():
    with pytest.raises(ValidationError):
        lifecycle.record_delivery(approved_request(), now=LATER, delivered_quantities={})


def test_delivery_rejects_negative_delta():
    with pytest.raises(ValidationError):
        lifecycle.record_delivery(
            approved_request(), now=LATER, delivered_quantities={"cement": -2}
        )


def test_delivery_rejects_unknown_equipment():
    with pytest.raises(ValidationError):
        lifecycle.record_delivery(approved_request(), now=LATER, delivered_quantities={"ghost": 1})


def test_delivery_cannot_exceed_requested_quantity():
    with pytest.raises(ValidationError):
        lifecycle.record_delivery(
            approved_request(), now=LATER, delivered_quantities={"cement": 11}
        )


def test_delivery_rejects_negative_actual_cost():
    with pytest.raises(ValidationError):
        lifecycle.record_delivery(approved_request(), now=LATER, actual_cost=-1)


@pytest.mark.parametrize(
    "status",
    [SupplyRequestStatus.PENDING, SupplyRequestStatus.REJECTED, SupplyRequestStatus.CANCELLED],
)
def test_delivery_requires_an_approved_request(status):
    with pytest.raises(InvalidState):
        lifecycle.record_delivery(make_request(status=status), now=LATER)


def test_delivery_from_ordered_request():
    ordered = lifecycle.place_order(approved_request(), now=LATER)

    delivered = lifecycle.record_delivery(ordered, now=LATER)

    assert delivered.status == SupplyRequestStatus.DELIVERED


# ==================== cancel ====================

def test_cancel_approved_request():
    cancelled = lifecycle.cancel(approved_request(), now=LATER, reason="Project paused")

    assert cancelled.status == SupplyRequestStatus.CANCELLED
    assert cancelled.cancelled_at == LATER
    assert cancelled.cancellation_reason == "Project paused"


def test_cancel_rejects_pending_and_partially_delivered():
    with pytest.raises(InvalidState):
        lifecycle.cancel(make_request(), now=LATER)

    partial = lifecycle.record_delivery(
        approved_request(), now=LATER, delivered_quantities={"cement": 1}
    )
    with pytest.raises(InvalidState):
        lifecycle.cancel(partial, now=LATER)


# ==================== revise & soft_delete ====================

def test_revise_replaces_items_and_recomputes_total():
    request = make_request()

    revised = lifecycle.revise(
        request,
        LATER,
        {"items": [make_item("drill", 2, 40.0)], "priority": SupplyRequestPriority.URGENT},
    )

    assert revised.total_estimated_cost == 80.0
    assert revised.priority == SupplyRequestPriority.URGENT
    assert revised.updated_at == LATER
    assert request.total_estimated_cost == 120.0


def test_revise_rejects_empty_items_and_unknown_fields():
    with pytest.raises(ValidationError):
        lifecycle.revise(make_request(), LATER, {"items": []})
    with pytest.raises(ValidationError):
        lifecycle.revise(make_request(), LATER, {"status": SupplyRequestStatus.APPROVED})


def test_revise_requires_pending():
    with pytest.raises(InvalidState):
        lifecycle.revise(approved_request(), LATER, {"description": "Changed"})


def test_soft_delete_pending_and_rejected_only():
    deleted = lifecycle.soft_delete(make_request(), actor_id="admin-1", now=LATER)
    assert deleted.is_deleted
    assert deleted.deleted_by == "admin-1"
    assert deleted.deleted_at == LATER

    rejected = make_request(status=SupplyRequestStatus.REJECTED)
    assert lifecycle.soft_delete(rejected, actor_id="admin-1", now=LATER).is_deleted

    with pytest.raises(InvalidState):
        lifecycle.soft_delete(approved_request(), actor_id="admin-1", now=LATER)


def test_deleted_request_accepts_no_transition():
    deleted = lifecycle.soft_delete(make_request(), actor_id="admin-1", now=LATER)

    with pytest.raises(InvalidState) as exc:
        lifecycle.approve(deleted, approver_id="admin-1", now=LATER)
    assert "deleted" in exc.value.message


# ==================== derived values ====================

def test_overdue_ignores_delivered_and_cancelled():
    past_due = CREATED + timedelta(days=30)

    assert lifecycle.is_overdue(make_request(), past_due)
    assert lifecycle.is_overdue(make_request(status=SupplyRequestStatus.REJECTED), past_due)
    assert not lifecycle.is_overdue(make_request(status=SupplyRequestStatus.DELIVERED), past_due)
    assert not lifecycle.is_overdue(make_request(status=SupplyRequestStatus.CANCELLED), past_due)
    assert not lifecycle.is_overdue(make_request(), CREATED)


def test_completion_percentage_rounds_and_handles_empty_target():
    request = make_request(items=[make_item("cement", 3, 1.0, quantity_delivered=1.0)])
    assert lifecycle.completion_percentage(request) == 33

    zero = lifecycle.approve(
        make_request(items=[make_item("cement", 3, 1.0)]),
        approver_id="admin-1",
        now=LATER,
        approved_quantities={"cement": 0},
    )
    assert lifecycle.completion_percentage(zero) == 0
