from datetime import datetime
from typing import Any, Dict, Optional

from app.supply_requests.application.use_cases import (
    DeleteResult,
    SupplyRequestPage,
    SupplyRequestView,
)
from app.supply_requests.domain import lifecycle
from app.supply_requests.domain.models import (
    RequestSummary,
    SupplyRequestPriority,
    SupplyRequestStats,
    SupplyRequestStatus,
    UserSummary,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _user(user: Optional[UserSummary]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email}


def supply_request_to_response(view: SupplyRequestView) -> Dict[str, Any]:
    request = view.request
    items = list(request.items)
    return {
        "id": request.id,
        "business_id": request.business_id,
        "project_id": request.project_id,
        "name": request.name,
        "description": request.description,
        "status": request.status.value,
        "priority": request.priority.value,
        "requested_by": request.requested_by,
        "requester": _user(view.requester),
        "approved_by": request.approved_by,
        "approver": _user(view.approver),
        "requested_date": _iso(request.requested_date),
        "required_date": _iso(request.required_date),
        "items": [
            {
                "equipment_id": item.equipment_id,
                "equipment_name": item.equipment_name,
                "equipment_category": item.equipment_category,
                "unit_of_measure": item.unit_of_measure,
                "quantity_requested": item.quantity_requested,
                "quantity_approved": item.quantity_approved,
                "quantity_delivered": item.quantity_delivered,
                "estimated_unit_cost": item.estimated_unit_cost,
                "estimated_total_cost": item.estimated_total_cost,
                "notes": item.notes,
            }
            for item in items
        ],
        "total_estimated_cost": request.total_estimated_cost,
        "total_approved_cost": request.total_approved_cost,
        "actual_cost": request.actual_cost,
        "approved_at": _iso(request.approved_at),
        "approval_notes": request.approval_notes,
        "rejection_reason": request.rejection_reason,
        "ordered_at": _iso(request.ordered_at),
        "expected_delivery_date": _iso(request.expected_delivery_date),
        "delivered_at": _iso(request.delivered_at),
        "delivery_notes": request.delivery_notes,
        "supplier_name": request.supplier_name,
        "supplier_contact": request.supplier_contact,
        "purchase_order_number": request.purchase_order_number,
        "cancelled_at": _iso(request.cancelled_at),
        "cancellation_reason": request.cancellation_reason,
        "version": request.version,
        "created_at": _iso(request.created_at),
        "updated_at": _iso(request.updated_at),
        # Derived on read, never stored
        "total_items": len(items),
        "approved_items": sum(1 for item in items if item.quantity_approved > 0),
        "delivered_items": sum(
            1
            for item in items
            if item.quantity_delivered > 0
            and item.quantity_delivered >= lifecycle.delivery_target(request, item)
        ),
        "is_urgent": request.priority == SupplyRequestPriority.URGENT,
        "is_overdue": lifecycle.is_overdue(request, view.now),
        "completion_percentage": lifecycle.completion_percentage(request),
    }


def summary_to_response(summary: RequestSummary) -> Dict[str, Any]:
    by_status = summary.requests_by_status
    return {
        "total_requests": summary.total_requests,
        "requests_by_status": dict(by_status),
        "pending_requests": by_status.get(SupplyRequestStatus.PENDING.value, 0),
        "approved_requests": by_status.get(SupplyRequestStatus.APPROVED.value, 0),
        "delivered_requests": by_status.get(SupplyRequestStatus.DELIVERED.value, 0),
        "overdue_requests": summary.overdue_requests,
        "total_estimated_cost": summary.total_estimated_cost,
        "total_approved_cost": summary.total_approved_cost,
        "total_actual_cost": summary.total_actual_cost,
        "last_request_at": _iso(summary.last_request_at),
    }


def page_to_response(page: SupplyRequestPage) -> Dict[str, Any]:
    return {
        "requests": [supply_request_to_response(view) for view in page.requests],
        "pagination": {
            "total": page.total,
            "page": page.page,
            "limit": page.limit,
            "total_pages": page.total_pages,
            "has_next_page": page.has_next_page,
            "has_prev_page": page.has_prev_page,
        },
        "summary": summary_to_response(page.summary),
    }


def stats_to_response(stats: SupplyRequestStats) -> Dict[str, Any]:
    return {
        **summary_to_response(stats.summary),
        "requests_by_priority": dict(stats.requests_by_priority),
        "top_requested_equipment": [
            {
                "equipment_id": usage.equipment_id,
                "equipment_name": usage.equipment_name,
                "total_requested": usage.total_requested,
                "total_delivered": usage.total_delivered,
            }
            for usage in stats.top_requested_equipment
        ],
        "average_approval_time_days": stats.average_approval_days,
        "average_delivery_time_days": stats.average_delivery_days,
        "cost_savings": stats.cost_savings,
    }


def delete_result_to_response(result: DeleteResult) -> Dict[str, Any]:
    return {
        "success": result.success,
        "message": result.message,
        "request_id": result.request_id,
        "deleted_at": _iso(result.deleted_at),
    }
