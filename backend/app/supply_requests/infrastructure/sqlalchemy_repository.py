from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.supply_requests.application.ports import (
    EquipmentCatalog,
    ProjectDirectory,
    SupplyRequestRepository,
)
from app.supply_requests.domain.lifecycle import OVERDUE_EXEMPT_STATUSES
from app.supply_requests.domain.models import (
    BusinessSummary,
    EquipmentSummary,
    ProjectSummary,
    RequestedEquipmentItem,
    RequestFilters,
    RequestSummary,
    SupplyRequest,
    SupplyRequestPriority,
    SupplyRequestStatus,
    UserSummary,
)
from app.supply_requests.domain.statistics import empty_status_counts
from database import (
    Business,
    Equipment,
    Project,
    SupplyRequest as SupplyRequestModel,
    User,
)

_OVERDUE_EXEMPT_VALUES = [status.value for status in OVERDUE_EXEMPT_STATUSES]


def _to_user_summary(user: User) -> UserSummary:
    return UserSummary(id=user.id, name=user.full_name, email=user.email)


class SqlAlchemyProjectDirectory(ProjectDirectory):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_project(self, project_id: str) -> Optional[ProjectSummary]:
        result = await self._session.execute(
            select(Project).where(Project.id == project_id)
        )
        project = result.scalar_one_or_none()
        if project is None:
            return None
        return ProjectSummary(
            id=project.id,
            name=project.name,
            business_id=project.business_id,
            assigned_user_ids=tuple(project.assigned_users or ()),
        )

    async def get_business(self, business_id: str) -> Optional[BusinessSummary]:
        result = await self._session.execute(
            select(Business).where(Business.id == business_id)
        )
        business = result.scalar_one_or_none()
        if business is None:
            return None
        return BusinessSummary(
            id=business.id,
            name=business.name,
            admin_user_id=business.admin_user_id,
        )

    async def get_user(self, user_id: str) -> Optional[UserSummary]:
        result = await self._session.execute(
            select(User).where(User.id == user_id, User.is_active.is_(True))
        )
        user = result.scalar_one_or_none()
        if user is None:
            return None
        return _to_user_summary(user)

    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, UserSummary]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        result = await self._session.execute(select(User).where(User.id.in_(ids)))
        return {user.id: _to_user_summary(user) for user in result.scalars().all()}


class SqlAlchemyEquipmentCatalog(EquipmentCatalog):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_equipment(
        self, business_id: str, equipment_id: str
    ) -> Optional[EquipmentSummary]:
        result = await self._session.execute(
            select(Equipment).where(
                Equipment.id == equipment_id,
                Equipment.business_id == business_id,
                Equipment.is_active.is_(True),
                Equipment.is_deleted.is_(False),
            )
        )
        equipment = result.scalar_one_or_none()
        if equipment is None:
            return None
        return EquipmentSummary(
            id=equipment.id,
            business_id=equipment.business_id,
            name=equipment.name,
            category=equipment.category,
            unit_of_measure=equipment.unit_of_measure,
            default_unit_cost=equipment.unit_cost,
        )


def _items_to_json(items: Sequence[RequestedEquipmentItem]) -> List[Dict[str, Any]]:
    return [asdict(item) for item in items]


def _items_from_json(raw: Optional[List[Dict[str, Any]]]) -> Tuple[RequestedEquipmentItem, ...]:
    return tuple(
        RequestedEquipmentItem(
            equipment_id=entry["equipment_id"],
            equipment_name=entry.get("equipment_name", ""),
            equipment_category=entry.get("equipment_category", ""),
            unit_of_measure=entry.get("unit_of_measure", ""),
            quantity_requested=entry["quantity_requested"],
            estimated_unit_cost=entry.get("estimated_unit_cost") or 0.0,
            estimated_total_cost=entry.get("estimated_total_cost") or 0.0,
            quantity_approved=entry.get("quantity_approved") or 0.0,
            quantity_delivered=entry.get("quantity_delivered") or 0.0,
            notes=entry.get("notes"),
        )
        for entry in raw or []
    )


def _row_values(request: SupplyRequest) -> Dict[str, Any]:
    return {
        "business_id": request.business_id,
        "project_id": request.project_id,
        "requested_by": request.requested_by,
        "approved_by": request.approved_by,
        "description": request.description,
        "name": request.name,
        "requested_date": request.requested_date,
        "required_date": request.required_date,
        "status": request.status.value,
        "priority": request.priority.value,
        "requested_items": _items_to_json(request.items),
        "total_estimated_cost": request.total_estimated_cost,
        "total_approved_cost": request.total_approved_cost,
        "actual_cost": request.actual_cost,
        "approved_at": request.approved_at,
        "approval_notes": request.approval_notes,
        "rejection_reason": request.rejection_reason,
        "ordered_at": request.ordered_at,
        "expected_delivery_date": request.expected_delivery_date,
        "delivered_at": request.delivered_at,
        "delivery_notes": request.delivery_notes,
        "supplier_name": request.supplier_name,
        "supplier_contact": request.supplier_contact,
        "purchase_order_number": request.purchase_order_number,
        "cancelled_at": request.cancelled_at,
        "cancellation_reason": request.cancellation_reason,
        "is_deleted": request.is_deleted,
        "deleted_at": request.deleted_at,
        "deleted_by": request.deleted_by,
        "version": request.version,
        "created_at": request.created_at,
        "updated_at": request.updated_at,
    }


def _to_domain(row: SupplyRequestModel) -> SupplyRequest:
    return SupplyRequest(
        id=row.id,
        business_id=row.business_id,
        project_id=row.project_id,
        requested_by=row.requested_by,
        approved_by=row.approved_by,
        description=row.description,
        name=row.name,
        requested_date=row.requested_date,
        required_date=row.required_date,
        status=SupplyRequestStatus(row.status),
        priority=SupplyRequestPriority(row.priority),
        items=_items_from_json(row.requested_items),
        total_estimated_cost=row.total_estimated_cost or 0.0,
        total_approved_cost=row.total_approved_cost,
        actual_cost=row.actual_cost,
        approved_at=row.approved_at,
        approval_notes=row.approval_notes,
        rejection_reason=row.rejection_reason,
        ordered_at=row.ordered_at,
        expected_delivery_date=row.expected_delivery_date,
        delivered_at=row.delivered_at,
        delivery_notes=row.delivery_notes,
        supplier_name=row.supplier_name,
        supplier_contact=row.supplier_contact,
        purchase_order_number=row.purchase_order_number,
        cancelled_at=row.cancelled_at,
        cancellation_reason=row.cancellation_reason,
        is_deleted=row.is_deleted,
        deleted_at=row.deleted_at,
        deleted_by=row.deleted_by,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlAlchemySupplyRequestRepository(SupplyRequestRepository):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_request(
        self, project_id: str, request_id: str
    ) -> Optional[SupplyRequest]:
        result = await self._session.execute(
            select(SupplyRequestModel).where(
                SupplyRequestModel.id == request_id,
                SupplyRequestModel.project_id == project_id,
                SupplyRequestModel.is_deleted.is_(False),
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return _to_domain(row)

    async def add_request(self, request: SupplyRequest) -> None:
        self._session.add(SupplyRequestModel(id=request.id, **_row_values(request)))

    async def save_transition(
        self,
        request: SupplyRequest,
        expected_status: SupplyRequestStatus,
        expected_version: int,
    ) -> bool:
        result = await self._session.execute(
            update(SupplyRequestModel)
            .where(
                SupplyRequestModel.id == request.id,
                SupplyRequestModel.status == expected_status.value,
                SupplyRequestModel.version == expected_version,
                SupplyRequestModel.is_deleted.is_(False),
            )
            .values(**_row_values(request))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _filter_conditions(self, filters: RequestFilters) -> list:
        conditions = [
            SupplyRequestModel.project_id == filters.project_id,
            SupplyRequestModel.is_deleted.is_(False),
        ]
        if filters.status:
            conditions.append(SupplyRequestModel.status == filters.status.value)
        if filters.priority:
            conditions.append(SupplyRequestModel.priority == filters.priority.value)
        if filters.requested_by:
            conditions.append(SupplyRequestModel.requested_by == filters.requested_by)
        if filters.overdue_only:
            conditions.append(SupplyRequestModel.required_date < filters.now)
            conditions.append(SupplyRequestModel.status.not_in(_OVERDUE_EXEMPT_VALUES))
        return conditions

    async def list_requests(
        self, filters: RequestFilters
    ) -> Tuple[Sequence[SupplyRequest], int]:
        conditions = self._filter_conditions(filters)

        total_result = await self._session.execute(
            select(func.count(SupplyRequestModel.id)).where(and_(*conditions))
        )
        total = total_result.scalar() or 0

        result = await self._session.execute(
            select(SupplyRequestModel)
            .where(and_(*conditions))
            .order_by(desc(SupplyRequestModel.created_at))
            .limit(filters.limit)
            .offset(filters.offset)
        )
        return [_to_domain(row) for row in result.scalars().all()], total

    async def summarize_project(self, project_id: str, now: datetime) -> RequestSummary:
        live = and_(
            SupplyRequestModel.project_id == project_id,
            SupplyRequestModel.is_deleted.is_(False),
        )
        result = await self._session.execute(
            select(
                SupplyRequestModel.status,
                func.count(SupplyRequestModel.id),
                func.coalesce(func.sum(SupplyRequestModel.total_estimated_cost), 0),
                func.coalesce(func.sum(SupplyRequestModel.total_approved_cost), 0),
                func.coalesce(func.sum(SupplyRequestModel.actual_cost), 0),
                func.max(SupplyRequestModel.created_at),
            )
            .where(live)
            .group_by(SupplyRequestModel.status)
        )

        by_status = empty_status_counts()
        total = 0
        estimated = approved = actual = 0.0
        last_request_at = None
        for status, count, status_estimated, status_approved, status_actual, latest in result.all():
            by_status[status] = count
            total += count
            estimated += float(status_estimated)
            approved += float(status_approved)
            actual += float(status_actual)
            if latest is not None and (last_request_at is None or latest > last_request_at):
                last_request_at = latest

        overdue_result = await self._session.execute(
            select(func.count(SupplyRequestModel.id)).where(
                live,
                SupplyRequestModel.required_date < now,
                SupplyRequestModel.status.not_in(_OVERDUE_EXEMPT_VALUES),
            )
        )

        return RequestSummary(
            total_requests=total,
            requests_by_status=by_status,
            overdue_requests=overdue_result.scalar() or 0,
            total_estimated_cost=estimated,
            total_approved_cost=approved,
            total_actual_cost=actual,
            last_request_at=last_request_at,
        )

    async def list_project_requests(self, project_id: str) -> Sequence[SupplyRequest]:
        result = await self._session.execute(
            select(SupplyRequestModel)
            .where(
                SupplyRequestModel.project_id == project_id,
                SupplyRequestModel.is_deleted.is_(False),
            )
            .order_by(SupplyRequestModel.created_at)
        )
        return [_to_domain(row) for row in result.scalars().all()]

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()
