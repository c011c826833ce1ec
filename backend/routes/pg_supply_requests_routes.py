"""
PostgreSQL Supply Request Routes
Project scoped supply requests: create, edit, approve, reject, order, deliver, cancel, delete
"""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import AfterValidator, BaseModel, Field
from typing import Annotated, Callable, Dict, List, Optional
from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from database import get_postgres_session, app_settings, User
from app.supply_requests.application.enrichment import EquipmentItemInput
from app.supply_requests.application.ports import (
    AuditNotifier,
    EquipmentCatalog,
    ProjectDirectory,
    SupplyRequestRepository,
)
from app.supply_requests.application.use_cases import (
    ApproveSupplyRequestCommand,
    ApproveSupplyRequestUseCase,
    CancelSupplyRequestCommand,
    CancelSupplyRequestUseCase,
    CreateSupplyRequestCommand,
    CreateSupplyRequestUseCase,
    DeleteSupplyRequestCommand,
    DeleteSupplyRequestUseCase,
    GetSupplyRequestQuery,
    GetSupplyRequestUseCase,
    ListSupplyRequestsQuery,
    ListSupplyRequestsUseCase,
    MarkDeliveredCommand,
    MarkSupplyRequestDeliveredUseCase,
    PlaceSupplyOrderCommand,
    PlaceSupplyOrderUseCase,
    RejectSupplyRequestCommand,
    RejectSupplyRequestUseCase,
    SupplyRequestStatsQuery,
    SupplyRequestStatsUseCase,
    UpdateSupplyRequestCommand,
    UpdateSupplyRequestUseCase,
)
from app.supply_requests.domain.errors import (
    AccessDenied,
    DomainError,
    InvalidReference,
    InvalidState,
    NotFound,
    ValidationError,
)
from app.supply_requests.domain.models import SupplyRequestPriority, SupplyRequestStatus
from app.supply_requests.infrastructure.sqlalchemy_notifier import SqlAlchemyAuditNotifier
from app.supply_requests.infrastructure.sqlalchemy_repository import (
    SqlAlchemyEquipmentCatalog,
    SqlAlchemyProjectDirectory,
    SqlAlchemySupplyRequestRepository,
)
from app.supply_requests.presentation.response_mapper import (
    delete_result_to_response,
    page_to_response,
    stats_to_response,
    supply_request_to_response,
)

# Create router
pg_supply_requests_router = APIRouter(prefix="/api/pg", tags=["PostgreSQL Supply Requests"])

# Import auth dependency
from routes.pg_auth_routes import get_current_user_pg


# ==================== PYDANTIC MODELS ====================

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Naive timestamps from clients are taken as UTC
UtcDateTime = Annotated[datetime, AfterValidator(_as_utc)]


class EquipmentItemCreate(BaseModel):
    equipment_id: str
    quantity_requested: float
    estimated_unit_cost: Optional[float] = None
    notes: Optional[str] = None


class SupplyRequestCreate(BaseModel):
    description: str
    required_date: UtcDateTime
    items: List[EquipmentItemCreate]
    name: Optional[str] = None
    priority: Optional[SupplyRequestPriority] = None


class SupplyRequestUpdate(BaseModel):
    description: Optional[str] = None
    name: Optional[str] = None
    required_date: Optional[UtcDateTime] = None
    priority: Optional[SupplyRequestPriority] = None
    items: Optional[List[EquipmentItemCreate]] = None


class ApproveRequestData(BaseModel):
    approval_notes: Optional[str] = None
    expected_delivery_date: Optional[UtcDateTime] = None
    approved_quantities: Optional[Dict[str, float]] = None


class RejectRequestData(BaseModel):
    rejection_reason: str


class PlaceOrderData(BaseModel):
    supplier_name: Optional[str] = None
    supplier_contact: Optional[str] = None
    purchase_order_number: Optional[str] = None
    expected_delivery_date: Optional[UtcDateTime] = None


class DeliveryData(BaseModel):
    delivered_quantities: Optional[Dict[str, float]] = None
    delivery_notes: Optional[str] = None
    actual_cost: Optional[float] = Field(default=None, ge=0)
    supplier_name: Optional[str] = None


class CancelRequestData(BaseModel):
    reason: Optional[str] = None


# ==================== DEPENDENCIES ====================

def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SupplyRequestServices:
    repository: SupplyRequestRepository
    directory: ProjectDirectory
    catalog: EquipmentCatalog
    notifier: AuditNotifier
    id_generator: Callable[[], str] = new_id
    clock: Callable[[], datetime] = utc_now

    @property
    def common(self) -> dict:
        return {
            "repository": self.repository,
            "directory": self.directory,
            "notifier": self.notifier,
            "id_generator": self.id_generator,
            "clock": self.clock,
        }


async def get_supply_request_services(
    session: AsyncSession = Depends(get_postgres_session)
) -> SupplyRequestServices:
    """Wire the SQLAlchemy adapters onto the request session"""
    return SupplyRequestServices(
        repository=SqlAlchemySupplyRequestRepository(session),
        directory=SqlAlchemyProjectDirectory(session),
        catalog=SqlAlchemyEquipmentCatalog(session),
        notifier=SqlAlchemyAuditNotifier(session),
    )


# ==================== HELPER FUNCTIONS ====================

def to_http_exception(exc: DomainError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, AccessDenied):
        return HTTPException(status_code=403, detail=exc.message)
    if isinstance(exc, InvalidState):
        return HTTPException(status_code=409, detail=exc.message)
    if isinstance(exc, (ValidationError, InvalidReference)):
        return HTTPException(status_code=422, detail=exc.message)
    return HTTPException(status_code=400, detail=exc.message)


def to_item_inputs(items: List[EquipmentItemCreate]) -> List[EquipmentItemInput]:
    return [
        EquipmentItemInput(
            equipment_id=item.equipment_id,
            quantity_requested=item.quantity_requested,
            estimated_unit_cost=item.estimated_unit_cost,
            notes=item.notes,
        )
        for item in items
    ]


# ==================== SUPPLY REQUEST ROUTES ====================

@pg_supply_requests_router.post("/projects/{project_id}/supply-requests")
async def create_supply_request(
    project_id: str,
    request_data: SupplyRequestCreate,
    current_user: User = Depends(get_current_user_pg),
    services: SupplyRequestServices = Depends(get_supply_request_services)
):
    """Create a supply request - any project member"""
    use_case = CreateSupplyRequestUseCase(catalog=services.catalog, **services.common)
    command = CreateSupplyRequestCommand(
        project_id=project_id,
        description=request_data.description,
        required_date=request_data.required_date,
        items=to_item_inputs(request_data.items),
        name=request_data.name,
        priority=request_data.priority,
    )

    try:
        view = await use_case.execute(command, current_user.id)
    except DomainError as exc:
        raise to_http_exception(exc)

    return supply_request_to_response(view)


@pg_supply_requests_router.get("/projects/{project_id}/supply-requests")
async def list_supply_requests(
    project_id: str,
    status: Optional[SupplyRequestStatus] = None,
    priority: Optional[SupplyRequestPriority] = None,
    requested_by: Optional[str] = None,
    overdue_only: bool = False,
    page: int = 1,
    limit: int = app_settings.supply_requests_default_limit,
    current_user: User = Depends(get_current_user_pg),
    services: SupplyRequestServices = Depends(get_supply_request_services)
):
    """List supply requests of a project with pagination and a project summary"""
    use_case = ListSupplyRequestsUseCase(
        max_limit=app_settings.supply_requests_max_limit, **services.common
    )
    query = ListSupplyRequestsQuery(
        project_id=project_id,
        status=status,
        priority=priority,
        requested_by=requested_by,
        overdue_only=overdue_only,
        page=page,
        limit=limit,
    )

    try:
        result = await use_case.execute(query, current_user.id)
    except DomainError as exc:
        raise to_http_exception(exc)

    return page_to_response(result)


@pg_supply_requests_router.get("/projects/{project_id}/supply-requests/stats")
async def get_supply_request_stats(
    project_id: str,
    current_user: User = Depends(get_current_user_pg),
    services: SupplyRequestServices = Depends(get_supply_request_services)
):
    """Aggregated supply request statistics for a project"""
    use_case = SupplyRequestStatsUseCase(
        top_equipment_limit=app_settings.supply_requests_top_equipment, **services.common
    )

    try:
        stats = await use_case.execute(SupplyRequestStatsQuery(project_id=project_id), current_user.id)
    except DomainError as exc:
        raise to_http_exception(exc)

    return stats_to_response(stats)


@pg_supply_requests_router.get("/projects/{project_id}/supply-requests/{request_id}")
async def get_supply_request(
    project_id: str,
    request_id: str,
    current_user: User = Depends(get_current_user_pg),
    services: SupplyRequestServices = Depends(get_supply_request_services)
):
    """Get a single supply request"""
    use_case = GetSupplyRequestUseCase(**services.common)
    query = GetSupplyRequestQuery(project_id=project_id, request_id=request_id)

    try:
        view = await use_case.execute(query, current_user.id)
    except DomainError as exc:
        raise to_http_exception(exc)

    return supply_request_to_response(view)


@pg_supply_requests_router.put("/projects/{project_id}/supply-requests/{request_id}")
async def update_supply_request(
    project_id: str,
    request_id: str,
    update_data: SupplyRequestUpdate,
    current_user: User = Depends(get_current_user_pg),
    services: SupplyRequestServices = Depends(get_supply_request_services)
):
    """Edit a pending supply request - requester or business admin"""
    use_case = UpdateSupplyRequestUseCase(catalog=services.catalog, **services.common)
    command = UpdateSupplyRequestCommand(
        project_id=project_id,
        request_id=request_id,
        description=update_data.description,
        name=update_data.name,
        required_date=update_data.required_date,
        priority=update_data.priority,
        items=to_item_inputs(update_data.items) if update_data.items is not None else None,
    )

    try:
        view = await use_case.execute(command, current_user.id)
    except DomainError as exc:
        raise to_http_exception(exc)

    return supply_request_to_response(view)


@pg_supply_requests_router.post("/projects/{project_id}/supply-requests/{request_id}/approve")
async def approve_supply_request(
    project_id: str,
    request_id: str,
    approve_data: ApproveRequestData,
    current_user: User = Depends(get_current_user_pg),
    services: SupplyRequestServices = Depends(get_supply_request_services)
):
    """Approve a pending supply request - requester or business admin"""
    use_case = ApproveSupplyRequestUseCase(**services.common)
    command = ApproveSupplyRequestCommand(
        project_id=project_id,
        request_id=request_id,
        approval_notes=approve_data.approval_notes,
        expected_delivery_date=approve_data.expected_delivery_date,
        approved_quantities=approve_data.approved_quantities,
    )

    try:
        view = await use_case.execute(command, current_user.id)
    except DomainError as exc:
        raise to_http_exception(exc)

    return supply_request_to_response(view)


@pg_supply_requests_router.post("/projects/{project_id}/supply-requests/{request_id}/reject")
async def reject_supply_request(
    project_id: str,
    request_id: str,
    rejection_data: RejectRequestData,
    current_user: User = Depends(get_current_user_pg),
    services: SupplyRequestServices = Depends(get_supply_request_services)
):
    """Reject a pending supply request - requester or business admin"""
    use_case = RejectSupplyRequestUseCase(**services.common)
    command = RejectSupplyRequestCommand(
        project_id=project_id,
        request_id=request_id,
        rejection_reason=rejection_data.rejection_reason,
    )

    try:
        view = await use_case.execute(command, current_user.id)
    except DomainError as exc:
        raise to_http_exception(exc)

    return supply_request_to_response(view)


@pg_supply_requests_router.post("/projects/{project_id}/supply-requests/{request_id}/order")
async def order_supply_request(
    project_id: str,
    request_id: str,
    order_data: PlaceOrderData,
    current_user: User = Depends(get_current_user_pg),
    services: SupplyRequestServices = Depends(get_supply_request_services)
):
    """Record that an approved supply request was ordered from a supplier"""
    use_case = PlaceSupplyOrderUseCase(**services.common)
    command = PlaceSupplyOrderCommand(
        project_id=project_id,
        request_id=request_id,
        supplier_name=order_data.supplier_name,
        supplier_contact=order_data.supplier_contact,
        purchase_order_number=order_data.purchase_order_number,
        expected_delivery_date=order_data.expected_delivery_date,
    )

    try:
        view = await use_case.execute(command, current_user.id)
    except DomainError as exc:
        raise to_http_exception(exc)

    return supply_request_to_response(view)


@pg_supply_requests_router.post("/projects/{project_id}/supply-requests/{request_id}/deliver")
async def deliver_supply_request(
    project_id: str,
    request_id: str,
    delivery_data: DeliveryData,
    current_user: User = Depends(get_current_user_pg),
    services: SupplyRequestServices = Depends(get_supply_request_services)
):
    """Record a full or partial delivery"""
    use_case = MarkSupplyRequestDeliveredUseCase(**services.common)
    command = MarkDeliveredCommand(
        project_id=project_id,
        request_id=request_id,
        delivered_quantities=delivery_data.delivered_quantities,
        delivery_notes=delivery_data.delivery_notes,
        actual_cost=delivery_data.actual_cost,
        supplier_name=delivery_data.supplier_name,
    )

    try:
        view = await use_case.execute(command, current_user.id)
    except DomainError as exc:
        raise to_http_exception(exc)

    return supply_request_to_response(view)


@pg_supply_requests_router.post("/projects/{project_id}/supply-requests/{request_id}/cancel")
async def cancel_supply_request(
    project_id: str,
    request_id: str,
    cancel_data: CancelRequestData,
    current_user: User = Depends(get_current_user_pg),
    services: SupplyRequestServices = Depends(get_supply_request_services)
):
    """Cancel an approved or ordered supply request before anything arrives"""
    use_case = CancelSupplyRequestUseCase(**services.common)
    command = CancelSupplyRequestCommand(
        project_id=project_id,
        request_id=request_id,
        reason=cancel_data.reason,
    )

    try:
        view = await use_case.execute(command, current_user.id)
    except DomainError as exc:
        raise to_http_exception(exc)

    return supply_request_to_response(view)


@pg_supply_requests_router.delete("/projects/{project_id}/supply-requests/{request_id}")
async def delete_supply_request(
    project_id: str,
    request_id: str,
    current_user: User = Depends(get_current_user_pg),
    services: SupplyRequestServices = Depends(get_supply_request_services)
):
    """Soft delete a pending or rejected supply request - requester or business admin"""
    use_case = DeleteSupplyRequestUseCase(**services.common)
    command = DeleteSupplyRequestCommand(project_id=project_id, request_id=request_id)

    try:
        result = await use_case.execute(command, current_user.id)
    except DomainError as exc:
        raise to_http_exception(exc)

    return delete_result_to_response(result)
