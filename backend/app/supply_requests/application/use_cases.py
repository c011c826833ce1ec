import enum
import logging
import math
from dataclasses import asdict, dataclass, is_dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from app.supply_requests.application.access import ProjectAccessValidator
from app.supply_requests.application.enrichment import EquipmentItemInput, enrich_items
from app.supply_requests.application.ports import (
    AuditNotifier,
    EquipmentCatalog,
    ProjectDirectory,
    SupplyRequestRepository,
)
from app.supply_requests.domain import lifecycle, statistics
from app.supply_requests.domain.errors import (
    DomainError,
    InvalidState,
    NotFound,
    ValidationError,
)
from app.supply_requests.domain.models import (
    AuditAction,
    AuditEvent,
    AuditSeverity,
    ProjectAccess,
    RequestFilters,
    RequestSummary,
    SupplyRequest,
    SupplyRequestPriority,
    SupplyRequestStats,
    SupplyRequestStatus,
    UserSummary,
)

logger = logging.getLogger(__name__)

IdGenerator = Callable[[], str]
Clock = Callable[[], datetime]

MAX_DESCRIPTION_LENGTH = 1000
MAX_NAME_LENGTH = 255


# ==================== COMMANDS & QUERIES ====================

@dataclass(frozen=True)
class CreateSupplyRequestCommand:
    project_id: str
    description: str
    required_date: datetime
    items: Sequence[EquipmentItemInput]
    name: Optional[str] = None
    priority: Optional[SupplyRequestPriority] = None


@dataclass(frozen=True)
class UpdateSupplyRequestCommand:
    project_id: str
    request_id: str
    description: Optional[str] = None
    name: Optional[str] = None
    required_date: Optional[datetime] = None
    priority: Optional[SupplyRequestPriority] = None
    items: Optional[Sequence[EquipmentItemInput]] = None


@dataclass(frozen=True)
class ApproveSupplyRequestCommand:
    project_id: str
    request_id: str
    approval_notes: Optional[str] = None
    expected_delivery_date: Optional[datetime] = None
    approved_quantities: Optional[Mapping[str, float]] = None


@dataclass(frozen=True)
class RejectSupplyRequestCommand:
    project_id: str
    request_id: str
    rejection_reason: str


@dataclass(frozen=True)
class PlaceSupplyOrderCommand:
    project_id: str
    request_id: str
    supplier_name: Optional[str] = None
    supplier_contact: Optional[str] = None
    purchase_order_number: Optional[str] = None
    expected_delivery_date: Optional[datetime] = None


@dataclass(frozen=True)
class MarkDeliveredCommand:
    project_id: str
    request_id: str
    delivered_quantities: Optional[Mapping[str, float]] = None
    delivery_notes: Optional[str] = None
    actual_cost: Optional[float] = None
    supplier_name: Optional[str] = None


@dataclass(frozen=True)
class CancelSupplyRequestCommand:
    project_id: str
    request_id: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class DeleteSupplyRequestCommand:
    project_id: str
    request_id: str


@dataclass(frozen=True)
class GetSupplyRequestQuery:
    project_id: str
    request_id: str


@dataclass(frozen=True)
class ListSupplyRequestsQuery:
    project_id: str
    status: Optional[SupplyRequestStatus] = None
    priority: Optional[SupplyRequestPriority] = None
    requested_by: Optional[str] = None
    overdue_only: bool = False
    page: int = 1
    limit: int = 20


@dataclass(frozen=True)
class SupplyRequestStatsQuery:
    project_id: str


# ==================== RESULTS ====================

@dataclass(frozen=True)
class SupplyRequestView:
    request: SupplyRequest
    now: datetime
    requester: Optional[UserSummary] = None
    approver: Optional[UserSummary] = None


@dataclass(frozen=True)
class SupplyRequestPage:
    requests: Sequence[SupplyRequestView]
    total: int
    page: int
    limit: int
    summary: RequestSummary

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1


@dataclass(frozen=True)
class DeleteResult:
    request_id: str
    deleted_at: datetime
    success: bool = True
    message: str = "Supply request deleted successfully"


# ==================== HELPERS ====================

def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value):
        return _jsonable(asdict(value))
    if isinstance(value, Mapping):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _validate_description(description: Optional[str]) -> str:
    if description is None or not description.strip():
        raise ValidationError("Description cannot be empty")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")
    return description


def _validate_name(name: Optional[str]) -> Optional[str]:
    if name is not None and len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Name cannot exceed {MAX_NAME_LENGTH} characters")
    return name


def _label(request: SupplyRequest) -> str:
    return request.name or "supply request"


class _SupplyRequestUseCase:
    def __init__(
        self,
        repository: SupplyRequestRepository,
        directory: ProjectDirectory,
        notifier: AuditNotifier,
        id_generator: IdGenerator,
        clock: Clock,
    ) -> None:
        self._repository = repository
        self._directory = directory
        self._notifier = notifier
        self._id_generator = id_generator
        self._clock = clock
        self._access = ProjectAccessValidator(directory)

    async def _load(self, project_id: str, request_id: str) -> SupplyRequest:
        request = await self._repository.get_request(project_id, request_id)
        if request is None or request.is_deleted:
            raise NotFound("Supply request not found")
        return request

    async def _persist(self, current: SupplyRequest, updated: SupplyRequest) -> SupplyRequest:
        persisted = replace(updated, version=current.version + 1)
        saved = await self._repository.save_transition(
            persisted,
            expected_status=current.status,
            expected_version=current.version,
        )
        if not saved:
            await self._repository.rollback()
            raise InvalidState("Supply request was modified concurrently, reload and retry")
        await self._repository.commit()
        return persisted

    def _event(
        self,
        access: ProjectAccess,
        request: SupplyRequest,
        action: AuditAction,
        description: str,
        severity: AuditSeverity = AuditSeverity.MEDIUM,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        return AuditEvent(
            id=self._id_generator(),
            actor_id=access.actor.id,
            action=action,
            resource_id=request.id,
            resource_name=request.name or "Supply Request",
            severity=severity,
            success=True,
            business_id=access.business.id,
            project_id=access.project.id,
            description=description,
            timestamp=self._clock(),
            metadata=_jsonable(
                {
                    "project_name": access.project.name,
                    "actor_name": access.actor.name,
                    "status": request.status,
                    **(metadata or {}),
                }
            ),
        )

    async def _notify(self, event: AuditEvent) -> None:
        # Audit sinks never decide the outcome of the primary write.
        try:
            await self._notifier.record(event)
        except Exception:
            logger.exception(
                "Failed to record audit event %s for supply request %s",
                event.action.value,
                event.resource_id,
            )

    async def _view(self, request: SupplyRequest) -> SupplyRequestView:
        user_ids = [request.requested_by]
        if request.approved_by:
            user_ids.append(request.approved_by)
        users = await self._directory.get_users(user_ids)
        return SupplyRequestView(
            request=request,
            now=self._clock(),
            requester=users.get(request.requested_by),
            approver=users.get(request.approved_by) if request.approved_by else None,
        )


# ==================== MUTATIONS ====================

class CreateSupplyRequestUseCase(_SupplyRequestUseCase):
    def __init__(
        self,
        repository: SupplyRequestRepository,
        directory: ProjectDirectory,
        catalog: EquipmentCatalog,
        notifier: AuditNotifier,
        id_generator: IdGenerator,
        clock: Clock,
    ) -> None:
        super().__init__(repository, directory, notifier, id_generator, clock)
        self._catalog = catalog

    async def execute(
        self,
        command: CreateSupplyRequestCommand,
        actor_id: str,
    ) -> SupplyRequestView:
        description = _validate_description(command.description)
        name = _validate_name(command.name)
        if command.required_date is None:
            raise ValidationError("Required date is required")

        access = None
        try:
            access = await self._access.require_member(command.project_id, actor_id)
            items = await enrich_items(self._catalog, access.business.id, command.items)

            now = self._clock()
            priority = command.priority or SupplyRequestPriority.MEDIUM
            request = SupplyRequest(
                id=self._id_generator(),
                business_id=access.business.id,
                project_id=access.project.id,
                requested_by=actor_id,
                description=description,
                name=name,
                requested_date=now,
                required_date=command.required_date,
                priority=priority,
                status=SupplyRequestStatus.PENDING,
                items=tuple(items),
                total_estimated_cost=lifecycle.total_estimated_cost(items),
                created_at=now,
                updated_at=now,
            )

            await self._repository.add_request(request)
            await self._repository.commit()
        except DomainError:
            raise
        except Exception as exc:
            await self._repository.rollback()
            await self._notify(
                AuditEvent(
                    id=self._id_generator(),
                    actor_id=actor_id,
                    action=AuditAction.CREATED,
                    resource_id=command.project_id,
                    resource_name="Supply request creation",
                    severity=AuditSeverity.HIGH,
                    success=False,
                    business_id=access.business.id if access else "",
                    project_id=command.project_id,
                    description="Error creating supply request",
                    timestamp=self._clock(),
                    metadata={"error_name": type(exc).__name__, "error_message": str(exc)},
                )
            )
            raise

        severity = (
            AuditSeverity.HIGH if priority == SupplyRequestPriority.URGENT else AuditSeverity.MEDIUM
        )
        await self._notify(
            self._event(
                access,
                request,
                AuditAction.CREATED,
                f"Requested supplies: {description}",
                severity=severity,
                metadata={
                    "priority": priority,
                    "total_items": len(items),
                    "total_estimated_cost": request.total_estimated_cost,
                },
            )
        )
        logger.info(
            "Supply request %s created for project %s by user %s",
            request.id,
            request.project_id,
            actor_id,
        )
        return SupplyRequestView(request=request, now=now, requester=access.actor)


class UpdateSupplyRequestUseCase(_SupplyRequestUseCase):
    def __init__(
        self,
        repository: SupplyRequestRepository,
        directory: ProjectDirectory,
        catalog: EquipmentCatalog,
        notifier: AuditNotifier,
        id_generator: IdGenerator,
        clock: Clock,
    ) -> None:
        super().__init__(repository, directory, notifier, id_generator, clock)
        self._catalog = catalog

    async def execute(
        self,
        command: UpdateSupplyRequestCommand,
        actor_id: str,
    ) -> SupplyRequestView:
        current = await self._load(command.project_id, command.request_id)
        access = await self._access.require_owner_or_admin(current, actor_id, "edit")
        lifecycle.require_status(
            current, lifecycle.EDITABLE_STATUSES, "Can only edit pending supply requests"
        )

        changes: Dict[str, Any] = {}
        if command.description is not None:
            changes["description"] = _validate_description(command.description)
        if command.name is not None:
            changes["name"] = _validate_name(command.name)
        if command.required_date is not None:
            changes["required_date"] = command.required_date
        if command.priority is not None:
            changes["priority"] = command.priority
        if command.items is not None:
            changes["items"] = await enrich_items(
                self._catalog, access.business.id, command.items
            )
        if not changes:
            raise ValidationError("No fields to update")

        updated = lifecycle.revise(current, self._clock(), changes)

        old_values: Dict[str, Any] = {}
        new_values: Dict[str, Any] = {}
        tracked = list(changes)
        if "items" in changes:
            tracked.append("total_estimated_cost")
        for field_name in tracked:
            before = getattr(current, field_name)
            after = getattr(updated, field_name)
            if before != after:
                old_values[field_name] = before
                new_values[field_name] = after

        persisted = await self._persist(current, updated)

        await self._notify(
            self._event(
                access,
                persisted,
                AuditAction.UPDATED,
                f"Updated {_label(persisted)}",
                metadata={
                    "changed_fields": sorted(new_values),
                    "old_values": old_values,
                    "new_values": new_values,
                },
            )
        )
        logger.info("Supply request %s updated by user %s", persisted.id, actor_id)
        return await self._view(persisted)


class ApproveSupplyRequestUseCase(_SupplyRequestUseCase):
    async def execute(
        self,
        command: ApproveSupplyRequestCommand,
        actor_id: str,
    ) -> SupplyRequestView:
        current = await self._load(command.project_id, command.request_id)
        access = await self._access.require_owner_or_admin(current, actor_id, "approve")

        updated = lifecycle.approve(
            current,
            approver_id=actor_id,
            now=self._clock(),
            approved_quantities=command.approved_quantities,
            approval_notes=command.approval_notes,
            expected_delivery_date=command.expected_delivery_date,
        )
        persisted = await self._persist(current, updated)

        await self._notify(
            self._event(
                access,
                persisted,
                AuditAction.APPROVED,
                f"Approved {_label(persisted)}",
                metadata={
                    "total_approved_cost": persisted.total_approved_cost,
                    "approval_notes": persisted.approval_notes,
                },
            )
        )
        logger.info("Supply request %s approved by user %s", persisted.id, actor_id)
        return await self._view(persisted)


class RejectSupplyRequestUseCase(_SupplyRequestUseCase):
    async def execute(
        self,
        command: RejectSupplyRequestCommand,
        actor_id: str,
    ) -> SupplyRequestView:
        current = await self._load(command.project_id, command.request_id)
        access = await self._access.require_owner_or_admin(current, actor_id, "reject")

        updated = lifecycle.reject(
            current,
            rejecter_id=actor_id,
            now=self._clock(),
            rejection_reason=command.rejection_reason,
        )
        persisted = await self._persist(current, updated)

        await self._notify(
            self._event(
                access,
                persisted,
                AuditAction.REJECTED,
                f"Rejected {_label(persisted)}",
                metadata={"rejection_reason": persisted.rejection_reason},
            )
        )
        logger.info("Supply request %s rejected by user %s", persisted.id, actor_id)
        return await self._view(persisted)


class PlaceSupplyOrderUseCase(_SupplyRequestUseCase):
    async def execute(
        self,
        command: PlaceSupplyOrderCommand,
        actor_id: str,
    ) -> SupplyRequestView:
        current = await self._load(command.project_id, command.request_id)
        access = await self._access.require_member(command.project_id, actor_id)

        updated = lifecycle.place_order(
            current,
            now=self._clock(),
            supplier_name=command.supplier_name,
            supplier_contact=command.supplier_contact,
            purchase_order_number=command.purchase_order_number,
            expected_delivery_date=command.expected_delivery_date,
        )
        persisted = await self._persist(current, updated)

        await self._notify(
            self._event(
                access,
                persisted,
                AuditAction.ORDERED,
                f"Ordered {_label(persisted)}",
                metadata={
                    "supplier_name": persisted.supplier_name,
                    "purchase_order_number": persisted.purchase_order_number,
                },
            )
        )
        logger.info("Supply request %s ordered by user %s", persisted.id, actor_id)
        return await self._view(persisted)


class MarkSupplyRequestDeliveredUseCase(_SupplyRequestUseCase):
    async def execute(
        self,
        command: MarkDeliveredCommand,
        actor_id: str,
    ) -> SupplyRequestView:
        current = await self._load(command.project_id, command.request_id)
        access = await self._access.require_member(command.project_id, actor_id)

        updated = lifecycle.record_delivery(
            current,
            now=self._clock(),
            delivered_quantities=command.delivered_quantities,
            delivery_notes=command.delivery_notes,
            actual_cost=command.actual_cost,
            supplier_name=command.supplier_name,
        )
        persisted = await self._persist(current, updated)

        fully_delivered = persisted.status == SupplyRequestStatus.DELIVERED
        await self._notify(
            self._event(
                access,
                persisted,
                AuditAction.DELIVERED,
                f"{'Completed' if fully_delivered else 'Partially delivered'} {_label(persisted)}",
                metadata={
                    "actual_cost": persisted.actual_cost,
                    "supplier_name": persisted.supplier_name,
                    "fully_delivered": fully_delivered,
                    "completion_percentage": lifecycle.completion_percentage(persisted),
                },
            )
        )
        logger.info(
            "Supply request %s marked as %s by user %s",
            persisted.id,
            "delivered" if fully_delivered else "partially delivered",
            actor_id,
        )
        return await self._view(persisted)


class CancelSupplyRequestUseCase(_SupplyRequestUseCase):
    async def execute(
        self,
        command: CancelSupplyRequestCommand,
        actor_id: str,
    ) -> SupplyRequestView:
        current = await self._load(command.project_id, command.request_id)
        access = await self._access.require_owner_or_admin(current, actor_id, "cancel")

        updated = lifecycle.cancel(current, now=self._clock(), reason=command.reason)
        persisted = await self._persist(current, updated)

        await self._notify(
            self._event(
                access,
                persisted,
                AuditAction.CANCELLED,
                f"Cancelled {_label(persisted)}",
                metadata={"cancellation_reason": persisted.cancellation_reason},
            )
        )
        logger.info("Supply request %s cancelled by user %s", persisted.id, actor_id)
        return await self._view(persisted)


class DeleteSupplyRequestUseCase(_SupplyRequestUseCase):
    async def execute(
        self,
        command: DeleteSupplyRequestCommand,
        actor_id: str,
    ) -> DeleteResult:
        current = await self._load(command.project_id, command.request_id)
        access = await self._access.require_owner_or_admin(current, actor_id, "delete")

        updated = lifecycle.soft_delete(current, actor_id=actor_id, now=self._clock())
        persisted = await self._persist(current, updated)

        await self._notify(
            self._event(
                access,
                persisted,
                AuditAction.DELETED,
                f"Removed {_label(persisted)} from project",
                metadata={
                    "request_description": persisted.description,
                    "priority": persisted.priority,
                    "requester_id": persisted.requested_by,
                },
            )
        )
        logger.info(
            "Supply request %s deleted for project %s by user %s",
            persisted.id,
            persisted.project_id,
            actor_id,
        )
        return DeleteResult(request_id=persisted.id, deleted_at=persisted.deleted_at)


# ==================== QUERIES ====================

class GetSupplyRequestUseCase(_SupplyRequestUseCase):
    async def execute(self, query: GetSupplyRequestQuery, actor_id: str) -> SupplyRequestView:
        await self._access.require_member(query.project_id, actor_id)
        request = await self._load(query.project_id, query.request_id)
        return await self._view(request)


class ListSupplyRequestsUseCase(_SupplyRequestUseCase):
    def __init__(
        self,
        repository: SupplyRequestRepository,
        directory: ProjectDirectory,
        notifier: AuditNotifier,
        id_generator: IdGenerator,
        clock: Clock,
        max_limit: int = 100,
    ) -> None:
        super().__init__(repository, directory, notifier, id_generator, clock)
        self._max_limit = max_limit

    async def execute(self, query: ListSupplyRequestsQuery, actor_id: str) -> SupplyRequestPage:
        await self._access.require_member(query.project_id, actor_id)

        page = max(1, query.page)
        limit = max(1, min(query.limit, self._max_limit))
        now = self._clock()
        filters = RequestFilters(
            project_id=query.project_id,
            now=now,
            status=query.status,
            priority=query.priority,
            requested_by=query.requested_by,
            overdue_only=query.overdue_only,
            limit=limit,
            offset=(page - 1) * limit,
        )

        requests, total = await self._repository.list_requests(filters)
        summary = await self._repository.summarize_project(query.project_id, now)

        user_ids = set()
        for request in requests:
            user_ids.add(request.requested_by)
            if request.approved_by:
                user_ids.add(request.approved_by)
        users = await self._directory.get_users(user_ids) if user_ids else {}

        views = [
            SupplyRequestView(
                request=request,
                now=now,
                requester=users.get(request.requested_by),
                approver=users.get(request.approved_by) if request.approved_by else None,
            )
            for request in requests
        ]
        return SupplyRequestPage(
            requests=views,
            total=total,
            page=page,
            limit=limit,
            summary=summary,
        )


class SupplyRequestStatsUseCase(_SupplyRequestUseCase):
    def __init__(
        self,
        repository: SupplyRequestRepository,
        directory: ProjectDirectory,
        notifier: AuditNotifier,
        id_generator: IdGenerator,
        clock: Clock,
        top_equipment_limit: int = statistics.TOP_EQUIPMENT_LIMIT,
    ) -> None:
        super().__init__(repository, directory, notifier, id_generator, clock)
        self._top_equipment_limit = top_equipment_limit

    async def execute(self, query: SupplyRequestStatsQuery, actor_id: str) -> SupplyRequestStats:
        await self._access.require_member(query.project_id, actor_id)

        summary = await self._repository.summarize_project(query.project_id, self._clock())
        requests = await self._repository.list_project_requests(query.project_id)

        return SupplyRequestStats(
            summary=summary,
            requests_by_priority=statistics.count_by_priority(requests),
            top_requested_equipment=statistics.top_requested_equipment(
                requests, limit=self._top_equipment_limit
            ),
            average_approval_days=statistics.average_approval_days(requests),
            average_delivery_days=statistics.average_delivery_days(requests),
        )
