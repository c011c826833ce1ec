from datetime import datetime
from typing import Dict, Iterable, Optional, Protocol, Sequence, Tuple

from app.supply_requests.domain.models import (
    AuditEvent,
    BusinessSummary,
    EquipmentSummary,
    ProjectSummary,
    RequestFilters,
    RequestSummary,
    SupplyRequest,
    SupplyRequestStatus,
    UserSummary,
)


class ProjectDirectory(Protocol):
    async def get_project(self, project_id: str) -> Optional[ProjectSummary]:
        ...

    async def get_business(self, business_id: str) -> Optional[BusinessSummary]:
        ...

    async def get_user(self, user_id: str) -> Optional[UserSummary]:
        ...

    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, UserSummary]:
        ...


class EquipmentCatalog(Protocol):
    async def get_equipment(
        self, business_id: str, equipment_id: str
    ) -> Optional[EquipmentSummary]:
        """Return active, non-deleted equipment owned by the business."""
        ...


class SupplyRequestRepository(Protocol):
    async def get_request(
        self, project_id: str, request_id: str
    ) -> Optional[SupplyRequest]:
        ...

    async def add_request(self, request: SupplyRequest) -> None:
        ...

    async def save_transition(
        self,
        request: SupplyRequest,
        expected_status: SupplyRequestStatus,
        expected_version: int,
    ) -> bool:
        """Persist only if the stored row still has the expected status and version."""
        ...

    async def list_requests(
        self, filters: RequestFilters
    ) -> Tuple[Sequence[SupplyRequest], int]:
        ...

    async def summarize_project(self, project_id: str, now: datetime) -> RequestSummary:
        ...

    async def list_project_requests(self, project_id: str) -> Sequence[SupplyRequest]:
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


class AuditNotifier(Protocol):
    async def record(self, event: AuditEvent) -> None:
        ...
