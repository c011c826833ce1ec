import asyncio
import itertools
from datetime import datetime, timedelta, timezone

from app.supply_requests.application.use_cases import (
    CreateSupplyRequestUseCase,
    UpdateSupplyRequestUseCase,
)
from app.supply_requests.domain import statistics
from app.supply_requests.domain.lifecycle import is_overdue
from app.supply_requests.domain.models import (
    BusinessSummary,
    EquipmentSummary,
    ProjectSummary,
    RequestSummary,
    UserSummary,
)

NOW = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)

PROJECT_ID = "project-1"
BUSINESS_ID = "business-1"
REQUESTER_ID = "requester-1"
MEMBER_ID = "member-2"
ADMIN_ID = "admin-1"
OUTSIDER_ID = "outsider-9"


def run(coro):
    return asyncio.run(coro)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


class FakeProjectDirectory:
    def __init__(self) -> None:
        self.projects = {}
        self.businesses = {}
        self.users = {}

    async def get_project(self, project_id):
        return self.projects.get(project_id)

    async def get_business(self, business_id):
        return self.businesses.get(business_id)

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def get_users(self, user_ids):
        return {user_id: self.users[user_id] for user_id in user_ids if user_id in self.users}


class FakeEquipmentCatalog:
    def __init__(self) -> None:
        self.equipment = {}

    async def get_equipment(self, business_id, equipment_id):
        equipment = self.equipment.get(equipment_id)
        if equipment is None or equipment.business_id != business_id:
            return None
        return equipment


class FakeSupplyRequestRepository:
    def __init__(self) -> None:
        self.requests = {}
        self.commits = 0
        self.rollbacks = 0
        self.conflict_on_save = False
        self.fail_on_commit = None
        self.last_filters = None

    async def get_request(self, project_id, request_id):
        request = self.requests.get(request_id)
        if request is None or request.project_id != project_id or request.is_deleted:
            return None
        return request

    async def add_request(self, request):
        self.requests[request.id] = request

    async def save_transition(self, request, expected_status, expected_version):
        stored = self.requests.get(request.id)
        if (
            self.conflict_on_save
            or stored is None
            or stored.is_deleted
            or stored.status != expected_status
            or stored.version != expected_version
        ):
            return False
        self.requests[request.id] = request
        return True

    def _project_requests(self, project_id):
        return [
            request
            for request in self.requests.values()
            if request.project_id == project_id and not request.is_deleted
        ]

    async def list_requests(self, filters):
        self.last_filters = filters
        matches = [
            request
            for request in self._project_requests(filters.project_id)
            if (filters.status is None or request.status == filters.status)
            and (filters.priority is None or request.priority == filters.priority)
            and (filters.requested_by is None or request.requested_by == filters.requested_by)
            and (not filters.overdue_only or is_overdue(request, filters.now))
        ]
        matches.sort(key=lambda request: request.created_at, reverse=True)
        return matches[filters.offset:filters.offset + filters.limit], len(matches)

    async def summarize_project(self, project_id, now):
        live = self._project_requests(project_id)
        by_status = statistics.empty_status_counts()
        for request in live:
            by_status[request.status.value] += 1
        return RequestSummary(
            total_requests=len(live),
            requests_by_status=by_status,
            overdue_requests=sum(1 for request in live if is_overdue(request, now)),
            total_estimated_cost=sum(request.total_estimated_cost or 0 for request in live),
            total_approved_cost=sum(request.total_approved_cost or 0 for request in live),
            total_actual_cost=sum(request.actual_cost or 0 for request in live),
            last_request_at=max((request.created_at for request in live), default=None),
        )

    async def list_project_requests(self, project_id):
        return sorted(self._project_requests(project_id), key=lambda request: request.created_at)

    async def commit(self):
        if self.fail_on_commit is not None:
            raise self.fail_on_commit
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1


class FakeAuditNotifier:
    def __init__(self) -> None:
        self.events = []
        self.fail = False

    async def record(self, event):
        if self.fail:
            raise RuntimeError("audit store unavailable")
        self.events.append(event)


class SupplyRequestWorld:
    """One business with one project, four users and a small equipment catalog."""

    def __init__(self) -> None:
        self.directory = FakeProjectDirectory()
        self.catalog = FakeEquipmentCatalog()
        self.repository = FakeSupplyRequestRepository()
        self.notifier = FakeAuditNotifier()
        self.clock = FakeClock()
        counter = itertools.count(1)
        self.id_generator = lambda: f"id-{next(counter)}"

        self.directory.businesses[BUSINESS_ID] = BusinessSummary(
            id=BUSINESS_ID, name="Acme Builders", admin_user_id=ADMIN_ID
        )
        self.directory.businesses["business-2"] = BusinessSummary(
            id="business-2", name="Other Co", admin_user_id="other-admin"
        )
        self.directory.projects[PROJECT_ID] = ProjectSummary(
            id=PROJECT_ID,
            name="Riverside Tower",
            business_id=BUSINESS_ID,
            assigned_user_ids=(REQUESTER_ID, MEMBER_ID),
        )
        for user_id, name in (
            (REQUESTER_ID, "Rita Requester"),
            (MEMBER_ID, "Mo Member"),
            (ADMIN_ID, "Ada Admin"),
            (OUTSIDER_ID, "Otto Outsider"),
        ):
            self.directory.users[user_id] = UserSummary(
                id=user_id, name=name, email=f"{user_id}@example.com"
            )

        self.catalog.equipment["cement"] = EquipmentSummary(
            id="cement",
            business_id=BUSINESS_ID,
            name="Cement bag",
            category="materials",
            unit_of_measure="bags",
            default_unit_cost=10.0,
        )
        self.catalog.equipment["rebar"] = EquipmentSummary(
            id="rebar",
            business_id=BUSINESS_ID,
            name="Rebar 12mm",
            category="materials",
            unit_of_measure="pieces",
            default_unit_cost=5.0,
        )
        self.catalog.equipment["drill"] = EquipmentSummary(
            id="drill",
            business_id=BUSINESS_ID,
            name="Hammer drill",
            category="tools",
            unit_of_measure="pieces",
            default_unit_cost=None,
        )
        self.catalog.equipment["foreign"] = EquipmentSummary(
            id="foreign",
            business_id="business-2",
            name="Crane",
            category="machinery",
            unit_of_measure="units",
            default_unit_cost=900.0,
        )

    def use_case(self, use_case_class, **kwargs):
        if use_case_class in (CreateSupplyRequestUseCase, UpdateSupplyRequestUseCase):
            kwargs["catalog"] = self.catalog
        return use_case_class(
            repository=self.repository,
            directory=self.directory,
            notifier=self.notifier,
            id_generator=self.id_generator,
            clock=self.clock,
            **kwargs,
        )
