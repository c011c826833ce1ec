from app.supply_requests.application.ports import ProjectDirectory
from app.supply_requests.domain.errors import AccessDenied, NotFound
from app.supply_requests.domain.models import ProjectAccess, SupplyRequest


class ProjectAccessValidator:
    """Resolves the project -> business -> actor chain for a command."""

    def __init__(self, directory: ProjectDirectory) -> None:
        self._directory = directory

    async def resolve(self, project_id: str, actor_id: str) -> ProjectAccess:
        project = await self._directory.get_project(project_id)
        if project is None:
            raise NotFound("Project not found")

        business = await self._directory.get_business(project.business_id)
        if business is None:
            raise NotFound("Business not found")

        actor = await self._directory.get_user(actor_id)
        if actor is None:
            raise NotFound("User not found")

        return ProjectAccess(
            project=project,
            business=business,
            actor=actor,
            is_assigned=actor_id in project.assigned_user_ids,
            is_business_admin=business.admin_user_id == actor_id,
        )

    async def require_member(self, project_id: str, actor_id: str) -> ProjectAccess:
        access = await self.resolve(project_id, actor_id)
        if not access.is_member:
            raise AccessDenied("You are not assigned to this project")
        return access

    async def require_owner_or_admin(
        self, request: SupplyRequest, actor_id: str, action: str
    ) -> ProjectAccess:
        access = await self.resolve(request.project_id, actor_id)
        if request.requested_by != actor_id and not access.is_business_admin:
            raise AccessDenied(
                f"Only the requester or the business administrator can {action} this supply request"
            )
        return access
