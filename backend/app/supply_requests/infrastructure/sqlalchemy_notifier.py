from sqlalchemy.ext.asyncio import AsyncSession

from app.supply_requests.application.ports import AuditNotifier
from app.supply_requests.domain.models import AuditEvent
from database import AppActivity, AuditLog


class SqlAlchemyAuditNotifier(AuditNotifier):
    """Writes one audit log row and, for successful actions, one activity row.

    Runs in its own transaction after the supply request write has been
    committed, so a failure here only loses the notification.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(self, event: AuditEvent) -> None:
        self._session.add(
            AuditLog(
                id=event.id,
                business_id=event.business_id or None,
                user_id=event.actor_id,
                action=event.action.value,
                resource_type="supply_request",
                resource_id=event.resource_id,
                resource_name=event.resource_name,
                success=event.success,
                severity=event.severity.value,
                description=event.description,
                details=dict(event.metadata),
                timestamp=event.timestamp,
            )
        )
        if event.success:
            self._session.add(
                AppActivity(
                    business_id=event.business_id or None,
                    user_id=event.actor_id,
                    type=event.action.value,
                    description=event.description,
                    project_id=event.project_id,
                    resource_type="supply_request",
                    resource_id=event.resource_id,
                    resource_name=event.resource_name,
                    data=dict(event.metadata),
                    created_at=event.timestamp,
                )
            )
        try:
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise
