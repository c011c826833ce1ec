"""
Database package for PostgreSQL integration
"""
from .config import postgres_settings, app_settings
from .connection import (
    Base,
    get_engine,
    get_session_maker,
    init_postgres_db,
    get_postgres_session,
    close_postgres_db
)
from .models import (
    User,
    Business,
    Project,
    Equipment,
    SupplyRequest,
    AuditLog,
    AppActivity
)

__all__ = [
    # Config
    "postgres_settings",
    "app_settings",
    # Connection
    "Base",
    "get_engine",
    "get_session_maker",
    "init_postgres_db",
    "get_postgres_session",
    "close_postgres_db",
    # Models
    "User",
    "Business",
    "Project",
    "Equipment",
    "SupplyRequest",
    "AuditLog",
    "AppActivity"
]
