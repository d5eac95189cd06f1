"""
Dependency injection for FastAPI endpoints.

The API runs in the same process as the monitor; ``profile-monitor run``
registers the live MonitorService and Database here at startup.
"""

from fastapi import HTTPException

from src.monitor.service import MonitorService
from src.storage.database import Database

# Global instances (registered by the process that owns them)
_monitor_service: MonitorService | None = None
_database: Database | None = None


def set_monitor_service(service: MonitorService | None) -> None:
    global _monitor_service
    _monitor_service = service


def set_database(database: Database | None) -> None:
    global _database
    _database = database


async def get_monitor_service() -> MonitorService:
    """Get the running monitor, or 503 when none is registered."""
    if _monitor_service is None:
        raise HTTPException(status_code=503, detail="Monitor service not available")
    return _monitor_service


async def get_database() -> Database | None:
    """Get the shared database, if one is registered."""
    return _database


def cleanup_dependencies() -> None:
    """Forget registered instances. Their owner closes them."""
    set_monitor_service(None)
    set_database(None)
