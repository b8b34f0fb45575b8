"""
Docket state management for API integration.

Provides singleton access to the DocketService instance.
Initialized during FastAPI lifespan; the reminder loop is started there only
when DOCKET_AUTOSTART_REMINDERS is enabled.

Usage:
    from ._docket_state import get_docket_service, init_docket_service

    # In lifespan:
    init_docket_service(db_path)

    # In routers:
    service = get_docket_service()
"""

from pathlib import Path
from typing import Optional

from src.docket.notifications import NotificationGateway
from src.docket.service import DocketService


# Global docket service instance
_docket_service: Optional[DocketService] = None


def init_docket_service(
    db_path: str | Path,
    gateway: Optional[NotificationGateway] = None,
    **kwargs,
) -> DocketService:
    """
    Initialize the docket service singleton.

    Args:
        db_path: Path to SQLite database
        gateway: Notification transport; built from config if None
        **kwargs: Passed through to DocketService.create()

    Returns:
        Initialized DocketService (the existing one if already initialized)
    """
    global _docket_service

    if _docket_service is not None:
        return _docket_service

    _docket_service = DocketService.create(db_path=db_path, gateway=gateway, **kwargs)
    return _docket_service


def get_docket_service() -> DocketService:
    """
    Get the docket service singleton.

    Raises:
        RuntimeError: If docket service not initialized
    """
    if _docket_service is None:
        raise RuntimeError(
            "Docket service not initialized. "
            "Ensure init_docket_service() is called during startup."
        )

    return _docket_service


def shutdown_docket_service() -> None:
    """
    Shutdown the docket service.

    Stops the reminder loop if running.
    """
    global _docket_service

    if _docket_service is not None:
        if _docket_service.is_running:
            _docket_service.stop()

        _docket_service = None
