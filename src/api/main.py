"""
FastAPI application entry point.

HTTP surface for the trial docket: cases, reschedule negotiations,
admin proposals, the calendar and the reminder loop control plane.

Optional API key authentication (API_AUTH_ENABLED / API_KEY).
"""

import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

from fastapi import Depends, FastAPI  # noqa: E402

from src import __version__  # noqa: E402
from src.docket import config  # noqa: E402
from src.infra.logging_config import setup_logging  # noqa: E402
from .routers import cases, reschedule_requests, proposals, reminders, calendar  # noqa: E402
from .dependencies.auth import verify_api_key  # noqa: E402
from ._docket_state import (  # noqa: E402
    init_docket_service,
    shutdown_docket_service,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup: logging, docket service, and the reminder loop when
    DOCKET_AUTOSTART_REMINDERS is enabled.
    Shutdown: stops the reminder loop.
    """
    logger = setup_logging(os.getenv("LOG_LEVEL", "INFO").upper())

    service = init_docket_service(config.get_default_db_path())
    if config.AUTOSTART_REMINDERS and not service.is_running:
        stats = service.start(run_recovery=True, blocking=False)
        logger.info(f"Reminder loop autostarted (recovery: {stats})")

    yield

    shutdown_docket_service()


# Tag metadata for Swagger UI
tags_metadata = [
    {
        "name": "cases",
        "description": "Case filing, juror applications, trial window and attorney reschedule requests",
    },
    {
        "name": "reschedule-requests",
        "description": "Admin review of attorney reschedule requests - approve or reject",
    },
    {
        "name": "proposals",
        "description": "Admin-offered alternate slots - offer, confirm or decline",
    },
    {
        "name": "calendar",
        "description": "Slot checks, free-slot listings and admin calendar blocks",
    },
    {
        "name": "reminders",
        "description": "Reminder loop control plane - manual tick, start, stop and status",
    },
]

app = FastAPI(
    title="Trial Docket API",
    lifespan=lifespan,
    description="""
## Trial Docket API

Scheduling and reschedule negotiation for small-claims trials.

### Authentication
When `API_AUTH_ENABLED=true`, all endpoints except `/health` require
an `X-API-Key` header matching the `API_KEY` environment variable.

### Errors
Docket errors return `{"detail": {"code": ..., "message": ...}}`:
- 400 `VALIDATION_ERROR`, `MISSING_REASON`
- 404 `NOT_FOUND`
- 409 `SLOT_UNAVAILABLE`, `DUPLICATE_PENDING_REQUEST`, `ALREADY_RESOLVED`

### Usage
```bash
# Start server
uvicorn src.api.main:app --host 127.0.0.1 --port 8000

# File a case
curl -X POST http://localhost:8000/cases \\
  -H "Content-Type: application/json" \\
  -d '{"title": "Smith v. Jones", "attorney_id": "att-1", "resource_pool": "travis",
       "scheduled_date": "2026-11-03", "scheduled_time": "09:30", "state": "Texas"}'
```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)


# Health check - NO authentication (operational endpoint)
@app.get("/health")
async def health_check():
    """Health check endpoint. Not authenticated."""
    return {"status": "ok", "version": __version__}


# All docket routers pass through the API key check (a no-op unless enabled)
auth_dependency = [Depends(verify_api_key)]

app.include_router(
    cases.router, prefix="/cases", tags=["cases"], dependencies=auth_dependency
)
app.include_router(
    proposals.router, prefix="/cases", tags=["proposals"], dependencies=auth_dependency
)
app.include_router(
    reschedule_requests.router,
    prefix="/reschedule-requests",
    tags=["reschedule-requests"],
    dependencies=auth_dependency,
)
app.include_router(
    reminders.router, prefix="/reminders", tags=["reminders"], dependencies=auth_dependency
)
app.include_router(
    calendar.router, prefix="/calendar", tags=["calendar"], dependencies=auth_dependency
)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
