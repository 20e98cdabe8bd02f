"""Health check endpoint with store backend and database connectivity."""

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from waitlist.api.deps import get_app_settings, get_store
from waitlist.core.config import Settings
from waitlist.core.database import check_db_connection
from waitlist.services.sql_store import SqlSubscriberStore
from waitlist.services.subscriber_store import SubscriberStore

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    store: str
    database: str = "not_configured"


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Database is unreachable"},
    },
)
async def health_check(
    response: Response,
    settings: Settings = Depends(get_app_settings),
    store: SubscriberStore = Depends(get_store),
) -> HealthResponse:
    """
    Health check endpoint.

    Reports the subscriber store backend and, for the SQL backend, whether
    the database answers. Returns 503 if it does not.
    """
    if not isinstance(store, SqlSubscriberStore):
        return HealthResponse(status="healthy", version=settings.app_version, store=store.backend)

    db_healthy = await check_db_connection(store.engine)

    # Set appropriate status code for container orchestration
    if not db_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if db_healthy else "unhealthy",
        version=settings.app_version,
        store=store.backend,
        database="connected" if db_healthy else "disconnected",
    )
