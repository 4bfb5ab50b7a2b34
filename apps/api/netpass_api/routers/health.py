"""Liveness and readiness probes for the portal backend."""

import logging

from fastapi import APIRouter, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from netpass_api.config.env import get_paystack_secret_key
from netpass_api.db.session import get_engine

router = APIRouter()
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


class HealthResponse(BaseModel):
    status: str
    version: str
    services: dict[str, str]


def check_database() -> str:
    """Run ``SELECT 1`` against the engine; "up" or ``down: <ErrorType>``."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error("DB_HEALTH_CHECK_FAILED", extra={"error_type": type(e).__name__})
        return f"down: {type(e).__name__}"
    return "up"


def check_gateway_config() -> str:
    # Config only; probes never call Paystack.
    try:
        get_paystack_secret_key()
    except ValueError:
        return "down: PAYSTACK_SECRET_KEY not set"
    return "configured"


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness: always 200, database state reported for information."""
    return HealthResponse(
        status="healthy",
        version=VERSION,
        services={"api": "up", "database": check_database()},
    )


@router.get("/readyz", response_model=HealthResponse)
async def readiness_check(response: Response) -> HealthResponse:
    """Readiness: 503 until the database answers and the gateway is configured."""
    services = {
        "api": "up",
        "database": check_database(),
        "gateway": check_gateway_config(),
    }
    ready = not any(state.startswith("down") for state in services.values())
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthResponse(status="ready" if ready else "not_ready", version=VERSION, services=services)
