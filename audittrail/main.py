"""
FastAPI application accepting audit records from other processes.
Validates each record and hands it to the audit dispatcher.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import Body, FastAPI, HTTPException, status
from pydantic import BaseModel, Field

from audittrail.config import settings
from audittrail.dispatcher import AuditDispatcherClosedError, close_dispatcher, get_dispatcher
from audittrail.scope import AuditRecordError, AuditScope, AuditSerializationError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class AcceptedResponse(BaseModel):
    """Response model for an accepted audit record."""

    accepted: bool = Field(True, description="The record was queued for delivery")
    name: str = Field(..., description="Name of the root scope")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    environment: str
    dispatcher: dict


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Starting audit trail API")
    logger.info(f"Environment: {settings.environment}")

    yield

    logger.info("Shutting down audit trail API")
    close_dispatcher()


app = FastAPI(
    title="Audit Trail API",
    description="Collects structured per-operation audit trails and forwards them to a log sink",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {"message": "Audit Trail API", "version": "1.0.0", "docs": "/docs"}


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """
    Health check endpoint.
    Returns service status and dispatcher delivery state.
    """
    return HealthResponse(
        status="healthy",
        environment=settings.environment,
        dispatcher=get_dispatcher().get_state(),
    )


@app.post(
    "/audit",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Audit"],
)
def submit_audit(record: dict[str, Any] = Body(...)):
    """
    Submit one finished audit trail.

    The body is the serialized root scope:

    ```json
    {
        "time": "2026-10-19T09:30:00.000000+00:00",
        "name": "login",
        "duration": 0.0042,
        "events": [
            {"log": {"time": "2026-10-19T09:30:00.001000+00:00", "name": "start"}},
            {"scope": {
                "time": "2026-10-19T09:30:00.002000+00:00",
                "name": "check_password",
                "duration": 0.002,
                "events": []
            }}
        ]
    }
    ```

    Delivery to the sink happens in the background; 202 means queued.
    """
    try:
        scope = AuditScope.from_dict(record)
    except AuditRecordError as e:
        logger.warning(f"Rejected invalid audit record: {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from e

    try:
        get_dispatcher().send(scope)
    except AuditSerializationError as e:
        logger.error(f"Cannot serialize submitted audit record: {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from e
    except AuditDispatcherClosedError as e:
        logger.error(f"Audit record rejected: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Audit dispatcher is closed"
        ) from e

    logger.info(f"Accepted audit record: name={scope.name}")
    return AcceptedResponse(name=scope.name)


if __name__ == "__main__":
    uvicorn.run(
        "audittrail.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8080)),
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
