"""HTTP route definitions for the service."""

from __future__ import annotations

import logging
from typing import List, Tuple

from fastapi import APIRouter, Depends, HTTPException, status

from app.schemas import AlertRequest, AlertResponse, HealthResponse
from services.lifecycle import LifecycleCoordinator, build_default_coordinator
from services.query import QueryService, build_default_query_service
from storage.readings import StoreError

logger = logging.getLogger(__name__)

router = APIRouter()


def get_query_service() -> QueryService:
    return build_default_query_service()


def get_coordinator() -> LifecycleCoordinator:
    return build_default_coordinator()


@router.get(
    "/api/energy",
    response_model=List[Tuple[str, float]],
    summary="Most recent readings as [timestamp, consumption] pairs, newest first.",
)
def list_energy(
    service: QueryService = Depends(get_query_service),
) -> list[tuple[str, float]]:
    try:
        return service.recent_energy()
    except StoreError as exc:
        logger.error("Recent readings query failed", extra={"reason": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Reading store unavailable.",
        ) from exc


@router.post(
    "/api/alert",
    response_model=AlertResponse,
    summary="Submit an operator alert.",
)
async def submit_alert(
    alert: AlertRequest,
    service: QueryService = Depends(get_query_service),
) -> AlertResponse:
    acknowledgement = service.submit_alert(alert.message)
    return AlertResponse(status=acknowledgement.status, message=acknowledgement.message)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
def healthcheck(
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> HealthResponse:
    try:
        readings = coordinator.store.count()
    except StoreError as exc:
        logger.warning("Health check could not count readings", extra={"reason": str(exc)})
        return HealthResponse(status="degraded", lifecycle=coordinator.state)
    return HealthResponse(status="ok", lifecycle=coordinator.state, readings=readings)
