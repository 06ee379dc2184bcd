"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from services.lifecycle import LifecycleState


class AlertRequest(BaseModel):
    """Alert submitted by a client; surrounding whitespace is ignored."""

    model_config = ConfigDict(str_strip_whitespace=True)

    message: str = Field(..., min_length=1, description="Free-form alert text.")


class AlertResponse(BaseModel):
    status: str = Field(..., description="Always 'success' when the alert was accepted.")
    message: str


class HealthResponse(BaseModel):
    """Service status and lifecycle details."""

    status: str
    lifecycle: LifecycleState
    readings: Optional[int] = Field(
        default=None, description="Stored reading count, absent when the store is unreadable."
    )
