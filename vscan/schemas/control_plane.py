"""Schemas for the control-plane connection and inventory browsing."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ControlPlaneConnect(BaseModel):
    server: str = Field(..., min_length=1, max_length=255)
    port: int = Field(default=9392, ge=1, le=65535)
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)


class ControlPlaneStatus(BaseModel):
    connected: bool
    server: str | None = None
    port: int | None = None
    username: str | None = None
    server_info: dict[str, Any] = {}
    connected_at: datetime | None = None


class InventoryList(BaseModel):
    total: int
    items: list[dict[str, Any]]
