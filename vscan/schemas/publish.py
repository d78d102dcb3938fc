"""Schemas for publish jobs."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class PublishCreate(BaseModel):
    item_name: str = Field(..., min_length=1, max_length=255)
    restore_point_id: str = Field(..., min_length=1)
    disk_names: list[str] = Field(default_factory=list)
    target_host: str = Field(..., min_length=1, max_length=255)
    reason: str = Field(default="Vulnerability scan", max_length=255)


class PublishAccepted(BaseModel):
    request_id: str
    item_name: str


class PublishJobOut(BaseModel):
    id: str
    request_id: str
    item_name: str
    restore_point_id: str
    disk_names: list[str]
    target_host: str
    attempt: int
    state: str
    session_id: str | None
    mount_points: dict[str, str]
    verify_calls: int
    last_error: str | None
    state_history: list[str]
    created_at: datetime
    updated_at: datetime


class PublishJobList(BaseModel):
    total: int
    items: list[PublishJobOut]
