"""Schemas for scan batches and scan records."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BatchItemIn(BaseModel):
    item_name: str = Field(..., min_length=1, max_length=255)
    restore_point_id: str = Field(..., min_length=1)
    disk_names: list[str] = Field(default_factory=list)


class ScanCreate(BaseModel):
    host: str = Field(..., description="Connected scan host address")
    items: list[BatchItemIn] = Field(..., min_length=1)
    scanners: list[str] = Field(default=["trivy"], min_length=1, description="Scanner names to run")
    keep_mounted: bool = Field(default=False, description="Leave the published content mounted afterwards")


class BatchAccepted(BaseModel):
    batch_id: str
    host: str
    items: int
    scanners: list[str]


class BatchOut(BaseModel):
    batch_id: str
    state: str
    result: dict[str, Any] | None = None


class ScanRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    host: str
    item_name: str
    scanner_type: str
    batch_id: str | None
    status: str
    total_count: int
    critical_count: int
    high_count: int
    medium_count: int
    low_count: int
    duration_ms: int | None
    error_kind: str | None
    error_msg: str | None
    started_at: datetime
    finished_at: datetime | None


class ScanRecordList(BaseModel):
    total: int
    items: list[ScanRecordOut]
