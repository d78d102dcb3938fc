"""Schemas for Vulnerability resources."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vscan.models.vulnerability import VULNERABILITY_STATUSES


class VulnerabilityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    finding_id: str
    package_name: str
    installed_version: str
    item_name: str
    severity: str
    fixed_version: str | None
    description: str | None
    reference_links: str | None
    published_date: str | None
    package_path: str | None
    scanner_type: str
    status: str
    in_kev: bool
    first_discovered: datetime
    last_seen: datetime
    last_scan_id: uuid.UUID | None


class VulnerabilityList(BaseModel):
    total: int
    items: list[VulnerabilityOut]


class HistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    scan_id: uuid.UUID
    scan_date: datetime
    severity: str
    fixed_version: str | None


class VulnerabilityStatusUpdate(BaseModel):
    status: str = Field(..., description=f"One of: {', '.join(VULNERABILITY_STATUSES)}")

    @field_validator("status")
    @classmethod
    def _known_status(cls, v: str) -> str:
        if v not in VULNERABILITY_STATUSES:
            raise ValueError(f"status must be one of {', '.join(VULNERABILITY_STATUSES)}")
        return v
