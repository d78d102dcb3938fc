"""Schemas for scan hosts, scanner provisioning and host mounts."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class HostConnect(BaseModel):
    address: str = Field(..., min_length=1, max_length=255)
    port: int = Field(default=22, ge=1, le=65535)
    username: str = Field(..., min_length=1, max_length=255)
    secret: str = Field(..., min_length=1, description="Password, also used for sudo prompts")


class HostOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    address: str
    port: int
    username: str
    hostname: str | None
    os_family: str | None
    os_name: str | None
    os_version: str | None
    connection_status: str
    last_connected: datetime | None
    error_msg: str | None
    scanner_inventory: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime


class HostList(BaseModel):
    total: int
    items: list[HostOut]


class SessionOut(BaseModel):
    host: str
    port: int
    username: str
    status: str
    alive: bool
    inventory: dict[str, Any] = {}


class ProvisionRequest(BaseModel):
    scanners: list[str] = Field(default=["trivy", "grype"], min_length=1)


class ScannerStatusOut(BaseModel):
    scanner: str
    installed: bool
    version: str | None
    latest_version: str | None = None
    os_family: str | None = None
    database_updated_at: datetime | None = None
    actions: list[str] = []


class MountCreate(BaseModel):
    device: str = Field(..., min_length=1, max_length=512)
    mount_point: str = Field(..., min_length=2, max_length=1024)
    options: str = Field(default="ro", max_length=255)
    fs_type: str | None = Field(default=None, max_length=50)

    @field_validator("device", "mount_point")
    @classmethod
    def _absolute(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("must be an absolute path")
        return v


class MountRemove(BaseModel):
    mount_point: str = Field(..., min_length=2, max_length=1024)
    force: bool = False


class ActiveMountOut(BaseModel):
    device: str
    fs_type: str
    size: str
    used: str
    available: str
    use_percent: str
    mount_path: str


class MountRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    host: str
    device: str
    mount_path: str
    fs_type: str | None
    mount_options: str | None
    job_id: str | None
    status: str
    mounted_at: datetime | None
    unmounted_at: datetime | None
    error_msg: str | None
