"""Configuration models for vmdk-transfer using Pydantic v2."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator


class FailurePolicy(str, Enum):
    """What to do with the remaining disks once one disk fails."""
    STOP = "stop"
    CONTINUE = "continue"


class VMwareConfig(BaseModel):
    """VMware vCenter/vSphere connection configuration."""

    vcenter: str = Field(..., min_length=1, description="vCenter hostname or IP")
    username: str = Field(..., min_length=1, description="vCenter username")
    password: Optional[SecretStr] = Field(None, description="vCenter password (prefer password_env)")
    password_env: Optional[str] = Field(None, description="Environment variable containing the password")
    insecure: bool = Field(False, description="Skip SSL certificate verification")
    port: int = Field(443, description="vCenter port")

    @model_validator(mode="after")
    def resolve_password(self) -> "VMwareConfig":
        if self.password is None and self.password_env:
            env_val = os.environ.get(self.password_env)
            if env_val:
                self.password = SecretStr(env_val)
        if self.password is None:
            raise ValueError("Either 'password' or 'password_env' (with matching env var) must be provided")
        return self


class TransferSettings(BaseModel):
    """Workflow behavior settings."""

    quiesce: bool = Field(True, description="Quiesce the guest file system when snapshotting")
    snapshot_memory: bool = Field(False, description="Include guest memory in the snapshot")
    failure_policy: FailurePolicy = Field(FailurePolicy.STOP, description="stop or continue after a disk fails")
    task_timeout: int = Field(3600, ge=30, description="Seconds to wait for a single vSphere task")
    state_dir: Path = Field(Path("~/.vmdk-transfer"), validate_default=True,
                            description="Directory for the run journal")
    journal: bool = Field(True, description="Persist run state and leaked resources")

    @field_validator("state_dir")
    @classmethod
    def expand_state_dir(cls, v: Path) -> Path:
        return v.expanduser()


class AppConfig(BaseModel):
    """Root application configuration."""

    vmware: VMwareConfig
    transfer: TransferSettings = TransferSettings()

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AppConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_env_and_args(cls, **overrides) -> "AppConfig":
        """Build config from environment variables with CLI overrides."""
        base: dict = {
            "vmware": {
                "vcenter": os.environ.get("VCENTER_HOST", ""),
                "username": os.environ.get("VCENTER_USERNAME", ""),
                "password_env": "VCENTER_PASSWORD",
                "insecure": os.environ.get("VCENTER_INSECURE", "false").lower() == "true",
            },
            "transfer": {},
        }
        if os.environ.get("VMDK_TRANSFER_STATE_DIR"):
            base["transfer"]["state_dir"] = os.environ["VMDK_TRANSFER_STATE_DIR"]
        # Deep merge overrides
        for key, value in overrides.items():
            if isinstance(value, dict) and key in base:
                base[key].update(value)
            else:
                base[key] = value
        return cls(**base)


class TransferRequest(BaseModel):
    """What to move: named disks of one VM onto another VM."""

    source_vm: str = Field(..., min_length=1)
    disk_names: list[str] = Field(..., min_length=1, description="Source disk labels, in transfer order")
    destination_vm: str = Field(..., min_length=1)
    overwrite: bool = Field(False, description="Replace a destination disk with the same target name")

    @field_validator("disk_names")
    @classmethod
    def unique_disks(cls, v: list[str]) -> list[str]:
        if any(not name.strip() for name in v):
            raise ValueError("Disk names must not be blank")
        duplicates = sorted({name for name in v if v.count(name) > 1})
        if duplicates:
            raise ValueError(f"Disk names requested more than once: {', '.join(duplicates)}")
        return v

    @model_validator(mode="after")
    def distinct_vms(self) -> "TransferRequest":
        if self.source_vm == self.destination_vm:
            raise ValueError("Source and destination VM must differ")
        return self
