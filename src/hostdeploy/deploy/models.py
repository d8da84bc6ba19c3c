"""Models for deployment runs, state locks and infrastructure outputs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class RunPhase(str, Enum):
    INIT = "init"
    PRECONDITION_CHECK = "precondition_check"
    BACKEND_BOOTSTRAP = "backend_bootstrap"
    EXISTING_INFRA_CHECK = "existing_infra_check"
    CLEAN_SLATE_DECISION = "clean_slate_decision"
    LOCK_CLEAR = "lock_clear"
    PLAN = "plan"
    APPLY = "apply"
    CONFIGURE = "configure"
    VERIFY = "verify"
    DONE = "done"
    FAILED = "failed"


class LockOperation(str, Enum):
    PLAN = "plan"
    APPLY = "apply"
    DESTROY = "destroy"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: str) -> "LockOperation":
        """Map terraform's ``OperationTypeApply`` style names."""
        name = raw.strip().lower()
        if name.startswith("operationtype"):
            name = name[len("operationtype"):]
        for op in cls:
            if op.value == name:
                return op
        return cls.UNKNOWN


class LockInfo(BaseModel):
    """Snapshot of a held state lock; may be stale as soon as it is read."""

    model_config = ConfigDict(frozen=True)

    id: str
    path: str = ""
    operation: LockOperation = LockOperation.UNKNOWN
    who: str = ""
    version: str = ""
    created_at: Optional[datetime] = None
    created_raw: str = ""
    info: str = ""


@dataclass(frozen=True)
class ResourceSet:
    """Resource addresses tracked in the shared state, in state order."""

    addresses: Tuple[str, ...] = ()

    @property
    def existing(self) -> bool:
        return len(self.addresses) > 0

    def __iter__(self):
        return iter(self.addresses)

    def __len__(self) -> int:
        return len(self.addresses)

    def __contains__(self, address: object) -> bool:
        return address in self.addresses


class PlanHandle(BaseModel):
    path: Path


class InfraOutputs(BaseModel):
    instance_public_ip: Optional[str] = None
    application_url: Optional[str] = None

    @property
    def domain(self) -> Optional[str]:
        if not self.application_url:
            return None
        url = self.application_url
        for scheme in ("https://", "http://"):
            if url.startswith(scheme):
                url = url[len(scheme):]
        return url.rstrip("/") or None


class ProbeResult(BaseModel):
    url: str
    status_code: Optional[int] = None
    ok: bool = False
    error: Optional[str] = None


class DeploymentRun(BaseModel):
    force_clean: bool = False
    phase: RunPhase = RunPhase.INIT
    exit_code: int = 0
    failed_phase: Optional[RunPhase] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, str] = Field(default_factory=dict)

    def advance(self, phase: RunPhase, details: Optional[Dict[str, str]] = None):
        self.phase = phase
        self.updated_at = datetime.now(timezone.utc)
        if details:
            self.details.update(details)

    def fail(self, exit_code: int):
        self.failed_phase = self.phase
        self.exit_code = exit_code or 1
        self.advance(RunPhase.FAILED)
