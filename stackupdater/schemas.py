from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Target(BaseModel):
    """Where a unit lives: the local docker host, or ``ssh_user@ssh_host``."""

    model_config = ConfigDict(frozen=True)

    ssh_user: Optional[str] = None
    ssh_host: Optional[str] = None

    @field_validator("ssh_user", "ssh_host", mode="before")
    @classmethod
    def _blank_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def _user_and_host_together(self) -> "Target":
        if bool(self.ssh_user) != bool(self.ssh_host):
            raise ValueError("ssh_user and ssh_host must be given together")
        return self

    @classmethod
    def local(cls) -> "Target":
        return cls()

    @classmethod
    def remote(cls, user: str, host: str) -> "Target":
        return cls(ssh_user=user, ssh_host=host)

    @property
    def is_remote(self) -> bool:
        return self.ssh_host is not None

    @property
    def ssh_destination(self) -> str:
        return f"{self.ssh_user}@{self.ssh_host}"

    @property
    def label(self) -> str:
        return self.ssh_destination if self.is_remote else "local"


class UpdateUnit(BaseModel):
    """One compose project: an ordered set of services sharing one compose file."""

    model_config = ConfigDict(frozen=True)

    target: Target = Field(default_factory=Target.local)
    directory: str
    services: Tuple[str, ...]
    compose_file: Optional[str] = None

    @field_validator("services")
    @classmethod
    def _non_empty_services(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        cleaned = tuple(s.strip() for s in value if s and s.strip())
        if not cleaned:
            raise ValueError("a unit needs at least one service")
        return cleaned

    @property
    def probe_services(self) -> Tuple[str, ...]:
        # Remote projects are checked through their primary container only.
        if self.target.is_remote:
            return self.services[:1]
        return self.services

    @property
    def label(self) -> str:
        names = ",".join(self.services)
        if self.target.is_remote:
            return f"{names}@{self.target.ssh_host}"
        return names

    @property
    def location(self) -> str:
        if self.target.is_remote:
            return f"{self.target.ssh_destination}:{self.directory}"
        return self.directory


class RunningState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    OTHER = "other"


class HealthState(str, Enum):
    NONE = "none"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STARTING = "starting"


_STOPPED_STATES = {"exited", "created", "paused", "dead"}


class HealthStatus(BaseModel):
    """A single container's state as reported by ``docker inspect``."""

    model_config = ConfigDict(frozen=True)

    name: str
    exists: bool
    running_state: RunningState = RunningState.OTHER
    health_state: HealthState = HealthState.NONE
    raw_state: str = ""
    image_id: Optional[str] = None

    @classmethod
    def missing(cls, name: str) -> "HealthStatus":
        return cls(name=name, exists=False, raw_state="missing")

    @classmethod
    def from_states(cls, name: str, status: str, health: Optional[str], image_id: Optional[str] = None) -> "HealthStatus":
        status = (status or "").lower()
        if status == "running":
            running = RunningState.RUNNING
        elif status in _STOPPED_STATES:
            running = RunningState.STOPPED
        else:
            running = RunningState.OTHER
        try:
            health_state = HealthState((health or "none").lower())
        except ValueError:
            health_state = HealthState.UNHEALTHY
        return cls(
            name=name,
            exists=True,
            running_state=running,
            health_state=health_state,
            raw_state=status,
            image_id=image_id or None,
        )

    @property
    def healthy(self) -> bool:
        return (
            self.exists
            and self.running_state == RunningState.RUNNING
            and self.health_state in (HealthState.NONE, HealthState.HEALTHY)
        )

    def describe(self) -> str:
        if not self.exists:
            return f"{self.name}:missing"
        return f"{self.name}:{self.raw_state} (health: {self.health_state.value})"


class UnitHealth(BaseModel):
    """Health of every probed service of a unit, sampled at one point in time."""

    model_config = ConfigDict(frozen=True)

    statuses: Tuple[HealthStatus, ...] = ()
    healthy: bool

    def image_ids(self) -> Dict[str, str]:
        return {s.name: s.image_id for s in self.statuses if s.image_id}


class UpdateState(str, Enum):
    PREPARE = "prepare"
    PRE_CHECK = "pre_check"
    PULLING = "pulling"
    APPLYING = "applying"
    SETTLING = "settling"
    POST_CHECK = "post_check"
    ROLLING_BACK = "rolling_back"
    DONE = "done"
    DONE_WITH_ROLLBACK = "done_with_rollback"
    FAILED = "failed"


class UpdateOutcome(BaseModel):
    """Result of running the update protocol once for one unit."""

    model_config = ConfigDict(frozen=True)

    unit: UpdateUnit
    succeeded: bool
    rolled_back: bool = False
    failure_reason: Optional[str] = None
    warning: Optional[str] = None
    final_state: UpdateState
    refreshed: Tuple[str, ...] = ()

    @property
    def description(self) -> str:
        if self.succeeded:
            return f"{self.unit.label} (with rollback)" if self.rolled_back else self.unit.label
        return f"{self.unit.label} ({self.failure_reason})"


class AggregateResult(BaseModel):
    """All outcomes of one orchestration run, folded into counts."""

    model_config = ConfigDict(frozen=True)

    outcomes: Tuple[UpdateOutcome, ...] = ()
    updated: int = 0
    failed: int = 0
    warned: int = 0
    failures: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    duration_seconds: int = 0

    @classmethod
    def fold(cls, outcomes: Sequence[UpdateOutcome], duration_seconds: int = 0) -> "AggregateResult":
        outcomes = tuple(outcomes)
        failed = tuple(o for o in outcomes if not o.succeeded)
        warnings = tuple(o.warning for o in outcomes if o.warning)
        return cls(
            outcomes=outcomes,
            updated=len(outcomes) - len(failed),
            failed=len(failed),
            warned=len(warnings),
            failures=tuple(o.description for o in failed),
            warnings=warnings,
            duration_seconds=max(0, int(duration_seconds)),
        )

    @property
    def succeeded(self) -> bool:
        return self.failed == 0

    @property
    def updated_descriptions(self) -> List[str]:
        return [o.description for o in self.outcomes if o.succeeded]

    @property
    def failed_identifiers(self) -> List[str]:
        return [o.unit.label for o in self.outcomes if not o.succeeded]


class CheckReport(BaseModel):
    """Result of a one-shot container status check."""

    ok: bool
    messages: List[str] = []
    details: List[str] = []
    checked_at: Optional[datetime] = None


class BackupJobResult(BaseModel):
    name: str
    archive: Optional[str] = None
    size_bytes: Optional[int] = None
    ok: bool
    error: Optional[str] = None


class BackupReport(BaseModel):
    results: List[BackupJobResult] = []
    duration_seconds: int = 0
    total_size_bytes: int = 0
    destination: str = ""

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed(self) -> List[BackupJobResult]:
        return [r for r in self.results if not r.ok]


class JobStartResponse(BaseModel):
    """Accepted response for a started update or backup job."""

    job_id: str
    state: Literal["running", "completed", "failed"]


class JobStatusResponse(BaseModel):
    """Current state and log tail of an update or backup job."""

    job_id: str
    kind: Literal["update", "backup"]
    state: str
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    log_tail: List[str] = []
    report: Optional[str] = None
    exit_code: Optional[int] = None
