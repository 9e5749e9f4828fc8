from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .schemas import UpdateUnit


class StackUpdaterError(Exception):
    """Base class for every error raised by stackupdater."""


class ConfigError(StackUpdaterError):
    """Static configuration is missing or invalid. Aborts the whole run."""


class ProbeUnreachable(StackUpdaterError):
    """The target could not be queried (no docker CLI, SSH failure, timeout)."""

    def __init__(self, target: str, name: str, detail: str) -> None:
        super().__init__(f"{name} on {target}: {detail}")
        self.target = target
        self.name = name
        self.detail = detail


class ProbeUnhealthy(StackUpdaterError):
    """The container was found but is not running or not healthy."""

    def __init__(self, name: str, detail: str) -> None:
        super().__init__(f"{name}: {detail}")
        self.name = name
        self.detail = detail


class DescriptorNotFound(StackUpdaterError):
    """A local unit has no usable directory or compose file."""

    def __init__(self, unit: "UpdateUnit", reason: str) -> None:
        super().__init__(f"{unit.location}: {reason}")
        self.unit = unit
        self.reason = reason


class UnitUpdateError(StackUpdaterError):
    reason = "update failed"

    def __init__(self, unit: "UpdateUnit", detail: Optional[str] = None, reason: Optional[str] = None) -> None:
        if reason:
            self.reason = reason
        super().__init__(f"{unit.label}: {detail or self.reason}")
        self.unit = unit
        self.detail = detail


class PullFailed(UnitUpdateError):
    reason = "pull failed"


class ApplyFailed(UnitUpdateError):
    reason = "apply failed"


class PostCheckFailed(UnitUpdateError):
    reason = "post-update unhealthy"


class RollbackFailed(UnitUpdateError):
    reason = "post-update unhealthy, rollback did not recover; manual intervention required"


class BackupFailed(StackUpdaterError):
    def __init__(self, job: str, detail: str) -> None:
        super().__init__(f"{job}: {detail}")
        self.job = job
        self.detail = detail
