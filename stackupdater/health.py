from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from .errors import ProbeUnhealthy, ProbeUnreachable
from .runner import SSH_UNREACHABLE, CommandRunner
from .schemas import HealthStatus, Target, UnitHealth, UpdateUnit

logger = logging.getLogger(__name__)

_NOT_FOUND_MARKERS = ("no such object", "no such container")


def parse_inspect(name: str, obj: Dict[str, Any]) -> HealthStatus:
    """Decode one ``docker inspect`` document into a HealthStatus."""
    state = obj.get("State") or {}
    health = state.get("Health") or {}
    return HealthStatus.from_states(
        name,
        status=state.get("Status") or "",
        health=health.get("Status") if health else None,
        image_id=obj.get("Image") or None,
    )


def require_healthy(status: HealthStatus) -> HealthStatus:
    if not status.exists:
        raise ProbeUnhealthy(status.name, "container not found")
    if not status.healthy:
        raise ProbeUnhealthy(
            status.name,
            f"status: {status.raw_state}, health: {status.health_state.value} (expected: running, healthy)",
        )
    return status


class HealthProbe:
    def __init__(self, runner: CommandRunner, docker_bin: Optional[str] = None, timeout: float = 30.0) -> None:
        self._runner = runner
        self._docker_bin = docker_bin
        self._timeout = timeout

    async def probe(self, target: Target, name: str) -> HealthStatus:
        """Query the current state of container ``name`` on ``target``.

        A missing container is reported as ``exists=False``. Failing to ask at all
        (no docker CLI, SSH refused or timed out, garbage output) raises ProbeUnreachable.
        """
        if target.is_remote:
            docker_bin = "docker"
        elif self._docker_bin:
            docker_bin = self._docker_bin
        else:
            raise ProbeUnreachable(target.label, name, "Docker CLI not found in PATH")

        res = await self._runner.run_on(target, [docker_bin, "inspect", name], timeout=self._timeout)
        if res.timed_out:
            raise ProbeUnreachable(target.label, name, "timed out")
        if target.is_remote and res.returncode == SSH_UNREACHABLE:
            raise ProbeUnreachable(target.label, name, f"ssh failed: {res.output.strip() or 'connection refused'}")
        if res.returncode != 0:
            if any(marker in res.output.lower() for marker in _NOT_FOUND_MARKERS):
                return HealthStatus.missing(name)
            raise ProbeUnreachable(target.label, name, res.output.strip() or f"exit status {res.returncode}")
        try:
            docs = json.loads(res.output)
        except ValueError:
            raise ProbeUnreachable(target.label, name, "unreadable docker inspect output")
        if not isinstance(docs, list) or not docs or not isinstance(docs[0], dict):
            return HealthStatus.missing(name)
        return parse_inspect(name, docs[0])

    async def sample_unit(self, unit: UpdateUnit) -> UnitHealth:
        """Probe every service of the unit; one bad service makes the unit unhealthy."""
        where = f" on {unit.target.ssh_destination}" if unit.target.is_remote else ""
        statuses: List[HealthStatus] = []
        healthy = True
        for name in unit.probe_services:
            try:
                status = await self.probe(unit.target, name)
                statuses.append(status)
                require_healthy(status)
            except ProbeUnreachable as e:
                logger.warning(f"  Container '{name}' unreachable{where}: {e.detail}")
                healthy = False
                continue
            except ProbeUnhealthy as e:
                logger.warning(f"  Container '{name}'{where} unhealthy: {e.detail}")
                healthy = False
                continue
            logger.info(
                f"  Container '{name}'{where} is healthy "
                f"(status: {status.raw_state}, health: {status.health_state.value})"
            )
        return UnitHealth(statuses=tuple(statuses), healthy=healthy)

    async def check_unit_health(self, unit: UpdateUnit) -> bool:
        return (await self.sample_unit(unit)).healthy
