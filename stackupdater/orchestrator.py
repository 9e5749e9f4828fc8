from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from .compose import Compose
from .config import Inventory, Settings, resolve_docker_bin
from .errors import (
    ApplyFailed,
    DescriptorNotFound,
    PostCheckFailed,
    PullFailed,
    RollbackFailed,
)
from .health import HealthProbe
from .logs import log_header, log_section
from .runner import CommandRunner
from .schemas import AggregateResult, UnitHealth, UpdateOutcome, UpdateState, UpdateUnit

logger = logging.getLogger(__name__)

RESTART_FAILED_REASON = "post-update unhealthy, rollback restart failed; manual intervention required"

Sleep = Callable[[float], Awaitable[None]]


def refreshed_services(before: UnitHealth, after: UnitHealth) -> Tuple[str, ...]:
    old = before.image_ids()
    new = after.image_ids()
    return tuple(name for name, image in new.items() if name in old and old[name] != image)


class UnitUpdater:
    """Update-with-rollback for a single unit.

    PRE_CHECK -> PULLING -> APPLYING -> SETTLING -> POST_CHECK, then at most one
    restart (ROLLING_BACK) when the unit comes back unhealthy. Every failure is
    turned into an UpdateOutcome; nothing here raises to the caller.
    """

    def __init__(self, probe: HealthProbe, compose: Compose, settle_seconds: float = 10.0, sleep: Sleep = asyncio.sleep) -> None:
        self._probe = probe
        self._compose = compose
        self._settle_seconds = settle_seconds
        self._sleep = sleep

    async def update(self, unit: UpdateUnit) -> UpdateOutcome:
        try:
            return await self._update(unit)
        except Exception as e:
            logger.exception(f"ERROR: Unexpected failure updating '{unit.label}': {e}")
            return UpdateOutcome(
                unit=unit, succeeded=False, failure_reason=f"error: {e}", final_state=UpdateState.FAILED
            )

    def _enter(self, unit: UpdateUnit, state: UpdateState) -> None:
        logger.debug(f"{unit.label}: {state.value}")

    async def _settle(self, message: str) -> None:
        logger.info(f"Waiting {self._settle_seconds:g} seconds {message}...")
        await self._sleep(self._settle_seconds)

    async def _update(self, unit: UpdateUnit) -> UpdateOutcome:
        kind = "Remote" if unit.target.is_remote else "Local"
        log_section(logger, f"Updating {kind} Project: {unit.location}")
        logger.info(f"Services: {', '.join(unit.services)}")

        self._enter(unit, UpdateState.PREPARE)
        try:
            unit = self._compose.locate(unit)
        except DescriptorNotFound as e:
            logger.error(f"ERROR: {e}")
            return self._failed(unit, e.reason, rolled_back=False)
        if unit.compose_file:
            logger.info(f"Using compose file: {unit.compose_file}")

        self._enter(unit, UpdateState.PRE_CHECK)
        logger.info("Step 1/4: Pre-update health check")
        before = await self._probe.sample_unit(unit)
        warning: Optional[str] = None
        if not before.healthy:
            warning = f"{unit.label} was unhealthy before update"
            logger.warning("WARNING: Some containers were unhealthy before update")

        self._enter(unit, UpdateState.PULLING)
        logger.info("Step 2/4: Pulling latest images")
        try:
            await self._pull(unit)
        except PullFailed as e:
            logger.error(f"ERROR: Failed to pull images for '{unit.label}': {e.detail}")
            return self._failed(unit, e.reason, rolled_back=False, warning=warning)

        self._enter(unit, UpdateState.APPLYING)
        logger.info("Step 3/4: Recreating containers")
        try:
            await self._apply(unit)
        except ApplyFailed as e:
            logger.error(f"ERROR: Failed to recreate containers for '{unit.label}': {e.detail}")
            logger.info("Attempting recovery via restart...")
            res = await self._compose.restart(unit)
            if res.ok:
                logger.info("Restart issued; unit still marked failed")
            else:
                logger.error(f"Restart after failed recreate also failed (exit {res.returncode})")
            return self._failed(unit, e.reason, rolled_back=False, warning=warning)

        self._enter(unit, UpdateState.SETTLING)
        await self._settle("for containers to stabilize")

        self._enter(unit, UpdateState.POST_CHECK)
        logger.info("Step 4/4: Post-update health check")
        try:
            after = await self._post_check(unit)
        except PostCheckFailed:
            logger.error(f"ERROR: Post-update health check failed for '{unit.label}'")
            self._enter(unit, UpdateState.ROLLING_BACK)
            try:
                after = await self._roll_back(unit)
            except RollbackFailed as e:
                logger.error(e.detail)
                return self._failed(unit, e.reason, rolled_back=True, warning=warning)
            logger.info("Rollback successful - containers recovered")
            self._enter(unit, UpdateState.DONE_WITH_ROLLBACK)
            return UpdateOutcome(
                unit=unit,
                succeeded=True,
                rolled_back=True,
                warning=warning,
                final_state=UpdateState.DONE_WITH_ROLLBACK,
                refreshed=refreshed_services(before, after),
            )

        self._enter(unit, UpdateState.DONE)
        logger.info(f"Successfully updated: {unit.label}")
        return UpdateOutcome(
            unit=unit,
            succeeded=True,
            warning=warning,
            final_state=UpdateState.DONE,
            refreshed=refreshed_services(before, after),
        )

    async def _pull(self, unit: UpdateUnit) -> None:
        res = await self._compose.pull(unit)
        if not res.ok:
            raise PullFailed(unit, detail=_tail(res.output) or f"exit status {res.returncode}")

    async def _apply(self, unit: UpdateUnit) -> None:
        res = await self._compose.up(unit)
        if not res.ok:
            raise ApplyFailed(unit, detail=_tail(res.output) or f"exit status {res.returncode}")

    async def _post_check(self, unit: UpdateUnit) -> UnitHealth:
        health = await self._probe.sample_unit(unit)
        if not health.healthy:
            raise PostCheckFailed(unit)
        return health

    async def _roll_back(self, unit: UpdateUnit) -> UnitHealth:
        # A restart of the already-updated deployment; previous images are not restored.
        logger.info("Attempting rollback via restart...")
        res = await self._compose.restart(unit)
        if not res.ok:
            raise RollbackFailed(
                unit,
                detail="Rollback restart failed - manual intervention required",
                reason=RESTART_FAILED_REASON,
            )
        await self._settle("after restart")
        health = await self._probe.sample_unit(unit)
        if not health.healthy:
            raise RollbackFailed(unit, detail="Rollback failed - manual intervention required")
        return health

    def _failed(self, unit: UpdateUnit, reason: str, rolled_back: bool, warning: Optional[str] = None) -> UpdateOutcome:
        self._enter(unit, UpdateState.FAILED)
        return UpdateOutcome(
            unit=unit,
            succeeded=False,
            rolled_back=rolled_back,
            failure_reason=reason,
            warning=warning,
            final_state=UpdateState.FAILED,
        )


def _tail(output: str, lines: int = 3) -> str:
    kept = [line for line in output.splitlines() if line.strip()]
    return " | ".join(kept[-lines:])


class UpdateOrchestrator:
    """Runs the unit protocol over every configured unit, local units first."""

    def __init__(self, units: Sequence[UpdateUnit], updater: UnitUpdater, clock: Callable[[], float] = time.monotonic) -> None:
        self._units = list(units)
        self._updater = updater
        self._clock = clock

    @property
    def local_units(self) -> List[UpdateUnit]:
        return [u for u in self._units if not u.target.is_remote]

    @property
    def remote_units(self) -> List[UpdateUnit]:
        return [u for u in self._units if u.target.is_remote]

    async def run(self) -> AggregateResult:
        started = self._clock()
        outcomes: List[UpdateOutcome] = []
        for title, units in (("UPDATING LOCAL PROJECTS", self.local_units), ("UPDATING REMOTE PROJECTS", self.remote_units)):
            log_header(logger, title)
            for unit in units:
                outcomes.append(await self._updater.update(unit))
                logger.info("")
        return AggregateResult.fold(outcomes, duration_seconds=int(self._clock() - started))


def build_orchestrator(settings: Settings, inventory: Inventory, sleep: Sleep = asyncio.sleep) -> UpdateOrchestrator:
    runner = CommandRunner(ssh_connect_timeout=settings.ssh_connect_timeout, default_timeout=settings.command_timeout)
    docker_bin = resolve_docker_bin(settings.docker_bin)
    probe = HealthProbe(runner, docker_bin=docker_bin, timeout=settings.probe_timeout)
    compose = Compose(runner, docker_bin=docker_bin, timeout=settings.command_timeout)
    updater = UnitUpdater(probe, compose, settle_seconds=settings.settle_seconds, sleep=sleep)
    return UpdateOrchestrator(inventory.update_units(), updater)
