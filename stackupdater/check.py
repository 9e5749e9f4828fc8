from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import List, Tuple

from .config import CheckConfig
from .errors import ProbeUnreachable
from .health import HealthProbe
from .schemas import CheckReport, HealthState, RunningState, Target

logger = logging.getLogger(__name__)


async def run_check(probe: HealthProbe, config: CheckConfig) -> CheckReport:
    """One-shot status of every watched container, local then remote."""
    entries: List[Tuple[Target, str, str]] = [(Target.local(), c, c) for c in config.containers]
    entries += [(r.target, r.container, f"{r.container}@{r.ssh_host}") for r in config.remote]

    messages: List[str] = []
    details: List[str] = []
    for target, name, shown in entries:
        try:
            status = await probe.probe(target, name)
        except ProbeUnreachable as e:
            logger.warning(f"{shown}: {e.detail}")
            messages.append(f"{shown}:missing")
            details.append(f"{shown}:missing")
            continue
        if not status.exists:
            messages.append(f"{shown}:missing")
            details.append(f"{shown}:missing")
            continue
        detail = f"{shown}:{status.raw_state}"
        if status.running_state != RunningState.RUNNING:
            messages.append(f"{shown}:{status.raw_state}")
        if status.health_state not in (HealthState.NONE, HealthState.HEALTHY):
            messages.append(f"{shown}:health={status.health_state.value}")
            detail += f" (health:{status.health_state.value})"
        details.append(detail)

    return CheckReport(ok=not messages, messages=messages, details=details, checked_at=datetime.now(UTC))


def render_check(report: CheckReport) -> str:
    if report.ok:
        return "\n".join([
            "STATUS:OK",
            "MESSAGE:All containers running",
            f"DETAILS:{' '.join(report.details)}",
        ])
    return "\n".join([
        "STATUS:FAIL",
        f"MESSAGE:{' '.join(report.messages)}",
        f"DETAILS:{' '.join(report.details)}",
    ])


def check_push_message(report: CheckReport) -> str:
    if report.ok:
        return "Containers OK"
    return f"Containers BAD: {' '.join(report.messages)}"
