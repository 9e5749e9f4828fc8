"""Rendering of update results for the workflow tool and for humans."""
from __future__ import annotations

from typing import List

from .schemas import AggregateResult


def exit_code(result: AggregateResult) -> int:
    return 0 if result.failed == 0 else 1


def render_status_block(result: AggregateResult) -> str:
    """Machine-parseable ``KEY=value`` block printed as the last thing a run writes."""
    lines = [
        f"STATUS={'SUCCESS' if result.failed == 0 else 'FAILURE'}",
        f"UPDATED={result.updated}",
        f"FAILED={result.failed}",
        f"DURATION={result.duration_seconds}s",
        f"WARNINGS={result.warned}",
    ]
    if result.failed:
        lines.append(f"FAILED_SERVICES={' '.join(result.failed_identifiers)}")
    return "\n".join(lines)


def _section(title: str, items: List[str]) -> List[str]:
    if not items:
        return [f"{title}: None"]
    return [f"{title} ({len(items)}):", *[f"   - {item}" for item in items]]


def render_summary(result: AggregateResult) -> List[str]:
    lines = [f"Total Duration: {result.duration_seconds}s", ""]
    lines += _section("Successfully Updated", result.updated_descriptions)
    lines.append("")
    lines += _section("Failed Updates", list(result.failures))
    lines.append("")
    lines += _section("Warnings", list(result.warnings))
    refreshed = [f"{o.unit.label}: {', '.join(o.refreshed)}" for o in result.outcomes if o.refreshed]
    if refreshed:
        lines.append("")
        lines += _section("New Images Running", refreshed)
    return lines


def push_message(result: AggregateResult) -> str:
    if result.failed == 0:
        return f"Updated {result.updated}, warnings {result.warned}, {result.duration_seconds}s"
    return f"Failed {result.failed}: {' '.join(result.failed_identifiers)}"


def render_notification(result: AggregateResult) -> str:
    status = "SUCCESS" if result.failed == 0 else "FAILURE"
    lines = [f"Docker update {status}: {result.updated} updated, {result.failed} failed, "
             f"{result.warned} warning(s) in {result.duration_seconds}s"]
    lines += [f"failed: {f}" for f in result.failures]
    lines += [f"rolled back: {o.unit.label}" for o in result.outcomes if o.succeeded and o.rolled_back]
    lines += [f"warning: {w}" for w in result.warnings]
    return "\n".join(lines)
