from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Optional

from .backup import BackupRunner, render_backup_block
from .check import check_push_message, render_check, run_check
from .config import Inventory, Settings, load_inventory, load_settings, resolve_docker_bin
from .errors import ConfigError
from .health import HealthProbe
from .logs import cleanup_old_logs, log_header, rotate_log_file, setup_logging
from .notify import notify_update, push_status
from .orchestrator import Sleep, build_orchestrator
from .report import exit_code, render_status_block, render_summary
from .runner import CommandRunner
from .schemas import AggregateResult, BackupReport, CheckReport

logger = logging.getLogger(__name__)

UPDATE_LOG_NAME = "docker_update_improved.log"
BACKUP_LOG_NAME = "backup_improved.log"
CONFIG_ERROR_EXIT = 2


async def update_once(settings: Settings, inventory: Inventory, sleep: Sleep = asyncio.sleep) -> AggregateResult:
    result = await build_orchestrator(settings, inventory, sleep=sleep).run()
    cleanup_old_logs(settings.log_dir, f"{UPDATE_LOG_NAME}.*", settings.log_retention_days)
    log_header(logger, "UPDATE SUMMARY")
    for line in render_summary(result):
        logger.info(line)
    log_header(logger, "END OF UPDATE")
    await notify_update(settings, result)
    return result


async def check_once(settings: Settings, inventory: Inventory) -> CheckReport:
    runner = CommandRunner(ssh_connect_timeout=settings.ssh_connect_timeout, default_timeout=settings.command_timeout)
    probe = HealthProbe(runner, docker_bin=resolve_docker_bin(settings.docker_bin), timeout=settings.probe_timeout)
    report = await run_check(probe, inventory.check)
    await push_status(settings.uptime_push_url, report.ok, check_push_message(report))
    return report


async def backup_once(settings: Settings, inventory: Inventory) -> BackupReport:
    runner = CommandRunner(ssh_connect_timeout=settings.ssh_connect_timeout, default_timeout=settings.command_timeout)
    return await BackupRunner(runner, inventory.backup, timeout=settings.command_timeout).run()


def _config_error(e: ConfigError) -> None:
    logger.error(f"ERROR: {e}")
    print(f"ERROR: {e}", file=sys.stderr, flush=True)


def _settings() -> Optional[Settings]:
    try:
        return load_settings()
    except ConfigError as e:
        setup_logging(None, os.environ.get("LOG_LEVEL", "INFO"))
        _config_error(e)
        return None


def _load(settings: Settings) -> Optional[Inventory]:
    try:
        return load_inventory(settings.config_path)
    except ConfigError as e:
        _config_error(e)
        return None


def update_main() -> int:
    """Entry point of ``stack-update``: pull and recreate every unit, then report."""
    settings = _settings()
    if settings is None:
        return CONFIG_ERROR_EXIT
    log_file = os.path.join(settings.log_dir, UPDATE_LOG_NAME)
    try:
        rotated = rotate_log_file(log_file)
    except OSError:
        rotated = None
    setup_logging(log_file, settings.log_level)
    log_header(logger, "Docker Image Update")
    logger.info(f"Log file: {log_file}")
    if rotated:
        logger.info(f"Rotated previous log to: {rotated}")
    inventory = _load(settings)
    if inventory is None:
        return CONFIG_ERROR_EXIT
    result = asyncio.run(update_once(settings, inventory))
    print(render_status_block(result), flush=True)
    return exit_code(result)


def check_main() -> int:
    settings = _settings()
    if settings is None:
        return CONFIG_ERROR_EXIT
    setup_logging(None, os.environ.get("LOG_LEVEL", "WARNING"))
    inventory = _load(settings)
    if inventory is None:
        return CONFIG_ERROR_EXIT
    report = asyncio.run(check_once(settings, inventory))
    print(render_check(report), flush=True)
    return 0 if report.ok else 1


def backup_main() -> int:
    settings = _settings()
    if settings is None:
        return CONFIG_ERROR_EXIT
    setup_logging(os.path.join(settings.log_dir, BACKUP_LOG_NAME), settings.log_level)
    inventory = _load(settings)
    if inventory is None:
        return CONFIG_ERROR_EXIT
    report = asyncio.run(backup_once(settings, inventory))
    print(render_backup_block(report), flush=True)
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(update_main())
