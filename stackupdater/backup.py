from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
import time
from datetime import datetime
from typing import Callable, List, Optional

from .config import BackupConfig, BackupJobConfig
from .errors import BackupFailed
from .logs import log_header
from .runner import CommandRunner
from .schemas import BackupJobResult, BackupReport

logger = logging.getLogger(__name__)


def format_bytes(count: Optional[int]) -> str:
    if not count:
        return "0 B"
    size = float(count)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024 or unit == "TB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def directory_size(path: str) -> int:
    total = 0
    for root, _, files in os.walk(path):
        for name in files:
            try:
                total += os.path.getsize(os.path.join(root, name))
            except OSError:
                continue
    return total


class BackupRunner:
    """Hot backups of service directories; containers keep running throughout."""

    def __init__(
        self,
        runner: CommandRunner,
        config: BackupConfig,
        timeout: Optional[float] = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._runner = runner
        self._config = config
        self._timeout = timeout
        self._now = now

    def archive_path(self, job: BackupJobConfig) -> str:
        return os.path.join(self._config.destination, f"{job.name}_{self._now().strftime('%Y-%m-%d')}.tar.gz")

    def tar_argv(self, job: BackupJobConfig, archive: str) -> List[str]:
        excludes = [f"--exclude={pattern}" for pattern in job.excludes]
        if job.target.is_remote:
            return ["tar", "-czf", "-", *excludes, job.path]
        path = job.path.rstrip("/") or "/"
        return ["tar", "-czf", archive, *excludes, "-C", os.path.dirname(path) or "/", os.path.basename(path)]

    async def run(self) -> BackupReport:
        started = time.monotonic()
        os.makedirs(self._config.destination, exist_ok=True)
        log_header(logger, f"Starting Media Stack Hot Backup - {self._now().strftime('%Y-%m-%d')}")
        results: List[BackupJobResult] = []
        for job in self._config.jobs:
            results.append(await self.backup_job(job))
        self.apply_retention()
        report = BackupReport(
            results=results,
            duration_seconds=int(time.monotonic() - started),
            total_size_bytes=directory_size(self._config.destination),
            destination=self._config.destination,
        )
        log_header(logger, "Backup Summary")
        logger.info(f"Duration: {report.duration_seconds} seconds")
        logger.info(f"Total backup size: {format_bytes(report.total_size_bytes)}")
        logger.info(f"Backup location: {report.destination}")
        for failed in report.failed:
            logger.error(f"ERROR: {failed.name}: {failed.error}")
        return report

    async def backup_job(self, job: BackupJobConfig) -> BackupJobResult:
        where = f" ({job.target.ssh_host})" if job.target.is_remote else ""
        logger.info(f"Backing up {job.name}{where}...")
        archive = self.archive_path(job)
        try:
            for db in job.sqlite_databases:
                await self._hot_copy_sqlite(job, db)
            await self._archive(job, archive)
            size = self.verify(job, archive)
        except BackupFailed as e:
            logger.error(f"ERROR: {e}")
            return BackupJobResult(name=job.name, archive=archive, ok=False, error=e.detail)
        return BackupJobResult(name=job.name, archive=archive, size_bytes=size, ok=True)

    async def _hot_copy_sqlite(self, job: BackupJobConfig, db: str) -> None:
        # sqlite3 .backup copes with WAL mode while the database is in use.
        if not job.target.is_remote and not shutil.which("sqlite3"):
            logger.warning(f"sqlite3 not found, skipping hot copy of {db}")
            return
        copy = os.path.join(os.path.dirname(db), f"backup_{self._now().strftime('%Y%m%d_%H%M%S')}.db")
        argv = ["sqlite3", db, f".backup {shlex.quote(copy)}"]
        res = await self._runner.run_on(job.target, argv, timeout=self._timeout)
        if not res.ok:
            raise BackupFailed(job.name, f"SQLite backup of {db} failed: {res.output.strip() or res.returncode}")
        logger.info(f"SQLite hot backup of {os.path.basename(db)} written to {copy}")

    async def _archive(self, job: BackupJobConfig, archive: str) -> None:
        argv = self.tar_argv(job, archive)
        if job.target.is_remote:
            with open(archive, "wb") as sink:
                res = await self._runner.run_to_file(self._runner.argv_for(job.target, argv), sink, timeout=self._timeout)
        else:
            res = await self._runner.run(argv, timeout=self._timeout)
        # GNU tar exits 1 when files changed while being read, expected for a hot backup.
        if res.returncode not in (0, 1) or res.timed_out:
            if os.path.exists(archive):
                os.remove(archive)
            raise BackupFailed(job.name, f"tar failed: {res.output.strip() or res.returncode}")
        if res.returncode == 1:
            logger.warning(f"{job.name}: some files changed while being archived")

    def verify(self, job: BackupJobConfig, archive: str) -> int:
        if not os.path.isfile(archive):
            raise BackupFailed(job.name, f"Backup file not found: {archive}")
        size = os.path.getsize(archive)
        if size < self._config.min_size_kb * 1024:
            raise BackupFailed(
                job.name, f"backup too small: {size // 1024}KB (minimum: {self._config.min_size_kb}KB)"
            )
        logger.info(f"{job.name} backup verified: {size // 1024}KB")
        return size

    def apply_retention(self) -> List[str]:
        logger.info(f"Applying retention policy (keeping last {self._config.retention} backups)...")
        removed: List[str] = []
        if not os.path.isdir(self._config.destination):
            return removed
        names = os.listdir(self._config.destination)
        for job in self._config.jobs:
            own = re.compile(re.escape(job.name) + r"_\d{4}-\d{2}-\d{2}\.tar\.gz")
            archives = sorted(
                (os.path.join(self._config.destination, name) for name in names if own.fullmatch(name)),
                key=os.path.getmtime,
                reverse=True,
            )
            for old in archives[self._config.retention:]:
                try:
                    os.remove(old)
                    removed.append(old)
                    logger.info(f"Deleting old backup: {os.path.basename(old)}")
                except OSError as e:
                    logger.error(f"Failed to remove {old}: {e}")
        return removed


def render_backup_block(report: BackupReport) -> str:
    return "\n".join([
        f"STATUS={'SUCCESS' if report.ok else 'FAILURE'}",
        f"BACKED_UP={len(report.results) - len(report.failed)}",
        f"FAILED={len(report.failed)}",
        f"DURATION={report.duration_seconds}s",
        f"SIZE={format_bytes(report.total_size_bytes)}",
    ])
