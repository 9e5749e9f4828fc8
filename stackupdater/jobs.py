from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .schemas import JobStatusResponse

logger = logging.getLogger(__name__)

# A job body returns (report text, exit code).
JobBody = Callable[[], Awaitable[Tuple[str, int]]]


@dataclass
class JobSession:
    id: str
    kind: str
    state: str = "running"
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    log_lines: List[str] = field(default_factory=list)
    report: Optional[str] = None
    exit_code: Optional[int] = None

    def status(self, tail: int = 100) -> JobStatusResponse:
        return JobStatusResponse(
            job_id=self.id,
            kind=self.kind,
            state=self.state,
            started_at=self.started_at,
            finished_at=self.finished_at,
            log_tail=self.log_lines[-tail:],
            report=self.report,
            exit_code=self.exit_code,
        )


class SessionLogHandler(logging.Handler):
    """Copies stackupdater log records into a job's log buffer while it runs."""

    def __init__(self, sess: JobSession) -> None:
        super().__init__()
        self._sess = sess
        self.setFormatter(logging.Formatter("[%(asctime)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))

    def emit(self, record: logging.LogRecord) -> None:
        self._sess.log_lines.append(self.format(record))


class SingleFlight:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._active: Optional[str] = None

    async def try_acquire(self, job_id: str) -> bool:
        async with self._lock:
            if self._active is not None:
                return False
            self._active = job_id
            return True

    async def release(self, job_id: str) -> None:
        async with self._lock:
            if self._active == job_id:
                self._active = None

    def is_active(self) -> bool:
        return self._active is not None

    def get_active_id(self) -> Optional[str]:
        return self._active


class JobRegistry:
    """Tracks update/backup jobs started over HTTP. One job of each kind at a time."""

    def __init__(self) -> None:
        self._sessions: Dict[str, JobSession] = {}
        self._flights: Dict[str, SingleFlight] = {"update": SingleFlight(), "backup": SingleFlight()}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._seq = itertools.count(1)

    def get(self, job_id: str) -> Optional[JobSession]:
        return self._sessions.get(job_id)

    def is_active(self, kind: str) -> bool:
        return self._flights[kind].is_active()

    async def start(self, kind: str, body: JobBody) -> Optional[JobSession]:
        """Start ``body`` in the background; returns None when a job of this kind is running."""
        now = datetime.now(UTC)
        job_id = f"{kind[:3]}-{now.strftime('%Y%m%dT%H%M%S')}-{next(self._seq)}"
        if not await self._flights[kind].try_acquire(job_id):
            return None
        sess = JobSession(id=job_id, kind=kind, started_at=now)
        self._sessions[job_id] = sess
        self._tasks[job_id] = asyncio.create_task(self._run(sess, body))
        return sess

    async def wait(self, job_id: str) -> None:
        task = self._tasks.get(job_id)
        if task is not None:
            await task

    async def _run(self, sess: JobSession, body: JobBody) -> None:
        handler = SessionLogHandler(sess)
        root = logging.getLogger("stackupdater")
        if root.getEffectiveLevel() > logging.INFO:
            root.setLevel(logging.INFO)
        root.addHandler(handler)
        try:
            report, code = await body()
            sess.report = report
            sess.exit_code = code
            sess.state = "completed" if code == 0 else "failed"
        except Exception as e:
            logger.exception(f"{sess.kind} job {sess.id} crashed: {e}")
            sess.state = "failed"
            sess.report = f"Error: {e}"
            sess.exit_code = 1
        finally:
            root.removeHandler(handler)
            sess.finished_at = datetime.now(UTC)
            self._tasks.pop(sess.id, None)
            await self._flights[sess.kind].release(sess.id)
