from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import IO, List, Optional, Sequence

from .schemas import Target

logger = logging.getLogger(__name__)

SSH_UNREACHABLE = 255
TIMED_OUT = 124
NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    output: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class CommandRunner:
    """Runs commands on the local host or, through non-interactive SSH, on a remote one."""

    def __init__(self, ssh_connect_timeout: int = 10, default_timeout: float = 600.0) -> None:
        self.ssh_connect_timeout = ssh_connect_timeout
        self.default_timeout = default_timeout

    def ssh_argv(self, target: Target, remote_command: str) -> List[str]:
        # BatchMode turns any credential prompt into an immediate failure (exit 255).
        return [
            "ssh",
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.ssh_connect_timeout}",
            target.ssh_destination,
            remote_command,
        ]

    def argv_for(self, target: Target, argv: Sequence[str]) -> List[str]:
        if not target.is_remote:
            return list(argv)
        return self.ssh_argv(target, shlex.join(argv))

    async def run(
        self,
        argv: Sequence[str],
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
        stream: bool = False,
    ) -> CommandResult:
        """Run ``argv`` to completion, merging stderr into the captured output.

        With ``stream`` every output line is also written to the log as it arrives.
        """
        timeout = self.default_timeout if timeout is None else timeout
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except (FileNotFoundError, PermissionError) as e:
            return CommandResult(NOT_FOUND, str(e))

        lines: List[str] = []
        assert proc.stdout is not None

        async def read_stream() -> None:
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break
                text = line.decode(errors="replace").rstrip()
                lines.append(text)
                if stream and text:
                    logger.info(f"    {text}")

        try:
            await asyncio.wait_for(read_stream(), timeout=timeout)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            logger.warning(f"Timeout after {timeout:.0f}s running: {' '.join(argv)}")
            return CommandResult(TIMED_OUT, "\n".join(lines), timed_out=True)
        await proc.wait()
        return CommandResult(proc.returncode if proc.returncode is not None else 1, "\n".join(lines))

    async def run_on(
        self,
        target: Target,
        argv: Sequence[str],
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
        stream: bool = False,
    ) -> CommandResult:
        if target.is_remote:
            return await self.run(self.argv_for(target, argv), timeout=timeout, stream=stream)
        return await self.run(argv, timeout=timeout, cwd=cwd, stream=stream)

    async def run_shell_on(self, target: Target, script: str, timeout: Optional[float] = None, stream: bool = False) -> CommandResult:
        """Run a shell snippet on a remote target (the remote login shell interprets it)."""
        if target.is_remote:
            return await self.run(self.ssh_argv(target, script), timeout=timeout, stream=stream)
        return await self.run(["sh", "-c", script], timeout=timeout, stream=stream)

    async def run_to_file(self, argv: Sequence[str], sink: IO[bytes], timeout: Optional[float] = None) -> CommandResult:
        """Run ``argv`` with stdout written into ``sink``; stderr is captured."""
        timeout = self.default_timeout if timeout is None else timeout
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=sink,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            return CommandResult(NOT_FOUND, str(e))
        try:
            _, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            return CommandResult(TIMED_OUT, "timeout", timed_out=True)
        return CommandResult(proc.returncode if proc.returncode is not None else 1, (err or b"").decode(errors="replace").strip())
