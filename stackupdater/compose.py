from __future__ import annotations

import logging
import os
import shlex
from typing import List, Optional, Sequence

from .errors import DescriptorNotFound
from .runner import CommandResult, CommandRunner
from .schemas import UpdateUnit

logger = logging.getLogger(__name__)

COMPOSE_FILENAMES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")

PULL = ("pull",)
UP = ("up", "-d", "--remove-orphans")
RESTART = ("restart",)


def find_compose_file(directory: str) -> Optional[str]:
    for filename in COMPOSE_FILENAMES:
        path = os.path.join(directory, filename)
        if os.path.isfile(path):
            return path
    return None


def remote_compose_script(directory: str, args: Sequence[str]) -> str:
    """Shell snippet run over SSH: pick the compose flavour available on that host."""
    joined = shlex.join(args)
    return (
        f"cd {shlex.quote(directory)} && "
        f"if docker compose version >/dev/null 2>&1; then docker compose {joined}; "
        f"else docker-compose {joined}; fi"
    )


class Compose:
    """docker compose pull / up / restart for local and remote units."""

    def __init__(self, runner: CommandRunner, docker_bin: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self._runner = runner
        self._docker_bin = docker_bin
        self._timeout = timeout
        self._local_cmd: Optional[List[str]] = None

    def locate(self, unit: UpdateUnit) -> UpdateUnit:
        """Resolve the compose file of a local unit. Remote units are resolved on the remote host."""
        if unit.target.is_remote:
            return unit
        if not os.path.isdir(unit.directory):
            raise DescriptorNotFound(unit, "directory not found")
        if unit.compose_file:
            path = unit.compose_file
            if not os.path.isabs(path):
                path = os.path.join(unit.directory, path)
            if not os.path.isfile(path):
                raise DescriptorNotFound(unit, "no compose file")
            return unit.model_copy(update={"compose_file": path})
        path = find_compose_file(unit.directory)
        if not path:
            raise DescriptorNotFound(unit, "no compose file")
        return unit.model_copy(update={"compose_file": path})

    async def local_command(self) -> List[str]:
        if self._local_cmd is None:
            docker_bin = self._docker_bin or "docker"
            res = await self._runner.run([docker_bin, "compose", "version"], timeout=30)
            self._local_cmd = [docker_bin, "compose"] if res.ok else ["docker-compose"]
            logger.info(f"Using command: {' '.join(self._local_cmd)}")
        return self._local_cmd

    async def run(self, unit: UpdateUnit, args: Sequence[str]) -> CommandResult:
        if unit.target.is_remote:
            script = remote_compose_script(unit.directory, args)
            return await self._runner.run_shell_on(unit.target, script, timeout=self._timeout, stream=True)
        cmd = await self.local_command()
        argv = [*cmd]
        if unit.compose_file:
            argv += ["-f", unit.compose_file]
        argv += list(args)
        return await self._runner.run(argv, timeout=self._timeout, cwd=unit.directory, stream=True)

    async def pull(self, unit: UpdateUnit) -> CommandResult:
        return await self.run(unit, PULL)

    async def up(self, unit: UpdateUnit) -> CommandResult:
        return await self.run(unit, UP)

    async def restart(self, unit: UpdateUnit) -> CommandResult:
        return await self.run(unit, RESTART)
