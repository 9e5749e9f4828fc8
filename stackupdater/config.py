from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from typing import List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError
from .schemas import Target, UpdateUnit

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/stackupdater/config.json"


@dataclass(frozen=True)
class Settings:
    config_path: str = DEFAULT_CONFIG_PATH
    log_dir: str = "/mnt/server/logs"
    log_level: str = "INFO"
    log_retention_days: int = 30
    settle_seconds: float = 10.0
    ssh_connect_timeout: int = 10
    command_timeout: float = 600.0
    probe_timeout: float = 30.0
    docker_bin: Optional[str] = None
    uptime_push_url: Optional[str] = None
    update_push_url: Optional[str] = None
    chat_webhook_url: Optional[str] = None


def _number(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    return Settings(
        config_path=env.get("STACKUPDATER_CONFIG", DEFAULT_CONFIG_PATH),
        log_dir=env.get("LOG_DIR", "/mnt/server/logs"),
        log_level=env.get("LOG_LEVEL", "INFO"),
        log_retention_days=int(_number(env, "LOG_RETENTION_DAYS", 30)),
        settle_seconds=_number(env, "SETTLE_SECONDS", 10.0),
        ssh_connect_timeout=int(_number(env, "SSH_CONNECT_TIMEOUT", 10)),
        command_timeout=_number(env, "COMMAND_TIMEOUT_SECONDS", 600.0),
        probe_timeout=_number(env, "PROBE_TIMEOUT_SECONDS", 30.0),
        docker_bin=env.get("DOCKER_BIN") or None,
        uptime_push_url=env.get("UPTIME_PUSH_URL") or None,
        update_push_url=env.get("UPDATE_PUSH_URL") or None,
        chat_webhook_url=env.get("CHAT_WEBHOOK_URL") or None,
    )


def resolve_docker_bin(configured: Optional[str] = None) -> Optional[str]:
    docker_bin = configured or shutil.which("docker")
    if docker_bin:
        return docker_bin
    for candidate in ("/usr/local/bin/docker", "/usr/bin/docker", "/usr/bin/docker.io"):
        if os.path.exists(candidate):
            return candidate
    return None


class UnitConfig(BaseModel):
    directory: str
    services: List[str]
    compose_file: Optional[str] = None
    ssh_user: Optional[str] = None
    ssh_host: Optional[str] = None

    def to_unit(self) -> UpdateUnit:
        return UpdateUnit(
            target=Target(ssh_user=self.ssh_user, ssh_host=self.ssh_host),
            directory=self.directory,
            services=tuple(self.services),
            compose_file=self.compose_file,
        )


class RemoteContainer(BaseModel):
    ssh_user: str
    ssh_host: str
    container: str

    @property
    def target(self) -> Target:
        return Target.remote(self.ssh_user, self.ssh_host)


class CheckConfig(BaseModel):
    containers: List[str] = Field(default_factory=list)
    remote: List[RemoteContainer] = Field(default_factory=list)


class BackupJobConfig(BaseModel):
    name: str
    path: str
    ssh_user: Optional[str] = None
    ssh_host: Optional[str] = None
    excludes: List[str] = Field(default_factory=lambda: ["*/logs/*"])
    sqlite_databases: List[str] = Field(default_factory=list)

    @property
    def target(self) -> Target:
        return Target(ssh_user=self.ssh_user, ssh_host=self.ssh_host)


class BackupConfig(BaseModel):
    destination: str = "/mnt/server/backup/media-stack"
    retention: int = Field(default=2, ge=1)
    min_size_kb: int = Field(default=5, ge=0)
    jobs: List[BackupJobConfig] = Field(default_factory=list)


class Inventory(BaseModel):
    """Static inventory of the stack: update units, check list and backup jobs."""

    units: List[UnitConfig] = Field(default_factory=list)
    check: CheckConfig = Field(default_factory=CheckConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)

    def update_units(self) -> List[UpdateUnit]:
        return [u.to_unit() for u in self.units]


def load_inventory(path: str) -> Inventory:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read inventory {path}: {e}")
    try:
        inventory = Inventory.model_validate_json(raw)
        inventory.update_units()
    except ValidationError as e:
        raise ConfigError(f"Invalid inventory {path}: {e}")
    logger.debug(f"Loaded inventory {path}: {len(inventory.units)} unit(s)")
    return inventory
