from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import Field, TypeAdapter, ValidationError
from pydantic_settings import BaseSettings

from .health.errors import SetupError

logger = logging.getLogger(__name__)

PSEUDO_FSTYPES = (
    "tmpfs", "devtmpfs", "devfs", "proc", "sysfs", "cgroup", "cgroup2",
    "overlay", "squashfs", "ramfs", "autofs", "debugfs", "tracefs",
)


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "HOSTWATCH_",
        "extra": "ignore",
    }

    # Thresholds (percent, inclusive)
    cpu_threshold: float = 20
    mem_threshold: float = 20
    disk_threshold: float = 20

    # Process-name patterns matched against command lines
    watch_processes: list[str] = ["sshd", "nginx"]
    excluded_fstypes: list[str] = list(PSEUDO_FSTYPES)

    # Report destination (must be writable)
    report_path: str = "/var/log/system_health.log"

    # Alerts (optional — mail / Slack)
    mail_to: str = ""
    mail_subject: str = "System Health Alert on {hostname}"
    slack_webhook_url: str = ""

    # HTTP probe
    http_url: str = "http://54.84.202.22"
    http_timeout: float = 5.0
    http_retries: int = 2
    http_retry_delay: float = 1.0
    http_expected_status: int | None = None  # None = any 2xx / 301 / 302

    # Sampling
    cpu_window: float = 1.0  # seconds between the two /proc/stat reads
    proc_root: str = "/proc"
    interval_seconds: float = 60  # daemon mode

    # Logging
    log_level: str = "INFO"


settings = Settings()


@dataclass(frozen=True)
class MonitorConfig:
    """Immutable run configuration handed to the sampler and scheduler."""

    cpu_threshold: float = 20
    mem_threshold: float = 20
    disk_threshold: float = 20
    watch_processes: tuple[str, ...] = ("sshd", "nginx")
    excluded_fstypes: tuple[str, ...] = PSEUDO_FSTYPES
    report_path: str = "/var/log/system_health.log"
    mail_to: str = ""
    mail_subject: str = "System Health Alert on {hostname}"
    slack_webhook_url: str = ""
    http_url: str = "http://54.84.202.22"
    http_timeout: Annotated[float, Field(gt=0)] = 5.0
    http_retries: Annotated[int, Field(ge=0)] = 2
    http_retry_delay: Annotated[float, Field(ge=0)] = 1.0
    http_expected_status: int | None = None
    cpu_window: Annotated[float, Field(ge=0)] = 1.0
    proc_root: str = "/proc"
    interval_seconds: Annotated[float, Field(ge=0)] = 60

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> MonitorConfig:
        s = s or settings
        return _validate({f.name: getattr(s, f.name) for f in fields(cls)})

    def with_overrides(self, **overrides: Any) -> MonitorConfig:
        """Return a copy with the given non-None fields replaced."""
        given = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(given) - {f.name for f in fields(self)}
        if unknown:
            raise SetupError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        return _validate({**asdict(self), **given})


_adapter = TypeAdapter(MonitorConfig)


def _validate(values: dict[str, Any]) -> MonitorConfig:
    # lists become tuples; a scalar where a list belongs is rejected, not split
    try:
        return _adapter.validate_python(values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise SetupError(f"Invalid config: {problems}") from e


def load_config(path: Path | None = None, base: MonitorConfig | None = None) -> MonitorConfig:
    """Build the run configuration: settings, then an optional YAML overlay.

    The YAML file is a flat mapping of ``MonitorConfig`` field names, e.g.::

        cpu_threshold: 80
        watch_processes: [sshd, nginx, postgres]
    """
    config = base or MonitorConfig.from_settings()
    if path is None:
        return config

    if not path.exists():
        raise SetupError(f"Config file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise SetupError(f"Failed to parse {path}: {e}") from e

    if not isinstance(raw, dict):
        raise SetupError(f"{path}: expected a mapping at top level")

    config = config.with_overrides(**raw)
    logger.info("Loaded config overrides from %s: %s", path, ", ".join(sorted(raw)))
    return config
