"""Environment-driven settings for local deployments."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_BASE_PORT = 3001
DEFAULT_PORT_SPAN = 100
DEFAULT_STARTUP_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_AGE_SECONDS = 24 * 60 * 60
DEFAULT_REAPER_INTERVAL_SECONDS = 60 * 60
DEFAULT_REAPER_INITIAL_DELAY_SECONDS = 5.0
DEFAULT_INSTALL_COMMAND = ("npm", "install")
DEFAULT_DEV_COMMAND = ("npm", "run", "dev", "--", "--port", "{port}")


@dataclass(slots=True)
class DeploymentSettings:
    """Tunables for staging, launching and reaping generated projects."""

    root_dir: Path = field(default_factory=lambda: Path("generated-apps").resolve())
    widget_source_dir: Path = field(
        default_factory=lambda: Path("src/components/widgets").resolve()
    )
    host: str = "localhost"
    base_port: int = DEFAULT_BASE_PORT
    port_span: int = DEFAULT_PORT_SPAN
    startup_timeout_seconds: float = DEFAULT_STARTUP_TIMEOUT_SECONDS
    install_command: tuple[str, ...] = DEFAULT_INSTALL_COMMAND
    dev_command: tuple[str, ...] = DEFAULT_DEV_COMMAND
    max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS
    reaper_interval_seconds: float = DEFAULT_REAPER_INTERVAL_SECONDS
    reaper_initial_delay_seconds: float = DEFAULT_REAPER_INITIAL_DELAY_SECONDS
    max_log_lines: int = 1000

    @classmethod
    def from_env(cls) -> DeploymentSettings:
        defaults = cls()
        return cls(
            root_dir=_env_path("CARECANVAS_DEPLOY_ROOT", defaults.root_dir),
            widget_source_dir=_env_path("CARECANVAS_WIDGET_SOURCE_DIR", defaults.widget_source_dir),
            host=(os.getenv("CARECANVAS_DEPLOY_HOST") or defaults.host).strip(),
            base_port=int(os.getenv("CARECANVAS_BASE_PORT", str(defaults.base_port))),
            port_span=int(os.getenv("CARECANVAS_PORT_SPAN", str(defaults.port_span))),
            startup_timeout_seconds=float(
                os.getenv("CARECANVAS_STARTUP_TIMEOUT_SECONDS", str(defaults.startup_timeout_seconds))
            ),
            install_command=_env_command("CARECANVAS_INSTALL_COMMAND", defaults.install_command),
            dev_command=_env_command("CARECANVAS_DEV_COMMAND", defaults.dev_command),
            max_age_seconds=float(
                os.getenv("CARECANVAS_MAX_AGE_SECONDS", str(defaults.max_age_seconds))
            ),
            reaper_interval_seconds=float(
                os.getenv("CARECANVAS_REAPER_INTERVAL_SECONDS", str(defaults.reaper_interval_seconds))
            ),
            reaper_initial_delay_seconds=float(
                os.getenv(
                    "CARECANVAS_REAPER_INITIAL_DELAY_SECONDS",
                    str(defaults.reaper_initial_delay_seconds),
                )
            ),
            max_log_lines=int(os.getenv("CARECANVAS_MAX_LOG_LINES", str(defaults.max_log_lines))),
        )


def _env_path(name: str, default: Path) -> Path:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    return Path(raw).expanduser().resolve()


def _env_command(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    return tuple(shlex.split(raw))
