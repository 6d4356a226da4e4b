"""Deployed project domain models."""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Final

from pydantic import BaseModel, Field, PrivateAttr

_SLUG_STRIP_PATTERN = re.compile(r"[^a-z0-9\s]")
_SLUG_SPACE_PATTERN = re.compile(r"\s+")
MAX_SLUG_LENGTH = 50
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class ProjectStatus(str, Enum):
    """Lifecycle status for a locally deployed project."""

    CREATING = "creating"
    INSTALLING = "installing"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


_ALLOWED_TRANSITIONS: Final[dict[ProjectStatus, frozenset[ProjectStatus]]] = {
    ProjectStatus.CREATING: frozenset({ProjectStatus.INSTALLING, ProjectStatus.ERROR}),
    ProjectStatus.INSTALLING: frozenset({ProjectStatus.STARTING, ProjectStatus.ERROR}),
    ProjectStatus.STARTING: frozenset({ProjectStatus.RUNNING, ProjectStatus.ERROR}),
    ProjectStatus.RUNNING: frozenset({ProjectStatus.STOPPED, ProjectStatus.ERROR}),
    ProjectStatus.STOPPED: frozenset(),
    ProjectStatus.ERROR: frozenset(),
}


class InvalidTransition(ValueError):
    """Raised when a status change skips or reverses the deployment lifecycle."""

    def __init__(self, current: ProjectStatus, requested: ProjectStatus) -> None:
        super().__init__(f"Cannot move project from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


def slugify_title(title: str) -> str:
    """Turn a form title into a directory-safe project name."""
    lowered = _SLUG_STRIP_PATTERN.sub("", title.lower())
    return _SLUG_SPACE_PATTERN.sub("-", lowered)[:MAX_SLUG_LENGTH]


def project_id_for(title: str, created_at: datetime) -> str:
    millis = (created_at - _EPOCH) // timedelta(milliseconds=1)
    return f"{slugify_title(title) or 'project'}-{millis}"


class DeployedProject(BaseModel):
    """In-memory record of one locally deployed project."""

    id: str
    name: str
    path: Path
    port: int | None = None
    status: ProjectStatus = ProjectStatus.CREATING
    url: str | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    _process: Any = PrivateAttr(default=None)

    @property
    def process(self) -> Any:
        """Live dev-server handle, set only while the project is running."""
        return self._process

    def advance(self, status: ProjectStatus) -> None:
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(self.status, status)
        self.status = status

    def assign_port(self, port: int) -> None:
        if self.port is not None:
            msg = f"Port already assigned to {self.id}: {self.port}"
            raise ValueError(msg)
        self.port = port

    def mark_running(self, process: Any) -> None:
        if self.port is None:
            msg = f"Cannot run {self.id} without an assigned port"
            raise ValueError(msg)
        self.advance(ProjectStatus.RUNNING)
        self._process = process
        self.url = f"http://localhost:{self.port}"

    def mark_stopped(self) -> None:
        self.advance(ProjectStatus.STOPPED)
        self._process = None
        self.url = None

    def mark_error(self, message: str) -> None:
        self.advance(ProjectStatus.ERROR)
        self._process = None
        self.url = None
        self.error = message

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()
