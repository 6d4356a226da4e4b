"""Lifecycle event models for local deployments."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from carecanvas.models.project import ProjectStatus


class EventType(str, Enum):
    """Event categories emitted while a project moves through its lifecycle."""

    PROJECT_CREATED = "project.created"
    PROJECT_INSTALLING = "project.installing"
    PROJECT_STARTING = "project.starting"
    PROJECT_RUNNING = "project.running"
    PROJECT_STOPPED = "project.stopped"
    PROJECT_ERROR = "project.error"


STATUS_EVENT_TYPES: dict[ProjectStatus, EventType] = {
    ProjectStatus.CREATING: EventType.PROJECT_CREATED,
    ProjectStatus.INSTALLING: EventType.PROJECT_INSTALLING,
    ProjectStatus.STARTING: EventType.PROJECT_STARTING,
    ProjectStatus.RUNNING: EventType.PROJECT_RUNNING,
    ProjectStatus.STOPPED: EventType.PROJECT_STOPPED,
    ProjectStatus.ERROR: EventType.PROJECT_ERROR,
}


class DeploymentEvent(BaseModel):
    """Append-only event describing a deployment lifecycle change."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str
    event_type: EventType
    payload: dict[str, str | int | float | bool | None] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
