"""In-memory registry of locally deployed projects."""

from __future__ import annotations

from datetime import datetime

from carecanvas.models.events import DeploymentEvent, EventType
from carecanvas.models.project import DeployedProject


class ProjectRegistry:
    """Owns project records and their lifecycle events for one application.

    Nothing here is persisted; a restart forgets every record even though the
    child processes it started may outlive it.
    """

    def __init__(self) -> None:
        self._projects: dict[str, DeployedProject] = {}
        self._events: list[DeploymentEvent] = []

    def __contains__(self, project_id: object) -> bool:
        return project_id in self._projects

    def __len__(self) -> int:
        return len(self._projects)

    def add(self, project: DeployedProject) -> None:
        if project.id in self._projects:
            msg = f"Project already registered: {project.id}"
            raise ValueError(msg)
        self._projects[project.id] = project

    def get(self, project_id: str) -> DeployedProject | None:
        return self._projects.get(project_id)

    def list(self) -> list[DeployedProject]:
        return sorted(self._projects.values(), key=lambda project: project.created_at)

    def remove(self, project_id: str) -> DeployedProject | None:
        """Forget a project together with its lifecycle events."""
        project = self._projects.pop(project_id, None)
        self._events = [event for event in self._events if event.project_id != project_id]
        return project

    def append_event(self, event: DeploymentEvent) -> None:
        self._events.append(event)

    def list_events(
        self,
        *,
        project_id: str | None = None,
        event_type: EventType | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[DeploymentEvent]:
        events = self._events
        if project_id:
            events = [event for event in events if event.project_id == project_id]
        if event_type:
            events = [event for event in events if event.event_type is event_type]
        if since:
            events = [event for event in events if event.timestamp >= since]
        if until:
            events = [event for event in events if event.timestamp <= until]
        return list(events)
