"""Local deployment lifecycle for generated projects."""

from __future__ import annotations

import asyncio
import logging
import shutil
from typing import TypeAlias
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path

from carecanvas.core.errors import DeploymentError, WidgetCopyFailed
from carecanvas.core.port_allocator import PortAllocator
from carecanvas.core.process_runner import DevServerHandle, ProcessRunner
from carecanvas.core.registry import ProjectRegistry
from carecanvas.core.stager import ProjectStager
from carecanvas.models.events import STATUS_EVENT_TYPES, DeploymentEvent, EventType
from carecanvas.models.project import DeployedProject, ProjectStatus, project_id_for

logger = logging.getLogger(__name__)

Clock: TypeAlias = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LocalDeploymentManager:
    """Stage, install, launch and tear down generated projects."""

    def __init__(
        self,
        *,
        root_dir: Path,
        registry: ProjectRegistry,
        stager: ProjectStager,
        runner: ProcessRunner,
        ports: PortAllocator,
        clock: Clock | None = None,
    ) -> None:
        self._root_dir = root_dir
        self._registry = registry
        self._stager = stager
        self._runner = runner
        self._ports = ports
        self._clock = clock or _utcnow
        self._issued_ids: set[str] = set()
        self._watchers: dict[str, asyncio.Task[None]] = {}
        self._servers: dict[str, DevServerHandle] = {}

    @property
    def root_dir(self) -> Path:
        return self._root_dir

    async def deploy(self, title: str, bundle: Mapping[str, str]) -> DeployedProject:
        """Run the full pipeline and return the running project.

        On failure the record is left in the registry with ``status=error``
        and the original exception is re-raised.
        """
        project = self._register(title)
        logger.info("Deploying %s into %s", project.id, project.path)
        handle: DevServerHandle | None = None
        try:
            await asyncio.to_thread(self._stager.stage, project.path, bundle)
            await self._copy_widgets(project)

            self._transition(project, ProjectStatus.INSTALLING)
            await self._runner.install(project.path)

            self._transition(project, ProjectStatus.STARTING)
            port = await self._ports.allocate()
            project.assign_port(port)
            handle = await self._runner.launch(project.path, port)
            if project.id not in self._registry:
                await handle.kill()
                msg = f"Project {project.id} was deleted during startup"
                raise DeploymentError(msg)

            project.mark_running(handle)
            self._servers[project.id] = handle
            self._record(project, STATUS_EVENT_TYPES[ProjectStatus.RUNNING], port=port)
        except asyncio.CancelledError as exc:
            self._fail(project, exc, message="Deployment cancelled")
            if handle is not None:
                await handle.kill()
            raise
        except Exception as exc:
            self._fail(project, exc)
            raise

        self._watchers[project.id] = asyncio.create_task(self._watch_exit(project, handle))
        logger.info("Project %s running at %s", project.id, project.url)
        return project

    def list(self) -> list[DeployedProject]:
        return self._registry.list()

    def get(self, project_id: str) -> DeployedProject | None:
        return self._registry.get(project_id)

    def server_for(self, project_id: str) -> DevServerHandle | None:
        """Last dev server launched for the project, kept after it stops for its logs."""
        return self._servers.get(project_id)

    def events(
        self,
        project_id: str,
        event_type: EventType | None = None,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[DeploymentEvent]:
        return self._registry.list_events(
            project_id=project_id,
            event_type=event_type,
            since=since,
            until=until,
        )

    async def stop(self, project_id: str) -> bool:
        """Kill the project's dev server. Returns False for unknown ids."""
        project = self._registry.get(project_id)
        if project is None:
            return False
        await self._stop(project, reason="manual")
        return True

    async def delete(self, project_id: str) -> bool:
        """Stop the project and remove its directory, record and events."""
        project = self._registry.remove(project_id)
        if project is None:
            return False
        await self._stop(project, reason="delete")
        self._servers.pop(project.id, None)
        await self._remove_directory(project.path)
        logger.info("Deleted project %s", project.id)
        return True

    async def sweep(self, max_age_seconds: float) -> list[str]:
        """Delete every record older than ``max_age_seconds`` plus stale orphan directories."""
        now = self._clock()
        removed: list[str] = []
        for project in self._registry.list():
            if project.age_seconds(now) <= max_age_seconds:
                continue
            try:
                if await self.delete(project.id):
                    removed.append(project.id)
                    logger.info("Cleaned up old project: %s", project.id)
            except Exception:
                logger.exception("Failed to clean up project %s", project.id)
        removed.extend(await self._sweep_orphans(now, max_age_seconds))
        return removed

    async def stop_all(self) -> None:
        for project in self._registry.list():
            await self._stop(project, reason="shutdown")

    def _register(self, title: str) -> DeployedProject:
        created_at = self._clock()
        project_id = project_id_for(title, created_at)
        while project_id in self._issued_ids or project_id in self._registry:
            created_at += timedelta(milliseconds=1)
            project_id = project_id_for(title, created_at)
        self._issued_ids.add(project_id)

        project = DeployedProject(
            id=project_id,
            name=title,
            path=self._root_dir / project_id,
            created_at=created_at,
        )
        self._registry.add(project)
        self._record(project, STATUS_EVENT_TYPES[ProjectStatus.CREATING], name=title)
        return project

    async def _copy_widgets(self, project: DeployedProject) -> None:
        try:
            await asyncio.to_thread(self._stager.copy_widget_library, project.path)
        except WidgetCopyFailed as exc:
            logger.warning("Continuing %s without widget library: %s", project.id, exc)

    def _transition(self, project: DeployedProject, status: ProjectStatus) -> None:
        project.advance(status)
        self._record(project, STATUS_EVENT_TYPES[status])

    def _fail(
        self,
        project: DeployedProject,
        exc: BaseException,
        *,
        message: str | None = None,
    ) -> None:
        message = message or str(exc) or exc.__class__.__name__
        if isinstance(exc, DeploymentError):
            exc.project_id = project.id
        self._ports.release(project.port)
        if project.status in {ProjectStatus.STOPPED, ProjectStatus.ERROR}:
            return
        project.mark_error(message)
        self._record(
            project,
            STATUS_EVENT_TYPES[ProjectStatus.ERROR],
            error=message,
            error_type=exc.__class__.__name__,
        )
        logger.error("Deployment of %s failed: %s", project.id, message)

    async def _stop(self, project: DeployedProject, *, reason: str) -> None:
        handle = project.process
        if handle is None or project.status is not ProjectStatus.RUNNING:
            return
        # Flip state before the kill suspends so a racing stop sees it stopped.
        project.mark_stopped()
        self._ports.release(project.port)
        self._record(project, STATUS_EVENT_TYPES[ProjectStatus.STOPPED], reason=reason)
        watcher = self._watchers.pop(project.id, None)
        if watcher is not None:
            watcher.cancel()
        returncode = await handle.kill()
        logger.info("Stopped project %s (exit %s)", project.id, returncode)

    async def _watch_exit(self, project: DeployedProject, handle: DevServerHandle) -> None:
        try:
            returncode = await handle.wait()
            if project.process is handle and project.status is ProjectStatus.RUNNING:
                project.mark_stopped()
                self._ports.release(project.port)
                self._record(
                    project,
                    STATUS_EVENT_TYPES[ProjectStatus.STOPPED],
                    reason="exited",
                    returncode=returncode,
                )
                logger.info("Project %s dev server exited with code %s", project.id, returncode)
        except Exception:
            logger.exception("Failed to track dev server exit for %s", project.id)
        finally:
            if self._watchers.get(project.id) is asyncio.current_task():
                self._watchers.pop(project.id, None)

    async def _remove_directory(self, path: Path) -> bool:
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except FileNotFoundError:
            return True
        except OSError as exc:
            logger.warning("Failed to remove project directory %s: %s", path, exc)
            return False
        return True

    async def _sweep_orphans(self, now: datetime, max_age_seconds: float) -> list[str]:
        try:
            entries = await asyncio.to_thread(_list_directories, self._root_dir)
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.warning("Error listing %s during cleanup: %s", self._root_dir, exc)
            return []

        removed: list[str] = []
        cutoff = now.timestamp() - max_age_seconds
        for path, modified_at in entries:
            if path.name in self._registry or modified_at >= cutoff:
                continue
            if not await self._remove_directory(path):
                continue
            logger.info("Cleaned up orphaned project directory: %s", path.name)
            removed.append(path.name)
        return removed

    def _record(
        self,
        project: DeployedProject,
        event_type: EventType,
        **payload: str | int | float | bool | None,
    ) -> None:
        # Events are only kept for registered projects.
        if project.id not in self._registry:
            return
        self._registry.append_event(
            DeploymentEvent(
                project_id=project.id,
                event_type=event_type,
                payload={"status": project.status.value, **payload},
                timestamp=self._clock(),
            )
        )


def _list_directories(root: Path) -> list[tuple[Path, float]]:
    return [(path, path.stat().st_mtime) for path in root.iterdir() if path.is_dir()]
