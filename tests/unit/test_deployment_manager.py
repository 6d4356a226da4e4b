from __future__ import annotations

import asyncio
import logging
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from carecanvas.core.deployment_manager import LocalDeploymentManager
from carecanvas.core.errors import InstallFailed, NoPortAvailable, StageWriteFailed, StartupTimeout
from carecanvas.core.port_allocator import PortAllocator
from carecanvas.core.process_runner import ProcessRunner
from carecanvas.core.registry import ProjectRegistry
from carecanvas.core.stager import ProjectStager
from carecanvas.models.events import EventType
from carecanvas.models.project import ProjectStatus
from tests.support.deploy_fakes import (
    FakeProcess,
    FakeRunner,
    always_free,
    make_context,
    make_manager,
    wait_until,
)

BUNDLE = {
    "package.json": '{"name": "pain-clinic-intake", "scripts": {"dev": "next dev"}}\n',
    "app/page": "export default function Page() { return null }\n",
}


def _statuses(manager: LocalDeploymentManager, project_id: str) -> list[str]:
    return [str(event.payload["status"]) for event in manager.events(project_id)]


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


@pytest.mark.asyncio
async def test_deploy_happy_path(tmp_path: Path) -> None:
    runner = FakeRunner()
    manager = make_manager(tmp_path, runner=runner)

    project = await manager.deploy("Pain Clinic Intake", BUNDLE)

    assert project.id.startswith("pain-clinic-intake-")
    assert project.name == "Pain Clinic Intake"
    assert project.status is ProjectStatus.RUNNING
    assert project.port is not None
    assert 3001 <= project.port <= 3100
    assert project.url == f"http://localhost:{project.port}"
    assert project.error is None
    assert project.process is manager.server_for(project.id)
    assert (project.path / "app/page").read_text(encoding="utf-8") == BUNDLE["app/page"]
    assert runner.installs == [project.path]
    assert _statuses(manager, project.id) == ["creating", "installing", "starting", "running"]
    assert manager.list() == [project]
    assert manager.get(project.id) is project
    await manager.stop_all()


@pytest.mark.asyncio
async def test_deploy_install_failure_records_error(tmp_path: Path) -> None:
    runner = FakeRunner(
        install_error=InstallFailed(
            "npm install failed: npm ERR! code ENOTFOUND",
            output="npm ERR! code ENOTFOUND",
            returncode=1,
        )
    )
    manager = make_manager(tmp_path, runner=runner)

    with pytest.raises(InstallFailed) as excinfo:
        await manager.deploy("Pain Clinic Intake", BUNDLE)

    [project] = manager.list()
    assert excinfo.value.project_id == project.id
    assert project.status is ProjectStatus.ERROR
    assert project.error is not None
    assert "ENOTFOUND" in project.error
    assert project.port is None
    assert project.url is None
    assert runner.launches == []
    assert _statuses(manager, project.id) == ["creating", "installing", "error"]


@pytest.mark.asyncio
async def test_deploy_stage_failure_stops_pipeline(tmp_path: Path) -> None:
    runner = FakeRunner()
    manager = make_manager(tmp_path, runner=runner)

    with pytest.raises(StageWriteFailed):
        await manager.deploy("Escape", {"../../outside.txt": "x"})

    [project] = manager.list()
    assert project.status is ProjectStatus.ERROR
    assert runner.installs == []
    assert _statuses(manager, project.id) == ["creating", "error"]


@pytest.mark.asyncio
async def test_deploy_port_exhaustion_is_recorded(tmp_path: Path) -> None:
    async def nothing_free(host: str, port: int) -> bool:
        del host, port
        return False

    runner = FakeRunner()
    manager = make_manager(tmp_path, runner=runner, probe=nothing_free)

    with pytest.raises(NoPortAvailable):
        await manager.deploy("Pain Clinic Intake", BUNDLE)

    [project] = manager.list()
    assert project.status is ProjectStatus.ERROR
    assert project.port is None
    assert runner.launches == []
    assert _statuses(manager, project.id) == ["creating", "installing", "starting", "error"]


@pytest.mark.asyncio
async def test_deploy_readiness_timeout_kills_process(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    processes: list[FakeProcess] = []

    async def fake_create_subprocess_exec(*command: str, **kwargs: Any) -> FakeProcess:
        del kwargs
        if command[:2] == ("npm", "install"):
            return FakeProcess(exit_code=0)
        process = FakeProcess(stdout_lines=["> next dev"])
        processes.append(process)
        return process

    monkeypatch.setattr(
        "carecanvas.core.process_runner.asyncio.create_subprocess_exec",
        fake_create_subprocess_exec,
    )
    ports = PortAllocator(probe=always_free)
    manager = LocalDeploymentManager(
        root_dir=tmp_path / "generated-apps",
        registry=ProjectRegistry(),
        stager=ProjectStager(tmp_path / "widgets"),
        runner=ProcessRunner(startup_timeout_seconds=0.05, new_session=False),
        ports=ports,
    )

    with pytest.raises(StartupTimeout):
        await manager.deploy("Pain Clinic Intake", BUNDLE)

    [project] = manager.list()
    assert project.status is ProjectStatus.ERROR
    assert project.error is not None
    assert "timeout" in project.error
    assert project.process is None
    assert processes[0].killed is True
    assert ports.reserved == frozenset()


@pytest.mark.asyncio
async def test_widget_copy_failure_is_not_fatal(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    manager = make_manager(tmp_path, widget_source_dir=tmp_path / "no-such-widgets")

    with caplog.at_level(logging.WARNING, logger="carecanvas.core.deployment_manager"):
        project = await manager.deploy("Pain Clinic Intake", BUNDLE)

    assert project.status is ProjectStatus.RUNNING
    assert "without widget library" in caplog.text
    assert list((project.path / "src/components/widgets").iterdir()) == []
    await manager.stop_all()


@pytest.mark.asyncio
async def test_widget_library_is_copied(tmp_path: Path) -> None:
    widgets = tmp_path / "widgets"
    widgets.mkdir()
    (widgets / "PatientIntakeForm.tsx").write_text("export {}", encoding="utf-8")
    manager = make_manager(tmp_path, widget_source_dir=widgets)

    project = await manager.deploy("Intake", BUNDLE)

    assert (project.path / "src/components/widgets/PatientIntakeForm.tsx").exists()
    await manager.stop_all()


@pytest.mark.asyncio
async def test_stop_is_idempotent(tmp_path: Path) -> None:
    runner = FakeRunner()
    manager = make_manager(tmp_path, runner=runner)
    project = await manager.deploy("Pain Clinic Intake", BUNDLE)

    assert await manager.stop(project.id) is True
    assert await manager.stop(project.id) is True

    assert project.status is ProjectStatus.STOPPED
    assert project.process is None
    assert project.url is None
    assert runner.processes[0].killed is True
    assert _statuses(manager, project.id)[-1] == "stopped"
    assert len(manager.events(project.id, EventType.PROJECT_STOPPED)) == 1


@pytest.mark.asyncio
async def test_concurrent_stops_kill_once(tmp_path: Path) -> None:
    manager = make_manager(tmp_path)
    project = await manager.deploy("Pain Clinic Intake", BUNDLE)

    results = await asyncio.gather(manager.stop(project.id), manager.stop(project.id))

    assert results == [True, True]
    assert len(manager.events(project.id, EventType.PROJECT_STOPPED)) == 1


@pytest.mark.asyncio
async def test_delete_is_idempotent(tmp_path: Path) -> None:
    runner = FakeRunner()
    manager = make_manager(tmp_path, runner=runner)
    project = await manager.deploy("Pain Clinic Intake", BUNDLE)

    results = await asyncio.gather(manager.delete(project.id), manager.delete(project.id))

    assert sorted(results) == [False, True]
    assert await manager.delete(project.id) is False
    assert manager.get(project.id) is None
    assert manager.server_for(project.id) is None
    assert not project.path.exists()
    assert runner.processes[0].killed is True


@pytest.mark.asyncio
async def test_unknown_project_operations(tmp_path: Path) -> None:
    manager = make_manager(tmp_path)

    assert manager.get("missing") is None
    assert await manager.stop("missing") is False
    assert await manager.delete("missing") is False


@pytest.mark.asyncio
async def test_failed_record_can_be_deleted(tmp_path: Path) -> None:
    manager = make_manager(
        tmp_path, runner=FakeRunner(install_error=InstallFailed("npm install failed: boom"))
    )
    with pytest.raises(InstallFailed):
        await manager.deploy("Broken", BUNDLE)
    [project] = manager.list()

    assert await manager.delete(project.id) is True
    assert manager.list() == []
    assert not project.path.exists()


@pytest.mark.asyncio
async def test_process_exit_marks_project_stopped(tmp_path: Path) -> None:
    runner = FakeRunner()
    ports = PortAllocator(probe=always_free)
    manager = LocalDeploymentManager(
        root_dir=tmp_path / "generated-apps",
        registry=ProjectRegistry(),
        stager=ProjectStager(),
        runner=runner,  # type: ignore[arg-type]
        ports=ports,
    )
    project = await manager.deploy("Pain Clinic Intake", BUNDLE)

    runner.processes[0].exit(0)
    await wait_until(lambda: project.status is ProjectStatus.STOPPED)

    assert project.process is None
    assert project.url is None
    assert ports.reserved == frozenset()
    [stopped] = manager.events(project.id, EventType.PROJECT_STOPPED)
    assert stopped.payload["reason"] == "exited"
    assert stopped.payload["returncode"] == 0


@pytest.mark.asyncio
async def test_ids_are_unique_for_same_title_and_instant(tmp_path: Path) -> None:
    clock = _Clock(datetime(2025, 8, 1, 12, 0, tzinfo=UTC))
    manager = make_manager(tmp_path, clock=clock)

    first = await manager.deploy("Pain Clinic Intake", BUNDLE)
    second = await manager.deploy("Pain Clinic Intake", BUNDLE)

    assert first.id != second.id
    assert first.path != second.path
    assert first.port != second.port
    await manager.stop_all()


@pytest.mark.asyncio
async def test_sweep_respects_max_age_boundary(tmp_path: Path) -> None:
    start = datetime(2025, 8, 1, 12, 0, tzinfo=UTC)
    clock = _Clock(start)
    max_age = 24 * 60 * 60
    manager = make_manager(tmp_path, clock=clock)

    old = await manager.deploy("Old Intake", BUNDLE)
    clock.now = start + timedelta(seconds=1)
    exact = await manager.deploy("Exact Intake", BUNDLE)
    clock.now = start + timedelta(seconds=2)
    young = await manager.deploy("Young Intake", BUNDLE)

    clock.now = start + timedelta(seconds=max_age + 1)
    removed = await manager.sweep(max_age)

    assert removed == [old.id]
    assert manager.get(old.id) is None
    assert manager.events(old.id) == []
    assert not old.path.exists()
    assert manager.get(exact.id) is exact
    assert _statuses(manager, exact.id)[-1] == "running"
    assert manager.get(young.id) is young
    await manager.stop_all()


@pytest.mark.asyncio
async def test_sweep_continues_after_failure(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    start = datetime(2025, 8, 1, 12, 0, tzinfo=UTC)
    clock = _Clock(start)
    manager = make_manager(tmp_path, clock=clock)
    first = await manager.deploy("First", BUNDLE)
    second = await manager.deploy("Second", BUNDLE)
    original_delete = manager.delete

    async def flaky_delete(project_id: str) -> bool:
        if project_id == first.id:
            raise RuntimeError("disk on fire")
        return await original_delete(project_id)

    monkeypatch.setattr(manager, "delete", flaky_delete)
    clock.now = start + timedelta(hours=25)

    removed = await manager.sweep(24 * 60 * 60)

    assert removed == [second.id]
    assert manager.get(first.id) is first
    await manager.stop_all()


@pytest.mark.asyncio
async def test_sweep_removes_stale_orphan_directories(tmp_path: Path) -> None:
    now = datetime.now(UTC)
    manager = make_manager(tmp_path, clock=lambda: now)
    root = manager.root_dir
    stale = root / "old-form-1700000000000"
    fresh = root / "new-form-1754071543664"
    stale.mkdir(parents=True)
    fresh.mkdir(parents=True)
    stale_time = (now - timedelta(days=2)).timestamp()
    os.utime(stale, (stale_time, stale_time))

    removed = await manager.sweep(24 * 60 * 60)

    assert removed == [stale.name]
    assert not stale.exists()
    assert fresh.exists()


@pytest.mark.asyncio
async def test_sweep_without_root_directory(tmp_path: Path) -> None:
    manager = make_manager(tmp_path)
    assert await manager.sweep(0) == []


@pytest.mark.asyncio
async def test_cancelled_deploy_kills_dev_server(tmp_path: Path) -> None:
    runner = FakeRunner(ready=False, startup_timeout_seconds=30.0)
    ports = PortAllocator(probe=always_free)
    manager = LocalDeploymentManager(
        root_dir=tmp_path / "generated-apps",
        registry=ProjectRegistry(),
        stager=ProjectStager(),
        runner=runner,  # type: ignore[arg-type]
        ports=ports,
    )

    task = asyncio.create_task(manager.deploy("Pain Clinic Intake", BUNDLE))
    await wait_until(lambda: bool(runner.processes))
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    [project] = manager.list()
    assert runner.processes[0].killed is True
    assert project.status is ProjectStatus.ERROR
    assert project.error == "Deployment cancelled"
    assert project.process is None
    assert ports.reserved == frozenset()
    assert _statuses(manager, project.id)[-1] == "error"


@pytest.mark.asyncio
async def test_delete_drops_project_events(tmp_path: Path) -> None:
    registry = ProjectRegistry()
    manager = make_manager(tmp_path, registry=registry)

    for _ in range(5):
        project = await manager.deploy("Pain Clinic Intake", BUNDLE)
        assert await manager.delete(project.id) is True

    assert len(registry) == 0
    assert registry.list_events() == []


@pytest.mark.asyncio
async def test_context_shares_registry_with_manager(tmp_path: Path) -> None:
    context = make_context(tmp_path)

    project = await context.manager.deploy("Pain Clinic Intake", BUNDLE)

    assert context.registry.get(project.id) is project
    assert len(context.registry.list_events(project_id=project.id)) == 4
    await context.manager.stop_all()


@pytest.mark.asyncio
async def test_sweep_reports_only_removed_orphans(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    now = datetime.now(UTC)
    manager = make_manager(tmp_path, clock=lambda: now)
    stale = manager.root_dir / "old-form-1700000000000"
    stale.mkdir(parents=True)
    stale_time = (now - timedelta(days=2)).timestamp()
    os.utime(stale, (stale_time, stale_time))

    def read_only_rmtree(path: Path) -> None:
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr("carecanvas.core.deployment_manager.shutil.rmtree", read_only_rmtree)
    with caplog.at_level(logging.INFO, logger="carecanvas.core.deployment_manager"):
        removed = await manager.sweep(24 * 60 * 60)

    assert removed == []
    assert stale.exists()
    assert "Failed to remove project directory" in caplog.text
    assert "Cleaned up orphaned project directory" not in caplog.text
