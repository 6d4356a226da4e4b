"""Shared API dependency providers."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from carecanvas.config import DeploymentSettings
from carecanvas.core.deployment_manager import LocalDeploymentManager
from carecanvas.core.port_allocator import PortAllocator
from carecanvas.core.process_runner import ProcessRunner
from carecanvas.core.reaper import ProjectReaper
from carecanvas.core.registry import ProjectRegistry
from carecanvas.core.stager import ProjectStager


@dataclass(slots=True)
class DeploymentContext:
    """Application-scoped deployment collaborators."""

    settings: DeploymentSettings
    registry: ProjectRegistry
    manager: LocalDeploymentManager
    reaper: ProjectReaper


def build_context(settings: DeploymentSettings) -> DeploymentContext:
    registry = ProjectRegistry()
    manager = LocalDeploymentManager(
        root_dir=settings.root_dir,
        registry=registry,
        stager=ProjectStager(settings.widget_source_dir),
        runner=ProcessRunner(
            install_command=settings.install_command,
            dev_command=settings.dev_command,
            startup_timeout_seconds=settings.startup_timeout_seconds,
            max_log_lines=settings.max_log_lines,
        ),
        ports=PortAllocator(base_port=settings.base_port, span=settings.port_span),
    )
    reaper = ProjectReaper(
        manager,
        max_age_seconds=settings.max_age_seconds,
        interval_seconds=settings.reaper_interval_seconds,
        initial_delay_seconds=settings.reaper_initial_delay_seconds,
    )
    return DeploymentContext(settings=settings, registry=registry, manager=manager, reaper=reaper)


def get_context(request: Request) -> DeploymentContext:
    context: DeploymentContext = request.app.state.deployment
    return context


def get_deployment_manager(request: Request) -> LocalDeploymentManager:
    return get_context(request).manager
