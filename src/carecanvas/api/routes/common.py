"""Common route helpers."""

from __future__ import annotations

from fastapi import HTTPException, status

from carecanvas.core.deployment_manager import LocalDeploymentManager
from carecanvas.models.project import DeployedProject


def require_project(project_id: str, manager: LocalDeploymentManager) -> DeployedProject:
    """Load project or return 404."""
    project = manager.get(project_id)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project
