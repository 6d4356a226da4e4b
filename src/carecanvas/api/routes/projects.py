"""Project routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from carecanvas.api.deps import get_deployment_manager
from carecanvas.api.routes.common import require_project
from carecanvas.api.schemas.projects import (
    DeployProjectRequest,
    DeployProjectResponse,
    ProjectActionRequest,
    ProjectActionResponse,
    ProjectResponse,
    ProjectsResponse,
)
from carecanvas.core.deployment_manager import LocalDeploymentManager
from carecanvas.core.errors import DeploymentError

router = APIRouter(prefix="/api/v1/projects", tags=["projects"])


@router.get("", response_model=ProjectsResponse)
async def list_projects(
    manager: LocalDeploymentManager = Depends(get_deployment_manager),
) -> ProjectsResponse:
    return ProjectsResponse(items=manager.list())


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DeployProjectResponse)
async def deploy_project(
    request: DeployProjectRequest,
    manager: LocalDeploymentManager = Depends(get_deployment_manager),
) -> DeployProjectResponse:
    if not request.files:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: title, files",
        )
    try:
        project = await manager.deploy(request.title, request.files)
    except DeploymentError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": str(exc), "project_id": exc.project_id},
        ) from exc
    return DeployProjectResponse(
        project=project,
        message=f"Project deployed locally at {project.url}",
    )


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    manager: LocalDeploymentManager = Depends(get_deployment_manager),
) -> ProjectResponse:
    return ProjectResponse(project=require_project(project_id, manager))


@router.patch("/{project_id}", response_model=ProjectActionResponse)
async def update_project(
    project_id: str,
    request: ProjectActionRequest,
    manager: LocalDeploymentManager = Depends(get_deployment_manager),
) -> ProjectActionResponse:
    require_project(project_id, manager)
    if request.action != "stop":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid action. Supported actions: stop",
        )
    return await _stop(project_id, manager)


@router.post("/{project_id}/stop", response_model=ProjectActionResponse)
async def stop_project(
    project_id: str,
    manager: LocalDeploymentManager = Depends(get_deployment_manager),
) -> ProjectActionResponse:
    return await _stop(project_id, manager)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: str,
    manager: LocalDeploymentManager = Depends(get_deployment_manager),
) -> None:
    if not await manager.delete(project_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")


async def _stop(project_id: str, manager: LocalDeploymentManager) -> ProjectActionResponse:
    if not await manager.stop(project_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return ProjectActionResponse(
        action="stop",
        message="Project stopped successfully",
        project=require_project(project_id, manager),
    )
