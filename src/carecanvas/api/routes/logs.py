"""Dev server log routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from carecanvas.api.deps import get_deployment_manager
from carecanvas.api.routes.common import require_project
from carecanvas.api.schemas.logs import LogsResponse
from carecanvas.core.deployment_manager import LocalDeploymentManager

router = APIRouter(prefix="/api/v1/projects/{project_id}/logs", tags=["logs"])


@router.get("", response_model=LogsResponse)
async def project_logs(
    project_id: str,
    cursor: int | None = None,
    limit: int | None = None,
    manager: LocalDeploymentManager = Depends(get_deployment_manager),
) -> LogsResponse:
    project = require_project(project_id, manager)
    handle = manager.server_for(project.id)
    if handle is None:
        return LogsResponse(
            logs=[],
            cursor=0,
            start_cursor=0,
            end_cursor=0,
            truncated=False,
            has_more=False,
        )
    log_read = handle.read_logs(cursor=cursor, limit=limit)
    return LogsResponse(
        logs=log_read.logs,
        cursor=log_read.cursor,
        start_cursor=log_read.start_cursor,
        end_cursor=log_read.end_cursor,
        truncated=log_read.truncated,
        has_more=log_read.has_more,
    )
