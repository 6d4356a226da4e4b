"""Project API schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, Field

from carecanvas.models.project import DeployedProject


class DeployProjectRequest(BaseModel):
    """Payload for deploying a generated bundle locally."""

    title: str = Field(min_length=1)
    files: dict[str, str] = Field(validation_alias=AliasChoices("files", "deploymentPackage"))


class ProjectActionRequest(BaseModel):
    """Lifecycle action on an existing project."""

    action: str


class ProjectResponse(BaseModel):
    """Single project payload."""

    project: DeployedProject


class DeployProjectResponse(ProjectResponse):
    """Successful deployment payload."""

    message: str


class ProjectActionResponse(BaseModel):
    """Result of a lifecycle action."""

    action: Literal["stop"]
    message: str
    project: DeployedProject


class ProjectsResponse(BaseModel):
    """Collection response for projects."""

    items: list[DeployedProject]
