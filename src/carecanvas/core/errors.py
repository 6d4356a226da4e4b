"""Deployment pipeline failures."""

from __future__ import annotations


class DeploymentError(RuntimeError):
    """Base class for failures raised by the local deployment pipeline."""

    project_id: str | None = None


class NoPortAvailable(DeploymentError):
    """Every candidate port in the probe window was taken."""

    def __init__(self, start: int, span: int) -> None:
        super().__init__(f"No available ports found in {start}..{start + span - 1}")
        self.start = start
        self.span = span


class StageWriteFailed(DeploymentError):
    """Writing the project bundle to disk failed."""

    def __init__(self, message: str, *, rel_path: str | None = None) -> None:
        super().__init__(message)
        self.rel_path = rel_path


class WidgetCopyFailed(DeploymentError):
    """Copying the shared widget library failed; callers treat this as non-fatal."""


class InstallFailed(DeploymentError):
    """Dependency installation exited non-zero or could not be spawned."""

    def __init__(self, message: str, *, output: str = "", returncode: int | None = None) -> None:
        super().__init__(message)
        self.output = output
        self.returncode = returncode


class StartupTimeout(DeploymentError):
    """The dev server never reported readiness inside the startup window."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Dev server startup timeout after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class DevServerExited(DeploymentError):
    """The dev server exited (or failed to spawn) before reporting readiness."""

    def __init__(self, returncode: int | None, *, detail: str = "") -> None:
        message = f"Dev server exited with code {returncode}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.returncode = returncode
