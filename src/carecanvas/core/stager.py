"""Materialize generated bundles as project directories."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from carecanvas.core.errors import StageWriteFailed, WidgetCopyFailed

logger = logging.getLogger(__name__)

PROJECT_DIRECTORIES = (
    "src/app",
    "src/lib",
    "src/components/widgets",
    "public",
)
WIDGET_DESTINATION = "src/components/widgets"
WIDGET_SUFFIXES = frozenset({".ts", ".tsx"})


class ProjectStager:
    """Write bundle files under a project root."""

    def __init__(self, widget_source_dir: Path | None = None) -> None:
        self._widget_source_dir = widget_source_dir

    def stage(self, project_path: Path, bundle: Mapping[str, str]) -> None:
        self.create_structure(project_path)
        self.write_files(project_path, bundle)

    def create_structure(self, project_path: Path) -> None:
        try:
            project_path.mkdir(parents=True, exist_ok=True)
            for directory in PROJECT_DIRECTORIES:
                (project_path / directory).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Failed to create project structure at {project_path}: {exc}"
            raise StageWriteFailed(msg) from exc

    def write_files(self, project_path: Path, bundle: Mapping[str, str]) -> None:
        """Write every bundle entry, overwriting existing files.

        Stops at the first failure; files already written stay on disk.
        """
        for rel_path, content in bundle.items():
            target = self._resolve(project_path, rel_path)
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content, encoding="utf-8")
            except OSError as exc:
                msg = f"Failed to write {rel_path}: {exc}"
                raise StageWriteFailed(msg, rel_path=rel_path) from exc

    def copy_widget_library(self, project_path: Path) -> list[Path]:
        source = self._widget_source_dir
        if source is None:
            raise WidgetCopyFailed("No widget source directory configured")
        destination = project_path / WIDGET_DESTINATION
        copied: list[Path] = []
        try:
            widget_files = sorted(
                path
                for path in source.iterdir()
                if path.is_file() and path.suffix in WIDGET_SUFFIXES
            )
            destination.mkdir(parents=True, exist_ok=True)
            for widget in widget_files:
                target = destination / widget.name
                target.write_text(widget.read_text(encoding="utf-8"), encoding="utf-8")
                copied.append(target)
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"Error copying widget library from {source}: {exc}"
            raise WidgetCopyFailed(msg) from exc
        logger.debug("Copied %d widget files into %s", len(copied), destination)
        return copied

    @staticmethod
    def _resolve(project_path: Path, rel_path: str) -> Path:
        root = project_path.resolve()
        candidate = (root / rel_path).resolve()
        if root not in candidate.parents:
            msg = f"Path escapes project root: {rel_path}"
            raise StageWriteFailed(msg, rel_path=rel_path)
        return candidate
