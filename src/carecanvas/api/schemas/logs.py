"""Dev server log schemas."""

from __future__ import annotations

from pydantic import BaseModel


class LogsResponse(BaseModel):
    """Cursor-based slice of dev server output."""

    logs: list[str]
    cursor: int
    start_cursor: int
    end_cursor: int
    truncated: bool
    has_more: bool
