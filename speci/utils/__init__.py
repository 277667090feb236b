"""Small text and time helpers shared across speci."""

from __future__ import annotations

from datetime import datetime, UTC


def truncate_with_marker(text: str, max_length: int, marker: str = "[...truncated]") -> str:
    """
    Truncate text and add marker if it exceeds max_length.

    Args:
        text: The text to truncate.
        max_length: Maximum length before truncation.
        marker: Marker to append when truncated.

    Returns:
        Original text if within limit, otherwise truncated with marker.
    """
    if len(text) <= max_length:
        return text
    truncate_at = max_length - len(marker)
    return text[:truncate_at] + marker


def excerpt_lines(text: str, max_lines: int = 5) -> list[str]:
    """First ``max_lines`` non-blank lines of ``text``."""
    lines = [line for line in text.splitlines() if line.strip()]
    return lines[:max_lines]


def format_elapsed(started: datetime, now: datetime | None = None) -> str:
    """
    Format time elapsed since ``started`` as ``HH:MM:SS``.

    Naive datetimes are taken as local time. Hours are not wrapped at 24.
    """
    if started.tzinfo is None:
        started = started.astimezone()
    now = now or datetime.now(UTC)
    seconds = max(0, int((now - started).total_seconds()))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


__all__ = [
    "excerpt_lines",
    "format_elapsed",
    "truncate_with_marker",
]
