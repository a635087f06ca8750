"""Optimistic concurrency version token helpers."""

from __future__ import annotations

import re

from .errors import ConcurrencyConflictError

INITIAL_VERSION = 1

_MARKER_RE = re.compile(r'^(?:W/)?"?(\d+)"?$')


def next_version(current: int) -> int:
    """Return the version that follows ``current``."""

    return current + 1


def ensure_version(work_item_id: str, *, current: int, expected: int) -> None:
    """Raise :class:`ConcurrencyConflictError` unless ``expected`` is the stored version."""

    if current != expected:
        raise ConcurrencyConflictError(work_item_id, expected=expected, actual=current)


def format_version_marker(version: int) -> str:
    return f'"{version}"'


def parse_version_marker(raw: str | None) -> int | None:
    """Extract the integer version from an ``If-Match`` style header value.

    Accepts ``5``, ``"5"`` and weak ``W/"5"`` forms. Anything else, including a
    missing header, yields ``None`` so the caller can reject the request.
    """

    if raw is None:
        return None
    match = _MARKER_RE.match(raw.strip())
    if match is None:
        return None
    return int(match.group(1))
