"""Semantic version numbers for a component/framework lineage."""

from __future__ import annotations

import logging
from typing import Iterable, Tuple

logger = logging.getLogger(__name__)

INITIAL_VERSION = "1.0.0"

VersionTuple = Tuple[int, int, int]


def _to_int(segment: str) -> int:
    try:
        return max(int(segment.strip()), 0)
    except (TypeError, ValueError):
        return 0


def parse_version(text: str | None) -> VersionTuple:
    """Parse ``major.minor.patch`` without ever raising.

    A missing major defaults to 1, missing minor/patch to 0, and segments that
    are not integers count as 0.
    """

    parts = (text or "").split(".")
    major = _to_int(parts[0]) if parts[0].strip() else 1
    minor = _to_int(parts[1]) if len(parts) > 1 else 0
    patch = _to_int(parts[2]) if len(parts) > 2 else 0
    return major, minor, patch


def format_version(version: VersionTuple) -> str:
    return "{}.{}.{}".format(*version)


def compare_version_numbers(left: str, right: str) -> int:
    a, b = parse_version(left), parse_version(right)
    return (a > b) - (a < b)


def next_version_number(existing: Iterable[str]) -> str:
    """Return the patch bump of the highest existing number, or 1.0.0."""

    parsed = [parse_version(number) for number in existing]
    if not parsed:
        return INITIAL_VERSION
    major, minor, patch = max(parsed)
    return format_version((major, minor, patch + 1))


def generate_version_number(repository, component_id: str, framework: str) -> str:
    """Next number for every version of ``component_id`` in ``framework``.

    The lineage spans all CSS frameworks of that framework.
    """

    existing = repository.find_by_framework(component_id, framework)
    number = next_version_number(version.version_number for version in existing)
    logger.debug(
        "Generated version %s for component=%s framework=%s (%d existing)",
        number,
        component_id,
        framework,
        len(existing),
    )
    return number
