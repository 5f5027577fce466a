"""
Version arithmetic for prompt lineages.

Versions are rendered ``major.minor.patch`` with non-negative integer parts.
Everything here is pure; callers own the I/O.
"""
import re
from typing import Optional, Tuple, Union

from promptkeeper.enums import BumpClass

INITIAL_VERSION = "1.0.0"

_PART_RE = re.compile(r"^[0-9]+$")

VersionTuple = Tuple[int, int, int]


def parse_version(version: Optional[str]) -> Optional[VersionTuple]:
    """Returns the ``(major, minor, patch)`` tuple, or None when malformed."""
    if not isinstance(version, str):
        return None
    parts = version.split(".")
    if len(parts) != 3:
        return None
    if not all(_PART_RE.match(part) for part in parts):
        return None
    return int(parts[0]), int(parts[1]), int(parts[2])


def is_valid_version(version: Optional[str]) -> bool:
    return parse_version(version) is not None


def format_version(parts: VersionTuple) -> str:
    return f"{parts[0]}.{parts[1]}.{parts[2]}"


def next_version(current: Optional[str], bump: Union[str, BumpClass, None] = BumpClass.PATCH) -> str:
    """
    Computes the version that follows ``current``.

    An absent or malformed ``current`` yields ``1.0.0``; malformed input is
    not an error here. ``major`` and ``minor`` reset the lower components;
    ``patch`` and any unrecognised bump class increment the patch component.

    Args:
        current: The lineage's latest version string, or None.
        bump: The bump class.

    Returns:
        The next version string.
    """
    parsed = parse_version(current)
    if parsed is None:
        return INITIAL_VERSION

    major, minor, patch = parsed
    bump_value = bump.value if isinstance(bump, BumpClass) else bump
    if bump_value == BumpClass.MAJOR.value:
        return format_version((major + 1, 0, 0))
    if bump_value == BumpClass.MINOR.value:
        return format_version((major, minor + 1, 0))
    return format_version((major, minor, patch + 1))


def compare_versions(a: Optional[str], b: Optional[str]) -> int:
    """
    Lexicographic comparison of version tuples.

    Returns -1, 0 or 1. Returns 0 when either side is malformed, so this is
    not a validity check.
    """
    left = parse_version(a)
    right = parse_version(b)
    if left is None or right is None:
        return 0
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def version_sort_key(version: Optional[str]) -> Tuple[int, int, int, int]:
    """Sort key that places malformed versions below every valid one."""
    parsed = parse_version(version)
    if parsed is None:
        return (0, 0, 0, 0)
    return (1,) + parsed
