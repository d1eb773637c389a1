"""
Version comparison for manifest and installed versions.

Upstream version strings are arbitrary ("1.2.0", "v1.2-beta", "2024.01.05_1",
"nightly-20240101"), so the default scheme is a tolerant digit-run heuristic
that never raises. A PEP 440 scheme backed by `packaging` is available for
callers that prefer proper pre-release ordering.
"""

from __future__ import annotations

import re

VERSION_PARTS = 4

_SEPARATORS = re.compile(r"[.\-_+]")
_LEADING_DIGITS = re.compile(r"^(\d+)")


def parse_version(version: str | None) -> tuple[int, ...]:
    """
    Parse a version string into a fixed-width tuple of integers.

    Splits on '.', '-', '_' and '+', keeps each component's leading digit
    run, coerces anything else to 0 and pads/truncates to four parts.

    Args:
        version: Version string (may be None or empty)

    Returns:
        Tuple of four integers
    """
    parts: list[int] = []
    for component in _SEPARATORS.split(str(version or "").strip()):
        match = _LEADING_DIGITS.match(component)
        parts.append(int(match.group(1)) if match else 0)

    parts.extend([0] * (VERSION_PARTS - len(parts)))
    return tuple(parts[:VERSION_PARTS])


def _compare_tolerant(v1: str, v2: str) -> int:
    a = parse_version(v1)
    b = parse_version(v2)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def _compare_pep440(v1: str, v2: str) -> int:
    from packaging.version import InvalidVersion, Version

    try:
        ver1 = Version(v1)
        ver2 = Version(v2)
    except InvalidVersion:
        return _compare_tolerant(v1, v2)

    if ver1 < ver2:
        return -1
    if ver1 > ver2:
        return 1
    return 0


def compare_versions(v1: str | None, v2: str | None, scheme: str = "tolerant") -> int:
    """
    Compare two version strings.

    Args:
        v1: First version
        v2: Second version
        scheme: 'tolerant' (digit runs) or 'pep440'

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2
    """
    v1 = str(v1 or "")
    v2 = str(v2 or "")
    if scheme == "pep440":
        return _compare_pep440(v1, v2)
    return _compare_tolerant(v1, v2)


def is_outdated(installed: str | None, latest: str | None, scheme: str = "tolerant") -> bool:
    """True when both versions are known, differ, and latest ranks higher."""
    if not installed or not latest:
        return False
    if installed == latest:
        return False
    return compare_versions(installed, latest, scheme) < 0


def highest_version(versions: list[str], scheme: str = "tolerant") -> str | None:
    """
    Pick the highest version; on ties the first occurrence wins.

    Empty strings are ignored.
    """
    best: str | None = None
    for candidate in versions:
        if not candidate:
            continue
        if best is None or compare_versions(candidate, best, scheme) > 0:
            best = candidate
    return best
