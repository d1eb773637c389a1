"""
Executable discovery.

Lookup order: shims of the user scope, shims of the global scope, then
every directory on PATH. Names are matched case-insensitively and, when
given without an extension, expanded with the PATHEXT extensions.
"""

from __future__ import annotations

import os
import re

from .common import vlog
from .paths import both_scopes

DEFAULT_PATHEXT = ".COM;.EXE;.BAT;.CMD;.VBS;.VBE;.JS;.JSE;.WSF;.WSH;.MSC;.PS1"

# `path = "C:\...\app.exe"` line of a <name>.shim file
SHIM_PATH_RE = re.compile(r'^\s*path\s*=\s*"?([^"\r\n]+?)"?\s*$', re.MULTILINE)


def get_path_extensions() -> list[str]:
    """Lower-cased executable extensions from PATHEXT."""
    value = os.environ.get("PATHEXT") or DEFAULT_PATHEXT
    return [ext.strip().lower() for ext in value.split(";") if ext.strip()]


def candidates_for_name(name: str) -> list[str]:
    """
    File names that may provide the command `name`.

    A name with an extension is used as-is; otherwise every PATHEXT
    extension is tried, then the bare name for extensionless scripts.
    """
    if os.path.splitext(name)[1]:
        return [name]

    lower = name.lower()
    candidates: list[str] = []
    for ext in get_path_extensions() + [""]:
        candidate = lower + ext
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


def find_file_case_insensitive(directory: str, filename: str) -> str | None:
    """
    Find a regular file in `directory` ignoring case.

    Returns:
        Path with the on-disk spelling, or None
    """
    direct = os.path.join(directory, filename)
    if os.path.isfile(direct):
        return direct

    wanted = filename.lower()
    try:
        with os.scandir(directory) as it:
            for entry in it:
                if entry.name.lower() != wanted:
                    continue
                try:
                    if entry.is_file():
                        return entry.path
                except OSError:
                    continue
    except OSError:
        return None
    return None


def _unique_paths(paths: list[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for path in paths:
        key = path.lower()
        if key not in seen:
            seen.add(key)
            unique.append(path)
    return unique


def _read_shim_file(shim_path: str) -> str | None:
    shim_file = os.path.splitext(shim_path)[0] + ".shim"
    try:
        with open(shim_file, "r", encoding="utf-8-sig") as f:
            match = SHIM_PATH_RE.search(f.read())
    except (OSError, UnicodeDecodeError):
        return None
    if match and os.path.isfile(match.group(1)):
        return match.group(1)
    return None


def _search_current_dirs(apps_dir: str, candidates: list[str]) -> str | None:
    try:
        apps = sorted(e.name for e in os.scandir(apps_dir) if e.is_dir())
    except OSError:
        return None

    for app in apps:
        current = os.path.join(apps_dir, app, "current")
        if not os.path.isdir(current):
            continue
        try:
            subdirs = sorted(e.path for e in os.scandir(current) if e.is_dir())
        except OSError:
            subdirs = []
        for directory in [current] + subdirs:
            for candidate in candidates:
                target = find_file_case_insensitive(directory, candidate)
                if target:
                    return target
    return None


def resolve_shim_target(shim_path: str) -> str | None:
    """
    Resolve a shim to the executable it launches.

    The `path` entry of a sibling .shim file wins; otherwise the
    'current' directory of each installed app (and its immediate
    subdirectories) is searched for a file named like the shim.

    Returns:
        Target path, or None when it cannot be determined
    """
    target = _read_shim_file(shim_path)
    if target:
        return target

    scope_root = os.path.dirname(os.path.dirname(shim_path))
    apps_dir = os.path.join(scope_root, "apps")
    if not os.path.isdir(apps_dir):
        return None
    stem = os.path.splitext(os.path.basename(shim_path))[0]
    return _search_current_dirs(apps_dir, candidates_for_name(stem))


def find_in_shims(name: str, verbose: bool = False) -> list[str]:
    """
    Search the shim directories, user scope first.

    Each hit is reported as its resolved target, or as the shim itself
    when the target is unknown.
    """
    matches: list[str] = []
    candidates = candidates_for_name(name)
    for sp in both_scopes():
        for candidate in candidates:
            shim = find_file_case_insensitive(sp.shims, candidate)
            if shim is None:
                continue
            target = resolve_shim_target(shim)
            vlog(f"Shim {shim} -> {target or '(unresolved)'}", verbose)
            matches.append(target or shim)
    return _unique_paths(matches)


def find_in_path(name: str) -> list[str]:
    """Search every PATH directory in order."""
    path_value = os.environ.get("PATH") or os.environ.get("Path") or ""
    directories = [d.strip() for d in path_value.split(os.pathsep) if d.strip()]

    matches: list[str] = []
    candidates = candidates_for_name(name)
    for directory in directories:
        for candidate in candidates:
            found = find_file_case_insensitive(directory, candidate)
            if found:
                matches.append(found)
    return _unique_paths(matches)


def which(name: str, verbose: bool = False) -> list[str]:
    """
    Locate an executable: shim hits first, then PATH hits.

    Returns:
        Unique paths (compared case-insensitively); [] when not found
    """
    return _unique_paths(find_in_shims(name, verbose) + find_in_path(name))
