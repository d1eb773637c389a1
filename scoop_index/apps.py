"""
Installed application discovery.

Conventions:
- <root>\\apps\\<name>\\current is a junction/symlink to a version folder
  (e.g. <root>\\apps\\git\\2.44.0)
- <version dir>\\install.json optionally records {"bucket": ..., "hold": ...}

Listings are memoized for a short TTL; the host process is short-lived,
so purely time-based invalidation is sufficient.
"""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from typing import Any

from .common import vlog
from .paths import InstallScope, both_scopes, resolve_scoop_paths

# Installed-app listing cache: (apps, timestamp)
_installed_cache: tuple[list[InstalledPackage], float] | None = None
INSTALLED_CACHE_TTL = 30  # seconds


@dataclass(frozen=True)
class InstalledPackage:
    """
    One installed application in one scope.

    Attributes:
        name: App directory name
        scope: Scope the app is installed in
        install_dir: <root>\\apps\\<name>
        current_version_dir: Resolved target of the 'current' link, if any
        version: Basename of current_version_dir, if resolvable
        bucket_origin: Bucket recorded in install.json at install time
        last_modified: mtime of install_dir (epoch seconds)
        held: Whether install.json marks the app as held
    """
    name: str
    scope: InstallScope
    install_dir: str
    current_version_dir: str | None
    version: str | None
    bucket_origin: str | None = None
    last_modified: float = 0.0
    held: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "scope": self.scope.value,
            "install_dir": self.install_dir,
            "current_version_dir": self.current_version_dir,
            "version": self.version,
            "bucket_origin": self.bucket_origin,
            "last_modified": self.last_modified,
            "held": self.held,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InstalledPackage":
        """Create from dictionary."""
        return cls(
            name=data["name"],
            scope=InstallScope(data.get("scope", "user")),
            install_dir=data.get("install_dir", ""),
            current_version_dir=data.get("current_version_dir"),
            version=data.get("version"),
            bucket_origin=data.get("bucket_origin"),
            last_modified=float(data.get("last_modified", 0.0)),
            held=bool(data.get("held", False)),
        )


def read_current_target(app_dir: str) -> tuple[str | None, str | None]:
    """
    Resolve an app's 'current' link in two steps: link target, then version.

    Args:
        app_dir: <root>\\apps\\<name>

    Returns:
        (target, version), or (None, None) when the link is missing or broken
    """
    current = os.path.join(app_dir, "current")
    try:
        # readlink succeeds for symlinks and Windows junctions, not plain directories
        os.readlink(current)
        resolved = os.path.realpath(current, strict=True)
    except OSError:
        return (None, None)

    version = os.path.basename(resolved.rstrip("\\/"))
    if not version:
        return (None, None)
    return (resolved, version)


def read_install_info(version_dir: str | None) -> dict[str, Any]:
    """
    Read install.json from a version directory.

    Returns:
        Parsed object, or {} when missing or unreadable
    """
    if not version_dir:
        return {}
    path = os.path.join(version_dir, "install.json")
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, ValueError, RecursionError):
        return {}


def _scan_scope_apps(apps_dir: str, scope: InstallScope, verbose: bool) -> list[InstalledPackage]:
    try:
        entries = list(os.scandir(apps_dir))
    except OSError as e:
        vlog(f"Cannot read apps directory {apps_dir}: {e}", verbose)
        return []

    results = []
    for entry in entries:
        try:
            if not entry.is_dir():
                continue
            last_modified = entry.stat().st_mtime
        except OSError:
            continue

        target, version = read_current_target(entry.path)
        info = read_install_info(target)
        bucket = info.get("bucket")
        results.append(InstalledPackage(
            name=entry.name,
            scope=scope,
            install_dir=entry.path,
            current_version_dir=target,
            version=version,
            bucket_origin=bucket if isinstance(bucket, str) and bucket else None,
            last_modified=last_modified,
            held=info.get("hold") is True,
        ))
    return results


def _sort_key(app: InstalledPackage) -> tuple[str, int]:
    return (app.name.lower(), 0 if app.scope is InstallScope.USER else 1)


def list_installed_apps(
    name_filter: str | None = None,
    ttl: float = INSTALLED_CACHE_TTL,
    verbose: bool = False,
) -> list[InstalledPackage]:
    """
    List installed apps across both scopes.

    Sorted by case-insensitive name, user scope before global. The full
    listing is memoized for `ttl` seconds.

    Args:
        name_filter: Case-insensitive substring filter on app names
        ttl: Memoization window in seconds
        verbose: Enable verbose logging

    Returns:
        List of InstalledPackage
    """
    global _installed_cache

    apps: list[InstalledPackage] | None = None
    if _installed_cache is not None:
        cached_apps, cached_time = _installed_cache
        if time.time() - cached_time <= ttl:
            vlog("Using cached installed-app listing", verbose)
            apps = cached_apps

    if apps is None:
        apps = []
        for sp in both_scopes():
            if os.path.isdir(sp.apps):
                apps.extend(_scan_scope_apps(sp.apps, sp.scope, verbose))
        apps.sort(key=_sort_key)
        _installed_cache = (list(apps), time.time())
        vlog(f"Found {len(apps)} installed apps", verbose)

    if name_filter and name_filter.strip():
        needle = name_filter.strip().lower()
        return [app for app in apps if needle in app.name.lower()]
    return list(apps)


def clear_installed_cache() -> None:
    """Clear the installed-app listing cache."""
    global _installed_cache
    _installed_cache = None


def resolve_app_prefix(
    app_name: str,
    scope: InstallScope | str | None = None,
    return_current_path: bool = False,
) -> str | None:
    """
    Resolve the install prefix of an app.

    Args:
        app_name: App name
        scope: Restrict to one scope; otherwise user then global
        return_current_path: Return the 'current' link path instead of its target

    Returns:
        Prefix path, or None if the app is not installed with a valid link
    """
    scopes = [resolve_scoop_paths(scope)] if scope else both_scopes()
    for sp in scopes:
        app_dir = os.path.join(sp.apps, app_name)
        target, _ = read_current_target(app_dir)
        if target and os.path.isdir(target):
            return os.path.join(app_dir, "current") if return_current_path else target
    return None


def is_app_held(app_name: str, scope_roots: list[str]) -> bool:
    """
    Check the 'hold' flag of an app's install.json in any of the given roots.

    Args:
        app_name: App name
        scope_roots: Scope roots to check, in order

    Returns:
        True if any scope marks the app as held
    """
    for root in scope_roots:
        current = os.path.join(root, "apps", app_name, "current")
        if read_install_info(current).get("hold") is True:
            return True
    return False
