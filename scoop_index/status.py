"""
Installed-app status evaluation.

For every installed app this determines whether it is outdated, held,
deprecated, removed from all buckets, or a failed installation. The
per-app evaluation runs inside worker processes; `check_status` is the
orchestrator entry point.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from .apps import InstalledPackage, is_app_held, list_installed_apps
from .buckets import BucketEntry, all_buckets
from .common import vlog
from .config import Config
from .manifests import path_marks_deprecated, read_manifest
from .paths import InstallScope, get_global_scoop_root, get_user_scoop_root
from .versions import compare_versions, is_outdated

# The package manager's own installation is not a user app
SELF_APP_NAME = "scoop"


@dataclass(frozen=True)
class AppStatus:
    """
    Status of one installed app.

    Attributes:
        name: App name
        installed_version: Version of the 'current' link target
        latest_version: Best version known to the buckets
        scope: Scope the app is installed in
        outdated: installed_version < latest_version
        failed: 'current' link missing/broken or version unresolvable
        deprecated: Manifest lives in a deprecated location or is marked
        removed: No bucket defines the app anymore
        held: install.json marks the app as held
        missing_deps: Dependencies that are not installed
        info: Human-readable status notes
    """
    name: str
    installed_version: str | None
    latest_version: str | None
    scope: InstallScope
    outdated: bool = False
    failed: bool = False
    deprecated: bool = False
    removed: bool = False
    held: bool = False
    missing_deps: tuple[str, ...] = ()
    info: tuple[str, ...] = ()

    @property
    def has_issues(self) -> bool:
        return bool(
            self.outdated or self.failed or self.deprecated or self.removed or self.missing_deps
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "installed_version": self.installed_version,
            "latest_version": self.latest_version,
            "scope": self.scope.value,
            "outdated": self.outdated,
            "failed": self.failed,
            "deprecated": self.deprecated,
            "removed": self.removed,
            "held": self.held,
            "missing_dependencies": list(self.missing_deps),
            "info": list(self.info),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppStatus":
        """Create from dictionary."""
        return cls(
            name=data["name"],
            installed_version=data.get("installed_version"),
            latest_version=data.get("latest_version"),
            scope=InstallScope(data.get("scope", "user")),
            outdated=bool(data.get("outdated")),
            failed=bool(data.get("failed")),
            deprecated=bool(data.get("deprecated")),
            removed=bool(data.get("removed")),
            held=bool(data.get("held")),
            missing_deps=tuple(data.get("missing_dependencies", ())),
            info=tuple(data.get("info", ())),
        )


@dataclass
class LatestVersion:
    """Outcome of looking an app up in the buckets."""
    version: str | None = None
    deprecated: bool = False
    found: bool = False
    dependencies: list[str] = field(default_factory=list)


def find_latest_version(
    app_name: str,
    buckets: Sequence[BucketEntry],
    installed_bucket: str | None = None,
    scheme: str = "tolerant",
) -> LatestVersion:
    """
    Find the best known version of an app.

    The bucket recorded at install time wins when it defines the app with a
    version; otherwise the highest version across all buckets is used.

    Args:
        app_name: App name
        buckets: Bucket listing to search
        installed_bucket: Bucket recorded in install.json
        scheme: Version comparison scheme

    Returns:
        LatestVersion
    """
    result = LatestVersion()

    if installed_bucket:
        origin = next((b for b in buckets if b.name == installed_bucket), None)
        if origin is not None:
            path = origin.manifest_path(app_name)
            if os.path.isfile(path):
                result.found = True
                record = read_manifest(path)
                if record is not None:
                    result.deprecated = path_marks_deprecated(path) or record.deprecated
                    if record.version:
                        result.version = record.version
                        result.dependencies = record.dependencies
                        return result

    for bucket in buckets:
        path = bucket.manifest_path(app_name)
        if not os.path.isfile(path):
            continue
        result.found = True
        if path_marks_deprecated(path):
            result.deprecated = True

        record = read_manifest(path)
        if record is None:
            continue
        if record.deprecated:
            result.deprecated = True
        if not record.version:
            continue
        if result.version is None or compare_versions(record.version, result.version, scheme) > 0:
            result.version = record.version
            result.dependencies = record.dependencies

    return result


def is_installation_failed(app: InstalledPackage) -> bool:
    """Failed when the 'current' target is missing or the version is unknown."""
    if not app.current_version_dir or not os.path.isdir(app.current_version_dir):
        return True
    return not app.version


def evaluate_app(
    app: InstalledPackage,
    buckets: Sequence[BucketEntry],
    scope_roots: Sequence[str],
    installed_names: set[str] | None = None,
    scheme: str = "tolerant",
) -> AppStatus | None:
    """
    Compute the status of one installed app.

    Args:
        app: Installed app
        buckets: Full bucket listing
        scope_roots: User and global scope roots (hold lookup)
        installed_names: Lower-cased names of all installed apps, for
            missing-dependency detection; skipped when None
        scheme: Version comparison scheme

    Returns:
        AppStatus, or None for the package manager's own app
    """
    if app.name.lower() == SELF_APP_NAME:
        return None

    latest = find_latest_version(app.name, buckets, app.bucket_origin, scheme)
    failed = is_installation_failed(app)
    held = app.held or is_app_held(app.name, list(scope_roots))
    removed = not latest.found
    outdated = not removed and is_outdated(app.version, latest.version, scheme)

    missing: list[str] = []
    if installed_names is not None:
        for dep in latest.dependencies:
            dep_name = dep.rsplit("/", 1)[-1]
            if dep_name.lower() not in installed_names:
                missing.append(dep)

    info = []
    if failed:
        info.append("Install failed")
    if held:
        info.append("Held package")
    if latest.deprecated:
        info.append("Deprecated")
    if removed:
        info.append("Manifest removed")

    return AppStatus(
        name=app.name,
        installed_version=app.version,
        latest_version=latest.version,
        scope=app.scope,
        outdated=outdated,
        failed=failed,
        deprecated=latest.deprecated,
        removed=removed,
        held=held,
        missing_deps=tuple(missing),
        info=tuple(info),
    )


def apps_with_issues(statuses: Sequence[AppStatus]) -> list[AppStatus]:
    """
    Statuses worth reporting.

    Held apps are only reported when they also failed, are deprecated or
    were removed.
    """
    return [s for s in statuses if s.has_issues]


def check_status(
    config: Config | None = None,
    on_progress: Callable[[int, int], None] | None = None,
    verbose: bool = False,
) -> list[AppStatus]:
    """
    Evaluate every installed app in parallel worker processes.

    Args:
        config: Engine configuration
        on_progress: Called with (completed, total) as workers report
        verbose: Enable verbose logging

    Returns:
        Statuses sorted by case-insensitive name
    """
    from .dispatch import parallel_status_check

    config = config or Config()
    prefs = config.preferences
    apps = list_installed_apps(ttl=prefs.installed_ttl_seconds, verbose=verbose)
    buckets = [b for b in all_buckets(verbose=verbose) if not config.is_bucket_ignored(b.name)]
    vlog(f"Checking {len(apps)} apps against {len(buckets)} buckets", verbose)
    return parallel_status_check(
        apps,
        buckets=buckets,
        on_progress=on_progress,
        timeout=prefs.status_timeout_seconds,
        max_workers=prefs.max_status_workers,
        scheme=prefs.version_scheme,
        scope_roots=[get_user_scoop_root(), get_global_scoop_root()],
    )
