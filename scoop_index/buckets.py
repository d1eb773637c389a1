"""
Bucket registry.

A bucket is a synced repository under <root>\\buckets\\<name>. Manifests live
either in a nested 'bucket' subdirectory or directly in the repository root;
both layouts are supported.
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from typing import Any

from .apps import list_installed_apps
from .common import vlog
from .paths import SCOPES, InstallScope, resolve_scoop_paths


@dataclass(frozen=True)
class BucketEntry:
    """
    One bucket in one scope.

    Attributes:
        name: Bucket directory name
        scope: Scope the bucket belongs to
        directory: Directory holding the <package>.json manifests
        root: Bucket repository root
        remote_source: Origin URL from the repository config, if known
    """
    name: str
    scope: InstallScope
    directory: str
    root: str
    remote_source: str | None = None

    @property
    def key(self) -> str:
        """Cache key: '<scope>:<name>'."""
        return f"{self.scope.value}:{self.name}"

    def manifest_path(self, app: str) -> str:
        return os.path.join(self.directory, f"{app}.json")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain, picklable job payload."""
        return {
            "name": self.name,
            "scope": self.scope.value,
            "directory": self.directory,
            "root": self.root,
            "remote_source": self.remote_source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BucketEntry":
        return cls(
            name=data["name"],
            scope=InstallScope(data.get("scope", "user")),
            directory=data["directory"],
            root=data.get("root", data["directory"]),
            remote_source=data.get("remote_source"),
        )


def get_buckets_path(scope: InstallScope | str = InstallScope.USER) -> str:
    return resolve_scoop_paths(scope).buckets


def get_bucket_path(name: str, scope: InstallScope | str = InstallScope.USER) -> str:
    return os.path.join(get_buckets_path(scope), name)


def bucket_exists(name: str, scope: InstallScope | str = InstallScope.USER) -> bool:
    return os.path.isdir(get_bucket_path(name, scope))


def _has_json_files(directory: str) -> bool:
    try:
        with os.scandir(directory) as it:
            return any(e.name.endswith(".json") and e.is_file() for e in it)
    except OSError:
        return False


def resolve_manifest_dir(bucket_root: str) -> str:
    """
    Pick the directory holding a bucket's manifests.

    Prefers the nested 'bucket' subdirectory when it contains .json files,
    otherwise the repository root.
    """
    nested = os.path.join(bucket_root, "bucket")
    if os.path.isdir(nested) and _has_json_files(nested):
        return nested
    return bucket_root


def read_remote_source(bucket_root: str) -> str | None:
    """
    Read the origin URL from a bucket's git configuration.

    Returns:
        The URL, or None when the bucket is not a git checkout or has no origin
    """
    config_path = os.path.join(bucket_root, ".git", "config")
    if not os.path.isfile(config_path):
        return None

    parser = configparser.ConfigParser(strict=False, interpolation=None)
    try:
        parser.read(config_path, encoding="utf-8")
    except (configparser.Error, OSError, UnicodeDecodeError):
        return None

    section = 'remote "origin"'
    if parser.has_section(section):
        url = parser.get(section, "url", fallback="").strip()
        return url or None
    return None


def list_buckets(scope: InstallScope | str = InstallScope.USER, verbose: bool = False) -> list[BucketEntry]:
    """
    Enumerate the buckets of one scope.

    Args:
        scope: Scope to enumerate
        verbose: Enable verbose logging

    Returns:
        Buckets sorted by name; [] when the bucket root is absent
    """
    scope = InstallScope(scope)
    buckets_root = get_buckets_path(scope)
    if not os.path.isdir(buckets_root):
        return []

    try:
        entries = list(os.scandir(buckets_root))
    except OSError as e:
        vlog(f"Cannot read bucket root {buckets_root}: {e}", verbose)
        return []

    buckets = []
    for entry in entries:
        try:
            if not entry.is_dir():
                continue
        except OSError:
            continue
        buckets.append(BucketEntry(
            name=entry.name,
            scope=scope,
            directory=resolve_manifest_dir(entry.path),
            root=entry.path,
            remote_source=read_remote_source(entry.path),
        ))

    buckets.sort(key=lambda b: b.name.lower())
    return buckets


def all_buckets(verbose: bool = False) -> list[BucketEntry]:
    """Buckets of the user scope followed by the global scope."""
    buckets: list[BucketEntry] = []
    for scope in SCOPES:
        buckets.extend(list_buckets(scope, verbose))
    return buckets


def find_bucket(name: str, scope: InstallScope | str | None = None) -> BucketEntry | None:
    """Find a bucket by case-insensitive name, user scope first."""
    scopes = [InstallScope(scope)] if scope else list(SCOPES)
    lowered = name.lower()
    for sc in scopes:
        for bucket in list_buckets(sc):
            if bucket.name.lower() == lowered:
                return bucket
    return None


def get_manifest_count(bucket: BucketEntry) -> int:
    """Count the .json manifests of a bucket (0 if unreadable)."""
    try:
        with os.scandir(bucket.directory) as it:
            return sum(1 for e in it if e.name.endswith(".json") and e.is_file())
    except OSError:
        return 0


def find_unused_buckets(scope: InstallScope | str = InstallScope.USER, verbose: bool = False) -> list[BucketEntry]:
    """
    Buckets of one scope that no installed app of that scope came from.

    An app's origin is the bucket recorded in its install.json; apps
    without a recorded origin mark no bucket as used. Names compare
    case-insensitively.

    Returns:
        Unused buckets sorted by name
    """
    scope = InstallScope(scope)
    used = {
        app.bucket_origin.lower()
        for app in list_installed_apps(verbose=verbose)
        if app.scope is scope and app.bucket_origin
    }
    unused = [b for b in list_buckets(scope, verbose) if b.name.lower() not in used]
    vlog(f"{len(unused)} unused buckets in {scope.value} scope", verbose)
    return unused
