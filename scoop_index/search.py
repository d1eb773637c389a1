"""
Package search over the persistent index, with a live fallback.

`search_packages` answers from the on-disk index (refreshing stale buckets
first); `search_live` bypasses the index and scans buckets in parallel
worker processes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Sequence

from .apps import InstalledPackage, list_installed_apps
from .common import vlog
from .config import Config
from .paths import InstallScope
from .search_cache import (
    PackageIndexEntry,
    SearchCacheManager,
    compile_query,
    get_search_cache,
    sort_matches,
)

# Installs recorded before buckets were tracked came from the main bucket
DEFAULT_BUCKET = "main"


@dataclass(frozen=True)
class SearchResult:
    """
    One search hit.

    Attributes:
        name: Package name
        version: Manifest version
        description: Manifest description
        bucket: Bucket defining the package
        scope: Scope of that bucket
        binaries: Binaries that matched the query (empty for name matches)
        is_installed: Whether this bucket's package is installed
    """
    name: str
    version: str
    description: str
    bucket: str
    scope: InstallScope
    binaries: tuple[str, ...] = ()
    is_installed: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "bucket": self.bucket,
            "scope": self.scope.value,
            "binaries": list(self.binaries),
            "is_installed": self.is_installed,
        }


def _installed_buckets(apps: Sequence[InstalledPackage]) -> dict[str, set[str]]:
    """Map lower-cased app name to the buckets it was installed from."""
    origins: dict[str, set[str]] = {}
    for app in apps:
        origins.setdefault(app.name.lower(), set()).add(app.bucket_origin or DEFAULT_BUCKET)
    return origins


def _to_results(
    entries: Sequence[PackageIndexEntry],
    query: str,
    case_sensitive: bool,
    installed_only: bool,
    limit: int | None,
    apps: Sequence[InstalledPackage],
) -> list[SearchResult]:
    pattern = compile_query(query, case_sensitive)
    origins = _installed_buckets(apps)

    results: list[SearchResult] = []
    for entry in entries:
        installed = entry.bucket in origins.get(entry.name.lower(), ())
        if installed_only and not installed:
            continue
        matched = () if pattern.search(entry.name) else tuple(
            b for b in entry.binaries if pattern.search(b)
        )
        results.append(SearchResult(
            name=entry.name,
            version=entry.version,
            description=entry.description,
            bucket=entry.bucket,
            scope=entry.scope,
            binaries=matched,
            is_installed=installed,
        ))
        if limit is not None and len(results) >= limit:
            break
    return results


def search_packages(
    query: str,
    case_sensitive: bool = False,
    bucket: str | None = None,
    installed_only: bool = False,
    limit: int | None = None,
    config: Config | None = None,
    manager: SearchCacheManager | None = None,
    verbose: bool = False,
) -> list[SearchResult]:
    """
    Search all buckets through the persistent index.

    Args:
        query: Regular expression or literal text matched against package
            and binary names
        case_sensitive: Match case exactly
        bucket: Restrict to one bucket name
        installed_only: Only return packages installed from the matching bucket
        limit: Maximum number of results (defaults to the configured limit)
        config: Engine configuration
        manager: Cache manager (defaults to the process-wide one)
        verbose: Enable verbose logging

    Returns:
        SearchResult list, exact name matches first for literal queries
    """
    config = config or Config()
    manager = manager or get_search_cache(config)
    if limit is None:
        limit = config.preferences.result_limit

    manager.ensure_fresh()
    entries = manager.search(query, case_sensitive=case_sensitive, bucket=bucket)
    vlog(f"Index search for '{query}' matched {len(entries)} packages", verbose)

    apps = list_installed_apps(ttl=config.preferences.installed_ttl_seconds, verbose=verbose)
    return _to_results(entries, query, case_sensitive, installed_only, limit, apps)


def search_live(
    query: str,
    case_sensitive: bool = False,
    bucket: str | None = None,
    installed_only: bool = False,
    limit: int | None = None,
    config: Config | None = None,
    verbose: bool = False,
) -> list[SearchResult]:
    """
    Search buckets directly in parallel worker processes.

    Same contract as `search_packages`; the query is a plain substring.
    """
    from .buckets import all_buckets
    from .dispatch import parallel_search

    config = config or Config()
    prefs = config.preferences
    if limit is None:
        limit = prefs.result_limit

    apps = list_installed_apps(ttl=prefs.installed_ttl_seconds, verbose=verbose)
    buckets = [b for b in all_buckets(verbose=verbose) if not config.is_bucket_ignored(b.name)]
    entries = parallel_search(
        query,
        case_sensitive=case_sensitive,
        bucket=bucket,
        allowlist=[app.name for app in apps] if installed_only else None,
        buckets=buckets,
        timeout=prefs.search_timeout_seconds,
        max_bytes=prefs.max_manifest_bytes,
    )
    vlog(f"Live search for '{query}' matched {len(entries)} packages", verbose)

    # Workers match plain substrings, so metacharacters match themselves
    return _to_results(
        sort_matches(entries, query), re.escape(query), case_sensitive, installed_only, limit, apps
    )


def update_search_cache(
    force: bool = False,
    config: Config | None = None,
    manager: SearchCacheManager | None = None,
) -> dict[str, Any]:
    """
    Refresh the persistent index.

    Returns:
        Index stats after the refresh
    """
    manager = manager or get_search_cache(config)
    manager.refresh(force=force)
    return manager.stats()


def clear_search_cache(
    config: Config | None = None,
    manager: SearchCacheManager | None = None,
) -> None:
    """Reset the persistent index to an empty document."""
    manager = manager or get_search_cache(config)
    manager.clear()
