"""
Persistent, incrementally refreshed package index.

Scanning thousands of manifests on every search is slow, so a searchable
index of all buckets is kept on disk:

    <data dir>/cache/search-cache.json
    {
      "formatVersion": "1.0.0",
      "lastUpdated": <epoch ms>,
      "buckets": {
        "<scope>:<bucket>": {
          "bucketName", "scope", "bucketDir",
          "lastScannedAt", "lastModifiedAt", "packages": [...]
        }
      }
    }

A bucket is rescanned only when its last scan is older than the staleness
threshold (or when forced). During a rescan, a package entry whose stored
mtime is at least the manifest's current mtime is reused without reparsing.
Any error on a single file skips that file; a corrupt or version-mismatched
cache document starts empty.
"""

from __future__ import annotations

import json
import os
import re
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Sequence

from .buckets import BucketEntry, all_buckets
from .common import now_ms
from .config import Config
from .logging_config import get_logger, log_elapsed
from .manifests import extract_binaries, read_manifest_data
from .paths import InstallScope, get_cache_file

CACHE_FORMAT_VERSION = "1.0.0"

# Characters that turn a query into a regular expression rather than a literal
_REGEX_META = re.compile(r"[.*+?^${}()|\[\]\\]")

# Upper bound for threads scanning buckets concurrently
MAX_SCAN_THREADS = 8


@dataclass(frozen=True)
class PackageIndexEntry:
    """
    Searchable summary of one manifest.

    Attributes:
        name: Package name (manifest file stem)
        version: Manifest version
        description: Manifest description
        bucket: Bucket name
        scope: Scope of the bucket
        binaries: Normalized binary names from the manifest's 'bin' field
        manifest_path: Path of the manifest file
        last_modified: Manifest mtime at scan time (epoch ms)
    """
    name: str
    version: str
    description: str
    bucket: str
    scope: InstallScope
    binaries: tuple[str, ...]
    manifest_path: str
    last_modified: float

    @property
    def key(self) -> tuple[str, str]:
        return (self.bucket, self.name.lower())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "bucket": self.bucket,
            "scope": self.scope.value,
            "binaries": list(self.binaries),
            "manifestPath": self.manifest_path,
            "lastModified": self.last_modified,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PackageIndexEntry":
        """Create from dictionary."""
        return cls(
            name=data["name"],
            version=data.get("version") or "",
            description=data.get("description") or "",
            bucket=data["bucket"],
            scope=InstallScope(data.get("scope", "user")),
            binaries=tuple(data.get("binaries") or ()),
            manifest_path=data.get("manifestPath", ""),
            last_modified=float(data.get("lastModified", 0)),
        )


@dataclass
class BucketCacheEntry:
    """Scan result of one bucket."""

    bucket_name: str
    scope: InstallScope
    bucket_dir: str
    last_scanned: float = 0.0
    last_modified: float = 0.0
    packages: list[PackageIndexEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "bucketName": self.bucket_name,
            "scope": self.scope.value,
            "bucketDir": self.bucket_dir,
            "lastScannedAt": self.last_scanned,
            "lastModifiedAt": self.last_modified,
            "packages": [pkg.to_dict() for pkg in self.packages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BucketCacheEntry":
        """Create from dictionary."""
        return cls(
            bucket_name=data["bucketName"],
            scope=InstallScope(data.get("scope", "user")),
            bucket_dir=data.get("bucketDir", ""),
            last_scanned=float(data.get("lastScannedAt", 0)),
            last_modified=float(data.get("lastModifiedAt", 0)),
            packages=[PackageIndexEntry.from_dict(p) for p in data.get("packages", [])],
        )


@dataclass
class PersistentCache:
    """Container for all bucket scans with format metadata."""

    buckets: dict[str, BucketCacheEntry] = field(default_factory=dict)
    format_version: str = CACHE_FORMAT_VERSION
    last_updated: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "formatVersion": self.format_version,
            "lastUpdated": self.last_updated,
            "buckets": {key: entry.to_dict() for key, entry in self.buckets.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PersistentCache":
        """Create from dictionary."""
        return cls(
            buckets={
                key: BucketCacheEntry.from_dict(entry)
                for key, entry in data.get("buckets", {}).items()
            },
            format_version=data.get("formatVersion", ""),
            last_updated=float(data.get("lastUpdated", 0)),
        )


def is_literal_query(query: str) -> bool:
    """True for queries longer than one character without regex metacharacters."""
    return len(query) > 1 and not _REGEX_META.search(query)


def compile_query(query: str, case_sensitive: bool = False) -> re.Pattern[str]:
    """
    Build the match pattern for a query.

    Queries are regular expressions; an invalid expression is matched as a
    literal string instead of failing.
    """
    flags = 0 if case_sensitive else re.IGNORECASE
    try:
        return re.compile(query, flags)
    except re.error:
        return re.compile(re.escape(query), flags)


def sort_matches(entries: list[PackageIndexEntry], query: str) -> list[PackageIndexEntry]:
    """
    Order search matches.

    For a literal query, exact (case-insensitive) name matches come first;
    everything else is ordered by case-insensitive name, then bucket.
    """
    exact_first = is_literal_query(query)
    lowered = query.lower()

    def sort_key(entry: PackageIndexEntry) -> tuple[int, str, str]:
        exact = exact_first and entry.name.lower() == lowered
        return (0 if exact else 1, entry.name.lower(), entry.bucket.lower())

    return sorted(entries, key=sort_key)


class SearchCacheManager:
    """
    Owner of the persistent cache document.

    Only this object reads or writes the cache file; worker processes never
    touch it.
    """

    def __init__(self, cache_file: str | None = None, config: Config | None = None):
        self.cache_file = cache_file or get_cache_file()
        self.config = config or Config()
        self._cache: PersistentCache | None = None

    @property
    def ttl_ms(self) -> float:
        return self.config.preferences.cache_ttl_seconds * 1000

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> PersistentCache:
        """
        Load the cache document lazily.

        Returns:
            The in-memory cache; empty if the file is missing, corrupt or of
            another format version
        """
        if self._cache is not None:
            return self._cache

        logger = get_logger()
        cache = PersistentCache()
        if os.path.exists(self.cache_file):
            try:
                with open(self.cache_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    logger.debug(f"Ignoring malformed search cache: {self.cache_file}")
                elif data.get("formatVersion") != CACHE_FORMAT_VERSION:
                    logger.debug(
                        f"Cache version mismatch: {data.get('formatVersion')} != {CACHE_FORMAT_VERSION}"
                    )
                else:
                    cache = PersistentCache.from_dict(data)
                    logger.debug(f"Loaded search cache with {len(cache.buckets)} buckets")
            except (OSError, ValueError, RecursionError, KeyError, TypeError, AttributeError) as e:
                logger.debug(f"Failed to load search cache: {e}")
                cache = PersistentCache()

        self._cache = cache
        return cache

    def _write(self, cache: PersistentCache) -> None:
        directory = os.path.dirname(self.cache_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        temp_path = self.cache_file + ".tmp"
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(cache.to_dict(), f, indent=2, ensure_ascii=False)
        os.replace(temp_path, self.cache_file)

    def save(self) -> None:
        """Timestamp and flush the in-memory cache (atomic replace)."""
        if self._cache is None:
            return
        self._cache.last_updated = now_ms()
        try:
            self._write(self._cache)
            get_logger().debug(f"Saved search cache with {len(self._cache.buckets)} buckets")
        except OSError as e:
            get_logger().warning(f"Failed to save search cache: {e}")

    def clear(self) -> None:
        """
        Reset the cache to a valid empty document.

        The file is overwritten rather than deleted so concurrent readers
        never observe a missing or partial file.
        """
        self._cache = None
        try:
            self._write(PersistentCache())
            get_logger().debug("Search cache cleared")
        except OSError as e:
            get_logger().warning(f"Failed to clear search cache: {e}")

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _build_entry(
        self,
        bucket: BucketEntry,
        app: str,
        path: str,
        mtime: float,
    ) -> PackageIndexEntry | None:
        data = read_manifest_data(path)
        if data is None:
            get_logger().debug(f"Skipping unreadable manifest: {path}")
            return None

        version = data.get("version")
        description = data.get("description")
        if isinstance(description, list):
            description = " ".join(str(d) for d in description)
        return PackageIndexEntry(
            name=app,
            version=str(version) if isinstance(version, (str, int, float)) else "",
            description=description if isinstance(description, str) else "",
            bucket=bucket.name,
            scope=bucket.scope,
            binaries=tuple(extract_binaries(data.get("bin"))),
            manifest_path=path,
            last_modified=mtime,
        )

    def scan_bucket(
        self,
        bucket: BucketEntry,
        existing: BucketCacheEntry | None,
    ) -> BucketCacheEntry:
        """
        Rescan one bucket, reusing unchanged entries from `existing`.

        Args:
            bucket: Bucket to scan
            existing: Previous scan of the same bucket, if any

        Returns:
            A new BucketCacheEntry; empty when the directory is unreadable
        """
        prefs = self.config.preferences
        logger = get_logger()
        scanned_at = now_ms()

        try:
            names = sorted(
                entry.name[:-5]
                for entry in os.scandir(bucket.directory)
                if entry.name.endswith(".json") and entry.is_file()
            )
        except OSError as e:
            logger.debug(f"Error scanning bucket {bucket.name}: {e}")
            return BucketCacheEntry(
                bucket_name=bucket.name,
                scope=bucket.scope,
                bucket_dir=bucket.directory,
                last_scanned=scanned_at,
            )

        previous = {pkg.name: pkg for pkg in existing.packages} if existing else {}
        packages: list[PackageIndexEntry] = []
        seen: set[str] = set()
        max_modified = 0.0
        reused = 0

        for start in range(0, len(names), prefs.batch_size):
            for app in names[start:start + prefs.batch_size]:
                path = os.path.join(bucket.directory, f"{app}.json")
                try:
                    st = os.stat(path)
                except OSError as e:
                    logger.debug(f"Failed to stat {path}: {e}")
                    continue

                if st.st_size > prefs.max_manifest_bytes:
                    logger.debug(f"Skipping large manifest: {path} ({st.st_size} bytes)")
                    continue

                mtime = st.st_mtime_ns / 1_000_000
                max_modified = max(max_modified, mtime)

                if app.lower() in seen:
                    continue

                cached = previous.get(app)
                if cached is not None and cached.last_modified >= mtime:
                    packages.append(cached)
                    seen.add(app.lower())
                    reused += 1
                    continue

                entry = self._build_entry(bucket, app, path, mtime)
                if entry is not None:
                    packages.append(entry)
                    seen.add(app.lower())

            # Yield between batches so one large bucket cannot hog the process
            if start + prefs.batch_size < len(names):
                time.sleep(0)

        logger.debug(
            f"Scanned bucket {bucket.name} ({bucket.scope.value}): "
            f"{len(packages)} packages, {reused} reused"
        )
        return BucketCacheEntry(
            bucket_name=bucket.name,
            scope=bucket.scope,
            bucket_dir=bucket.directory,
            last_scanned=scanned_at,
            last_modified=max_modified,
            packages=packages,
        )

    def _target_buckets(self, buckets: Sequence[BucketEntry] | None) -> list[BucketEntry]:
        if buckets is None:
            buckets = all_buckets()
        return [b for b in buckets if not self.config.is_bucket_ignored(b.name)]

    def refresh(self, force: bool = False, buckets: Sequence[BucketEntry] | None = None) -> None:
        """
        Bring the index up to date and flush it to disk.

        Buckets scanned within the staleness window are skipped unless
        `force` is set. Buckets that no longer exist are dropped.

        Args:
            force: Rescan every bucket regardless of its last scan time
            buckets: Buckets to index (defaults to all buckets in both scopes)
        """
        cache = self.load()
        targets = self._target_buckets(buckets)
        now = now_ms()
        logger = get_logger()

        stale: list[BucketEntry] = []
        for bucket in targets:
            existing = cache.buckets.get(bucket.key)
            if not force and existing is not None and now - existing.last_scanned < self.ttl_ms:
                logger.debug(f"Using cached data for bucket {bucket.name} ({bucket.scope.value})")
                continue
            stale.append(bucket)

        with log_elapsed(f"Index refresh of {len(stale)}/{len(targets)} buckets"):
            if stale:
                workers = min(MAX_SCAN_THREADS, len(stale))
                with ThreadPoolExecutor(max_workers=workers) as executor:
                    future_to_bucket = {
                        executor.submit(self.scan_bucket, bucket, cache.buckets.get(bucket.key)): bucket
                        for bucket in stale
                    }
                    for future in as_completed(future_to_bucket):
                        bucket = future_to_bucket[future]
                        try:
                            cache.buckets[bucket.key] = future.result()
                        except Exception as e:
                            logger.debug(f"Error scanning bucket {bucket.name}: {e}")

        live_keys = {bucket.key for bucket in targets}
        for key in [k for k in cache.buckets if k not in live_keys]:
            logger.debug(f"Dropping cache for missing bucket {key}")
            del cache.buckets[key]

        self.save()

    def ensure_fresh(self) -> None:
        """Refresh when the cache is empty or older than the staleness threshold."""
        cache = self.load()
        if not cache.buckets or now_ms() - cache.last_updated > self.ttl_ms:
            self.refresh()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        case_sensitive: bool = False,
        bucket: str | None = None,
    ) -> list[PackageIndexEntry]:
        """
        Search the index by package name and binary names.

        Args:
            query: Regular expression or literal text
            case_sensitive: Match case exactly
            bucket: Restrict to one bucket name (case-insensitive)

        Ignored buckets are skipped even when an earlier scan indexed them.

        Returns:
            Matches, unique per (bucket, name), exact-name matches first for
            literal queries, then by case-insensitive name
        """
        cache = self.load()
        pattern = compile_query(query, case_sensitive)
        wanted_bucket = bucket.lower() if bucket else None

        results: list[PackageIndexEntry] = []
        seen: set[tuple[str, str]] = set()

        for entry in cache.buckets.values():
            if wanted_bucket and entry.bucket_name.lower() != wanted_bucket:
                continue
            if self.config.is_bucket_ignored(entry.bucket_name):
                continue
            for pkg in entry.packages:
                if pkg.key in seen:
                    continue
                if pattern.search(pkg.name) or any(pattern.search(b) for b in pkg.binaries):
                    seen.add(pkg.key)
                    results.append(pkg)

        return sort_matches(results, query)

    def stats(self) -> dict[str, Any]:
        """Package and bucket counts of the loaded cache."""
        cache = self.load()
        return {
            "package_count": sum(len(e.packages) for e in cache.buckets.values()),
            "bucket_count": len(cache.buckets),
            "last_updated": cache.last_updated,
        }


_default_manager: SearchCacheManager | None = None


def get_search_cache(config: Config | None = None) -> SearchCacheManager:
    """
    Process-wide cache manager, created on first use.

    Passing a config that differs from the current manager's replaces it;
    omitting the config keeps whatever manager exists.
    """
    global _default_manager
    if _default_manager is None or (config is not None and config != _default_manager.config):
        _default_manager = SearchCacheManager(config=config)
    return _default_manager


def reset_search_cache() -> None:
    """Forget the process-wide cache manager."""
    global _default_manager
    _default_manager = None
