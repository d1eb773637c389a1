"""
scoop-index - Package metadata discovery and caching for Scoop installations.

Core Modules:
- Foundation: Scope paths, configuration, logging, version comparison
- Discovery: Installed apps, bucket registry, manifest locator, executable lookup
- Index: Persistent, incrementally refreshed search cache
- Parallel work: Process-isolated search and status workers
- Status: Outdated/held/deprecated/removed/failed evaluation
"""

__version__ = "1.0.0"
__author__ = "scoop-index Contributors"

# Version info for backward compatibility
VERSION = __version__

# Foundation
from .paths import (
    ScoopIndexError,
    HomeDirectoryError,
    InstallScope,
    ScoopPaths,
    get_user_scoop_root,
    get_global_scoop_root,
    resolve_scoop_paths,
    both_scopes,
    get_data_dir,
    get_cache_file,
)
from .config import Config, Preferences, load_config, load_config_file, validate_config
from .logging_config import setup_logging, get_logger
from .versions import parse_version, compare_versions, is_outdated, highest_version

# Discovery
from .apps import (
    InstalledPackage,
    list_installed_apps,
    clear_installed_cache,
    read_current_target,
    resolve_app_prefix,
)
from .buckets import (
    BucketEntry,
    list_buckets,
    all_buckets,
    find_bucket,
    find_unused_buckets,
    get_manifest_count,
)
from .manifests import (
    ManifestRecord,
    FoundManifest,
    InfoFields,
    parse_bucket_and_app,
    read_manifest,
    extract_binaries,
    find_installed_manifest,
    find_bucket_manifest,
    locate_all,
    is_deprecated,
    read_manifest_fields,
)
from .which import which, find_in_shims, find_in_path, resolve_shim_target

# Index
from .search_cache import PackageIndexEntry, SearchCacheManager, get_search_cache
from .search import (
    SearchResult,
    search_packages,
    search_live,
    update_search_cache,
    clear_search_cache,
)

# Parallel work and status
from .dispatch import (
    UnitState,
    WorkUnit,
    run_units,
    parallel_search,
    parallel_status_check,
    get_worker_count,
    split_into_batches,
)
from .status import AppStatus, evaluate_app, check_status, apps_with_issues

__all__ = [
    # Version
    "__version__",
    "VERSION",
    # Foundation
    "ScoopIndexError",
    "HomeDirectoryError",
    "InstallScope",
    "ScoopPaths",
    "get_user_scoop_root",
    "get_global_scoop_root",
    "resolve_scoop_paths",
    "both_scopes",
    "get_data_dir",
    "get_cache_file",
    "Config",
    "Preferences",
    "load_config",
    "load_config_file",
    "validate_config",
    "setup_logging",
    "get_logger",
    "parse_version",
    "compare_versions",
    "is_outdated",
    "highest_version",
    # Discovery
    "InstalledPackage",
    "list_installed_apps",
    "clear_installed_cache",
    "read_current_target",
    "resolve_app_prefix",
    "BucketEntry",
    "list_buckets",
    "all_buckets",
    "find_bucket",
    "find_unused_buckets",
    "get_manifest_count",
    "ManifestRecord",
    "FoundManifest",
    "InfoFields",
    "parse_bucket_and_app",
    "read_manifest",
    "extract_binaries",
    "find_installed_manifest",
    "find_bucket_manifest",
    "locate_all",
    "is_deprecated",
    "read_manifest_fields",
    "which",
    "find_in_shims",
    "find_in_path",
    "resolve_shim_target",
    # Index
    "PackageIndexEntry",
    "SearchCacheManager",
    "get_search_cache",
    "SearchResult",
    "search_packages",
    "search_live",
    "update_search_cache",
    "clear_search_cache",
    # Parallel work and status
    "UnitState",
    "WorkUnit",
    "run_units",
    "parallel_search",
    "parallel_status_check",
    "get_worker_count",
    "split_into_batches",
    "AppStatus",
    "evaluate_app",
    "check_status",
    "apps_with_issues",
]
