"""
Configuration file parsing and management.

Supports YAML configuration files with JSON fallback.
Merges configurations from multiple sources (project → user → defaults).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

from .common import vlog


# Configuration file locations (in priority order)
CONFIG_LOCATIONS = [
    ".scoop-index.yml",                                       # Project root (highest priority)
    ".scoop-index.yaml",
    os.path.expanduser("~/.config/scoop-index/config.yml"),   # User global
    os.path.expanduser("~/.config/scoop-index/config.yaml"),
]

VERSION_SCHEMES = {"tolerant", "pep440"}


@dataclass(frozen=True)
class Preferences:
    """
    Tunables for caching, scanning and parallel work.

    Attributes:
        cache_ttl_seconds: Staleness threshold for cached bucket scans
        installed_ttl_seconds: Memoization window for installed-app listings
        search_timeout_seconds: Hard timeout per search worker
        status_timeout_seconds: Hard timeout per status worker
        max_status_workers: Ceiling for status-check worker processes
        batch_size: Manifests processed between cooperative yields
        max_manifest_bytes: Manifests larger than this are skipped
        result_limit: Maximum number of search results returned
        version_scheme: 'tolerant' digit-run comparison or 'pep440'
    """
    cache_ttl_seconds: int = 300
    installed_ttl_seconds: int = 30
    search_timeout_seconds: float = 10
    status_timeout_seconds: float = 30
    max_status_workers: int = 4
    batch_size: int = 10
    max_manifest_bytes: int = 100_000
    result_limit: int = 100
    version_scheme: str = "tolerant"

    def __post_init__(self):
        """Validate preferences after initialization."""
        if self.cache_ttl_seconds < 0 or self.cache_ttl_seconds > 86400:
            raise ValueError(
                f"Invalid cache_ttl_seconds: {self.cache_ttl_seconds}. "
                "Must be between 0 and 86400"
            )

        if self.installed_ttl_seconds < 0 or self.installed_ttl_seconds > 3600:
            raise ValueError(
                f"Invalid installed_ttl_seconds: {self.installed_ttl_seconds}. "
                "Must be between 0 and 3600"
            )

        for name in ("search_timeout_seconds", "status_timeout_seconds"):
            value = getattr(self, name)
            if value <= 0 or value > 600:
                raise ValueError(f"Invalid {name}: {value}. Must be between 0 and 600")

        if self.max_status_workers < 1 or self.max_status_workers > 32:
            raise ValueError(
                f"Invalid max_status_workers: {self.max_status_workers}. "
                "Must be between 1 and 32"
            )

        if self.batch_size < 1:
            raise ValueError(f"Invalid batch_size: {self.batch_size}. Must be at least 1")

        if self.max_manifest_bytes < 1:
            raise ValueError(
                f"Invalid max_manifest_bytes: {self.max_manifest_bytes}. Must be at least 1"
            )

        if self.result_limit < 1:
            raise ValueError(f"Invalid result_limit: {self.result_limit}. Must be at least 1")

        if self.version_scheme not in VERSION_SCHEMES:
            raise ValueError(
                f"Invalid version_scheme: {self.version_scheme}. "
                f"Must be one of: {', '.join(sorted(VERSION_SCHEMES))}"
            )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Preferences:
        """Create Preferences from dictionary."""
        defaults = Preferences()
        return Preferences(
            cache_ttl_seconds=data.get("cache_ttl_seconds", defaults.cache_ttl_seconds),
            installed_ttl_seconds=data.get("installed_ttl_seconds", defaults.installed_ttl_seconds),
            search_timeout_seconds=data.get("search_timeout_seconds", defaults.search_timeout_seconds),
            status_timeout_seconds=data.get("status_timeout_seconds", defaults.status_timeout_seconds),
            max_status_workers=data.get("max_status_workers", defaults.max_status_workers),
            batch_size=data.get("batch_size", defaults.batch_size),
            max_manifest_bytes=data.get("max_manifest_bytes", defaults.max_manifest_bytes),
            result_limit=data.get("result_limit", defaults.result_limit),
            version_scheme=data.get("version_scheme", defaults.version_scheme),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "installed_ttl_seconds": self.installed_ttl_seconds,
            "search_timeout_seconds": self.search_timeout_seconds,
            "status_timeout_seconds": self.status_timeout_seconds,
            "max_status_workers": self.max_status_workers,
            "batch_size": self.batch_size,
            "max_manifest_bytes": self.max_manifest_bytes,
            "result_limit": self.result_limit,
            "version_scheme": self.version_scheme,
        }


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for the index engine.

    Attributes:
        version: Config schema version
        preferences: Engine preferences
        ignored_buckets: Bucket names excluded from indexing and search
        source: Path to the configuration file that was loaded
    """
    version: int = 1
    preferences: Preferences = field(default_factory=Preferences)
    ignored_buckets: tuple[str, ...] = ()
    source: str = ""

    def __post_init__(self):
        """Validate config after initialization."""
        if self.version != 1:
            raise ValueError(f"Unsupported config version: {self.version}. Expected version 1")

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """Create Config from dictionary."""
        preferences = Preferences.from_dict(data.get("preferences", {}) or {})
        ignored = data.get("ignored_buckets", []) or []
        return Config(
            version=data.get("version", 1),
            preferences=preferences,
            ignored_buckets=tuple(str(name) for name in ignored),
            source=source,
        )

    def is_bucket_ignored(self, bucket_name: str) -> bool:
        """Check whether a bucket is excluded (case-insensitive)."""
        lowered = bucket_name.lower()
        return any(name.lower() == lowered for name in self.ignored_buckets)

    def merge_with(self, other: Config) -> Config:
        """
        Merge this config with another, preferring values from this config.

        Preferences left at their default value fall through to the other
        config; ignored buckets are unioned.

        Args:
            other: Other config to merge (lower priority)

        Returns:
            New merged Config object
        """
        defaults = Preferences().to_dict()
        mine = self.preferences.to_dict()
        theirs = other.preferences.to_dict()
        merged_prefs = {
            key: mine[key] if mine[key] != defaults[key] else theirs[key]
            for key in defaults
        }

        merged_ignored = list(self.ignored_buckets)
        for name in other.ignored_buckets:
            if name not in merged_ignored:
                merged_ignored.append(name)

        return Config(
            version=self.version,
            preferences=Preferences.from_dict(merged_prefs),
            ignored_buckets=tuple(merged_ignored),
            source=self.source or other.source,
        )


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load YAML configuration file.

    Returns:
        Parsed configuration dictionary, or None if the file is invalid
    """
    import yaml

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return None


def _load_json(file_path: str) -> dict[str, Any] | None:
    """
    Load JSON configuration file.

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, ValueError, RecursionError):
        return None


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    `.json` files are parsed as JSON; everything else as YAML, with a
    sibling `.json` file tried when the YAML cannot be parsed.

    Args:
        file_path: Path to configuration file
        verbose: Enable verbose logging

    Returns:
        Config object, or None if file cannot be loaded
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    if file_path.endswith(".json"):
        data = _load_json(file_path)
    else:
        data = _load_yaml(file_path)
        if data is None:
            json_path = file_path.replace(".yml", ".json").replace(".yaml", ".json")
            if json_path != file_path and os.path.exists(json_path):
                vlog(f"Invalid YAML, trying JSON: {json_path}", verbose)
                data = _load_json(json_path)

    if data is None:
        vlog(f"Invalid config file: {file_path}", verbose)
        return None

    try:
        config = Config.from_dict(data, source=file_path)
        vlog(f"Loaded config successfully: {file_path}", verbose)
        return config
    except (ValueError, TypeError) as e:
        vlog(f"Config validation failed for {file_path}: {e}", verbose)
        return None


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Custom path (if provided)
    2. Project .scoop-index.yml
    3. User ~/.config/scoop-index/config.yml
    4. Default configuration

    Args:
        custom_path: Optional path to custom configuration file
        verbose: Enable verbose logging

    Returns:
        Merged Config object (never None, returns defaults if no config found)

    Raises:
        ValueError: If custom_path is provided but file cannot be loaded
    """
    configs: list[Config] = []

    if custom_path:
        config = load_config_file(custom_path, verbose)
        if config is None:
            raise ValueError(f"Could not load config from specified path: {custom_path}")
        configs.append(config)

    for location in CONFIG_LOCATIONS:
        config = load_config_file(location, verbose)
        if config is not None:
            configs.append(config)

    if not configs:
        vlog("No config files found, using defaults", verbose)
        return Config()

    merged = configs[0]
    for config in configs[1:]:
        merged = merged.merge_with(config)

    vlog(f"Merged {len(configs)} config files", verbose)
    return merged


def validate_config(config: Config) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Args:
        config: Config object to validate

    Returns:
        List of validation warning messages (empty if valid)
    """
    warnings = []
    prefs = config.preferences

    if prefs.cache_ttl_seconds == 0:
        warnings.append("cache_ttl_seconds is 0: every search rescans all buckets")

    if prefs.search_timeout_seconds < 1:
        warnings.append(
            f"search_timeout_seconds is {prefs.search_timeout_seconds}: "
            "large buckets may not finish scanning"
        )

    lowered = [name.lower() for name in config.ignored_buckets]
    if len(lowered) != len(set(lowered)):
        warnings.append("Duplicate bucket names in ignored_buckets")

    return warnings
