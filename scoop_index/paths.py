"""
Scope root resolution.

Two independent installation roots exist:
- user:   %USERPROFILE%\\scoop (override with SCOOP)
- global: %PROGRAMDATA%\\scoop (override with SCOOP_GLOBAL)

Each root holds apps, shims, buckets and a download cache.
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass


class ScoopIndexError(Exception):
    """Base exception for unrecoverable engine errors."""


class HomeDirectoryError(ScoopIndexError):
    """Raised when neither USERPROFILE nor HOME is set."""


class InstallScope(str, enum.Enum):
    """Installation root selector."""

    USER = "user"
    GLOBAL = "global"

    def __str__(self) -> str:
        return self.value


SCOPES: tuple[InstallScope, ...] = (InstallScope.USER, InstallScope.GLOBAL)

DEFAULT_PROGRAM_DATA = "C:\\ProgramData"
DATA_DIR_NAME = ".scoop-index"


@dataclass(frozen=True)
class ScoopPaths:
    """
    Well-known directories of one scope.

    Attributes:
        scope: Scope these paths belong to
        root: Scope root, e.g. C:\\Users\\me\\scoop
        apps: <root>\\apps
        shims: <root>\\shims
        buckets: <root>\\buckets
        cache: <root>\\cache (download cache)
    """
    scope: InstallScope
    root: str
    apps: str
    shims: str
    buckets: str
    cache: str


def get_user_profile() -> str:
    """
    Resolve the user's profile directory.

    Raises:
        HomeDirectoryError: If neither USERPROFILE nor HOME is set
    """
    profile = os.environ.get("USERPROFILE") or os.environ.get("HOME")
    if not profile:
        raise HomeDirectoryError("Could not determine USERPROFILE/HOME")
    return profile


def get_user_scoop_root() -> str:
    override = os.environ.get("SCOOP")
    if override:
        return override
    return os.path.join(get_user_profile(), "scoop")


def get_global_scoop_root() -> str:
    override = os.environ.get("SCOOP_GLOBAL")
    if override:
        return override
    program_data = os.environ.get("PROGRAMDATA") or DEFAULT_PROGRAM_DATA
    return os.path.join(program_data, "scoop")


def get_scope_root(scope: InstallScope | str) -> str:
    scope = InstallScope(scope)
    if scope is InstallScope.GLOBAL:
        return get_global_scoop_root()
    return get_user_scoop_root()


def resolve_scoop_paths(scope: InstallScope | str) -> ScoopPaths:
    """
    Compute the root and well-known subdirectories of a scope.

    Args:
        scope: 'user' or 'global'

    Returns:
        ScoopPaths for the scope
    """
    scope = InstallScope(scope)
    root = get_scope_root(scope)
    return ScoopPaths(
        scope=scope,
        root=root,
        apps=os.path.join(root, "apps"),
        shims=os.path.join(root, "shims"),
        buckets=os.path.join(root, "buckets"),
        cache=os.path.join(root, "cache"),
    )


def both_scopes() -> list[ScoopPaths]:
    """Paths for user then global scope."""
    return [resolve_scoop_paths(scope) for scope in SCOPES]


def scope_exists(scope: InstallScope | str) -> bool:
    return os.path.isdir(get_scope_root(scope))


def get_data_dir() -> str:
    """
    Directory holding this engine's persisted state.

    SCOOP_INDEX_HOME replaces the home directory, so the result is
    $SCOOP_INDEX_HOME/.scoop-index; otherwise <profile>/.scoop-index.
    """
    custom_home = os.environ.get("SCOOP_INDEX_HOME")
    if custom_home:
        return os.path.join(custom_home, DATA_DIR_NAME)
    return os.path.join(get_user_profile(), DATA_DIR_NAME)


def get_cache_file() -> str:
    """Location of the persistent search cache document."""
    return os.path.join(get_data_dir(), "cache", "search-cache.json")
