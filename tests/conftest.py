"""
Shared fixtures: fake user and global scope roots on disk.
"""

import json
import os

import pytest

from scoop_index.apps import clear_installed_cache
from scoop_index.search_cache import reset_search_cache


class ScoopLayout:
    """Builds Scoop directory structures under a temporary directory."""

    def __init__(self, base):
        self.base = base
        self.user_root = str(base / "user" / "scoop")
        self.global_root = str(base / "global" / "scoop")
        self.home = str(base / "home")
        for path in (self.user_root, self.global_root, self.home):
            os.makedirs(path, exist_ok=True)

    def root(self, scope="user"):
        return self.user_root if scope == "user" else self.global_root

    def add_bucket(self, name, manifests=None, scope="user", nested=False):
        """Create a bucket and return its manifest directory."""
        bucket_root = os.path.join(self.root(scope), "buckets", name)
        directory = os.path.join(bucket_root, "bucket") if nested else bucket_root
        os.makedirs(directory, exist_ok=True)
        for app, manifest in (manifests or {}).items():
            self.write_manifest(directory, app, manifest)
        return directory

    def write_manifest(self, directory, app, manifest):
        path = os.path.join(directory, f"{app}.json")
        with open(path, "w", encoding="utf-8") as f:
            if isinstance(manifest, str):
                f.write(manifest)
            else:
                json.dump(manifest, f)
        return path

    def install_app(
        self,
        name,
        version,
        scope="user",
        bucket=None,
        hold=False,
        manifest=None,
        link=True,
    ):
        """Create <root>/apps/<name>/<version> and a 'current' symlink to it."""
        app_dir = os.path.join(self.root(scope), "apps", name)
        version_dir = os.path.join(app_dir, version)
        os.makedirs(version_dir, exist_ok=True)

        info = {}
        if bucket:
            info["bucket"] = bucket
        if hold:
            info["hold"] = True
        if info:
            with open(os.path.join(version_dir, "install.json"), "w", encoding="utf-8") as f:
                json.dump(info, f)

        if manifest is not None:
            with open(os.path.join(version_dir, "manifest.json"), "w", encoding="utf-8") as f:
                json.dump(manifest, f)

        if link:
            os.symlink(version_dir, os.path.join(app_dir, "current"), target_is_directory=True)
        return app_dir


@pytest.fixture(autouse=True)
def _reset_module_caches():
    """Module-level memoization must not leak between tests."""
    clear_installed_cache()
    reset_search_cache()
    yield
    clear_installed_cache()
    reset_search_cache()


@pytest.fixture
def scoop(tmp_path, monkeypatch):
    """Fake user and global Scoop roots wired up through the environment."""
    layout = ScoopLayout(tmp_path)
    monkeypatch.setenv("SCOOP", layout.user_root)
    monkeypatch.setenv("SCOOP_GLOBAL", layout.global_root)
    monkeypatch.setenv("USERPROFILE", layout.home)
    monkeypatch.setenv("SCOOP_INDEX_HOME", layout.home)
    monkeypatch.delenv("SCOOP_INDEX_DEBUG", raising=False)
    return layout
