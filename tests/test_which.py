"""
Tests for executable discovery (scoop_index/which.py).
"""

import os

import pytest

from scoop_index.which import (
    candidates_for_name,
    find_file_case_insensitive,
    find_in_path,
    find_in_shims,
    get_path_extensions,
    resolve_shim_target,
    which,
)


def _touch(directory, name, content=""):
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, name)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return path


@pytest.fixture
def env(scoop, tmp_path, monkeypatch):
    monkeypatch.setenv("PATHEXT", ".EXE;.CMD")
    monkeypatch.setenv("PATH", "")
    scoop.user_shims = os.path.join(scoop.user_root, "shims")
    scoop.global_shims = os.path.join(scoop.global_root, "shims")
    return scoop


class TestCandidates:
    """Tests for PATHEXT expansion."""

    def test_default_extensions(self, monkeypatch):
        monkeypatch.delenv("PATHEXT", raising=False)
        assert ".exe" in get_path_extensions()
        assert ".ps1" in get_path_extensions()

    def test_expanded_then_bare(self, monkeypatch):
        monkeypatch.setenv("PATHEXT", ".EXE;.CMD;.exe")
        assert candidates_for_name("Git") == ["git.exe", "git.cmd", "git"]

    def test_name_with_extension_kept(self):
        assert candidates_for_name("git.exe") == ["git.exe"]


class TestFindFileCaseInsensitive:
    """Tests for case-insensitive file lookup."""

    def test_exact(self, tmp_path):
        path = _touch(str(tmp_path), "git.exe")
        assert find_file_case_insensitive(str(tmp_path), "git.exe") == path

    def test_other_case(self, tmp_path):
        path = _touch(str(tmp_path), "Git.EXE")
        assert find_file_case_insensitive(str(tmp_path), "git.exe") == path

    def test_directories_ignored(self, tmp_path):
        os.makedirs(tmp_path / "git.exe")
        assert find_file_case_insensitive(str(tmp_path), "git.exe") is None

    def test_missing_directory(self, tmp_path):
        assert find_file_case_insensitive(str(tmp_path / "gone"), "git.exe") is None


class TestResolveShimTarget:
    """Tests for shim-to-executable resolution."""

    def test_shim_file(self, env):
        app_dir = env.install_app("git", "2.44.0")
        target = _touch(os.path.join(app_dir, "2.44.0", "bin"), "git.exe")
        shim = _touch(env.user_shims, "git.exe")
        _touch(env.user_shims, "git.shim", f'path = "{target}"\n')
        assert resolve_shim_target(shim) == target

    def test_shim_file_with_missing_target(self, env):
        shim = _touch(env.user_shims, "git.exe")
        _touch(env.user_shims, "git.shim", 'path = "/nowhere/git.exe"\n')
        assert resolve_shim_target(shim) is None

    def test_current_directory_scan(self, env):
        app_dir = env.install_app("7zip", "23.01")
        _touch(os.path.join(app_dir, "23.01"), "7z.exe")
        shim = _touch(env.user_shims, "7z.exe")
        assert resolve_shim_target(shim) == os.path.join(app_dir, "current", "7z.exe")

    def test_current_subdirectory_scan(self, env):
        app_dir = env.install_app("nodejs", "21.0")
        _touch(os.path.join(app_dir, "21.0", "bin"), "node.cmd")
        shim = _touch(env.user_shims, "node.cmd")
        assert resolve_shim_target(shim) == os.path.join(app_dir, "current", "bin", "node.cmd")

    def test_unknown(self, env):
        env.install_app("git", "2.44.0")
        shim = _touch(env.user_shims, "mystery.exe")
        assert resolve_shim_target(shim) is None


class TestFindInShims:
    """Tests for shim directory lookup."""

    def test_user_before_global(self, env):
        user = _touch(env.user_shims, "rg.exe")
        glob = _touch(env.global_shims, "rg.exe")
        assert find_in_shims("rg") == [user, glob]

    def test_unresolved_shim_reported_as_is(self, env):
        shim = _touch(env.user_shims, "RG.EXE")
        assert find_in_shims("rg") == [shim]

    def test_resolved_target_reported(self, env):
        app_dir = env.install_app("ripgrep", "14.0")
        _touch(os.path.join(app_dir, "14.0"), "rg.exe")
        _touch(env.user_shims, "rg.exe")
        assert find_in_shims("rg") == [os.path.join(app_dir, "current", "rg.exe")]

    def test_not_found(self, env):
        assert find_in_shims("rg") == []


class TestFindInPath:
    """Tests for PATH lookup."""

    def test_path_order(self, env, tmp_path, monkeypatch):
        first = _touch(str(tmp_path / "a"), "rg.exe")
        second = _touch(str(tmp_path / "b"), "rg.cmd")
        monkeypatch.setenv("PATH", os.pathsep.join([str(tmp_path / "a"), "", str(tmp_path / "b")]))
        assert find_in_path("rg") == [first, second]

    def test_duplicates_removed(self, env, tmp_path, monkeypatch):
        first = _touch(str(tmp_path / "a"), "rg.exe")
        monkeypatch.setenv("PATH", os.pathsep.join([str(tmp_path / "a")] * 2))
        assert find_in_path("rg") == [first]

    def test_empty_path(self, env):
        assert find_in_path("rg") == []


class TestWhich:
    """Tests for the combined lookup."""

    def test_shims_then_path(self, env, tmp_path, monkeypatch):
        shim = _touch(env.user_shims, "rg.exe")
        on_path = _touch(str(tmp_path / "bin"), "rg.exe")
        monkeypatch.setenv("PATH", os.pathsep.join([env.user_shims, str(tmp_path / "bin")]))
        assert which("rg") == [shim, on_path]

    def test_not_found(self, env):
        assert which("rg") == []
