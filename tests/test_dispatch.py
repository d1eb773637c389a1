"""
Tests for the parallel work dispatcher (scoop_index/dispatch.py, scoop_index/workers.py).

Worker functions used here live at module level so child processes can
import them under every start method.
"""

import os
import time

import pytest

from scoop_index.apps import list_installed_apps
from scoop_index.buckets import all_buckets
from scoop_index.dispatch import (
    UnitState,
    get_worker_count,
    parallel_search,
    parallel_status_check,
    run_units,
    split_into_batches,
)
from scoop_index.paths import InstallScope
from scoop_index.workers import scan_bucket_for_query, search_bucket_job, status_batch_job


def echo_worker(job, report):
    report(1)
    return [job["value"]]


def counting_worker(job, report):
    for i in range(job["count"]):
        report(i + 1)
    return list(range(job["count"]))


def hanging_worker(job, report):
    time.sleep(60)
    return ["never"]


def raising_worker(job, report):
    raise RuntimeError("manifest exploded")


def exiting_worker(job, report):
    os._exit(3)


def mixed_worker(job, report):
    behavior = job.get("behavior")
    if behavior == "hang":
        return hanging_worker(job, report)
    if behavior == "raise":
        return raising_worker(job, report)
    if behavior == "exit":
        return exiting_worker(job, report)
    return echo_worker(job, report)


def slow_bucket_search(job, report):
    if job["bucket"] == "slow":
        return hanging_worker(job, report)
    return search_bucket_job(job, report)


class TestRunUnits:
    """Tests for the unit lifecycle."""

    def test_results_in_job_order(self):
        units = run_units(echo_worker, [{"value": v} for v in ("a", "b", "c")], timeout=20)
        assert [u.results for u in units] == [["a"], ["b"], ["c"]]
        assert all(u.state is UnitState.COMPLETED for u in units)
        assert all(u.state.finished for u in units)

    def test_no_jobs(self):
        assert run_units(echo_worker, [], timeout=1) == []

    def test_timeout_degrades_to_empty(self):
        jobs = [{"value": "fast"}, {"behavior": "hang"}]
        start = time.monotonic()
        units = run_units(mixed_worker, jobs, timeout=2)
        elapsed = time.monotonic() - start

        assert units[0].state is UnitState.COMPLETED
        assert units[0].results == ["fast"]
        assert units[1].state is UnitState.TIMED_OUT
        assert units[1].results == []
        assert elapsed < 15

    def test_exception_degrades_to_empty(self):
        units = run_units(mixed_worker, [{"behavior": "raise"}, {"value": "ok"}], timeout=20)
        assert units[0].state is UnitState.ERRORED
        assert "manifest exploded" in units[0].error
        assert units[0].results == []
        assert units[1].results == ["ok"]

    def test_crash_degrades_to_empty(self):
        units = run_units(mixed_worker, [{"behavior": "exit"}, {"value": "ok"}], timeout=20)
        assert units[0].state is UnitState.ERRORED
        assert units[0].results == []
        assert units[1].state is UnitState.COMPLETED

    def test_progress_reported_per_unit(self):
        seen = []
        units = run_units(
            counting_worker,
            [{"count": 3}, {"count": 2}],
            timeout=20,
            on_progress=lambda index, done: seen.append((index, done)),
        )
        assert [(i, d) for i, d in seen if i == 0] == [(0, 1), (0, 2), (0, 3)]
        assert [(i, d) for i, d in seen if i == 1] == [(1, 1), (1, 2)]
        assert [u.progress for u in units] == [3, 2]


class TestWorkerCount:
    """Tests for status worker sizing."""

    @pytest.mark.parametrize("apps,expected", [
        (0, 0), (1, 1), (5, 1), (6, 2), (15, 2), (16, 3), (30, 3), (31, 4), (200, 4),
    ])
    def test_scaling(self, apps, expected):
        assert get_worker_count(apps) == expected

    def test_ceiling(self):
        assert get_worker_count(200, ceiling=8) == 8
        assert get_worker_count(30, ceiling=2) == 2


class TestSplitIntoBatches:
    """Tests for round-robin batching."""

    def test_round_robin(self):
        assert split_into_batches(list(range(7)), 3) == [[0, 3, 6], [1, 4], [2, 5]]

    def test_drops_empty_batches(self):
        assert split_into_batches(["a"], 3) == [["a"]]

    def test_zero_batches(self):
        assert split_into_batches([1, 2], 0) == []


class TestSearchWorker:
    """Tests for the per-bucket search scan."""

    @pytest.fixture
    def bucket_dir(self, scoop):
        return scoop.add_bucket("main", {
            "git": {"version": "2.44.0", "description": "VCS", "bin": "git.exe"},
            "gsudo": {"version": "2.4", "bin": [["gsudo.exe", "sudo"]]},
            "curl": {"version": "8.0", "notes": "sudo is not a binary here"},
            "vim": {"version": "9.0"},
        })

    def test_name_match(self, bucket_dir):
        results = scan_bucket_for_query("main", bucket_dir, "GIT")
        assert [r["name"] for r in results] == ["git"]
        assert results[0]["version"] == "2.44.0"
        assert results[0]["bucket"] == "main"
        assert results[0]["manifestPath"] == os.path.join(bucket_dir, "git.json")

    def test_binary_match_requires_real_binary(self, bucket_dir):
        assert [r["name"] for r in scan_bucket_for_query("main", bucket_dir, "sudo")] == ["gsudo"]

    def test_escaped_binary_name(self, scoop):
        # json.dump writes non-ASCII as \uXXXX escapes
        directory = scoop.add_bucket("intl", {"tool": {"version": "1", "bin": "café.exe"}})
        with open(os.path.join(directory, "tool.json"), encoding="utf-8") as f:
            assert "\\u00e9" in f.read()
        results = scan_bucket_for_query("intl", directory, "CAFÉ")
        assert [(r["name"], r["binaries"]) for r in results] == [("tool", ["café"])]

    def test_case_sensitive(self, bucket_dir):
        assert scan_bucket_for_query("main", bucket_dir, "GIT", case_sensitive=True) == []

    def test_allowlist(self, bucket_dir):
        assert scan_bucket_for_query("main", bucket_dir, "i", allowlist={"vim"})[0]["name"] == "vim"

    def test_missing_directory(self, tmp_path):
        assert scan_bucket_for_query("gone", str(tmp_path / "gone"), "git") == []


class TestParallelSearch:
    """Tests for search mode."""

    @pytest.fixture
    def buckets(self, scoop):
        scoop.add_bucket("main", {"git": {"version": "2.44.0"}, "lazygit": {"version": "0.40"}})
        scoop.add_bucket("extras", {"git": {"version": "2.0"}, "gitui": {"version": "0.24"}})
        scoop.add_bucket("slow", {"gitk": {"version": "1.0"}}, scope="global")
        return all_buckets()

    def test_concatenates_without_dedupe(self, buckets):
        results = parallel_search("git", buckets=[b for b in buckets if b.name != "slow"], timeout=20)
        pairs = sorted((r.bucket, r.name) for r in results)
        assert pairs == [("extras", "git"), ("extras", "gitui"), ("main", "git"), ("main", "lazygit")]

    def test_scope_stamped(self, buckets):
        results = parallel_search("gitk", buckets=buckets, timeout=20)
        assert [(r.name, r.scope) for r in results] == [("gitk", InstallScope.GLOBAL)]

    def test_bucket_filter_case_insensitive(self, buckets):
        results = parallel_search("git", bucket="EXTRAS", buckets=buckets, timeout=20)
        assert {r.bucket for r in results} == {"extras"}

    def test_unknown_bucket(self, buckets):
        assert parallel_search("git", bucket="nope", buckets=buckets) == []

    def test_allowlist(self, buckets):
        results = parallel_search("git", allowlist=["GITUI"], buckets=buckets, timeout=20)
        assert [r.name for r in results] == ["gitui"]

    def test_unresponsive_bucket_contributes_nothing(self, buckets):
        start = time.monotonic()
        results = parallel_search("git", buckets=buckets, timeout=3, worker=slow_bucket_search)
        elapsed = time.monotonic() - start

        assert {r.bucket for r in results} == {"main", "extras"}
        assert len(results) == 4
        assert elapsed < 15


class TestParallelStatusCheck:
    """Tests for status mode."""

    def test_progress_and_merge(self, scoop):
        scoop.add_bucket("main", {f"app{i:02d}": {"version": "2.0"} for i in range(8)})
        for i in range(8):
            scoop.install_app(f"app{i:02d}", "1.0", bucket="main")
        apps = list_installed_apps()

        progress = []
        statuses = parallel_status_check(
            apps,
            buckets=all_buckets(),
            on_progress=lambda done, total: progress.append((done, total)),
            timeout=30,
            scope_roots=[scoop.user_root, scoop.global_root],
        )

        assert [s.name for s in statuses] == [f"app{i:02d}" for i in range(8)]
        assert all(s.outdated and s.latest_version == "2.0" for s in statuses)
        assert progress[-1] == (8, 8)
        assert all(total == 8 for _, total in progress)
        assert [done for done, _ in progress] == sorted(done for done, _ in progress)

    def test_sorted_case_insensitive(self, scoop):
        scoop.add_bucket("main", {"Zed": {"version": "1"}, "alpha": {"version": "1"}, "Mid": {"version": "1"}})
        for name in ("Zed", "alpha", "Mid"):
            scoop.install_app(name, "1", bucket="main")
        statuses = parallel_status_check(list_installed_apps(), buckets=all_buckets(), timeout=30)
        assert [s.name for s in statuses] == ["alpha", "Mid", "Zed"]

    def test_no_apps(self, scoop):
        assert parallel_status_check([], buckets=[]) == []

    def test_failed_batch_is_dropped(self, scoop):
        for name in ("a", "b"):
            scoop.install_app(name, "1")
        statuses = parallel_status_check(
            list_installed_apps(), buckets=[], timeout=20, worker=raising_worker,
        )
        assert statuses == []

    def test_status_job_in_process(self, scoop):
        scoop.add_bucket("main", {"git": {"version": "1.2.0"}})
        scoop.install_app("git", "1.1.0", bucket="main")
        scoop.install_app("scoop", "0.5")
        reports = []
        job = {
            "apps": [a.to_dict() for a in list_installed_apps()],
            "buckets": [b.to_dict() for b in all_buckets()],
            "scope_roots": [scoop.user_root, scoop.global_root],
            "scheme": "tolerant",
            "installed_names": ["git", "scoop"],
        }
        results = status_batch_job(job, reports.append)
        assert [r["name"] for r in results] == ["git"]
        assert reports == [1, 2]
