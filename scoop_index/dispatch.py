"""
Parallel work dispatcher.

Fans a job out to isolated worker processes and merges their results:
- search mode: one worker per target bucket
- status mode: installed apps split into a few batches

Workers share no memory with the orchestrator. Each one receives its job
as process arguments and answers over its own one-way pipe with
("progress", n), ("results", [...]) or ("error", message) messages.
Each unit moves Pending -> Running -> Completed | TimedOut | Errored; a
timed-out or failed unit contributes nothing and never aborts the wave.
"""

from __future__ import annotations

import enum
import math
import multiprocessing
import time
from dataclasses import dataclass, field
from multiprocessing.connection import Connection, wait
from typing import Any, Callable, Sequence

from .apps import InstalledPackage
from .buckets import BucketEntry, all_buckets
from .logging_config import get_logger, log_elapsed
from .paths import InstallScope
from .search_cache import PackageIndexEntry
from .status import AppStatus
from .workers import search_bucket_job, status_batch_job

Worker = Callable[[dict[str, Any], Callable[[int], None]], list[Any]]

SEARCH_TIMEOUT = 10.0  # seconds per search worker
STATUS_TIMEOUT = 30.0  # seconds per status worker
MAX_STATUS_WORKERS = 4

# Grace period for a worker process to exit after delivering its results
JOIN_TIMEOUT = 1.0


class UnitState(str, enum.Enum):
    """Lifecycle of one work unit."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"

    @property
    def finished(self) -> bool:
        return self in (UnitState.COMPLETED, UnitState.TIMED_OUT, UnitState.ERRORED)


@dataclass
class WorkUnit:
    """
    One job handed to one worker process.

    Attributes:
        index: Position of the job in the wave
        job: Job payload
        state: Current lifecycle state
        progress: Latest cumulative progress reported
        results: Results of a completed unit (empty otherwise)
        error: Failure description for errored units
        duration_seconds: Time from start to finish
    """
    index: int
    job: dict[str, Any]
    state: UnitState = UnitState.PENDING
    progress: int = 0
    results: list[Any] = field(default_factory=list)
    error: str | None = None
    duration_seconds: float = 0.0
    _process: Any = field(default=None, repr=False)
    _conn: Connection | None = field(default=None, repr=False)
    _started: float = field(default=0.0, repr=False)
    _deadline: float = field(default=0.0, repr=False)


def _unit_main(worker: Worker, job: dict[str, Any], conn: Connection) -> None:
    """Child-process entry point: run the worker and send its messages."""
    def report(completed: int) -> None:
        conn.send(("progress", completed))

    try:
        results = worker(job, report)
        conn.send(("results", list(results)))
    except Exception as e:
        conn.send(("error", f"{type(e).__name__}: {e}"))
    finally:
        conn.close()


def _finish(unit: WorkUnit, state: UnitState, error: str | None = None) -> None:
    unit.state = state
    unit.error = error
    unit.duration_seconds = time.monotonic() - unit._started
    if state is not UnitState.COMPLETED:
        unit.results = []
    if unit._conn is not None:
        unit._conn.close()
        unit._conn = None


def _stop_process(process: Any) -> None:
    if process is None:
        return
    process.join(JOIN_TIMEOUT)
    if process.is_alive():
        process.terminate()
        process.join(JOIN_TIMEOUT)
    if process.is_alive():
        process.kill()
        process.join(JOIN_TIMEOUT)


def run_units(
    worker: Worker,
    jobs: Sequence[dict[str, Any]],
    timeout: float,
    on_progress: Callable[[int, int], None] | None = None,
    start_method: str | None = None,
) -> list[WorkUnit]:
    """
    Run one wave of jobs, one worker process per job.

    Args:
        worker: Module-level worker function (must be importable by the child)
        jobs: Job payloads
        timeout: Hard per-unit timeout in seconds
        on_progress: Called with (unit index, cumulative progress)
        start_method: multiprocessing start method (platform default if None)

    Returns:
        Units in job order; only COMPLETED units carry results
    """
    logger = get_logger()
    ctx = multiprocessing.get_context(start_method)
    units = [WorkUnit(index=i, job=job) for i, job in enumerate(jobs)]

    for unit in units:
        reader, writer = ctx.Pipe(duplex=False)
        process = ctx.Process(
            target=_unit_main,
            args=(worker, unit.job, writer),
            daemon=True,
        )
        unit._started = time.monotonic()
        unit._deadline = unit._started + timeout
        try:
            process.start()
        except Exception as e:
            reader.close()
            writer.close()
            _finish(unit, UnitState.ERRORED, f"failed to start worker: {e}")
            logger.debug(f"Worker {unit.index} could not start: {e}")
            continue
        # Only the child keeps the write end, so its exit shows up as EOF
        writer.close()
        unit._process = process
        unit._conn = reader
        unit.state = UnitState.RUNNING

    running = {unit._conn: unit for unit in units if unit.state is UnitState.RUNNING}

    while running:
        now = time.monotonic()
        wait_for = max(0.0, min(u._deadline for u in running.values()) - now)
        for conn in wait(list(running), timeout=wait_for):
            unit = running[conn]
            try:
                kind, payload = conn.recv()
            except (EOFError, OSError):
                del running[conn]
                _finish(unit, UnitState.ERRORED, "worker exited without results")
                continue
            except Exception as e:
                del running[conn]
                _finish(unit, UnitState.ERRORED, f"unreadable worker message: {e}")
                continue

            if kind == "progress":
                unit.progress = int(payload)
                if on_progress is not None:
                    on_progress(unit.index, unit.progress)
            elif kind == "results":
                del running[conn]
                unit.results = list(payload)
                _finish(unit, UnitState.COMPLETED)
            else:
                del running[conn]
                _finish(unit, UnitState.ERRORED, str(payload))

        now = time.monotonic()
        for conn, unit in list(running.items()):
            if now >= unit._deadline:
                del running[conn]
                _finish(unit, UnitState.TIMED_OUT, f"no response within {timeout}s")
                if unit._process is not None:
                    unit._process.terminate()

    for unit in units:
        _stop_process(unit._process)
        unit._process = None
        if unit.state is not UnitState.COMPLETED:
            logger.debug(f"Worker {unit.index} {unit.state.value}: {unit.error}")

    return units


# ----------------------------------------------------------------------
# Search mode
# ----------------------------------------------------------------------

def parallel_search(
    query: str,
    case_sensitive: bool = False,
    bucket: str | None = None,
    allowlist: Sequence[str] | None = None,
    buckets: Sequence[BucketEntry] | None = None,
    timeout: float = SEARCH_TIMEOUT,
    max_bytes: int = 100_000,
    worker: Worker = search_bucket_job,
    start_method: str | None = None,
) -> list[PackageIndexEntry]:
    """
    Search buckets in parallel, one worker process per bucket.

    Args:
        query: Substring matched against package and binary names
        case_sensitive: Match case exactly
        bucket: Only search buckets with this name (case-insensitive)
        allowlist: Only consider these package names (e.g. installed apps)
        buckets: Bucket listing (defaults to all buckets in both scopes)
        timeout: Hard timeout per worker
        max_bytes: Skip manifests larger than this
        worker: Worker function
        start_method: multiprocessing start method

    Returns:
        Concatenated bucket-local matches; no cross-bucket deduplication
    """
    if buckets is None:
        buckets = all_buckets()
    targets = [b for b in buckets if not bucket or b.name.lower() == bucket.lower()]
    if not targets:
        return []

    names = sorted({name.lower() for name in allowlist}) if allowlist is not None else None
    jobs = [
        {
            "bucket": b.name,
            "directory": b.directory,
            "scope": b.scope.value,
            "query": query,
            "case_sensitive": case_sensitive,
            "allowlist": names,
            "max_bytes": max_bytes,
        }
        for b in targets
    ]

    with log_elapsed(f"Parallel search of {len(jobs)} buckets"):
        units = run_units(worker, jobs, timeout, start_method=start_method)

    results: list[PackageIndexEntry] = []
    for unit in units:
        scope = InstallScope(unit.job["scope"])
        for hit in unit.results:
            try:
                results.append(PackageIndexEntry(
                    name=hit["name"],
                    version=hit.get("version", ""),
                    description=hit.get("description", ""),
                    bucket=hit.get("bucket", unit.job["bucket"]),
                    scope=scope,
                    binaries=tuple(hit.get("binaries", ())),
                    manifest_path=hit.get("manifestPath", ""),
                    last_modified=float(hit.get("lastModified", 0)),
                ))
            except (KeyError, TypeError, ValueError):
                continue
    return results


# ----------------------------------------------------------------------
# Status mode
# ----------------------------------------------------------------------

def get_worker_count(app_count: int, ceiling: int = MAX_STATUS_WORKERS) -> int:
    """
    Number of status workers for a given number of apps.

    1 for up to 5 apps, 2 up to 15, 3 up to 30, then one per ten apps,
    never more than `ceiling`.
    """
    if app_count <= 0:
        return 0
    if app_count <= 5:
        count = 1
    elif app_count <= 15:
        count = 2
    elif app_count <= 30:
        count = 3
    else:
        count = math.ceil(app_count / 10)
    return max(1, min(ceiling, count))


def split_into_batches(items: Sequence[Any], batch_count: int) -> list[list[Any]]:
    """Round-robin items into at most `batch_count` non-empty batches."""
    if batch_count <= 0:
        return []
    batches: list[list[Any]] = [[] for _ in range(batch_count)]
    for i, item in enumerate(items):
        batches[i % batch_count].append(item)
    return [batch for batch in batches if batch]


def parallel_status_check(
    apps: Sequence[InstalledPackage],
    buckets: Sequence[BucketEntry] | None = None,
    on_progress: Callable[[int, int], None] | None = None,
    timeout: float = STATUS_TIMEOUT,
    max_workers: int = MAX_STATUS_WORKERS,
    scheme: str = "tolerant",
    scope_roots: Sequence[str] = (),
    worker: Worker = status_batch_job,
    start_method: str | None = None,
) -> list[AppStatus]:
    """
    Evaluate installed apps in parallel batches.

    Args:
        apps: Installed apps to evaluate
        buckets: Bucket listing handed to every worker
        on_progress: Called with (completed, total) summed over all workers
        timeout: Hard timeout per worker
        max_workers: Ceiling for the number of workers
        scheme: Version comparison scheme
        scope_roots: User and global roots for hold lookups
        worker: Worker function
        start_method: multiprocessing start method

    Returns:
        Merged statuses sorted by case-insensitive name
    """
    if not apps:
        return []
    if buckets is None:
        buckets = all_buckets()

    total = len(apps)
    batches = split_into_batches(list(apps), get_worker_count(total, max_workers))
    bucket_payload = [b.to_dict() for b in buckets]
    installed_names = sorted({app.name.lower() for app in apps})
    jobs = [
        {
            "apps": [app.to_dict() for app in batch],
            "buckets": bucket_payload,
            "scope_roots": list(scope_roots),
            "scheme": scheme,
            "installed_names": installed_names,
        }
        for batch in batches
    ]

    latest_progress = [0] * len(jobs)

    def track(index: int, completed: int) -> None:
        latest_progress[index] = completed
        if on_progress is not None:
            on_progress(sum(latest_progress), total)

    with log_elapsed(f"Status check of {total} apps in {len(jobs)} workers"):
        units = run_units(worker, jobs, timeout, on_progress=track, start_method=start_method)

    statuses: list[AppStatus] = []
    for unit in units:
        for data in unit.results:
            try:
                statuses.append(AppStatus.from_dict(data))
            except (KeyError, TypeError, ValueError):
                continue

    statuses.sort(key=lambda s: s.name.lower())
    return statuses
