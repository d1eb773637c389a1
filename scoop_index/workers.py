"""
Worker entry points executed inside isolated worker processes.

Every worker has the signature `worker(job, report) -> list[dict]`:
- `job` is a plain dict (picklable, no shared state)
- `report(completed)` sends cumulative progress back to the orchestrator
- the return value is the unit's complete result list

Workers never read or write the persistent search cache.
"""

from __future__ import annotations

import os
from typing import Any, Callable

from .apps import InstalledPackage
from .buckets import BucketEntry
from .manifests import extract_binaries, read_manifest_data
from .status import evaluate_app

Report = Callable[[int], None]


def _contains(haystack: str, needle: str, case_sensitive: bool) -> bool:
    if case_sensitive:
        return needle in haystack
    return needle.lower() in haystack.lower()


def _read_text(path: str, max_bytes: int) -> str | None:
    try:
        if os.path.getsize(path) > max_bytes:
            return None
        with open(path, "r", encoding="utf-8-sig") as f:
            return f.read()
    except (OSError, UnicodeDecodeError):
        return None


def scan_bucket_for_query(
    bucket_name: str,
    directory: str,
    query: str,
    case_sensitive: bool = False,
    allowlist: set[str] | None = None,
    max_bytes: int = 100_000,
) -> list[dict[str, Any]]:
    """
    Find manifests in one bucket whose name or binaries contain the query.

    A manifest is only parsed when its file name matches, or when its raw
    text contains the query or a \\u escape (possible binary match).

    Args:
        bucket_name: Bucket name stamped on results
        directory: Manifest directory
        query: Substring to look for
        case_sensitive: Match case exactly
        allowlist: Lower-cased package names to restrict results to
        max_bytes: Skip manifests larger than this

    Returns:
        Result dicts in directory scan order
    """
    results: list[dict[str, Any]] = []
    try:
        entries = sorted(
            (e for e in os.scandir(directory) if e.name.endswith(".json") and e.is_file()),
            key=lambda e: e.name,
        )
    except OSError:
        return results

    for entry in entries:
        app = entry.name[:-5]
        if allowlist is not None and app.lower() not in allowlist:
            continue

        name_hit = _contains(app, query, case_sensitive)
        if not name_hit:
            text = _read_text(entry.path, max_bytes)
            if text is None:
                continue
            # \uXXXX escapes hide binary names from a raw-text match
            if "\\u" not in text and not _contains(text, query, case_sensitive):
                continue

        data = read_manifest_data(entry.path, max_bytes)
        if data is None:
            continue

        binaries = extract_binaries(data.get("bin"))
        if not name_hit and not any(_contains(b, query, case_sensitive) for b in binaries):
            continue

        try:
            mtime = entry.stat().st_mtime_ns / 1_000_000
        except OSError:
            mtime = 0.0

        version = data.get("version")
        description = data.get("description")
        results.append({
            "name": app,
            "version": str(version) if isinstance(version, (str, int, float)) else "",
            "description": description if isinstance(description, str) else "",
            "bucket": bucket_name,
            "binaries": binaries,
            "manifestPath": entry.path,
            "lastModified": mtime,
        })

    return results


def search_bucket_job(job: dict[str, Any], report: Report) -> list[dict[str, Any]]:
    """Search worker: scan one bucket for a query."""
    allowlist = job.get("allowlist")
    results = scan_bucket_for_query(
        bucket_name=job["bucket"],
        directory=job["directory"],
        query=job["query"],
        case_sensitive=bool(job.get("case_sensitive", False)),
        allowlist=set(allowlist) if allowlist is not None else None,
        max_bytes=int(job.get("max_bytes", 100_000)),
    )
    report(1)
    return results


def status_batch_job(job: dict[str, Any], report: Report) -> list[dict[str, Any]]:
    """
    Status worker: evaluate a batch of installed apps.

    Reports cumulative progress after every app, including skipped ones.
    """
    buckets = [BucketEntry.from_dict(b) for b in job.get("buckets", [])]
    scope_roots = list(job.get("scope_roots", []))
    scheme = job.get("scheme", "tolerant")
    installed = job.get("installed_names")
    installed_names = set(installed) if installed is not None else None

    results: list[dict[str, Any]] = []
    for completed, app_data in enumerate(job.get("apps", []), start=1):
        status = evaluate_app(
            InstalledPackage.from_dict(app_data),
            buckets,
            scope_roots,
            installed_names=installed_names,
            scheme=scheme,
        )
        if status is not None:
            results.append(status.to_dict())
        report(completed)

    return results
