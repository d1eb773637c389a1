"""
Manifest discovery and reading.

Resolution order for a package name:
1) Installed manifest: <root>\\apps\\<app>\\current\\manifest.json
   (user scope before global)
2) Every bucket, user scope then global, whose manifest directory holds
   <app>.json (or only the qualified bucket for "bucket/app" input)

Bucket content is third-party input: unreadable or malformed files are
skipped, never raised.
"""

from __future__ import annotations

import json
import ntpath
import os
from dataclasses import dataclass
from typing import Any

from .apps import read_install_info, resolve_app_prefix
from .buckets import BucketEntry, get_bucket_path, list_buckets, resolve_manifest_dir
from .paths import SCOPES, InstallScope

DEPRECATION_MARKERS = ("deprecated", "DELETED", "deprecated_by")


class ManifestRecord:
    """
    Permissive view over a parsed manifest document.

    Unknown fields are kept in `data`; accessors return empty values for
    absent or wrongly-typed fields.
    """

    __slots__ = ("data",)

    def __init__(self, data: dict[str, Any]):
        self.data = data

    def _str(self, key: str) -> str:
        value = self.data.get(key)
        return value if isinstance(value, str) else ""

    @property
    def version(self) -> str:
        value = self.data.get("version")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value if isinstance(value, str) else ""

    @property
    def description(self) -> str:
        value = self.data.get("description")
        if isinstance(value, list):
            return " ".join(str(v) for v in value)
        return value if isinstance(value, str) else ""

    @property
    def homepage(self) -> str:
        return self._str("homepage")

    @property
    def license(self) -> str | dict[str, Any]:
        value = self.data.get("license")
        if isinstance(value, str):
            return value
        if isinstance(value, dict) and value.get("identifier"):
            return value
        return ""

    @property
    def binaries(self) -> list[str]:
        return extract_binaries(self.data.get("bin"))

    @property
    def dependencies(self) -> list[str]:
        value = self.data.get("depends")
        if isinstance(value, str):
            return [value]
        if isinstance(value, list):
            return [v for v in value if isinstance(v, str)]
        return []

    @property
    def deprecated(self) -> bool:
        return any(bool(self.data.get(marker)) for marker in DEPRECATION_MARKERS)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


@dataclass(frozen=True)
class FoundManifest:
    """
    A manifest located on disk.

    Attributes:
        source: 'installed' or 'bucket'
        scope: Scope the manifest was found in
        bucket: Bucket name (bucket source) or install.json bucket (installed)
        app: Package name
        file_path: Manifest path
        manifest: Parsed manifest
    """
    source: str
    scope: InstallScope
    bucket: str | None
    app: str
    file_path: str
    manifest: ManifestRecord


@dataclass(frozen=True)
class InfoFields:
    """Display-ready manifest metadata for one package."""
    name: str
    version: str
    description: str
    homepage: str
    license: str | dict[str, Any]
    source: str
    deprecated: bool = False


def parse_bucket_and_app(value: str) -> tuple[str | None, str]:
    """
    Split "bucket/app" input.

    Returns:
        (bucket, app); bucket is None for a bare name
    """
    if "/" in value:
        bucket, _, app = value.partition("/")
        bucket, app = bucket.strip(), app.strip()
        if bucket and app:
            return (bucket, app)
    return (None, value.strip())


def read_manifest_data(path: str, max_bytes: int | None = None) -> dict[str, Any] | None:
    """
    Read and parse a manifest file.

    Args:
        path: Manifest path
        max_bytes: Skip files larger than this

    Returns:
        Parsed JSON object, or None if unreadable, oversized or malformed
    """
    try:
        if max_bytes is not None and os.path.getsize(path) > max_bytes:
            return None
        with open(path, "r", encoding="utf-8-sig") as f:
            data = json.load(f)
    except (OSError, ValueError, RecursionError):
        return None
    return data if isinstance(data, dict) else None


def read_manifest(path: str, max_bytes: int | None = None) -> ManifestRecord | None:
    """Parse a manifest into a ManifestRecord (None on any failure)."""
    data = read_manifest_data(path, max_bytes)
    return ManifestRecord(data) if data is not None else None


def _binary_name(path: str) -> str:
    # Manifests use Windows separators; ntpath handles both '\\' and '/'
    filename = ntpath.basename(path) or path
    stem, ext = ntpath.splitext(filename)
    return stem if ext else filename


def extract_binaries(bin_field: Any) -> list[str]:
    """
    Normalize a manifest's 'bin' field into binary names.

    Accepted shapes:
    - "tool.exe"                        -> ["tool"]
    - ["a.exe", "dir\\b.cmd"]           -> ["a", "b"]
    - [["target.exe", "alias", ...]]    -> ["alias"]
    - {"alias": "target.exe"}           -> ["alias"]
    """
    if not bin_field:
        return []

    if isinstance(bin_field, dict):
        return [str(alias) for alias in bin_field]

    items = bin_field if isinstance(bin_field, list) else [bin_field]
    binaries = []
    for item in items:
        if isinstance(item, str):
            if item:
                binaries.append(_binary_name(item))
        elif isinstance(item, list) and len(item) >= 2 and item[1]:
            binaries.append(str(item[1]))
    return binaries


def find_installed_manifest(app: str) -> FoundManifest | None:
    """
    Locate the manifest of an installed app, user scope before global.

    The bucket is taken from install.json next to the manifest.
    """
    for scope in SCOPES:
        prefix = resolve_app_prefix(app, scope)
        if not prefix:
            continue
        manifest_path = os.path.join(prefix, "manifest.json")
        record = read_manifest(manifest_path)
        if record is None:
            continue
        bucket = read_install_info(prefix).get("bucket")
        return FoundManifest(
            source="installed",
            scope=scope,
            bucket=bucket if isinstance(bucket, str) and bucket else None,
            app=app,
            file_path=manifest_path,
            manifest=record,
        )
    return None


def _bucket_hit(bucket: BucketEntry, app: str) -> FoundManifest | None:
    path = bucket.manifest_path(app)
    if not os.path.isfile(path):
        return None
    record = read_manifest(path)
    if record is None:
        return None
    return FoundManifest(
        source="bucket",
        scope=bucket.scope,
        bucket=bucket.name,
        app=app,
        file_path=path,
        manifest=record,
    )


def _iter_bucket_hits(bucket_name: str | None, app: str):
    for scope in SCOPES:
        if bucket_name:
            root = get_bucket_path(bucket_name, scope)
            if not os.path.isdir(root):
                continue
            candidates = [BucketEntry(
                name=bucket_name,
                scope=scope,
                directory=resolve_manifest_dir(root),
                root=root,
            )]
        else:
            candidates = list_buckets(scope)

        for bucket in candidates:
            hit = _bucket_hit(bucket, app)
            if hit is not None:
                yield hit


def find_bucket_manifest(value: str) -> FoundManifest | None:
    """First bucket manifest for "app" or "bucket/app", or None."""
    bucket_name, app = parse_bucket_and_app(value)
    return next(_iter_bucket_hits(bucket_name, app), None)


def locate_all(value: str) -> list[FoundManifest]:
    """
    Find every manifest for "app" or "bucket/app".

    Returns:
        Installed manifest first (if any), then one entry per bucket that
        defines the app, user scope before global
    """
    bucket_name, app = parse_bucket_and_app(value)
    results: list[FoundManifest] = []

    installed = find_installed_manifest(app)
    if installed is not None:
        results.append(installed)

    results.extend(_iter_bucket_hits(bucket_name, app))
    return results


def path_marks_deprecated(path: str) -> bool:
    """
    Check the manifest's own location for a 'deprecated' marker.

    Only the last three path components (bucket, manifest dir, file) are
    inspected so that unrelated parent directories cannot match.
    """
    parts = path.replace("\\", "/").rstrip("/").split("/")[-3:]
    return any("deprecated" in part.lower() for part in parts)


def is_deprecated(found: FoundManifest) -> bool:
    """Deprecated if the manifest path mentions 'deprecated' or a marker field is set."""
    return path_marks_deprecated(found.file_path) or found.manifest.deprecated


def read_manifest_fields(app: str, found: FoundManifest) -> InfoFields:
    """
    Extract display fields from a located manifest.

    Source resolution for installed manifests: install.json bucket, then the
    manifest's own 'bucket', '_source' or 'scoop.bucket' keys, else 'installed'.
    """
    m = found.manifest
    if found.source == "bucket":
        source = found.bucket or "bucket"
    elif found.bucket:
        source = found.bucket
    elif isinstance(m.get("bucket"), str):
        source = m.get("bucket")
    elif isinstance(m.get("_source"), str):
        source = m.get("_source")
    elif isinstance(m.get("scoop"), dict) and isinstance(m.get("scoop").get("bucket"), str):
        source = m.get("scoop")["bucket"]
    else:
        source = "installed"

    return InfoFields(
        name=app,
        version=m.version,
        description=m.description,
        homepage=m.homepage,
        license=m.license,
        source=source,
        deprecated=is_deprecated(found),
    )
