from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping

from distpipe.core import events as ev
from distpipe.core.context import BuildContext
from distpipe.core.fsops import copy_file, write_file

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"
LICENSE_NAMES = ("LICENSE", "license")
DEFAULT_MAIN = "index.js"

# The minifier's worker imports its compressor by bare name; once the
# compressor is bundled the import must point at the bundled copy.
MINIFIER_ENTRY_SUFFIX = "terser-webpack-plugin/dist/minify.js"
COMPRESSOR_PACKAGE = "terser"
COMPRESSOR_REQUIRE = "require('terser')"


class BundleError(RuntimeError):
    def __init__(self, package: str, message: str):
        super().__init__(f"Bundling {package} failed: {message}")
        self.package = package
        self.message = message


class ExternalsRegistry:
    """Package name -> replacement import path, shared by every bundling job.

    Entries are only ever added. All access goes through one lock so that
    concurrent jobs see a consistent snapshot.
    """

    def __init__(self, initial: Mapping[str, str] | None = None):
        self._lock = threading.Lock()
        self._entries: dict[str, str] = dict(initial or {})

    def register(self, name: str, replacement: str) -> None:
        with self._lock:
            self._entries[name] = replacement

    def names(self, exclude: str | None = None) -> set[str]:
        with self._lock:
            return {name for name in self._entries if name != exclude}

    def replacement(self, name: str) -> str | None:
        with self._lock:
            return self._entries.get(name)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._entries)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass(frozen=True)
class ArtifactManifest:
    name: str
    main: str
    author: Any | None = None
    license: Any | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "main": self.main}
        if self.author:
            data["author"] = self.author
        if self.license:
            data["license"] = self.license
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2) + "\n"


@dataclass(frozen=True)
class BundleSpec:
    package_name: str | None
    entry_path: Path
    target_dir: Path
    externals: ExternalsRegistry

    @property
    def label(self) -> str:
        return self.package_name or self.entry_path.name


def find_package_manifest(package: str, roots: Iterable[Path]) -> Path | None:
    for root in roots:
        candidates = [root / "node_modules" / package / MANIFEST_NAME]
        if root.name == "node_modules":
            candidates.append(root / package / MANIFEST_NAME)
        for candidate in candidates:
            if candidate.is_file():
                return candidate
    return None


def resolve_package_entry(package: str, roots: Iterable[Path]) -> Path | None:
    manifest_path = find_package_manifest(package, roots)
    if manifest_path is None:
        return None
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        data = {}
    main = data.get("main") if isinstance(data, dict) else None
    base = manifest_path.parent / (main or DEFAULT_MAIN)
    for candidate in (base, base.with_name(f"{base.name}.js"), base / DEFAULT_MAIN):
        if candidate.is_file():
            return candidate
    return None


def rewrite_asset(key: str, data: bytes, externals: ExternalsRegistry) -> bytes:
    if not key.replace("\\", "/").endswith(MINIFIER_ENTRY_SUFFIX):
        return data
    replacement = externals.replacement(COMPRESSOR_PACKAGE)
    if replacement is None:
        return data
    text = data.decode("utf-8")
    return text.replace(COMPRESSOR_REQUIRE, f'require("{replacement}")').encode("utf-8")


def write_package_manifest(
    package: str,
    main: str,
    target_dir: Path,
    ctx: BuildContext,
) -> list[Path]:
    """Write ``package.json`` and ``LICENSE`` for a bundled package.

    A package whose own manifest cannot be found or read is bundled without
    one; this is reported as a warning and never fails the job.
    """
    manifest_path = find_package_manifest(package, ctx.manifest_roots)
    if manifest_path is None:
        _warn_manifest(ctx, package, f"No {MANIFEST_NAME} found for {package}; skipping manifest")
        return []
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        _warn_manifest(ctx, package, f"Cannot read {manifest_path}: {exc}; skipping manifest")
        return []
    if not isinstance(data, dict):
        _warn_manifest(ctx, package, f"{manifest_path} is not a JSON object; skipping manifest")
        return []

    written: list[Path] = []
    manifest = ArtifactManifest(
        name=data.get("name") or package,
        main=Path(main).stem,
        author=data.get("author"),
        license=data.get("license"),
    )
    written.append(write_file(target_dir / MANIFEST_NAME, manifest.to_json(), ctx.retry))
    for name in LICENSE_NAMES:
        license_path = manifest_path.parent / name
        if license_path.is_file():
            written.append(copy_file(license_path, target_dir / "LICENSE", ctx.retry))
            break
    return written


def bundle_package(spec: BundleSpec, ctx: BuildContext) -> list[Path]:
    started = time.perf_counter()
    externals = spec.externals.names(exclude=spec.package_name)
    filename = spec.entry_path.name
    logger.debug("Bundling %s with %d externals", spec.label, len(externals))
    try:
        output = ctx.bundler.bundle(spec.entry_path, filename=filename, externals=externals)
    except Exception as exc:  # noqa: BLE001
        logger.error("Bundling %s failed: %s", spec.label, exc)
        raise BundleError(spec.label, str(exc)) from exc

    assets: list[tuple[Path, bytes]] = []
    for key, data in sorted(output.assets.items()):
        payload = data.encode("utf-8") if isinstance(data, str) else data
        assets.append((spec.target_dir / key, rewrite_asset(key, payload, spec.externals)))

    written: list[Path] = []
    if spec.package_name:
        written.extend(write_package_manifest(spec.package_name, filename, spec.target_dir, ctx))
    written.append(write_file(spec.target_dir / filename, output.code, ctx.retry))
    for path, payload in assets:
        written.append(write_file(path, payload, ctx.retry))

    ctx.emit(
        ev.BundleWritten(
            command=ctx.command,
            package=spec.label,
            target_dir=spec.target_dir,
            files=[path.relative_to(spec.target_dir).as_posix() for path in written],
            externals=len(externals),
        )
    )
    logger.debug("Bundled %s in %.0fms", spec.label, (time.perf_counter() - started) * 1000)
    return written


def _warn_manifest(ctx: BuildContext, package: str, message: str) -> None:
    logger.debug(message)
    ctx.emit(ev.Warning(command=ctx.command, code="manifest_missing", message=message))
