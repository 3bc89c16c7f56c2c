from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

from distpipe.core import events as ev
from distpipe.core.context import BuildContext
from distpipe.core.fsops import FilesystemError, write_file
from distpipe.core.notify import notify
from distpipe.core.profiles import get_profile
from distpipe.core.stages import KNOWN_SOURCE_DIRS, StageGroup, StageSpec, is_ignored

logger = logging.getLogger(__name__)

VERSION_PLACEHOLDER = "process.env.__NEXT_VERSION"
NOOP_IMPORT_PLACEHOLDER = "__REPLACE_NOOP_IMPORT__"
NOOP_IMPORT = "import('./dev/noop');"
BOOTSTRAP_STEMS = frozenset({"next-dev"})
TARGET_EXTENSION = ".js"
EXECUTABLE_MODE = 0o755


class TransformError(RuntimeError):
    def __init__(self, path: Path, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


@dataclass(frozen=True)
class TransformResult:
    output_path: Path
    code: str
    source_map: dict[str, Any] | None = None
    map_path: Path | None = None


def output_path_for(rel_path: str, stage: StageSpec, dist_dir: Path) -> Path:
    parts = PurePosixPath(rel_path.replace("\\", "/")).parts
    if len(parts) > 1 and parts[0] in KNOWN_SOURCE_DIRS:
        parts = parts[1:]
    relative = PurePosixPath(*parts)
    if relative.suffix:
        relative = relative.with_suffix("" if stage.options.strip_extension else TARGET_EXTENSION)
    return dist_dir / stage.destination_dir / relative


def postprocess(code: str, filename: str, version: str) -> str:
    if PurePosixPath(filename).stem in BOOTSTRAP_STEMS:
        code = code.replace(NOOP_IMPORT_PLACEHOLDER, NOOP_IMPORT)
    return code.replace(VERSION_PLACEHOLDER, json.dumps(version))


def resolve_sources(stage: StageSpec, ctx: BuildContext) -> list[Path]:
    sources: list[Path] = []
    for path in sorted(ctx.source_root.glob(stage.source_glob)):
        if not path.is_file():
            continue
        rel_path = ctx.relative(path)
        if is_ignored(rel_path) or not stage.accepts(rel_path):
            logger.debug("Skipping %s for stage %s", rel_path, stage.name)
            continue
        sources.append(path)
    return sources


def compile_file(source: Path, stage: StageSpec, ctx: BuildContext) -> TransformResult:
    rel_path = ctx.relative(source)
    output = output_path_for(rel_path, stage, ctx.dist_dir)
    profile = get_profile(stage.profile)
    source_file_name = Path(os.path.relpath(source, output.parent)).as_posix()
    try:
        text = source.read_text(encoding="utf-8")
        produced = ctx.transformer.transform(
            text,
            profile,
            filename=source.name,
            source_file_name=source_file_name,
        )
    except TransformError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.error("Failed to compile %s: %s", rel_path, exc)
        raise TransformError(source, str(exc)) from exc

    code = postprocess(produced.code, source.name, ctx.version)
    map_path: Path | None = None
    if produced.source_map is not None:
        map_path = output.with_name(f"{output.name}.map")
        write_file(map_path, json.dumps(produced.source_map), ctx.retry)
        code = f"{code}\n//# sourceMappingURL={map_path.name}"
    write_file(output, code, ctx.retry)
    logger.debug("Compiled %s to %s", rel_path, output)
    ctx.emit(
        ev.FileCompiled(
            command=ctx.command,
            stage_id=stage.name,
            source=source,
            output=output,
            source_map=map_path,
        )
    )
    return TransformResult(output_path=output, code=code, source_map=produced.source_map, map_path=map_path)


def run_stage(stage: StageSpec, ctx: BuildContext) -> list[TransformResult]:
    started = time.perf_counter()
    destination = ctx.destination(stage.destination_dir)
    ctx.emit(
        ev.StageStarted(
            command=ctx.command,
            stage_id=stage.name,
            label=f"{stage.source_glob} -> {destination}",
        )
    )
    sources = resolve_sources(stage, ctx)
    if not sources:
        ctx.emit(
            ev.Warning(
                command=ctx.command,
                code="no_match",
                message=f"No files match {stage.source_glob}",
            )
        )
        ctx.emit(
            ev.StageCompleted(
                command=ctx.command,
                stage_id=stage.name,
                duration_ms=_elapsed_ms(started),
                status="skipped",
            )
        )
        return []

    results: list[TransformResult] = []
    try:
        for source in sources:
            results.append(compile_file(source, stage, ctx))
        if stage.options.executable:
            mark_executable(destination)
    except (TransformError, FilesystemError, OSError) as exc:
        ctx.emit(
            ev.StageFailed(
                command=ctx.command,
                stage_id=stage.name,
                duration_ms=_elapsed_ms(started),
                error_code="transform_error" if isinstance(exc, TransformError) else "filesystem_error",
                message=str(exc),
                path=getattr(exc, "path", None),
            )
        )
        raise

    ctx.emit(
        ev.StageCompleted(
            command=ctx.command,
            stage_id=stage.name,
            duration_ms=_elapsed_ms(started),
            status="success",
            files=len(results),
        )
    )
    notify(ctx.notifier, f"Compiled {stage.source_glob} to {destination}")
    return results


def run_group(group: StageGroup, ctx: BuildContext) -> list[TransformResult]:
    results: list[TransformResult] = []
    for stage in group.stages:
        results.extend(run_stage(stage, ctx))
    return results


def mark_executable(directory: Path) -> None:
    if os.name == "nt" or not directory.is_dir():
        return
    for path in sorted(directory.rglob("*")):
        if path.is_file():
            path.chmod(EXECUTABLE_MODE)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
