"""Phase scheduling.

A full build is two phases separated by a hard barrier:

- ``precompile`` resets ``compiled/``, bundles every external dependency
  concurrently, then concurrently stages the polyfills, the path-pattern
  table and the bundled tree into the output directory.
- ``compile`` runs every transformation stage group concurrently.

Inside a phase the first failure cancels every job that has not started yet;
jobs already running are allowed to finish and the phase then fails.
"""

from __future__ import annotations

import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Callable

from distpipe.core import events as ev
from distpipe.core.bundle import (
    BundleError,
    BundleSpec,
    ExternalsRegistry,
    bundle_package,
    resolve_package_entry,
)
from distpipe.core.context import BuildContext, BundleEntry, CopySpec
from distpipe.core.fsops import FilesystemError, copy_file, remove_tree
from distpipe.core.stages import TRANSFORM_GROUPS, StageGroup, check_disjoint_destinations
from distpipe.core.transform import TransformError, run_group

EXTERNALS_POLICIES = ("precomputed", "incremental")


class BuildError(RuntimeError):
    def __init__(self, phase: str, message: str, cancelled: list[str] | None = None):
        super().__init__(f"{phase} failed: {message}")
        self.phase = phase
        self.message = message
        self.cancelled = cancelled or []


class JobError(RuntimeError):
    def __init__(self, job_id: str, error: BaseException, cancelled: list[str]):
        super().__init__(f"{job_id}: {error}")
        self.job_id = job_id
        self.error = error
        self.cancelled = cancelled


@dataclass(frozen=True)
class Job:
    job_id: str
    func: Callable[[], Any]


@dataclass
class BuildResult:
    dist_dir: Path
    version: str
    bundles: int = 0
    stages: int = 0
    files: int = 0


def run_concurrently(jobs: list[Job], *, max_workers: int | None = None) -> list[Any]:
    if not jobs:
        return []
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="distpipe") as pool:
        futures: dict[Future, Job] = {pool.submit(job.func): job for job in jobs}
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        failed = [future for future in futures if future in done and future.exception() is not None]
        if failed:
            cancelled = [futures[future].job_id for future in pending if future.cancel()]
            wait(pending)
            first = failed[0]
            raise JobError(futures[first].job_id, first.exception(), cancelled)
        return [future.result() for future in futures]


def create_registry(ctx: BuildContext) -> ExternalsRegistry:
    if ctx.externals_policy not in EXTERNALS_POLICIES:
        raise ValueError(f"Unknown externals policy: {ctx.externals_policy}")
    registry = ExternalsRegistry(ctx.base_externals)
    if ctx.externals_policy == "precomputed":
        for entry in ctx.bundles:
            registry.register(entry.package, ctx.replacement_for(entry.package))
    return registry


def bundle_job(entry: BundleEntry, registry: ExternalsRegistry, ctx: BuildContext) -> list[Path]:
    spec = BundleSpec(
        package_name=entry.package,
        entry_path=_resolve_entry(entry, ctx),
        target_dir=ctx.compiled_dir / entry.package,
        externals=registry,
    )
    written = bundle_package(spec, ctx)
    if ctx.externals_policy == "incremental":
        registry.register(entry.package, ctx.replacement_for(entry.package))
    return written


def stage_copy(spec: CopySpec, ctx: BuildContext) -> Path | None:
    if spec.source is not None:
        source: Path | None = spec.source if spec.source.is_absolute() else ctx.source_root / spec.source
    elif spec.package:
        source = resolve_package_entry(spec.package, ctx.manifest_roots)
    else:
        source = None
    if source is None or not source.is_file():
        ctx.emit(
            ev.Warning(
                command=ctx.command,
                code="copy_source_missing",
                message=f"Nothing to copy for {spec.label}",
            )
        )
        return None
    destination = ctx.dist_dir / spec.destination
    copy_file(source, destination, ctx.retry)
    ctx.emit(ev.FileCopied(command=ctx.command, source=source, destination=destination))
    return destination


def copy_compiled(ctx: BuildContext) -> list[Path]:
    if not ctx.compiled_dir.is_dir():
        ctx.emit(
            ev.Warning(
                command=ctx.command,
                code="compiled_missing",
                message=f"{ctx.compiled_dir} does not exist, nothing to copy",
            )
        )
        return []
    target = ctx.dist_dir / ctx.compiled_dir.name
    copied: list[Path] = []
    for path in sorted(ctx.compiled_dir.rglob("*")):
        if path.is_file():
            destination = target / path.relative_to(ctx.compiled_dir)
            copied.append(copy_file(path, destination, ctx.retry))
    return copied


def reset_compiled(ctx: BuildContext) -> None:
    remove_tree(ctx.compiled_dir, ctx.retry)
    ctx.compiled_dir.mkdir(parents=True, exist_ok=True)


def clean(ctx: BuildContext) -> None:
    _run_phase("clean", "Clean output", [[Job("clean:dist", partial(remove_tree, ctx.dist_dir, ctx.retry))]], ctx)


def bundle_all(ctx: BuildContext, *, phase_id: str = "bundle") -> int:
    _run_phase(phase_id, "Bundle dependencies", _bundle_batches(ctx), ctx)
    return len(ctx.bundles)


def precompile(ctx: BuildContext) -> int:
    staging = [Job(f"copy:{spec.label}", partial(stage_copy, spec, ctx)) for spec in ctx.copies]
    staging.append(Job("copy:compiled", partial(copy_compiled, ctx)))
    _run_phase("precompile", "Bundle dependencies", [*_bundle_batches(ctx), staging], ctx)
    return len(ctx.bundles)


def compile_sources(ctx: BuildContext, groups: tuple[StageGroup, ...] = TRANSFORM_GROUPS) -> tuple[int, int]:
    check_disjoint_destinations(groups)
    jobs = [Job(group.name, partial(run_group, group, ctx)) for group in groups]
    results = _run_phase("compile", "Compile sources", [jobs], ctx)
    stages = sum(len(group.stages) for group in groups)
    files = sum(len(batch_result) for batch_result in results[0])
    return stages, files


def build(ctx: BuildContext, *, release: bool = False) -> BuildResult:
    if release:
        clean(ctx)
    bundles = precompile(ctx)
    stages, files = compile_sources(ctx)
    return BuildResult(
        dist_dir=ctx.dist_dir,
        version=ctx.version,
        bundles=bundles,
        stages=stages,
        files=files,
    )


def _run_phase(phase_id: str, label: str, batches: list[list[Job]], ctx: BuildContext) -> list[list[Any]]:
    started = time.perf_counter()
    ctx.emit(
        ev.PhaseStarted(
            command=ctx.command,
            phase_id=phase_id,
            label=label,
            jobs=[job.job_id for batch in batches for job in batch],
        )
    )
    results: list[list[Any]] = []
    try:
        for batch in batches:
            results.append(run_concurrently(batch, max_workers=ctx.max_workers))
    except JobError as exc:
        ctx.emit(
            ev.PhaseFailed(
                command=ctx.command,
                phase_id=phase_id,
                duration_ms=_elapsed_ms(started),
                error_code=_error_code(exc.error),
                message=f"{exc.job_id}: {exc.error}",
                cancelled=exc.cancelled,
            )
        )
        raise BuildError(phase_id, str(exc.error), exc.cancelled) from exc.error
    ctx.emit(
        ev.PhaseCompleted(
            command=ctx.command,
            phase_id=phase_id,
            duration_ms=_elapsed_ms(started),
            status="success",
        )
    )
    return results


def _bundle_batches(ctx: BuildContext) -> list[list[Job]]:
    registry = create_registry(ctx)
    return [
        [Job("clean:compiled", partial(reset_compiled, ctx))],
        [Job(f"bundle:{entry.package}", partial(bundle_job, entry, registry, ctx)) for entry in ctx.bundles],
    ]


def _resolve_entry(entry: BundleEntry, ctx: BuildContext) -> Path:
    if entry.entry is not None:
        path = entry.entry if entry.entry.is_absolute() else ctx.source_root / entry.entry
        if not path.is_file():
            raise BundleError(entry.package, f"Entry module not found: {path}")
        return path
    resolved = resolve_package_entry(entry.package, ctx.manifest_roots)
    if resolved is None:
        raise BundleError(entry.package, "Cannot resolve entry module")
    return resolved


def _error_code(error: BaseException) -> str:
    if isinstance(error, TransformError):
        return "transform_error"
    if isinstance(error, BundleError):
        return "bundle_error"
    if isinstance(error, (FilesystemError, OSError)):
        return "filesystem_error"
    return "internal_error"


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
