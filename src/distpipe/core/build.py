from __future__ import annotations

import logging
import queue
import threading
import time
from pathlib import Path
from typing import Any, Callable, Generator, Iterable

from distpipe.config.load import ConfigError, load_config, resolve_config_path
from distpipe.core import events as ev
from distpipe.core.context import BuildContext, create_context
from distpipe.core.interfaces import Bundler, Transformer
from distpipe.core.scheduler import BuildError, BuildResult, bundle_all, build
from distpipe.core.watch import RunMode, WatchController, WatchError

logger = logging.getLogger(__name__)

_DONE = object()


class EventStream:
    """Funnel events emitted from worker threads into a generator.

    ``run`` executes its function on a background thread and yields every
    event put on the queue until the function returns; its return value (or
    exception) is handed back to the caller through ``yield from``.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue[Any] = queue.Queue()

    def emit(self, event: ev.DistpipeEvent) -> None:
        self._queue.put(event)

    def run(self, func: Callable[[], Any]) -> Generator[ev.DistpipeEvent, None, Any]:
        outcome: dict[str, Any] = {}

        def _worker() -> None:
            try:
                outcome["result"] = func()
            except BaseException as exc:  # noqa: BLE001
                outcome["error"] = exc
            finally:
                self._queue.put(_DONE)

        thread = threading.Thread(target=_worker, name="distpipe-run", daemon=True)
        thread.start()
        while True:
            try:
                item = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            if item is _DONE:
                break
            yield item
        thread.join()
        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("result")

    def drain(self) -> Iterable[ev.DistpipeEvent]:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not _DONE:
                yield item


def build_events(
    *,
    project_dir: Path,
    config_path: Path | None = None,
    release: bool = False,
    transformer: Transformer | None = None,
    bundler: Bundler | None = None,
) -> Iterable[ev.DistpipeEvent]:
    stream = EventStream()
    ctx = yield from _prepare(
        stream,
        "build",
        project_dir,
        config_path,
        {"release": release},
        transformer=transformer,
        bundler=bundler,
    )
    if ctx is None:
        return
    yield from _execute(stream, ctx, lambda: build(ctx, release=release))


def bundle_events(
    *,
    project_dir: Path,
    config_path: Path | None = None,
    transformer: Transformer | None = None,
    bundler: Bundler | None = None,
) -> Iterable[ev.DistpipeEvent]:
    stream = EventStream()
    ctx = yield from _prepare(
        stream,
        "bundle",
        project_dir,
        config_path,
        {},
        transformer=transformer,
        bundler=bundler,
    )
    if ctx is None:
        return

    def _bundle() -> BuildResult:
        return BuildResult(dist_dir=ctx.dist_dir, version=ctx.version, bundles=bundle_all(ctx))

    yield from _execute(stream, ctx, _bundle)


def watch_events(
    *,
    project_dir: Path,
    config_path: Path | None = None,
    mode: RunMode = RunMode.WATCH,
    transformer: Transformer | None = None,
    bundler: Bundler | None = None,
    observer_factory: Callable[[], Any] | None = None,
    stop: threading.Event | None = None,
) -> Iterable[ev.DistpipeEvent]:
    """Build once, then keep reacting to source changes until ``stop`` is set.

    With ``RunMode.ONCE`` this is a plain build reported under the watch
    command.
    """
    stream = EventStream()
    ctx = yield from _prepare(
        stream,
        "watch",
        project_dir,
        config_path,
        {"mode": mode.value},
        transformer=transformer,
        bundler=bundler,
    )
    if ctx is None:
        return
    if mode is RunMode.ONCE:
        yield from _execute(stream, ctx, lambda: build(ctx))
        return

    stop = stop or threading.Event()
    kwargs = {"observer_factory": observer_factory} if observer_factory else {}
    controller = WatchController(ctx, **kwargs)
    ok = yield from _execute(stream, ctx, controller.start, complete=False)
    if not ok:
        return

    def _wait() -> None:
        while not stop.is_set() and controller.alive:
            stop.wait(0.1)

    reason = "stopped"
    try:
        yield from stream.run(_wait)
        if not controller.alive and not stop.is_set():
            reason = "observer_died"
            controller.handle_error(WatchError("Filesystem observer stopped unexpectedly"))
    except KeyboardInterrupt:
        reason = "interrupted"
    finally:
        controller.stop(reason)
    yield from stream.drain()
    ok = reason != "observer_died"
    yield ev.CommandCompleted(command="watch", ok=ok, exit_code=0 if ok else 2)


def _prepare(
    stream: EventStream,
    command: str,
    project_dir: Path,
    config_path: Path | None,
    options: dict[str, Any],
    *,
    transformer: Transformer | None,
    bundler: Bundler | None,
) -> Generator[ev.DistpipeEvent, None, BuildContext | None]:
    project_dir = project_dir.resolve()
    resolved = resolve_config_path(project_dir, config_path)
    yield ev.CommandStarted(
        command=command,
        project_dir=project_dir,
        config_path=resolved,
        options=options,
    )
    yield ev.PhaseStarted(command=command, phase_id="load_config", label="Load config")
    started = time.perf_counter()
    try:
        config = load_config(project_dir, config_path)
        ctx = create_context(
            project_dir,
            config,
            emit=stream.emit,
            command=command,
            transformer=transformer,
            bundler=bundler,
        )
    except (ConfigError, ValueError) as exc:
        yield ev.PhaseFailed(
            command=command,
            phase_id="load_config",
            duration_ms=_elapsed_ms(started),
            error_code="config_error",
            message=str(exc),
        )
        yield ev.CommandCompleted(command=command, ok=False, exit_code=2)
        return None
    yield ev.PhaseCompleted(
        command=command,
        phase_id="load_config",
        duration_ms=_elapsed_ms(started),
        status="success",
    )
    return ctx


def _execute(
    stream: EventStream,
    ctx: BuildContext,
    func: Callable[[], BuildResult],
    *,
    complete: bool = True,
) -> Generator[ev.DistpipeEvent, None, bool]:
    started = time.perf_counter()
    try:
        result = yield from stream.run(func)
    except (BuildError, WatchError) as exc:
        logger.debug("%s failed: %s", ctx.command, exc)
        yield from stream.drain()
        yield ev.CommandCompleted(command=ctx.command, ok=False, exit_code=2)
        return False
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected error during %s", ctx.command)
        yield from stream.drain()
        yield ev.PhaseFailed(
            command=ctx.command,
            phase_id="internal",
            duration_ms=_elapsed_ms(started),
            error_code="internal_error",
            message=str(exc),
        )
        yield ev.CommandCompleted(command=ctx.command, ok=False, exit_code=3)
        return False
    yield ev.BuildSummary(
        command=ctx.command,
        dist_dir=result.dist_dir,
        version=result.version,
        bundles=result.bundles,
        stages=result.stages,
        files=result.files,
    )
    if complete:
        yield ev.CommandCompleted(command=ctx.command, ok=True, exit_code=0)
    return True


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
