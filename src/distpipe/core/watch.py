"""Incremental rebuilds driven by filesystem events.

The controller runs one full build, then subscribes to the source tree. A new
file is compiled on its own with the stage that owns it; a modified file, or
one replaced by renaming a temporary file over it, re-runs the whole stage
group mapped by its watch rule. Reactions never run concurrently and a failing
reaction only produces a notification.
"""

from __future__ import annotations

import enum
import logging
import os
import threading
import time
from pathlib import Path, PurePosixPath
from typing import Any, Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from distpipe.core import events as ev
from distpipe.core.context import BuildContext
from distpipe.core.notify import notify
from distpipe.core.scheduler import BuildResult, build
from distpipe.core.stages import (
    GROUPS_BY_NAME,
    SOURCE_EXTENSIONS,
    WATCH_RULES,
    StageSpec,
    is_ignored,
    match_watch_rule,
)
from distpipe.core.transform import (
    EXECUTABLE_MODE,
    TransformResult,
    compile_file,
    output_path_for,
    run_group,
)

logger = logging.getLogger(__name__)

TEMP_SUFFIXES = ("~", ".swp", ".tmp", ".bak")


class RunMode(str, enum.Enum):
    ONCE = "once"
    WATCH = "watch"


class WatchState(str, enum.Enum):
    IDLE = "idle"
    WATCHING = "watching"
    REACTING = "reacting"
    STOPPED = "stopped"


class WatchError(RuntimeError):
    pass


def is_watched(rel_path: str) -> bool:
    rel_path = rel_path.replace("\\", "/")
    if is_ignored(rel_path):
        return False
    rule = match_watch_rule(rel_path)
    if rule is None:
        return False
    if rule.group == "bin":
        return len(PurePosixPath(rel_path).parts) == 2
    return PurePosixPath(rel_path).suffix in SOURCE_EXTENSIONS


def _is_temp_name(name: str) -> bool:
    return name.startswith(".") or name.endswith(TEMP_SUFFIXES)


class _SourceEventHandler(FileSystemEventHandler):
    def __init__(self, controller: "WatchController"):
        super().__init__()
        self.controller = controller

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.controller.dispatch("add", event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            kind = self.controller.move_kind(event.src_path, event.dest_path)
            self.controller.dispatch(kind, event.dest_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.controller.dispatch("change", event.src_path)


class WatchController:
    def __init__(
        self,
        ctx: BuildContext,
        *,
        observer_factory: Callable[[], Any] = Observer,
    ):
        self.ctx = ctx
        self.observer_factory = observer_factory
        self.state = WatchState.IDLE
        self._observer: Any = None
        self._lock = threading.Lock()

    def start(self) -> BuildResult:
        if self.state is not WatchState.IDLE:
            raise WatchError(f"Cannot start a watch in state {self.state.value}")
        try:
            result = build(self.ctx)
        except Exception:
            self.state = WatchState.STOPPED
            raise

        try:
            observer = self.observer_factory()
            observer.schedule(_SourceEventHandler(self), str(self.ctx.source_root), recursive=True)
            observer.start()
        except OSError as exc:
            self.state = WatchState.STOPPED
            self.handle_error(exc)
            raise WatchError(f"Cannot watch {self.ctx.source_root}: {exc}") from exc

        self._observer = observer
        self.state = WatchState.WATCHING
        self.ctx.emit(
            ev.WatchStarted(
                command=self.ctx.command,
                root=self.ctx.source_root,
                prefixes=[rule.path_prefix for rule in WATCH_RULES],
            )
        )
        logger.info("Watching %s", self.ctx.source_root)
        return result

    def stop(self, reason: str = "stopped") -> None:
        if self.state is WatchState.STOPPED:
            return
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join()
        with self._lock:
            self.state = WatchState.STOPPED
        self.ctx.emit(ev.WatchStopped(command=self.ctx.command, reason=reason))

    @property
    def alive(self) -> bool:
        if self.state is WatchState.STOPPED:
            return False
        return self._observer is None or self._observer.is_alive()

    def dispatch(self, kind: str, path: str | bytes) -> bool:
        rel_path = self.ctx.relative(Path(os.fsdecode(path)))
        try:
            if kind == "add":
                return self.handle_add(rel_path)
            return self.handle_change(rel_path)
        except Exception as exc:  # noqa: BLE001
            self.handle_error(exc)
            return False

    def move_kind(self, src_path: str | bytes, dest_path: str | bytes) -> str:
        """Classify a rename: saving through a temporary file replaces an
        existing source and counts as a change, anything else is an add."""
        src = Path(os.fsdecode(src_path))
        dest = Path(os.fsdecode(dest_path))
        if src.parent == dest.parent and _is_temp_name(src.name):
            return "change"
        rel_path = self.ctx.relative(dest)
        rule = match_watch_rule(rel_path)
        if rule is not None:
            stage = GROUPS_BY_NAME[rule.group].stage_for(rel_path)
            if stage is not None and output_path_for(rel_path, stage, self.ctx.dist_dir).exists():
                return "change"
        return "add"

    def handle_add(self, rel_path: str) -> bool:
        rel_path = rel_path.replace("\\", "/")
        if not is_watched(rel_path):
            return False
        rule = match_watch_rule(rel_path)
        stage = GROUPS_BY_NAME[rule.group].stage_for(rel_path)
        if stage is None:
            self.ctx.emit(
                ev.Warning(
                    command=self.ctx.command,
                    code="no_stage",
                    message=f"No stage of {rule.group} compiles {rel_path}",
                )
            )
            return False
        return self._react("add", rel_path, stage.name, lambda: self._compile_one(rel_path, stage))

    def handle_change(self, rel_path: str) -> bool:
        rel_path = rel_path.replace("\\", "/")
        if not is_watched(rel_path):
            return False
        rule = match_watch_rule(rel_path)
        group = GROUPS_BY_NAME[rule.group]
        return self._react("change", rel_path, group.name, lambda: run_group(group, self.ctx))

    def handle_error(self, error: BaseException) -> None:
        logger.error("Watch error: %s", error)
        self.ctx.emit(ev.WatchError(command=self.ctx.command, message=str(error)))

    def _compile_one(self, rel_path: str, stage: StageSpec) -> TransformResult:
        result = compile_file(self.ctx.source_root / rel_path, stage, self.ctx)
        if stage.options.executable and os.name != "nt":
            result.output_path.chmod(EXECUTABLE_MODE)
        return result

    def _react(self, kind: str, rel_path: str, target: str, func: Callable[[], Any]) -> bool:
        with self._lock:
            if self.state is not WatchState.WATCHING:
                logger.debug("Ignoring %s of %s while %s", kind, rel_path, self.state.value)
                return False
            self.state = WatchState.REACTING
            self.ctx.emit(ev.WatchTriggered(command=self.ctx.command, kind=kind, path=rel_path, target=target))
            started = time.perf_counter()
            try:
                func()
            except Exception as exc:  # noqa: BLE001
                logger.error("Rebuilding %s after %s of %s failed: %s", target, kind, rel_path, exc)
                notify(self.ctx.notifier, f"Rebuilding {target} failed", exc)
                self.ctx.emit(
                    ev.ReactionFailed(
                        command=self.ctx.command,
                        kind=kind,
                        path=rel_path,
                        target=target,
                        message=str(exc),
                    )
                )
                return False
            finally:
                self.state = WatchState.WATCHING
            self.ctx.emit(
                ev.ReactionCompleted(
                    command=self.ctx.command,
                    kind=kind,
                    path=rel_path,
                    target=target,
                    duration_ms=(time.perf_counter() - started) * 1000,
                )
            )
            return True
