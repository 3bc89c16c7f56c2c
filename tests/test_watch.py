from __future__ import annotations

import os
import stat

import pytest
from watchdog.events import FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from conftest import EventLog, FakeBundler, FakeTransformer
from distpipe.core.events import (
    Notification,
    ReactionCompleted,
    ReactionFailed,
    WatchError as WatchErrorEvent,
    WatchStarted,
    WatchStopped,
)
from distpipe.core.notify import ERROR_TITLE
from distpipe.core.scheduler import BuildError
from distpipe.core.watch import WatchController, WatchError, WatchState, is_watched


class FakeObserver:
    def __init__(self) -> None:
        self.handler = None
        self.path: str | None = None
        self.running = False

    def schedule(self, handler, path, recursive=False):
        self.handler = handler
        self.path = path

    def start(self) -> None:
        self.running = True

    def stop(self) -> None:
        self.running = False

    def join(self, timeout=None) -> None:
        return None

    def is_alive(self) -> bool:
        return self.running


@pytest.fixture
def watching(make_context):
    def _start(**kwargs):
        transformer = kwargs.pop("transformer", None) or FakeTransformer()
        events = EventLog()
        observer = FakeObserver()
        ctx = make_context(transformer=transformer, events=events, **kwargs)
        controller = WatchController(ctx, observer_factory=lambda: observer)
        controller.start()
        transformer.calls.clear()
        return controller, transformer, events, observer

    return _start


def test_is_watched_filters_paths() -> None:
    assert is_watched("lib/a.ts")
    assert is_watched("pages/_app.tsx")
    assert is_watched("bin/next")
    assert not is_watched("bin/sub/x.js")
    assert not is_watched("lib/types.d.ts")
    assert not is_watched("lib/README.md")
    assert not is_watched("lib/node_modules/x/index.js")
    assert not is_watched("compiled/semver/semver.js")
    assert not is_watched("vendor/left-pad.js")


def test_start_builds_then_subscribes(watching) -> None:
    controller, _transformer, events, observer = watching()

    assert controller.state is WatchState.WATCHING
    assert observer.running
    assert observer.path == str(controller.ctx.source_root)
    started = events.of(WatchStarted)[0]
    assert "lib/" in started.prefixes
    assert (controller.ctx.dist_dir / "lib" / "a.js").exists()


def test_change_reruns_only_the_affected_group(watching) -> None:
    controller, transformer, events, _observer = watching()

    assert controller.handle_change("lib/util/b.js") is True

    assert transformer.filenames == ["a.ts", "b.js"]
    completed = events.of(ReactionCompleted)[-1]
    assert (completed.kind, completed.target) == ("change", "lib")
    assert controller.state is WatchState.WATCHING


def test_added_file_is_compiled_alone(watching) -> None:
    controller, transformer, _events, _observer = watching()
    source = controller.ctx.source_root / "lib" / "new.ts"
    source.write_text("export const added = process.env.__NEXT_VERSION\n", encoding="utf-8")

    assert controller.handle_add("lib/new.ts") is True

    assert transformer.filenames == ["new.ts"]
    code = (controller.ctx.dist_dir / "lib" / "new.js").read_text(encoding="utf-8")
    assert f'"{controller.ctx.version}"' in code


def test_added_page_uses_its_own_stage(watching) -> None:
    controller, transformer, events, _observer = watching()

    controller.handle_add("pages/_document.tsx")

    assert [(call["filename"], call["profile"]) for call in transformer.calls] == [("_document.tsx", "server")]
    assert events.of(ReactionCompleted)[-1].target == "pages-document"


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
def test_added_executable_is_marked(watching) -> None:
    controller, _transformer, _events, _observer = watching()
    (controller.ctx.source_root / "bin" / "next-lint").write_text("#!/usr/bin/env node\n", encoding="utf-8")

    controller.handle_add("bin/next-lint")

    output = controller.ctx.dist_dir / "bin" / "next-lint"
    assert stat.S_IMODE(output.stat().st_mode) == 0o755


def test_ignored_paths_trigger_nothing(watching) -> None:
    controller, transformer, events, _observer = watching()

    assert controller.handle_change("lib/types.d.ts") is False
    assert controller.handle_change("node_modules/semver/semver.js") is False
    assert controller.handle_add("lib/README.md") is False

    assert transformer.calls == []
    assert not events.of(ReactionCompleted)


def test_failed_reaction_notifies_and_keeps_watching(watching) -> None:
    transformer = FakeTransformer()
    controller, _transformer, events, _observer = watching(transformer=transformer)
    transformer.fail_on = {"a.ts"}

    assert controller.handle_change("lib/a.ts") is False

    failed = events.of(ReactionFailed)[-1]
    assert failed.target == "lib"
    assert "a.ts" in failed.message
    notification = events.of(Notification)[-1]
    assert notification.title == ERROR_TITLE
    assert notification.level == "ERROR"
    assert notification.message == "Rebuilding lib failed"
    assert "a.ts" in notification.error
    assert controller.state is WatchState.WATCHING

    transformer.fail_on = set()
    assert controller.handle_change("lib/a.ts") is True


def test_observer_events_are_dispatched(watching) -> None:
    controller, transformer, events, observer = watching()
    root = controller.ctx.source_root
    (root / "client" / "extra.tsx").write_text("export {}\n", encoding="utf-8")

    observer.handler.on_created(FileCreatedEvent(str(root / "client" / "extra.tsx")))
    observer.handler.on_modified(FileModifiedEvent(str(root / "server" / "render.tsx")))

    assert [(event.kind, event.target) for event in events.of(ReactionCompleted)] == [
        ("add", "client"),
        ("change", "server"),
    ]
    assert sorted(transformer.filenames) == ["extra.tsx", "render.tsx"]


def test_failed_initial_build_stops(make_context) -> None:
    ctx = make_context(bundler=FakeBundler(fail_on={"semver"}))
    controller = WatchController(ctx, observer_factory=FakeObserver)

    with pytest.raises(BuildError):
        controller.start()

    assert controller.state is WatchState.STOPPED


def test_subscription_failure_is_fatal(make_context) -> None:
    events = EventLog()
    ctx = make_context(events=events)

    def broken_observer():
        raise OSError(28, "inotify watch limit reached")

    controller = WatchController(ctx, observer_factory=broken_observer)
    with pytest.raises(WatchError):
        controller.start()

    assert controller.state is WatchState.STOPPED
    assert "inotify" in events.of(WatchErrorEvent)[0].message


def test_stop_ends_subscription(watching) -> None:
    controller, transformer, events, observer = watching()

    controller.stop("interrupted")

    assert not observer.running
    assert controller.state is WatchState.STOPPED
    assert events.of(WatchStopped)[0].reason == "interrupted"
    assert controller.handle_change("lib/a.ts") is False
    assert transformer.calls == []


def test_dispatch_errors_are_reported_and_swallowed(watching) -> None:
    controller, _transformer, events, _observer = watching()

    def explode(rel_path: str) -> bool:
        raise RuntimeError("handler crashed")

    controller.handle_change = explode  # type: ignore[method-assign]
    assert controller.dispatch("change", str(controller.ctx.source_root / "lib" / "a.ts")) is False
    assert events.of(WatchErrorEvent)[-1].message == "handler crashed"


def test_atomic_save_rebuilds_the_whole_group(watching) -> None:
    controller, transformer, events, observer = watching()
    util = controller.ctx.source_root / "lib" / "util"
    temp = util / ".b.js.swp"
    temp.write_text("module.exports = 2\n", encoding="utf-8")
    temp.replace(util / "b.js")

    observer.handler.on_moved(FileMovedEvent(str(temp), str(util / "b.js")))

    assert [(event.kind, event.target) for event in events.of(ReactionCompleted)] == [("change", "lib")]
    assert transformer.filenames == ["a.ts", "b.js"]


def test_rename_onto_compiled_source_is_a_change(watching) -> None:
    controller, _transformer, _events, _observer = watching()
    root = controller.ctx.source_root

    assert controller.move_kind(str(root / "elsewhere" / "b.js"), str(root / "lib" / "util" / "b.js")) == "change"
    assert controller.move_kind(str(root / "lib" / "old.ts"), str(root / "lib" / "new.ts")) == "add"


def test_moved_in_file_is_compiled_alone(watching) -> None:
    controller, transformer, events, observer = watching()
    root = controller.ctx.source_root
    (root / "lib" / "moved.ts").write_text("export {}\n", encoding="utf-8")

    observer.handler.on_moved(FileMovedEvent(str(root / "lib" / "draft.ts"), str(root / "lib" / "moved.ts")))

    assert [(event.kind, event.target) for event in events.of(ReactionCompleted)] == [("add", "lib")]
    assert transformer.filenames == ["moved.ts"]


def test_nested_bin_files_are_not_compiled(watching) -> None:
    controller, transformer, _events, _observer = watching()
    nested = controller.ctx.source_root / "bin" / "sub" / "x.js"
    nested.parent.mkdir()
    nested.write_text("module.exports = 1\n", encoding="utf-8")

    assert controller.handle_add("bin/sub/x.js") is False
    assert transformer.calls == []
