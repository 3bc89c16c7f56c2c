from __future__ import annotations

import time
from importlib.metadata import entry_points
from typing import Iterable

from distpipe.core import events as ev
from distpipe.plugins.registry import (
    BUILTIN_BUNDLERS,
    BUILTIN_TRANSFORMERS,
    BUNDLER_GROUP,
    TRANSFORMER_GROUP,
)


def list_plugins_events() -> Iterable[ev.DistpipeEvent]:
    yield ev.CommandStarted(command="list-plugins")

    started = time.perf_counter()
    yield ev.StageStarted(command="list-plugins", stage_id="discover_transformers", label="Discover transformers")
    transformers = _discover(BUILTIN_TRANSFORMERS, TRANSFORMER_GROUP)
    yield ev.PluginsDiscovered(command="list-plugins", kind="transformers", plugins=transformers)
    yield ev.StageCompleted(
        command="list-plugins",
        stage_id="discover_transformers",
        duration_ms=_elapsed_ms(started),
        status="success",
        files=len(transformers),
    )

    started = time.perf_counter()
    yield ev.StageStarted(command="list-plugins", stage_id="discover_bundlers", label="Discover bundlers")
    bundlers = _discover(BUILTIN_BUNDLERS, BUNDLER_GROUP)
    yield ev.PluginsDiscovered(command="list-plugins", kind="bundlers", plugins=bundlers)
    yield ev.StageCompleted(
        command="list-plugins",
        stage_id="discover_bundlers",
        duration_ms=_elapsed_ms(started),
        status="success",
        files=len(bundlers),
    )

    yield ev.CommandCompleted(command="list-plugins", ok=True, exit_code=0)


def _discover(builtins: dict[str, type], group: str) -> list[dict[str, str]]:
    plugins = [
        {"type_key": name, "impl": f"{cls.__module__}:{cls.__name__}", "origin": "builtin"}
        for name, cls in builtins.items()
    ]
    for ep in entry_points(group=group):
        if ep.name in builtins:
            continue
        plugins.append({"type_key": ep.name, "impl": ep.value, "origin": "entry_point"})
    return plugins


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
