from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable


@dataclass(frozen=True)
class DistpipeEvent:
    ts: float = field(default_factory=time.perf_counter)
    level: str = "INFO"
    command: str = ""
    type: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _serialize(asdict(self))


Emit = Callable[[DistpipeEvent], None]


@dataclass(frozen=True)
class CommandStarted(DistpipeEvent):
    type: str = "CommandStarted"
    project_dir: Path | None = None
    config_path: Path | None = None
    options: dict[str, Any] | None = None


@dataclass(frozen=True)
class CommandCompleted(DistpipeEvent):
    type: str = "CommandCompleted"
    ok: bool = True
    exit_code: int = 0


@dataclass(frozen=True)
class PhaseStarted(DistpipeEvent):
    type: str = "PhaseStarted"
    phase_id: str = ""
    label: str = ""
    jobs: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PhaseCompleted(DistpipeEvent):
    type: str = "PhaseCompleted"
    phase_id: str = ""
    duration_ms: float = 0.0
    status: str = "success"


@dataclass(frozen=True)
class PhaseFailed(DistpipeEvent):
    type: str = "PhaseFailed"
    level: str = "ERROR"
    phase_id: str = ""
    duration_ms: float = 0.0
    error_code: str = ""
    message: str = ""
    cancelled: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class StageStarted(DistpipeEvent):
    type: str = "StageStarted"
    stage_id: str = ""
    label: str = ""


@dataclass(frozen=True)
class StageCompleted(DistpipeEvent):
    type: str = "StageCompleted"
    stage_id: str = ""
    duration_ms: float = 0.0
    status: str = "success"
    files: int = 0


@dataclass(frozen=True)
class StageFailed(DistpipeEvent):
    type: str = "StageFailed"
    level: str = "ERROR"
    stage_id: str = ""
    duration_ms: float = 0.0
    error_code: str = ""
    message: str = ""
    path: Path | None = None


@dataclass(frozen=True)
class FileCompiled(DistpipeEvent):
    type: str = "FileCompiled"
    level: str = "DEBUG"
    stage_id: str = ""
    source: Path | None = None
    output: Path | None = None
    source_map: Path | None = None


@dataclass(frozen=True)
class FileCopied(DistpipeEvent):
    type: str = "FileCopied"
    level: str = "DEBUG"
    source: Path | None = None
    destination: Path | None = None


@dataclass(frozen=True)
class BundleWritten(DistpipeEvent):
    type: str = "BundleWritten"
    package: str = ""
    target_dir: Path | None = None
    files: list[str] = field(default_factory=list)
    externals: int = 0


@dataclass(frozen=True)
class BuildSummary(DistpipeEvent):
    type: str = "BuildSummary"
    dist_dir: Path | None = None
    version: str = ""
    bundles: int = 0
    stages: int = 0
    files: int = 0


@dataclass(frozen=True)
class Warning(DistpipeEvent):
    type: str = "Warning"
    level: str = "WARNING"
    code: str = ""
    message: str = ""
    hint: str | None = None


@dataclass(frozen=True)
class Notification(DistpipeEvent):
    type: str = "Notification"
    title: str = ""
    message: str = ""
    error: str | None = None


@dataclass(frozen=True)
class PluginsDiscovered(DistpipeEvent):
    type: str = "PluginsDiscovered"
    kind: str = ""
    plugins: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class WatchStarted(DistpipeEvent):
    type: str = "WatchStarted"
    root: Path | None = None
    prefixes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class WatchTriggered(DistpipeEvent):
    type: str = "WatchTriggered"
    kind: str = ""
    path: str = ""
    target: str = ""


@dataclass(frozen=True)
class ReactionCompleted(DistpipeEvent):
    type: str = "ReactionCompleted"
    kind: str = ""
    path: str = ""
    target: str = ""
    duration_ms: float = 0.0


@dataclass(frozen=True)
class ReactionFailed(DistpipeEvent):
    type: str = "ReactionFailed"
    level: str = "ERROR"
    kind: str = ""
    path: str = ""
    target: str = ""
    message: str = ""


@dataclass(frozen=True)
class WatchError(DistpipeEvent):
    type: str = "WatchError"
    level: str = "ERROR"
    message: str = ""


@dataclass(frozen=True)
class WatchStopped(DistpipeEvent):
    type: str = "WatchStopped"
    reason: str = ""


def _serialize(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_serialize(item) for item in value]
    return value
