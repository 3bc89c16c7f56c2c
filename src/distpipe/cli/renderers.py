from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from rich import box
from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from distpipe import __version__
from distpipe.core import events as ev
from distpipe.core.stages import BUILD_PHASES

RULE_WIDTH = 64
RULE_LINE = "-" * RULE_WIDTH
STATUS_GLYPHS = {
    "pending": "⏸",
    "running": "⠋",
    "success": "✅",
    "failed": "❌",
    "skipped": "⏭",
    "warning": "⚠️",
}


def run_events(events: Iterable[ev.DistpipeEvent], renderer: "Renderer") -> int:
    exit_code = 0
    try:
        for event in events:
            renderer.handle(event)
            if isinstance(event, ev.CommandCompleted):
                exit_code = event.exit_code
    finally:
        renderer.close()
    return exit_code


class Renderer:
    def handle(self, event: ev.DistpipeEvent) -> None:  # noqa: D401
        """Handle a single event."""

    def close(self) -> None:
        return None


@dataclass
class StageState:
    stage_id: str
    label: str
    status: str = "running"
    elapsed_ms: float | None = None
    files: int = 0


class BuildRichRenderer(Renderer):
    """Live phase and stage tables for interactive terminals."""

    def __init__(self, console: Console, phases: list[tuple[str, str]] = BUILD_PHASES):
        self.console = console
        self.phases = phases
        self.phase_status = {name: "pending" for name, _ in phases}
        self.phase_elapsed: dict[str, float] = {}
        self.stages: dict[str, StageState] = {}
        self.bundles = 0
        self.warnings: list[str] = []
        self._live: Live | None = None
        self._summary: ev.BuildSummary | None = None
        self._phase_failure: ev.PhaseFailed | None = None
        self._stage_failure: ev.StageFailed | None = None

    def handle(self, event: ev.DistpipeEvent) -> None:
        if isinstance(event, ev.CommandStarted):
            _print_header(self.console, event)
            self.phases = _active_phases(self.phases, event.options)
            self.phase_status = {name: "pending" for name, _ in self.phases}
            self._live = Live(self._render(), console=self.console, refresh_per_second=10)
            self._live.__enter__()
            return
        if isinstance(event, ev.PhaseStarted):
            self.phase_status[event.phase_id] = "running"
            self._refresh()
            return
        if isinstance(event, ev.PhaseCompleted):
            self.phase_status[event.phase_id] = event.status
            self.phase_elapsed[event.phase_id] = event.duration_ms
            self._refresh()
            return
        if isinstance(event, ev.PhaseFailed):
            self.phase_status[event.phase_id] = "failed"
            self.phase_elapsed[event.phase_id] = event.duration_ms
            self._phase_failure = event
            self._refresh()
            return
        if isinstance(event, ev.StageStarted):
            self.stages[event.stage_id] = StageState(stage_id=event.stage_id, label=event.label)
            self._refresh()
            return
        if isinstance(event, ev.StageCompleted):
            state = self.stages.setdefault(event.stage_id, StageState(event.stage_id, event.stage_id))
            state.status = event.status
            state.elapsed_ms = event.duration_ms
            state.files = event.files
            self._refresh()
            return
        if isinstance(event, ev.StageFailed):
            state = self.stages.setdefault(event.stage_id, StageState(event.stage_id, event.stage_id))
            state.status = "failed"
            state.elapsed_ms = event.duration_ms
            self._stage_failure = event
            self._refresh()
            return
        if isinstance(event, ev.BundleWritten):
            self.bundles += 1
            self._refresh()
            return
        if isinstance(event, ev.Warning):
            self.warnings.append(event.message)
            return
        if isinstance(event, ev.BuildSummary):
            self._summary = event
            return
        if isinstance(event, ev.CommandCompleted):
            self._finish(event)

    def close(self) -> None:
        if self._live:
            self._live.__exit__(None, None, None)
            self._live = None

    def _finish(self, event: ev.CommandCompleted) -> None:
        self.close()
        for warning in self.warnings:
            self.console.print(f"[yellow]{STATUS_GLYPHS['warning']} {escape(warning)}[/yellow]")
        if not event.ok:
            if self._stage_failure:
                self.console.print(_stage_failure_panel(self._stage_failure))
            elif self._phase_failure:
                self.console.print(_phase_failure_panel(self._phase_failure))
            return
        if self._summary:
            self.console.print(f"[green]{STATUS_GLYPHS['success']} {event.command.capitalize()} complete[/green]")
            self.console.print(_summary_panel(self._summary))

    def _refresh(self) -> None:
        if self._live:
            self._live.update(self._render())

    def _render(self) -> Group:
        total = len(self.phases)
        phase_table = Table(show_header=True, box=box.MINIMAL, show_lines=False)
        phase_table.add_column("#", justify="right", style="dim")
        phase_table.add_column("Phase")
        phase_table.add_column("Status")
        phase_table.add_column("Time", justify="right")
        for index, (phase_id, label) in enumerate(self.phases, start=1):
            status = self.phase_status.get(phase_id, "pending")
            if phase_id in ("precompile", "bundle") and status == "running" and self.bundles:
                status_text = f"{STATUS_GLYPHS['running']} running ({self.bundles} bundled)"
            else:
                status_text = f"{STATUS_GLYPHS.get(status, '?')} {status}"
            elapsed = self.phase_elapsed.get(phase_id)
            duration = _format_duration(elapsed) if elapsed is not None else ""
            phase_table.add_row(f"{index}/{total}", label, status_text, duration)
        renderables: list[Any] = [Panel(phase_table, title="Phases", box=box.ROUNDED, title_align="left")]
        if self.stages:
            renderables.append(Panel(_stages_table(self.stages.values()), title="Stages", box=box.ROUNDED, title_align="left"))
        return Group(*renderables)


class BuildPlainRenderer(Renderer):
    def __init__(self, console: Console, phases: list[tuple[str, str]] = BUILD_PHASES):
        self.console = console
        self.phases = phases
        self._summary: ev.BuildSummary | None = None
        self._failure: str | None = None

    def handle(self, event: ev.DistpipeEvent) -> None:
        if isinstance(event, ev.CommandStarted):
            _print_header(self.console, event)
            self.phases = _active_phases(self.phases, event.options)
            return
        if isinstance(event, ev.PhaseStarted):
            line = _format_phase_start_line(
                _phase_index(event.phase_id, self.phases),
                _phase_label(event.phase_id, self.phases),
                len(self.phases),
                f"({len(event.jobs)} jobs)" if event.jobs else None,
            )
            self.console.print(line, markup=False)
            return
        if isinstance(event, ev.PhaseCompleted):
            self.console.print(
                _format_phase_line(
                    _phase_index(event.phase_id, self.phases),
                    _phase_label(event.phase_id, self.phases),
                    event.status,
                    event.duration_ms,
                    len(self.phases),
                ),
                markup=False,
            )
            return
        if isinstance(event, ev.PhaseFailed):
            line = _format_phase_line(
                _phase_index(event.phase_id, self.phases),
                _phase_label(event.phase_id, self.phases),
                "failed",
                event.duration_ms,
                len(self.phases),
            )
            details = [f"FAIL: {event.message}"] if event.message else []
            if event.cancelled:
                details.append(f"CANCELLED: {', '.join(event.cancelled)}")
            self.console.print("\n".join([line, *details]), markup=False)
            self._failure = event.message
            return
        if isinstance(event, ev.StageCompleted):
            duration = _format_duration(event.duration_ms)
            self.console.print(
                f"STAGE {_status_word(event.status)} {event.stage_id} files={event.files} {duration}",
                markup=False,
            )
            return
        if isinstance(event, ev.StageFailed):
            location = f" ({event.path})" if event.path else ""
            self.console.print(f"STAGE FAIL {event.stage_id}{location}: {event.message}", markup=False)
            self._failure = event.message
            return
        if isinstance(event, ev.BundleWritten):
            self.console.print(f"BUNDLE OK {event.package} -> {event.target_dir}", markup=False)
            return
        if isinstance(event, ev.Warning):
            self.console.print(f"WARN [{event.code}] {event.message}", markup=False)
            return
        if isinstance(event, ev.BuildSummary):
            self._summary = event
            return
        if isinstance(event, ev.CommandCompleted):
            self._finish(event)

    def _finish(self, event: ev.CommandCompleted) -> None:
        if not event.ok:
            if self._failure:
                self.console.print(f"Error: {self._failure}", markup=False)
            return
        if self._summary:
            summary = self._summary
            self.console.print(
                f"{event.command.upper()} OK {summary.dist_dir} version={summary.version} "
                f"bundles={summary.bundles} stages={summary.stages} files={summary.files}",
                markup=False,
            )


class BuildJsonRenderer(Renderer):
    def __init__(self, console: Console):
        self.console = console
        self._phases: dict[str, str] = {}
        self._stages: dict[str, dict[str, Any]] = {}
        self._warnings: list[dict[str, str]] = []
        self._errors: list[dict[str, Any]] = []
        self._summary: dict[str, Any] | None = None

    def handle(self, event: ev.DistpipeEvent) -> None:
        if isinstance(event, ev.PhaseCompleted):
            self._phases[event.phase_id] = event.status
            return
        if isinstance(event, ev.PhaseFailed):
            self._phases[event.phase_id] = "failed"
            self._errors.append(
                {
                    "phase": event.phase_id,
                    "code": event.error_code,
                    "message": event.message,
                    "cancelled": event.cancelled,
                }
            )
            return
        if isinstance(event, ev.StageCompleted):
            self._stages[event.stage_id] = {"status": event.status, "files": event.files}
            return
        if isinstance(event, ev.StageFailed):
            self._stages[event.stage_id] = {"status": "failed", "files": 0}
            return
        if isinstance(event, ev.Warning):
            self._warnings.append({"code": event.code, "message": event.message})
            return
        if isinstance(event, ev.BuildSummary):
            data = event.to_dict()
            self._summary = {key: data[key] for key in ("dist_dir", "version", "bundles", "stages", "files")}
            return
        if isinstance(event, ev.CommandCompleted):
            payload = {
                "ok": event.ok,
                "exit_code": event.exit_code,
                "phases": self._phases,
                "stages": self._stages,
                "warnings": self._warnings,
                "errors": self._errors,
                "summary": self._summary,
            }
            self.console.print_json(json.dumps(payload, sort_keys=True))


class WatchRenderer(BuildPlainRenderer):
    """Plain build lines followed by one line per watch reaction."""

    def handle(self, event: ev.DistpipeEvent) -> None:
        if isinstance(event, ev.WatchStarted):
            self.console.print(f"[cyan]Watching {escape(str(event.root))}[/cyan] ({len(event.prefixes)} prefixes, Ctrl+C to stop)")
            return
        if isinstance(event, ev.WatchTriggered):
            self.console.print(f"{event.kind.upper()} {event.path} -> {event.target}", markup=False)
            return
        if isinstance(event, ev.ReactionCompleted):
            self.console.print(f"[green]REBUILT[/green] {escape(event.target)} {_format_duration(event.duration_ms)}")
            return
        if isinstance(event, ev.ReactionFailed):
            self.console.print(f"[red]REBUILD FAIL[/red] {escape(event.target)}: {escape(event.message)}")
            return
        if isinstance(event, ev.Notification):
            if event.error:
                body = escape(f"{event.message}\n{event.error}")
                self.console.print(Panel(body, title=event.title, box=box.ROUNDED, title_align="left"))
            return
        if isinstance(event, ev.WatchError):
            self.console.print(f"[red]WATCH ERROR[/red] {escape(event.message)}")
            return
        if isinstance(event, ev.WatchStopped):
            self.console.print(f"Watch stopped ({event.reason})", markup=False)
            return
        super().handle(event)


class ListPluginsRichRenderer(Renderer):
    def __init__(self, console: Console):
        self.console = console

    def handle(self, event: ev.DistpipeEvent) -> None:
        if isinstance(event, ev.CommandStarted):
            _print_header(self.console, event)
            return
        if isinstance(event, ev.PluginsDiscovered):
            table = Table(title=f"{event.kind}", box=box.ROUNDED, title_justify="left")
            table.add_column("TYPE", style="bold")
            table.add_column("IMPL")
            table.add_column("ORIGIN", style="dim")
            for plugin in event.plugins:
                table.add_row(escape(plugin["type_key"]), escape(plugin["impl"]), plugin.get("origin", ""))
            self.console.print(table)


class ListPluginsPlainRenderer(Renderer):
    def __init__(self, console: Console):
        self.console = console

    def handle(self, event: ev.DistpipeEvent) -> None:
        if isinstance(event, ev.CommandStarted):
            _print_header(self.console, event)
            return
        if isinstance(event, ev.PluginsDiscovered):
            self.console.print(f"{event.kind}:")
            for plugin in event.plugins:
                self.console.print(f"- {plugin['type_key']}: {plugin['impl']}", markup=False)


class ListPluginsJsonRenderer(Renderer):
    def __init__(self, console: Console):
        self.console = console
        self._plugins: dict[str, list[dict[str, str]]] = {}

    def handle(self, event: ev.DistpipeEvent) -> None:
        if isinstance(event, ev.PluginsDiscovered):
            self._plugins[event.kind] = event.plugins
        if isinstance(event, ev.CommandCompleted):
            self.console.print_json(json.dumps({"ok": event.ok, "plugins": self._plugins}, sort_keys=True))


def _format_duration(elapsed_ms: float) -> str:
    if elapsed_ms < 1000:
        return f"{elapsed_ms:.0f}ms"
    seconds = elapsed_ms / 1000
    if seconds < 10:
        return f"{seconds:.2f}s"
    return f"{seconds:.1f}s"


def _print_header(console: Console, event: ev.CommandStarted) -> None:
    if event.project_dir is None:
        console.print(f"distpipe v{__version__}\n{RULE_LINE}", markup=False)
        return
    config = event.config_path or Path("distpipe.yaml")
    console.print(
        f"distpipe v{__version__} | project: {event.project_dir} | config: {config}\n{RULE_LINE}",
        markup=False,
    )


def _format_phase_line(index: int, label: str, status: str, elapsed_ms: float | None, total: int) -> str:
    glyph = STATUS_GLYPHS.get(status, "?")
    duration = f"  {_format_duration(elapsed_ms)}" if elapsed_ms is not None else ""
    padding = "." * max(2, 28 - len(label))
    return f"[{index}/{total}] {label} {padding} {glyph} {_status_word(status)}{duration}"


def _format_phase_start_line(index: int, label: str, total: int, note: str | None = None) -> str:
    padding = "." * max(2, 28 - len(label))
    suffix = " START"
    if note:
        suffix = f"{suffix} {note}"
    return f"[{index}/{total}] {label} {padding}{suffix}"


def _active_phases(phases: list[tuple[str, str]], options: dict[str, Any] | None) -> list[tuple[str, str]]:
    # clean only runs for release builds
    if (options or {}).get("release"):
        return phases
    return [(key, label) for key, label in phases if key != "clean"]


def _phase_label(phase_id: str, mapping: list[tuple[str, str]]) -> str:
    for key, label in mapping:
        if key == phase_id:
            return label
    return phase_id


def _phase_index(phase_id: str, mapping: list[tuple[str, str]]) -> int:
    for index, (key, _label) in enumerate(mapping, start=1):
        if key == phase_id:
            return index
    return 0


def _status_word(status: str) -> str:
    return {
        "success": "OK",
        "failed": "FAIL",
        "skipped": "SKIP",
    }.get(status, status.upper())


def _stages_table(states: Iterable[StageState]) -> Table:
    table = Table(show_header=True, box=box.MINIMAL)
    table.add_column("STAGE", style="bold")
    table.add_column("PATHS")
    table.add_column("STATUS")
    table.add_column("FILES", justify="right")
    table.add_column("TIME", justify="right")
    for state in states:
        glyph = STATUS_GLYPHS.get(state.status, "?")
        duration = _format_duration(state.elapsed_ms) if state.elapsed_ms is not None else ""
        files = str(state.files) if state.status == "success" else ""
        table.add_row(escape(state.stage_id), escape(state.label), f"{glyph} {state.status}", files, duration)
    return table


def _summary_panel(summary: ev.BuildSummary) -> Panel:
    body = "\n".join(
        [
            f"Path:     {escape(str(summary.dist_dir))}",
            f"Version:  {escape(summary.version)}",
            f"Bundles:  {summary.bundles}",
            f"Stages:   {summary.stages}",
            f"Files:    {summary.files}",
        ]
    )
    return Panel(body, title="Build output", box=box.ROUNDED, title_align="left")


def _phase_failure_panel(event: ev.PhaseFailed) -> Panel:
    lines = [f"phase: {event.phase_id}", f"error: {escape(event.message)}"]
    if event.cancelled:
        lines.append(f"cancelled: {', '.join(event.cancelled)}")
    return Panel("\n".join(lines), title="Build failed", box=box.ROUNDED, title_align="left")


def _stage_failure_panel(event: ev.StageFailed) -> Panel:
    lines = [f"stage: {event.stage_id}", f"error: {escape(event.message)}"]
    if event.path:
        lines.append(f"path: {escape(str(event.path))}")
    return Panel("\n".join(lines), title="Build failed", box=box.ROUNDED, title_align="left")
