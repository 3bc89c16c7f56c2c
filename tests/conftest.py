from __future__ import annotations

import json
import sys
import threading
import time
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from distpipe.config.load import load_config  # noqa: E402
from distpipe.core.context import BuildContext, create_context  # noqa: E402
from distpipe.core.fsops import RetryPolicy  # noqa: E402
from distpipe.core.interfaces import BundleOutput, TransformOutput  # noqa: E402

SAMPLE_VERSION = "9.1.0"


class FakeTransformer:
    """Prefixes each file with its profile name; fails on configured file names."""

    def __init__(self, *, fail_on: set[str] | None = None, delay: float = 0.0):
        self.fail_on = fail_on or set()
        self.delay = delay
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def transform(self, source_text, profile, *, filename, source_file_name):
        with self._lock:
            self.calls.append(
                {
                    "filename": filename,
                    "profile": profile.name,
                    "source_file_name": source_file_name,
                    "started": time.perf_counter(),
                }
            )
        if self.delay:
            time.sleep(self.delay)
        if filename in self.fail_on:
            raise SyntaxError(f"Unexpected token in {filename}")
        return TransformOutput(
            code=f"/* {profile.name} */\n{source_text}",
            source_map={"version": 3, "sources": [source_file_name], "mappings": "AAAA"},
        )

    @property
    def filenames(self) -> list[str]:
        return sorted(call["filename"] for call in self.calls)


class FakeBundler:
    """Returns the entry text verbatim plus configured assets."""

    def __init__(
        self,
        *,
        assets: dict[str, bytes] | None = None,
        fail_on: set[str] | None = None,
        delay: float = 0.0,
    ):
        self.assets = assets or {}
        self.fail_on = fail_on or set()
        self.delay = delay
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def bundle(self, entry_path, *, filename, externals):
        call = {
            "entry": entry_path,
            "filename": filename,
            "externals": set(externals),
            "started": time.perf_counter(),
        }
        with self._lock:
            self.calls.append(call)
        if self.delay:
            time.sleep(self.delay)
        if entry_path.parent.name in self.fail_on or entry_path.stem in self.fail_on:
            raise RuntimeError(f"Module not found while bundling {entry_path.name}")
        call["finished"] = time.perf_counter()
        return BundleOutput(code=entry_path.read_text(encoding="utf-8"), assets=dict(self.assets))


class EventLog(list):
    def of(self, event_type: type) -> list:
        return [event for event in self if isinstance(event, event_type)]


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.fixture
def sample_project(tmp_path: Path) -> Path:
    project_dir = tmp_path / "project"
    project_dir.mkdir(parents=True)

    _write(project_dir / "package.json", json.dumps({"name": "next", "version": SAMPLE_VERSION}) + "\n")
    _write(
        project_dir / "distpipe.yaml",
        """
version: v1

bundles:
  - package: semver
  - package: left-pad
    entry: vendor/left-pad.js

copies:
  - package: unfetch
    dest: build/polyfills/unfetch.js
  - path: vendor/path-to-regexp.js
    dest: build/path-to-regexp.js

retry:
  attempts: 3
  backoff_ms: 0

max_workers: 4
""".strip()
        + "\n",
    )

    _write(project_dir / "lib" / "a.ts", "export const version = process.env.__NEXT_VERSION\n")
    _write(project_dir / "lib" / "util" / "b.js", "module.exports = 1\n")
    _write(project_dir / "lib" / "types.d.ts", "export type A = string\n")
    _write(project_dir / "lib" / "README.md", "# not a source\n")
    _write(project_dir / "cli" / "next-dev.ts", "__REPLACE_NOOP_IMPORT__\nconsole.log('dev')\n")
    _write(project_dir / "bin" / "next", "#!/usr/bin/env node\nrequire('../cli/next-dev')\n")
    _write(project_dir / "server" / "render.tsx", "export default () => null\n")
    _write(project_dir / "client" / "index.tsx", "export const client = true\n")
    _write(project_dir / "pages" / "_app.tsx", "export default function App() {}\n")
    _write(project_dir / "pages" / "_error.tsx", "export default function Error() {}\n")
    _write(project_dir / "pages" / "_document.tsx", "export default function Document() {}\n")

    _write(project_dir / "vendor" / "left-pad.js", "module.exports = function leftPad() {}\n")
    _write(project_dir / "vendor" / "path-to-regexp.js", "module.exports = function pathToRegexp() {}\n")

    modules = project_dir / "node_modules"
    _write(
        modules / "semver" / "package.json",
        json.dumps(
            {
                "name": "semver",
                "version": "7.0.0",
                "main": "semver.js",
                "author": "GitHub Inc.",
                "license": "ISC",
                "dependencies": {"lru-cache": "^6.0.0"},
            }
        ),
    )
    _write(modules / "semver" / "semver.js", "module.exports = { valid() {} }\n")
    _write(modules / "semver" / "LICENSE", "The ISC License\n")
    _write(modules / "unfetch" / "package.json", json.dumps({"name": "unfetch", "main": "dist/unfetch.js"}))
    _write(modules / "unfetch" / "dist" / "unfetch.js", "module.exports = function unfetch() {}\n")

    return project_dir


@pytest.fixture
def make_context(sample_project: Path):
    """Build a context over ``sample_project`` with fake collaborators."""

    def _make(
        *,
        transformer: FakeTransformer | None = None,
        bundler: FakeBundler | None = None,
        events: EventLog | None = None,
        **overrides: Any,
    ) -> BuildContext:
        config = load_config(sample_project)
        log = events if events is not None else EventLog()
        ctx = create_context(
            sample_project,
            config,
            emit=log.append,
            transformer=transformer or FakeTransformer(),
            bundler=bundler or FakeBundler(),
        )
        ctx.retry = RetryPolicy(attempts=3, backoff=0, sleep=lambda _: None)
        for key, value in overrides.items():
            setattr(ctx, key, value)
        return ctx

    return _make
