from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from distpipe.config.load import resolve_build_version
from distpipe.config.model import Config
from distpipe.core import events as ev
from distpipe.core.fsops import DEFAULT_POLICY, RetryPolicy
from distpipe.core.interfaces import Bundler, Transformer
from distpipe.core.notify import EventNotifier, Notifier, NullNotifier
from distpipe.plugins.registry import load_bundler, load_transformer


@dataclass(frozen=True)
class BundleEntry:
    package: str
    entry: Path | None = None


@dataclass(frozen=True)
class CopySpec:
    destination: Path
    package: str | None = None
    source: Path | None = None

    @property
    def label(self) -> str:
        return self.package or str(self.source)


@dataclass
class BuildContext:
    """Everything a phase needs: resolved paths, collaborators and policies."""

    source_root: Path
    dist_dir: Path
    compiled_dir: Path
    version: str
    transformer: Transformer
    bundler: Bundler
    bundles: list[BundleEntry] = field(default_factory=list)
    copies: list[CopySpec] = field(default_factory=list)
    base_externals: dict[str, str] = field(default_factory=dict)
    compiled_import_prefix: str = "next/dist/compiled"
    externals_policy: str = "precomputed"
    manifest_roots: list[Path] = field(default_factory=list)
    retry: RetryPolicy = DEFAULT_POLICY
    max_workers: int | None = None
    notifier: Notifier = field(default_factory=NullNotifier)
    emit: ev.Emit = lambda event: None
    command: str = "build"

    def destination(self, destination_dir: str) -> Path:
        return self.dist_dir / destination_dir

    def relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.source_root.resolve()).as_posix()
        except ValueError:
            return path.as_posix()

    def replacement_for(self, package: str) -> str:
        return f"{self.compiled_import_prefix.rstrip('/')}/{package}"


def manifest_roots_for(source_root: Path, extra: Iterable[Path] = ()) -> list[Path]:
    source_root = source_root.resolve()
    workspace = source_root.parent.parent
    roots: list[Path] = []
    for root in [source_root, Path.cwd(), workspace, workspace / "node_modules", *extra]:
        root = Path(root).resolve()
        if root not in roots:
            roots.append(root)
    return roots


def create_context(
    project_dir: Path,
    config: Config,
    *,
    emit: ev.Emit | None = None,
    command: str = "build",
    transformer: Transformer | None = None,
    bundler: Bundler | None = None,
) -> BuildContext:
    """Resolve a loaded config into a ready-to-run ``BuildContext``.

    ``source_root`` is relative to the project directory; ``dist_dir`` and
    ``compiled_dir`` are relative to the source root.
    """
    project_dir = project_dir.resolve()
    source_root = _resolve(project_dir, config.source_root)
    emit = emit or (lambda event: None)
    if transformer is None:
        factory = load_transformer(config.transformer.type)
        transformer = factory(project_dir, **config.transformer.with_)
    if bundler is None:
        factory = load_bundler(config.bundler.type)
        bundler = factory(project_dir, **config.bundler.with_)
    return BuildContext(
        source_root=source_root,
        dist_dir=_resolve(source_root, config.dist_dir),
        compiled_dir=_resolve(source_root, config.compiled_dir),
        version=resolve_build_version(config, source_root),
        transformer=transformer,
        bundler=bundler,
        bundles=[
            BundleEntry(package=item.package, entry=Path(item.entry) if item.entry else None)
            for item in config.bundles
        ],
        copies=[
            CopySpec(
                destination=Path(item.dest),
                package=item.package,
                source=Path(item.path) if item.path else None,
            )
            for item in config.copies
        ],
        base_externals=dict(config.externals),
        compiled_import_prefix=config.compiled_import_prefix,
        externals_policy=config.externals_policy,
        manifest_roots=manifest_roots_for(
            source_root, [_resolve(project_dir, root) for root in config.manifest_roots]
        ),
        retry=RetryPolicy(attempts=config.retry.attempts, backoff=config.retry.backoff_ms / 1000),
        max_workers=config.max_workers,
        notifier=EventNotifier(emit, command=command) if config.notify else NullNotifier(),
        emit=emit,
        command=command,
    )


def _resolve(base: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else (base / path).resolve()
