from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath

SOURCE_EXTENSIONS = (".js", ".ts", ".tsx")
DECLARATION_SUFFIX = ".d.ts"

KNOWN_SOURCE_DIRS = (
    "bin",
    "cli",
    "lib",
    "server",
    "build",
    "export",
    "client",
    "pages",
    "telemetry",
    "next-server",
)

IGNORED_DIRS = ("node_modules", "dist", "compiled")


@dataclass(frozen=True)
class StageOptions:
    strip_extension: bool = False
    executable: bool = False
    extensions: tuple[str, ...] | None = SOURCE_EXTENSIONS


@dataclass(frozen=True)
class StageSpec:
    name: str
    source_glob: str
    destination_dir: str
    profile: str
    options: StageOptions = field(default_factory=StageOptions)

    def accepts(self, rel_path: str) -> bool:
        path = PurePosixPath(rel_path)
        if path.name.endswith(DECLARATION_SUFFIX):
            return False
        if self.options.extensions is None:
            return True
        return path.suffix in self.options.extensions


@dataclass(frozen=True)
class StageGroup:
    name: str
    stages: tuple[StageSpec, ...]

    @property
    def destinations(self) -> set[str]:
        return {stage.destination_dir for stage in self.stages}

    def stage_for(self, rel_path: str) -> StageSpec | None:
        """Pick the member stage that owns ``rel_path``.

        Single-file stages win over wildcard stages; a file matched by no
        single-file stage falls back to the first member whose extensions
        accept it.
        """
        for stage in self.stages:
            if "*" not in stage.source_glob and stage.source_glob == rel_path:
                return stage
        for stage in self.stages:
            if "*" in stage.source_glob and stage.accepts(rel_path):
                return stage
        return None


@dataclass(frozen=True)
class WatchRule:
    path_prefix: str
    group: str


def _stage(name: str, profile: str = "server", **options) -> StageSpec:
    return StageSpec(
        name=name,
        source_glob=f"{name}/**/*",
        destination_dir=name,
        profile=profile,
        options=StageOptions(**options),
    )


BIN = StageSpec(
    name="bin",
    source_glob="bin/*",
    destination_dir="bin",
    profile="server",
    options=StageOptions(strip_extension=True, executable=True, extensions=None),
)
CLI = _stage("cli")
LIB = _stage("lib")
SERVER = _stage("server")
BUILD = _stage("build")
EXPORT = _stage("export")
CLIENT = _stage("client", profile="client")
TELEMETRY = _stage("telemetry")
NEXT_SERVER = _stage("next-server")
PAGES_APP = StageSpec("pages-app", "pages/_app.tsx", "pages", "client")
PAGES_ERROR = StageSpec("pages-error", "pages/_error.tsx", "pages", "client")
PAGES_DOCUMENT = StageSpec("pages-document", "pages/_document.tsx", "pages", "server")

TRANSFORM_GROUPS: tuple[StageGroup, ...] = (
    StageGroup("cli", (CLI,)),
    StageGroup("bin", (BIN,)),
    StageGroup("server", (SERVER,)),
    StageGroup("build", (BUILD,)),
    StageGroup("export", (EXPORT,)),
    StageGroup("pages", (PAGES_APP, PAGES_ERROR, PAGES_DOCUMENT)),
    StageGroup("lib", (LIB,)),
    StageGroup("client", (CLIENT,)),
    StageGroup("telemetry", (TELEMETRY,)),
    StageGroup("next-server", (NEXT_SERVER,)),
)

GROUPS_BY_NAME = {group.name: group for group in TRANSFORM_GROUPS}

WATCH_RULES: tuple[WatchRule, ...] = tuple(
    WatchRule(path_prefix=f"{group.name}/", group=group.name) for group in TRANSFORM_GROUPS
)

BUILD_PHASES = [
    ("load_config", "Load config"),
    ("clean", "Clean output"),
    ("precompile", "Bundle dependencies"),
    ("compile", "Compile sources"),
]

BUNDLE_PHASES = [
    ("load_config", "Load config"),
    ("bundle", "Bundle dependencies"),
]


def match_watch_rule(rel_path: str, rules: tuple[WatchRule, ...] = WATCH_RULES) -> WatchRule | None:
    normalized = rel_path.replace("\\", "/")
    for rule in rules:
        if normalized.startswith(rule.path_prefix):
            return rule
    return None


def is_ignored(rel_path: str) -> bool:
    path = PurePosixPath(rel_path.replace("\\", "/"))
    if any(part in IGNORED_DIRS for part in path.parts):
        return True
    return path.name.endswith(DECLARATION_SUFFIX)


def check_disjoint_destinations(groups: tuple[StageGroup, ...] = TRANSFORM_GROUPS) -> None:
    owners: list[tuple[PurePosixPath, str]] = []
    for group in groups:
        for destination in sorted(group.destinations):
            owners.append((PurePosixPath(destination), group.name))
    for index, (path, owner) in enumerate(owners):
        for other_path, other_owner in owners[index + 1 :]:
            if owner == other_owner:
                continue
            if path == other_path or path in other_path.parents or other_path in path.parents:
                raise ValueError(
                    f"Stage groups {owner} and {other_owner} share destination {path} / {other_path}"
                )
