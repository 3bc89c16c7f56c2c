from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from distpipe.core.profiles import EnvironmentProfile


@dataclass(frozen=True)
class TransformOutput:
    code: str
    source_map: dict[str, Any] | None = None


@dataclass(frozen=True)
class BundleOutput:
    code: str
    assets: dict[str, bytes] = field(default_factory=dict)


class Transformer(Protocol):
    def transform(
        self,
        source_text: str,
        profile: EnvironmentProfile,
        *,
        filename: str,
        source_file_name: str,
    ) -> TransformOutput: ...


class Bundler(Protocol):
    def bundle(
        self,
        entry_path: Path,
        *,
        filename: str,
        externals: set[str],
    ) -> BundleOutput: ...
