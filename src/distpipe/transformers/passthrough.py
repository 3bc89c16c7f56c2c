from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Any

from distpipe.core.interfaces import TransformOutput
from distpipe.core.profiles import EnvironmentProfile


class PassthroughTransformer:
    """Emit sources unchanged with a line-for-line source map.

    Useful for plain JavaScript trees and for exercising the pipeline without a
    real compiler.
    """

    def __init__(self, project_dir: Path | None = None, *, source_maps: bool = True, **_: Any):
        self.project_dir = project_dir
        self.source_maps = source_maps

    def transform(
        self,
        source_text: str,
        profile: EnvironmentProfile,
        *,
        filename: str,
        source_file_name: str,
    ) -> TransformOutput:
        if not self.source_maps:
            return TransformOutput(code=source_text)
        return TransformOutput(code=source_text, source_map=identity_map(source_text, filename, source_file_name))


def identity_map(source_text: str, filename: str, source_file_name: str) -> dict[str, Any]:
    lines = source_text.count("\n") + 1
    return {
        "version": 3,
        "file": PurePosixPath(filename).with_suffix(".js").name,
        "sources": [source_file_name],
        "sourcesContent": [source_text],
        "names": [],
        "mappings": ";".join(["AAAA"] + ["AACA"] * (lines - 1)),
    }
