from pathlib import Path
from typing import Any

from distpipe.core.interfaces import BundleOutput


class CopyBundler:
    """Ship the entry module as-is, without following its imports."""

    def __init__(self, project_dir: Path | None = None, **_: Any):
        self.project_dir = project_dir

    def bundle(self, entry_path: Path, *, filename: str, externals: set[str]) -> BundleOutput:
        return BundleOutput(code=entry_path.read_text(encoding="utf-8"))
