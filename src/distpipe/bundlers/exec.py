from __future__ import annotations

import base64
import json
import os
import subprocess
from pathlib import Path
from typing import Any, Sequence

from distpipe.core.interfaces import BundleOutput


class ExecBundler:
    """Delegate bundling to an external command.

    The command receives the entry path as its last argument and the sorted
    externals as a JSON list in ``DISTPIPE_EXTERNALS``. It must print
    ``{"code": ..., "assets": {key: text}}``; assets may instead be given as
    ``{"base64": ...}`` objects for binary content.
    """

    def __init__(
        self,
        project_dir: Path,
        *,
        cmd: Sequence[str],
        timeout_s: float | None = None,
        **_: Any,
    ):
        if not isinstance(cmd, (list, tuple)) or not all(isinstance(item, str) for item in cmd):
            raise ValueError("exec bundler requires cmd as a list of strings")
        self.cmd = list(cmd)
        self.timeout = timeout_s
        self.project_dir = project_dir

    def bundle(self, entry_path: Path, *, filename: str, externals: set[str]) -> BundleOutput:
        env = {
            **os.environ,
            "DISTPIPE_EXTERNALS": json.dumps(sorted(externals)),
            "DISTPIPE_FILENAME": filename,
        }
        result = subprocess.run(
            [*self.cmd, str(entry_path)],
            cwd=self.project_dir,
            capture_output=True,
            text=True,
            check=False,
            timeout=self.timeout,
            env=env,
        )
        if result.returncode != 0:
            stderr = result.stderr.strip()
            raise RuntimeError(f"Command failed with exit code {result.returncode}: {stderr}")
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise RuntimeError("Command output is not valid JSON.") from exc
        if not isinstance(data, dict) or not isinstance(data.get("code"), str):
            raise RuntimeError("Command output must be an object with a code string.")
        return BundleOutput(code=data["code"], assets=_decode_assets(data.get("assets") or {}))


def _decode_assets(raw: Any) -> dict[str, bytes]:
    if not isinstance(raw, dict):
        raise RuntimeError("Command assets must be an object.")
    assets: dict[str, bytes] = {}
    for key, value in raw.items():
        if isinstance(value, str):
            assets[key] = value.encode("utf-8")
        elif isinstance(value, dict) and isinstance(value.get("base64"), str):
            assets[key] = base64.b64decode(value["base64"])
        else:
            raise RuntimeError(f"Unsupported asset payload for {key}.")
    return assets
