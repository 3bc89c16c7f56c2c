from __future__ import annotations

import json
import os
import subprocess
from pathlib import Path
from typing import Any, Sequence

from distpipe.core.interfaces import TransformOutput
from distpipe.core.profiles import EnvironmentProfile

OUTPUT_FORMATS = ("text", "json")


class ExecTransformer:
    """Delegate compilation to an external command.

    The source text is written to stdin; the profile is passed as JSON in
    ``DISTPIPE_PROFILE`` together with ``DISTPIPE_FILENAME`` and
    ``DISTPIPE_SOURCE_FILE_NAME``. With ``output: json`` the command prints
    ``{"code": ..., "map": ...}``; otherwise stdout is the compiled code.
    """

    def __init__(
        self,
        project_dir: Path,
        *,
        cmd: Sequence[str],
        output: str = "text",
        timeout_s: float | None = None,
        **_: Any,
    ):
        if not isinstance(cmd, (list, tuple)) or not all(isinstance(item, str) for item in cmd):
            raise ValueError("exec transformer requires cmd as a list of strings")
        if output not in OUTPUT_FORMATS:
            raise ValueError(f"exec transformer output must be one of {', '.join(OUTPUT_FORMATS)}")
        self.cmd = list(cmd)
        self.output = output
        self.timeout = timeout_s
        self.project_dir = project_dir

    def transform(
        self,
        source_text: str,
        profile: EnvironmentProfile,
        *,
        filename: str,
        source_file_name: str,
    ) -> TransformOutput:
        env = {
            **os.environ,
            "DISTPIPE_PROFILE": json.dumps(profile.to_dict()),
            "DISTPIPE_FILENAME": filename,
            "DISTPIPE_SOURCE_FILE_NAME": source_file_name,
        }
        result = subprocess.run(
            self.cmd,
            cwd=self.project_dir,
            input=source_text,
            capture_output=True,
            text=True,
            check=False,
            timeout=self.timeout,
            env=env,
        )
        if result.returncode != 0:
            stderr = result.stderr.strip()
            raise RuntimeError(f"Command failed with exit code {result.returncode}: {stderr}")
        if self.output == "text":
            return TransformOutput(code=result.stdout)
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise RuntimeError("Command output is not valid JSON.") from exc
        if not isinstance(data, dict) or not isinstance(data.get("code"), str):
            raise RuntimeError("Command output must be an object with a code string.")
        return TransformOutput(code=data["code"], source_map=data.get("map"))
