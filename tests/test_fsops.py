from __future__ import annotations

import errno
import logging
from pathlib import Path

import pytest

from distpipe.core import fsops
from distpipe.core.fsops import FilesystemError, RetryPolicy, copy_file, remove_tree, write_file


def _policy(sleeps: list[float] | None = None, attempts: int = 3) -> RetryPolicy:
    recorded = sleeps if sleeps is not None else []
    return RetryPolicy(attempts=attempts, backoff=0.5, sleep=recorded.append)


def test_remove_tree_missing_path_is_noop(tmp_path: Path) -> None:
    remove_tree(tmp_path / "missing", _policy())
    assert not (tmp_path / "missing").exists()


def test_remove_tree_removes_nested_directories(tmp_path: Path) -> None:
    target = tmp_path / "dist"
    (target / "lib" / "deep").mkdir(parents=True)
    (target / "lib" / "deep" / "a.js").write_text("x", encoding="utf-8")

    remove_tree(target, _policy())
    remove_tree(target, _policy())

    assert not target.exists()


def test_copy_file_creates_parent_directories(tmp_path: Path) -> None:
    src = tmp_path / "src.js"
    src.write_text("module.exports = 1\n", encoding="utf-8")
    dest = tmp_path / "dist" / "build" / "polyfills" / "src.js"

    assert copy_file(src, dest, _policy()) == dest
    assert dest.read_text(encoding="utf-8") == "module.exports = 1\n"


def test_write_file_accepts_text_and_bytes(tmp_path: Path) -> None:
    write_file(tmp_path / "a" / "text.js", "héllo", _policy())
    write_file(tmp_path / "a" / "raw.bin", b"\x00\x01", _policy())

    assert (tmp_path / "a" / "text.js").read_bytes() == "héllo".encode("utf-8")
    assert (tmp_path / "a" / "raw.bin").read_bytes() == b"\x00\x01"


def test_transient_error_is_retried_with_fixed_backoff(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    target = tmp_path / "compiled"
    target.mkdir()
    real_rmtree = fsops.shutil.rmtree
    calls: list[Path] = []

    def flaky_rmtree(path, *args, **kwargs):
        calls.append(Path(path))
        if len(calls) < 3:
            raise OSError(errno.EBUSY, "Device or resource busy", str(path))
        return real_rmtree(path, *args, **kwargs)

    monkeypatch.setattr(fsops.shutil, "rmtree", flaky_rmtree)
    sleeps: list[float] = []

    with caplog.at_level(logging.WARNING, logger="distpipe.core.fsops"):
        remove_tree(target, _policy(sleeps))

    assert len(calls) == 3
    assert sleeps == [0.5, 0.5]
    assert not target.exists()
    assert len([record for record in caplog.records if record.levelno == logging.WARNING]) == 2


def test_exhausted_retries_raise_filesystem_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    attempts: list[int] = []

    def always_busy(self, data):
        attempts.append(1)
        raise OSError(errno.ENOTEMPTY, "Directory not empty")

    monkeypatch.setattr(Path, "write_bytes", always_busy)

    with pytest.raises(FilesystemError) as excinfo:
        write_file(tmp_path / "out.js", "x", _policy())

    assert len(attempts) == 3
    assert excinfo.value.operation == "write"
    assert excinfo.value.path == tmp_path / "out.js"
    assert isinstance(excinfo.value.__cause__, OSError)


def test_non_transient_error_propagates_immediately(tmp_path: Path) -> None:
    sleeps: list[float] = []
    with pytest.raises(FileNotFoundError):
        copy_file(tmp_path / "missing.js", tmp_path / "out.js", _policy(sleeps))
    assert sleeps == []
