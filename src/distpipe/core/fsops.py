from __future__ import annotations

import errno
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

TRANSIENT_ERRNOS = frozenset({errno.EBUSY, errno.EPERM, errno.ENOTEMPTY})

T = TypeVar("T")


class FilesystemError(RuntimeError):
    def __init__(self, operation: str, path: Path, attempts: int):
        super().__init__(f"{operation} failed for {path} after {attempts} attempts")
        self.operation = operation
        self.path = path
        self.attempts = attempts


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    backoff: float = 0.5
    sleep: Callable[[float], None] = time.sleep


DEFAULT_POLICY = RetryPolicy()


def is_transient(exc: OSError) -> bool:
    return exc.errno in TRANSIENT_ERRNOS


def remove_tree(path: Path, policy: RetryPolicy = DEFAULT_POLICY) -> None:
    path = Path(path)

    def _remove() -> None:
        if not path.exists() and not path.is_symlink():
            logger.debug("Nothing to remove at %s", path)
            return
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()

    _retrying("remove", path, _remove, policy)


def copy_file(src: Path, dest: Path, policy: RetryPolicy = DEFAULT_POLICY) -> Path:
    src = Path(src)
    dest = Path(dest)

    def _copy() -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, dest)
        shutil.copymode(src, dest)
        return dest

    return _retrying("copy", dest, _copy, policy)


def write_file(path: Path, data: str | bytes, policy: RetryPolicy = DEFAULT_POLICY) -> Path:
    path = Path(path)
    payload = data.encode("utf-8") if isinstance(data, str) else data

    def _write() -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        return path

    return _retrying("write", path, _write, policy)


def _retrying(operation: str, path: Path, func: Callable[[], T], policy: RetryPolicy) -> T:
    attempts = max(1, policy.attempts)
    last_error: OSError | None = None
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except OSError as exc:
            if not is_transient(exc):
                raise
            last_error = exc
            if attempt == attempts:
                break
            logger.warning(
                "%s %s failed (%s), retrying in %.0fms (attempt %d/%d)",
                operation,
                path,
                errno.errorcode.get(exc.errno or 0, exc.errno),
                policy.backoff * 1000,
                attempt,
                attempts,
            )
            policy.sleep(policy.backoff)
    logger.error("%s %s failed after %d attempts", operation, path, attempts)
    raise FilesystemError(operation, path, attempts) from last_error
