"""Locked, atomic JSON files for archive output and resumable checkpoints."""

from __future__ import annotations

import json
import os
import tempfile
import time
from contextlib import contextmanager
from typing import Any, Iterator

try:  # pragma: no cover - platform specific
    import msvcrt
except ImportError:  # pragma: no cover - platform specific
    msvcrt = None  # type: ignore[assignment]

try:  # pragma: no cover - platform specific
    import fcntl
except ImportError:  # pragma: no cover - platform specific
    fcntl = None  # type: ignore[assignment]

E_FILE_LOCKED = "E_FILE_LOCKED"

COMPACT_SEPARATORS = (",", ":")


class FileLockError(RuntimeError):
    """Raised when the lock on a state file (the checkpoint) is held by another run."""

    code = E_FILE_LOCKED


def _lock_handle(handle: Any) -> None:
    if os.name == "nt" and msvcrt is not None:  # pragma: no cover - windows-only runtime path
        handle.seek(0)
        try:
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError as exc:
            raise BlockingIOError(str(exc)) from exc
    elif fcntl is not None:  # pragma: no cover - unix-only runtime path
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            raise BlockingIOError(str(exc)) from exc


def _unlock_handle(handle: Any) -> None:
    if os.name == "nt" and msvcrt is not None:  # pragma: no cover - windows-only runtime path
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    elif fcntl is not None:  # pragma: no cover - unix-only runtime path
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


@contextmanager
def file_lock(target_path: str, *, timeout_seconds: float = 2.0, poll_seconds: float = 0.05) -> Iterator[None]:
    """Hold `<target>.lock` exclusively for the duration of the block."""

    lock_path = f"{target_path}.lock"
    os.makedirs(os.path.dirname(lock_path) or ".", exist_ok=True)
    deadline = time.monotonic() + max(0.05, float(timeout_seconds))
    poll = max(0.01, float(poll_seconds))

    with open(lock_path, "a+b") as handle:
        # msvcrt locks byte ranges, so the file needs at least one byte.
        handle.seek(0, os.SEEK_END)
        if handle.tell() == 0:
            handle.write(b"0")
            handle.flush()
        handle.seek(0)
        while True:
            try:
                _lock_handle(handle)
                break
            except BlockingIOError as exc:
                if time.monotonic() >= deadline:
                    raise FileLockError(f"{E_FILE_LOCKED}: lock timeout path={target_path}") from exc
                time.sleep(poll)
        try:
            yield
        finally:
            try:
                _unlock_handle(handle)
            except OSError:
                pass


def atomic_write_json(path: str, payload: Any, *, indent: int | None = None) -> None:
    """Serialize to a temp file in the target directory, then replace the target."""

    target_dir = os.path.dirname(path) or "."
    os.makedirs(target_dir, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=f"{os.path.basename(path)}.", suffix=".tmp", dir=target_dir, text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            if indent is None:
                json.dump(payload, f, ensure_ascii=False, separators=COMPACT_SEPARATORS)
            else:
                json.dump(payload, f, ensure_ascii=False, indent=indent)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise


def write_json_locked(path: str, payload: Any, *, indent: int | None = None, timeout_seconds: float = 2.0) -> None:
    with file_lock(path, timeout_seconds=timeout_seconds):
        atomic_write_json(path, payload, indent=indent)


def read_json_locked(path: str, *, timeout_seconds: float = 2.0) -> Any | None:
    """Return the parsed file, or None when it does not exist."""

    with file_lock(path, timeout_seconds=timeout_seconds):
        try:
            with open(path, "r", encoding="utf-8-sig") as f:
                return json.load(f)
        except FileNotFoundError:
            return None


def remove_locked(path: str, *, timeout_seconds: float = 2.0) -> bool:
    with file_lock(path, timeout_seconds=timeout_seconds):
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
    try:
        os.remove(f"{path}.lock")
    except OSError:
        pass
    return True
