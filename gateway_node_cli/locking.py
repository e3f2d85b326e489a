"""
Single-flight serialization of update runs per stack.

Two update runs against the same stack would interleave teardown and
bring-up, so each run holds a lock keyed by the stack identity (node path
plus compose project). A process-local lock covers threads of one process
and an flock'd file covers separate CLI invocations. Contention is reported
immediately instead of queueing a second update behind the first.
"""

import hashlib
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

try:
    import fcntl
except ImportError:  # pragma: no cover - platform fallback
    fcntl = None

from .errors import UpdateInProgressError

log = logging.getLogger(__name__)

DEFAULT_LOCK_DIR = Path.home() / ".gateway-node" / "locks"

_LOCK_GUARD = threading.Lock()
_LOCAL_LOCKS: dict[str, threading.Lock] = {}


def stack_key(node_path: str, project_name: str) -> str:
    path = Path(node_path).expanduser()
    try:
        path = path.resolve()
    except OSError:
        pass
    return f"{path}::{project_name}"


def _local_lock(key: str) -> threading.Lock:
    with _LOCK_GUARD:
        lock = _LOCAL_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _LOCAL_LOCKS[key] = lock
        return lock


def _lock_path(key: str, lock_dir: Path) -> Path:
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]
    return lock_dir / f"{digest}.lock"


@contextmanager
def update_lock(key: str, lock_dir: Optional[Path] = None) -> Iterator[None]:
    """Holds the update lock for ``key``; raises UpdateInProgressError if it is taken."""
    lock_dir = lock_dir or DEFAULT_LOCK_DIR
    local_lock = _local_lock(key)
    if not local_lock.acquire(blocking=False):
        raise UpdateInProgressError(f"An update is already running for {key}")

    handle = None
    try:
        if fcntl is not None:
            lock_dir.mkdir(parents=True, exist_ok=True)
            handle = _lock_path(key, lock_dir).open("a+", encoding="utf-8")
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as e:
                raise UpdateInProgressError(f"An update is already running for {key} in another process") from e
            log.debug(f"Acquired update lock for {key}")
        yield
    finally:
        if handle is not None:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            except OSError as e:
                log.debug(f"Failed to release update lock file: {e}")
            handle.close()
        local_lock.release()
