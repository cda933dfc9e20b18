"""Time-boxed execution lock over an atomic set-if-absent store.

At most one unexpired holder exists per key. A holder that crashes
without releasing is superseded once its TTL elapses.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol

from autowriter.errors import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_KEY = "generation_lock"
DEFAULT_UNREADABLE_TTL = 600.0


class KeyValueStore(Protocol):
    """Minimal store contract the lock needs."""

    def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        """Store *value* unless an unexpired entry exists. Return True if stored."""
        ...

    def get(self, key: str) -> str | None:
        """Return the unexpired value for *key*, or None."""
        ...

    def delete(self, key: str, value: str | None = None) -> bool:
        """Delete *key*; when *value* is given, only if it still matches."""
        ...

    def touch(self, key: str, value: str, ttl: float) -> bool:
        """Extend the expiry of *key* if it still holds *value*."""
        ...


class MemoryKVStore:
    """In-process store; entries expire lazily on access."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._mutex = threading.Lock()

    def _live(self, key: str) -> tuple[str, float] | None:
        entry = self._entries.get(key)
        if entry is not None and entry[1] <= self._clock():
            del self._entries[key]
            return None
        return entry

    def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        with self._mutex:
            if self._live(key) is not None:
                return False
            self._entries[key] = (value, self._clock() + ttl)
            return True

    def get(self, key: str) -> str | None:
        with self._mutex:
            entry = self._live(key)
            return entry[0] if entry else None

    def delete(self, key: str, value: str | None = None) -> bool:
        with self._mutex:
            entry = self._live(key)
            if entry is None or (value is not None and entry[0] != value):
                return False
            del self._entries[key]
            return True

    def touch(self, key: str, value: str, ttl: float) -> bool:
        with self._mutex:
            entry = self._live(key)
            if entry is None or entry[0] != value:
                return False
            self._entries[key] = (value, self._clock() + ttl)
            return True


class FileKVStore:
    """Store backed by one file per key, safe across processes.

    A lock file only ever appears complete: the payload is written to a
    private temp file and hard-linked into place, which fails if the key
    already exists. Refreshes replace the file atomically. An expired
    file is first renamed to a unique name; only the contender whose
    rename succeeds may retry the create, so two processes cannot both
    take over.

    A file that cannot be parsed is treated as held until it is older
    than ``unreadable_ttl`` seconds.
    """

    def __init__(
        self,
        directory: Path,
        clock: Callable[[], float] = time.time,
        *,
        unreadable_ttl: float = DEFAULT_UNREADABLE_TTL,
    ) -> None:
        self._dir = directory
        self._clock = clock
        self._unreadable_ttl = unreadable_ttl

    def _path(self, key: str) -> Path:
        return self._dir / f"{key}.lock"

    def _tmp(self, path: Path) -> Path:
        return path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")

    def _payload(self, value: str, ttl: float) -> str:
        return json.dumps({"value": value, "expires_at": self._clock() + ttl})

    def _read(self, path: Path) -> dict | None:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, UnicodeDecodeError):
            return self._unreadable(path)
        except OSError as exc:
            raise PersistenceError(f"Cannot read lock file {path}: {exc}") from exc

    def _unreadable(self, path: Path) -> dict | None:
        try:
            age = time.time() - path.stat().st_mtime
        except FileNotFoundError:
            return None
        logger.warning("Unreadable lock file %s (%.0fs old)", path, age)
        return {"value": "", "expires_at": self._clock() + self._unreadable_ttl - age}

    def _create(self, path: Path, value: str, ttl: float) -> bool:
        tmp = self._tmp(path)
        try:
            tmp.write_text(self._payload(value, ttl), encoding="utf-8")
            os.link(tmp, path)
        except FileExistsError:
            return False
        except OSError as exc:
            raise PersistenceError(f"Cannot create lock file {path}: {exc}") from exc
        finally:
            tmp.unlink(missing_ok=True)
        return True

    def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create lock directory {self._dir}: {exc}") from exc
        path = self._path(key)
        if self._create(path, value, ttl):
            return True

        current = self._read(path)
        if current is None:
            return self._create(path, value, ttl)
        if current.get("expires_at", 0) > self._clock():
            return False

        stale = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.stale")
        try:
            path.rename(stale)
        except FileNotFoundError:
            return False
        moved = self._read(stale)
        if moved is not None and moved.get("expires_at", 0) > self._clock():
            # Another contender replaced the stale file before our rename.
            try:
                os.link(stale, path)
            except FileExistsError:
                logger.debug("Lock %s re-created while restoring", key)
            stale.unlink(missing_ok=True)
            return False
        stale.unlink(missing_ok=True)
        logger.info("Took over expired lock %s", key)
        return self._create(path, value, ttl)

    def get(self, key: str) -> str | None:
        current = self._read(self._path(key))
        if current is None or current.get("expires_at", 0) <= self._clock():
            return None
        return current.get("value")

    def delete(self, key: str, value: str | None = None) -> bool:
        path = self._path(key)
        current = self._read(path)
        if current is None:
            return False
        if value is not None and current.get("value") != value:
            return False
        path.unlink(missing_ok=True)
        return True

    def touch(self, key: str, value: str, ttl: float) -> bool:
        path = self._path(key)
        current = self._read(path)
        if current is None or current.get("value") != value:
            return False
        if current.get("expires_at", 0) <= self._clock():
            return False
        tmp = self._tmp(path)
        try:
            tmp.write_text(self._payload(value, ttl), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise PersistenceError(f"Cannot refresh lock file {path}: {exc}") from exc
        return True


class ExecutionLock:
    """Mutual exclusion for pipeline advancement.

    Each instance carries its own holder token, so ``release`` never
    deletes a lock that has since been taken over by someone else.
    """

    def __init__(self, store: KeyValueStore, *, key: str = DEFAULT_LOCK_KEY, ttl: float = 180) -> None:
        self.store = store
        self.key = key
        self.ttl = ttl
        self._token: str | None = None

    @property
    def held(self) -> bool:
        return self._token is not None

    def try_acquire(self, ttl: float | None = None) -> bool:
        token = uuid.uuid4().hex
        if not self.store.set_if_absent(self.key, token, ttl or self.ttl):
            logger.debug("Lock %s is busy", self.key)
            return False
        self._token = token
        logger.debug("Acquired lock %s", self.key)
        return True

    def refresh(self, ttl: float | None = None) -> bool:
        """Push the expiry out again; used between stages of a long batch."""
        if self._token is None:
            return False
        return self.store.touch(self.key, self._token, ttl or self.ttl)

    def release(self) -> None:
        if self._token is None:
            return
        if not self.store.delete(self.key, self._token):
            logger.warning("Lock %s expired before release", self.key)
        self._token = None

    @contextmanager
    def hold(self, ttl: float | None = None) -> Iterator[bool]:
        """Try to take the lock for the duration of the block.

        Yields True when acquired. The lock is released on every exit
        path, including exceptions.
        """
        acquired = self.try_acquire(ttl)
        try:
            yield acquired
        finally:
            if acquired:
                self.release()


@contextmanager
def file_mutex(
    path: Path,
    *,
    ttl: float = 30,
    timeout: float = 10,
    poll: float = 0.01,
) -> Iterator[None]:
    """Serialize read-modify-write cycles on *path* across processes.

    The guard is a short-lived lock file next to *path*. A holder that
    dies inside the block is superseded after *ttl* seconds.

    Raises:
        PersistenceError: The guard could not be taken within *timeout*.
    """
    lock = ExecutionLock(FileKVStore(path.parent), key=f".{path.name}", ttl=ttl)
    deadline = time.monotonic() + timeout
    while not lock.try_acquire():
        if time.monotonic() >= deadline:
            raise PersistenceError(f"Timed out waiting to update {path}")
        time.sleep(poll)
    try:
        yield
    finally:
        lock.release()
