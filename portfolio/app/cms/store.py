"""Flat-file JSON storage for the CMS collections.

Each collection lives in its own pretty-printed JSON document. Writers
hold a process-wide lock per file for the whole read-modify-write cycle
and replace the file atomically, so concurrent requests cannot lose each
other's updates and a crash mid-write leaves the previous version intact.
"""

import contextlib
import copy
import json
import logging
import os
import pathlib
import tempfile
import threading
from collections.abc import Callable, Iterator
from typing import Any

from .errors import PersistenceError

logger = logging.getLogger(__name__)

JsonDocument = list[Any] | dict[str, Any]

_locks: dict[pathlib.Path, threading.RLock] = {}
_locks_guard = threading.Lock()


def lock_for(path: pathlib.Path) -> threading.RLock:
    """Return the lock shared by every store backed by *path*."""
    key = path.resolve()
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.RLock()
        return lock


class JsonStore:
    """One collection document on disk."""

    def __init__(
        self,
        path: pathlib.Path | str,
        default: Callable[[], JsonDocument] | None = None,
        on_write: Callable[[pathlib.Path], None] | None = None,
    ) -> None:
        """Create a store for *path*.

        ``default`` builds the document returned (and persisted) when the
        file does not exist yet; without it a missing file reads as ``[]``
        and nothing is written. ``on_write`` is called after each save.
        """
        self.path = pathlib.Path(path)
        self.default = default
        self.on_write = on_write
        self.lock = lock_for(self.path)

    def load(self) -> JsonDocument:
        """Read the whole document, seeding it if absent."""
        with self.lock:
            if not self.path.exists():
                if self.default is None:
                    return []
                seeded = self.default()
                self.save(seeded)
                return copy.deepcopy(seeded)
            try:
                with self.path.open(encoding='utf-8') as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                raise PersistenceError(f'Could not read {self.path.name}: {e}') from e

    def save(self, data: JsonDocument) -> None:
        """Replace the document atomically."""
        with self.lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f'.{self.path.name}.', suffix='.tmp', dir=self.path.parent
                )
                try:
                    with os.fdopen(fd, 'w', encoding='utf-8') as f:
                        json.dump(data, f, indent=2, ensure_ascii=False)
                        f.write('\n')
                        f.flush()
                        os.fsync(f.fileno())
                    os.replace(tmp_name, self.path)
                except BaseException:
                    with contextlib.suppress(FileNotFoundError):
                        os.unlink(tmp_name)
                    raise
            except OSError as e:
                raise PersistenceError(f'Could not write {self.path.name}: {e}') from e
        logger.debug('Wrote %s', self.path)
        if self.on_write is not None:
            self.on_write(self.path)

    @contextlib.contextmanager
    def transaction(self) -> Iterator[Any]:
        """Yield the loaded document for in-place mutation, then save it.

        The file lock is held for the whole block. If the block raises, the
        document is not written.
        """
        with self.lock:
            data = self.load()
            yield data
            self.save(data)
