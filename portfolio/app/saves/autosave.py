"""Periodic saving of CMS changes to version control.

Every write to a collection file marks the saver dirty. A background loop
commits dirty state on a fixed period; a manual save performs the same
check immediately. Only one save runs at a time: a request arriving while
a save is in flight is dropped, the next tick retries if still dirty.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import pathlib
from typing import Any, Protocol

from .. import settings
from ..cms import models
from ..cms.errors import PersistenceError
from ..cms.store import JsonStore
from .git_sink import Commit, GitSink

logger = logging.getLogger(__name__)

UNSAVED_WARNING = 'You have unsaved changes. Are you sure you want to leave?'


class VersionControlSink(Protocol):
    """What the saver needs from a version-control backend."""

    def commit(self, message: str) -> str: ...

    def history(self, limit: int = 20) -> list[Commit]: ...


class ChangeLog:
    """Append-only record of saves kept next to the collections."""

    def __init__(self, data_dir: pathlib.Path | None = None) -> None:
        data_dir = data_dir if data_dir is not None else settings.data_dir()
        self.store = JsonStore(
            data_dir / 'cms' / 'change-log.json', default=lambda: {'changes': []}
        )

    def append(self, data: Any, timestamp: datetime.datetime) -> None:
        """Record one save with the client-described *data*."""
        entry = {
            'type': 'content',
            'action': 'update',
            'data': data,
            'timestamp': timestamp.isoformat(),
        }
        try:
            with self.store.transaction() as log:
                log.setdefault('changes', []).append(entry)
        except PersistenceError as e:
            logger.warning('Change log unreadable, starting a new one: %s', e)
            self.store.save({'changes': [entry]})


class AutoSaver:
    """Tracks unsaved changes and commits them through a sink."""

    def __init__(
        self,
        sink: VersionControlSink | None = None,
        interval: float | None = None,
        change_log: ChangeLog | None = None,
    ) -> None:
        self._sink = sink
        self._change_log = change_log
        self.interval = interval
        self.has_changes = False
        self.is_saving = False
        self.last_saved: datetime.datetime | None = None
        self.last_commit: str | None = None

    @property
    def sink(self) -> VersionControlSink:
        """The configured sink, or one built from the current settings."""
        return self._sink if self._sink is not None else GitSink.from_settings()

    @property
    def change_log(self) -> ChangeLog:
        return self._change_log if self._change_log is not None else ChangeLog()

    def mark_dirty(self, path: pathlib.Path | None = None) -> None:
        """Record that collection files changed since the last save."""
        if not self.has_changes:
            logger.debug('Unsaved changes pending (%s)', path)
        self.has_changes = True

    def unsaved_warning(self) -> str | None:
        """Message to confirm before leaving with unsaved changes, else None."""
        return UNSAVED_WARNING if self.has_changes else None

    def status(self) -> dict[str, Any]:
        return {
            'hasChanges': self.has_changes,
            'isSaving': self.is_saving,
            'lastSaved': self.last_saved.isoformat() if self.last_saved else None,
            'lastCommit': self.last_commit,
            'warning': self.unsaved_warning(),
        }

    async def save(self, message: str | None = None, changes: Any = None) -> str | None:
        """Commit pending changes, returning the commit hash.

        Returns None without doing anything when there is nothing to save or
        another save is in flight. Raises PersistenceError if the commit
        fails, leaving the changes marked unsaved.
        """
        if not self.has_changes or self.is_saving:
            return None
        self.is_saving = True
        now = models.utcnow()
        message = message or f'CMS Update: {now.isoformat()}'
        # Writes landing during the commit must stay dirty for the next save.
        self.has_changes = False
        try:
            self.change_log.append(changes, now)
            commit_hash = await asyncio.to_thread(self.sink.commit, message)
        except PersistenceError:
            self.has_changes = True
            raise
        finally:
            self.is_saving = False
        self.last_saved = models.utcnow()
        self.last_commit = commit_hash
        return commit_hash

    async def tick(self) -> None:
        """One timer step: save if dirty, logging failures."""
        if not self.has_changes or self.is_saving:
            return
        try:
            await self.save(f'Auto-save: {models.utcnow().isoformat()}')
        except PersistenceError as e:
            logger.error('Auto-save failed: %s', e.message)

    async def run(self) -> None:
        """Tick forever on the configured period."""
        interval = self.interval or settings.autosave_interval_seconds()
        logger.info('Auto-save every %.0fs', interval)
        while True:
            await asyncio.sleep(interval)
            await self.tick()

    async def flush(self) -> None:
        """Save outstanding changes before shutdown."""
        if self.has_changes:
            logger.info('Saving outstanding changes before shutdown')
            await self.tick()


autosaver = AutoSaver()
