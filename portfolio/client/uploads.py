"""Per-file upload tracking for the studio upload widget.

Each selected file becomes a ``PendingUpload`` that moves from
``uploading`` to ``completed`` or ``error``. Files are sent one request
each so a failure only affects its own entry. Progress follows the bytes
httpx actually reads from the file and stops at 99 until the server has
stored the photo.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import io
import logging
import mimetypes
import os
import pathlib
import tempfile
import uuid
from collections.abc import Callable, Iterable

from PIL import Image, UnidentifiedImageError

from portfolio.app.cms import models

from .hooks import CMSRequestError, PhotosHook

logger = logging.getLogger(__name__)

ACCEPTED_TYPES = ('image/jpeg', 'image/png', 'image/webp')
PREVIEW_SIZE = (320, 320)


class UploadStatus(enum.StrEnum):
    UPLOADING = 'uploading'
    COMPLETED = 'completed'
    ERROR = 'error'


@dataclasses.dataclass
class SelectedFile:
    """A file chosen by the user: name, declared type and content."""

    name: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(
        cls, path: str | os.PathLike[str], content_type: str | None = None
    ) -> SelectedFile:
        path = pathlib.Path(path)
        guessed, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            content_type=content_type or guessed or 'application/octet-stream',
            content=path.read_bytes(),
        )


@dataclasses.dataclass
class PendingUpload:
    """State of one file in the upload list."""

    file: SelectedFile
    id: str = dataclasses.field(default_factory=lambda: str(uuid.uuid4()))
    preview: pathlib.Path | None = None
    progress: int = 0
    status: UploadStatus = UploadStatus.UPLOADING
    error: str | None = None
    photo: models.Photo | None = None


class _ProgressReader(io.BytesIO):
    """BytesIO that reports how much of it has been read."""

    def __init__(self, content: bytes, on_read: Callable[[int, int], None]) -> None:
        super().__init__(content)
        self._total = len(content)
        self._on_read = on_read

    def read(self, size: int | None = -1) -> bytes:
        chunk = super().read(size)
        if chunk:
            self._on_read(self.tell(), self._total)
        return chunk


ProgressCallback = Callable[[PendingUpload], None]
CompleteCallback = Callable[[list[PendingUpload]], None]


class UploadTracker:
    """Validates, previews and uploads selected files."""

    def __init__(
        self,
        photos: PhotosHook,
        max_files: int = 10,
        max_size_mb: int = 10,
        accepted_types: Iterable[str] = ACCEPTED_TYPES,
        on_progress: ProgressCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> None:
        self.photos = photos
        self.max_files = max_files
        self.max_size = max_size_mb * 1024 * 1024
        self.max_size_mb = max_size_mb
        self.accepted_types = tuple(accepted_types)
        self.on_progress = on_progress
        self.on_complete = on_complete
        self._uploads: dict[str, PendingUpload] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def uploads(self) -> list[PendingUpload]:
        """Entries in the order they were added."""
        return list(self._uploads.values())

    def get(self, upload_id: str) -> PendingUpload:
        return self._uploads[upload_id]

    def validate(self, file: SelectedFile) -> str | None:
        """Return why *file* cannot be uploaded, or None."""
        if file.content_type not in self.accepted_types:
            return f'Unsupported file type: {file.content_type}'
        if file.size > self.max_size:
            return f'File too large (max {self.max_size_mb}MB)'
        return None

    def add_files(self, files: Iterable[SelectedFile]) -> list[PendingUpload]:
        """Queue *files* and start uploading the valid ones.

        Files beyond ``max_files`` entries in total are ignored. Must be
        called from a running event loop.
        """
        added: list[PendingUpload] = []
        for file in files:
            if len(self._uploads) >= self.max_files:
                logger.info('Upload list full, ignoring %s', file.name)
                continue
            entry = PendingUpload(file=file, preview=_make_preview(file))
            self._uploads[entry.id] = entry
            added.append(entry)

            problem = self.validate(file)
            if problem is not None:
                self._fail(entry, problem)
                continue
            self._tasks[entry.id] = asyncio.create_task(self._upload(entry))
        return added

    async def _upload(self, entry: PendingUpload) -> None:
        def on_read(done: int, total: int) -> None:
            # 100 is reserved for the server confirming the photo was stored.
            percent = min(99, done * 100 // total) if total else 99
            if percent > entry.progress:
                entry.progress = percent
                self._notify(entry)

        reader = _ProgressReader(entry.file.content, on_read)
        try:
            outcome = await self.photos.upload(
                [(entry.file.name, reader, entry.file.content_type)]
            )
        except CMSRequestError as e:
            self._fail(entry, e.message)
            return
        except Exception:
            logger.exception('Unexpected error uploading %s', entry.file.name)
            self._fail(entry, 'Upload failed')
            return
        finally:
            self._tasks.pop(entry.id, None)

        if outcome.photos:
            entry.photo = outcome.photos[0]
            entry.progress = 100
            entry.status = UploadStatus.COMPLETED
            self._notify(entry)
        else:
            error = (
                outcome.rejected[0].get('error') if outcome.rejected else None
            ) or 'Upload failed'
            self._fail(entry, error)

    def _fail(self, entry: PendingUpload, message: str) -> None:
        logger.info('Upload of %s failed: %s', entry.file.name, message)
        entry.status = UploadStatus.ERROR
        entry.error = message
        self._notify(entry)

    def _notify(self, entry: PendingUpload) -> None:
        if self.on_progress is not None:
            self.on_progress(entry)

    def remove(self, upload_id: str) -> None:
        """Drop an entry in any state, cancelling its upload if running."""
        entry = self._uploads.pop(upload_id, None)
        if entry is None:
            return
        task = self._tasks.pop(upload_id, None)
        if task is not None:
            task.cancel()
        if entry.preview is not None:
            entry.preview.unlink(missing_ok=True)
            entry.preview = None

    def clear(self) -> None:
        for upload_id in list(self._uploads):
            self.remove(upload_id)

    async def wait(self) -> list[PendingUpload]:
        """Wait for running uploads and report the completed entries."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        completed = [u for u in self._uploads.values() if u.status == UploadStatus.COMPLETED]
        if completed and self.on_complete is not None:
            self.on_complete(completed)
        return completed


def _make_preview(file: SelectedFile) -> pathlib.Path | None:
    """Write a PNG thumbnail of *file* to a temp file, if it is an image."""
    try:
        with Image.open(io.BytesIO(file.content)) as img:
            img.thumbnail(PREVIEW_SIZE)
            if img.mode not in ('RGB', 'RGBA'):
                img = img.convert('RGBA')
            fd, name = tempfile.mkstemp(prefix='upload-preview-', suffix='.png')
            with os.fdopen(fd, 'wb') as out:
                img.save(out, format='PNG')
    except (UnidentifiedImageError, OSError) as e:
        logger.debug('No preview for %s: %s', file.name, e)
        return None
    return pathlib.Path(name)
