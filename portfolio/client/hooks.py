"""Client-side mirrors of the CMS collections.

Each hook wraps one collection endpoint: it keeps the last fetched records
in ``items`` together with ``loading`` and ``error`` state, and refetches
after every successful mutation. Failures are stored in ``error`` as a
display string; mutations also raise ``CMSRequestError``. Nothing retries.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from typing import IO, Any, Generic, TypeVar

import httpx
import pydantic

from portfolio.app.cms import models

logger = logging.getLogger(__name__)

CMS_PREFIX = '/api/cms'

RecordT = TypeVar('RecordT', bound=models.CMSModel)
# (filename, content, content type) as accepted by httpx multipart uploads.
UploadPart = tuple[str, IO[bytes] | bytes, str]


class CMSRequestError(Exception):
    """A CMS request failed; ``message`` is suitable for display."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _payload(response: httpx.Response) -> dict[str, Any]:
    """Decode a CMS response, raising CMSRequestError for failures."""
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    if response.is_error or payload.get('success') is False:
        detail = payload.get('error') or payload.get('detail')
        message = detail if isinstance(detail, str) else f'HTTP {response.status_code}'
        raise CMSRequestError(message, response.status_code)
    return payload


def _parse(model: type[RecordT], raw: Any, what: str) -> RecordT:
    """Validate one record from a response, raising CMSRequestError if malformed."""
    try:
        return model.model_validate(raw)
    except pydantic.ValidationError as e:
        logger.warning('Malformed %s in response: %s', what, e)
        raise CMSRequestError(f'Invalid {what} in server response') from e


class CollectionHook(Generic[RecordT]):
    """In-memory mirror of one collection."""

    path: str
    key: str
    model: type[RecordT]
    noun: str

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client
        self.items: list[RecordT] = []
        self.loading = False
        self.error: str | None = None

    async def refetch(self) -> list[RecordT]:
        """Reload the collection; on failure keep the old items and set error."""
        self.loading = True
        try:
            payload = _payload(await self.client.get(self.path))
            self.items = [
                _parse(self.model, raw, self.noun) for raw in payload.get(self.key, [])
            ]
            self.error = None
        except (httpx.HTTPError, CMSRequestError) as e:
            logger.warning('Loading %s failed: %s', self.key, e)
            self.error = f'Could not load {self.key}'
        finally:
            self.loading = False
        return self.items

    async def _mutate(
        self, method: str, failure: str, **kwargs: Any
    ) -> dict[str, Any]:
        """Send one mutation and refetch on success."""
        try:
            payload = _payload(await self.client.request(method, self.path, **kwargs))
        except CMSRequestError as e:
            self.error = e.message
            raise
        except httpx.HTTPError as e:
            self.error = failure
            raise CMSRequestError(failure) from e
        await self.refetch()
        return payload

    def _record(self, raw: Any) -> RecordT:
        try:
            return _parse(self.model, raw, self.noun)
        except CMSRequestError as e:
            self.error = e.message
            raise

    async def update(self, record_id: str, **fields: Any) -> RecordT:
        """Merge *fields* into the record with *record_id*."""
        payload = await self._mutate(
            'PUT', f'Could not update {self.noun}', json={'id': record_id, **fields}
        )
        return self._record(payload.get(self.noun))

    async def delete(self, record_id: str) -> None:
        """Delete the record with *record_id*."""
        await self._mutate(
            'DELETE', f'Could not delete {self.noun}', params={'id': record_id}
        )


@dataclasses.dataclass
class UploadOutcome:
    """Photos stored by an upload and files the server refused."""

    photos: list[models.Photo]
    rejected: list[dict[str, str]]


class PhotosHook(CollectionHook[models.Photo]):
    path = f'{CMS_PREFIX}/photos'
    key = 'photos'
    model = models.Photo
    noun = 'photo'

    async def upload(self, files: Sequence[UploadPart]) -> UploadOutcome:
        """Upload *files* as one multipart request."""
        payload = await self._mutate(
            'POST',
            'Upload failed',
            files=[('files', part) for part in files],
        )
        return UploadOutcome(
            photos=[self._record(raw) for raw in payload.get('files', [])],
            rejected=list(payload.get('rejected', [])),
        )


class GalleriesHook(CollectionHook[models.Gallery]):
    path = f'{CMS_PREFIX}/galleries'
    key = 'galleries'
    model = models.Gallery
    noun = 'gallery'

    async def create(self, **fields: Any) -> models.Gallery:
        """Create a gallery from *fields* (``title`` is required)."""
        payload = await self._mutate('POST', 'Could not create gallery', json=fields)
        return self._record(payload.get('gallery'))


class CategoriesHook(CollectionHook[models.Category]):
    path = f'{CMS_PREFIX}/categories'
    key = 'categories'
    model = models.Category
    noun = 'category'

    async def create(self, **fields: Any) -> models.Category:
        """Create a category from *fields* (``name`` is required)."""
        payload = await self._mutate('POST', 'Could not create category', json=fields)
        return self._record(payload.get('category'))


class SettingsHook:
    """Mirror of the singleton site settings."""

    path = f'{CMS_PREFIX}/settings'

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client
        self.settings: models.SiteSettings | None = None
        self.loading = False
        self.error: str | None = None

    async def refetch(self) -> models.SiteSettings | None:
        self.loading = True
        try:
            payload = _payload(await self.client.get(self.path))
            self.settings = _parse(models.SiteSettings, payload.get('settings'), 'settings')
            self.error = None
        except (httpx.HTTPError, CMSRequestError) as e:
            logger.warning('Loading settings failed: %s', e)
            self.error = 'Could not load settings'
        finally:
            self.loading = False
        return self.settings

    async def update(self, **fields: Any) -> models.SiteSettings:
        """Shallow-merge *fields* into the settings; the response replaces the mirror."""
        try:
            payload = _payload(
                await self.client.put(self.path, json={'settings': fields})
            )
            updated = _parse(models.SiteSettings, payload.get('settings'), 'settings')
        except CMSRequestError as e:
            self.error = e.message
            raise
        except httpx.HTTPError as e:
            self.error = 'Could not update settings'
            raise CMSRequestError(self.error) from e
        self.settings = updated
        return self.settings


class CMSClient:
    """All CMS hooks sharing one HTTP client."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client
        self.photos = PhotosHook(client)
        self.galleries = GalleriesHook(client)
        self.categories = CategoriesHook(client)
        self.settings = SettingsHook(client)

    async def load(self) -> None:
        """Fetch every collection, as the studio does when it opens."""
        await self.photos.refetch()
        await self.galleries.refetch()
        await self.categories.refetch()
        await self.settings.refetch()

    async def save_now(self, message: str | None = None) -> dict[str, Any]:
        """Ask the server to commit pending changes."""
        response = await self.client.post(
            f'{CMS_PREFIX}/save-changes', json={'message': message}
        )
        return _payload(response)

    async def save_status(self) -> dict[str, Any]:
        return _payload(await self.client.get(f'{CMS_PREFIX}/save-status'))
