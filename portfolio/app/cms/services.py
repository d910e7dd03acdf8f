"""Business logic for the CMS collections.

Every collection follows the same contract: list, create, update and
delete, each loading the JSON document, applying one mutation and writing
the whole document back inside a store transaction.
"""

from __future__ import annotations

import dataclasses
import datetime
import io
import logging
import mimetypes
import pathlib
import secrets
import time
from collections.abc import Callable, Iterable
from typing import Any, BinaryIO, Generic, TypeVar

import exifread
import fastapi
import pillow_heif  # pyright: ignore[reportMissingTypeStubs]
import pydantic
import pydantic.alias_generators
from geopy import exc as geopy_exc  # pyright: ignore[reportMissingTypeStubs]
from geopy import geocoders  # pyright: ignore[reportMissingTypeStubs]
from PIL import Image, UnidentifiedImageError

from .. import settings
from . import models
from .errors import NotFoundError, PersistenceError, ValidationError
from .store import JsonStore

logger = logging.getLogger(__name__)

# Register HEIF opener for PIL
pillow_heif.register_heif_opener()  # type: ignore

PHOTOS_FILE = 'photos.json'
GALLERIES_FILE = 'galleries.json'
CATEGORIES_FILE = 'categories.json'
SETTINGS_FILE = 'settings.json'

HEIF_EXTENSIONS = ('heic', 'heif')

OnWrite = Callable[[pathlib.Path], None]
RecordT = TypeVar('RecordT', bound=models.CMSModel)


def _wire_key(key: str) -> str:
    """Normalize a field name to the camelCase key used on disk."""
    return pydantic.alias_generators.to_camel(key) if '_' in key else key


def _merge(
    current: dict[str, Any], fields: dict[str, Any], protected: Iterable[str]
) -> dict[str, Any]:
    """Shallow-merge *fields* over *current*, ignoring protected keys."""
    blocked = set(protected)
    updates = {_wire_key(k): v for k, v in fields.items()}
    return {**current, **{k: v for k, v in updates.items() if k not in blocked}}


def _stamp_after(earlier: datetime.datetime | None) -> datetime.datetime:
    """Return now, nudged forward so it is strictly later than *earlier*."""
    now = models.utcnow()
    if earlier is not None and now <= earlier:
        now = earlier + datetime.timedelta(microseconds=1)
    return now


def _validate(model: type[RecordT], data: dict[str, Any]) -> RecordT:
    """Validate *data* as *model*, reporting problems as a ValidationError."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        problems = '; '.join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f'Invalid {model.__name__.lower()}: {problems}') from e


def _required_text(fields: dict[str, Any], key: str, label: str) -> str:
    value = fields.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{label} is required')
    return value.strip()


class CollectionService(Generic[RecordT]):
    """Shared list/get/update/delete behaviour for one collection file."""

    model: type[RecordT]
    filename: str
    label: str
    protected_fields: tuple[str, ...] = ('id',)

    def __init__(
        self,
        data_dir: pathlib.Path | None = None,
        on_write: OnWrite | None = None,
    ) -> None:
        self.data_dir = data_dir if data_dir is not None else settings.data_dir()
        self.store = JsonStore(
            self.data_dir / self.filename, default=self.seed(), on_write=on_write
        )

    def seed(self) -> Callable[[], list[Any]] | None:
        """Factory for the initial document, or None to start empty."""
        return None

    def _records(self) -> list[RecordT]:
        return [self.model.model_validate(raw) for raw in self.store.load()]

    def list(self) -> list[RecordT]:
        """Return every record in stored order."""
        return self._records()

    def get(self, record_id: str) -> RecordT:
        """Return one record or raise NotFoundError."""
        for record in self._records():
            if record.id == record_id:  # type: ignore[attr-defined]
                return record
        raise NotFoundError(f'{self.label} not found')

    def _prepare_update(
        self, current: RecordT, merged: dict[str, Any], fields: dict[str, Any]
    ) -> dict[str, Any]:
        """Hook for subclasses to derive fields before validation."""
        return merged

    def update(self, record_id: str, fields: dict[str, Any]) -> RecordT:
        """Merge *fields* over the stored record and stamp updatedAt."""
        if not record_id:
            raise ValidationError(f'{self.label} id is required')
        with self.store.transaction() as data:
            index = next(
                (i for i, raw in enumerate(data) if raw.get('id') == record_id), None
            )
            if index is None:
                raise NotFoundError(f'{self.label} not found')
            current = self.model.model_validate(data[index])
            merged = _merge(data[index], fields, self.protected_fields)
            merged = self._prepare_update(current, merged, fields)
            created = getattr(current, 'created_at', None) or getattr(
                current, 'uploaded_at', None
            )
            merged['updatedAt'] = _stamp_after(created).isoformat()
            record = _validate(self.model, merged)
            data[index] = record.to_json()
        logger.info('Updated %s %s', self.label.lower(), record_id)
        return record

    def delete(self, record_id: str) -> RecordT:
        """Remove the record with *record_id* and return it."""
        if not record_id:
            raise ValidationError(f'{self.label} id is required')
        with self.store.transaction() as data:
            index = next(
                (i for i, raw in enumerate(data) if raw.get('id') == record_id), None
            )
            if index is None:
                raise NotFoundError(f'{self.label} not found')
            removed = self.model.model_validate(data.pop(index))
        logger.info('Deleted %s %s', self.label.lower(), record_id)
        return removed


# ---------------------------------------------------------------------------
# Photos
# ---------------------------------------------------------------------------


@dataclasses.dataclass
class RejectedFile:
    """An uploaded file that failed validation and was not stored."""

    filename: str
    error: str

    def to_json(self) -> dict[str, str]:
        return {'filename': self.filename, 'error': self.error}


@dataclasses.dataclass
class UploadResult:
    files: list[models.Photo]
    rejected: list[RejectedFile]


class PhotoService(CollectionService[models.Photo]):
    """Service for photo uploads and their editorial metadata."""

    model = models.Photo
    filename = PHOTOS_FILE
    label = 'Photo'
    protected_fields = (
        'id',
        'path',
        'url',
        'filename',
        'size',
        'type',
        'uploadedAt',
        'metadata',
    )

    def __init__(
        self,
        data_dir: pathlib.Path | None = None,
        upload_dir: pathlib.Path | None = None,
        on_write: OnWrite | None = None,
    ) -> None:
        """Initialize the service with data and upload directories."""
        super().__init__(data_dir, on_write)
        self.upload_dir = upload_dir if upload_dir is not None else settings.upload_dir()

    def list(
        self,
        published_only: bool = False,
        category: str | None = None,
        featured: bool | None = None,
        limit: int | None = None,
    ) -> list[models.Photo]:
        """Return photos, optionally filtered for the public portfolio."""
        photos = self._records()
        if published_only:
            photos = [p for p in photos if p.is_public]
        if category:
            wanted = models.slugify(category)
            photos = [p for p in photos if models.slugify(p.category) == wanted]
        if featured is not None:
            photos = [p for p in photos if p.featured == featured]
        if limit is not None:
            photos = photos[: max(limit, 0)]
        return photos

    def validate_upload(self, content_type: str | None, size: int) -> str | None:
        """Return why a file cannot be stored, or None if it is acceptable."""
        if not content_type or not content_type.startswith('image/'):
            return f'Unsupported file type: {content_type or "unknown"}'
        limit = settings.max_upload_bytes()
        if size > limit:
            return f'File too large (max {limit // settings.MEBIBYTE}MB)'
        return None

    def extract_metadata(self, file: BinaryIO) -> dict[str, Any]:
        """Extract capture date, gear, exposure and GPS from EXIF tags."""
        metadata: dict[str, Any] = {}
        try:
            tags = exifread.process_file(file, details=False)
        except Exception as e:  # exifread raises a variety of errors on odd files
            logger.debug('EXIF extraction failed: %s', e)
            return metadata

        if 'EXIF DateTimeOriginal' in tags:
            date_str = str(tags['EXIF DateTimeOriginal'])
            try:
                metadata['date_taken'] = datetime.datetime.strptime(
                    date_str, '%Y:%m:%d %H:%M:%S'
                ).isoformat()
            except ValueError:
                logger.debug('Unparseable EXIF date %r', date_str)

        make = str(tags.get('Image Make', '')).strip()
        model = str(tags.get('Image Model', '')).strip()
        if model:
            metadata['camera'] = model if model.startswith(make) else f'{make} {model}'.strip()
        if 'EXIF LensModel' in tags:
            metadata['lens'] = str(tags['EXIF LensModel']).strip()

        exposure: dict[str, str] = {}
        if 'EXIF FNumber' in tags:
            exposure['aperture'] = f"f/{self._ratio(tags['EXIF FNumber']):g}"
        if 'EXIF ExposureTime' in tags:
            exposure['shutter'] = str(tags['EXIF ExposureTime'])
        if 'EXIF ISOSpeedRatings' in tags:
            exposure['iso'] = str(tags['EXIF ISOSpeedRatings'])
        if 'EXIF FocalLength' in tags:
            exposure['focal_length'] = f"{self._ratio(tags['EXIF FocalLength']):g}mm"
        if exposure:
            metadata['settings'] = exposure

        gps_latitude = tags.get('GPS GPSLatitude')
        gps_latitude_ref = tags.get('GPS GPSLatitudeRef')
        gps_longitude = tags.get('GPS GPSLongitude')
        gps_longitude_ref = tags.get('GPS GPSLongitudeRef')
        if all([gps_latitude, gps_latitude_ref, gps_longitude, gps_longitude_ref]):
            lat = self._convert_to_degrees(gps_latitude)
            if str(gps_latitude_ref) == 'S':
                lat = -lat
            lon = self._convert_to_degrees(gps_longitude)
            if str(gps_longitude_ref) == 'W':
                lon = -lon
            metadata['latitude'] = lat
            metadata['longitude'] = lon

        return metadata

    def _ratio(self, value: Any) -> float:
        ratio = value.values[0]
        if not hasattr(ratio, 'num'):
            return float(ratio)
        return float(ratio.num) / float(ratio.den) if ratio.den else 0.0

    def _convert_to_degrees(self, value: Any) -> float:
        """Convert GPS coordinates from DMS to decimal degrees."""
        degrees = float(value.values[0].num) / float(value.values[0].den)
        minutes = float(value.values[1].num) / float(value.values[1].den)
        seconds = float(value.values[2].num) / float(value.values[2].den)

        return degrees + (minutes / 60.0) + (seconds / 3600.0)

    def reverse_geocode(self, latitude: float, longitude: float) -> str | None:
        """Return a human-readable place for GPS coordinates, if enabled."""
        if not settings.geocode_uploads():
            return None
        geolocator = geocoders.Nominatim(user_agent='portfolio_cms_uploads')
        try:
            result = geolocator.reverse((latitude, longitude), exactly_one=True)  # type: ignore
        except geopy_exc.GeopyError as e:
            logger.warning('Reverse geocoding failed: %s', e)
            return None
        return str(result.address) if result else None  # type: ignore

    def _dimensions(self, content: bytes) -> models.Dimensions | None:
        try:
            with Image.open(io.BytesIO(content)) as img:
                width, height = img.size
        except (UnidentifiedImageError, OSError):
            return None
        return models.Dimensions(width=width, height=height)

    def _convert_heif(self, content: bytes) -> bytes:
        """Re-encode a HEIC/HEIF image as JPEG."""
        img = Image.open(io.BytesIO(content))
        # JPEG has no alpha channel or palette modes
        if img.mode != 'RGB':
            img = img.convert('RGB')
        output = io.BytesIO()
        img.save(output, format='JPEG', quality=95)
        return output.getvalue()

    async def upload(self, files: list[fastapi.UploadFile]) -> UploadResult:
        """Store every acceptable file and append its photo record.

        Invalid or unreadable files are skipped and reported; the request
        only fails when nothing in the batch could be stored. On any failure
        the files already written for this batch are removed.
        """
        if not files:
            raise ValidationError('No files received')

        accepted: list[models.Photo] = []
        rejected: list[RejectedFile] = []
        written: list[pathlib.Path] = []
        self.upload_dir.mkdir(parents=True, exist_ok=True)

        try:
            for file in files:
                original_name = file.filename or 'upload'
                mime_type = file.content_type
                problem = self.validate_upload(mime_type, file.size or 0)
                if problem is None:
                    content = await file.read()
                    problem = self.validate_upload(mime_type, len(content))
                if problem is None:
                    try:
                        photo, path = self._store_file(
                            original_name, mime_type or 'image/jpeg', content
                        )
                    except ValidationError as e:
                        problem = e.message
                if problem is not None:
                    logger.info('Rejected upload %s: %s', original_name, problem)
                    rejected.append(RejectedFile(filename=original_name, error=problem))
                    continue
                written.append(path)
                accepted.append(photo)

            if not accepted:
                raise ValidationError(
                    rejected[0].error if len(rejected) == 1 else 'No valid image in upload'
                )

            with self.store.transaction() as data:
                for photo in accepted:
                    photo.order = len(data)
                    data.append(photo.to_json())
        except BaseException:
            for path in written:
                path.unlink(missing_ok=True)
            raise

        logger.info('Uploaded %d photo(s), rejected %d', len(accepted), len(rejected))
        return UploadResult(files=accepted, rejected=rejected)

    def _store_file(
        self, original_name: str, mime_type: str, content: bytes
    ) -> tuple[models.Photo, pathlib.Path]:
        """Write one validated upload to disk and build its record."""
        extension = pathlib.Path(original_name).suffix.lower().lstrip('.')
        if not extension:
            guessed = mimetypes.guess_extension(mime_type) or '.img'
            extension = guessed.lstrip('.')

        metadata = self.extract_metadata(io.BytesIO(content))
        if extension in HEIF_EXTENSIONS:
            try:
                content = self._convert_heif(content)
            except (UnidentifiedImageError, OSError, ValueError) as e:
                raise ValidationError(f'Unreadable HEIF image: {e}') from e
            extension = 'jpg'
            mime_type = 'image/jpeg'

        stem = f'{int(time.time() * 1000)}-{secrets.token_hex(4)}'
        stored_name = f'{stem}.{extension}'
        file_path = self.upload_dir / stored_name
        try:
            file_path.write_bytes(content)
        except OSError as e:
            file_path.unlink(missing_ok=True)
            raise PersistenceError(f'Could not store {original_name}: {e}') from e

        location = None
        if 'latitude' in metadata:
            location = self.reverse_geocode(metadata['latitude'], metadata['longitude'])

        uploaded_at = models.utcnow()
        photo = models.Photo(
            id=stem,
            filename=original_name,
            path=str(file_path),
            size=len(content),
            type=mime_type,
            url=f'/uploads/photos/{stored_name}',
            title=pathlib.Path(original_name).stem,
            uploaded_at=uploaded_at,
            date_taken=metadata.get('date_taken'),
            camera=metadata.get('camera'),
            lens=metadata.get('lens'),
            settings=models.ExposureSettings(**metadata.get('settings', {})),
            location=location,
            metadata=models.TechnicalMetadata(
                size=len(content),
                dimensions=self._dimensions(content),
                uploaded_at=uploaded_at,
            ),
        )
        return photo, file_path

    def delete(self, record_id: str) -> models.Photo:
        """Remove the photo record, then try to remove its stored file."""
        photo = super().delete(record_id)
        try:
            pathlib.Path(photo.path).unlink()
        except OSError as e:
            logger.warning('Could not remove file for photo %s: %s', record_id, e)
        return photo


# ---------------------------------------------------------------------------
# Galleries
# ---------------------------------------------------------------------------


class GalleryService(CollectionService[models.Gallery]):
    """Service for named, ordered photo collections."""

    model = models.Gallery
    filename = GALLERIES_FILE
    label = 'Gallery'
    protected_fields = ('id', 'createdAt')

    def list(
        self,
        published_only: bool = False,
        known_photo_ids: set[str] | None = None,
    ) -> list[models.Gallery]:
        """Return galleries sorted by order.

        When ``known_photo_ids`` is given, references to photos outside it
        are dropped from the returned copies (the stored file is untouched).
        """
        galleries = sorted(self._records(), key=lambda g: g.order)
        if published_only:
            galleries = [g for g in galleries if g.published]
        if known_photo_ids is not None:
            for gallery in galleries:
                gallery.photos = [p for p in gallery.photos if p in known_photo_ids]
                if gallery.cover_photo not in known_photo_ids:
                    gallery.cover_photo = gallery.photos[0] if gallery.photos else None
        return galleries

    def create(self, fields: dict[str, Any]) -> models.Gallery:
        """Create a gallery; title is required."""
        title = _required_text(fields, 'title', 'Title')
        with self.store.transaction() as data:
            now = models.utcnow()
            raw = {_wire_key(k): v for k, v in fields.items()}
            photos = raw.get('photos') or []
            record = _validate(
                models.Gallery,
                {
                    'description': raw.get('description') or '',
                    'category': raw.get('category') or models.DEFAULT_GALLERY_CATEGORY,
                    'photos': photos,
                    'coverPhoto': raw.get('coverPhoto')
                    or (photos[0] if isinstance(photos, list) and photos else None),
                    'featured': raw.get('featured', False),
                    'published': raw.get('published', True),
                    'id': models.new_record_id(g.get('id', '') for g in data),
                    'title': title,
                    'slug': models.slugify(title),
                    'order': len(data),
                    'createdAt': now,
                    'updatedAt': now,
                },
            )
            data.append(record.to_json())
        logger.info('Created gallery %s (%s)', record.id, record.slug)
        return record

    def _prepare_update(
        self, current: models.Gallery, merged: dict[str, Any], fields: dict[str, Any]
    ) -> dict[str, Any]:
        if 'slug' not in fields and merged.get('title') != current.title:
            merged['slug'] = models.slugify(str(merged.get('title', '')))
        return merged


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class CategoryService(CollectionService[models.Category]):
    """Service for the photo taxonomy."""

    model = models.Category
    filename = CATEGORIES_FILE
    label = 'Category'
    protected_fields = ('id', 'createdAt', 'photoCount')

    def __init__(
        self,
        data_dir: pathlib.Path | None = None,
        on_write: OnWrite | None = None,
    ) -> None:
        super().__init__(data_dir, on_write)
        self.photos = JsonStore(self.data_dir / PHOTOS_FILE)

    def seed(self) -> Callable[[], list[Any]]:
        return lambda: [c.to_json() for c in models.default_categories()]

    def list(self) -> list[models.Category]:
        """Return categories with photoCount computed from the photo collection."""
        categories = sorted(self._records(), key=lambda c: c.order)
        labels = [
            str(raw.get('category') or models.UNCATEGORIZED) for raw in self.photos.load()
        ]
        for category in categories:
            category.photo_count = sum(1 for label in labels if category.matches(label))
        return categories

    def create(self, fields: dict[str, Any]) -> models.Category:
        """Create a category; name is required."""
        name = _required_text(fields, 'name', 'Category name')
        with self.store.transaction() as data:
            record = _validate(
                models.Category,
                {
                    'id': models.new_record_id(c.get('id', '') for c in data),
                    'name': name,
                    'description': fields.get('description') or '',
                    'slug': models.slugify(name),
                    'color': fields.get('color') or models.DEFAULT_CATEGORY_COLOR,
                    'icon': fields.get('icon') or models.DEFAULT_CATEGORY_ICON,
                    'order': len(data),
                },
            )
            data.append(record.to_json())
        logger.info('Created category %s (%s)', record.id, record.slug)
        return record

    def _prepare_update(
        self, current: models.Category, merged: dict[str, Any], fields: dict[str, Any]
    ) -> dict[str, Any]:
        if 'slug' not in fields and merged.get('name') != current.name:
            merged['slug'] = models.slugify(str(merged.get('name', '')))
        return merged


# ---------------------------------------------------------------------------
# Site settings
# ---------------------------------------------------------------------------


class SettingsService:
    """Service for the singleton site settings document."""

    def __init__(
        self,
        data_dir: pathlib.Path | None = None,
        on_write: OnWrite | None = None,
    ) -> None:
        data_dir = data_dir if data_dir is not None else settings.data_dir()
        self.store = JsonStore(
            data_dir / SETTINGS_FILE,
            default=lambda: models.SiteSettings().to_json(),
            on_write=on_write,
        )

    def get(self) -> models.SiteSettings:
        """Return the settings, writing the defaults on first access."""
        return _validate(models.SiteSettings, self.store.load())  # type: ignore[arg-type]

    def update(self, updates: dict[str, Any]) -> models.SiteSettings:
        """Shallow-merge *updates* (or ``updates['settings']``) into the document."""
        nested = updates.get('settings')
        if isinstance(nested, dict):
            updates = nested  # type: ignore[assignment]
        with self.store.transaction() as data:
            merged = _merge(data, updates, ('id',))
            merged['updatedAt'] = models.utcnow().isoformat()
            record = _validate(models.SiteSettings, merged)
            data.clear()
            data.update(record.to_json())
        logger.info('Updated site settings')
        return record
