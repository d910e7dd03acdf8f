"""API routes for the CMS studio and the public portfolio."""

import pathlib
import typing

import fastapi

from ..saves import autosave
from . import services
from .errors import ValidationError
from .stats import StatsService

# Create routers
admin_router = fastapi.APIRouter(prefix='/cms')
public_router = fastapi.APIRouter()

JsonBody = typing.Annotated[dict[str, typing.Any], fastapi.Body()]


def _mark_dirty(path: pathlib.Path) -> None:
    # Looked up at call time so the saver can be swapped out in tests.
    autosave.autosaver.mark_dirty(path)


def _pop_id(body: dict[str, typing.Any]) -> str:
    record_id = body.pop('id', None)
    if not record_id:
        raise ValidationError('An id is required')
    return str(record_id)


# Dependencies
def get_photo_service() -> services.PhotoService:
    """Get photo service instance."""
    return services.PhotoService(on_write=_mark_dirty)


def get_gallery_service() -> services.GalleryService:
    """Get gallery service instance."""
    return services.GalleryService(on_write=_mark_dirty)


def get_category_service() -> services.CategoryService:
    """Get category service instance."""
    return services.CategoryService(on_write=_mark_dirty)


def get_settings_service() -> services.SettingsService:
    """Get settings service instance."""
    return services.SettingsService(on_write=_mark_dirty)


def get_stats_service() -> StatsService:
    return StatsService(on_write=_mark_dirty)


PhotoServiceDep = typing.Annotated[
    services.PhotoService, fastapi.Depends(get_photo_service)
]
GalleryServiceDep = typing.Annotated[
    services.GalleryService, fastapi.Depends(get_gallery_service)
]
CategoryServiceDep = typing.Annotated[
    services.CategoryService, fastapi.Depends(get_category_service)
]
SettingsServiceDep = typing.Annotated[
    services.SettingsService, fastapi.Depends(get_settings_service)
]


# ---------------------------------------------------------------------------
# Admin: photos
# ---------------------------------------------------------------------------


@admin_router.get('/photos')
async def list_photos(photo_service: PhotoServiceDep) -> dict[str, typing.Any]:
    """List every photo, including unpublished and private ones."""
    return {'photos': [p.to_json() for p in photo_service.list()]}


@admin_router.post('/photos')
async def upload_photos(
    photo_service: PhotoServiceDep,
    files: typing.Annotated[list[fastapi.UploadFile] | None, fastapi.File()] = None,
) -> dict[str, typing.Any]:
    """Upload one or more images sent as ``files`` parts."""
    result = await photo_service.upload(files or [])
    return {
        'success': True,
        'files': [p.to_json() for p in result.files],
        'rejected': [r.to_json() for r in result.rejected],
    }


@admin_router.put('/photos')
async def update_photo(
    body: JsonBody, photo_service: PhotoServiceDep
) -> dict[str, typing.Any]:
    """Merge editorial fields into a photo."""
    photo = photo_service.update(_pop_id(body), body)
    return {'success': True, 'photo': photo.to_json()}


@admin_router.delete('/photos')
async def delete_photo(
    photo_service: PhotoServiceDep,
    record_id: str = fastapi.Query('', alias='id'),
) -> dict[str, typing.Any]:
    """Delete a photo and its stored file."""
    photo_service.delete(record_id)
    return {'success': True, 'message': 'Photo deleted'}


# ---------------------------------------------------------------------------
# Admin: galleries
# ---------------------------------------------------------------------------


@admin_router.get('/galleries')
async def list_galleries(gallery_service: GalleryServiceDep) -> dict[str, typing.Any]:
    """List every gallery in display order."""
    return {'galleries': [g.to_json() for g in gallery_service.list()]}


@admin_router.post('/galleries')
async def create_gallery(
    body: JsonBody, gallery_service: GalleryServiceDep
) -> dict[str, typing.Any]:
    """Create a gallery."""
    gallery = gallery_service.create(body)
    return {'success': True, 'gallery': gallery.to_json()}


@admin_router.put('/galleries')
async def update_gallery(
    body: JsonBody, gallery_service: GalleryServiceDep
) -> dict[str, typing.Any]:
    """Merge fields into a gallery."""
    gallery = gallery_service.update(_pop_id(body), body)
    return {'success': True, 'gallery': gallery.to_json()}


@admin_router.delete('/galleries')
async def delete_gallery(
    gallery_service: GalleryServiceDep,
    record_id: str = fastapi.Query('', alias='id'),
) -> dict[str, typing.Any]:
    """Delete a gallery; its photos are left untouched."""
    gallery_service.delete(record_id)
    return {'success': True, 'message': 'Gallery deleted'}


# ---------------------------------------------------------------------------
# Admin: categories
# ---------------------------------------------------------------------------


@admin_router.get('/categories')
async def list_categories(
    category_service: CategoryServiceDep,
) -> dict[str, typing.Any]:
    """List categories with live photo counts."""
    return {'categories': [c.to_json() for c in category_service.list()]}


@admin_router.post('/categories')
async def create_category(
    body: JsonBody, category_service: CategoryServiceDep
) -> dict[str, typing.Any]:
    """Create a category."""
    category = category_service.create(body)
    return {'success': True, 'category': category.to_json()}


@admin_router.put('/categories')
async def update_category(
    body: JsonBody, category_service: CategoryServiceDep
) -> dict[str, typing.Any]:
    """Merge fields into a category."""
    category = category_service.update(_pop_id(body), body)
    return {'success': True, 'category': category.to_json()}


@admin_router.delete('/categories')
async def delete_category(
    category_service: CategoryServiceDep,
    record_id: str = fastapi.Query('', alias='id'),
) -> dict[str, typing.Any]:
    """Delete a category; photos keep their label."""
    category_service.delete(record_id)
    return {'success': True, 'message': 'Category deleted'}


# ---------------------------------------------------------------------------
# Admin: settings and stats
# ---------------------------------------------------------------------------


@admin_router.get('/settings')
async def get_settings(settings_service: SettingsServiceDep) -> dict[str, typing.Any]:
    """Return the site settings document."""
    return {'settings': settings_service.get().to_json()}


@admin_router.put('/settings')
async def update_settings(
    body: JsonBody, settings_service: SettingsServiceDep
) -> dict[str, typing.Any]:
    """Shallow-merge fields into the site settings."""
    updated = settings_service.update(body)
    return {'success': True, 'settings': updated.to_json()}


@admin_router.get('/stats')
async def get_stats(
    stats_service: typing.Annotated[StatsService, fastapi.Depends(get_stats_service)],
) -> dict[str, typing.Any]:
    """Return dashboard statistics."""
    return {'stats': stats_service.compute().to_json()}


# Public routes (no authentication required)
@public_router.get('/photos')
async def get_public_photos(
    photo_service: PhotoServiceDep,
    category: str | None = None,
    featured: bool | None = None,
    limit: int | None = fastapi.Query(None, ge=0),
) -> dict[str, typing.Any]:
    """List published, non-private photos for the portfolio."""
    photos = photo_service.list(
        published_only=True, category=category, featured=featured, limit=limit
    )
    return {'photos': [p.to_json() for p in photos], 'total': len(photos)}


@public_router.get('/galleries')
async def get_public_galleries(
    gallery_service: GalleryServiceDep, photo_service: PhotoServiceDep
) -> dict[str, typing.Any]:
    """List published galleries, hiding references to missing or hidden photos."""
    visible = {p.id for p in photo_service.list(published_only=True)}
    galleries = gallery_service.list(published_only=True, known_photo_ids=visible)
    return {'galleries': [g.to_json() for g in galleries], 'total': len(galleries)}


@public_router.get('/categories')
async def get_public_categories(
    category_service: CategoryServiceDep,
) -> dict[str, typing.Any]:
    """List categories for the portfolio filters."""
    return {'categories': [c.to_json() for c in category_service.list()]}


@public_router.get('/settings')
async def get_public_settings(
    settings_service: SettingsServiceDep,
) -> dict[str, typing.Any]:
    """Return the site settings used by the public pages."""
    return {'settings': settings_service.get().to_json()}
