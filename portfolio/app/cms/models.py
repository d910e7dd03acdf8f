"""Record types for the CMS collections.

Records are stored and served with camelCase keys (``uploadedAt``,
``coverPhoto``) while Python code uses snake_case attributes.
"""

from __future__ import annotations

import datetime
import enum
import re
import secrets
import time
import unicodedata
from collections.abc import Iterable
from typing import Any

import pydantic
import pydantic.alias_generators

UNCATEGORIZED = 'uncategorized'
DEFAULT_GALLERY_CATEGORY = 'general'
DEFAULT_CATEGORY_COLOR = '#6366F1'
DEFAULT_CATEGORY_ICON = '📸'
SETTINGS_ID = 'main-settings'

_NON_ALNUM = re.compile(r'[^a-z0-9]+')


def utcnow() -> datetime.datetime:
    """Current time, timezone aware."""
    return datetime.datetime.now(datetime.UTC)


def slugify(text: str) -> str:
    """Derive a URL-safe slug from a title.

    >>> slugify('Mariage Sarah & Thomas!')
    'mariage-sarah-thomas'
    """
    folded = unicodedata.normalize('NFKD', text).encode('ascii', 'ignore').decode()
    return _NON_ALNUM.sub('-', folded.lower()).strip('-')


def new_record_id(existing: Iterable[str] = ()) -> str:
    """Return a time-based id that does not collide with *existing*."""
    taken = set(existing)
    while True:
        candidate = f'{int(time.time() * 1000)}-{secrets.token_hex(3)}'
        if candidate not in taken:
            return candidate


class CMSModel(pydantic.BaseModel):
    """Base for records persisted in a collection file."""

    model_config = pydantic.ConfigDict(
        alias_generator=pydantic.alias_generators.to_camel,
        populate_by_name=True,
        extra='ignore',
    )

    @pydantic.field_validator('*', mode='after')
    @classmethod
    def _assume_utc(cls, value: Any) -> Any:
        """Treat naive timestamps (e.g. from hand-edited files) as UTC."""
        if isinstance(value, datetime.datetime) and value.tzinfo is None:
            return value.replace(tzinfo=datetime.UTC)
        return value

    def to_json(self) -> dict[str, Any]:
        """Return the camelCase, JSON-ready form of the record."""
        return self.model_dump(mode='json', by_alias=True)


# ---------------------------------------------------------------------------
# Photos
# ---------------------------------------------------------------------------


class License(enum.StrEnum):
    """Usage licence attached to a photo."""

    PERSONAL = 'personal'
    COMMERCIAL = 'commercial'
    EDITORIAL = 'editorial'
    ROYALTY_FREE = 'royalty-free'


class ExposureSettings(CMSModel):
    """Camera settings a photo was taken with."""

    aperture: str = ''
    shutter: str = ''
    iso: str = ''
    focal_length: str = ''


class Dimensions(CMSModel):
    width: int
    height: int


class TechnicalMetadata(CMSModel):
    """Facts about the stored file, filled in at upload time."""

    size: int
    dimensions: Dimensions | None = None
    uploaded_at: datetime.datetime
    uploaded_by: str = 'admin'


class Photo(CMSModel):
    """One uploaded image and its editorial metadata."""

    id: str
    filename: str
    path: str
    size: int
    type: str
    url: str
    title: str = ''
    description: str = ''
    category: str = UNCATEGORIZED
    tags: list[str] = pydantic.Field(default_factory=list)
    featured: bool = False
    published: bool = True
    views: int = 0
    uploaded_at: datetime.datetime = pydantic.Field(default_factory=utcnow)
    updated_at: datetime.datetime | None = None
    order: int | None = None

    # Editorial fields
    subtitle: str | None = None
    alt: str | None = None
    location: str | None = None
    date_taken: str | None = None
    camera: str | None = None
    lens: str | None = None
    settings: ExposureSettings = pydantic.Field(default_factory=ExposureSettings)
    client: str | None = None
    project: str | None = None
    mood: str | None = None
    color_palette: list[str] = pydantic.Field(default_factory=list)
    technical_notes: str | None = None
    seo_alt: str | None = None
    social_description: str | None = None
    price: float | None = None
    license: License = License.PERSONAL
    keywords: list[str] = pydantic.Field(default_factory=list)
    rating: int | None = pydantic.Field(default=None, ge=1, le=5)
    is_private: bool = False
    metadata: TechnicalMetadata | None = None

    @property
    def is_public(self) -> bool:
        """True if visitors may see this photo."""
        return self.published and not self.is_private


# ---------------------------------------------------------------------------
# Galleries and categories
# ---------------------------------------------------------------------------


class Gallery(CMSModel):
    """A named, ordered collection of photo ids."""

    id: str
    title: str
    description: str = ''
    category: str = DEFAULT_GALLERY_CATEGORY
    photos: list[str] = pydantic.Field(default_factory=list)
    cover_photo: str | None = None
    featured: bool = False
    published: bool = True
    order: int = 0
    slug: str = ''
    created_at: datetime.datetime = pydantic.Field(default_factory=utcnow)
    updated_at: datetime.datetime = pydantic.Field(default_factory=utcnow)


class Category(CMSModel):
    """A taxonomy label with display metadata."""

    id: str
    name: str
    description: str = ''
    slug: str = ''
    color: str = DEFAULT_CATEGORY_COLOR
    icon: str = DEFAULT_CATEGORY_ICON
    order: int = 0
    created_at: datetime.datetime = pydantic.Field(default_factory=utcnow)
    updated_at: datetime.datetime | None = None
    photo_count: int = 0

    def matches(self, label: str) -> bool:
        """True if a photo's free-text category label designates this category."""
        needle = label.strip().lower()
        return needle in (self.name.lower(), self.slug.lower())


def default_categories() -> list[Category]:
    """Seed categories written the first time the collection is read."""
    seeds = [
        ('Mariage', 'Photos de mariage et cérémonies', '#FF6B6B', '💒'),
        ('Portrait', 'Portraits individuels et de famille', '#4ECDC4', '👤'),
        ('Nature', 'Paysages et photographie nature', '#45B7D1', '🌿'),
        ('Architecture', 'Bâtiments et structures urbaines', '#F39C12', '🏛️'),
    ]
    return [
        Category(
            id=str(index + 1),
            name=name,
            description=description,
            slug=slugify(name),
            color=color,
            icon=icon,
            order=index,
        )
        for index, (name, description, color, icon) in enumerate(seeds)
    ]


# ---------------------------------------------------------------------------
# Site settings
# ---------------------------------------------------------------------------


class SocialLinks(CMSModel):
    instagram: str = ''
    facebook: str = ''
    twitter: str = ''
    linkedin: str = ''
    pinterest: str = ''


class ContactInfo(CMSModel):
    email: str = 'contact@photographe.com'
    phone: str = ''
    address: str = ''
    city: str = ''
    country: str = 'France'


class SeoSettings(CMSModel):
    meta_title: str = 'Portfolio Photographe Professionnel'
    meta_description: str = (
        "Découvrez le portfolio d'une photographe professionnelle spécialisée "
        'dans les mariages, portraits et photographie artistique.'
    )
    keywords: list[str] = pydantic.Field(
        default_factory=lambda: [
            'photographe',
            'mariage',
            'portrait',
            'photographie',
            'professionnel',
        ]
    )
    og_image: str = ''


class GallerySettings(CMSModel):
    items_per_page: int = 12
    show_metadata: bool = True
    enable_lightbox: bool = True
    enable_download: bool = False


class SiteSettings(CMSModel):
    """The singleton site configuration document."""

    id: str = SETTINGS_ID
    site_name: str = 'Portfolio Photographe'
    tagline: str = 'Capturer les moments précieux'
    description: str = (
        'Portfolio professionnel de photographie spécialisé dans les mariages, '
        'portraits et nature.'
    )
    logo: str | None = None
    favicon: str | None = None
    primary_color: str = '#6366F1'
    secondary_color: str = '#8B5CF6'
    accent_color: str = '#EC4899'
    font_family: str = 'Inter'
    social_links: SocialLinks = pydantic.Field(default_factory=SocialLinks)
    contact_info: ContactInfo = pydantic.Field(default_factory=ContactInfo)
    seo_settings: SeoSettings = pydantic.Field(default_factory=SeoSettings)
    gallery_settings: GallerySettings = pydantic.Field(default_factory=GallerySettings)
    updated_at: datetime.datetime = pydantic.Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class PopularPhoto(CMSModel):
    id: str
    title: str
    views: int
    url: str


class CategoryShare(CMSModel):
    category: str
    count: int
    percentage: int


class MonthlyUploads(CMSModel):
    month: str
    uploads: int


class Stats(CMSModel):
    """Dashboard figures computed from the collections."""

    total_photos: int = 0
    total_galleries: int = 0
    total_categories: int = 0
    total_views: int = 0
    recent_uploads: int = 0
    popular_photos: list[PopularPhoto] = pydantic.Field(default_factory=list)
    category_breakdown: list[CategoryShare] = pydantic.Field(default_factory=list)
    monthly_stats: list[MonthlyUploads] = pydantic.Field(default_factory=list)
