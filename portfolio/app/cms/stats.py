"""Dashboard statistics computed from the CMS collections."""

import collections
import datetime
import pathlib

from .. import settings
from . import models
from .services import GALLERIES_FILE, PHOTOS_FILE, CategoryService, OnWrite
from .store import JsonStore

RECENT_WINDOW = datetime.timedelta(days=7)
POPULAR_COUNT = 5
MONTHS = 6


def _months_back(now: datetime.datetime, count: int) -> list[str]:
    """Return ``YYYY-MM`` keys for the last *count* months, oldest first."""
    keys: list[str] = []
    year, month = now.year, now.month
    for _ in range(count):
        keys.append(f'{year:04d}-{month:02d}')
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


class StatsService:
    """Aggregates counts, views and upload activity for the admin dashboard."""

    def __init__(
        self,
        data_dir: pathlib.Path | None = None,
        on_write: OnWrite | None = None,
    ) -> None:
        data_dir = data_dir if data_dir is not None else settings.data_dir()
        self.photos = JsonStore(data_dir / PHOTOS_FILE)
        self.galleries = JsonStore(data_dir / GALLERIES_FILE)
        # Seeded like the category listing so both report the same total.
        self.categories = CategoryService(data_dir, on_write).store

    def compute(self, now: datetime.datetime | None = None) -> models.Stats:
        """Compute the dashboard figures as of *now*."""
        now = now or models.utcnow()
        photos = [models.Photo.model_validate(raw) for raw in self.photos.load()]
        total = len(photos)

        popular = sorted(photos, key=lambda p: p.views, reverse=True)[:POPULAR_COUNT]
        counts = collections.Counter(p.category or models.UNCATEGORIZED for p in photos)
        uploads_by_month = collections.Counter(
            p.uploaded_at.strftime('%Y-%m') for p in photos
        )

        return models.Stats(
            total_photos=total,
            total_galleries=len(self.galleries.load()),
            total_categories=len(self.categories.load()),
            total_views=sum(p.views for p in photos),
            recent_uploads=sum(1 for p in photos if p.uploaded_at > now - RECENT_WINDOW),
            popular_photos=[
                models.PopularPhoto(id=p.id, title=p.title, views=p.views, url=p.url)
                for p in popular
            ],
            category_breakdown=[
                models.CategoryShare(
                    category=category,
                    count=count,
                    percentage=int(count * 100 / total + 0.5),
                )
                for category, count in counts.items()
            ],
            monthly_stats=[
                models.MonthlyUploads(month=key, uploads=uploads_by_month[key])
                for key in _months_back(now, MONTHS)
            ],
        )
