"""Unit tests for models.py."""

import datetime
import unittest

import pydantic

from portfolio.app.cms import models


class TestSlugify(unittest.TestCase):
    """Tests for slugify."""

    def test_punctuation_collapses_to_single_hyphens(self) -> None:
        """Runs of non-alphanumerics become one hyphen, with none at the ends."""
        self.assertEqual(models.slugify('Mariage Sarah & Thomas!'), 'mariage-sarah-thomas')

    def test_accents_are_folded(self) -> None:
        """Accented letters are reduced to their ASCII base."""
        self.assertEqual(models.slugify('Été à Paris'), 'ete-a-paris')

    def test_simple_title(self) -> None:
        """A single word is just lowercased."""
        self.assertEqual(models.slugify('Nature'), 'nature')


class TestNewRecordId(unittest.TestCase):
    """Tests for new_record_id."""

    def test_ids_do_not_repeat(self) -> None:
        """Consecutive ids within one process are distinct."""
        seen: set[str] = set()
        for _ in range(200):
            seen.add(models.new_record_id(seen))
        self.assertEqual(len(seen), 200)


class TestPhoto(unittest.TestCase):
    """Tests for the Photo record."""

    def _photo(self, **fields: object) -> models.Photo:
        base: dict[str, object] = {
            'id': 'p1',
            'filename': 'a.jpg',
            'path': 'public/uploads/photos/a.jpg',
            'size': 10,
            'type': 'image/jpeg',
            'url': '/uploads/photos/a.jpg',
        }
        base.update(fields)
        return models.Photo.model_validate(base)

    def test_defaults(self) -> None:
        """Unspecified fields get their documented defaults."""
        photo = self._photo()
        self.assertEqual(photo.category, models.UNCATEGORIZED)
        self.assertTrue(photo.published)
        self.assertFalse(photo.featured)
        self.assertEqual(photo.views, 0)
        self.assertEqual(photo.license, models.License.PERSONAL)

    def test_json_uses_camel_case(self) -> None:
        """Serialized records use camelCase keys."""
        data = self._photo(cover_photo='ignored', is_private=True).to_json()
        self.assertIn('uploadedAt', data)
        self.assertIn('isPrivate', data)
        self.assertTrue(data['isPrivate'])
        self.assertNotIn('coverPhoto', data)

    def test_accepts_camel_case_input(self) -> None:
        """Records read from disk with camelCase keys populate attributes."""
        photo = self._photo(dateTaken='2024-06-01', seoAlt='Sunset')
        self.assertEqual(photo.date_taken, '2024-06-01')
        self.assertEqual(photo.seo_alt, 'Sunset')

    def test_rating_bounds(self) -> None:
        """Ratings outside 1..5 are rejected."""
        with self.assertRaises(pydantic.ValidationError):
            self._photo(rating=6)

    def test_private_photo_is_not_public(self) -> None:
        """Private or unpublished photos are hidden from visitors."""
        self.assertTrue(self._photo().is_public)
        self.assertFalse(self._photo(isPrivate=True).is_public)
        self.assertFalse(self._photo(published=False).is_public)

    def test_naive_timestamps_read_as_utc(self) -> None:
        """Timestamps without an offset are given the UTC timezone."""
        photo = self._photo(
            uploadedAt='2024-06-01T18:30:00',
            metadata={'size': 10, 'uploadedAt': '2024-06-01T18:30:00'},
        )
        expected = datetime.datetime(2024, 6, 1, 18, 30, tzinfo=datetime.UTC)
        self.assertEqual(photo.uploaded_at, expected)
        self.assertEqual(photo.uploaded_at.tzinfo, datetime.UTC)
        assert photo.metadata is not None
        self.assertEqual(photo.metadata.uploaded_at.tzinfo, datetime.UTC)
        self.assertLess(photo.uploaded_at, models.utcnow())

    def test_aware_timestamps_kept(self) -> None:
        """Timestamps with an offset keep it."""
        photo = self._photo(uploadedAt='2024-06-01T18:30:00+02:00')
        self.assertEqual(photo.uploaded_at.utcoffset(), datetime.timedelta(hours=2))


class TestCategory(unittest.TestCase):
    """Tests for Category and the default seed."""

    def test_default_categories(self) -> None:
        """Four French-labelled categories are seeded with ids 1 to 4."""
        seeds = models.default_categories()
        self.assertEqual([c.id for c in seeds], ['1', '2', '3', '4'])
        self.assertEqual(seeds[0].name, 'Mariage')
        self.assertEqual(seeds[0].slug, 'mariage')

    def test_matches_name_or_slug(self) -> None:
        """Photo labels match a category by name or slug, ignoring case."""
        category = models.Category(id='x', name='Street Life', slug='street-life')
        self.assertTrue(category.matches('street life'))
        self.assertTrue(category.matches('street-life'))
        self.assertFalse(category.matches('street'))


class TestSiteSettings(unittest.TestCase):
    """Tests for SiteSettings."""

    def test_defaults_round_trip(self) -> None:
        """Default settings survive serialization."""
        settings = models.SiteSettings()
        restored = models.SiteSettings.model_validate(settings.to_json())
        self.assertEqual(restored.id, models.SETTINGS_ID)
        self.assertEqual(restored.gallery_settings.items_per_page, 12)
        self.assertIsInstance(restored.updated_at, datetime.datetime)


if __name__ == '__main__':
    unittest.main()
