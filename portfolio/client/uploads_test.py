"""Unit tests for uploads.py."""

import asyncio
import io
import pathlib
import tempfile
import unittest
from unittest import mock

import httpx
from PIL import Image

from portfolio.app import main
from portfolio.app.saves import autosave
from portfolio.client import hooks, uploads


def _image(name: str, fmt: str = 'PNG', content_type: str = 'image/png') -> uploads.SelectedFile:
    buffer = io.BytesIO()
    Image.new('RGB', (64, 48), color=(220, 180, 40)).save(buffer, format=fmt)
    return uploads.SelectedFile(name=name, content_type=content_type, content=buffer.getvalue())


class NullSink:
    def commit(self, message: str) -> str:
        return 'f00d'

    def history(self, limit: int = 20) -> list[autosave.Commit]:
        return []


class TestSelectedFile(unittest.TestCase):
    """Tests for SelectedFile."""

    def test_from_path_guesses_type(self) -> None:
        """The content type is guessed from the file name."""
        path = pathlib.Path(tempfile.mkdtemp()) / 'shot.jpg'
        path.write_bytes(b'\xff\xd8data')
        selected = uploads.SelectedFile.from_path(path)
        self.assertEqual(selected.name, 'shot.jpg')
        self.assertEqual(selected.content_type, 'image/jpeg')
        self.assertEqual(selected.size, 6)


class TestUploadTracker(unittest.IsolatedAsyncioTestCase):
    """Tests for UploadTracker against the real app."""

    async def asyncSetUp(self) -> None:
        """Point the app at temporary directories and build a tracker."""
        tmpdir = pathlib.Path(tempfile.mkdtemp())
        env = mock.patch.dict(
            'os.environ',
            {
                'DATA_DIR': str(tmpdir / 'data'),
                'PUBLIC_DIR': str(tmpdir / 'public'),
                'AUTOSAVE_ENABLED': '0',
            },
        )
        env.start()
        self.addCleanup(env.stop)
        patcher = mock.patch.object(
            autosave,
            'autosaver',
            autosave.AutoSaver(sink=NullSink(), change_log=autosave.ChangeLog(tmpdir)),
        )
        patcher.start()
        self.addCleanup(patcher.stop)

        self.http = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=main.app), base_url='http://studio'
        )
        self.addAsyncCleanup(self.http.aclose)
        self.photos = hooks.PhotosHook(self.http)
        self.progress: list[tuple[str, int, uploads.UploadStatus]] = []
        self.completed: list[list[uploads.PendingUpload]] = []
        self.tracker = uploads.UploadTracker(
            self.photos,
            on_progress=lambda u: self.progress.append((u.id, u.progress, u.status)),
            on_complete=self.completed.append,
        )
        self.addCleanup(self.tracker.clear)

    async def test_batch_isolation(self) -> None:
        """An invalid file in the middle does not affect its siblings."""
        entries = self.tracker.add_files(
            [
                _image('one.png'),
                uploads.SelectedFile('two.txt', 'text/plain', b'not an image'),
                _image('three.jpg', 'JPEG', 'image/jpeg'),
            ]
        )
        done = await self.tracker.wait()

        statuses = [e.status for e in self.tracker.uploads]
        self.assertEqual(
            statuses,
            [
                uploads.UploadStatus.COMPLETED,
                uploads.UploadStatus.ERROR,
                uploads.UploadStatus.COMPLETED,
            ],
        )
        self.assertEqual([e.id for e in done], [entries[0].id, entries[2].id])
        self.assertEqual(self.completed, [done])
        self.assertIn('text/plain', entries[1].error or '')
        self.assertEqual(len(self.photos.items), 2)

    async def test_progress_reaches_100_only_on_completion(self) -> None:
        """Progress rises monotonically and hits 100 with the completed status."""
        entry = self.tracker.add_files([_image('one.png')])[0]
        await self.tracker.wait()

        values = [p for upload_id, p, _ in self.progress if upload_id == entry.id]
        self.assertEqual(values, sorted(values))
        self.assertEqual(values[-1], 100)
        self.assertTrue(all(p <= 99 for p in values[:-1]))
        self.assertEqual(self.progress[-1][2], uploads.UploadStatus.COMPLETED)
        self.assertIsNotNone(entry.photo)

    async def test_oversized_file_never_sent(self) -> None:
        """Files over the size ceiling fail locally."""
        tracker = uploads.UploadTracker(self.photos, max_size_mb=1)
        big = uploads.SelectedFile('big.png', 'image/png', b'\x00' * (2 * 1024 * 1024))
        entry = tracker.add_files([big])[0]
        self.assertEqual(entry.status, uploads.UploadStatus.ERROR)
        self.assertEqual(entry.error, 'File too large (max 1MB)')
        self.assertEqual(await tracker.wait(), [])
        self.assertEqual(await self.photos.refetch(), [])

    async def test_max_files(self) -> None:
        """Files beyond the limit are ignored."""
        tracker = uploads.UploadTracker(self.photos, max_files=2)
        self.addCleanup(tracker.clear)
        added = tracker.add_files([_image(f'{i}.png') for i in range(3)])
        self.assertEqual(len(added), 2)
        await tracker.wait()
        self.assertEqual(len(tracker.uploads), 2)

    async def test_ids_unique_and_ordered(self) -> None:
        """Entries keep insertion order and distinct ids."""
        names = [f'{i}.png' for i in range(5)]
        self.tracker.add_files([_image(n) for n in names])
        await self.tracker.wait()
        self.assertEqual([u.file.name for u in self.tracker.uploads], names)
        self.assertEqual(len({u.id for u in self.tracker.uploads}), 5)

    async def test_preview_created_and_released(self) -> None:
        """Previews are temp thumbnails removed with their entry."""
        entry = self.tracker.add_files([_image('one.png')])[0]
        preview = entry.preview
        assert preview is not None
        self.assertTrue(preview.exists())
        with Image.open(preview) as thumb:
            self.assertLessEqual(max(thumb.size), max(uploads.PREVIEW_SIZE))

        await self.tracker.wait()
        self.tracker.remove(entry.id)
        self.assertFalse(preview.exists())
        self.assertEqual(self.tracker.uploads, [])

    async def test_remove_cancels_upload(self) -> None:
        """Removing an in-flight entry cancels it and drops it from the list."""
        started = asyncio.Event()

        async def slow_upload(files: object) -> hooks.UploadOutcome:
            started.set()
            await asyncio.sleep(10)
            raise AssertionError('upload should have been cancelled')

        with mock.patch.object(self.photos, 'upload', side_effect=slow_upload):
            entry = self.tracker.add_files([_image('one.png')])[0]
            await started.wait()
            self.tracker.remove(entry.id)
            self.assertEqual(await self.tracker.wait(), [])
        self.assertEqual(self.tracker.uploads, [])
        self.assertEqual(self.completed, [])

    async def test_server_failure_marks_error(self) -> None:
        """A server-side rejection puts only that entry in error."""
        with mock.patch.object(
            self.photos,
            'upload',
            side_effect=hooks.CMSRequestError('Could not write photos.json', 500),
        ):
            entry = self.tracker.add_files([_image('one.png')])[0]
            await self.tracker.wait()
        self.assertEqual(entry.status, uploads.UploadStatus.ERROR)
        self.assertEqual(entry.error, 'Could not write photos.json')
        self.assertEqual(self.completed, [])

    async def test_malformed_response_marks_error(self) -> None:
        """An unparseable success response ends in error instead of hanging at 99."""

        def answer(request: httpx.Request) -> httpx.Response:
            if request.method == 'POST':
                return httpx.Response(200, json={'success': True, 'files': [{'id': 'x'}]})
            return httpx.Response(200, json={'photos': []})

        http = httpx.AsyncClient(
            transport=httpx.MockTransport(answer), base_url='http://studio'
        )
        self.addAsyncCleanup(http.aclose)
        tracker = uploads.UploadTracker(hooks.PhotosHook(http))
        self.addCleanup(tracker.clear)

        entry = tracker.add_files([_image('one.png')])[0]
        self.assertEqual(await tracker.wait(), [])
        self.assertEqual(entry.status, uploads.UploadStatus.ERROR)
        self.assertEqual(entry.error, 'Invalid photo in server response')
        self.assertLess(entry.progress, 100)

    async def test_unexpected_error_marks_error(self) -> None:
        """Errors other than CMSRequestError still settle the entry."""
        with mock.patch.object(self.photos, 'upload', side_effect=KeyError('files')):
            with self.assertLogs('portfolio.client.uploads', level='ERROR'):
                entry = self.tracker.add_files([_image('one.png')])[0]
                await self.tracker.wait()
        self.assertEqual(entry.status, uploads.UploadStatus.ERROR)
        self.assertEqual(entry.error, 'Upload failed')


if __name__ == '__main__':
    unittest.main()
