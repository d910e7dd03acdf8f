"""Unit tests for store.py."""

import json
import pathlib
import tempfile
import threading
import unittest

from portfolio.app.cms import errors, store


class TestJsonStoreLoad(unittest.TestCase):
    """Tests for JsonStore.load."""

    def setUp(self) -> None:
        """Create a temporary data directory."""
        self.tmpdir = pathlib.Path(tempfile.mkdtemp())

    def test_missing_file_without_default_is_empty(self) -> None:
        """A missing file reads as an empty list and is not created."""
        s = store.JsonStore(self.tmpdir / 'photos.json')
        self.assertEqual(s.load(), [])
        self.assertFalse((self.tmpdir / 'photos.json').exists())

    def test_missing_file_with_default_is_seeded(self) -> None:
        """A missing file is seeded from the default and persisted."""
        s = store.JsonStore(self.tmpdir / 'categories.json', default=lambda: [{'id': '1'}])
        self.assertEqual(s.load(), [{'id': '1'}])
        on_disk = json.loads((self.tmpdir / 'categories.json').read_text())
        self.assertEqual(on_disk, [{'id': '1'}])

    def test_malformed_json_raises_persistence_error(self) -> None:
        """Corrupt files surface as PersistenceError instead of an empty list."""
        path = self.tmpdir / 'galleries.json'
        path.write_text('[{"id": ')
        with self.assertRaises(errors.PersistenceError):
            store.JsonStore(path).load()

    def test_repeated_reads_are_identical(self) -> None:
        """Two reads without a mutation in between return equal documents."""
        s = store.JsonStore(self.tmpdir / 'photos.json')
        s.save([{'id': 'a', 'title': 'Été'}])
        self.assertEqual(s.load(), s.load())


class TestJsonStoreSave(unittest.TestCase):
    """Tests for JsonStore.save and transaction."""

    def setUp(self) -> None:
        """Create a temporary data directory."""
        self.tmpdir = pathlib.Path(tempfile.mkdtemp())

    def test_save_is_pretty_printed(self) -> None:
        """Documents are written indented with non-ASCII kept readable."""
        path = self.tmpdir / 'nested' / 'photos.json'
        store.JsonStore(path).save([{'title': 'Été'}])
        text = path.read_text(encoding='utf-8')
        self.assertIn('\n  {', text)
        self.assertIn('Été', text)

    def test_save_leaves_no_temp_files(self) -> None:
        """The temporary file is renamed over the target."""
        path = self.tmpdir / 'photos.json'
        store.JsonStore(path).save([])
        self.assertEqual([p.name for p in self.tmpdir.iterdir()], ['photos.json'])

    def test_on_write_called(self) -> None:
        """on_write receives the path after every save."""
        seen: list[pathlib.Path] = []
        path = self.tmpdir / 'photos.json'
        store.JsonStore(path, on_write=seen.append).save([])
        self.assertEqual(seen, [path])

    def test_transaction_saves_mutation(self) -> None:
        """Mutations made inside a transaction are persisted."""
        s = store.JsonStore(self.tmpdir / 'photos.json')
        with s.transaction() as data:
            data.append({'id': 'x'})
        self.assertEqual(s.load(), [{'id': 'x'}])

    def test_transaction_aborts_on_error(self) -> None:
        """An exception inside the block prevents the write."""
        seen: list[pathlib.Path] = []
        s = store.JsonStore(self.tmpdir / 'photos.json', on_write=seen.append)
        s.save([{'id': 'keep'}])
        seen.clear()
        with self.assertRaises(RuntimeError):
            with s.transaction() as data:
                data.clear()
                raise RuntimeError('boom')
        self.assertEqual(s.load(), [{'id': 'keep'}])
        self.assertEqual(seen, [])

    def test_stores_for_same_file_share_lock(self) -> None:
        """Two store objects for one file use the same lock."""
        a = store.JsonStore(self.tmpdir / 'photos.json')
        b = store.JsonStore(str(self.tmpdir / 'photos.json'))
        self.assertIs(a.lock, b.lock)

    def test_concurrent_transactions_do_not_lose_updates(self) -> None:
        """Parallel appends through separate stores all survive."""
        path = self.tmpdir / 'photos.json'
        store.JsonStore(path).save([])

        def append(n: int) -> None:
            with store.JsonStore(path).transaction() as data:
                data.append(n)

        threads = [threading.Thread(target=append, args=(n,)) for n in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(sorted(store.JsonStore(path).load()), list(range(20)))


if __name__ == '__main__':
    unittest.main()
