"""Unit tests for the key-value stores."""

import json
import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tracking.storage import JsonFileStore, MemoryStore, StorageError


class TestMemoryStore(unittest.TestCase):
    """Test cases for MemoryStore."""

    def test_get_default_for_missing_key(self):
        """Missing keys return the default."""
        store = MemoryStore()
        self.assertIsNone(store.get("missing"))
        self.assertEqual(store.get("missing", 5), 5)

    def test_get_many_omits_absent_keys(self):
        """get_many only returns keys that exist."""
        store = MemoryStore({"a": 1, "b": 2})
        self.assertEqual(store.get_many(["a", "c"]), {"a": 1})

    def test_values_are_copies(self):
        """Mutating a returned value does not change the store."""
        store = MemoryStore({"table": {"x": 1}})
        table = store.get("table")
        table["x"] = 99
        self.assertEqual(store.get("table"), {"x": 1})

    def test_remove_and_clear(self):
        """remove() drops keys; clear() drops everything."""
        store = MemoryStore({"a": 1, "b": 2, "c": 3})
        store.remove("a", "missing")
        self.assertEqual(store.snapshot(), {"b": 2, "c": 3})
        store.clear()
        self.assertEqual(store.snapshot(), {})


class TestJsonFileStore(unittest.TestCase):
    """Test cases for JsonFileStore."""

    def setUp(self):
        """Create a temporary directory for the store file."""
        self.temp_dir = tempfile.mkdtemp()
        self.data_file = Path(self.temp_dir) / "store.json"

    def tearDown(self):
        """Clean up temporary files."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_round_trip_through_disk(self):
        """Values written by one store are read by a fresh one."""
        store = JsonFileStore(self.data_file)
        store.set_many({"totalReelsScrolled": 4, "scrolledReels": ["a", "b"]})

        reloaded = JsonFileStore(self.data_file)
        self.assertEqual(reloaded.get("totalReelsScrolled"), 4)
        self.assertEqual(reloaded.get("scrolledReels"), ["a", "b"])

    def test_creates_parent_directory(self):
        """The data directory is created on first write."""
        nested = Path(self.temp_dir) / "deep" / "dir" / "store.json"
        store = JsonFileStore(nested)
        store.set("k", "v")
        self.assertTrue(nested.exists())

    def test_corrupt_file_starts_fresh(self):
        """A corrupt file is treated as an empty store."""
        self.data_file.write_text("{not json")
        store = JsonFileStore(self.data_file)
        self.assertEqual(store.snapshot(), {})

    def test_non_object_file_starts_fresh(self):
        """A JSON file that is not an object is treated as empty."""
        self.data_file.write_text(json.dumps([1, 2, 3]))
        store = JsonFileStore(self.data_file)
        self.assertEqual(store.snapshot(), {})

    def test_no_temp_files_left_behind(self):
        """Atomic writes leave only the target file."""
        store = JsonFileStore(self.data_file)
        store.set("a", 1)
        store.set("b", 2)
        self.assertEqual(os.listdir(self.temp_dir), ["store.json"])

    def test_write_failure_raises_and_keeps_cache(self):
        """A failed write raises StorageError but memory keeps the value."""
        store = JsonFileStore(self.data_file)
        store.set("a", 1)

        with patch("tracking.storage.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(StorageError):
                store.set("a", 2)

        self.assertEqual(store.get("a"), 2)
        # Disk still has the last durable value
        self.assertEqual(JsonFileStore(self.data_file).get("a"), 1)


if __name__ == "__main__":
    unittest.main()
