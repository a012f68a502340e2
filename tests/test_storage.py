"""
Tests for storage backends and transaction support
"""

import pytest
import threading
from datetime import datetime, timezone

from ledger_core.storage import (
    InMemoryStorage, SQLiteStorage, StorageInterface, create_storage
)


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    """Run each test against both backends"""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "ledger_test.db")
    yield backend
    backend.close()


class TestStorageInterface:
    """Test basic CRUD operations on both backends"""

    def test_basic_operations(self, storage):
        """Test save, load, exists, find, count and delete"""
        storage.save("test_table", "record_1", test_data)
        loaded = storage.load("test_table", "record_1")
        assert loaded == test_data

        assert storage.exists("test_table", "record_1")
        assert not storage.exists("test_table", "non_existent")

        storage.save("test_table", "record_2", {"id": "record_2", "name": "Other"})
        assert len(storage.load_all("test_table")) == 2

        results = storage.find("test_table", {"name": "Test Record"})
        assert len(results) == 1
        assert results[0]["id"] == "test_001"

        assert storage.count("test_table") == 2

        assert storage.delete("test_table", "record_1")
        assert not storage.exists("test_table", "record_1")
        assert not storage.delete("test_table", "record_1")
        assert storage.count("test_table") == 1

    def test_load_missing_record(self, storage):
        assert storage.load("test_table", "nope") is None

    def test_save_overwrites_and_keeps_order(self, storage):
        """Upserts keep the original insertion position"""
        storage.save("t", "a", {"id": "a", "v": 1})
        storage.save("t", "b", {"id": "b", "v": 2})
        storage.save("t", "a", {"id": "a", "v": 3})

        records = storage.load_all("t")
        assert [r["id"] for r in records] == ["a", "b"]
        assert records[0]["v"] == 3

    def test_find_with_boolean_and_null(self, storage):
        storage.save("t", "a", {"id": "a", "active": True, "parent": None})
        storage.save("t", "b", {"id": "b", "active": False, "parent": "a"})

        assert [r["id"] for r in storage.find("t", {"active": True})] == ["a"]
        assert [r["id"] for r in storage.find("t", {"parent": None})] == ["a"]
        assert [r["id"] for r in storage.find("t", {"parent": "a"})] == ["b"]

    def test_clear_table(self, storage):
        storage.save("t", "a", {"id": "a"})
        storage.clear_table("t")
        assert storage.count("t") == 0

    def test_loaded_records_are_copies(self, storage):
        storage.save("t", "a", {"id": "a", "lines": [1, 2]})
        loaded = storage.load("t", "a")
        loaded["lines"].append(3)
        assert storage.load("t", "a")["lines"] == [1, 2]


class TestIterRecords:
    """Test batched streaming"""

    def test_iterates_all_records_in_order(self, storage):
        for i in range(25):
            storage.save("t", f"r{i:02d}", {"id": f"r{i:02d}", "n": i})

        records = list(storage.iter_records("t", batch_size=7))
        assert [r["n"] for r in records] == list(range(25))

    def test_iterates_with_filters(self, storage):
        for i in range(10):
            storage.save("t", f"r{i}", {"id": f"r{i}", "parity": "even" if i % 2 == 0 else "odd"})

        evens = list(storage.iter_records("t", {"parity": "even"}, batch_size=3))
        assert [r["id"] for r in evens] == ["r0", "r2", "r4", "r6", "r8"]

    def test_empty_table(self, storage):
        assert list(storage.iter_records("empty")) == []


class TestTransactions:
    """Test atomic() semantics"""

    def test_commit(self, storage):
        with storage.atomic():
            storage.save("t", "a", {"id": "a"})
            storage.save("t", "b", {"id": "b"})
        assert storage.count("t") == 2

    def test_rollback_on_error(self, storage):
        storage.save("t", "existing", {"id": "existing"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("t", "a", {"id": "a"})
                storage.delete("t", "existing")
                raise RuntimeError("boom")

        assert not storage.exists("t", "a")
        assert storage.exists("t", "existing")

    def test_nested_blocks_join_outer_transaction(self, storage):
        with pytest.raises(RuntimeError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("t", "inner", {"id": "inner"})
                storage.save("t", "outer", {"id": "outer"})
                raise RuntimeError("boom")

        assert storage.count("t") == 0

    def test_reads_inside_transaction_see_own_writes(self, storage):
        with storage.atomic():
            storage.save("t", "a", {"id": "a", "v": 1})
            assert storage.load("t", "a")["v"] == 1
            assert storage.count("t") == 1

    def test_uncommitted_writes_invisible_to_other_threads(self):
        storage = InMemoryStorage()
        seen = []
        written = threading.Event()
        checked = threading.Event()

        def reader():
            written.wait()
            seen.append(storage.exists("t", "a"))
            checked.set()

        thread = threading.Thread(target=reader)
        thread.start()
        with storage.atomic():
            storage.save("t", "a", {"id": "a"})
            written.set()
            checked.wait()
        thread.join()

        assert seen == [False]
        assert storage.exists("t", "a")


class TestCreateStorage:
    """Test storage URL parsing"""

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_memory_url(self):
        storage = create_storage("sqlite://")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == ":memory:"
        storage.close()

    def test_sqlite_file_url(self, tmp_path):
        path = tmp_path / "ledger.db"
        storage = create_storage(f"sqlite:///{path}")
        assert isinstance(storage, StorageInterface)
        storage.save("t", "a", {"id": "a"})
        storage.close()

        reopened = SQLiteStorage(path)
        assert reopened.exists("t", "a")
        reopened.close()

    def test_unsupported_url(self):
        with pytest.raises(ValueError, match="Unsupported database URL"):
            create_storage("postgresql://localhost/ledger")
