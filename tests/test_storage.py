"""
Tests for storage backends
"""

import pytest
from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass

from microfinance.lifecycle import LoanStatus
from microfinance.storage import (
    InMemoryStorage, SQLiteStorage, StorageRecord, create_storage, resolve_related, to_storable
)


@pytest.fixture(params=["memory", "sqlite"])
def backend(request, tmp_path):
    if request.param == "memory":
        storage = InMemoryStorage()
    else:
        storage = SQLiteStorage(tmp_path / "loans.db")
    yield storage
    storage.close()


def _record(record_id, **fields):
    data = {
        "id": record_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    data.update(fields)
    return data


class TestBasicOperations:
    """Both backends behave the same"""

    def test_save_and_load(self, backend):
        record = _record("loan-1", total_paid="100.50", status="disbursed")
        backend.save("loans", "loan-1", record)

        assert backend.load("loans", "loan-1") == record
        assert backend.exists("loans", "loan-1")
        assert not backend.exists("loans", "loan-2")
        assert backend.load("loans", "loan-2") is None
        assert backend.count("loans") == 1

    def test_loaded_copy_is_detached(self, backend):
        backend.save("loans", "loan-1", _record("loan-1", status="pending"))
        loaded = backend.load("loans", "loan-1")
        loaded["status"] = "disbursed"
        assert backend.load("loans", "loan-1")["status"] == "pending"

    def test_save_replaces(self, backend):
        backend.save("loans", "loan-1", _record("loan-1", status="pending"))
        backend.save("loans", "loan-1", _record("loan-1", status="disbursed"))
        assert backend.count("loans") == 1
        assert backend.load("loans", "loan-1")["status"] == "disbursed"

    def test_find_filters_orders_and_limits(self, backend):
        backend.save("loans", "a", _record("a", status="pending", created_at="2024-01-01"))
        backend.save("loans", "b", _record("b", status="disbursed", created_at="2024-01-03"))
        backend.save("loans", "c", _record("c", status="disbursed", created_at="2024-01-02"))

        disbursed = backend.find("loans", {"status": "disbursed"}, order_by="created_at")
        assert [r["id"] for r in disbursed] == ["c", "b"]

        newest = backend.find("loans", {}, order_by="created_at", descending=True, limit=2)
        assert [r["id"] for r in newest] == ["b", "c"]

        assert backend.find("loans", {"status": "completed"}) == []
        assert backend.find("empty_table", {}) == []

    def test_load_all_in_insertion_order(self, backend):
        for record_id in ["x", "y", "z"]:
            backend.save("repayments", record_id, _record(record_id))
        assert [r["id"] for r in backend.load_all("repayments")] == ["x", "y", "z"]

    def test_clear_table(self, backend):
        backend.save("loans", "loan-1", _record("loan-1"))
        backend.clear_table("loans")
        assert backend.count("loans") == 0

    def test_delete(self, backend):
        backend.save("loans", "loan-1", _record("loan-1", total_paid="0"))

        assert backend.delete("loans", "loan-1")
        assert backend.load("loans", "loan-1") is None
        assert not backend.delete("loans", "loan-1")


class TestCompareAndSwap:
    """Conditional writes used for payments and state changes"""

    def test_swap_when_expected_matches(self, backend):
        backend.save("loans", "loan-1", _record("loan-1", total_paid="0", status="disbursed"))

        swapped = backend.compare_and_swap(
            "loans", "loan-1", {"total_paid": "0", "status": "disbursed"},
            _record("loan-1", total_paid="5000", status="disbursed")
        )
        assert swapped
        assert backend.load("loans", "loan-1")["total_paid"] == "5000"

    def test_no_swap_when_record_changed(self, backend):
        backend.save("loans", "loan-1", _record("loan-1", total_paid="5000", status="disbursed"))

        swapped = backend.compare_and_swap(
            "loans", "loan-1", {"total_paid": "0"},
            _record("loan-1", total_paid="10000", status="disbursed")
        )
        assert not swapped
        assert backend.load("loans", "loan-1")["total_paid"] == "5000"

    def test_no_swap_for_missing_record(self, backend):
        assert not backend.compare_and_swap("loans", "ghost", {}, _record("ghost"))
        assert not backend.exists("loans", "ghost")

    def test_second_writer_loses(self, backend):
        """Two writers read total_paid=0; only the first conditional write lands"""
        backend.save("loans", "loan-1", _record("loan-1", total_paid="0"))
        expected = {"total_paid": "0"}

        assert backend.compare_and_swap("loans", "loan-1", expected, _record("loan-1", total_paid="3000"))
        assert not backend.compare_and_swap("loans", "loan-1", expected, _record("loan-1", total_paid="4000"))
        assert backend.load("loans", "loan-1")["total_paid"] == "3000"


class TestSQLitePersistence:
    def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "loans.db"
        storage = SQLiteStorage(path)
        storage.save("clients", "c1", _record("c1", full_name="Chioma Eze"))
        storage.close()

        reopened = SQLiteStorage(path)
        assert reopened.load("clients", "c1")["full_name"] == "Chioma Eze"
        reopened.close()


class TestStorageRecord:
    """Serialization helpers"""

    def test_to_storable(self):
        assert to_storable(Decimal("36666.67")) == "36666.67"
        assert to_storable(date(2024, 2, 1)) == "2024-02-01"
        assert to_storable(LoanStatus.DISBURSED) == "disbursed"
        assert to_storable({"amounts": [Decimal("1.50")]}) == {"amounts": ["1.50"]}

    def test_record_round_trip_fields(self):
        @dataclass
        class Note(StorageRecord):
            amount: Decimal
            due: date

        now = datetime.now(timezone.utc)
        note = Note(id="n1", created_at=now, updated_at=now, amount=Decimal("10.00"), due=date(2024, 1, 5))
        data = note.to_dict()

        assert data["amount"] == "10.00"
        assert data["due"] == "2024-01-05"
        assert Note.parse_datetime(data["created_at"]) == now
        assert Note.parse_date(data["due"]) == date(2024, 1, 5)

    def test_resolve_related(self):
        record = {"id": "c1"}
        assert resolve_related(record) == record
        assert resolve_related([record]) == record
        assert resolve_related([]) is None
        assert resolve_related(None) is None


class TestCreateStorage:
    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_url(self, tmp_path):
        storage = create_storage(f"sqlite:///{tmp_path / 'app.db'}")
        assert isinstance(storage, SQLiteStorage)
        storage.close()

    def test_unsupported_url(self):
        with pytest.raises(ValueError):
            create_storage("postgresql://localhost/loans")
