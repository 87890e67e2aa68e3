"""
Tests for the in-memory transactional store and document decoding.
"""

import copy
from datetime import datetime, timezone

import pytest

from pointsledger.errors import MalformedDocumentError, StorageError, TransactionAbortedError
from pointsledger.models import LISTINGS, USERS, Listing, ListingStatus, UserAccount
from pointsledger.storage import SERVER_TIMESTAMP, InMemoryStorage

FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestInMemoryTransactions:
    def test_writes_are_invisible_until_commit(self):
        storage = InMemoryStorage()
        storage.put(USERS, "u1", {"points": 100})
        seen = []

        def fn(txn):
            data = txn.get(USERS, "u1")
            txn.update(USERS, "u1", {"points": data["points"] - 10})
            seen.append(storage.snapshot(USERS, "u1")["points"])

        storage.run_transaction(fn)

        assert seen == [100]
        assert storage.snapshot(USERS, "u1")["points"] == 90

    def test_exception_discards_buffered_writes(self):
        storage = InMemoryStorage()
        storage.put(USERS, "u1", {"points": 100})

        def fn(txn):
            txn.get(USERS, "u1")
            txn.update(USERS, "u1", {"points": 0})
            txn.set(USERS, "u2", {"points": 5})
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            storage.run_transaction(fn)

        assert storage.snapshot(USERS, "u1")["points"] == 100
        assert storage.snapshot(USERS, "u2") is None

    def test_conflicting_commit_is_retried(self):
        """A concurrent write between read and commit re-runs the function."""
        storage = InMemoryStorage(max_attempts=3)
        storage.put(USERS, "u1", {"points": 100})
        attempts = []

        def fn(txn):
            data = txn.get(USERS, "u1")
            attempts.append(data["points"])
            if len(attempts) == 1:
                storage.put(USERS, "u1", {"points": 40})
            txn.update(USERS, "u1", {"points": data["points"] - 10})

        storage.run_transaction(fn)

        assert attempts == [100, 40]
        assert storage.snapshot(USERS, "u1")["points"] == 30

    def test_conflict_on_missing_document(self):
        storage = InMemoryStorage(max_attempts=2)
        attempts = []

        def fn(txn):
            existing = txn.get(USERS, "u1")
            attempts.append(existing)
            if existing is None and len(attempts) == 1:
                storage.put(USERS, "u1", {"points": 7})
            if existing is None:
                txn.set(USERS, "u1", {"points": 500})

        storage.run_transaction(fn)

        assert attempts == [None, {"points": 7}]
        assert storage.snapshot(USERS, "u1") == {"points": 7}

    def test_gives_up_after_max_attempts(self):
        storage = InMemoryStorage(max_attempts=3)
        storage.put(USERS, "u1", {"points": 100})
        calls = []

        def fn(txn):
            data = txn.get(USERS, "u1")
            calls.append(1)
            storage.put(USERS, "u1", {"points": data["points"] + 1})
            txn.update(USERS, "u1", {"points": 0})

        with pytest.raises(TransactionAbortedError):
            storage.run_transaction(fn)

        assert len(calls) == 3
        assert storage.snapshot(USERS, "u1")["points"] == 103

    def test_reads_after_writes_are_rejected(self):
        storage = InMemoryStorage()
        storage.put(USERS, "u1", {"points": 1})

        def fn(txn):
            txn.update(USERS, "u1", {"points": 2})
            txn.get(USERS, "u1")

        with pytest.raises(StorageError):
            storage.run_transaction(fn)

    def test_update_of_missing_document_fails_atomically(self):
        storage = InMemoryStorage()
        storage.put(USERS, "u1", {"points": 1})

        def fn(txn):
            txn.update(USERS, "u1", {"points": 2})
            txn.update(USERS, "ghost", {"points": 2})

        with pytest.raises(StorageError):
            storage.run_transaction(fn)

        assert storage.snapshot(USERS, "u1")["points"] == 1

    def test_server_timestamp_resolved_at_commit(self):
        storage = InMemoryStorage(clock=lambda: FIXED_NOW)
        storage.put(LISTINGS, "l1", {"status": "active"})

        storage.run_transaction(lambda txn: txn.update(LISTINGS, "l1", {"fulfilledTimestamp": SERVER_TIMESTAMP}))

        assert storage.snapshot(LISTINGS, "l1")["fulfilledTimestamp"] == FIXED_NOW

    def test_server_timestamp_in_set_and_nested_copy(self):
        """Buffered writes keep the timestamp placeholder recognisable."""
        storage = InMemoryStorage(clock=lambda: FIXED_NOW)

        storage.run_transaction(lambda txn: txn.set(LISTINGS, "l2", {"timestamp": SERVER_TIMESTAMP}))

        assert copy.deepcopy({"t": SERVER_TIMESTAMP})["t"] is SERVER_TIMESTAMP
        assert copy.copy(SERVER_TIMESTAMP) is SERVER_TIMESTAMP
        assert storage.snapshot(LISTINGS, "l2") == {"timestamp": FIXED_NOW}

    def test_snapshots_are_copies(self):
        storage = InMemoryStorage()
        storage.put(USERS, "u1", {"points": 1, "tags": ["a"]})

        storage.snapshot(USERS, "u1")["tags"].append("b")

        assert storage.snapshot(USERS, "u1")["tags"] == ["a"]

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            InMemoryStorage(max_attempts=0)


class TestDocumentDecoding:
    def test_user_account(self):
        account = UserAccount.from_document("u1", {"points": 42, "name": "Alice", "extra": True})

        assert account.id == "u1"
        assert account.points == 42
        assert account.can_afford(42)
        assert not account.can_afford(43)

    @pytest.mark.parametrize("data", [{}, {"points": -1}, {"points": "10"}, {"points": 1.5}])
    def test_malformed_user_account(self, data):
        with pytest.raises(MalformedDocumentError) as exc_info:
            UserAccount.from_document("u1", data)

        assert exc_info.value.collection == USERS
        assert exc_info.value.doc_id == "u1"

    def test_listing_aliases(self):
        listing = Listing.from_document("l1", {"ownerID": "a", "price": "200", "status": "active"})

        assert listing.owner_id == "a"
        assert listing.status == ListingStatus.ACTIVE
        assert listing.point_value() == 200
        assert listing.can_fulfill()

    def test_fulfilled_listing_requires_fulfiller(self):
        with pytest.raises(MalformedDocumentError):
            Listing.from_document("l1", {"ownerID": "a", "price": "1", "status": "fulfilled"})

    def test_unknown_status(self):
        with pytest.raises(MalformedDocumentError):
            Listing.from_document("l1", {"ownerID": "a", "price": "1", "status": "archived"})
