"""
Unit tests for the transaction runner and the in-memory document store.

The in-memory store is what mock mode and the service tests run on, so
its conflict detection has to be as strict as the production store's.
"""

from datetime import datetime, timezone

import pytest

from src.core.records.store import (
    SERVER_TIMESTAMP,
    DocumentExistsError,
    DocumentNotFoundError,
    Transaction,
    TransactionAbortedError,
    TransactionConflictError,
    WriteOp,
    apply_writes,
    resolve_server_timestamps,
    run_transaction,
)
from src.infrastructure.memory.store import InMemoryDocumentStore

NOW = datetime(2024, 3, 1, 12, tzinfo=timezone.utc)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


def put(store: InMemoryDocumentStore, path: str, data: dict) -> None:
    """Write a document outside any test transaction."""
    run_transaction(store, lambda txn: txn.set(path, data))


# ---------------------------------------------------------------------------
# Write Semantics
# ---------------------------------------------------------------------------

class TestApplyWrites:
    """Tests for create/set/update semantics shared by all stores."""

    def test_create_on_existing_document_fails(self):
        with pytest.raises(DocumentExistsError):
            apply_writes("a", {"x": 1}, [WriteOp("create", "a", {"x": 2})], NOW)

    def test_update_on_missing_document_fails(self):
        with pytest.raises(DocumentNotFoundError):
            apply_writes("a", None, [WriteOp("update", "a", {"x": 2})], NOW)

    def test_set_replaces_and_merge_set_merges(self):
        current = {"x": 1, "y": 2}

        replaced = apply_writes("a", current, [WriteOp("set", "a", {"x": 5})], NOW)
        merged = apply_writes("a", current, [WriteOp("set", "a", {"x": 5}, merge=True)], NOW)

        assert replaced == {"x": 5}
        assert merged == {"x": 5, "y": 2}
        assert current == {"x": 1, "y": 2}

    def test_server_timestamps_resolve_inside_lists(self):
        data = {"timestamp": SERVER_TIMESTAMP, "history": [{"timestamp": SERVER_TIMESTAMP}]}

        resolved = resolve_server_timestamps(data, NOW)

        assert resolved == {"timestamp": NOW, "history": [{"timestamp": NOW}]}


# ---------------------------------------------------------------------------
# Transaction Runner
# ---------------------------------------------------------------------------

class TestRunTransaction:
    """Tests for retry and abort behavior."""

    def test_returns_body_result(self, store):
        result = run_transaction(store, lambda txn: txn.set("docs/a", {"v": 1}) or "done")

        assert result == "done"
        assert store.read("docs/a").data == {"v": 1}

    def test_conflict_is_retried_against_fresh_state(self, store):
        """A concurrent commit between read and commit forces a re-run."""
        put(store, "counters/c", {"n": 0})
        attempts = []

        def body(txn: Transaction) -> None:
            snapshot = txn.get("counters/c")
            attempts.append(snapshot.data["n"])
            if len(attempts) == 1:
                # Another writer sneaks in before our commit
                put(store, "counters/c", {"n": 10})
            txn.update("counters/c", {"n": snapshot.data["n"] + 1})

        run_transaction(store, body, max_attempts=3)

        assert attempts == [0, 10]
        assert store.read("counters/c").data == {"n": 11}

    def test_exhausted_budget_raises_and_writes_nothing(self, store):
        put(store, "counters/c", {"n": 0})

        def body(txn: Transaction) -> None:
            txn.get("counters/c")
            put(store, "counters/c", {"n": 99})
            txn.set("other/doc", {"written": True})

        with pytest.raises(TransactionAbortedError) as exc_info:
            run_transaction(store, body, max_attempts=3)

        assert exc_info.value.attempts == 3
        assert not store.read("other/doc").exists

    def test_non_conflict_errors_propagate_without_retry(self, store):
        calls = []

        def body(txn: Transaction) -> None:
            calls.append(1)
            txn.set("docs/a", {"v": 1})
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            run_transaction(store, body, max_attempts=5)

        assert len(calls) == 1
        assert not store.read("docs/a").exists

    def test_read_only_transaction_never_conflicts(self, store):
        put(store, "docs/a", {"v": 1})

        def body(txn: Transaction) -> int:
            value = txn.get("docs/a").data["v"]
            put(store, "docs/a", {"v": 2})
            return value

        assert run_transaction(store, body, max_attempts=1) == 1

    def test_rereading_changed_document_conflicts_immediately(self, store):
        put(store, "docs/a", {"v": 1})
        txn = Transaction(store)
        txn.get("docs/a")
        put(store, "docs/a", {"v": 2})

        with pytest.raises(TransactionConflictError):
            txn.get("docs/a")

    def test_max_attempts_must_be_positive(self, store):
        with pytest.raises(ValueError):
            run_transaction(store, lambda txn: None, max_attempts=0)


# ---------------------------------------------------------------------------
# In-Memory Store
# ---------------------------------------------------------------------------

class TestInMemoryDocumentStore:
    """Tests for versioning and collection listing."""

    def test_missing_document_has_version_zero(self, store):
        snapshot = store.read("users/nobody")

        assert not snapshot.exists
        assert snapshot.version == 0

    def test_each_commit_bumps_version(self, store):
        put(store, "docs/a", {"v": 1})
        put(store, "docs/a", {"v": 2})

        assert store.read("docs/a").version == 2

    def test_stale_read_version_is_rejected(self, store):
        put(store, "docs/a", {"v": 1})

        with pytest.raises(TransactionConflictError):
            store.commit({"docs/a": 0}, [WriteOp("set", "docs/a", {"v": 2})])

        assert store.read("docs/a").data == {"v": 1}

    def test_failed_write_leaves_other_writes_unapplied(self, store):
        """Commits are all-or-nothing even when one write is invalid."""
        writes = [
            WriteOp("set", "docs/a", {"v": 1}),
            WriteOp("update", "docs/missing", {"v": 1}),
        ]

        with pytest.raises(DocumentNotFoundError):
            store.commit({}, writes)

        assert not store.read("docs/a").exists

    def test_commit_times_never_decrease(self, store):
        for i in range(20):
            run_transaction(store, lambda txn, i=i: txn.set(f"log/{i}", {"timestamp": SERVER_TIMESTAMP}))

        times = [store.read(f"log/{i}").data["timestamp"] for i in range(20)]
        assert times == sorted(times)

    def test_reads_return_copies(self, store):
        put(store, "docs/a", {"items": [1]})

        store.read("docs/a").data["items"].append(2)

        assert store.read("docs/a").data == {"items": [1]}

    def test_list_collection_orders_and_limits(self, store):
        for i in range(5):
            put(store, f"users/a1/workouts/w{i}", {"timestamp": i})
        put(store, "users/a1/workouts/w9/notes/n1", {"timestamp": 100})
        put(store, "users/a2/workouts/x", {"timestamp": 50})

        snapshots = store.list_collection("users/a1/workouts", order_by="timestamp", descending=True, limit=3)

        assert [s.path for s in snapshots] == [
            "users/a1/workouts/w4",
            "users/a1/workouts/w3",
            "users/a1/workouts/w2",
        ]
