"""
In-memory document store for mock mode and tests.

Behaves like the production store where it matters: every document has a
version, commits validate the versions a transaction read, and all writes
of a commit become visible together or not at all. Data is lost when the
process exits.
"""

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence
from uuid import uuid4

from src.core.records.store import (
    DocumentSnapshot,
    TransactionConflictError,
    WriteOp,
    apply_writes,
    group_writes,
)

logger = logging.getLogger(__name__)


def _sort_key(value: Any) -> tuple:
    # None sorts first; mixed types fall back to their string form
    if value is None:
        return (0, "")
    if isinstance(value, (int, float, datetime)):
        return (1, value)
    return (2, str(value))


class InMemoryDocumentStore:
    """
    Thread-safe versioned document storage.

    Not suitable for production, but perfect for:
    - Local development
    - Unit tests (including concurrency tests)
    - CI/CD environments
    """

    def __init__(self) -> None:
        # path -> (data, version)
        self._documents: dict[str, tuple[dict[str, Any], int]] = {}
        self._lock = threading.Lock()
        self._last_commit_time: Optional[datetime] = None

        logger.info("Initialized in-memory document store")

    def new_id(self) -> str:
        return uuid4().hex

    def read(self, path: str) -> DocumentSnapshot:
        with self._lock:
            stored = self._documents.get(path)
            if stored is None:
                return DocumentSnapshot(path=path, data=None, version=0)
            data, version = stored
            return DocumentSnapshot(path=path, data=copy.deepcopy(data), version=version)

    def commit(self, reads: Mapping[str, int], writes: Sequence[WriteOp]) -> None:
        with self._lock:
            for path, version in reads.items():
                if self._version(path) != version:
                    raise TransactionConflictError(f"Document {path} was modified concurrently")

            now = self._next_commit_time()

            # Compute every result first so a failing write leaves nothing behind
            results: dict[str, Optional[dict[str, Any]]] = {}
            for path, ops in group_writes(writes).items():
                stored = self._documents.get(path)
                current = stored[0] if stored else None
                results[path] = apply_writes(path, current, ops, now)

            for path, data in results.items():
                self._documents[path] = (data, self._version(path) + 1)

        logger.debug(
            "In-memory commit applied",
            extra={"documents": list(results), "commit_time": now.isoformat()}
        )

    def list_collection(
        self,
        collection_path: str,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[DocumentSnapshot]:
        prefix = collection_path.rstrip("/") + "/"

        with self._lock:
            snapshots = [
                DocumentSnapshot(path=path, data=copy.deepcopy(data), version=version)
                for path, (data, version) in self._documents.items()
                if path.startswith(prefix) and "/" not in path[len(prefix):]
            ]

        if order_by:
            snapshots.sort(key=lambda s: _sort_key(s.data.get(order_by)), reverse=descending)

        if limit is not None:
            snapshots = snapshots[:limit]

        return snapshots

    # Helper methods for testing
    def _clear(self) -> None:
        """Clear all documents (for test cleanup)."""
        with self._lock:
            self._documents.clear()
            self._last_commit_time = None

    def _version(self, path: str) -> int:
        stored = self._documents.get(path)
        return stored[1] if stored else 0

    def _next_commit_time(self) -> datetime:
        """Wall-clock time, but never earlier than the previous commit."""
        now = datetime.now(timezone.utc)
        if self._last_commit_time and now < self._last_commit_time:
            now = self._last_commit_time
        self._last_commit_time = now
        return now
