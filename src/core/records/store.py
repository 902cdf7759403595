"""
Record store contract and the optimistic transaction runner.

The core never talks to a database directly. It reads and writes documents
through a `DocumentStore`, which only has to offer two primitives:
- read a document together with its version
- atomically validate a set of read versions and apply a set of writes

Everything else (staging writes, detecting a stale re-read, retrying a
conflicted transaction) lives here, so every store implementation gets the
same retry behavior.
"""

import copy
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Literal, Mapping, Optional, Protocol, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

WriteKind = Literal["create", "set", "update"]


class _ServerTimestamp:
    """Placeholder replaced by the commit time when a write is applied."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __deepcopy__(self, memo):
        return self


SERVER_TIMESTAMP = _ServerTimestamp()


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class RecordStoreError(Exception):
    """Base class for record store failures."""
    pass


class TransactionConflictError(RecordStoreError):
    """A document read by the transaction changed before commit."""
    pass


class TransactionAbortedError(RecordStoreError):
    """Raised when a transaction still conflicts after the retry budget."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Transaction aborted after {attempts} conflicting attempts")
        self.attempts = attempts


class StoreUnavailableError(RecordStoreError):
    """Raised when the store cannot be reached."""
    pass


class DocumentExistsError(RecordStoreError):
    """Raised when a create targets a document that already exists."""
    pass


class DocumentNotFoundError(RecordStoreError):
    """Raised when an update targets a document that doesn't exist."""
    pass


class CorruptDocumentError(RecordStoreError):
    """Raised when a stored document body can't be decoded."""
    pass


# ---------------------------------------------------------------------------
# Documents and writes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DocumentSnapshot:
    """
    A document as read from the store.

    Version 0 means the document does not exist. Every committed write
    bumps the version by one, which is what optimistic validation compares.
    """
    path: str
    data: Optional[dict[str, Any]]
    version: int = 0

    @property
    def exists(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class WriteOp:
    """A staged write, applied only when the transaction commits."""
    kind: WriteKind
    path: str
    data: dict[str, Any] = field(default_factory=dict)
    merge: bool = False


def resolve_server_timestamps(value: Any, now: datetime) -> Any:
    """Replace every SERVER_TIMESTAMP in value (recursively) with now."""
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {key: resolve_server_timestamps(item, now) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_server_timestamps(item, now) for item in value]
    return value


def apply_writes(
    path: str,
    current: Optional[dict[str, Any]],
    ops: Sequence[WriteOp],
    now: datetime,
) -> Optional[dict[str, Any]]:
    """
    Compute the resulting document after applying ops in order.

    Shared by every store so create/set/update mean the same thing
    regardless of where documents physically live.
    """
    result = copy.deepcopy(current)

    for op in ops:
        data = resolve_server_timestamps(copy.deepcopy(op.data), now)

        if op.kind == "create":
            if result is not None:
                raise DocumentExistsError(f"Document {path} already exists")
            result = data
        elif op.kind == "set":
            if op.merge and result is not None:
                result.update(data)
            else:
                result = data
        elif op.kind == "update":
            if result is None:
                raise DocumentNotFoundError(f"Document {path} not found")
            result.update(data)
        else:
            raise ValueError(f"Unknown write kind: {op.kind}")

    return result


def group_writes(writes: Sequence[WriteOp]) -> dict[str, list[WriteOp]]:
    """Group staged writes by document path, keeping staging order."""
    grouped: dict[str, list[WriteOp]] = {}
    for op in writes:
        grouped.setdefault(op.path, []).append(op)
    return grouped


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------

class DocumentStore(Protocol):
    """
    Interface for a document database with optimistic commits.

    Implementations:
    - InMemoryDocumentStore: mock mode and tests
    - SnowflakeDocumentStore: production persistence
    """

    def new_id(self) -> str:
        """Generate an opaque document identifier."""
        ...

    def read(self, path: str) -> DocumentSnapshot:
        """Read a document and its current version."""
        ...

    def commit(self, reads: Mapping[str, int], writes: Sequence[WriteOp]) -> None:
        """
        Validate read versions and apply writes as one atomic unit.

        Raises TransactionConflictError (nothing applied) if any read
        document has a different version than recorded.
        """
        ...

    def list_collection(
        self,
        collection_path: str,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[DocumentSnapshot]:
        """List documents directly under a collection path."""
        ...


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

class Transaction:
    """
    One attempt of a read-evaluate-write unit.

    Reads go straight to the store and their versions are remembered.
    Writes are buffered and only reach the store on commit, so an
    exception anywhere in the transaction body leaves no trace.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._reads: dict[str, int] = {}
        self._writes: list[WriteOp] = []
        self._committed = False

    @property
    def reads(self) -> dict[str, int]:
        return dict(self._reads)

    @property
    def writes(self) -> list[WriteOp]:
        return list(self._writes)

    def get(self, path: str) -> DocumentSnapshot:
        snapshot = self._store.read(path)

        previous = self._reads.setdefault(path, snapshot.version)
        if previous != snapshot.version:
            # Someone committed between our two reads of the same document
            raise TransactionConflictError(f"Document {path} changed during transaction")

        return snapshot

    def create(self, path: str, data: dict[str, Any]) -> None:
        self._stage(WriteOp(kind="create", path=path, data=data))

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        self._stage(WriteOp(kind="set", path=path, data=data, merge=merge))

    def update(self, path: str, data: dict[str, Any]) -> None:
        self._stage(WriteOp(kind="update", path=path, data=data))

    def commit(self) -> None:
        if self._committed:
            raise RuntimeError("Transaction already committed")
        self._committed = True

        # A read-only transaction observed a consistent snapshot already
        if not self._writes:
            return

        self._store.commit(self._reads, self._writes)

    def _stage(self, op: WriteOp) -> None:
        if self._committed:
            raise RuntimeError("Cannot write to a committed transaction")
        self._writes.append(op)


def _backoff_delay(attempt: int, base_seconds: float) -> float:
    """Exponential backoff with jitter so colliding writers spread out."""
    return base_seconds * (2 ** (attempt - 1)) * random.uniform(0.5, 1.0)


def run_transaction(
    store: DocumentStore,
    body: Callable[[Transaction], T],
    max_attempts: int = 5,
    backoff_seconds: float = 0.0,
) -> T:
    """
    Run body inside a transaction, retrying on conflict.

    The body may run several times, each time against fresh reads, so it
    must not have side effects outside the transaction. Any exception
    other than a conflict propagates immediately with nothing committed.

    Returns whatever the body returned on the attempt that committed.
    Raises TransactionAbortedError when every attempt conflicted.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        transaction = Transaction(store)

        try:
            result = body(transaction)
            transaction.commit()
        except TransactionConflictError as e:
            logger.info(
                "Transaction conflict, retrying",
                extra={"attempt": attempt, "max_attempts": max_attempts, "error": str(e)}
            )
            if attempt < max_attempts and backoff_seconds > 0:
                time.sleep(_backoff_delay(attempt, backoff_seconds))
            continue

        if attempt > 1:
            logger.debug("Transaction committed after retry", extra={"attempt": attempt})
        return result

    logger.warning(
        "Transaction retry budget exhausted",
        extra={"max_attempts": max_attempts}
    )
    raise TransactionAbortedError(max_attempts)
