"""
Snowflake-backed document store.

Documents are stored as JSON in a VARIANT column, one row per document
path, with an integer version column for optimistic concurrency:

    record_documents(path, collection_path, body, version, updated_at)

A commit runs in one explicit Snowflake transaction. Every write is a
conditional statement that only matches the version the application
transaction read; if any statement matches zero rows, somebody else got
there first, the whole transaction is rolled back and the caller retries.

The application code never writes SQL directly; it asks the store for
documents by path.
"""

import json
import logging
from datetime import date, datetime
from typing import Any, Mapping, Optional, Sequence
from uuid import uuid4

from src.core.records.store import (
    CorruptDocumentError,
    DocumentSnapshot,
    RecordStoreError,
    StoreUnavailableError,
    TransactionConflictError,
    WriteOp,
    apply_writes,
    group_writes,
)

from ..client import SnowflakeConnection

logger = logging.getLogger(__name__)

DOCUMENTS_TABLE = "record_documents"

CREATE_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {DOCUMENTS_TABLE} (
    path STRING NOT NULL PRIMARY KEY,
    collection_path STRING NOT NULL,
    body VARIANT,
    version NUMBER(38, 0) NOT NULL,
    updated_at TIMESTAMP_TZ
)
"""

# Snowflake JSON paths can't be bound as parameters, so order_by is whitelisted
_ORDERABLE_FIELDS = {"timestamp"}


def _json_default(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _collection_of(path: str) -> str:
    return path.rsplit("/", 1)[0]


class SnowflakeDocumentStore:
    """
    Versioned document persistence on Snowflake.

    Each method maps to a DocumentStore operation:
    - read: Load one document and its version
    - commit: Validate read versions and apply writes atomically
    - list_collection: Documents directly under a collection path
    """

    def __init__(self, connection: SnowflakeConnection) -> None:
        self._conn = connection

    def new_id(self) -> str:
        return uuid4().hex

    def read(self, path: str) -> DocumentSnapshot:
        cursor = self._conn.cursor()

        try:
            return self._select(cursor, path)

        except RecordStoreError:
            raise

        except Exception as e:
            logger.error(
                "Failed to read document",
                extra={"path": path, "error": str(e)}
            )
            raise StoreUnavailableError(f"Failed to read {path}: {e}") from e

        finally:
            cursor.close()

    def commit(self, reads: Mapping[str, int], writes: Sequence[WriteOp]) -> None:
        cursor = self._conn.cursor()

        try:
            cursor.execute("BEGIN")

            cursor.execute("SELECT CURRENT_TIMESTAMP()")
            now = cursor.fetchone()[0]

            grouped = group_writes(writes)

            # Read-only documents still have to be unchanged at commit time
            for path, version in reads.items():
                if path not in grouped:
                    self._assert_version(cursor, path, version)

            for path, ops in grouped.items():
                if path in reads:
                    expected_version = reads[path]
                    current = self._select(cursor, path).data if expected_version else None
                    if expected_version and current is None:
                        raise TransactionConflictError(f"Document {path} was deleted concurrently")
                else:
                    # Blind write: base it on whatever is there right now
                    snapshot = self._select(cursor, path)
                    expected_version, current = snapshot.version, snapshot.data

                document = apply_writes(path, current, ops, now)
                self._write(cursor, path, document, expected_version, now)

            self._conn.commit()

            logger.debug(
                "Snowflake commit applied",
                extra={"documents": list(grouped)}
            )

        except RecordStoreError:
            self._rollback()
            raise

        except Exception as e:
            self._rollback()
            logger.error(
                "Failed to commit documents",
                extra={"paths": [op.path for op in writes], "error": str(e)}
            )
            raise StoreUnavailableError(f"Commit failed: {e}") from e

        finally:
            cursor.close()

    def list_collection(
        self,
        collection_path: str,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[DocumentSnapshot]:
        if order_by is not None and order_by not in _ORDERABLE_FIELDS:
            raise ValueError(f"Cannot order by {order_by}")

        order_clause = ""
        if order_by:
            direction = "DESC" if descending else "ASC"
            order_clause = f"ORDER BY body:{order_by}::TIMESTAMP_TZ {direction}"

        limit_clause = "LIMIT %s" if limit is not None else ""
        params: tuple = (collection_path.rstrip("/"),)
        if limit is not None:
            params += (limit,)

        cursor = self._conn.cursor()

        try:
            cursor.execute(f"""
                SELECT path, body, version
                FROM {DOCUMENTS_TABLE}
                WHERE collection_path = %s
                {order_clause}
                {limit_clause}
            """, params)

            return [
                DocumentSnapshot(path=row[0], data=self._parse_body(row[1]), version=int(row[2]))
                for row in cursor.fetchall()
            ]

        except RecordStoreError:
            raise

        except Exception as e:
            logger.error(
                "Failed to list collection",
                extra={"collection_path": collection_path, "error": str(e)}
            )
            raise StoreUnavailableError(f"Failed to list {collection_path}: {e}") from e

        finally:
            cursor.close()

    def create_schema(self) -> None:
        """Create the documents table if it doesn't exist."""
        cursor = self._conn.cursor()
        try:
            cursor.execute(CREATE_TABLE_SQL)
            self._conn.commit()
            logger.info("Ensured documents table", extra={"table": DOCUMENTS_TABLE})
        finally:
            cursor.close()

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    def _select(self, cursor, path: str) -> DocumentSnapshot:
        cursor.execute(f"""
            SELECT body, version
            FROM {DOCUMENTS_TABLE}
            WHERE path = %s
        """, (path,))

        row = cursor.fetchone()
        if not row:
            return DocumentSnapshot(path=path, data=None, version=0)

        return DocumentSnapshot(path=path, data=self._parse_body(row[0]), version=int(row[1]))

    def _assert_version(self, cursor, path: str, version: int) -> None:
        if version == 0:
            cursor.execute(f"""
                SELECT COUNT(*) FROM {DOCUMENTS_TABLE} WHERE path = %s
            """, (path,))
            if cursor.fetchone()[0]:
                raise TransactionConflictError(f"Document {path} was created concurrently")
            return

        # No-op update locks the row and only matches an unchanged version
        cursor.execute(f"""
            UPDATE {DOCUMENTS_TABLE}
            SET version = version
            WHERE path = %s AND version = %s
        """, (path, version))
        if cursor.rowcount != 1:
            raise TransactionConflictError(f"Document {path} was modified concurrently")

    def _write(
        self,
        cursor,
        path: str,
        document: Optional[dict[str, Any]],
        expected_version: int,
        now: datetime,
    ) -> None:
        body = json.dumps(document, default=_json_default)

        if expected_version == 0:
            cursor.execute(f"""
                MERGE INTO {DOCUMENTS_TABLE} AS target
                USING (SELECT %s AS path) AS source
                ON target.path = source.path
                WHEN NOT MATCHED THEN INSERT (
                    path, collection_path, body, version, updated_at
                ) VALUES (%s, %s, PARSE_JSON(%s), 1, %s)
            """, (path, path, _collection_of(path), body, now))
        else:
            cursor.execute(f"""
                UPDATE {DOCUMENTS_TABLE}
                SET body = PARSE_JSON(%s),
                    version = version + 1,
                    updated_at = %s
                WHERE path = %s AND version = %s
            """, (body, now, path, expected_version))

        if cursor.rowcount != 1:
            raise TransactionConflictError(f"Document {path} was modified concurrently")

    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except Exception as e:
            logger.warning("Rollback failed", extra={"error": str(e)})

    def _parse_body(self, variant_data) -> Optional[dict[str, Any]]:
        """
        Parse a VARIANT body that might be a string or already parsed.

        snowflake-connector-python returns VARIANT as a JSON string; other
        drivers may hand back a dict. Timestamps stay ISO strings here; the
        record models parse the fields they know to be timestamps.
        """
        if variant_data is None:
            return None

        if not isinstance(variant_data, str):
            return variant_data

        try:
            return json.loads(variant_data)
        except ValueError as e:
            logger.error("Stored document body is not valid JSON", extra={"error": str(e)})
            raise CorruptDocumentError(f"Stored document body is not valid JSON: {e}") from e
