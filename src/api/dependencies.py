"""
FastAPI dependency injection.

Routes get the record store, the services built on it, settings and the
caller's identity from here. A request gets one store for its lifetime;
in Snowflake mode that means one connection, closed after the response.
"""

import logging
from functools import lru_cache
from typing import Annotated, Generator, Optional

from fastapi import Depends, Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..core.events import EventBus
from ..core.records.ledger import CreditLedger
from ..core.records.store import DocumentStore
from ..core.records.tracker import PersonalRecordTracker
from ..core.records.workouts import WorkoutLogger
from ..infrastructure.memory.store import InMemoryDocumentStore
from ..infrastructure.snowflake.client import SnowflakeConfig, get_snowflake_connection
from ..infrastructure.snowflake.repositories.documents import SnowflakeDocumentStore

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Global mock store (shared across requests so data persists in mock mode)
_mock_document_store: Optional[InMemoryDocumentStore] = None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate API key from request header.

    Raises 403 if key is invalid or missing.
    """
    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    if api_key not in settings.api_keys_list:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": api_key[:8] if api_key else ""}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


async def get_submitter_id(
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> str:
    """
    Identity of the caller, already verified upstream.

    Authentication happens before requests reach this service; we only
    require that the identity is present.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-Id header required",
        )
    return x_user_id


# ---------------------------------------------------------------------------
# Store and Service Dependencies
# ---------------------------------------------------------------------------

@lru_cache()
def get_event_bus() -> EventBus:
    """One event bus per process; subscribers are registered at startup."""
    return EventBus()


def get_document_store(
    settings: Annotated[Settings, Depends(get_settings)],
) -> Generator[DocumentStore, None, None]:
    """
    Provide the record store for this request.

    Snowflake mode opens a connection, wraps it in a store and closes it
    once the request is done. Mock mode shares one in-memory store across
    requests so records survive between calls.
    """
    global _mock_document_store

    if settings.snowflake_mock_mode:
        if _mock_document_store is None:
            _mock_document_store = InMemoryDocumentStore()
            logger.info("Created shared in-memory document store")

        logger.debug("Using shared in-memory document store")
        yield _mock_document_store
    else:
        config = SnowflakeConfig(
            account=settings.snowflake_account,
            user=settings.snowflake_user,
            password=settings.snowflake_password or None,
            private_key_path=settings.snowflake_private_key_path,
            private_key_base64=settings.snowflake_private_key_base64,
            database=settings.snowflake_database,
            schema=settings.snowflake_schema,
            warehouse=settings.snowflake_warehouse,
            role=settings.snowflake_role,
        )

        with get_snowflake_connection(config) as conn:
            logger.debug("Created SnowflakeDocumentStore with Snowflake connection")
            yield SnowflakeDocumentStore(conn)


def get_workout_logger(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[DocumentStore, Depends(get_document_store)],
    events: Annotated[EventBus, Depends(get_event_bus)],
) -> WorkoutLogger:
    """Provide the workout logger bound to this request's store."""
    return WorkoutLogger(
        store=store,
        tracker=PersonalRecordTracker(history_cap=settings.record_history_cap),
        max_attempts=settings.transaction_max_attempts,
        backoff_seconds=settings.transaction_backoff_seconds,
        events=events,
    )


def get_credit_ledger(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[DocumentStore, Depends(get_document_store)],
    events: Annotated[EventBus, Depends(get_event_bus)],
) -> CreditLedger:
    """Provide the credit ledger bound to this request's store."""
    return CreditLedger(
        store=store,
        max_attempts=settings.transaction_max_attempts,
        backoff_seconds=settings.transaction_backoff_seconds,
        events=events,
    )


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
SubmitterId = Annotated[str, Depends(get_submitter_id)]
DocumentStoreDep = Annotated[DocumentStore, Depends(get_document_store)]
WorkoutLoggerDep = Annotated[WorkoutLogger, Depends(get_workout_logger)]
CreditLedgerDep = Annotated[CreditLedger, Depends(get_credit_ledger)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
