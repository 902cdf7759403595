"""
In-memory record store.

Used in mock mode so the API runs without provisioning Snowflake.
"""

from .store import InMemoryDocumentStore

__all__ = ["InMemoryDocumentStore"]
