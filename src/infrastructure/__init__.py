"""
Infrastructure layer - external service integrations.

Each subdirectory wraps a storage backend for the record store:
- snowflake: Production persistence
- memory: In-memory store for mock mode and tests

These wrappers translate between stored rows and the plain documents
the core works with.
"""
