"""
Repository pattern implementations for Snowflake.

Repositories translate between documents and database representations.
"""

from .documents import SnowflakeDocumentStore

__all__ = ["SnowflakeDocumentStore"]
