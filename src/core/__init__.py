"""
Core business logic for coach/athlete training records.

This module is framework-agnostic - it doesn't import FastAPI, Snowflake,
or any infrastructure concerns. Storage is reached only through the
DocumentStore protocol, so the record logic can be tested against an
in-memory store.
"""
