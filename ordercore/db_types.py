"""Database-agnostic type definitions for SQLAlchemy models.

Models use these instead of the PostgreSQL dialect types directly so the
same metadata can be created on SQLite for local runs and tests.
"""
from sqlalchemy import JSON, Uuid

# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) hex on SQLite
UUIDType = Uuid
