"""Database-agnostic type definitions for SQLAlchemy models.

Every column type here works on both PostgreSQL (production) and SQLite
(local development and tests).
"""
from sqlalchemy import JSON, Numeric, Uuid

# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid

# Money columns keep four decimal places so commission rounding is preserved
MoneyType = Numeric(14, 4)

# Commission / bonus rates as fractions (0.3000 = 30%)
RateType = Numeric(6, 4)
