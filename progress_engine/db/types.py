"""Column types shared by the engine tables."""
from __future__ import annotations

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON


def json_column_type():
    """JSONB on PostgreSQL, plain JSON elsewhere."""

    return JSONB().with_variant(JSON(), "sqlite")
