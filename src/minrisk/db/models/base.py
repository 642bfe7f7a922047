"""Declarative base and column types shared by the appetite engine tables.

Production runs on PostgreSQL; the integration tests run the same models on
SQLite through aiosqlite. The two column types below let one set of models
serve both:

- ``PortableUUID`` for every organization, risk, tolerance, KRI, breach and
  run identifier.
- ``PortableJSON`` for materiality rules, breach-rule settings, verdict
  snapshots and breach transition trails.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _as_uuid(value: UUID | str) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


class PortableJSON(TypeDecorator):
    """JSONB on PostgreSQL, JSON text elsewhere.

    A Python ``None`` is written as SQL NULL rather than the JSON literal
    ``null``, so an appetite category without a materiality rule or a risk
    that has never been scored matches ``IS NULL``.
    """

    impl = JSON
    cache_ok = True

    def __init__(self) -> None:
        super().__init__(none_as_null=True)

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB(none_as_null=True))
        return dialect.type_descriptor(JSON(none_as_null=True))


class PortableUUID(TypeDecorator):
    """Native UUID on PostgreSQL, 36-character text elsewhere.

    Accepts ``uuid.UUID`` or its string form on the way in, so ids taken
    from log lines or API payloads can be used in filters unchanged. Always
    returns ``uuid.UUID``.

    Raises:
        ValueError: On bind, if a string is not a valid UUID.
    """

    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        identifier = _as_uuid(value)
        return identifier if dialect.name == "postgresql" else str(identifier)

    def process_result_value(self, value, dialect):
        if value is None or value == "":
            return None
        return _as_uuid(value)


class Base(DeclarativeBase):
    """Declarative base for the appetite engine tables."""


class TimestampMixin:
    """Row audit timestamps, set by the database.

    ``updated_at`` also moves on bulk UPDATE statements, which is how breach
    transitions and KRI tightening are written.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
