"""
Declarative base, ULID ids and timestamp columns shared by every model.
"""
from datetime import datetime
from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import ulid


def generate_ulid() -> str:
    """26-char ULID; sorts by creation time."""
    return ulid.new().str


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """created_at / updated_at maintained by the database."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
