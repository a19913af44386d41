"""
Organization model.

Organizations are the tenants of the feedback platform. Role assignments may be scoped
to one organization; admin assignments always are.
"""
from sqlalchemy import String, Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Organization(Base, TimestampMixin):
    """
    Organization model.

    ``name`` is not unique across the platform; ``slug`` is. Imports that identify an
    organization by name alone must therefore resolve to exactly one row.
    """
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r}, slug={self.slug!r})>"
