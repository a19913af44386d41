"""
Role, RoleAssignment and AuditLog models.

A RoleAssignment binds (user, role, organization-or-global). Its natural key is
(user_id, role_id, organization_id); rows are revoked by flipping ``is_active`` and are
kept for history.
"""
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, JSON, Text, Boolean, DateTime, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.features.organizations.models import Organization  # noqa: F401


class Role(Base, TimestampMixin):
    """
    Named role carrying a list of permission strings.

    System roles (super_admin, admin, manager, employee) are seeded and cannot be
    renamed or deleted.
    """
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # e.g. ["users:read", "cycles:manage"]
    permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    is_system_role: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, system={self.is_system_role})>"


class RoleAssignment(Base):
    """
    A role granted to a user, optionally scoped to an organization.

    ``organization_id`` NULL means global scope. The unique constraint does not cover
    NULL organizations on most databases, so the store looks assignments up by natural
    key (with ``IS NULL``) before inserting.
    """
    __tablename__ = "user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role_id", "organization_id", name="uq_user_roles_natural_key"),
        Index("ix_user_roles_user_active", "user_id", "is_active"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    role_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    granted_by: Mapped[str | None] = mapped_column(String(26), nullable=True)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    role: Mapped["Role"] = relationship("Role", lazy="selectin")
    organization: Mapped["Organization"] = relationship("Organization", lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<RoleAssignment(user_id={self.user_id}, role_id={self.role_id}, "
            f"org_id={self.organization_id}, active={self.is_active})>"
        )


class AuditLog(Base, TimestampMixin):
    """
    Audit log for grants and revocations made through the admin-user service.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    user_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    organization_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
