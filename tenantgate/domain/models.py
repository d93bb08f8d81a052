from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from tenantgate.domain.lifecycle import SUBSCRIPTION_STATUSES


TENANT_TYPES = (
    "platform",
    "hospital",
    "clinic",
    "pharmacy",
    "laboratory",
    "insurance_provider",
    "medical_supplier",
)


class Base(DeclarativeBase):
    pass


class Tenant(Base):
    __tablename__ = "tenants"
    __table_args__ = (
        Index("ix_tenants_trial_sweep", "subscription_status", "is_active", "trial_end_date"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    # Organizational type drives role rules such as front-desk availability.
    type: Mapped[str] = mapped_column(String)
    # Gate every principal of the tenant without deleting its data.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    subscription_status: Mapped[str] = mapped_column(String, default="trial", nullable=False)
    subscription_plan: Mapped[str | None] = mapped_column(String, nullable=True)
    trial_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trial_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Debounce marker for the trial sweep.
    last_suspension_check: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    suspended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    suspension_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # The platform owner is exempt from the subscription lifecycle.
    is_platform_owner: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @validates("type")
    def _validate_type(self, key: str, value: str) -> str:
        if value not in TENANT_TYPES:
            raise ValueError(f"Unsupported tenant type: {value}")
        return value

    @validates("subscription_status")
    def _validate_status(self, key: str, value: str) -> str:
        if value not in SUBSCRIPTION_STATUSES:
            raise ValueError(f"Unsupported subscription status: {value}")
        return value


class User(Base):
    __tablename__ = "users"
    __table_args__ = (Index("ix_users_tenant_role", "tenant_id", "role"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    username: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String)
    # Gate access for disabled users without deleting their history.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Credentials issued before this instant are revoked.
    password_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
