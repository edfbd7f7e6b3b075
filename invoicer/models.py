from __future__ import annotations

import enum
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Enum, Float, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class Plan(str, enum.Enum):
    FREE = "FREE"
    PRO = "PRO"


class Metric(str, enum.Enum):
    DOCUMENT_CREATE = "DOCUMENT_CREATE"
    PDF_GENERATE = "PDF_GENERATE"


class Period(str, enum.Enum):
    MONTHLY = "MONTHLY"
    DAILY = "DAILY"


class DocumentStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    PAID = "paid"
    OVERDUE = "overdue"


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    plan: Mapped[Plan] = mapped_column(Enum(Plan, native_enum=False), default=Plan.FREE, nullable=False)
    stripe_customer_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    subscription_status: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class UsageCounter(Base):
    __tablename__ = "usage_counters"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    # Opaque on purpose: counters may exist before the tenant row is visible.
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    metric: Mapped[Metric] = mapped_column(Enum(Metric, native_enum=False), nullable=False)
    period: Mapped[Period] = mapped_column(Enum(Period, native_enum=False), nullable=False)
    period_key: Mapped[str] = mapped_column(String, nullable=False)
    used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    limit: Mapped[int] = mapped_column(Integer, nullable=False)
    grace_limit: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    grace_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    plan_at_that_time: Mapped[Plan] = mapped_column(Enum(Plan, native_enum=False), nullable=False)
    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "period", "period_key", "metric", name="uq_usage_counters_tenant_period_key_metric"
        ),
    )


class Quote(Base):
    __tablename__ = "quotes"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    company_id: Mapped[str] = mapped_column(String, ForeignKey("companies.id"), nullable=False)
    number: Mapped[str] = mapped_column(String, nullable=False)
    client_name: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    items: Mapped[list[dict]] = mapped_column(JSON, default=list, nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, native_enum=False), default=DocumentStatus.DRAFT, nullable=False
    )
    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    company: Mapped[Company] = relationship("Company")

    __table_args__ = (Index("ix_quotes_company_created", "company_id", "created_at"),)


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    company_id: Mapped[str] = mapped_column(String, ForeignKey("companies.id"), nullable=False)
    quote_id: Mapped[str | None] = mapped_column(String, ForeignKey("quotes.id", ondelete="SET NULL"), nullable=True)
    number: Mapped[str] = mapped_column(String, nullable=False)
    client_name: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    items: Mapped[list[dict]] = mapped_column(JSON, default=list, nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, native_enum=False), default=DocumentStatus.DRAFT, nullable=False
    )
    due_date: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    company: Mapped[Company] = relationship("Company")
    quote: Mapped["Quote | None"] = relationship("Quote")

    __table_args__ = (Index("ix_invoices_company_created", "company_id", "created_at"),)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    ts: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    actor_type: Mapped[str] = mapped_column(String, nullable=False)
    actor_id: Mapped[str] = mapped_column(String, nullable=False)
    tenant_id: Mapped[str | None] = mapped_column(String, nullable=True)
    action: Mapped[str] = mapped_column(String, nullable=False)
    resource_type: Mapped[str] = mapped_column(String, nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String, nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    prev_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    hash: Mapped[str] = mapped_column(String, nullable=False)


Index("ix_audit_logs_tenant_ts", AuditLog.tenant_id, AuditLog.ts)
Index("ix_audit_logs_resource", AuditLog.resource_type, AuditLog.resource_id)
