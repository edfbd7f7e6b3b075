from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

PLAN = sa.Enum("FREE", "PRO", name="plan", native_enum=False)
METRIC = sa.Enum("DOCUMENT_CREATE", "PDF_GENERATE", name="metric", native_enum=False)
PERIOD = sa.Enum("MONTHLY", "DAILY", name="period", native_enum=False)
DOCUMENT_STATUS = sa.Enum("DRAFT", "SENT", "ACCEPTED", "PAID", "OVERDUE", name="documentstatus", native_enum=False)


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("plan", PLAN, nullable=False, server_default="FREE"),
        sa.Column("stripe_customer_id", sa.String(), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(), nullable=True),
        sa.Column("subscription_status", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_companies_stripe_customer_id", "companies", ["stripe_customer_id"])
    op.create_index("ix_companies_stripe_subscription_id", "companies", ["stripe_subscription_id"])

    # One row per tenant, period and metric; the unique key is what makes lazy creation race-safe.
    op.create_table(
        "usage_counters",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("metric", METRIC, nullable=False),
        sa.Column("period", PERIOD, nullable=False),
        sa.Column("period_key", sa.String(), nullable=False),
        sa.Column("used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("limit", sa.Integer(), nullable=False),
        sa.Column("grace_limit", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("grace_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("plan_at_that_time", PLAN, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            "tenant_id", "period", "period_key", "metric", name="uq_usage_counters_tenant_period_key_metric"
        ),
    )

    op.create_table(
        "quotes",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("company_id", sa.String(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("number", sa.String(), nullable=False),
        sa.Column("client_name", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("total_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("status", DOCUMENT_STATUS, nullable=False, server_default="DRAFT"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_quotes_company_created", "quotes", ["company_id", "created_at"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("company_id", sa.String(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("quote_id", sa.String(), sa.ForeignKey("quotes.id", ondelete="SET NULL"), nullable=True),
        sa.Column("number", sa.String(), nullable=False),
        sa.Column("client_name", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("total_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("status", DOCUMENT_STATUS, nullable=False, server_default="DRAFT"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_invoices_company_created", "invoices", ["company_id", "created_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("ts", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("actor_type", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=False),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("prev_hash", sa.String(), nullable=True),
        sa.Column("hash", sa.String(), nullable=False),
    )
    op.create_index("ix_audit_logs_tenant_ts", "audit_logs", ["tenant_id", "ts"])
    op.create_index("ix_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_resource", table_name="audit_logs")
    op.drop_index("ix_audit_logs_tenant_ts", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_invoices_company_created", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_quotes_company_created", table_name="quotes")
    op.drop_table("quotes")
    op.drop_table("usage_counters")
    op.drop_index("ix_companies_stripe_subscription_id", table_name="companies")
    op.drop_index("ix_companies_stripe_customer_id", table_name="companies")
    op.drop_table("companies")
