"""create sales rep, deal and audit log tables

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "sales_rep",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("territory", sa.String(length=64), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "deal",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("deal_id", sa.String(length=64), nullable=False),
        sa.Column("company_name", sa.Text(), nullable=False),
        sa.Column("contact_name", sa.Text(), nullable=True),
        sa.Column("transportation_mode", sa.String(length=64), nullable=True),
        sa.Column("stage", sa.String(length=32), nullable=False),
        sa.Column("value", sa.Numeric(14, 2), nullable=False),
        sa.Column("probability", sa.Numeric(5, 2), nullable=False),
        sa.Column("created_date", sa.String(length=40), nullable=False),
        sa.Column("updated_date", sa.String(length=40), nullable=False),
        sa.Column("expected_close_date", sa.String(length=40), nullable=True),
        sa.Column("sales_rep_id", sa.Integer(), nullable=False),
        sa.Column("origin_city", sa.Text(), nullable=True),
        sa.Column("destination_city", sa.Text(), nullable=True),
        sa.Column("cargo_type", sa.Text(), nullable=True),
        sa.Column("territory", sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(["sales_rep_id"], ["sales_rep.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("deal_id"),
        sa.CheckConstraint(
            "stage IN ('prospect', 'qualified', 'proposal', 'negotiation', 'closed_won', 'closed_lost')",
            name="ck_deal_stage",
        ),
    )
    op.create_index("ix_deal_sales_rep_id", "deal", ["sales_rep_id"], unique=False)

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("deal_id", sa.Integer(), nullable=False),
        sa.Column("deal_identifier", sa.String(length=64), nullable=False),
        sa.Column("field_changed", sa.String(length=64), nullable=False),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("changed_by", sa.String(length=128), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("change_type", sa.String(length=16), nullable=False, server_default="manual"),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_deal_id", "audit_log", ["deal_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_log_deal_id", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("ix_deal_sales_rep_id", table_name="deal")
    op.drop_table("deal")
    op.drop_table("sales_rep")
