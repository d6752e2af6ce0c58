"""add reports and sales_data tables

Revision ID: add_reports_and_sales_data_tables
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "add_reports_and_sales_data_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    from sqlalchemy import inspect

    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    if "reports" not in existing_tables:
        op.create_table(
            "reports",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=True),
            sa.Column("file_name", sa.String(length=255), nullable=False),
            sa.Column("marketplace", sa.String(length=32), nullable=False),
            sa.Column("upload_date", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
            sa.Column("processed", sa.Boolean(), server_default=sa.text("false"), nullable=False),
            sa.Column("total_revenue", sa.Numeric(18, 2), nullable=True),
            sa.Column("total_profit", sa.Numeric(18, 2), nullable=True),
            sa.Column("profit_margin", sa.Numeric(9, 2), nullable=True),
        )
        op.create_index("ix_reports_user_id", "reports", ["user_id"])

    if "sales_data" not in existing_tables:
        op.create_table(
            "sales_data",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column(
                "report_id",
                sa.String(length=36),
                sa.ForeignKey("reports.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("sku", sa.String(length=64), nullable=False),
            sa.Column("product_name", sa.Text(), nullable=False),
            sa.Column("sale_date", sa.Date(), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("price", sa.Numeric(16, 4), nullable=False),
            sa.Column("raw_commission", sa.Numeric(16, 4), nullable=True),
            sa.Column("revenue", sa.Numeric(18, 2), nullable=False),
            sa.Column("commission", sa.Numeric(18, 2), nullable=False),
            sa.Column("logistics", sa.Numeric(18, 2), nullable=False),
            sa.Column("storage", sa.Numeric(18, 2), nullable=False),
            sa.Column("surcharge", sa.Numeric(18, 2), nullable=False),
            sa.Column("net_profit", sa.Numeric(18, 2), nullable=False),
            sa.Column("profit_margin", sa.Numeric(9, 2), nullable=False),
        )
        op.create_index("ix_sales_data_report_id", "sales_data", ["report_id"])
        op.create_index("ix_sales_data_sku", "sales_data", ["sku"])
        op.create_index("idx_sales_data_report_date", "sales_data", ["report_id", "sale_date"])


def downgrade() -> None:
    op.drop_index("idx_sales_data_report_date", table_name="sales_data")
    op.drop_index("ix_sales_data_sku", table_name="sales_data")
    op.drop_index("ix_sales_data_report_id", table_name="sales_data")
    op.drop_table("sales_data")
    op.drop_index("ix_reports_user_id", table_name="reports")
    op.drop_table("reports")
