"""Add product_mappings for keyword-based product tagging.

Revision ID: 20261018_02
Revises: 20261018_01
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261018_02"
down_revision: Union[str, None] = "20261018_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "product_mappings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("product_name", sa.String(), nullable=False),
        sa.Column("shopify_tag", sa.String(), nullable=False),
        sa.Column("mapping_type", sa.String(), nullable=True),
        sa.Column("keywords", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_product_mappings_is_active", "product_mappings", ["is_active"])


def downgrade() -> None:
    op.drop_index("ix_product_mappings_is_active", table_name="product_mappings")
    op.drop_table("product_mappings")
