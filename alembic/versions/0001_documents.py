"""Create documents table for container-scoped JSON documents"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_documents"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    json_document = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")

    op.create_table(
        "documents",
        sa.Column("container", sa.String(length=64), primary_key=True),
        sa.Column("id", sa.String(length=255), primary_key=True),
        sa.Column("data", json_document, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_documents_container_updated_at",
        "documents",
        ["container", "updated_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_documents_container_updated_at", table_name="documents")
    op.drop_table("documents")
