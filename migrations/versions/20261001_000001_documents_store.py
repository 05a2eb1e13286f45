"""Document store table for every agency collection.

Revision ID: 20261001_000001
Revises:
Create Date: 2026-10-01 00:00:01
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261001_000001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(bind, table_name: str) -> bool:
    inspector = sa.inspect(bind)
    return bool(inspector.has_table(table_name))


def _index_exists(bind, table_name: str, index_name: str) -> bool:
    inspector = sa.inspect(bind)
    if not inspector.has_table(table_name):
        return False
    for index in inspector.get_indexes(table_name):
        if str(index.get("name") or "") == index_name:
            return True
    return False


def upgrade() -> None:
    bind = op.get_bind()

    if not _table_exists(bind, "documents"):
        op.create_table(
            "documents",
            sa.Column("collection", sa.Text(), nullable=False),
            sa.Column("doc_id", sa.Text(), nullable=False),
            sa.Column("data", sa.Text(), nullable=False),
            sa.Column("created_at", sa.Text(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("updated_at", sa.Text(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.PrimaryKeyConstraint("collection", "doc_id", name="pk_documents"),
        )

    if not _index_exists(bind, "documents", "ix_documents_collection"):
        op.create_index("ix_documents_collection", "documents", ["collection"], unique=False)


def downgrade() -> None:
    bind = op.get_bind()
    if _index_exists(bind, "documents", "ix_documents_collection"):
        op.drop_index("ix_documents_collection", table_name="documents")
    op.execute("DROP TABLE IF EXISTS documents")
