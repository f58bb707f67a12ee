"""property documents and notes

Revision ID: 0003_property_documents_notes
Revises: 0002_property_images
Create Date: 2026-07-01 11:05:00.000000
"""

import sqlalchemy as sa
from alembic import op


revision = "0003_property_documents_notes"
down_revision = "0002_property_images"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "property_documents",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id", ondelete="CASCADE"), nullable=False),
        sa.Column("unit_id", sa.Integer(), sa.ForeignKey("units.id", ondelete="SET NULL"), nullable=True),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column("file_url", sa.Text(), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("mime_type", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False, server_default="OTHER"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("access_level", sa.String(), nullable=False, server_default="PROPERTY_MANAGER"),
        sa.Column("uploader_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_property_documents_property_id", "property_documents", ["property_id"])
    op.create_index("ix_property_documents_unit_id", "property_documents", ["unit_id"])

    op.create_table(
        "property_notes",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id", ondelete="CASCADE"), nullable=False),
        sa.Column("author_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_property_notes_property_id", "property_notes", ["property_id"])


def downgrade() -> None:
    op.drop_index("ix_property_notes_property_id", table_name="property_notes")
    op.drop_table("property_notes")
    op.drop_index("ix_property_documents_unit_id", table_name="property_documents")
    op.drop_index("ix_property_documents_property_id", table_name="property_documents")
    op.drop_table("property_documents")
