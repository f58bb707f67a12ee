"""ordered property image records

Revision ID: 0002_property_images
Revises: 0001_core_schema
Create Date: 2026-06-16 14:20:00.000000
"""

import sqlalchemy as sa
from alembic import op


revision = "0002_property_images"
down_revision = "0001_core_schema"
branch_labels = None
depends_on = None


def _has_table(inspector, name: str) -> bool:
    return inspector.has_table(name)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _has_table(inspector, "property_images"):
        op.create_table(
            "property_images",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id", ondelete="CASCADE"), nullable=False),
            sa.Column("image_url", sa.Text(), nullable=False),
            sa.Column("caption", sa.String(), nullable=True),
            sa.Column("category", sa.String(), nullable=False, server_default="OTHER"),
            sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("uploaded_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_property_images_property_id", "property_images", ["property_id"])

    # Existing cover images become the first, primary record of their property.
    op.execute(
        sa.text(
            "INSERT INTO property_images (property_id, image_url, is_primary, display_order, uploaded_by_id, category) "
            "SELECT p.id, p.image_url, :primary, 0, p.manager_id, 'OTHER' FROM properties p "
            "WHERE p.image_url IS NOT NULL AND p.image_url <> '' "
            "AND NOT EXISTS (SELECT 1 FROM property_images i WHERE i.property_id = p.id)"
        ).bindparams(primary=True)
    )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if _has_table(inspector, "property_images"):
        existing_indexes = {index["name"] for index in inspector.get_indexes("property_images")}
        if "ix_property_images_property_id" in existing_indexes:
            op.drop_index("ix_property_images_property_id", table_name="property_images")
        op.drop_table("property_images")
