"""core schema: users, properties, units, jobs, inspections

Revision ID: 0001_core_schema
Revises:
Create Date: 2026-06-02 09:00:00.000000
"""

import sqlalchemy as sa
from alembic import op


revision = "0001_core_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(), nullable=False, server_default=""),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False, server_default="PROPERTY_MANAGER"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("subscription_plan", sa.String(), nullable=False, server_default="FREE_TRIAL"),
        sa.Column("subscription_status", sa.String(), nullable=False, server_default="TRIAL"),
        sa.Column("trial_end_date", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("address", sa.String(), nullable=False),
        sa.Column("city", sa.String(), nullable=False),
        sa.Column("state", sa.String(), nullable=True),
        sa.Column("zip_code", sa.String(), nullable=True),
        sa.Column("country", sa.String(), nullable=False, server_default="USA"),
        sa.Column("property_type", sa.String(), nullable=False),
        sa.Column("year_built", sa.Integer(), nullable=True),
        sa.Column("total_units", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_area", sa.Float(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="ACTIVE"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("lot_size", sa.Float(), nullable=True),
        sa.Column("building_size", sa.Float(), nullable=True),
        sa.Column("number_of_floors", sa.Integer(), nullable=True),
        sa.Column("construction_type", sa.String(), nullable=True),
        sa.Column("heating_system", sa.String(), nullable=True),
        sa.Column("cooling_system", sa.String(), nullable=True),
        sa.Column("amenities", sa.JSON(), nullable=True),
        sa.Column("purchase_price", sa.Float(), nullable=True),
        sa.Column("purchase_date", sa.DateTime(), nullable=True),
        sa.Column("current_market_value", sa.Float(), nullable=True),
        sa.Column("annual_property_tax", sa.Float(), nullable=True),
        sa.Column("annual_insurance", sa.Float(), nullable=True),
        sa.Column("monthly_hoa", sa.Float(), nullable=True),
        sa.Column("manager_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("archived_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_properties_manager_id", "properties", ["manager_id"])
    op.create_index("ix_properties_status", "properties", ["status"])
    op.create_index("ix_properties_created_at", "properties", ["created_at"])

    op.create_table(
        "property_owners",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id", ondelete="CASCADE"), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ownership_percentage", sa.Float(), nullable=False, server_default="100"),
        sa.Column("start_date", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("property_id", "owner_id", name="uq_property_owner"),
    )
    op.create_index("ix_property_owners_property_id", "property_owners", ["property_id"])
    op.create_index("ix_property_owners_owner_id", "property_owners", ["owner_id"])

    op.create_table(
        "units",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id", ondelete="CASCADE"), nullable=False),
        sa.Column("unit_number", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="AVAILABLE"),
        sa.Column("bedrooms", sa.Integer(), nullable=True),
        sa.Column("bathrooms", sa.Float(), nullable=True),
        sa.Column("rent_amount", sa.Float(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_units_property_id", "units", ["property_id"])
    op.create_index("ix_units_status", "units", ["status"])

    op.create_table(
        "unit_tenants",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("unit_id", sa.Integer(), sa.ForeignKey("units.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("lease_start", sa.DateTime(), nullable=True),
        sa.Column("lease_end", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_unit_tenants_unit_id", "unit_tenants", ["unit_id"])
    op.create_index("ix_unit_tenants_tenant_id", "unit_tenants", ["tenant_id"])

    op.create_table(
        "unit_owners",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("unit_id", sa.Integer(), sa.ForeignKey("units.id", ondelete="CASCADE"), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ownership_percentage", sa.Float(), nullable=False, server_default="100"),
        sa.Column("end_date", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_unit_owners_unit_id", "unit_owners", ["unit_id"])
    op.create_index("ix_unit_owners_owner_id", "unit_owners", ["owner_id"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id", ondelete="CASCADE"), nullable=False),
        sa.Column("unit_id", sa.Integer(), sa.ForeignKey("units.id", ondelete="SET NULL"), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="OPEN"),
        sa.Column("priority", sa.String(), nullable=False, server_default="MEDIUM"),
        sa.Column("assigned_to_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_jobs_property_id", "jobs", ["property_id"])

    op.create_table(
        "inspections",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="SCHEDULED"),
        sa.Column("scheduled_date", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_inspections_property_id", "inspections", ["property_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("target_entity_type", sa.String(), nullable=True),
        sa.Column("target_entity_id", sa.String(), nullable=True),
        sa.Column("before", sa.Text(), nullable=True),
        sa.Column("after", sa.Text(), nullable=True),
    )
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_timestamp", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_inspections_property_id", table_name="inspections")
    op.drop_table("inspections")
    op.drop_index("ix_jobs_property_id", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index("ix_unit_owners_owner_id", table_name="unit_owners")
    op.drop_index("ix_unit_owners_unit_id", table_name="unit_owners")
    op.drop_table("unit_owners")
    op.drop_index("ix_unit_tenants_tenant_id", table_name="unit_tenants")
    op.drop_index("ix_unit_tenants_unit_id", table_name="unit_tenants")
    op.drop_table("unit_tenants")
    op.drop_index("ix_units_status", table_name="units")
    op.drop_index("ix_units_property_id", table_name="units")
    op.drop_table("units")
    op.drop_index("ix_property_owners_owner_id", table_name="property_owners")
    op.drop_index("ix_property_owners_property_id", table_name="property_owners")
    op.drop_table("property_owners")
    op.drop_index("ix_properties_created_at", table_name="properties")
    op.drop_index("ix_properties_status", table_name="properties")
    op.drop_index("ix_properties_manager_id", table_name="properties")
    op.drop_table("properties")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
