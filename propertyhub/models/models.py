from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship as orm_relationship

from ..config import Base
from ..constants import ROLE_PROPERTY_MANAGER


def utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    phone = Column(String, nullable=True)
    role = Column(String, nullable=False, default=ROLE_PROPERTY_MANAGER, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    subscription_plan = Column(String, nullable=False, default="FREE_TRIAL")
    subscription_status = Column(String, nullable=False, default="TRIAL")
    trial_end_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    managed_properties = orm_relationship("Property", back_populates="manager", passive_deletes=True)
    property_ownerships = orm_relationship("PropertyOwner", back_populates="owner", passive_deletes=True)
    tenancies = orm_relationship("UnitTenant", back_populates="tenant", passive_deletes=True)
    audit_logs = orm_relationship("AuditLog", back_populates="actor")

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def has_any_role(self, *role_names: str) -> bool:
        return self.role in set(role_names)


class Property(Base):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=False)
    city = Column(String, nullable=False)
    state = Column(String, nullable=True)
    zip_code = Column(String, nullable=True)
    country = Column(String, nullable=False, default="USA")
    property_type = Column(String, nullable=False)
    year_built = Column(Integer, nullable=True)
    total_units = Column(Integer, nullable=False, default=0)
    total_area = Column(Float, nullable=True)
    status = Column(String, nullable=False, default="ACTIVE", index=True)
    description = Column(Text, nullable=True)
    # Cover image; mirrors the primary PropertyImage when that table is present.
    image_url = Column(Text, nullable=True)

    lot_size = Column(Float, nullable=True)
    building_size = Column(Float, nullable=True)
    number_of_floors = Column(Integer, nullable=True)
    construction_type = Column(String, nullable=True)
    heating_system = Column(String, nullable=True)
    cooling_system = Column(String, nullable=True)
    amenities = Column(JSON, nullable=True)

    purchase_price = Column(Float, nullable=True)
    purchase_date = Column(DateTime, nullable=True)
    current_market_value = Column(Float, nullable=True)
    annual_property_tax = Column(Float, nullable=True)
    annual_insurance = Column(Float, nullable=True)
    monthly_hoa = Column(Float, nullable=True)

    manager_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    archived_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    manager = orm_relationship("User", back_populates="managed_properties")
    owners = orm_relationship("PropertyOwner", back_populates="property", passive_deletes=True)
    units = orm_relationship("Unit", back_populates="property", passive_deletes=True)
    # Loaded only through the image probe: the table may be missing on partially migrated databases.
    images = orm_relationship(
        "PropertyImage",
        back_populates="property",
        passive_deletes=True,
        lazy="raise",
    )
    documents = orm_relationship("PropertyDocument", back_populates="property", passive_deletes=True)
    notes = orm_relationship("PropertyNote", back_populates="property", passive_deletes=True)
    jobs = orm_relationship("Job", back_populates="property", passive_deletes=True)
    inspections = orm_relationship("Inspection", back_populates="property", passive_deletes=True)


class PropertyImage(Base):
    __tablename__ = "property_images"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    image_url = Column(Text, nullable=False)
    caption = Column(String, nullable=True)
    category = Column(String, nullable=False, default="OTHER")
    is_primary = Column(Boolean, nullable=False, default=False)
    display_order = Column(Integer, nullable=False, default=0)
    uploaded_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    property = orm_relationship("Property", back_populates="images")
    uploaded_by = orm_relationship("User")


class PropertyOwner(Base):
    __tablename__ = "property_owners"
    __table_args__ = (UniqueConstraint("property_id", "owner_id", name="uq_property_owner"),)

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    ownership_percentage = Column(Float, nullable=False, default=100.0)
    start_date = Column(DateTime, default=utcnow, nullable=False)
    end_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    property = orm_relationship("Property", back_populates="owners")
    owner = orm_relationship("User", back_populates="property_ownerships")


class Unit(Base):
    __tablename__ = "units"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_number = Column(String, nullable=False)
    status = Column(String, nullable=False, default="AVAILABLE", index=True)
    bedrooms = Column(Integer, nullable=True)
    bathrooms = Column(Float, nullable=True)
    rent_amount = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    property = orm_relationship("Property", back_populates="units")
    tenants = orm_relationship("UnitTenant", back_populates="unit", passive_deletes=True)
    owners = orm_relationship("UnitOwner", back_populates="unit", passive_deletes=True)


class UnitTenant(Base):
    __tablename__ = "unit_tenants"

    id = Column(Integer, primary_key=True, index=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    lease_start = Column(DateTime, nullable=True)
    lease_end = Column(DateTime, nullable=True)

    unit = orm_relationship("Unit", back_populates="tenants")
    tenant = orm_relationship("User", back_populates="tenancies")


class UnitOwner(Base):
    __tablename__ = "unit_owners"

    id = Column(Integer, primary_key=True, index=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    ownership_percentage = Column(Float, nullable=False, default=100.0)
    end_date = Column(DateTime, nullable=True)

    unit = orm_relationship("Unit", back_populates="owners")


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="SET NULL"), nullable=True)
    title = Column(String, nullable=False)
    status = Column(String, nullable=False, default="OPEN")
    priority = Column(String, nullable=False, default="MEDIUM")
    assigned_to_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    property = orm_relationship("Property", back_populates="jobs")
    assigned_to = orm_relationship("User")


class Inspection(Base):
    __tablename__ = "inspections"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    status = Column(String, nullable=False, default="SCHEDULED")
    scheduled_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    property = orm_relationship("Property", back_populates="inspections")


class PropertyDocument(Base):
    __tablename__ = "property_documents"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="SET NULL"), nullable=True, index=True)
    file_name = Column(String, nullable=False)
    file_url = Column(Text, nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String, nullable=False)
    category = Column(String, nullable=False, default="OTHER")
    description = Column(Text, nullable=True)
    access_level = Column(String, nullable=False, default="PROPERTY_MANAGER")
    uploader_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    uploaded_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    property = orm_relationship("Property", back_populates="documents")
    unit = orm_relationship("Unit")
    uploader = orm_relationship("User")


class PropertyNote(Base):
    __tablename__ = "property_notes"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    property = orm_relationship("Property", back_populates="notes")
    author = orm_relationship("User")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, default=utcnow, index=True, nullable=False)
    actor_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String, nullable=False)
    target_entity_type = Column(String, nullable=True)
    target_entity_id = Column(String, nullable=True)
    before = Column(Text, nullable=True)
    after = Column(Text, nullable=True)

    actor = orm_relationship("User", back_populates="audit_logs")
