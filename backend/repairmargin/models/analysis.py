import uuid

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()


class GUID(TypeDecorator):
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        if isinstance(value, str):
            try:
                parsed = uuid.UUID(value)
            except ValueError:
                return value
            return parsed if dialect.name == "postgresql" else str(parsed)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(value)
        except ValueError:
            return value


UUID_TYPE = GUID()
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")
MONEY = Numeric(10, 2)
HOURS = Numeric(7, 2)


class Analysis(Base):
    __tablename__ = "analyses"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    status = Column(String(16), nullable=False, default="processing", server_default=text("'processing'"))
    error_message = Column(Text)
    document_name = Column(String(255))
    extraction_source = Column(String(16))
    model_version = Column(String(128))
    confidence = Column(Float)
    warnings = Column(JSON_TYPE, nullable=False, default=list)
    verified_at = Column(DateTime(timezone=True))
    status_changed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    vehicle = relationship("VehicleRecord", uselist=False, back_populates="analysis", cascade="all, delete-orphan")
    financial = relationship(
        "FinancialRecord", uselist=False, back_populates="analysis", cascade="all, delete-orphan"
    )
    workshop_costs = relationship(
        "WorkshopCostRecord", uselist=False, back_populates="analysis", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("status IN ('processing','completed','failed')", name="chk_analysis_status"),
        Index("idx_analyses_status", "status"),
        Index("idx_analyses_created_at", "created_at"),
    )


class VehicleRecord(Base):
    __tablename__ = "vehicle_records"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    analysis_id = Column(UUID_TYPE, ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False, unique=True)
    license_plate = Column(String(16))
    vin = Column(String(32))
    manufacturer = Column(String(64))
    model = Column(String(128))
    internal_reference = Column(String(64))
    valuation_system = Column(String(64))
    hourly_price = Column(MONEY, nullable=False, default=0)
    bodywork_hourly_price = Column(MONEY, nullable=False, default=0)
    paint_hourly_price = Column(MONEY, nullable=False, default=0)
    valuation_date = Column(String(10))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    analysis = relationship("Analysis", back_populates="vehicle")


class FinancialRecord(Base):
    __tablename__ = "financial_records"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    analysis_id = Column(UUID_TYPE, ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False, unique=True)
    spare_parts_amount = Column(MONEY, nullable=False, default=0)
    spare_parts_count = Column(Integer, nullable=False, default=0)
    bodywork_quantity = Column(HOURS, nullable=False, default=0)
    bodywork_hours = Column(HOURS, nullable=False, default=0)
    bodywork_amount = Column(MONEY, nullable=False, default=0)
    paint_quantity = Column(HOURS, nullable=False, default=0)
    paint_hours = Column(HOURS, nullable=False, default=0)
    paint_amount = Column(MONEY, nullable=False, default=0)
    paint_material_amount = Column(MONEY, nullable=False, default=0)
    subtotal = Column(MONEY, nullable=False, default=0)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    tax_amount = Column(MONEY, nullable=False, default=0)
    total_with_tax = Column(MONEY, nullable=False, default=0)
    unit_family = Column(String(8), nullable=False, default="UT")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    analysis = relationship("Analysis", back_populates="financial")

    __table_args__ = (
        CheckConstraint("unit_family IN ('UT','HOURS','MIXED')", name="chk_financial_unit_family"),
        CheckConstraint("subtotal >= 0 AND tax_amount >= 0 AND total_with_tax >= 0", name="chk_financial_non_negative"),
    )


class WorkshopCostRecord(Base):
    __tablename__ = "workshop_costs"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    analysis_id = Column(UUID_TYPE, ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False)
    spare_parts_cost = Column(MONEY, nullable=False, default=0)
    bodywork_hours = Column(HOURS, nullable=False, default=0)
    bodywork_hourly_cost = Column(MONEY, nullable=False, default=0)
    paint_hours = Column(HOURS, nullable=False, default=0)
    paint_hourly_cost = Column(MONEY, nullable=False, default=0)
    paint_consumables_cost = Column(MONEY, nullable=False, default=0)
    subcontractor_cost = Column(MONEY, nullable=False, default=0)
    other_cost = Column(MONEY, nullable=False, default=0)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    analysis = relationship("Analysis", back_populates="workshop_costs")

    __table_args__ = (
        UniqueConstraint("analysis_id", name="uniq_workshop_costs_analysis"),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(UUID_TYPE, nullable=False)
    action = Column(String(64), nullable=False)
    old_value = Column(JSON_TYPE)
    new_value = Column(JSON_TYPE)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(64))
    audit_meta = Column("metadata", JSON_TYPE, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (Index("idx_audit_logs_entity", "entity_type", "entity_id"),)
