"""
ShiftConnect SMS - SQLAlchemy Database Models

Tables read and written by the SMS gateway: areas, positions, employees,
shifts, shift_interests, messages, sms_templates, settings, audit_logs.
Employee and shift CRUD happens elsewhere; the gateway only updates
opt-in flags, assignments and notification counters.
"""

from sqlalchemy import (
    Column, String, Text, Boolean, Integer, DateTime,
    ForeignKey, Index, UniqueConstraint, JSON
)

from database.connection import Base
from models.schemas import generate_uuid, utc_now


# ==================== REFERENCE DATA ====================

class AreaDB(Base):
    __tablename__ = "areas"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    sms_enabled = Column(Boolean, default=True)


class PositionDB(Base):
    __tablename__ = "positions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)


class EmployeeDB(Base):
    __tablename__ = "employees"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(200), nullable=False)
    phone = Column(String(32), nullable=False, index=True)
    email = Column(String(255), nullable=True)
    position_id = Column(String(36), ForeignKey("positions.id"), nullable=True)
    status = Column(String(20), default="active")
    sms_opt_in = Column(Boolean, default=True)
    # Areas the employee works in; empty means all areas
    area_ids = Column(JSON, default=list)


# ==================== SHIFTS ====================

class ShiftDB(Base):
    __tablename__ = "shifts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    position_id = Column(String(36), ForeignKey("positions.id"), nullable=False)
    area_id = Column(String(36), ForeignKey("areas.id"), nullable=False, index=True)
    location = Column(String(255), nullable=False)
    date = Column(String(10), nullable=False, index=True)  # YYYY-MM-DD
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)
    requirements = Column(Text, nullable=True)
    posted_by_name = Column(String(200), default="System")
    status = Column(String(20), default="available", index=True)
    assigned_employee_id = Column(String(36), ForeignKey("employees.id"), nullable=True, index=True)
    sms_code = Column(String(6), nullable=True, unique=True)
    bonus_amount = Column(Integer, nullable=True)
    notify_all_areas = Column(Boolean, default=False)
    last_notified_at = Column(DateTime(timezone=True), nullable=True)
    notification_count = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), default=utc_now)


class ShiftInterestDB(Base):
    """At most one row per (shift, employee)."""
    __tablename__ = "shift_interests"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    shift_id = Column(String(36), ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False)
    employee_id = Column(String(36), ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint("shift_id", "employee_id", name="uq_shift_interests_shift_employee"),
    )


# ==================== MESSAGES ====================

class MessageDB(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    employee_id = Column(String(36), ForeignKey("employees.id"), nullable=False, index=True)
    direction = Column(String(10), nullable=False)
    content = Column(Text, nullable=False)
    status = Column(String(20), default="pending")
    provider_message_id = Column(String(100), nullable=True, index=True)
    sms_provider = Column(String(20), nullable=True)
    delivery_status = Column(String(20), nullable=True)
    delivery_timestamp = Column(DateTime(timezone=True), nullable=True)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    segments = Column(Integer, default=1)
    thread_id = Column(String(36), nullable=True)
    in_reply_to = Column(String(36), nullable=True)
    message_type = Column(String(30), default="general")
    related_shift_id = Column(String(36), ForeignKey("shifts.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("ix_messages_employee_type", "employee_id", "message_type"),
    )


class SmsTemplateDB(Base):
    __tablename__ = "sms_templates"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), default="general", index=True)
    content = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True)
    is_system = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


# ==================== SETTINGS / AUDIT ====================

class SettingDB(Base):
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class AuditLogDB(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    action = Column(String(100), nullable=False, index=True)
    actor_id = Column(String(36), nullable=True)
    actor_name = Column(String(200), default="System")
    target_type = Column(String(50), nullable=False)
    target_id = Column(String(36), nullable=True, index=True)
    target_name = Column(String(255), nullable=True)
    details = Column(JSON, nullable=True)
    ip_address = Column(String(45), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
