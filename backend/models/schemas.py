from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Any, Dict
from datetime import datetime, timezone
import uuid


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== AREAS / POSITIONS ====================
class Area(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    name: str
    description: Optional[str] = None
    sms_enabled: bool = True

    model_config = ConfigDict(from_attributes=True)


class Position(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    title: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ==================== EMPLOYEES ====================
class Employee(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    name: str
    phone: str
    email: Optional[str] = None
    position_id: Optional[str] = None
    status: str = "active"
    sms_opt_in: bool = True
    area_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


# ==================== SHIFTS ====================
class Shift(BaseModel):
    """A posted shift. date is YYYY-MM-DD, times are HH:MM."""
    id: str = Field(default_factory=generate_uuid)
    position_id: str
    area_id: str
    location: str
    date: str
    start_time: str
    end_time: str
    requirements: Optional[str] = None
    posted_by_name: str = "System"
    status: str = "available"
    assigned_employee_id: Optional[str] = None
    sms_code: Optional[str] = None
    bonus_amount: Optional[int] = None
    notify_all_areas: bool = False
    last_notified_at: Optional[datetime] = None
    notification_count: int = 0
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)


class ShiftInterest(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    shift_id: str
    employee_id: str
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)


# ==================== MESSAGES ====================
class Message(BaseModel):
    """One inbound or outbound SMS. Never deleted."""
    id: str = Field(default_factory=generate_uuid)
    employee_id: str
    direction: str
    content: str
    status: str = "pending"
    provider_message_id: Optional[str] = None
    sms_provider: Optional[str] = None
    delivery_status: Optional[str] = None
    delivery_timestamp: Optional[datetime] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    segments: int = 1
    thread_id: Optional[str] = None
    in_reply_to: Optional[str] = None
    message_type: str = "general"
    related_shift_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)


# ==================== SMS TEMPLATES ====================
class SmsTemplateBase(BaseModel):
    name: str
    description: Optional[str] = None
    category: str = "general"
    content: str
    is_active: bool = True


class SmsTemplateCreate(SmsTemplateBase):
    is_system: bool = False


class SmsTemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    content: Optional[str] = None
    is_active: Optional[bool] = None


class SmsTemplate(SmsTemplateBase):
    id: str = Field(default_factory=generate_uuid)
    is_system: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)


# ==================== AUDIT ====================
class AuditLog(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    action: str
    actor_id: Optional[str] = None
    actor_name: str = "System"
    target_type: str
    target_id: Optional[str] = None
    target_name: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)
