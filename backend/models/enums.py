from enum import Enum


class EmployeeStatus(str, Enum):
    active = "active"
    inactive = "inactive"


class ShiftStatus(str, Enum):
    available = "available"
    claimed = "claimed"
    expired = "expired"


class MessageDirection(str, Enum):
    outbound = "outbound"
    inbound = "inbound"


class MessageStatus(str, Enum):
    pending = "pending"
    sent = "sent"
    delivered = "delivered"
    failed = "failed"
    read = "read"


TERMINAL_MESSAGE_STATUSES = {MessageStatus.delivered.value, MessageStatus.failed.value}


class MessageType(str, Enum):
    general = "general"
    shift_notification = "shift_notification"
    shift_reminder = "shift_reminder"
    shift_confirmation = "shift_confirmation"
    bulk = "bulk"
    system = "system"


class TemplateCategory(str, Enum):
    shift_notification = "shift_notification"
    shift_repost = "shift_repost"
    shift_confirmation = "shift_confirmation"
    shift_reminder = "shift_reminder"
    shift_interest = "shift_interest"
    shift_cancellation = "shift_cancellation"
    training_reminder = "training_reminder"
    welcome = "welcome"
    general = "general"
    bulk = "bulk"
