from .schemas import (
    Area, Position,
    Employee,
    Shift, ShiftInterest,
    Message,
    SmsTemplate, SmsTemplateCreate, SmsTemplateUpdate,
    AuditLog,
)
from .enums import (
    EmployeeStatus, ShiftStatus, MessageDirection, MessageStatus, MessageType,
    TemplateCategory, TERMINAL_MESSAGE_STATUSES,
)

__all__ = [
    'Area', 'Position',
    'Employee',
    'Shift', 'ShiftInterest',
    'Message',
    'SmsTemplate', 'SmsTemplateCreate', 'SmsTemplateUpdate',
    'AuditLog',
    'EmployeeStatus', 'ShiftStatus', 'MessageDirection', 'MessageStatus', 'MessageType',
    'TemplateCategory', 'TERMINAL_MESSAGE_STATUSES',
]
