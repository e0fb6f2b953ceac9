from .connection import get_engine, get_session_factory, init_db, close_db, Base

# Import SMS models to ensure they are registered with Base
from .sms_models import (
    AreaDB, PositionDB, EmployeeDB, ShiftDB, ShiftInterestDB,
    MessageDB, SmsTemplateDB, SettingDB, AuditLogDB,
)

__all__ = [
    'get_engine', 'get_session_factory', 'init_db', 'close_db', 'Base',
    'AreaDB', 'PositionDB', 'EmployeeDB', 'ShiftDB', 'ShiftInterestDB',
    'MessageDB', 'SmsTemplateDB', 'SettingDB', 'AuditLogDB',
]
