"""
ShiftConnect SMS - Storage Layer

SMSStorage is the persistence contract the SMS services depend on.
Two implementations exist:
- InMemoryStorage (this module): dict-backed, used in development and tests
- SQLAlchemyStorage (services/sql_storage.py): PostgreSQL via SQLAlchemy async

Records cross this boundary as Pydantic models from models.schemas and
are copied on the way in and out, so callers never alias stored state.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Tuple
import logging
import threading

from models import (
    Area, Position, Employee, Shift, ShiftInterest, Message,
    SmsTemplate, SmsTemplateCreate, AuditLog,
)

logger = logging.getLogger(__name__)


class SMSStorage(ABC):
    """Persistence operations consumed by the SMS gateway services."""

    # ==================== EMPLOYEES ====================

    @abstractmethod
    async def get_employees(self) -> List[Employee]: ...

    @abstractmethod
    async def get_employee(self, employee_id: str) -> Optional[Employee]: ...

    @abstractmethod
    async def update_employee(self, employee_id: str, updates: Dict[str, Any]) -> Optional[Employee]: ...

    @abstractmethod
    async def get_area(self, area_id: str) -> Optional[Area]: ...

    @abstractmethod
    async def get_position(self, position_id: str) -> Optional[Position]: ...

    # ==================== SHIFTS ====================

    @abstractmethod
    async def get_shifts(self) -> List[Shift]: ...

    @abstractmethod
    async def get_shift(self, shift_id: str) -> Optional[Shift]: ...

    @abstractmethod
    async def get_shift_by_sms_code(self, code: str) -> Optional[Shift]:
        """Case-insensitive lookup by the 6-character SMS code."""

    @abstractmethod
    async def update_shift(self, shift_id: str, updates: Dict[str, Any]) -> Optional[Shift]: ...

    # ==================== SHIFT INTERESTS ====================

    @abstractmethod
    async def get_shift_interests(self, shift_id: str) -> List[ShiftInterest]: ...

    @abstractmethod
    async def get_employee_interests(self, employee_id: str) -> List[ShiftInterest]: ...

    @abstractmethod
    async def create_shift_interest(self, shift_id: str, employee_id: str) -> Tuple[ShiftInterest, bool]:
        """
        Record interest. At most one row exists per (shift, employee).

        Returns:
            (interest, created): created is False when the row already existed
        """

    @abstractmethod
    async def delete_shift_interest(self, shift_id: str, employee_id: str) -> bool: ...

    # ==================== MESSAGES ====================

    @abstractmethod
    async def get_messages(self) -> List[Message]: ...

    @abstractmethod
    async def get_employee_messages(self, employee_id: str) -> List[Message]: ...

    @abstractmethod
    async def create_message(self, message: Message) -> Message: ...

    @abstractmethod
    async def update_message(self, message_id: str, updates: Dict[str, Any]) -> Optional[Message]: ...

    @abstractmethod
    async def get_message_by_provider_message_id(self, provider_message_id: str) -> Optional[Message]: ...

    # ==================== SMS TEMPLATES ====================

    @abstractmethod
    async def get_sms_templates(self) -> List[SmsTemplate]: ...

    @abstractmethod
    async def get_sms_template(self, template_id: str) -> Optional[SmsTemplate]: ...

    @abstractmethod
    async def get_sms_template_by_category(self, category: str) -> Optional[SmsTemplate]:
        """First active template for the category."""

    @abstractmethod
    async def create_sms_template(self, data: SmsTemplateCreate) -> SmsTemplate: ...

    @abstractmethod
    async def update_sms_template(self, template_id: str, updates: Dict[str, Any]) -> Optional[SmsTemplate]: ...

    @abstractmethod
    async def delete_sms_template(self, template_id: str) -> bool: ...

    # ==================== SETTINGS / AUDIT ====================

    @abstractmethod
    async def get_setting(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set_setting(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def create_audit_log(self, entry: AuditLog) -> AuditLog: ...


class InMemoryStorage(SMSStorage):
    """Dict-backed storage. Insertion order is preserved for all collections."""

    def __init__(self):
        self._lock = threading.Lock()
        self.areas: Dict[str, Area] = {}
        self.positions: Dict[str, Position] = {}
        self.employees: Dict[str, Employee] = {}
        self.shifts: Dict[str, Shift] = {}
        self.interests: Dict[str, ShiftInterest] = {}
        self.messages: Dict[str, Message] = {}
        self.templates: Dict[str, SmsTemplate] = {}
        self.settings: Dict[str, str] = {}
        self.audit_logs: List[AuditLog] = []

    # ==================== SEEDING ====================

    def add_area(self, area: Area) -> Area:
        with self._lock:
            self.areas[area.id] = area.model_copy(deep=True)
        return area

    def add_position(self, position: Position) -> Position:
        with self._lock:
            self.positions[position.id] = position.model_copy(deep=True)
        return position

    def add_employee(self, employee: Employee) -> Employee:
        with self._lock:
            self.employees[employee.id] = employee.model_copy(deep=True)
        return employee

    def add_shift(self, shift: Shift) -> Shift:
        with self._lock:
            self.shifts[shift.id] = shift.model_copy(deep=True)
        return shift

    def add_template(self, template: SmsTemplate) -> SmsTemplate:
        with self._lock:
            self.templates[template.id] = template.model_copy(deep=True)
        return template

    # ==================== HELPERS ====================

    @staticmethod
    def _copy(item):
        return item.model_copy(deep=True) if item is not None else None

    def _update(self, collection: Dict[str, Any], item_id: str, updates: Dict[str, Any]):
        with self._lock:
            current = collection.get(item_id)
            if current is None:
                return None
            updated = current.model_copy(update=updates, deep=True)
            collection[item_id] = updated
            return updated.model_copy(deep=True)

    # ==================== EMPLOYEES ====================

    async def get_employees(self) -> List[Employee]:
        return [self._copy(e) for e in self.employees.values()]

    async def get_employee(self, employee_id: str) -> Optional[Employee]:
        return self._copy(self.employees.get(employee_id))

    async def update_employee(self, employee_id: str, updates: Dict[str, Any]) -> Optional[Employee]:
        return self._update(self.employees, employee_id, updates)

    async def get_area(self, area_id: str) -> Optional[Area]:
        return self._copy(self.areas.get(area_id))

    async def get_position(self, position_id: str) -> Optional[Position]:
        return self._copy(self.positions.get(position_id))

    # ==================== SHIFTS ====================

    async def get_shifts(self) -> List[Shift]:
        return [self._copy(s) for s in self.shifts.values()]

    async def get_shift(self, shift_id: str) -> Optional[Shift]:
        return self._copy(self.shifts.get(shift_id))

    async def get_shift_by_sms_code(self, code: str) -> Optional[Shift]:
        wanted = (code or "").upper()
        for shift in self.shifts.values():
            if shift.sms_code and shift.sms_code.upper() == wanted:
                return self._copy(shift)
        return None

    async def update_shift(self, shift_id: str, updates: Dict[str, Any]) -> Optional[Shift]:
        return self._update(self.shifts, shift_id, updates)

    # ==================== SHIFT INTERESTS ====================

    async def get_shift_interests(self, shift_id: str) -> List[ShiftInterest]:
        return [self._copy(i) for i in self.interests.values() if i.shift_id == shift_id]

    async def get_employee_interests(self, employee_id: str) -> List[ShiftInterest]:
        return [self._copy(i) for i in self.interests.values() if i.employee_id == employee_id]

    async def create_shift_interest(self, shift_id: str, employee_id: str) -> Tuple[ShiftInterest, bool]:
        with self._lock:
            for interest in self.interests.values():
                if interest.shift_id == shift_id and interest.employee_id == employee_id:
                    return interest.model_copy(deep=True), False
            interest = ShiftInterest(shift_id=shift_id, employee_id=employee_id)
            self.interests[interest.id] = interest
            return interest.model_copy(deep=True), True

    async def delete_shift_interest(self, shift_id: str, employee_id: str) -> bool:
        with self._lock:
            for interest_id, interest in list(self.interests.items()):
                if interest.shift_id == shift_id and interest.employee_id == employee_id:
                    del self.interests[interest_id]
                    return True
        return False

    # ==================== MESSAGES ====================

    async def get_messages(self) -> List[Message]:
        return [self._copy(m) for m in self.messages.values()]

    async def get_employee_messages(self, employee_id: str) -> List[Message]:
        return [self._copy(m) for m in self.messages.values() if m.employee_id == employee_id]

    async def create_message(self, message: Message) -> Message:
        with self._lock:
            self.messages[message.id] = message.model_copy(deep=True)
        return message.model_copy(deep=True)

    async def update_message(self, message_id: str, updates: Dict[str, Any]) -> Optional[Message]:
        return self._update(self.messages, message_id, updates)

    async def get_message_by_provider_message_id(self, provider_message_id: str) -> Optional[Message]:
        for message in self.messages.values():
            if message.provider_message_id == provider_message_id:
                return self._copy(message)
        return None

    # ==================== SMS TEMPLATES ====================

    async def get_sms_templates(self) -> List[SmsTemplate]:
        return [self._copy(t) for t in self.templates.values()]

    async def get_sms_template(self, template_id: str) -> Optional[SmsTemplate]:
        return self._copy(self.templates.get(template_id))

    async def get_sms_template_by_category(self, category: str) -> Optional[SmsTemplate]:
        for template in self.templates.values():
            if template.category == category and template.is_active:
                return self._copy(template)
        return None

    async def create_sms_template(self, data: SmsTemplateCreate) -> SmsTemplate:
        template = SmsTemplate(**data.model_dump())
        with self._lock:
            self.templates[template.id] = template
        return template.model_copy(deep=True)

    async def update_sms_template(self, template_id: str, updates: Dict[str, Any]) -> Optional[SmsTemplate]:
        updates = {**updates, "updated_at": datetime.now(timezone.utc)}
        return self._update(self.templates, template_id, updates)

    async def delete_sms_template(self, template_id: str) -> bool:
        with self._lock:
            return self.templates.pop(template_id, None) is not None

    # ==================== SETTINGS / AUDIT ====================

    async def get_setting(self, key: str) -> Optional[str]:
        return self.settings.get(key)

    async def set_setting(self, key: str, value: str) -> None:
        with self._lock:
            self.settings[key] = value

    async def create_audit_log(self, entry: AuditLog) -> AuditLog:
        with self._lock:
            self.audit_logs.append(entry.model_copy(deep=True))
        return entry
