"""
ShiftConnect SMS - Database Storage Layer

PostgreSQL-backed SMSStorage. Uses SQLAlchemy async sessions; every
operation opens its own session and commits once.
"""

from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Tuple, Type
import logging

from sqlalchemy import select, update, delete, and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from database.sms_models import (
    AreaDB, PositionDB, EmployeeDB, ShiftDB, ShiftInterestDB,
    MessageDB, SmsTemplateDB, SettingDB, AuditLogDB,
)
from models import (
    Area, Position, Employee, Shift, ShiftInterest, Message,
    SmsTemplate, SmsTemplateCreate, AuditLog,
)
from services.storage import SMSStorage

logger = logging.getLogger(__name__)


class SQLAlchemyStorage(SMSStorage):
    """SMSStorage over the tables in database.sms_models."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    # ==================== GENERIC HELPERS ====================

    async def _get(self, db_class: Type, schema: Type, item_id: str):
        async with self.session_factory() as session:
            result = await session.execute(select(db_class).where(db_class.id == item_id))
            db_obj = result.scalar_one_or_none()
            return schema.model_validate(db_obj) if db_obj else None

    async def _list(self, schema: Type, query) -> List[Any]:
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [schema.model_validate(db_obj) for db_obj in result.scalars().all()]

    async def _create(self, db_class: Type, schema: Type, item):
        async with self.session_factory() as session:
            db_obj = db_class(**item.model_dump())
            session.add(db_obj)
            await session.commit()
            await session.refresh(db_obj)
            return schema.model_validate(db_obj)

    async def _update(self, db_class: Type, schema: Type, item_id: str, updates: Dict[str, Any]):
        if updates:
            async with self.session_factory() as session:
                await session.execute(
                    update(db_class)
                    .where(db_class.id == item_id)
                    .values(**updates)
                )
                await session.commit()
        return await self._get(db_class, schema, item_id)

    # ==================== EMPLOYEES ====================

    async def get_employees(self) -> List[Employee]:
        return await self._list(Employee, select(EmployeeDB).order_by(EmployeeDB.name))

    async def get_employee(self, employee_id: str) -> Optional[Employee]:
        return await self._get(EmployeeDB, Employee, employee_id)

    async def update_employee(self, employee_id: str, updates: Dict[str, Any]) -> Optional[Employee]:
        return await self._update(EmployeeDB, Employee, employee_id, updates)

    async def get_area(self, area_id: str) -> Optional[Area]:
        return await self._get(AreaDB, Area, area_id)

    async def get_position(self, position_id: str) -> Optional[Position]:
        return await self._get(PositionDB, Position, position_id)

    # ==================== SHIFTS ====================

    async def get_shifts(self) -> List[Shift]:
        return await self._list(Shift, select(ShiftDB).order_by(ShiftDB.date, ShiftDB.start_time))

    async def get_shift(self, shift_id: str) -> Optional[Shift]:
        return await self._get(ShiftDB, Shift, shift_id)

    async def get_shift_by_sms_code(self, code: str) -> Optional[Shift]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ShiftDB).where(func.upper(ShiftDB.sms_code) == (code or "").upper())
            )
            db_shift = result.scalars().first()
            return Shift.model_validate(db_shift) if db_shift else None

    async def update_shift(self, shift_id: str, updates: Dict[str, Any]) -> Optional[Shift]:
        return await self._update(ShiftDB, Shift, shift_id, updates)

    # ==================== SHIFT INTERESTS ====================

    async def get_shift_interests(self, shift_id: str) -> List[ShiftInterest]:
        return await self._list(
            ShiftInterest,
            select(ShiftInterestDB)
            .where(ShiftInterestDB.shift_id == shift_id)
            .order_by(ShiftInterestDB.created_at)
        )

    async def get_employee_interests(self, employee_id: str) -> List[ShiftInterest]:
        return await self._list(
            ShiftInterest,
            select(ShiftInterestDB)
            .where(ShiftInterestDB.employee_id == employee_id)
            .order_by(ShiftInterestDB.created_at)
        )

    async def _find_interest(self, shift_id: str, employee_id: str) -> Optional[ShiftInterest]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ShiftInterestDB).where(
                    and_(
                        ShiftInterestDB.shift_id == shift_id,
                        ShiftInterestDB.employee_id == employee_id
                    )
                )
            )
            db_interest = result.scalar_one_or_none()
            return ShiftInterest.model_validate(db_interest) if db_interest else None

    async def create_shift_interest(self, shift_id: str, employee_id: str) -> Tuple[ShiftInterest, bool]:
        existing = await self._find_interest(shift_id, employee_id)
        if existing:
            return existing, False

        try:
            interest = await self._create(
                ShiftInterestDB, ShiftInterest,
                ShiftInterest(shift_id=shift_id, employee_id=employee_id)
            )
            return interest, True
        except IntegrityError:
            # Concurrent duplicate reply lost the race on the unique constraint
            logger.info(f"Duplicate shift interest for shift {shift_id}")
            existing = await self._find_interest(shift_id, employee_id)
            if existing is None:
                raise
            return existing, False

    async def delete_shift_interest(self, shift_id: str, employee_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(ShiftInterestDB).where(
                    and_(
                        ShiftInterestDB.shift_id == shift_id,
                        ShiftInterestDB.employee_id == employee_id
                    )
                )
            )
            await session.commit()
            return result.rowcount > 0

    # ==================== MESSAGES ====================

    async def get_messages(self) -> List[Message]:
        return await self._list(Message, select(MessageDB).order_by(MessageDB.created_at))

    async def get_employee_messages(self, employee_id: str) -> List[Message]:
        return await self._list(
            Message,
            select(MessageDB)
            .where(MessageDB.employee_id == employee_id)
            .order_by(MessageDB.created_at)
        )

    async def create_message(self, message: Message) -> Message:
        return await self._create(MessageDB, Message, message)

    async def update_message(self, message_id: str, updates: Dict[str, Any]) -> Optional[Message]:
        return await self._update(MessageDB, Message, message_id, updates)

    async def get_message_by_provider_message_id(self, provider_message_id: str) -> Optional[Message]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(MessageDB).where(MessageDB.provider_message_id == provider_message_id)
            )
            db_message = result.scalars().first()
            return Message.model_validate(db_message) if db_message else None

    # ==================== SMS TEMPLATES ====================

    async def get_sms_templates(self) -> List[SmsTemplate]:
        return await self._list(
            SmsTemplate,
            select(SmsTemplateDB).order_by(SmsTemplateDB.category, SmsTemplateDB.name)
        )

    async def get_sms_template(self, template_id: str) -> Optional[SmsTemplate]:
        return await self._get(SmsTemplateDB, SmsTemplate, template_id)

    async def get_sms_template_by_category(self, category: str) -> Optional[SmsTemplate]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SmsTemplateDB)
                .where(
                    and_(
                        SmsTemplateDB.category == category,
                        SmsTemplateDB.is_active.is_(True)
                    )
                )
                .order_by(SmsTemplateDB.created_at)
            )
            db_template = result.scalars().first()
            return SmsTemplate.model_validate(db_template) if db_template else None

    async def create_sms_template(self, data: SmsTemplateCreate) -> SmsTemplate:
        return await self._create(SmsTemplateDB, SmsTemplate, SmsTemplate(**data.model_dump()))

    async def update_sms_template(self, template_id: str, updates: Dict[str, Any]) -> Optional[SmsTemplate]:
        updates = {**updates, "updated_at": datetime.now(timezone.utc)}
        return await self._update(SmsTemplateDB, SmsTemplate, template_id, updates)

    async def delete_sms_template(self, template_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(SmsTemplateDB).where(SmsTemplateDB.id == template_id)
            )
            await session.commit()
            return result.rowcount > 0

    # ==================== SETTINGS / AUDIT ====================

    async def get_setting(self, key: str) -> Optional[str]:
        async with self.session_factory() as session:
            result = await session.execute(select(SettingDB.value).where(SettingDB.key == key))
            return result.scalar_one_or_none()

    async def set_setting(self, key: str, value: str) -> None:
        async with self.session_factory() as session:
            await session.merge(SettingDB(key=key, value=value, updated_at=datetime.now(timezone.utc)))
            await session.commit()

    async def create_audit_log(self, entry: AuditLog) -> AuditLog:
        return await self._create(AuditLogDB, AuditLog, entry)
