import logging
from datetime import datetime
from typing import Optional

from errors import NotFoundError
from models import Alarm, AlarmCreate, AlarmUpdate, ensure_utc, utcnow

logger = logging.getLogger(__name__)


class AlarmManager:
    """Reminder CRUD, always scoped to the owning user."""

    def __init__(self, db):
        self.db = db

    async def _find_owned(self, user_id: str, alarm_id: str) -> dict:
        alarm = await self.db.alarms.find_one({"id": alarm_id, "user_id": user_id}, {"_id": 0})
        if not alarm:
            raise NotFoundError("Alarm not found")
        return alarm

    async def deactivate_overdue(self, user_id: str, now: Optional[datetime] = None) -> int:
        """Flip past-due active alarms to inactive. Completion is left untouched."""
        now = now or utcnow()
        result = await self.db.alarms.update_many(
            {"user_id": user_id, "time": {"$lt": now}, "is_active": True},
            {"$set": {"is_active": False, "updated_at": now}}
        )
        if result.modified_count:
            logger.info(f"Deactivated {result.modified_count} overdue alarms for user {user_id}")
        return result.modified_count

    async def list_alarms(self, user_id: str) -> list:
        await self.deactivate_overdue(user_id)
        return await self.db.alarms.find({"user_id": user_id}, {"_id": 0}).sort("time", 1).to_list(None)

    async def create_alarm(self, user_id: str, payload: AlarmCreate) -> dict:
        alarm = Alarm(
            user_id=user_id,
            name=payload.name,
            description=payload.description,
            time=ensure_utc(payload.time)
        )
        doc = alarm.model_dump()
        await self.db.alarms.insert_one(doc)
        doc.pop("_id", None)
        return doc

    async def update_alarm(self, user_id: str, alarm_id: str, payload: AlarmUpdate) -> dict:
        alarm = await self._find_owned(user_id, alarm_id)

        update = {}
        if payload.name is not None:
            update["name"] = payload.name
        if payload.time is not None:
            update["time"] = ensure_utc(payload.time)
        if "description" in payload.model_fields_set:
            update["description"] = payload.description
        if payload.is_active is not None:
            update["is_active"] = payload.is_active

        if update:
            update["updated_at"] = utcnow()
            await self.db.alarms.update_one({"id": alarm_id, "user_id": user_id}, {"$set": update})
            alarm.update(update)
        return alarm

    async def complete_alarm(self, user_id: str, alarm_id: str) -> dict:
        alarm = await self._find_owned(user_id, alarm_id)
        now = utcnow()
        update = {"is_completed": True, "completed_at": now, "updated_at": now}
        await self.db.alarms.update_one({"id": alarm_id, "user_id": user_id}, {"$set": update})
        alarm.update(update)
        return alarm

    async def delete_alarm(self, user_id: str, alarm_id: str):
        result = await self.db.alarms.delete_one({"id": alarm_id, "user_id": user_id})
        if result.deleted_count == 0:
            raise NotFoundError("Alarm not found")
