"""Reminder sweep/completion and moderation report tests"""
import asyncio
from datetime import timedelta

import pytest

from alarms import AlarmManager
from errors import NotFoundError
from filters import Pagination, ReportFilter
from models import AlarmCreate, AlarmUpdate, ReportCreate, ReportUpdate, utcnow
from reports import ReportManager
from conftest import insert_user

OWNER = "user_owner000001"


def run(coro):
    return asyncio.run(coro)


class TestAlarms:
    def test_listing_deactivates_only_overdue_alarms(self, fake_db):
        manager = AlarmManager(fake_db)
        now = utcnow()
        past = run(manager.create_alarm(OWNER, AlarmCreate(name="Morning pills", time=now - timedelta(hours=1))))
        future = run(manager.create_alarm(OWNER, AlarmCreate(name="Evening walk", time=now + timedelta(hours=3))))

        alarms = run(manager.list_alarms(OWNER))

        by_id = {a["id"]: a for a in alarms}
        assert by_id[past["id"]]["is_active"] is False
        assert by_id[past["id"]]["is_completed"] is False
        assert by_id[future["id"]]["is_active"] is True
        assert [a["id"] for a in alarms] == [past["id"], future["id"]]
        print("✓ overdue alarm deactivated, future alarm untouched")

    def test_listing_returns_every_alarm(self, fake_db):
        manager = AlarmManager(fake_db)
        start = utcnow() + timedelta(days=1)
        for minute in range(520):
            run(manager.create_alarm(OWNER, AlarmCreate(name=f"Alarm {minute}", time=start + timedelta(minutes=minute))))

        alarms = run(manager.list_alarms(OWNER))

        assert len(alarms) == 520
        assert alarms[-1]["name"] == "Alarm 519"

    def test_sweep_is_scoped_to_owner(self, fake_db):
        manager = AlarmManager(fake_db)
        past = utcnow() - timedelta(minutes=5)
        run(manager.create_alarm("user_someone_else", AlarmCreate(name="Pills", time=past)))

        assert run(manager.deactivate_overdue(OWNER)) == 0
        assert fake_db.alarms.docs[0]["is_active"] is True

    def test_complete_keeps_active_flag(self, fake_db):
        manager = AlarmManager(fake_db)
        alarm = run(manager.create_alarm(OWNER, AlarmCreate(name="Pills", time=utcnow() + timedelta(hours=1))))

        done = run(manager.complete_alarm(OWNER, alarm["id"]))

        assert done["is_completed"] is True
        assert done["completed_at"] is not None
        assert done["is_active"] is True
        assert fake_db.alarms.docs[0]["is_completed"] is True

    def test_partial_update_and_description_clear(self, fake_db):
        manager = AlarmManager(fake_db)
        alarm = run(manager.create_alarm(
            OWNER, AlarmCreate(name="Pills", description="Blue bottle", time=utcnow() + timedelta(hours=1))
        ))

        renamed = run(manager.update_alarm(OWNER, alarm["id"], AlarmUpdate(name="Vitamins")))
        assert renamed["name"] == "Vitamins"
        assert renamed["description"] == "Blue bottle"

        cleared = run(manager.update_alarm(OWNER, alarm["id"], AlarmUpdate(description=None)))
        assert cleared["description"] is None
        assert cleared["name"] == "Vitamins"

    def test_naive_time_stored_as_utc(self, fake_db):
        manager = AlarmManager(fake_db)
        naive = (utcnow() + timedelta(days=1)).replace(tzinfo=None)
        alarm = run(manager.create_alarm(OWNER, AlarmCreate(name="Doctor visit", time=naive)))
        assert alarm["time"].utcoffset() == timedelta(0)

    def test_other_owner_cannot_touch_alarm(self, fake_db):
        manager = AlarmManager(fake_db)
        alarm = run(manager.create_alarm(OWNER, AlarmCreate(name="Pills", time=utcnow() + timedelta(hours=1))))

        with pytest.raises(NotFoundError):
            run(manager.complete_alarm("user_intruder", alarm["id"]))
        with pytest.raises(NotFoundError):
            run(manager.update_alarm("user_intruder", alarm["id"], AlarmUpdate(name="Mine now")))
        with pytest.raises(NotFoundError):
            run(manager.delete_alarm("user_intruder", alarm["id"]))

        run(manager.delete_alarm(OWNER, alarm["id"]))
        assert fake_db.alarms.docs == []


@pytest.fixture
def reporter_chat(fake_db):
    user = run(insert_user(fake_db))
    chat = {"id": "chat_abc123", "user_id": user.user_id, "title": "Pills", "issue": "Pill schedule help",
            "category": "medication"}
    run(fake_db.chats.insert_one(chat))
    return user, chat


class TestReports:
    def test_report_requires_owned_chat(self, fake_db, reporter_chat):
        manager = ReportManager(fake_db)
        payload = ReportCreate(chat_id="chat_abc123", report_type="misinformation", description="Wrong dosage")

        with pytest.raises(NotFoundError):
            run(manager.create_report("user_intruder", payload))

        user, _ = reporter_chat
        report = run(manager.create_report(user.user_id, payload))
        assert report["status"] == "pending"
        assert report["severity"] == "medium"
        assert report["resolved_by"] is None

    def test_resolution_stamps_resolver(self, fake_db, reporter_chat):
        user, _ = reporter_chat
        admin = run(insert_user(fake_db, username="admin", email="admin@example.com", role="admin"))
        manager = ReportManager(fake_db)
        report = run(manager.create_report(
            user.user_id, ReportCreate(chat_id="chat_abc123", report_type="spam", description="Spam reply")
        ))

        investigating = run(manager.update_report(admin, report["id"], ReportUpdate(status="investigating")))
        assert investigating["resolved_by"] is None
        assert investigating["resolved_at"] is None

        resolved = run(manager.update_report(
            admin, report["id"], ReportUpdate.model_validate({"status": "resolved", "adminNotes": "Handled"})
        ))
        assert resolved["status"] == "resolved"
        assert resolved["resolved_by"] == admin.user_id
        assert resolved["resolved_at"] is not None
        assert resolved["admin_notes"] == "Handled"

        listed = run(manager.list_reports(ReportFilter(status="resolved"), Pagination()))
        assert listed["pagination"]["total"] == 1
        entry = listed["reports"][0]
        assert entry["user"]["user_id"] == user.user_id
        assert entry["resolver"]["user_id"] == admin.user_id
        assert entry["chat"]["title"] == "Pills"
        assert "hashed_password" not in entry["user"]

    def test_notes_only_change_when_sent(self, fake_db, reporter_chat):
        user, _ = reporter_chat
        admin = run(insert_user(fake_db, username="admin", email="admin@example.com", role="admin"))
        manager = ReportManager(fake_db)
        report = run(manager.create_report(
            user.user_id, ReportCreate(chat_id="chat_abc123", report_type="spam", description="Spam reply")
        ))

        noted = run(manager.update_report(admin, report["id"], ReportUpdate(admin_notes="Looking into it")))
        assert noted["admin_notes"] == "Looking into it"

        kept = run(manager.update_report(admin, report["id"], ReportUpdate(status="investigating")))
        assert kept["admin_notes"] == "Looking into it"

        cleared = run(manager.update_report(admin, report["id"], ReportUpdate.model_validate({"adminNotes": ""})))
        assert cleared["admin_notes"] is None
        assert fake_db.reports.docs[0]["admin_notes"] is None

    def test_unknown_report_is_not_found(self, fake_db):
        admin = run(insert_user(fake_db, role="admin"))
        with pytest.raises(NotFoundError):
            run(ReportManager(fake_db).update_report(admin, "report_missing", ReportUpdate(status="dismissed")))
