import logging

from errors import NotFoundError
from filters import Pagination, ReportFilter
from models import Report, ReportCreate, ReportEvidence, ReportUpdate, User, utcnow

logger = logging.getLogger(__name__)

USER_SUMMARY_PROJECTION = {"_id": 0, "user_id": 1, "username": 1, "email": 1, "first_name": 1, "last_name": 1}
CHAT_SUMMARY_PROJECTION = {"_id": 0, "id": 1, "title": 1, "issue": 1, "category": 1}


async def user_summaries(db, user_ids) -> dict:
    ids = sorted({uid for uid in user_ids if uid})
    if not ids:
        return {}
    users = await db.users.find({"user_id": {"$in": ids}}, USER_SUMMARY_PROJECTION).to_list(len(ids))
    return {u["user_id"]: u for u in users}


class ReportManager:
    """Moderation reports: filed by users, worked by admins."""

    def __init__(self, db):
        self.db = db

    async def create_report(self, user_id: str, payload: ReportCreate) -> dict:
        chat = await self.db.chats.find_one({"id": payload.chat_id, "user_id": user_id}, {"_id": 0, "id": 1})
        if not chat:
            raise NotFoundError("Chat not found")

        report = Report(
            user_id=user_id,
            chat_id=payload.chat_id,
            report_type=payload.report_type,
            description=payload.description,
            severity=payload.severity or "medium",
            evidence=payload.evidence or ReportEvidence()
        )
        doc = report.model_dump()
        await self.db.reports.insert_one(doc)
        doc.pop("_id", None)
        logger.info(f"Report {report.id} filed by {user_id} on chat {payload.chat_id}")
        return doc

    async def list_reports(self, criteria: ReportFilter, pagination: Pagination) -> dict:
        query = criteria.to_query()
        reports = await self.db.reports.find(query, {"_id": 0}) \
            .sort("created_at", -1) \
            .skip(pagination.skip) \
            .limit(pagination.limit) \
            .to_list(pagination.limit)
        total = await self.db.reports.count_documents(query)

        users = await user_summaries(
            self.db,
            [r.get("user_id") for r in reports] + [r.get("resolved_by") for r in reports]
        )
        chat_ids = sorted({r["chat_id"] for r in reports if r.get("chat_id")})
        chats = {}
        if chat_ids:
            found = await self.db.chats.find({"id": {"$in": chat_ids}}, CHAT_SUMMARY_PROJECTION).to_list(len(chat_ids))
            chats = {c["id"]: c for c in found}

        for report in reports:
            report["user"] = users.get(report.get("user_id"))
            report["chat"] = chats.get(report.get("chat_id"))
            report["resolver"] = users.get(report.get("resolved_by"))

        return {"reports": reports, "pagination": pagination.summary(total)}

    async def update_report(self, admin: User, report_id: str, payload: ReportUpdate) -> dict:
        report = await self.db.reports.find_one({"id": report_id}, {"_id": 0})
        if not report:
            raise NotFoundError("Report not found")

        now = utcnow()
        update = {"updated_at": now}
        if payload.status is not None:
            update["status"] = payload.status
            # Resolver identity is stamped in the same write as the transition.
            if payload.status == "resolved":
                update["resolved_by"] = admin.user_id
                update["resolved_at"] = now
        if "admin_notes" in payload.model_fields_set:
            update["admin_notes"] = payload.admin_notes or None

        await self.db.reports.update_one({"id": report_id}, {"$set": update})
        report.update(update)
        logger.info(f"Report {report_id} updated by admin {admin.user_id}: status={report.get('status')}")
        return report
