"""
Admin-side reads and moderation actions.

All numbers are computed fresh per request straight from the collections;
nothing here is cached or maintained incrementally.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from errors import ForbiddenError, NotFoundError, ValidationError
from filters import ChatFilter, Pagination, UserChatHistoryFilter, UserFilter
from models import BanRequest, User, utcnow
from reports import user_summaries
from security import USER_PUBLIC_PROJECTION

logger = logging.getLogger(__name__)

TIMEFRAME_DAYS = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_TIMEFRAME = "30d"

RECENT_CHAT_PROJECTION = {
    "_id": 0, "id": 1, "title": 1, "issue": 1, "category": 1, "status": 1,
    "priority": 1, "created_at": 1, "metadata": 1, "review": 1
}


def timeframe_start(timeframe: str, now: Optional[datetime] = None) -> datetime:
    if timeframe not in TIMEFRAME_DAYS:
        raise ValidationError.for_field("timeframe", f"Timeframe must be one of: {', '.join(TIMEFRAME_DAYS)}")
    now = now or utcnow()
    return now - timedelta(days=TIMEFRAME_DAYS[timeframe])


def chat_trend_pipeline(start: datetime) -> list:
    return [
        {"$match": {"created_at": {"$gte": start}}},
        {"$group": {
            "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$created_at"}},
            "count": {"$sum": 1}
        }},
        {"$sort": {"_id": 1}}
    ]


def chat_totals_pipeline(match: dict) -> list:
    return [
        {"$match": match},
        {"$group": {
            "_id": None,
            "total_messages": {"$sum": "$metadata.total_messages"},
            "average_rating": {"$avg": "$review.rating"}
        }}
    ]


def _round_rating(value):
    return round(value, 2) if value is not None else None


async def chat_stats(db, match: dict) -> dict:
    """Status counts, message total and mean review rating for chats matching ``match``."""
    total, active, resolved = await asyncio.gather(
        db.chats.count_documents(match),
        db.chats.count_documents({**match, "status": "active"}),
        db.chats.count_documents({**match, "status": "resolved"})
    )
    rows = await db.chats.aggregate(chat_totals_pipeline(match)).to_list(1)
    totals = rows[0] if rows else {}
    return {
        "total_chats": total,
        "active_chats": active,
        "resolved_chats": resolved,
        "total_messages": totals.get("total_messages") or 0,
        "average_rating": _round_rating(totals.get("average_rating"))
    }


class AdminAnalytics:
    def __init__(self, db):
        self.db = db

    async def dashboard_analytics(self, timeframe: str = DEFAULT_TIMEFRAME, now: Optional[datetime] = None) -> dict:
        start = timeframe_start(timeframe, now)
        users, chats = self.db.users, self.db.chats

        (
            users_total, users_new, users_active, users_banned,
            chats_total, chats_new, chats_active, chats_resolved
        ) = await asyncio.gather(
            users.count_documents({}),
            users.count_documents({"created_at": {"$gte": start}}),
            users.count_documents({"is_active": True}),
            users.count_documents({"is_banned": True}),
            chats.count_documents({}),
            chats.count_documents({"created_at": {"$gte": start}}),
            chats.count_documents({"status": "active"}),
            chats.count_documents({"status": "resolved"})
        )

        rating_rows = await chats.aggregate(chat_totals_pipeline({"review.rating": {"$ne": None}})).to_list(1)
        trend_rows = await chats.aggregate(chat_trend_pipeline(start)).to_list(None)

        return {
            "timeframe": timeframe,
            "start_date": start,
            "users": {
                "total": users_total,
                "new": users_new,
                "active": users_active,
                "banned": users_banned
            },
            "chats": {
                "total": chats_total,
                "new": chats_new,
                "active": chats_active,
                "resolved": chats_resolved,
                "average_rating": _round_rating(rating_rows[0].get("average_rating")) if rating_rows else None
            },
            "trends": {
                "chat_creation": [{"date": row["_id"], "count": row["count"]} for row in trend_rows]
            }
        }

    # ==================== USERS ====================

    async def list_users(self, criteria: UserFilter, pagination: Pagination) -> dict:
        query = criteria.to_query()
        found = await self.db.users.find(query, USER_PUBLIC_PROJECTION) \
            .sort(criteria.sort()) \
            .skip(pagination.skip) \
            .limit(pagination.limit) \
            .to_list(pagination.limit)
        total, all_users, active, banned, admins = await asyncio.gather(
            self.db.users.count_documents(query),
            self.db.users.count_documents({}),
            self.db.users.count_documents({"is_active": True}),
            self.db.users.count_documents({"is_banned": True}),
            self.db.users.count_documents({"role": "admin"})
        )
        return {
            "users": found,
            "pagination": pagination.summary(total),
            "stats": {
                "total_users": all_users,
                "active_users": active,
                "banned_users": banned,
                "admin_users": admins
            }
        }

    async def _get_user(self, user_id: str) -> dict:
        user = await self.db.users.find_one({"user_id": user_id}, USER_PUBLIC_PROJECTION)
        if not user:
            raise NotFoundError("User not found")
        return user

    async def user_details(self, user_id: str) -> dict:
        user = await self._get_user(user_id)
        stats = await chat_stats(self.db, {"user_id": user_id})
        recent = await self.db.chats.find({"user_id": user_id}, RECENT_CHAT_PROJECTION) \
            .sort("metadata.last_activity", -1) \
            .to_list(5)
        return {"user": user, "chat_stats": stats, "recent_chats": recent}

    async def toggle_ban(self, admin: User, user_id: str, payload: BanRequest) -> dict:
        user = await self._get_user(user_id)

        if payload.banned and user.get("role") == "admin":
            raise ForbiddenError("Cannot ban admin users")
        if payload.banned and not payload.ban_reason:
            raise ValidationError.for_field("ban_reason", "Ban reason is required when banning a user")

        update = {
            "is_banned": payload.banned,
            "ban_reason": payload.ban_reason if payload.banned else None,
            "updated_at": utcnow()
        }
        await self.db.users.update_one({"user_id": user_id}, {"$set": update})
        user.update(update)
        logger.info(f"Admin {admin.user_id} set is_banned={payload.banned} on user {user_id}")
        return user

    # ==================== CHATS ====================

    async def list_chats(self, criteria: ChatFilter, pagination: Pagination) -> dict:
        query = criteria.to_query()
        chats = await self.db.chats.find(query, {"_id": 0, "messages": 0}) \
            .sort("metadata.last_activity", -1) \
            .skip(pagination.skip) \
            .limit(pagination.limit) \
            .to_list(pagination.limit)
        total = await self.db.chats.count_documents(query)

        owners = await user_summaries(self.db, [c.get("user_id") for c in chats])
        for chat in chats:
            chat["user"] = owners.get(chat.get("user_id"))

        stats = await chat_stats(self.db, {})
        stats.pop("total_messages", None)
        return {"chats": chats, "pagination": pagination.summary(total), "stats": stats}

    async def chat_details(self, chat_id: str) -> dict:
        # Cross-owner lookup, only reachable behind the admin dependency.
        chat = await self.db.chats.find_one({"id": chat_id}, {"_id": 0})
        if not chat:
            raise NotFoundError("Chat not found")
        owners = await user_summaries(self.db, [chat.get("user_id")])
        chat["user"] = owners.get(chat.get("user_id"))
        return chat

    async def user_chat_history(self, criteria: UserChatHistoryFilter, pagination: Pagination) -> dict:
        await self._get_user(criteria.user_id)
        query = criteria.to_query()
        chats = await self.db.chats.find(query, {"_id": 0}) \
            .sort(criteria.sort()) \
            .skip(pagination.skip) \
            .limit(pagination.limit) \
            .to_list(pagination.limit)
        total = await self.db.chats.count_documents(query)
        stats = await chat_stats(self.db, {"user_id": criteria.user_id})
        return {"chats": chats, "pagination": pagination.summary(total), "stats": stats}
