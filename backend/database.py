"""
MongoDB connection helpers.

The Motor client is created once per process and stored on ``app.state``;
request handlers reach the database through the ``get_database`` dependency.
"""
import logging

from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING

import config

logger = logging.getLogger(__name__)


def create_client() -> AsyncIOMotorClient:
    # Datetimes read back as UTC-aware.
    return AsyncIOMotorClient(config.MONGO_URL, tz_aware=True)


async def ensure_indexes(db):
    await db.users.create_index("user_id", unique=True)
    await db.users.create_index("email", unique=True)
    await db.users.create_index("username", unique=True)

    await db.chats.create_index("id", unique=True)
    await db.chats.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    await db.chats.create_index("status")

    await db.alarms.create_index("id", unique=True)
    await db.alarms.create_index([("user_id", ASCENDING), ("time", ASCENDING)])
    await db.alarms.create_index([("user_id", ASCENDING), ("is_active", ASCENDING)])

    await db.reports.create_index("id", unique=True)
    await db.reports.create_index("user_id")
    await db.reports.create_index("chat_id")
    await db.reports.create_index("status")
    await db.reports.create_index([("created_at", DESCENDING)])
    logger.info("MongoDB indexes ensured")


def get_database(request: Request):
    return request.app.state.db
