"""
Query criteria for the list endpoints.

Each criteria model holds one optional field per supported query parameter and
translates itself to a MongoDB filter in ``to_query``.
"""
import math
import re
from typing import Literal, Optional

from pydantic import BaseModel, Field

import config
from models import ChatCategory, ChatPriority, ChatStatus, ReportSeverity, ReportStatus, ReportType, Role


class Pagination(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def summary(self, total: int) -> dict:
        return {
            "current": self.page,
            "pages": math.ceil(total / self.limit) if total else 0,
            "total": total
        }


def _search_clause(search: Optional[str], fields) -> Optional[dict]:
    if not search or not search.strip():
        return None
    pattern = re.escape(search.strip())
    return {"$or": [{field: {"$regex": pattern, "$options": "i"}} for field in fields]}


class OwnChatFilter(BaseModel):
    user_id: str
    status: Optional[ChatStatus] = None

    def to_query(self) -> dict:
        query = {"user_id": self.user_id}
        if self.status:
            query["status"] = self.status
        return query


class UserFilter(BaseModel):
    search: Optional[str] = None
    role: Optional[Role] = None
    status: Optional[Literal["active", "inactive", "banned"]] = None
    sort_by: Literal["created_at", "last_login", "username", "email"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"

    def to_query(self) -> dict:
        query = _search_clause(self.search, ("username", "email", "first_name", "last_name")) or {}
        if self.role:
            query["role"] = self.role
        if self.status == "active":
            query["is_active"] = True
        elif self.status == "inactive":
            query["is_active"] = False
        elif self.status == "banned":
            query["is_banned"] = True
        return query

    def sort(self):
        return [(self.sort_by, -1 if self.sort_order == "desc" else 1)]


class ChatFilter(BaseModel):
    user_id: Optional[str] = None
    category: Optional[ChatCategory] = None
    status: Optional[ChatStatus] = None
    priority: Optional[ChatPriority] = None
    search: Optional[str] = None

    def to_query(self) -> dict:
        query = _search_clause(self.search, ("title", "issue")) or {}
        if self.user_id:
            query["user_id"] = self.user_id
        if self.category:
            query["category"] = self.category
        if self.status:
            query["status"] = self.status
        if self.priority:
            query["priority"] = self.priority
        return query


class UserChatHistoryFilter(BaseModel):
    user_id: str
    status: Optional[ChatStatus] = None
    category: Optional[ChatCategory] = None
    sort_by: Literal["created_at", "updated_at", "priority", "status"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"

    def to_query(self) -> dict:
        query = {"user_id": self.user_id}
        if self.status:
            query["status"] = self.status
        if self.category:
            query["category"] = self.category
        return query

    def sort(self):
        return [(self.sort_by, -1 if self.sort_order == "desc" else 1)]


class ReportFilter(BaseModel):
    status: Optional[ReportStatus] = None
    report_type: Optional[ReportType] = None
    severity: Optional[ReportSeverity] = None

    def to_query(self) -> dict:
        query = {}
        if self.status:
            query["status"] = self.status
        if self.report_type:
            query["report_type"] = self.report_type
        if self.severity:
            query["severity"] = self.severity
        return query
