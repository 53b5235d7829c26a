import re
import uuid
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ==================== ENUMS ====================

CHAT_CATEGORIES = ("health", "medication", "mobility", "emotional", "daily_care", "emergency", "other")
CHAT_PRIORITIES = ("low", "medium", "high", "urgent")
CHAT_STATUSES = ("active", "resolved", "archived")

Role = Literal["user", "admin"]
ChatCategory = Literal["health", "medication", "mobility", "emotional", "daily_care", "emergency", "other"]
ChatPriority = Literal["low", "medium", "high", "urgent"]
ChatStatus = Literal["active", "resolved", "archived"]
MessageRole = Literal["user", "assistant", "system"]
ReportType = Literal["inappropriate_content", "spam", "harassment", "misinformation", "technical_issue", "other"]
ReportSeverity = Literal["low", "medium", "high", "critical"]
ReportStatus = Literal["pending", "investigating", "resolved", "dismissed"]
Theme = Literal["light", "dark", "system"]

USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ==================== USERS ====================

class UserPreferences(BaseModel):
    theme: Theme = "system"
    notifications: bool = True


class User(BaseModel):
    model_config = ConfigDict(extra="ignore")
    user_id: str = Field(default_factory=lambda: new_id("user"))
    username: str
    email: str
    first_name: str
    last_name: str
    role: Role = "user"
    is_active: bool = True
    is_banned: bool = False
    ban_reason: Optional[str] = None
    last_login: Optional[datetime] = None
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    username: str = Field(min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: str = Field(max_length=254, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=128)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        if not (re.search(r"[a-z]", value) and re.search(r"[A-Z]", value) and re.search(r"\d", value)):
            raise ValueError(
                "Password must contain at least one lowercase letter, one uppercase letter, and one number"
            )
        return value


class UserLogin(BaseModel):
    email: str
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class PreferencesUpdate(BaseModel):
    theme: Optional[Theme] = None
    notifications: Optional[bool] = None


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    preferences: Optional[PreferencesUpdate] = None


class BanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)
    banned: bool
    ban_reason: Optional[str] = Field(None, max_length=500, alias="banReason")


# ==================== CHATS ====================

class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: new_id("msg"))
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class ChatReview(BaseModel):
    rating: int = Field(ge=1, le=5)
    feedback: Optional[str] = Field(None, max_length=1000)
    reviewed_at: datetime = Field(default_factory=utcnow)


class ChatMetadata(BaseModel):
    total_messages: int = 0
    last_activity: datetime = Field(default_factory=utcnow)
    average_response_time: float = 0


class Chat(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: new_id("chat"))
    user_id: str
    title: str
    issue: str
    category: ChatCategory
    priority: ChatPriority = "medium"
    status: ChatStatus = "active"
    messages: List[ChatMessage] = []
    review: Optional[ChatReview] = None
    metadata: ChatMetadata = Field(default_factory=ChatMetadata)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ChatCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    title: str = Field(min_length=1, max_length=100)
    issue: str = Field(min_length=10, max_length=500)
    category: ChatCategory
    priority: Optional[ChatPriority] = None


class ChatUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    status: Optional[ChatStatus] = None
    priority: Optional[ChatPriority] = None


class MessageCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    content: str = Field(min_length=1, max_length=1000)


class ReviewCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    rating: int = Field(strict=True)
    feedback: Optional[str] = Field(None, max_length=1000)


# ==================== ALARMS ====================

class Alarm(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: new_id("alarm"))
    user_id: str
    name: str
    description: Optional[str] = None
    time: datetime
    is_active: bool = True
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AlarmCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    name: str = Field(min_length=1, max_length=100)
    time: datetime
    description: Optional[str] = Field(None, max_length=500)


class AlarmUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    time: Optional[datetime] = None
    description: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None


# ==================== REPORTS ====================

class ReportEvidence(BaseModel):
    message_ids: List[str] = []
    screenshots: List[str] = []


class Report(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: new_id("report"))
    user_id: str
    chat_id: str
    report_type: ReportType
    description: str
    severity: ReportSeverity = "medium"
    status: ReportStatus = "pending"
    admin_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    evidence: ReportEvidence = Field(default_factory=ReportEvidence)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ReportCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    chat_id: str
    report_type: ReportType
    description: str = Field(min_length=1, max_length=1000)
    severity: Optional[ReportSeverity] = None
    evidence: Optional[ReportEvidence] = None


class ReportUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)
    status: Optional[ReportStatus] = None
    admin_notes: Optional[str] = Field(None, max_length=1000, alias="adminNotes")
