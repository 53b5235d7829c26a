import logging
from contextlib import asynccontextmanager
from typing import Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from starlette.middleware.cors import CORSMiddleware

import config
from admin_analytics import DEFAULT_TIMEFRAME, AdminAnalytics
from ai_responder import AIResponder
from alarms import AlarmManager
from chat_lifecycle import ChatLifecycleManager, FallbackMonitor
from database import create_client, ensure_indexes, get_database
from errors import register_exception_handlers
from filters import ChatFilter, OwnChatFilter, Pagination, ReportFilter, UserChatHistoryFilter, UserFilter
from models import (
    AlarmCreate, AlarmUpdate, BanRequest, ChatCategory, ChatCreate, ChatPriority, ChatStatus, ChatUpdate,
    MessageCreate, ProfileUpdate, ReportCreate, ReportSeverity, ReportStatus, ReportType, ReportUpdate,
    ReviewCreate, Role, User, UserCreate, UserLogin, utcnow
)
from reports import ReportManager
from security import authenticate_user, get_admin_user, get_current_user, issue_token_for, register_user, update_profile
from user_dashboard import dashboard_stats, pending_ratings

config.configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await ensure_indexes(app.state.db)
    logger.info(f"{config.APP_NAME} started ({config.APP_ENV})")
    yield
    await app.state.ai_responder.close()
    app.state.mongo_client.close()


app = FastAPI(title=config.APP_NAME, version=config.APP_VERSION, lifespan=lifespan)

# Process-wide collaborators, built once and handed to handlers through dependencies.
app.state.mongo_client = create_client()
app.state.db = app.state.mongo_client[config.DB_NAME]
app.state.ai_responder = AIResponder()
app.state.fallback_monitor = FallbackMonitor()

if not app.state.ai_responder.configured:
    logger.warning("AI_API_KEY is not set; chat replies will come from the fallback pool")

register_exception_handlers(app)

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")
auth_router = APIRouter(prefix="/auth", tags=["auth"])
chat_router = APIRouter(prefix="/chat", tags=["chat"])
user_router = APIRouter(prefix="/user", tags=["user"])
admin_router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(get_admin_user)])


def ok(data=None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body

# ==================== DEPENDENCIES ====================

def get_ai_responder(request: Request):
    return request.app.state.ai_responder


def get_fallback_monitor(request: Request) -> FallbackMonitor:
    return request.app.state.fallback_monitor


def get_chat_manager(
    db=Depends(get_database),
    responder=Depends(get_ai_responder),
    monitor: FallbackMonitor = Depends(get_fallback_monitor)
) -> ChatLifecycleManager:
    return ChatLifecycleManager(db, responder, monitor)


def get_alarm_manager(db=Depends(get_database)) -> AlarmManager:
    return AlarmManager(db)


def get_report_manager(db=Depends(get_database)) -> ReportManager:
    return ReportManager(db)


def get_admin_analytics(db=Depends(get_database)) -> AdminAnalytics:
    return AdminAnalytics(db)


def pagination_params(
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE)
) -> Pagination:
    return Pagination(page=page, limit=limit)

# ==================== AUTH ROUTES ====================

def set_auth_cookie(response: Response, token: str):
    response.set_cookie(
        key="access_token",
        value=token,
        httponly=True,
        secure=config.is_production(),
        samesite="none" if config.is_production() else "lax",
        path="/",
        max_age=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    )


@auth_router.post("/register", status_code=201)
async def register(user_data: UserCreate, response: Response, db=Depends(get_database)):
    """Register a new user"""
    user = await register_user(db, user_data)
    token = issue_token_for(user)
    set_auth_cookie(response, token)
    return ok({"user": user.model_dump(), "token": token}, "User registered successfully")


@auth_router.post("/login")
async def login(form_data: UserLogin, response: Response, db=Depends(get_database)):
    """Login user and set JWT cookie"""
    user = await authenticate_user(db, form_data)
    token = issue_token_for(user)
    set_auth_cookie(response, token)
    return ok({"user": user.model_dump(), "token": token}, "Login successful")


@auth_router.get("/profile")
async def get_profile(current_user: User = Depends(get_current_user)):
    return ok({"user": current_user.model_dump()})


@auth_router.put("/profile")
async def put_profile(
    payload: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db=Depends(get_database)
):
    user = await update_profile(db, current_user, payload)
    return ok({"user": user.model_dump()}, "Profile updated successfully")


@auth_router.post("/logout")
async def logout(response: Response, current_user: User = Depends(get_current_user)):
    response.delete_cookie(key="access_token", path="/")
    return ok(message="Logged out successfully")

# ==================== CHAT ====================

@chat_router.post("", status_code=201)
async def create_chat(
    payload: ChatCreate,
    current_user: User = Depends(get_current_user),
    manager: ChatLifecycleManager = Depends(get_chat_manager)
):
    chat = await manager.create_chat(
        current_user.user_id,
        title=payload.title,
        issue=payload.issue,
        category=payload.category,
        priority=payload.priority
    )
    return ok({"chat": chat}, "Chat created successfully")


@chat_router.get("")
async def list_chats(
    status: Optional[ChatStatus] = None,
    pagination: Pagination = Depends(pagination_params),
    current_user: User = Depends(get_current_user),
    manager: ChatLifecycleManager = Depends(get_chat_manager)
):
    criteria = OwnChatFilter(user_id=current_user.user_id, status=status)
    return ok(await manager.list_chats(criteria, pagination))


@chat_router.get("/{chat_id}")
async def get_chat(
    chat_id: str,
    current_user: User = Depends(get_current_user),
    manager: ChatLifecycleManager = Depends(get_chat_manager)
):
    return ok({"chat": await manager.get_chat(current_user.user_id, chat_id)})


@chat_router.post("/{chat_id}/messages")
async def send_message(
    chat_id: str,
    payload: MessageCreate,
    current_user: User = Depends(get_current_user),
    manager: ChatLifecycleManager = Depends(get_chat_manager)
):
    """Append the user's message and the assistant's reply"""
    exchange = await manager.send_message(current_user.user_id, chat_id, payload.content)
    return ok(exchange)


@chat_router.put("/{chat_id}")
async def update_chat(
    chat_id: str,
    payload: ChatUpdate,
    current_user: User = Depends(get_current_user),
    manager: ChatLifecycleManager = Depends(get_chat_manager)
):
    chat = await manager.update_chat(
        current_user.user_id,
        chat_id,
        title=payload.title,
        status=payload.status,
        priority=payload.priority
    )
    return ok({"chat": chat}, "Chat updated successfully")


@chat_router.post("/{chat_id}/review")
async def add_review(
    chat_id: str,
    payload: ReviewCreate,
    current_user: User = Depends(get_current_user),
    manager: ChatLifecycleManager = Depends(get_chat_manager)
):
    chat = await manager.add_review(current_user.user_id, chat_id, payload.rating, payload.feedback)
    return ok({"chat": chat}, "Review added successfully")


@chat_router.post("/{chat_id}/title")
async def suggest_chat_title(
    chat_id: str,
    current_user: User = Depends(get_current_user),
    manager: ChatLifecycleManager = Depends(get_chat_manager)
):
    chat = await manager.suggest_title(current_user.user_id, chat_id)
    return ok({"chat": chat}, "Chat title updated")


@chat_router.delete("/{chat_id}")
async def delete_chat(
    chat_id: str,
    current_user: User = Depends(get_current_user),
    manager: ChatLifecycleManager = Depends(get_chat_manager)
):
    await manager.delete_chat(current_user.user_id, chat_id)
    return ok(message="Chat deleted successfully")

# ==================== USER DASHBOARD & ALARMS ====================

@user_router.get("/dashboard")
async def get_dashboard(current_user: User = Depends(get_current_user), db=Depends(get_database)):
    return ok(await dashboard_stats(db, current_user.user_id))


@user_router.get("/pending-ratings")
async def get_pending_ratings(current_user: User = Depends(get_current_user), db=Depends(get_database)):
    return ok({"pending_chats": await pending_ratings(db, current_user.user_id)})


@user_router.get("/alarms")
async def get_alarms(
    current_user: User = Depends(get_current_user),
    manager: AlarmManager = Depends(get_alarm_manager)
):
    """Get all alarms for current user, deactivating overdue ones first"""
    return ok({"alarms": await manager.list_alarms(current_user.user_id)})


@user_router.post("/alarms")
async def create_alarm(
    payload: AlarmCreate,
    current_user: User = Depends(get_current_user),
    manager: AlarmManager = Depends(get_alarm_manager)
):
    alarm = await manager.create_alarm(current_user.user_id, payload)
    return ok({"alarm": alarm}, "Alarm created successfully")


@user_router.put("/alarms/{alarm_id}")
async def update_alarm(
    alarm_id: str,
    payload: AlarmUpdate,
    current_user: User = Depends(get_current_user),
    manager: AlarmManager = Depends(get_alarm_manager)
):
    alarm = await manager.update_alarm(current_user.user_id, alarm_id, payload)
    return ok({"alarm": alarm}, "Alarm updated successfully")


@user_router.put("/alarms/{alarm_id}/complete")
async def complete_alarm(
    alarm_id: str,
    current_user: User = Depends(get_current_user),
    manager: AlarmManager = Depends(get_alarm_manager)
):
    alarm = await manager.complete_alarm(current_user.user_id, alarm_id)
    return ok({"alarm": alarm}, "Alarm completed")


@user_router.delete("/alarms/{alarm_id}")
async def delete_alarm(
    alarm_id: str,
    current_user: User = Depends(get_current_user),
    manager: AlarmManager = Depends(get_alarm_manager)
):
    await manager.delete_alarm(current_user.user_id, alarm_id)
    return ok(message="Alarm deleted successfully")


@user_router.post("/reports", status_code=201)
async def create_report(
    payload: ReportCreate,
    current_user: User = Depends(get_current_user),
    manager: ReportManager = Depends(get_report_manager)
):
    report = await manager.create_report(current_user.user_id, payload)
    return ok({"report": report}, "Report submitted successfully")

# ==================== ADMIN ====================

@admin_router.get("/dashboard/analytics")
async def admin_dashboard_analytics(
    timeframe: str = DEFAULT_TIMEFRAME,
    analytics: AdminAnalytics = Depends(get_admin_analytics)
):
    return ok(await analytics.dashboard_analytics(timeframe))


@admin_router.get("/users")
async def admin_list_users(
    search: Optional[str] = None,
    role: Optional[Role] = None,
    status: Optional[Literal["active", "inactive", "banned"]] = None,
    sort_by: Literal["created_at", "last_login", "username", "email"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    pagination: Pagination = Depends(pagination_params),
    analytics: AdminAnalytics = Depends(get_admin_analytics)
):
    criteria = UserFilter(search=search, role=role, status=status, sort_by=sort_by, sort_order=sort_order)
    return ok(await analytics.list_users(criteria, pagination))


@admin_router.get("/users/{user_id}")
async def admin_user_details(user_id: str, analytics: AdminAnalytics = Depends(get_admin_analytics)):
    return ok(await analytics.user_details(user_id))


@admin_router.put("/users/{user_id}/ban")
async def admin_toggle_ban(
    user_id: str,
    payload: BanRequest,
    current_user: User = Depends(get_admin_user),
    analytics: AdminAnalytics = Depends(get_admin_analytics)
):
    user = await analytics.toggle_ban(current_user, user_id, payload)
    verb = "banned" if payload.banned else "unbanned"
    return ok({"user": user}, f"User {verb} successfully")


@admin_router.get("/users/{user_id}/chats")
async def admin_user_chat_history(
    user_id: str,
    status: Optional[ChatStatus] = None,
    category: Optional[ChatCategory] = None,
    sort_by: Literal["created_at", "updated_at", "priority", "status"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    pagination: Pagination = Depends(pagination_params),
    analytics: AdminAnalytics = Depends(get_admin_analytics)
):
    criteria = UserChatHistoryFilter(
        user_id=user_id, status=status, category=category, sort_by=sort_by, sort_order=sort_order
    )
    return ok(await analytics.user_chat_history(criteria, pagination))


@admin_router.get("/chats")
async def admin_list_chats(
    user_id: Optional[str] = None,
    category: Optional[ChatCategory] = None,
    status: Optional[ChatStatus] = None,
    priority: Optional[ChatPriority] = None,
    search: Optional[str] = None,
    pagination: Pagination = Depends(pagination_params),
    analytics: AdminAnalytics = Depends(get_admin_analytics)
):
    criteria = ChatFilter(user_id=user_id, category=category, status=status, priority=priority, search=search)
    return ok(await analytics.list_chats(criteria, pagination))


@admin_router.get("/chats/{chat_id}")
async def admin_chat_details(chat_id: str, analytics: AdminAnalytics = Depends(get_admin_analytics)):
    return ok({"chat": await analytics.chat_details(chat_id)})


@admin_router.get("/reports")
async def admin_list_reports(
    status: Optional[ReportStatus] = None,
    report_type: Optional[ReportType] = None,
    severity: Optional[ReportSeverity] = None,
    pagination: Pagination = Depends(pagination_params),
    manager: ReportManager = Depends(get_report_manager)
):
    criteria = ReportFilter(status=status, report_type=report_type, severity=severity)
    return ok(await manager.list_reports(criteria, pagination))


@admin_router.put("/reports/{report_id}")
async def admin_update_report(
    report_id: str,
    payload: ReportUpdate,
    current_user: User = Depends(get_admin_user),
    manager: ReportManager = Depends(get_report_manager)
):
    report = await manager.update_report(current_user, report_id, payload)
    return ok({"report": report}, "Report updated successfully")


@admin_router.get("/ai/status")
async def admin_ai_status(
    responder=Depends(get_ai_responder),
    monitor: FallbackMonitor = Depends(get_fallback_monitor)
):
    return ok({"configured": bool(getattr(responder, "configured", True)), **monitor.snapshot()})

# ==================== ROOT ====================

@app.get("/health")
async def health():
    return {
        "success": True,
        "message": f"{config.APP_NAME} is running",
        "timestamp": utcnow().isoformat(),
        "environment": config.APP_ENV
    }


@app.get("/api")
async def api_index():
    return ok(
        {
            "version": config.APP_VERSION,
            "endpoints": sorted(
                f"{method} {route.path}"
                for route in app.routes
                if route.path.startswith("/api/")
                for method in getattr(route, "methods", set()) - {"HEAD", "OPTIONS"}
            )
        },
        f"Welcome to {config.APP_NAME}"
    )


api_router.include_router(auth_router)
api_router.include_router(chat_router)
api_router.include_router(user_router)
api_router.include_router(admin_router)

# Include the router in the main app
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
