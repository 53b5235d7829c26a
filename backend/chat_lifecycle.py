"""
Chat lifecycle: creation, message exchange with the AI responder, review,
status edits and deletion.

Every lookup here is scoped by both chat id and owner id. Every write goes
through ``finalize_chat`` first so ``metadata.total_messages`` and
``metadata.last_activity`` never drift from the message list.
"""
import logging
import random
from datetime import datetime
from typing import List, Optional

from errors import AppError, NotFoundError, UpstreamError, ValidationError
from filters import OwnChatFilter, Pagination
from models import CHAT_CATEGORIES, CHAT_PRIORITIES, CHAT_STATUSES, Chat, ChatMessage, ChatReview, utcnow

logger = logging.getLogger(__name__)

# Served when the AI provider fails or returns nothing usable.
FALLBACK_RESPONSES = [
    "I understand your concern about medication management. Here are some helpful strategies: "
    "1) Use a daily pill organizer with compartments for each day of the week. 2) Set phone alarms "
    "for medication times. 3) Keep a medication list with dosages and timing. 4) Consider asking your "
    "pharmacist about blister packing services. Always consult with healthcare providers before making "
    "changes to medication routines.",

    "Thank you for sharing your mobility concerns. Here are some gentle exercises and safety tips: "
    "1) Chair exercises can help maintain strength and flexibility. 2) Consider using assistive devices "
    "like grab bars in the bathroom. 3) Ensure good lighting throughout the home. 4) Regular physical "
    "therapy can help maintain mobility. 5) Always consult with a healthcare provider before starting "
    "new exercises.",

    "Emotional well-being is just as important as physical health. Here are some supportive suggestions: "
    "1) Maintain social connections through phone calls or video chats. 2) Engage in hobbies or activities "
    "that bring joy. 3) Consider counseling or support groups. 4) Practice relaxation techniques like deep "
    "breathing. 5) Don't hesitate to reach out to family, friends, or healthcare providers when feeling "
    "overwhelmed.",

    "Daily care routines can be made easier with these tips: 1) Create a consistent daily schedule. "
    "2) Prepare meals in advance when possible. 3) Use adaptive tools for dressing and grooming. 4) Keep "
    "important items within easy reach. 5) Consider meal delivery services if cooking becomes difficult. "
    "Remember, it's okay to ask for help from family or professional caregivers.",

    "For emergency preparedness, I recommend: 1) Keep emergency contacts easily accessible. 2) Have a "
    "medical alert system if living alone. 3) Keep important medications in a readily accessible location. "
    "4) Ensure smoke detectors and carbon monoxide detectors are working. 5) Have a flashlight and extra "
    "batteries available. If this is an urgent medical situation, please call 911 immediately.",

    "Regarding health monitoring, here are some helpful approaches: 1) Keep a daily log of symptoms or "
    "concerns. 2) Monitor vital signs as recommended by your doctor. 3) Stay up-to-date with regular medical "
    "appointments. 4) Keep a list of all medications and supplements. 5) Don't hesitate to contact "
    "healthcare providers with questions or concerns. Early intervention is often the best approach.",
]

CHAT_LIST_PROJECTION = {"_id": 0, "messages": 0}


class FallbackMonitor:
    """Process-wide counters for AI provider degradation."""

    def __init__(self):
        self.upstream_failures = 0
        self.fallbacks_served = 0
        self.last_failure_at: Optional[datetime] = None
        self.last_failure_reason: Optional[str] = None

    def record_failure(self, reason: str):
        self.upstream_failures += 1
        self.last_failure_at = utcnow()
        self.last_failure_reason = reason

    def record_fallback(self):
        self.fallbacks_served += 1

    def snapshot(self) -> dict:
        return {
            "upstream_failures": self.upstream_failures,
            "fallbacks_served": self.fallbacks_served,
            "last_failure_at": self.last_failure_at,
            "last_failure_reason": self.last_failure_reason
        }


def average_response_time(messages: List[dict]) -> float:
    """Mean seconds between a user message and the assistant message right after it."""
    gaps = []
    for prev, nxt in zip(messages, messages[1:]):
        if prev.get("role") == "user" and nxt.get("role") == "assistant":
            gaps.append((nxt["timestamp"] - prev["timestamp"]).total_seconds())
    if not gaps:
        return 0
    return round(sum(gaps) / len(gaps), 3)


def finalize_chat(chat: dict, now: Optional[datetime] = None) -> dict:
    """Recompute derived chat fields. Call right before every persist."""
    now = now or utcnow()
    messages = chat.get("messages") or []
    metadata = dict(chat.get("metadata") or {})
    metadata["total_messages"] = len(messages)
    metadata["last_activity"] = now
    metadata["average_response_time"] = average_response_time(messages)
    chat["metadata"] = metadata
    chat["updated_at"] = now
    return chat


def _require_text(field: str, value, min_length: int, max_length: int) -> str:
    if not isinstance(value, str):
        raise ValidationError.for_field(field, f"{field} must be a string")
    cleaned = value.strip()
    if not (min_length <= len(cleaned) <= max_length):
        raise ValidationError.for_field(field, f"{field} must be between {min_length} and {max_length} characters")
    return cleaned


def _require_choice(field: str, value, choices) -> str:
    if value not in choices:
        raise ValidationError.for_field(field, f"Invalid {field}. Allowed values: {', '.join(choices)}")
    return value


class ChatLifecycleManager:
    def __init__(self, db, responder, monitor: Optional[FallbackMonitor] = None, rng: Optional[random.Random] = None):
        self.db = db
        self.responder = responder
        self.monitor = monitor or FallbackMonitor()
        self._rng = rng or random.Random()

    async def _find_owned(self, user_id: str, chat_id: str, projection: Optional[dict] = None) -> dict:
        chat = await self.db.chats.find_one({"id": chat_id, "user_id": user_id}, projection or {"_id": 0})
        if not chat:
            raise NotFoundError("Chat not found")
        return chat

    async def _persist(self, chat: dict, fields) -> dict:
        finalize_chat(chat)
        update = {field: chat[field] for field in fields}
        update["metadata"] = chat["metadata"]
        update["updated_at"] = chat["updated_at"]
        result = await self.db.chats.update_one(
            {"id": chat["id"], "user_id": chat["user_id"]},
            {"$set": update}
        )
        if result.matched_count == 0:
            # Deleted between read and write.
            raise NotFoundError("Chat not found")
        return chat

    async def create_chat(
        self,
        user_id: str,
        title: str,
        issue: str,
        category: str,
        priority: Optional[str] = None
    ) -> dict:
        title = _require_text("title", title, 1, 100)
        issue = _require_text("issue", issue, 10, 500)
        category = _require_choice("category", category, CHAT_CATEGORIES)
        priority = _require_choice("priority", priority, CHAT_PRIORITIES) if priority is not None else "medium"

        chat = Chat(
            user_id=user_id,
            title=title,
            issue=issue,
            category=category,
            priority=priority
        ).model_dump()
        finalize_chat(chat)

        await self.db.chats.insert_one(chat)
        chat.pop("_id", None)
        logger.info(f"Chat {chat['id']} created for user {user_id} ({category}/{priority})")
        return chat

    async def list_chats(self, criteria: OwnChatFilter, pagination: Pagination) -> dict:
        query = criteria.to_query()
        chats = await self.db.chats.find(query, CHAT_LIST_PROJECTION) \
            .sort("metadata.last_activity", -1) \
            .skip(pagination.skip) \
            .limit(pagination.limit) \
            .to_list(pagination.limit)
        total = await self.db.chats.count_documents(query)
        return {"chats": chats, "pagination": pagination.summary(total)}

    async def get_chat(self, user_id: str, chat_id: str) -> dict:
        return await self._find_owned(user_id, chat_id)

    async def send_message(self, user_id: str, chat_id: str, content: str) -> dict:
        content = _require_text("content", content, 1, 1000)
        chat = await self._find_owned(user_id, chat_id)

        user_message = ChatMessage(role="user", content=content).model_dump()
        chat.setdefault("messages", []).append(user_message)

        # The responder keeps no state, so it always gets the whole conversation.
        history = [{"role": m["role"], "content": m["content"]} for m in chat["messages"]]
        reply = await self._generate_reply(history)

        assistant_message = ChatMessage(role="assistant", content=reply).model_dump()
        chat["messages"].append(assistant_message)

        await self._persist(chat, ("messages",))
        return {"user_message": user_message, "assistant_message": assistant_message}

    async def _generate_reply(self, history: List[dict]) -> str:
        try:
            reply = await self.responder.complete(history)
        except Exception as e:
            reason = str(e) or type(e).__name__
        else:
            if isinstance(reply, str) and reply.strip():
                return reply
            if reply is None or isinstance(reply, str):
                reason = "Empty AI response"
            else:
                reason = f"Non-text AI response ({type(reply).__name__})"

        self.monitor.record_failure(reason)
        logger.warning(f"AI provider error, using fallback: {reason}")
        self.monitor.record_fallback()
        return self._rng.choice(FALLBACK_RESPONSES)

    async def update_chat(
        self,
        user_id: str,
        chat_id: str,
        title: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None
    ) -> dict:
        changes = {}
        if title is not None:
            changes["title"] = _require_text("title", title, 1, 100)
        if status is not None:
            changes["status"] = _require_choice("status", status, CHAT_STATUSES)
        if priority is not None:
            changes["priority"] = _require_choice("priority", priority, CHAT_PRIORITIES)

        chat = await self._find_owned(user_id, chat_id)
        chat.update(changes)
        return await self._persist(chat, tuple(changes))

    async def add_review(self, user_id: str, chat_id: str, rating: int, feedback: Optional[str] = None) -> dict:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError.for_field("rating", "Rating must be between 1 and 5")
        if feedback is not None:
            feedback = _require_text("feedback", feedback, 0, 1000) or None

        chat = await self._find_owned(user_id, chat_id)
        chat["review"] = ChatReview(rating=rating, feedback=feedback).model_dump()

        # A review closes an open conversation; it never reopens one.
        if chat.get("status") == "active":
            chat["status"] = "resolved"

        return await self._persist(chat, ("review", "status"))

    async def suggest_title(self, user_id: str, chat_id: str) -> dict:
        chat = await self._find_owned(user_id, chat_id)
        messages = chat.get("messages") or []
        first_user = next((m for m in messages if m.get("role") == "user"), None)
        first_reply = next((m for m in messages if m.get("role") == "assistant"), None)
        if not first_user or not first_reply:
            raise ValidationError.for_field("messages", "Send a message before asking for a title")

        others = await self.db.chats.find(
            {"user_id": user_id, "id": {"$ne": chat_id}},
            {"_id": 0, "title": 1}
        ).sort("created_at", -1).to_list(50)
        prior_titles = [c["title"] for c in others if c.get("title")]

        try:
            title = await self.responder.title_for(first_user["content"], first_reply["content"], prior_titles)
        except AppError as e:
            self.monitor.record_failure(e.message)
            raise
        except Exception as e:
            self.monitor.record_failure(str(e) or type(e).__name__)
            logger.error(f"Title generation failed for chat {chat_id}: {e}")
            raise UpstreamError("Could not generate a chat title") from e

        title = (title or "").strip()[:100].strip() if isinstance(title, str) else ""
        if not title:
            self.monitor.record_failure("Empty AI title")
            raise UpstreamError("Could not generate a chat title")

        chat["title"] = title
        return await self._persist(chat, ("title",))

    async def delete_chat(self, user_id: str, chat_id: str):
        result = await self.db.chats.delete_one({"id": chat_id, "user_id": user_id})
        if result.deleted_count == 0:
            raise NotFoundError("Chat not found")
        logger.info(f"Chat {chat_id} deleted by user {user_id}")
