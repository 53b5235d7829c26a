from datetime import timedelta

from admin_analytics import chat_stats
from models import utcnow

PENDING_RATING_FILTER = {"status": "resolved", "review": None}


def generate_user_insights(stats: dict) -> list:
    """Pick up to three dashboard insight cards from a user's chat stats."""
    insights = []
    total = stats.get("total_chats", 0)
    rating = stats.get("average_rating")

    if total > 10:
        insights.append({
            "type": "progress",
            "icon": "trending-up",
            "title": "Great Progress!",
            "content": "You've engaged in many conversations. Your proactive approach to care is commendable!"
        })
    elif total == 0:
        insights.append({
            "type": "welcome",
            "icon": "heart",
            "title": "Welcome to CareEase!",
            "content": "Start a conversation to get personalized care assistance tailored to your needs."
        })

    if rating and rating >= 4.5:
        insights.append({
            "type": "rating",
            "icon": "star",
            "title": "Excellent Experience",
            "content": "Your high ratings show you're receiving quality care assistance. Keep up the great feedback!"
        })
    elif rating and rating < 3.0:
        insights.append({
            "type": "improvement",
            "icon": "shield",
            "title": "Room for Improvement",
            "content": "We're always working to improve. Your feedback helps us provide better care."
        })

    if stats.get("active_chats", 0) > 3:
        insights.append({
            "type": "activity",
            "icon": "activity",
            "title": "Active Care Management",
            "content": "You have several active conversations. Consider resolving some to maintain focus."
        })

    if not insights:
        insights.extend([
            {
                "type": "tip",
                "icon": "heart",
                "title": "Daily Care Tip",
                "content": "Regular social interaction can significantly improve mental health in elderly care."
            },
            {
                "type": "reminder",
                "icon": "shield",
                "title": "Safety First",
                "content": "Ensure all medications are stored in a cool, dry place and check expiration dates regularly."
            }
        ])

    return insights[:3]


async def dashboard_stats(db, user_id: str) -> dict:
    stats = await chat_stats(db, {"user_id": user_id})
    stats["recent_resolved"] = await db.chats.count_documents({
        "user_id": user_id,
        "status": "resolved",
        "updated_at": {"$gte": utcnow() - timedelta(hours=24)}
    })
    stats["avg_response_time"] = "< 2min" if stats["total_messages"] > 0 else "N/A"

    recent_chats = await db.chats.find(
        {"user_id": user_id},
        {"_id": 0, "id": 1, "title": 1, "issue": 1, "status": 1, "category": 1,
         "created_at": 1, "updated_at": 1, "metadata": 1, "review": 1}
    ).sort("metadata.last_activity", -1).to_list(5)

    pending = await pending_ratings(db, user_id, limit=3)

    return {
        "stats": {
            "total_chats": stats["total_chats"],
            "active_chats": stats["active_chats"],
            "resolved_chats": stats["resolved_chats"],
            "average_rating": stats["average_rating"],
            "recent_resolved": stats["recent_resolved"],
            "avg_response_time": stats["avg_response_time"]
        },
        "recent_chats": recent_chats,
        "insights": generate_user_insights(stats),
        "pending_ratings": pending
    }


async def pending_ratings(db, user_id: str, limit: int = 5) -> list:
    return await db.chats.find(
        {"user_id": user_id, **PENDING_RATING_FILTER},
        {"_id": 0, "id": 1, "title": 1, "created_at": 1}
    ).to_list(limit)
