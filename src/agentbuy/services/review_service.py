"""
# Review Service

Buyer reviews of agents and the public agent directory built on them.

A buyer may review an agent once per completed order. Reviews are visible immediately
(`is_approved` and `is_visible` default to true); admins can hide or delete them afterwards.
Every review change recalculates the agent's directory statistics:

- `total_transactions`: number of completed orders
- `success_rate`: the higher of the completion rate (completed / (completed + cancelled))
  and the rating score (average approved rating x 20), both as rounded percentages
"""

from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from agentbuy.config import settings
from agentbuy.database import DatabaseManager, collections
from agentbuy.errors import ConflictError, NotFoundError, ValidationError
from agentbuy.managers.logging_manager import get_logger
from agentbuy.models.common import to_object_id, utcnow
from agentbuy.models.review_models import (
    CANCELLED_ORDER_STATUS,
    COMPLETED_ORDER_STATUS,
    AgentReviewCreate,
    AgentReviewDocument,
)
from agentbuy.models.user_models import UserRole

logger = get_logger(prefix="[ReviewService]")

DEFAULT_RANK = 999


def calculate_success_rate(completed: int, total: int, avg_rating: float) -> int:
    completion_rate = round(completed / total * 100) if total > 0 else 0
    return max(completion_rate, round(avg_rating * 20))


def display_name(agent: Dict[str, Any], profile: Optional[Dict[str, Any]]) -> str:
    agent_profile = agent.get("agent_profile") or {}
    if agent_profile.get("display_name"):
        return agent_profile["display_name"]
    if profile and profile.get("name"):
        return profile["name"]
    return agent["email"].split("@")[0]


class ReviewService:
    def __init__(self, db: DatabaseManager):
        self.db = db
        self.reviews_collection = collections.AGENT_REVIEWS
        self.orders_collection = collections.ORDERS
        self.users_collection = collections.USERS
        self.profiles_collection = collections.PROFILES

    async def create_review(
        self, user_id: Any, agent_id: Any, order_id: Any, rating: int, comment: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create the single review allowed for a completed order.

        Raises:
            ValidationError: Rating outside 1..5 or malformed ids.
            NotFoundError: The order does not exist, is not completed, or belongs to
                another buyer or agent.
            ConflictError: The order already has a review.
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")
        payload = AgentReviewCreate(rating=rating, comment=comment.strip() if comment else None)

        user_oid = to_object_id(user_id, "user id")
        agent_oid = to_object_id(agent_id, "agent id")
        order_oid = to_object_id(order_id, "order id")

        orders = self.db.get_collection(self.orders_collection)
        order = await orders.find_one(
            {"_id": order_oid, "user_id": user_oid, "agent_id": agent_oid, "status": COMPLETED_ORDER_STATUS}
        )
        if not order:
            raise NotFoundError("Order not found or not completed")

        reviews = self.db.get_collection(self.reviews_collection)
        if await reviews.find_one({"order_id": order_oid}):
            raise ConflictError("Review already exists for this order")

        document = AgentReviewDocument(
            agent_id=str(agent_oid),
            user_id=str(user_oid),
            order_id=str(order_oid),
            rating=payload.rating,
            comment=payload.comment,
        ).model_dump()
        document.update({"agent_id": agent_oid, "user_id": user_oid, "order_id": order_oid})
        try:
            result = await reviews.insert_one(document)
        except DuplicateKeyError as e:
            raise ConflictError("Review already exists for this order") from e

        logger.info("User %s reviewed agent %s for order %s (%d stars)", user_oid, agent_oid, order_oid, rating)
        await self.recalculate_agent_stats(agent_oid)
        document["_id"] = result.inserted_id
        return document

    async def list_reviews(self) -> List[Dict[str, Any]]:
        reviews = self.db.get_collection(self.reviews_collection)
        return await reviews.find({}).sort("created_at", -1).to_list(length=None)

    async def approve_review(self, review_id: Any, approved: bool) -> Dict[str, Any]:
        reviews = self.db.get_collection(self.reviews_collection)
        review_oid = to_object_id(review_id, "review id")
        review = await reviews.find_one({"_id": review_oid})
        if not review:
            raise NotFoundError("Review not found")

        await reviews.update_one(
            {"_id": review_oid}, {"$set": {"is_approved": approved, "is_visible": approved, "updated_at": utcnow()}}
        )
        await self.recalculate_agent_stats(review["agent_id"])
        review.update({"is_approved": approved, "is_visible": approved})
        return review

    async def delete_review(self, review_id: Any) -> bool:
        reviews = self.db.get_collection(self.reviews_collection)
        review_oid = to_object_id(review_id, "review id")
        review = await reviews.find_one_and_delete({"_id": review_oid})
        if not review:
            raise NotFoundError("Review not found")
        await self.recalculate_agent_stats(review["agent_id"])
        return True

    async def _rating_stats(self, agent_ids: List[Any]) -> Dict[str, Dict[str, Any]]:
        reviews = self.db.get_collection(self.reviews_collection)
        pipeline = [
            {"$match": {"agent_id": {"$in": agent_ids}, "is_approved": True, "is_visible": True}},
            {"$group": {"_id": "$agent_id", "avg_rating": {"$avg": "$rating"}, "review_count": {"$sum": 1}}},
        ]
        stats = await reviews.aggregate(pipeline).to_list(length=None)
        return {str(s["_id"]): s for s in stats}

    async def recalculate_agent_stats(self, agent_id: Any):
        """Refresh `total_transactions` and `success_rate` on the agent's directory profile."""
        agent_oid = to_object_id(agent_id, "agent id")
        orders = self.db.get_collection(self.orders_collection)
        completed = await orders.count_documents({"agent_id": agent_oid, "status": COMPLETED_ORDER_STATUS})
        total = await orders.count_documents(
            {"agent_id": agent_oid, "status": {"$in": [COMPLETED_ORDER_STATUS, CANCELLED_ORDER_STATUS]}}
        )
        stats = (await self._rating_stats([agent_oid])).get(str(agent_oid), {})
        avg_rating = stats.get("avg_rating") or 0

        success_rate = calculate_success_rate(completed, total, avg_rating)
        users = self.db.get_collection(self.users_collection)
        await users.update_one(
            {"_id": agent_oid},
            {
                "$set": {
                    "agent_profile.total_transactions": completed,
                    "agent_profile.success_rate": success_rate,
                    "updated_at": utcnow(),
                }
            },
        )
        logger.debug("Agent %s stats: completed=%d total=%d success_rate=%d", agent_oid, completed, total, success_rate)

    async def get_agent_reviews(self, agent_id: Any, limit: int = 10) -> List[Dict[str, Any]]:
        """Latest visible reviews of an agent with the reviewer's display name."""
        agent_oid = to_object_id(agent_id, "agent id")
        reviews = self.db.get_collection(self.reviews_collection)
        items = (
            await reviews.find({"agent_id": agent_oid, "is_approved": True, "is_visible": True})
            .sort("created_at", -1)
            .limit(max(1, min(limit, 50)))
            .to_list(length=None)
        )

        profiles = self.db.get_collection(self.profiles_collection)
        names = {}
        async for profile in profiles.find({"user_id": {"$in": [r["user_id"] for r in items]}}):
            names[str(profile["user_id"])] = profile.get("name")

        return [
            {
                "id": str(r["_id"]),
                "rating": r["rating"],
                "comment": r.get("comment"),
                "user_name": names.get(str(r["user_id"])) or "Хэрэглэгч",
                "created_at": r.get("created_at"),
            }
            for r in items
        ]

    async def _directory_entries(self, agents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        agent_ids = [a["_id"] for a in agents]
        profiles = self.db.get_collection(self.profiles_collection)
        profile_map = {}
        async for profile in profiles.find({"user_id": {"$in": agent_ids}}):
            profile_map[str(profile["user_id"])] = profile
        rating_map = await self._rating_stats(agent_ids)

        entries = []
        for agent in agents:
            key = str(agent["_id"])
            agent_profile = agent.get("agent_profile") or {}
            ratings = rating_map.get(key, {})
            entries.append(
                {
                    "id": key,
                    "name": display_name(agent, profile_map.get(key)),
                    "email": agent["email"],
                    "avatar_url": agent_profile.get("avatar_url"),
                    "bio": agent_profile.get("bio"),
                    "specialties": agent_profile.get("specialties", []),
                    "experience_years": agent_profile.get("experience_years"),
                    "rank": agent_profile.get("rank", DEFAULT_RANK),
                    "is_top_agent": agent_profile.get("is_top_agent", False),
                    "total_transactions": agent_profile.get("total_transactions", 0),
                    "success_rate": agent_profile.get("success_rate", 0),
                    "languages": agent_profile.get("languages", []),
                    "availability_status": agent_profile.get("availability_status", "offline"),
                    "avg_rating": round(ratings["avg_rating"], 1) if ratings.get("avg_rating") else 0,
                    "review_count": ratings.get("review_count", 0),
                    "agent_points": agent.get("agent_points", 0),
                }
            )
        return entries

    async def get_public_agents(self) -> List[Dict[str, Any]]:
        """Approved agents only; unapproved agents are never customer-visible."""
        users = self.db.get_collection(self.users_collection)
        agents = (
            await users.find({"role": UserRole.AGENT.value, "is_approved": True})
            .sort("agent_profile.rank", 1)
            .to_list(length=None)
        )
        return await self._directory_entries(agents)

    async def get_top_agents(self, limit: int = 10) -> List[Dict[str, Any]]:
        users = self.db.get_collection(self.users_collection)
        agents = (
            await users.find({"role": UserRole.AGENT.value, "is_approved": True, "agent_profile.is_top_agent": True})
            .sort("agent_profile.rank", 1)
            .limit(max(1, limit))
            .to_list(length=None)
        )
        return await self._directory_entries(agents)

    async def update_agent_rank(self, agent_id: Any, rank: int) -> Dict[str, Any]:
        """Set the directory rank. Ranks within `TOP_AGENT_RANK_LIMIT` mark the agent as top."""
        if isinstance(rank, bool) or not isinstance(rank, int) or rank < 1:
            raise ValidationError("Invalid rank value")
        users = self.db.get_collection(self.users_collection)
        agent_oid = to_object_id(agent_id, "agent id")
        result = await users.update_one(
            {"_id": agent_oid, "role": UserRole.AGENT.value},
            {
                "$set": {
                    "agent_profile.rank": rank,
                    "agent_profile.is_top_agent": rank <= settings.TOP_AGENT_RANK_LIMIT,
                    "updated_at": utcnow(),
                }
            },
        )
        if result.matched_count == 0:
            raise NotFoundError("Agent not found")
        return {"id": str(agent_oid), "rank": rank, "is_top_agent": rank <= settings.TOP_AGENT_RANK_LIMIT}
