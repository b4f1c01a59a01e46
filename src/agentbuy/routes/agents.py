"""Public agent directory and buyer reviews."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, status

from agentbuy.config import settings
from agentbuy.models.common import serialize_document
from agentbuy.models.review_models import AgentReviewCreate
from agentbuy.models.user_models import UserRole
from agentbuy.routes.dependencies import get_content_service, get_review_service, require_role
from agentbuy.services.content_service import ContentService
from agentbuy.services.review_service import ReviewService

router = APIRouter(prefix="/api/agents", tags=["Agents"])


@router.get("/public")
async def public_agents(review_service: ReviewService = Depends(get_review_service)):
    """Approved agents ordered by rank. Unapproved agents are never listed."""
    return await review_service.get_public_agents()


@router.get("/top")
async def top_agents(
    limit: int = Query(settings.TOP_AGENT_RANK_LIMIT, ge=1, le=50),
    review_service: ReviewService = Depends(get_review_service),
):
    return await review_service.get_top_agents(limit=limit)


@router.get("/specialties")
async def specialties(content_service: ContentService = Depends(get_content_service)):
    return [serialize_document(s) for s in await content_service.get_public_specialties()]


@router.get("/{agent_id}/reviews")
async def agent_reviews(
    agent_id: str,
    limit: int = Query(10, ge=1, le=50),
    review_service: ReviewService = Depends(get_review_service),
):
    return await review_service.get_agent_reviews(agent_id, limit=limit)


@router.post("/{agent_id}/reviews/{order_id}", status_code=status.HTTP_201_CREATED)
async def create_review(
    agent_id: str,
    order_id: str,
    payload: AgentReviewCreate,
    current_user: Dict[str, Any] = Depends(require_role(UserRole.USER.value)),
    review_service: ReviewService = Depends(get_review_service),
):
    review = await review_service.create_review(
        current_user["_id"], agent_id, order_id, payload.rating, payload.comment
    )
    return {"message": "Review submitted", "review": serialize_document(review)}
