"""
# Profile Routes

- `GET /api/profile` - the signed-in user's profile (404 until first saved)
- `PUT /api/profile` - create or update it; the phone number is what card gifts are sent to
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from agentbuy.errors import NotFoundError
from agentbuy.models.common import serialize_document
from agentbuy.models.user_models import ProfileUpdateRequest
from agentbuy.routes.dependencies import get_current_user, get_user_service
from agentbuy.services.user_service import UserService

router = APIRouter(prefix="/api/profile", tags=["Profile"])


@router.get("")
async def get_profile(
    current_user: Dict[str, Any] = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    profile = await user_service.get_profile(current_user["_id"])
    if not profile:
        raise NotFoundError("Profile not found")
    return serialize_document(profile)


@router.put("")
async def update_profile(
    payload: ProfileUpdateRequest,
    current_user: Dict[str, Any] = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    return serialize_document(await user_service.save_profile(current_user["_id"], payload))
