"""Registration and the current-user summary."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from agentbuy.models.user_models import RegisterRequest, UserRole
from agentbuy.routes.dependencies import get_card_service, get_current_user, get_user_service
from agentbuy.services.card_service import CardService
from agentbuy.services.user_service import UserService

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    user_service: UserService = Depends(get_user_service),
    card_service: CardService = Depends(get_card_service),
):
    """
    Register an account for `email`.

    Unknown roles fall back to `user`; `admin` is refused with 403 and an existing e-mail
    with 409. A new buyer receives the initial research cards right away.
    """
    user = await user_service.register(payload.email, payload.role)
    if user["role"] == UserRole.USER.value:
        await card_service.grant_initial_cards(user["id"])
    return {"message": "User registered successfully", "user": user}


@router.get("/me")
async def me(
    current_user: Dict[str, Any] = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    """Account, role-based `dashboard` path and profile of the signed-in user."""
    return await user_service.get_me(current_user["_id"])
