"""
# Research Card Routes

- `GET /api/cards/balance` - current balance
- `GET /api/cards/history` - paginated ledger entries
- `POST /api/cards/gift` - send cards to a phone number (admins send without a debit)
- `POST /api/cards/admin/gift` - admin gift
- `POST /api/cards/admin/grant-all` - admin grant to every buyer
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from agentbuy.models.card_models import CardHistoryResponse, GiftCardsRequest, GrantAllRequest
from agentbuy.routes.dependencies import get_card_service, get_current_user, require_admin
from agentbuy.services.card_service import CardService

router = APIRouter(prefix="/api/cards", tags=["Cards"])


@router.get("/balance")
async def get_balance(
    current_user: Dict[str, Any] = Depends(get_current_user),
    card_service: CardService = Depends(get_card_service),
):
    return {"research_cards": await card_service.get_balance(current_user["_id"])}


@router.get("/history", response_model=CardHistoryResponse)
async def get_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: Dict[str, Any] = Depends(get_current_user),
    card_service: CardService = Depends(get_card_service),
):
    return await card_service.get_card_history(current_user["_id"], page=page, limit=limit)


@router.post("/gift")
async def gift_cards(
    payload: GiftCardsRequest,
    current_user: Dict[str, Any] = Depends(get_current_user),
    card_service: CardService = Depends(get_card_service),
):
    transaction_id = await card_service.gift_cards(
        current_user["_id"], current_user.get("role"), payload.recipient_phone, payload.amount
    )
    return {"message": "Cards sent successfully", "transaction_id": str(transaction_id)}


@router.post("/admin/gift")
async def admin_gift_cards(
    payload: GiftCardsRequest,
    current_user: Dict[str, Any] = Depends(require_admin),
    card_service: CardService = Depends(get_card_service),
):
    transaction_id = await card_service.admin_gift_cards(current_user["_id"], payload.recipient_phone, payload.amount)
    return {"message": "Cards sent successfully", "transaction_id": str(transaction_id)}


@router.post("/admin/grant-all")
async def grant_all(
    payload: GrantAllRequest,
    current_user: Dict[str, Any] = Depends(require_admin),
    card_service: CardService = Depends(get_card_service),
):
    updated = await card_service.grant_cards_to_all_users(current_user["_id"], payload.amount)
    return {"message": f"Granted {payload.amount} cards to {updated} users", "updated_count": updated}
