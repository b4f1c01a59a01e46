"""
# Research Card Models

Research cards are the platform's virtual currency: a buyer spends one card per order item
and receives cards from admins, agents or other users.

Every movement is recorded as an immutable `card_transactions` entry. The `type` field is a
closed set and decides how the entry affects balances:

| type | effect on balances |
|---|---|
| `initial_grant`, `admin_gift`, `order_refund`, `purchase` | credit `to_user_id` |
| `user_transfer`, `agent_gift` | debit `from_user_id`, credit `to_user_id` |
| `order_deduction` | debit `to_user_id` (the paying user) |
| `bundle_item_removal` | none, audit record of a burned card |
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from agentbuy.models.common import utcnow


class CardTransactionType(str, Enum):
    INITIAL_GRANT = "initial_grant"
    ADMIN_GIFT = "admin_gift"
    AGENT_GIFT = "agent_gift"
    USER_TRANSFER = "user_transfer"
    PURCHASE = "purchase"
    ORDER_DEDUCTION = "order_deduction"
    ORDER_REFUND = "order_refund"
    BUNDLE_ITEM_REMOVAL = "bundle_item_removal"


CREDIT_TYPES = {
    CardTransactionType.INITIAL_GRANT,
    CardTransactionType.ADMIN_GIFT,
    CardTransactionType.ORDER_REFUND,
    CardTransactionType.PURCHASE,
}
TRANSFER_TYPES = {CardTransactionType.USER_TRANSFER, CardTransactionType.AGENT_GIFT}
DEBIT_TYPES = {CardTransactionType.ORDER_DEDUCTION}


class CardTransactionCreate(BaseModel):
    """Validated input for one ledger entry. Amounts below 1 are rejected."""

    from_user_id: Optional[str] = Field(None, description="Sender user id, absent for system grants")
    to_user_id: str = Field(..., description="Recipient (or paying user for deductions)")
    amount: int = Field(..., ge=1, description="Number of cards, at least 1")
    type: CardTransactionType
    recipient_phone: Optional[str] = None
    order_id: Optional[str] = None
    note: Optional[str] = Field(None, max_length=200)
    created_at: datetime = Field(default_factory=utcnow)


class CardHistoryItem(BaseModel):
    id: str
    from_user_id: Optional[str] = None
    to_user_id: str
    amount: int
    type: CardTransactionType
    recipient_phone: Optional[str] = None
    order_id: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime
    from_user_name: Optional[str] = None
    to_user_name: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class CardHistoryResponse(BaseModel):
    transactions: List[CardHistoryItem]
    pagination: Pagination


class GiftCardsRequest(BaseModel):
    recipient_phone: str = Field(..., min_length=1, description="Recipient's profile phone number")
    amount: int = Field(..., ge=1)


class GrantAllRequest(BaseModel):
    amount: int = Field(5, ge=1)


class BalanceDrift(BaseModel):
    user_id: str
    email: Optional[str] = None
    cached_balance: int
    ledger_balance: int

    @property
    def difference(self) -> int:
        return self.cached_balance - self.ledger_balance


class ReconciliationReport(BaseModel):
    users_checked: int = 0
    drifts: List[BalanceDrift] = Field(default_factory=list)
    fixed: int = 0
    ledger_totals: Dict[str, int] = Field(default_factory=dict)
