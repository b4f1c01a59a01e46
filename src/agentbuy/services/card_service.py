"""
# Research Card Service

Owns every change to a user's research-card balance.

## Balance and Ledger

The spendable balance is cached on the user document (`users.research_cards`) and every
change is mirrored by one immutable entry in `card_transactions`. Both writes happen through
`_apply()`:

- **Replica set / mongos**: the balance update(s) and the ledger insert run in one
  multi-document transaction, so either all of them land or none does.
- **Standalone server**: debits use a guarded conditional update
  (`{"research_cards": {"$gte": amount}}`), so two concurrent debits can never overdraw the
  account. If a later step fails, the already applied balance changes are reversed before
  the error propagates.

`reconcile_balances()` recomputes every balance from the ledger and reports (or fixes)
users whose cached value drifted.

## Who Pays

Only the `user` role spends cards on orders. Agents spend their own cards when gifting;
admins are an unlimited source and are never debited.
"""

import math
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo.errors import PyMongoError

from agentbuy.config import settings
from agentbuy.database import DatabaseManager, collections
from agentbuy.errors import InsufficientCardsError, NotFoundError, ValidationError
from agentbuy.managers.logging_manager import get_logger
from agentbuy.models.card_models import (
    CREDIT_TYPES,
    DEBIT_TYPES,
    TRANSFER_TYPES,
    BalanceDrift,
    CardHistoryItem,
    CardHistoryResponse,
    CardTransactionCreate,
    CardTransactionType,
    Pagination,
    ReconciliationReport,
)
from agentbuy.models.common import to_object_id, utcnow
from agentbuy.models.user_models import UserRole

logger = get_logger(prefix="[CardService]")

MAX_HISTORY_PAGE_SIZE = 100


class CardService:
    """Research-card balances and their transaction ledger."""

    def __init__(self, db: DatabaseManager, initial_cards: Optional[int] = None):
        self.db = db
        self.initial_cards = initial_cards or settings.INITIAL_CARDS
        self.users_collection = collections.USERS
        self.profiles_collection = collections.PROFILES
        self.transactions_collection = collections.CARD_TRANSACTIONS

    # --- Low level building blocks ---

    @staticmethod
    def _validate_amount(amount: Any) -> int:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("Card amount must be a whole number")
        if amount < 1:
            raise ValidationError("At least 1 card is required")
        return amount

    async def _get_user(self, user_id: Any, session=None, label: str = "User") -> Dict[str, Any]:
        users = self.db.get_collection(self.users_collection)
        user = await users.find_one({"_id": to_object_id(user_id, "user id")}, session=session)
        if not user:
            raise NotFoundError(f"{label} not found")
        return user

    async def _find_recipient_by_phone(self, phone: str, session=None) -> Dict[str, Any]:
        profiles = self.db.get_collection(self.profiles_collection)
        profile = await profiles.find_one({"phone": phone.strip()}, session=session)
        if not profile:
            raise NotFoundError("Recipient not found. Check the phone number.")
        return await self._get_user(profile["user_id"], session=session, label="Recipient user")

    async def _change_balance(self, user_id: ObjectId, delta: int, session=None) -> bool:
        """
        Add `delta` to the cached balance. Negative deltas only apply when the balance covers them.
        """
        users = self.db.get_collection(self.users_collection)
        query: Dict[str, Any] = {"_id": user_id}
        if delta < 0:
            query["research_cards"] = {"$gte": -delta}
        result = await users.update_one(
            query,
            {"$inc": {"research_cards": delta}, "$set": {"updated_at": utcnow()}},
            session=session,
        )
        return result.modified_count == 1

    async def _record(self, entry: CardTransactionCreate, session=None) -> ObjectId:
        document = entry.model_dump()
        document["type"] = entry.type.value
        document["to_user_id"] = to_object_id(entry.to_user_id, "to_user_id")
        document["from_user_id"] = to_object_id(entry.from_user_id, "from_user_id") if entry.from_user_id else None
        document["order_id"] = to_object_id(entry.order_id, "order_id") if entry.order_id else None
        ledger = self.db.get_collection(self.transactions_collection)
        result = await ledger.insert_one(document, session=session)
        return result.inserted_id

    async def _apply(self, entry: CardTransactionCreate, changes: List[Tuple[ObjectId, int]]) -> ObjectId:
        """
        Apply balance `changes` and record `entry` as one unit.

        Raises:
            InsufficientCardsError: If a debit is not covered by the balance.
        """
        async with self.db.transaction() as session:
            applied: List[Tuple[ObjectId, int]] = []
            try:
                for user_id, delta in changes:
                    if not await self._change_balance(user_id, delta, session=session):
                        raise InsufficientCardsError("Not enough research cards")
                    applied.append((user_id, delta))
                return await self._record(entry, session=session)
            except (InsufficientCardsError, PyMongoError):
                if session is None:
                    await self._compensate(applied)
                raise

    async def _compensate(self, applied: List[Tuple[ObjectId, int]]):
        for user_id, delta in reversed(applied):
            users = self.db.get_collection(self.users_collection)
            await users.update_one({"_id": user_id}, {"$inc": {"research_cards": -delta}})
            logger.warning("Reverted balance change of %d for user %s", delta, user_id)

    # --- Queries ---

    async def get_balance(self, user_id: Any) -> int:
        user = await self._get_user(user_id)
        return int(user.get("research_cards", 0) or 0)

    async def has_enough_cards(self, user_id: Any, role: str, amount: int = 1) -> bool:
        """Agents and admins never need cards to place orders."""
        if role != UserRole.USER.value:
            return True
        return await self.get_balance(user_id) >= amount

    async def get_card_history(self, user_id: Any, page: int = 1, limit: int = 20) -> CardHistoryResponse:
        """Paginated ledger entries sent or received by the user, newest first."""
        page = max(1, page)
        limit = min(max(1, limit), MAX_HISTORY_PAGE_SIZE)
        user_oid = to_object_id(user_id, "user id")
        query = {"$or": [{"from_user_id": user_oid}, {"to_user_id": user_oid}]}

        ledger = self.db.get_collection(self.transactions_collection)
        total = await ledger.count_documents(query)
        cursor = ledger.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
        entries = await cursor.to_list(length=limit)

        participant_ids = set()
        for entry in entries:
            participant_ids.add(entry["to_user_id"])
            if entry.get("from_user_id"):
                participant_ids.add(entry["from_user_id"])

        names: Dict[str, str] = {}
        if participant_ids:
            profiles = self.db.get_collection(self.profiles_collection)
            async for profile in profiles.find({"user_id": {"$in": list(participant_ids)}}):
                names[str(profile["user_id"])] = profile.get("name")

        transactions = [
            CardHistoryItem(
                id=str(entry["_id"]),
                from_user_id=str(entry["from_user_id"]) if entry.get("from_user_id") else None,
                to_user_id=str(entry["to_user_id"]),
                amount=entry["amount"],
                type=entry["type"],
                recipient_phone=entry.get("recipient_phone"),
                order_id=str(entry["order_id"]) if entry.get("order_id") else None,
                note=entry.get("note"),
                created_at=entry["created_at"],
                from_user_name=names.get(str(entry["from_user_id"])) if entry.get("from_user_id") else None,
                to_user_name=names.get(str(entry["to_user_id"])),
            )
            for entry in entries
        ]
        return CardHistoryResponse(
            transactions=transactions,
            pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
        )

    # --- Grants and transfers ---

    async def grant_initial_cards(self, user_id: Any) -> bool:
        """
        Give a new buyer their welcome cards. Only the `user` role qualifies and each account
        is granted at most once.

        Returns:
            bool: True if cards were granted.
        """
        user = await self._get_user(user_id)
        if user.get("role", UserRole.USER.value) != UserRole.USER.value:
            return False

        ledger = self.db.get_collection(self.transactions_collection)
        already = await ledger.find_one(
            {"to_user_id": user["_id"], "type": CardTransactionType.INITIAL_GRANT.value}
        )
        if already:
            logger.debug("User %s already received the initial grant", user["_id"])
            return False

        entry = CardTransactionCreate(
            to_user_id=str(user["_id"]),
            amount=self.initial_cards,
            type=CardTransactionType.INITIAL_GRANT,
            note="Шинэ хэрэглэгчийн урамшуулал",
        )
        await self._apply(entry, [(user["_id"], self.initial_cards)])
        logger.info("Granted %d initial cards to user %s", self.initial_cards, user["_id"])
        return True

    async def gift_cards(self, from_user_id: Any, from_role: str, recipient_phone: str, amount: int) -> ObjectId:
        """
        Send cards from a user or agent to the account registered with `recipient_phone`.

        Admin senders are routed to `admin_gift_cards`, which does not debit the sender.

        Raises:
            ValidationError: Amount below 1, or sender and recipient are the same account.
            NotFoundError: Unknown sender, phone number or recipient account.
            InsufficientCardsError: Sender's balance does not cover the amount.
        """
        amount = self._validate_amount(amount)
        if from_role == UserRole.ADMIN.value:
            return await self.admin_gift_cards(from_user_id, recipient_phone, amount)

        sender = await self._get_user(from_user_id, label="Sender")
        if int(sender.get("research_cards", 0) or 0) < amount:
            raise InsufficientCardsError("Your card balance is not sufficient")

        recipient = await self._find_recipient_by_phone(recipient_phone)
        if recipient["_id"] == sender["_id"]:
            raise ValidationError("You cannot send cards to yourself")

        kind = CardTransactionType.AGENT_GIFT if from_role == UserRole.AGENT.value else CardTransactionType.USER_TRANSFER
        entry = CardTransactionCreate(
            from_user_id=str(sender["_id"]),
            to_user_id=str(recipient["_id"]),
            amount=amount,
            type=kind,
            recipient_phone=recipient_phone.strip(),
        )
        transaction_id = await self._apply(entry, [(sender["_id"], -amount), (recipient["_id"], amount)])
        logger.info(
            "%s: %d cards from %s to %s (txn %s)", kind.value, amount, sender["_id"], recipient["_id"], transaction_id
        )
        return transaction_id

    async def admin_gift_cards(self, admin_id: Any, recipient_phone: str, amount: int) -> ObjectId:
        amount = self._validate_amount(amount)
        recipient = await self._find_recipient_by_phone(recipient_phone)
        entry = CardTransactionCreate(
            from_user_id=str(to_object_id(admin_id, "admin id")),
            to_user_id=str(recipient["_id"]),
            amount=amount,
            type=CardTransactionType.ADMIN_GIFT,
            recipient_phone=recipient_phone.strip(),
        )
        transaction_id = await self._apply(entry, [(recipient["_id"], amount)])
        logger.info("admin_gift: %d cards from admin %s to %s", amount, admin_id, recipient["_id"])
        return transaction_id

    async def grant_cards_to_all_users(self, admin_id: Any, amount: Optional[int] = None) -> int:
        """Add `amount` cards to every `user`-role account. Returns the number of accounts credited."""
        amount = self._validate_amount(amount if amount is not None else self.initial_cards)
        admin_oid = to_object_id(admin_id, "admin id")
        users = self.db.get_collection(self.users_collection)

        updated = 0
        async for user in users.find({"role": UserRole.USER.value}, {"_id": 1}):
            entry = CardTransactionCreate(
                from_user_id=str(admin_oid),
                to_user_id=str(user["_id"]),
                amount=amount,
                type=CardTransactionType.ADMIN_GIFT,
                note="Бүх хэрэглэгчид карт олгосон",
            )
            await self._apply(entry, [(user["_id"], amount)])
            updated += 1

        logger.info("Admin %s granted %d cards to %d users", admin_id, amount, updated)
        return updated

    # --- Orders ---

    async def _deduct_for_order(self, user_id: Any, order_id: Any, count: int, note: str) -> ObjectId:
        count = self._validate_amount(count)
        user = await self._get_user(user_id)
        entry = CardTransactionCreate(
            to_user_id=str(user["_id"]),
            amount=count,
            type=CardTransactionType.ORDER_DEDUCTION,
            order_id=str(to_object_id(order_id, "order id")),
            note=note,
        )
        transaction_id = await self._apply(entry, [(user["_id"], -count)])
        logger.info("Deducted %d cards from %s for order %s", count, user["_id"], order_id)
        return transaction_id

    async def deduct_card_for_order(self, user_id: Any, order_id: Any) -> ObjectId:
        return await self._deduct_for_order(user_id, order_id, 1, "Захиалга үүсгэхэд зарцуулагдсан")

    async def deduct_cards_for_bundle_order(self, user_id: Any, order_id: Any, item_count: int) -> ObjectId:
        """One card per bundle item, taken in a single ledger entry."""
        return await self._deduct_for_order(
            user_id, order_id, item_count, f"Багц захиалга үүсгэхэд зарцуулагдсан ({item_count} бараа)"
        )

    async def refund_cards_for_order(self, user_id: Any, order_id: Any, amount: int) -> ObjectId:
        amount = self._validate_amount(amount)
        user = await self._get_user(user_id)
        entry = CardTransactionCreate(
            to_user_id=str(user["_id"]),
            amount=amount,
            type=CardTransactionType.ORDER_REFUND,
            order_id=str(to_object_id(order_id, "order id")),
            note=f"Амжилттай захиалгын карт буцаалт ({amount} карт)",
        )
        transaction_id = await self._apply(entry, [(user["_id"], amount)])
        logger.info("Refunded %d cards to %s for order %s", amount, user["_id"], order_id)
        return transaction_id

    async def burn_card_for_removed_item(self, user_id: Any, order_id: Any, item_id: str, item_name: str) -> ObjectId:
        """
        Record that a bundle item was removed. The card paid for it is not returned, so the
        balance is left unchanged and only the audit entry is written.
        """
        entry = CardTransactionCreate(
            to_user_id=str(to_object_id(user_id, "user id")),
            amount=1,
            type=CardTransactionType.BUNDLE_ITEM_REMOVAL,
            order_id=str(to_object_id(order_id, "order id")),
            note=f"Багцаас хасагдсан: {item_name} (item: {item_id})"[:200],
        )
        return await self._record(entry)

    # --- Reconciliation ---

    @staticmethod
    def ledger_effects(entry: Dict[str, Any]) -> List[Tuple[str, int]]:
        """Signed balance effects of one ledger entry as `(user_id, delta)` pairs."""
        kind = CardTransactionType(entry["type"])
        amount = int(entry["amount"])
        to_user = str(entry["to_user_id"])
        if kind in CREDIT_TYPES:
            return [(to_user, amount)]
        if kind in TRANSFER_TYPES:
            effects = [(to_user, amount)]
            if entry.get("from_user_id"):
                effects.append((str(entry["from_user_id"]), -amount))
            return effects
        if kind in DEBIT_TYPES:
            return [(to_user, -amount)]
        return []

    async def compute_ledger_balances(self) -> Dict[str, int]:
        balances: Dict[str, int] = {}
        ledger = self.db.get_collection(self.transactions_collection)
        async for entry in ledger.find({}):
            for user_id, delta in self.ledger_effects(entry):
                balances[user_id] = balances.get(user_id, 0) + delta
        return balances

    async def reconcile_balances(self, fix: bool = False) -> ReconciliationReport:
        """
        Compare each user's cached balance with the ledger sum.

        Args:
            fix: Overwrite drifted cached balances with the ledger value (floored at 0).
        """
        ledger_balances = await self.compute_ledger_balances()
        report = ReconciliationReport(ledger_totals=ledger_balances)
        users = self.db.get_collection(self.users_collection)

        async for user in users.find({}, {"email": 1, "role": 1, "research_cards": 1}):
            report.users_checked += 1
            # Admins are an unlimited source; their cached balance is not ledger-backed
            if user.get("role") == UserRole.ADMIN.value:
                continue
            cached = int(user.get("research_cards", 0) or 0)
            expected = ledger_balances.get(str(user["_id"]), 0)
            if cached == expected:
                continue

            report.drifts.append(
                BalanceDrift(user_id=str(user["_id"]), email=user.get("email"), cached_balance=cached, ledger_balance=expected)
            )
            logger.warning("Balance drift for %s: cached=%d ledger=%d", user["_id"], cached, expected)
            if fix:
                await users.update_one(
                    {"_id": user["_id"]},
                    {"$set": {"research_cards": max(expected, 0), "updated_at": utcnow()}},
                )
                report.fixed += 1

        logger.info(
            "Reconciliation checked %d users: %d drifted, %d fixed",
            report.users_checked,
            len(report.drifts),
            report.fixed,
        )
        return report
