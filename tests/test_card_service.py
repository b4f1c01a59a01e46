from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import MagicMock

from bson import ObjectId
import pytest
from pymongo.errors import PyMongoError

from agentbuy.database import collections
from agentbuy.errors import InsufficientCardsError, NotFoundError, ValidationError
from agentbuy.services.card_service import CardService
from tests.conftest import FakeCursor


def _modified(count=1):
    return MagicMock(modified_count=count)


@pytest.fixture
def service(mock_db):
    return CardService(mock_db, initial_cards=5)


@pytest.fixture
def users(mock_db):
    return mock_db.collections[collections.USERS]


@pytest.fixture
def profiles(mock_db):
    return mock_db.collections[collections.PROFILES]


@pytest.fixture
def ledger(mock_db):
    return mock_db.collections[collections.CARD_TRANSACTIONS]


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -3, 1.5, True])
async def test_gift_rejects_invalid_amounts(service, users, user_doc, amount):
    with pytest.raises(ValidationError):
        await service.gift_cards(user_doc["_id"], "user", "99112233", amount)
    users.update_one.assert_not_called()


@pytest.mark.asyncio
async def test_gift_with_insufficient_balance(service, users, ledger, user_doc):
    user_doc["research_cards"] = 1
    users.find_one.return_value = user_doc

    with pytest.raises(InsufficientCardsError):
        await service.gift_cards(user_doc["_id"], "user", "99112233", 3)
    ledger.insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_gift_to_self_is_rejected(service, users, profiles, user_doc):
    users.find_one.side_effect = [user_doc, user_doc]
    profiles.find_one.return_value = {"user_id": user_doc["_id"], "phone": "99112233"}

    with pytest.raises(ValidationError):
        await service.gift_cards(user_doc["_id"], "user", "99112233", 1)


@pytest.mark.asyncio
async def test_gift_to_unknown_phone(service, users, profiles, user_doc):
    users.find_one.return_value = user_doc
    profiles.find_one.return_value = None

    with pytest.raises(NotFoundError):
        await service.gift_cards(user_doc["_id"], "user", "00000000", 1)


@pytest.mark.asyncio
async def test_user_transfer_debits_sender_and_credits_recipient(service, users, profiles, ledger, user_doc, agent_doc):
    users.find_one.side_effect = [user_doc, agent_doc]
    profiles.find_one.return_value = {"user_id": agent_doc["_id"], "phone": "99112233"}
    users.update_one.return_value = _modified()
    ledger.insert_one.return_value = MagicMock(inserted_id=ObjectId())

    await service.gift_cards(user_doc["_id"], "user", " 99112233 ", 2)

    debit, credit = users.update_one.call_args_list
    assert debit.args[0] == {"_id": user_doc["_id"], "research_cards": {"$gte": 2}}
    assert debit.args[1]["$inc"] == {"research_cards": -2}
    assert credit.args[0] == {"_id": agent_doc["_id"]}
    assert credit.args[1]["$inc"] == {"research_cards": 2}

    entry = ledger.insert_one.call_args.args[0]
    assert entry["type"] == "user_transfer"
    assert entry["from_user_id"] == user_doc["_id"]
    assert entry["to_user_id"] == agent_doc["_id"]
    assert entry["amount"] == 2
    assert entry["recipient_phone"] == "99112233"


@pytest.mark.asyncio
async def test_agent_sender_records_agent_gift(service, users, profiles, ledger, user_doc, agent_doc):
    users.find_one.side_effect = [agent_doc, user_doc]
    profiles.find_one.return_value = {"user_id": user_doc["_id"]}
    users.update_one.return_value = _modified()
    ledger.insert_one.return_value = MagicMock(inserted_id=ObjectId())

    await service.gift_cards(agent_doc["_id"], "agent", "99112233", 3)

    assert ledger.insert_one.call_args.args[0]["type"] == "agent_gift"


@pytest.mark.asyncio
async def test_admin_sender_is_never_debited(service, users, profiles, ledger, user_doc, admin_doc):
    users.find_one.return_value = user_doc
    profiles.find_one.return_value = {"user_id": user_doc["_id"]}
    users.update_one.return_value = _modified()
    ledger.insert_one.return_value = MagicMock(inserted_id=ObjectId())

    await service.gift_cards(admin_doc["_id"], "admin", "99112233", 10)

    assert users.update_one.call_count == 1
    assert users.update_one.call_args.args[0] == {"_id": user_doc["_id"]}
    entry = ledger.insert_one.call_args.args[0]
    assert entry["type"] == "admin_gift"
    assert entry["from_user_id"] == admin_doc["_id"]


@pytest.mark.asyncio
async def test_guarded_debit_failure_writes_no_ledger_entry(service, users, profiles, ledger, user_doc, agent_doc):
    users.find_one.side_effect = [user_doc, agent_doc]
    profiles.find_one.return_value = {"user_id": agent_doc["_id"]}
    # A concurrent spend drained the balance between the read and the guarded update
    users.update_one.return_value = _modified(0)

    with pytest.raises(InsufficientCardsError):
        await service.gift_cards(user_doc["_id"], "user", "99112233", 2)

    assert users.update_one.call_count == 1
    ledger.insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_ledger_failure_reverts_balance_changes(service, users, profiles, ledger, user_doc, agent_doc):
    users.find_one.side_effect = [user_doc, agent_doc]
    profiles.find_one.return_value = {"user_id": agent_doc["_id"]}
    users.update_one.return_value = _modified()
    ledger.insert_one.side_effect = PyMongoError("write failed")

    with pytest.raises(PyMongoError):
        await service.gift_cards(user_doc["_id"], "user", "99112233", 2)

    calls = users.update_one.call_args_list
    assert len(calls) == 4
    assert calls[2].args == ({"_id": agent_doc["_id"]}, {"$inc": {"research_cards": -2}})
    assert calls[3].args == ({"_id": user_doc["_id"]}, {"$inc": {"research_cards": 2}})


@pytest.fixture
def session(mock_db):
    session = MagicMock(name="session")

    @asynccontextmanager
    async def transaction():
        yield session

    mock_db.transaction = transaction
    return session


@pytest.mark.asyncio
async def test_transfer_inside_transaction_uses_the_session(service, users, profiles, ledger, session, user_doc, agent_doc):
    users.find_one.side_effect = [user_doc, agent_doc]
    profiles.find_one.return_value = {"user_id": agent_doc["_id"]}
    users.update_one.return_value = _modified()
    ledger.insert_one.return_value = MagicMock(inserted_id=ObjectId())

    await service.gift_cards(user_doc["_id"], "user", "99112233", 2)

    assert all(c.kwargs["session"] is session for c in users.update_one.call_args_list)
    assert ledger.insert_one.call_args.kwargs["session"] is session


@pytest.mark.asyncio
async def test_failed_transaction_is_left_to_abort(service, users, profiles, ledger, session, user_doc, agent_doc):
    users.find_one.side_effect = [user_doc, agent_doc]
    profiles.find_one.return_value = {"user_id": agent_doc["_id"]}
    users.update_one.return_value = _modified()
    ledger.insert_one.side_effect = PyMongoError("write failed")

    with pytest.raises(PyMongoError):
        await service.gift_cards(user_doc["_id"], "user", "99112233", 2)

    # Only the two in-transaction updates; no reversing $inc outside the session
    assert users.update_one.call_count == 2
    assert all(c.kwargs.get("session") is session for c in users.update_one.call_args_list)


@pytest.mark.asyncio
async def test_uncovered_debit_in_transaction_skips_credit(service, users, profiles, ledger, session, user_doc, agent_doc):
    users.find_one.side_effect = [user_doc, agent_doc]
    profiles.find_one.return_value = {"user_id": agent_doc["_id"]}
    users.update_one.return_value = _modified(0)

    with pytest.raises(InsufficientCardsError):
        await service.gift_cards(user_doc["_id"], "user", "99112233", 2)

    assert users.update_one.call_count == 1
    ledger.insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_initial_grant_only_once_and_only_for_users(service, users, ledger, user_doc, agent_doc):
    users.find_one.return_value = user_doc
    ledger.find_one.return_value = None
    users.update_one.return_value = _modified()
    ledger.insert_one.return_value = MagicMock(inserted_id=ObjectId())

    assert await service.grant_initial_cards(user_doc["_id"]) is True
    entry = ledger.insert_one.call_args.args[0]
    assert entry["type"] == "initial_grant"
    assert entry["amount"] == 5
    assert entry["from_user_id"] is None

    ledger.find_one.return_value = {"_id": ObjectId(), "type": "initial_grant"}
    assert await service.grant_initial_cards(user_doc["_id"]) is False

    users.find_one.return_value = agent_doc
    assert await service.grant_initial_cards(agent_doc["_id"]) is False
    assert ledger.insert_one.call_count == 1


@pytest.mark.asyncio
async def test_bundle_order_deducts_one_card_per_item(service, users, ledger, user_doc):
    users.find_one.return_value = user_doc
    users.update_one.return_value = _modified()
    ledger.insert_one.return_value = MagicMock(inserted_id=ObjectId())
    order_id = ObjectId()

    await service.deduct_cards_for_bundle_order(user_doc["_id"], order_id, 3)

    assert users.update_one.call_args.args[0]["research_cards"] == {"$gte": 3}
    entry = ledger.insert_one.call_args.args[0]
    assert entry["type"] == "order_deduction"
    assert entry["order_id"] == order_id


@pytest.mark.asyncio
async def test_burned_item_is_recorded_without_balance_change(service, users, ledger, user_doc):
    ledger.insert_one.return_value = MagicMock(inserted_id=ObjectId())

    await service.burn_card_for_removed_item(user_doc["_id"], ObjectId(), "item-1", "Гутал")

    users.update_one.assert_not_called()
    assert ledger.insert_one.call_args.args[0]["type"] == "bundle_item_removal"


@pytest.mark.asyncio
async def test_has_enough_cards_only_limits_buyers(service, users, user_doc):
    user_doc["research_cards"] = 0
    users.find_one.return_value = user_doc
    assert await service.has_enough_cards(user_doc["_id"], "user") is False
    assert await service.has_enough_cards(user_doc["_id"], "agent") is True


def test_ledger_effects_by_type():
    a, b = ObjectId(), ObjectId()
    effects = CardService.ledger_effects
    assert effects({"type": "initial_grant", "amount": 5, "to_user_id": a}) == [(str(a), 5)]
    assert effects({"type": "order_refund", "amount": 2, "to_user_id": a}) == [(str(a), 2)]
    assert sorted(effects({"type": "user_transfer", "amount": 2, "to_user_id": a, "from_user_id": b})) == sorted(
        [(str(a), 2), (str(b), -2)]
    )
    assert effects({"type": "order_deduction", "amount": 1, "to_user_id": a}) == [(str(a), -1)]
    assert effects({"type": "bundle_item_removal", "amount": 1, "to_user_id": a}) == []


@pytest.mark.asyncio
async def test_reconcile_reports_and_fixes_drift(service, users, ledger, user_doc, agent_doc, admin_doc):
    ledger.find.return_value = FakeCursor(
        [
            {"type": "initial_grant", "amount": 5, "to_user_id": user_doc["_id"]},
            {"type": "order_deduction", "amount": 1, "to_user_id": user_doc["_id"]},
            {"type": "admin_gift", "amount": 10, "to_user_id": agent_doc["_id"], "from_user_id": admin_doc["_id"]},
        ]
    )
    user_doc["research_cards"] = 7
    admin_doc["research_cards"] = 0
    users.find.return_value = FakeCursor([user_doc, agent_doc, admin_doc])

    report = await service.reconcile_balances(fix=True)

    assert report.users_checked == 3
    assert [d.user_id for d in report.drifts] == [str(user_doc["_id"])]
    assert report.drifts[0].ledger_balance == 4
    assert report.drifts[0].difference == 3
    assert report.fixed == 1
    assert users.update_one.call_args.args[1]["$set"]["research_cards"] == 4


@pytest.mark.asyncio
async def test_card_history_paginates(service, ledger, profiles, user_doc):
    entry = {
        "_id": ObjectId(),
        "to_user_id": user_doc["_id"],
        "from_user_id": None,
        "amount": 5,
        "type": "initial_grant",
        "created_at": datetime.now(timezone.utc),
    }
    ledger.count_documents.return_value = 41
    cursor = FakeCursor([entry])
    ledger.find.return_value = cursor
    profiles.find.return_value = FakeCursor([{"user_id": user_doc["_id"], "name": "Бат"}])

    history = await service.get_card_history(user_doc["_id"], page=2, limit=20)

    assert history.pagination.total_pages == 3
    assert history.pagination.page == 2
    assert history.transactions[0].to_user_name == "Бат"
    assert history.transactions[0].from_user_id is None
    assert (cursor.skipped, cursor.limited) == (20, 20)
