from unittest.mock import MagicMock

from bson import ObjectId
import pytest
from pymongo.errors import DuplicateKeyError

from agentbuy.database import collections
from agentbuy.errors import ConflictError, NotFoundError, ValidationError
from agentbuy.services.review_service import ReviewService, calculate_success_rate
from tests.conftest import FakeCursor


@pytest.fixture
def service(mock_db):
    return ReviewService(mock_db)


@pytest.fixture
def ids():
    return {"user": ObjectId(), "agent": ObjectId(), "order": ObjectId()}


@pytest.fixture
def orders(mock_db):
    return mock_db.collections[collections.ORDERS]


@pytest.fixture
def reviews(mock_db):
    return mock_db.collections[collections.AGENT_REVIEWS]


def test_success_rate_takes_higher_of_completion_and_rating():
    assert calculate_success_rate(3, 4, 4.5) == 90
    assert calculate_success_rate(9, 10, 3.0) == 90
    assert calculate_success_rate(0, 0, 0) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", [0, 6, -1, 2.5, True])
async def test_rating_out_of_range_is_rejected(service, orders, ids, rating):
    with pytest.raises(ValidationError):
        await service.create_review(ids["user"], ids["agent"], ids["order"], rating)
    orders.find_one.assert_not_called()


@pytest.mark.asyncio
async def test_review_requires_completed_order(service, orders, ids):
    orders.find_one.return_value = None
    with pytest.raises(NotFoundError):
        await service.create_review(ids["user"], ids["agent"], ids["order"], 5)
    query = orders.find_one.call_args.args[0]
    assert query["status"] == "amjilttai_zahialga"
    assert query["user_id"] == ids["user"]


@pytest.mark.asyncio
async def test_second_review_for_order_conflicts(service, orders, reviews, ids):
    orders.find_one.return_value = {"_id": ids["order"]}
    reviews.find_one.return_value = {"_id": ObjectId(), "order_id": ids["order"]}

    with pytest.raises(ConflictError):
        await service.create_review(ids["user"], ids["agent"], ids["order"], 4)
    reviews.insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_concurrent_duplicate_insert_conflicts(service, orders, reviews, ids):
    orders.find_one.return_value = {"_id": ids["order"]}
    reviews.find_one.return_value = None
    reviews.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key error")

    with pytest.raises(ConflictError):
        await service.create_review(ids["user"], ids["agent"], ids["order"], 4)


@pytest.mark.asyncio
async def test_review_updates_agent_stats(service, mock_db, orders, reviews, ids):
    orders.find_one.return_value = {"_id": ids["order"]}
    reviews.find_one.return_value = None
    reviews.insert_one.return_value = MagicMock(inserted_id=ObjectId())
    orders.count_documents.side_effect = [3, 4]
    reviews.aggregate.return_value = FakeCursor([{"_id": ids["agent"], "avg_rating": 4.5, "review_count": 2}])
    users = mock_db.collections[collections.USERS]

    review = await service.create_review(ids["user"], ids["agent"], ids["order"], 5, "  Маш сайн  ")

    assert review["comment"] == "Маш сайн"
    assert review["order_id"] == ids["order"]
    assert review["is_approved"] is True
    stats = users.update_one.call_args.args[1]["$set"]
    assert stats["agent_profile.total_transactions"] == 3
    assert stats["agent_profile.success_rate"] == 90


@pytest.mark.asyncio
async def test_update_rank_marks_top_agents(service, mock_db, ids):
    users = mock_db.collections[collections.USERS]
    users.update_one.return_value = MagicMock(matched_count=1)

    assert (await service.update_agent_rank(ids["agent"], 3))["is_top_agent"] is True
    assert (await service.update_agent_rank(ids["agent"], 50))["is_top_agent"] is False

    users.update_one.return_value = MagicMock(matched_count=0)
    with pytest.raises(NotFoundError):
        await service.update_agent_rank(ids["agent"], 1)


@pytest.mark.asyncio
async def test_public_agents_only_lists_approved(service, mock_db, agent_doc):
    users = mock_db.collections[collections.USERS]
    users.find.return_value = FakeCursor([{**agent_doc, "agent_profile": {"display_name": "Болд", "rank": 1}}])

    agents = await service.get_public_agents()

    assert users.find.call_args.args[0] == {"role": "agent", "is_approved": True}
    assert agents[0]["name"] == "Болд"
    assert agents[0]["rank"] == 1
    assert agents[0]["review_count"] == 0
