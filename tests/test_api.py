from unittest.mock import MagicMock

from bson import ObjectId
from fastapi.testclient import TestClient
import pytest

from agentbuy.database import collections
from agentbuy.main import create_app
from agentbuy.routes.dependencies import get_current_user
from tests.conftest import FakeCursor

AUTH = {"Authorization": "Bearer test-session"}


@pytest.fixture
def app(mock_db):
    return create_app(db=mock_db, enable_metrics=False)


@pytest.fixture
def client(app):
    return TestClient(app)


def act_as(app, user):
    app.dependency_overrides[get_current_user] = lambda: user


def test_health_ok(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "connected"}


def test_health_reports_disconnected_database(client, mock_db):
    mock_db.health_check.return_value = False
    response = client.get("/health")
    assert response.status_code == 503
    assert response.json() == {"status": "error", "database": "disconnected"}


def test_unlisted_origin_is_refused(client):
    response = client.get("/health", headers={"Origin": "https://evil.example.com"})
    assert response.status_code == 403
    assert response.json()["detail"] == "Not allowed by CORS. Origin: https://evil.example.com"


def test_register_admin_is_forbidden(client):
    response = client.post("/api/auth/register", json={"email": "x@example.com", "role": "admin"})
    assert response.status_code == 403


def test_register_duplicate_email_conflicts(client, mock_db, user_doc):
    mock_db.collections[collections.USERS].find_one.return_value = user_doc
    response = client.post("/api/auth/register", json={"email": "buyer@example.com"})
    assert response.status_code == 409
    assert response.json() == {"detail": "Email already exists"}


def test_register_buyer_receives_initial_cards(client, mock_db):
    new_id = ObjectId()
    users = mock_db.collections[collections.USERS]
    ledger = mock_db.collections[collections.CARD_TRANSACTIONS]
    users.find_one.side_effect = [None, {"_id": new_id, "email": "new@example.com", "role": "user", "research_cards": 0}]
    users.insert_one.return_value = MagicMock(inserted_id=new_id)
    users.update_one.return_value = MagicMock(modified_count=1)
    ledger.find_one.return_value = None
    ledger.insert_one.return_value = MagicMock(inserted_id=ObjectId())

    response = client.post("/api/auth/register", json={"email": "new@example.com"})

    assert response.status_code == 201
    assert users.update_one.call_args.args[1]["$inc"] == {"research_cards": 5}
    entry = ledger.insert_one.call_args.args[0]
    assert (entry["type"], entry["to_user_id"], entry["amount"]) == ("initial_grant", new_id, 5)


def test_register_agent_gets_no_cards(client, mock_db):
    users = mock_db.collections[collections.USERS]
    users.find_one.return_value = None
    users.insert_one.return_value = MagicMock(inserted_id=ObjectId())

    response = client.post("/api/auth/register", json={"email": "agent2@example.com", "role": "agent"})

    assert response.status_code == 201
    mock_db.collections[collections.CARD_TRANSACTIONS].insert_one.assert_not_called()


def test_protected_route_without_session(client):
    response = client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json() == {"detail": "Unauthenticated"}


def test_protected_route_with_unverifiable_session(client):
    response = client.get("/api/auth/me", headers=AUTH)
    assert response.status_code == 401


def test_admin_routes_require_admin_role(app, client, user_doc):
    act_as(app, user_doc)
    assert client.get("/api/admin/agents", headers=AUTH).status_code == 403


def test_admin_lists_agents(app, client, mock_db, admin_doc, agent_doc):
    act_as(app, admin_doc)
    mock_db.collections[collections.USERS].find.return_value = FakeCursor([agent_doc])

    response = client.get("/api/admin/agents", headers=AUTH)

    assert response.status_code == 200
    assert response.json()[0]["email"] == "agent@example.com"


def test_malformed_id_is_a_validation_error(app, client, admin_doc):
    act_as(app, admin_doc)
    response = client.put("/api/admin/agents/not-an-id/approve", json={"approved": True}, headers=AUTH)
    assert response.status_code == 400


def test_review_rating_bounds_are_enforced(app, client, user_doc):
    act_as(app, user_doc)
    response = client.post(
        "/api/agents/65a000000000000000000001/reviews/65a000000000000000000002",
        json={"rating": 6},
        headers=AUTH,
    )
    assert response.status_code == 422


def test_agents_cannot_post_reviews(app, client, agent_doc):
    act_as(app, agent_doc)
    response = client.post(
        "/api/agents/65a000000000000000000001/reviews/65a000000000000000000002",
        json={"rating": 5},
        headers=AUTH,
    )
    assert response.status_code == 403


def test_card_balance(app, client, mock_db, user_doc):
    act_as(app, user_doc)
    mock_db.collections[collections.USERS].find_one.return_value = user_doc

    response = client.get("/api/cards/balance", headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {"research_cards": 5}


def test_public_banners_need_no_session(client, mock_db):
    response = client.get("/api/banners/active", params={"audience": "user"})
    assert response.status_code == 200
    assert response.json() == []


def test_openapi_declares_bearer_auth(client):
    schema = client.get("/openapi.json").json()
    assert schema["info"]["title"] == "AgentBuy API"
    assert "BearerAuth" in schema["components"]["securitySchemes"]


def test_profile_not_found_until_saved(app, client, mock_db, user_doc):
    act_as(app, user_doc)
    mock_db.collections[collections.PROFILES].find_one.return_value = None

    response = client.get("/api/profile", headers=AUTH)

    assert response.status_code == 404
    assert response.json() == {"detail": "Profile not found"}


def test_profile_save_and_read(app, client, mock_db, user_doc):
    act_as(app, user_doc)
    profiles = mock_db.collections[collections.PROFILES]
    stored = {"_id": ObjectId(), "user_id": user_doc["_id"], "name": "Bat", "phone": "99112233", "email": "bat@example.com"}
    profiles.find_one_and_update.return_value = stored
    profiles.find_one.return_value = stored

    saved = client.put(
        "/api/profile", json={"name": "Bat", "phone": "99112233", "email": "bat@example.com"}, headers=AUTH
    )
    fetched = client.get("/api/profile", headers=AUTH)

    assert saved.status_code == 200
    assert saved.json()["user_id"] == str(user_doc["_id"])
    assert fetched.json()["phone"] == "99112233"


def test_profile_invalid_phone_is_rejected(app, client, user_doc):
    act_as(app, user_doc)
    response = client.put("/api/profile", json={"name": "Bat", "phone": "123", "email": "bat@example.com"}, headers=AUTH)
    assert response.status_code == 422
