from unittest.mock import AsyncMock, MagicMock

from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
import pytest

from agentbuy.routes import dependencies
from agentbuy.routes.dependencies import _resolve_user, get_current_user


@pytest.fixture
def user_service():
    return MagicMock(get_or_create_user=AsyncMock(), get_user_by_id=AsyncMock())


@pytest.fixture
def card_service():
    return MagicMock(grant_initial_cards=AsyncMock(return_value=True))


@pytest.mark.asyncio
async def test_first_sign_in_of_a_buyer_grants_cards(user_service, card_service, user_doc):
    fresh = {**user_doc, "research_cards": 0}
    user_service.get_or_create_user.return_value = (fresh, True)
    user_service.get_user_by_id.return_value = user_doc

    user = await _resolve_user("buyer@example.com", user_service, card_service)

    card_service.grant_initial_cards.assert_awaited_once_with(user_doc["_id"])
    assert user["research_cards"] == 5


@pytest.mark.asyncio
async def test_returning_user_is_not_granted_again(user_service, card_service, user_doc):
    user_service.get_or_create_user.return_value = (user_doc, False)

    assert await _resolve_user("buyer@example.com", user_service, card_service) is user_doc
    card_service.grant_initial_cards.assert_not_awaited()


@pytest.mark.asyncio
async def test_new_agent_gets_no_cards(user_service, card_service, agent_doc):
    user_service.get_or_create_user.return_value = (agent_doc, True)

    await _resolve_user("agent@example.com", user_service, card_service)
    card_service.grant_initial_cards.assert_not_awaited()


@pytest.mark.asyncio
async def test_current_user_from_verified_claims(monkeypatch, user_service, card_service, user_doc):
    monkeypatch.setattr(dependencies, "auth_bypass_enabled", lambda: False)
    monkeypatch.setattr(dependencies, "verify_session_token", lambda token: {"sub": "user_1", "email": "Buyer@Example.com"})
    user_service.get_or_create_user.return_value = (user_doc, False)
    identity = MagicMock(fetch_primary_email=AsyncMock())

    user = await get_current_user(
        HTTPAuthorizationCredentials(scheme="Bearer", credentials="token"), user_service, card_service, identity
    )

    assert user is user_doc
    assert user_service.get_or_create_user.await_args.args[0] == "buyer@example.com"
    identity.fetch_primary_email.assert_not_awaited()


@pytest.mark.asyncio
async def test_current_user_without_any_email_is_rejected(monkeypatch, user_service, card_service):
    monkeypatch.setattr(dependencies, "auth_bypass_enabled", lambda: False)
    monkeypatch.setattr(dependencies, "verify_session_token", lambda token: {"sub": "user_1"})
    identity = MagicMock(fetch_primary_email=AsyncMock(return_value=None))

    with pytest.raises(HTTPException) as exc_info:
        await get_current_user(
            HTTPAuthorizationCredentials(scheme="Bearer", credentials="token"), user_service, card_service, identity
        )

    assert exc_info.value.status_code == 401
    user_service.get_or_create_user.assert_not_awaited()


def test_auth_bypass_needs_development(monkeypatch):
    monkeypatch.setattr(dependencies.settings, "DISABLE_AUTH", True)
    monkeypatch.setattr(dependencies.settings, "ENVIRONMENT", "production")
    assert dependencies.auth_bypass_enabled() is False
    monkeypatch.setattr(dependencies.settings, "ENVIRONMENT", "development")
    assert dependencies.auth_bypass_enabled() is True
