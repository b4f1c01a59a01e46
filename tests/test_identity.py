from datetime import datetime, timedelta, timezone

import httpx
from jose import jwt
import pytest

from agentbuy.config import Settings
from agentbuy.security.identity import (
    IdentityProviderClient,
    InvalidSessionError,
    email_from_claims,
    verify_session_token,
)

SECRET = "test-signing-key"


@pytest.fixture
def config():
    return Settings(
        AUTH_JWT_KEY=SECRET,
        AUTH_JWT_ALGORITHMS="HS256",
        AUTH_SECRET_KEY="sk_test",
        AUTH_API_URL="https://idp.example.com/v1",
    )


def _token(**claims):
    payload = {"sub": "user_123", "exp": datetime.now(timezone.utc) + timedelta(minutes=5), **claims}
    return jwt.encode(payload, SECRET, algorithm="HS256")


def test_valid_token_returns_claims(config):
    claims = verify_session_token(_token(email="Buyer@Example.com"), config)
    assert claims["sub"] == "user_123"
    assert email_from_claims(claims) == "buyer@example.com"


def test_expired_token_is_rejected(config):
    token = _token(exp=datetime.now(timezone.utc) - timedelta(minutes=1))
    with pytest.raises(InvalidSessionError, match="expired"):
        verify_session_token(token, config)


def test_wrong_signature_is_rejected(config):
    token = jwt.encode({"sub": "user_123"}, "other-key", algorithm="HS256")
    with pytest.raises(InvalidSessionError):
        verify_session_token(token, config)


def test_missing_key_is_rejected():
    with pytest.raises(InvalidSessionError):
        verify_session_token(_token(), Settings(AUTH_JWT_KEY=""))


def test_token_without_subject_is_rejected(config):
    token = jwt.encode({"email": "a@example.com"}, SECRET, algorithm="HS256")
    with pytest.raises(InvalidSessionError):
        verify_session_token(token, config)


@pytest.mark.asyncio
async def test_fetch_primary_email(config):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/users/user_123"
        assert request.headers["Authorization"] == "Bearer sk_test"
        return httpx.Response(
            200,
            json={
                "primary_email_address_id": "idn_2",
                "email_addresses": [
                    {"id": "idn_1", "email_address": "old@example.com"},
                    {"id": "idn_2", "email_address": "Primary@Example.com"},
                ],
            },
        )

    client = IdentityProviderClient(config, transport=httpx.MockTransport(handler))
    assert await client.fetch_primary_email("user_123") == "primary@example.com"


@pytest.mark.asyncio
async def test_fetch_primary_email_unknown_user(config):
    client = IdentityProviderClient(config, transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    assert await client.fetch_primary_email("user_404") is None
