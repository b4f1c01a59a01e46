"""
# Identity Provider Integration

Sessions are issued by a hosted identity provider (Clerk). The API never sees passwords; it
receives the provider's short-lived session JWT as a bearer token and:

1. verifies the signature, expiry and (optionally) issuer with **python-jose**;
2. reads the e-mail claim, or asks the provider's backend API for the user's primary
   e-mail address over **httpx** when the token does not carry one.

The caller (`routes.dependencies.get_current_user`) then maps that e-mail to a local user.
"""

from typing import Any, Dict, Optional

import httpx
from jose import ExpiredSignatureError, JWTError, jwt

from agentbuy.config import Settings, settings as default_settings
from agentbuy.managers.logging_manager import get_logger

logger = get_logger(prefix="[Identity]")

EMAIL_CLAIMS = ("email", "email_address", "primary_email")


class InvalidSessionError(Exception):
    """The bearer token is missing, malformed, expired or not signed by the provider."""


def verify_session_token(token: str, config: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Verify a session JWT and return its claims.

    Raises:
        InvalidSessionError: On any verification failure.
    """
    config = config or default_settings
    key = config.AUTH_JWT_KEY.get_secret_value()
    if not key:
        logger.error("AUTH_JWT_KEY is not configured; cannot verify session tokens")
        raise InvalidSessionError("Session verification is not configured")

    options = {"verify_aud": False}
    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=config.jwt_algorithms,
            issuer=config.AUTH_ISSUER or None,
            options=options,
        )
    except ExpiredSignatureError as e:
        raise InvalidSessionError("Session expired") from e
    except JWTError as e:
        logger.warning("Rejected session token: %s", e)
        raise InvalidSessionError("Invalid session token") from e

    if not claims.get("sub"):
        raise InvalidSessionError("Session token has no subject")
    return claims


def email_from_claims(claims: Dict[str, Any]) -> Optional[str]:
    for claim in EMAIL_CLAIMS:
        value = claims.get(claim)
        if isinstance(value, str) and value.strip():
            return value.strip().lower()
    return None


class IdentityProviderClient:
    """Thin async client for the provider's backend user API."""

    def __init__(self, config: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = config or default_settings
        self._transport = transport

    async def fetch_primary_email(self, subject: str) -> Optional[str]:
        """
        Look up the primary e-mail address of provider user `subject`.

        Returns `None` when the provider does not know the user or has no e-mail on file.
        """
        secret = self.settings.AUTH_SECRET_KEY.get_secret_value()
        if not secret:
            logger.warning("AUTH_SECRET_KEY is not configured; cannot look up e-mail for %s", subject)
            return None

        async with httpx.AsyncClient(
            base_url=self.settings.AUTH_API_URL,
            timeout=self.settings.AUTH_HTTP_TIMEOUT,
            transport=self._transport,
        ) as client:
            response = await client.get(f"/users/{subject}", headers={"Authorization": f"Bearer {secret}"})

        if response.status_code == 404:
            return None
        response.raise_for_status()

        data = response.json()
        addresses = data.get("email_addresses") or []
        primary_id = data.get("primary_email_address_id")
        for address in addresses:
            if address.get("id") == primary_id and address.get("email_address"):
                return address["email_address"].strip().lower()
        if addresses and addresses[0].get("email_address"):
            return addresses[0]["email_address"].strip().lower()
        return None
