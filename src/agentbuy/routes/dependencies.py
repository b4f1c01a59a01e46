"""
# API Dependencies

FastAPI dependencies shared by every router.

## Database and services

The `DatabaseManager` lives on `app.state.db`, set by `create_app`. Services are built per
request around it, so tests can swap the manager (or override `get_db`) without touching
module globals.

## Authentication

`get_current_user` turns the bearer session into a local `users` document:

1. verify the identity provider's JWT (`security.identity.verify_session_token`);
2. read the e-mail claim, falling back to the provider's user API;
3. find the user by e-mail or create it with `DEFAULT_ROLE`; a newly created buyer receives
   the initial research cards.

With `ENVIRONMENT=development` and `DISABLE_AUTH=true`, every request acts as the
`DEV_USER_EMAIL` account instead.

```python
@router.get("/admin/agents")
async def list_agents(current_user: dict = Depends(require_role("admin"))):
    ...
```
"""

from typing import Any, Callable, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from agentbuy.config import settings
from agentbuy.database import DatabaseManager
from agentbuy.managers.logging_manager import get_logger
from agentbuy.models.user_models import UserRole
from agentbuy.security.identity import (
    IdentityProviderClient,
    InvalidSessionError,
    email_from_claims,
    verify_session_token,
)
from agentbuy.services.admin_service import AdminService
from agentbuy.services.card_service import CardService
from agentbuy.services.content_service import ContentService
from agentbuy.services.review_service import ReviewService
from agentbuy.services.user_service import UserService

logger = get_logger(prefix="[Dependencies]")

bearer_scheme = HTTPBearer(auto_error=False)


def get_db(request: Request) -> DatabaseManager:
    return request.app.state.db


def get_user_service(db: DatabaseManager = Depends(get_db)) -> UserService:
    return UserService(db)


def get_card_service(db: DatabaseManager = Depends(get_db)) -> CardService:
    return CardService(db)


def get_admin_service(db: DatabaseManager = Depends(get_db)) -> AdminService:
    return AdminService(db)


def get_review_service(db: DatabaseManager = Depends(get_db)) -> ReviewService:
    return ReviewService(db)


def get_content_service(db: DatabaseManager = Depends(get_db)) -> ContentService:
    return ContentService(db)


def get_identity_client() -> IdentityProviderClient:
    return IdentityProviderClient()


def auth_bypass_enabled() -> bool:
    return settings.is_development and settings.DISABLE_AUTH


async def _resolve_user(email: str, user_service: UserService, card_service: CardService) -> Dict[str, Any]:
    user, created = await user_service.get_or_create_user(email, settings.DEFAULT_ROLE)
    if created and user.get("role") == UserRole.USER.value:
        await card_service.grant_initial_cards(user["_id"])
        user = await user_service.get_user_by_id(user["_id"]) or user
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    user_service: UserService = Depends(get_user_service),
    card_service: CardService = Depends(get_card_service),
    identity_client: IdentityProviderClient = Depends(get_identity_client),
) -> Dict[str, Any]:
    """
    Authenticate the request and return the local user document.

    Raises:
        HTTPException(401): Missing or invalid session, or no e-mail for the identity.
    """
    if auth_bypass_enabled():
        logger.debug("Auth bypass active, acting as %s", settings.DEV_USER_EMAIL)
        return await _resolve_user(settings.DEV_USER_EMAIL, user_service, card_service)

    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = verify_session_token(credentials.credentials)
    except InvalidSessionError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    email = email_from_claims(claims) or await identity_client.fetch_primary_email(claims["sub"])
    if not email:
        logger.warning("No e-mail available for identity %s", claims["sub"])
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Email not found")

    return await _resolve_user(email, user_service, card_service)


def require_role(*roles: str) -> Callable:
    """Dependency factory: the current user must hold one of `roles`, otherwise 403."""
    allowed = {UserRole(r).value for r in roles}

    async def checker(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if current_user.get("role") not in allowed:
            logger.info(
                "Denied %s (role %s), requires one of %s",
                current_user.get("email"),
                current_user.get("role"),
                sorted(allowed),
            )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return checker


require_admin = require_role(UserRole.ADMIN.value)
