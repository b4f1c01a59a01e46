"""
# User Service

Account lookup and self-service registration.

Users are created the first time a verified identity reaches the API (`get_or_create_user`)
or through explicit registration. E-mails are always stored trimmed and lower-cased so the
unique index on `users.email` is case-insensitive in practice.
"""

from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from agentbuy.database import DatabaseManager, collections
from agentbuy.errors import ConflictError, NotFoundError, PermissionDeniedError
from agentbuy.managers.logging_manager import get_logger
from agentbuy.models.common import serialize_document, to_object_id, utcnow
from agentbuy.models.user_models import ProfileUpdateRequest, UserDocument, UserRole, parse_role
from agentbuy.security.route_guard import dashboard_for_role

logger = get_logger(prefix="[UserService]")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserService:
    """Reads and creates `users` documents and their `profiles`."""

    def __init__(self, db: DatabaseManager):
        self.db = db
        self.users_collection = collections.USERS
        self.profiles_collection = collections.PROFILES

    async def get_user_by_id(self, user_id: Any) -> Optional[Dict[str, Any]]:
        users = self.db.get_collection(self.users_collection)
        return await users.find_one({"_id": to_object_id(user_id, "user id")})

    async def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        users = self.db.get_collection(self.users_collection)
        return await users.find_one({"email": normalize_email(email)})

    async def get_profile(self, user_id: Any) -> Optional[Dict[str, Any]]:
        profiles = self.db.get_collection(self.profiles_collection)
        return await profiles.find_one({"user_id": to_object_id(user_id, "user id")})

    async def save_profile(self, user_id: Any, payload: ProfileUpdateRequest) -> Dict[str, Any]:
        """
        Create or replace the user's profile. Blank optional fields are removed.

        The phone number saved here is how other users address card gifts to this account.
        """
        user_oid = to_object_id(user_id, "user id")
        fields = payload.model_dump(mode="json")
        unset = {name: "" for name in ("cargo", "account_number") if not fields.get(name)}
        for name in unset:
            fields.pop(name)

        now = utcnow()
        update: Dict[str, Any] = {
            "$set": {**fields, "updated_at": now},
            "$setOnInsert": {"created_at": now},
        }
        if unset:
            update["$unset"] = unset

        profiles = self.db.get_collection(self.profiles_collection)
        profile = await profiles.find_one_and_update(
            {"user_id": user_oid}, update, upsert=True, return_document=ReturnDocument.AFTER
        )
        logger.info("Saved profile for user %s", user_oid)
        return profile

    async def _insert_user(self, email: str, role: UserRole) -> Dict[str, Any]:
        document = UserDocument(email=email, role=role).model_dump(exclude_none=True)
        document["role"] = role.value
        users = self.db.get_collection(self.users_collection)
        result = await users.insert_one(document)
        document["_id"] = result.inserted_id
        logger.info("Created user %s with role %s", document["email"], role.value)
        return document

    async def get_or_create_user(self, email: str, default_role: str = "user") -> tuple:
        """
        Find the user by e-mail or create one with `default_role`.

        Returns:
            tuple: `(user_document, created)`.
        """
        existing = await self.get_user_by_email(email)
        if existing:
            return existing, False

        role = parse_role(default_role) or UserRole.USER
        try:
            return await self._insert_user(normalize_email(email), role), True
        except DuplicateKeyError:
            # Another request created the same account concurrently
            existing = await self.get_user_by_email(email)
            if existing is None:
                raise
            return existing, False

    async def register(self, email: str, role: Optional[str] = None) -> Dict[str, Any]:
        """
        Register a new account.

        Unknown role strings fall back to `user`. Admin accounts can only be created by an
        existing admin, so requesting `admin` here is refused.

        Raises:
            ConflictError: If the e-mail is already registered.
            PermissionDeniedError: If the admin role is requested.
        """
        user_role = parse_role(role) or UserRole.USER
        if user_role == UserRole.ADMIN:
            raise PermissionDeniedError("Admin accounts cannot be self-registered")

        if await self.get_user_by_email(email):
            raise ConflictError("Email already exists")
        try:
            user = await self._insert_user(normalize_email(email), user_role)
        except DuplicateKeyError as e:
            raise ConflictError("Email already exists") from e
        return {"id": str(user["_id"]), "email": user["email"], "role": user["role"]}

    async def get_me(self, user_id: Any) -> Dict[str, Any]:
        """Current user's account summary, dashboard destination and profile."""
        user = await self.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")

        profile = await self.get_profile(user["_id"])
        role = user.get("role", UserRole.USER.value)
        return {
            "id": str(user["_id"]),
            "email": user["email"],
            "role": role,
            "is_approved": user.get("is_approved", False),
            "approved_at": user.get("approved_at"),
            "approved_by": user.get("approved_by"),
            "agent_points": user.get("agent_points", 0),
            "research_cards": user.get("research_cards", 0),
            "dashboard": dashboard_for_role(role),
            "profile": serialize_document(profile),
        }
