"""
# Admin Service

Role and approval administration.

Roles only change through the operations here, which are reachable from admin-only API
routes and the `agentbuy-admin` CLI. Approval is tracked with three fields that always move
together:

- approve: `is_approved=True`, `approved_at=<now>`, `approved_by=<approver id>`
- revoke:  `is_approved=False`, `approved_at=None`, `approved_by=None`

Demoting an agent to `user` also clears the approval, so a later promotion starts unapproved.
"""

from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from agentbuy.database import DatabaseManager, collections
from agentbuy.errors import ConflictError, NotFoundError, ValidationError
from agentbuy.managers.logging_manager import get_logger
from agentbuy.models.common import serialize_document, to_object_id, utcnow
from agentbuy.models.user_models import UserDocument, UserRole, parse_role
from agentbuy.services.user_service import normalize_email

logger = get_logger(prefix="[AdminService]")


def approval_fields(approved: bool, approver_id: Optional[str]) -> Dict[str, Any]:
    if approved:
        return {"is_approved": True, "approved_at": utcnow(), "approved_by": approver_id}
    return {"is_approved": False, "approved_at": None, "approved_by": None}


class AdminService:
    def __init__(self, db: DatabaseManager):
        self.db = db
        self.users_collection = collections.USERS
        self.profiles_collection = collections.PROFILES

    async def _find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        users = self.db.get_collection(self.users_collection)
        return await users.find_one({"email": normalize_email(email)})

    async def _update_user(self, user_id, fields: Dict[str, Any]) -> Dict[str, Any]:
        users = self.db.get_collection(self.users_collection)
        fields = {**fields, "updated_at": utcnow()}
        updated = await users.find_one_and_update(
            {"_id": user_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
        )
        if not updated:
            raise NotFoundError("User not found")
        return updated

    async def add_agent(self, email: str, admin_id: str) -> Dict[str, Any]:
        """
        Make `email` an approved agent, creating the account if it does not exist yet.
        """
        fields = {"role": UserRole.AGENT.value, **approval_fields(True, str(admin_id))}
        existing = await self._find_by_email(email)
        if existing:
            user = await self._update_user(existing["_id"], fields)
            logger.info("Promoted existing user %s to approved agent (by %s)", user["email"], admin_id)
            return user

        document = UserDocument(email=email).model_dump(exclude_none=True)
        document.update(fields)
        users = self.db.get_collection(self.users_collection)
        try:
            result = await users.insert_one(document)
        except DuplicateKeyError as e:
            raise ConflictError("Email already exists") from e
        document["_id"] = result.inserted_id
        logger.info("Created approved agent %s (by %s)", document["email"], admin_id)
        return document

    async def approve_agent(self, agent_id: Any, approved: bool, admin_id: str) -> Dict[str, Any]:
        """
        Set or revoke approval of an existing agent.

        Raises:
            NotFoundError: No agent with that id.
        """
        users = self.db.get_collection(self.users_collection)
        agent_oid = to_object_id(agent_id, "agent id")
        agent = await users.find_one({"_id": agent_oid, "role": UserRole.AGENT.value})
        if not agent:
            raise NotFoundError("Agent not found")

        updated = await self._update_user(agent_oid, approval_fields(approved, str(admin_id)))
        logger.info("Agent %s approval set to %s by %s", updated["email"], approved, admin_id)
        return updated

    async def approve_agent_by_email(self, email: str, approver_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Promote the account to agent if needed, then approve it.

        Without an explicit approver the account is recorded as approving itself.

        Raises:
            NotFoundError: No account with that e-mail.
        """
        user = await self._find_by_email(email)
        if not user:
            raise NotFoundError(f"User {normalize_email(email)} not found")

        if user.get("role") != UserRole.AGENT.value:
            logger.info("User %s is %s, setting role to agent", user["email"], user.get("role"))
            user = await self._update_user(user["_id"], {"role": UserRole.AGENT.value})

        approver = approver_id or str(user["_id"])
        return await self._update_user(user["_id"], approval_fields(True, approver))

    async def set_role(self, email: str, role: str, approved: Optional[bool] = None) -> Dict[str, Any]:
        """
        Change the account's role.

        Args:
            approved: When given, also set (or clear) the approval fields. Leaving an agent
                role always clears approval.
        """
        parsed = parse_role(role)
        if parsed is None:
            raise ValidationError(f"Invalid role: {role}")

        user = await self._find_by_email(email)
        if not user:
            raise NotFoundError(f"User {normalize_email(email)} not found")

        fields: Dict[str, Any] = {"role": parsed.value}
        if approved is not None:
            fields.update(approval_fields(approved, str(user["_id"]) if approved else None))
        elif parsed == UserRole.USER and user.get("is_approved"):
            fields.update(approval_fields(False, None))

        updated = await self._update_user(user["_id"], fields)
        logger.info("Role of %s changed from %s to %s", updated["email"], user.get("role"), parsed.value)
        return updated

    async def _profiles_by_user(self, user_ids: List[Any]) -> Dict[str, Dict[str, Any]]:
        if not user_ids:
            return {}
        profiles = self.db.get_collection(self.profiles_collection)
        result = {}
        async for profile in profiles.find({"user_id": {"$in": user_ids}}):
            result[str(profile["user_id"])] = profile
        return result

    async def get_agents(self) -> List[Dict[str, Any]]:
        """All agents, approved or not, with their profile attached."""
        users = self.db.get_collection(self.users_collection)
        agents = await users.find({"role": UserRole.AGENT.value}).sort("created_at", -1).to_list(length=None)
        profiles = await self._profiles_by_user([a["_id"] for a in agents])
        return [
            {
                "id": str(agent["_id"]),
                "email": agent["email"],
                "role": agent["role"],
                "is_approved": agent.get("is_approved", False),
                "approved_at": agent.get("approved_at"),
                "approved_by": agent.get("approved_by"),
                "agent_points": agent.get("agent_points", 0),
                "profile": serialize_document(profiles.get(str(agent["_id"]))),
            }
            for agent in agents
        ]

    async def list_users_and_agents(self) -> Dict[str, List[Dict[str, Any]]]:
        """Every account grouped by role, with a `has_profile` flag, for the check-agents report."""
        users = self.db.get_collection(self.users_collection)
        accounts = await users.find({}).sort("created_at", 1).to_list(length=None)
        profiles = await self._profiles_by_user([a["_id"] for a in accounts])

        grouped: Dict[str, List[Dict[str, Any]]] = {role.value: [] for role in UserRole}
        for account in accounts:
            role = account.get("role", UserRole.USER.value)
            grouped.setdefault(role, []).append(
                {
                    "id": str(account["_id"]),
                    "email": account["email"],
                    "is_approved": account.get("is_approved", False),
                    "has_profile": str(account["_id"]) in profiles,
                }
            )
        return grouped

    async def fix_negative_points(self) -> int:
        """Reset negative `agent_points` to zero. Returns the number of accounts fixed."""
        users = self.db.get_collection(self.users_collection)
        result = await users.update_many(
            {"agent_points": {"$lt": 0}}, {"$set": {"agent_points": 0, "updated_at": utcnow()}}
        )
        logger.info("Reset negative agent points on %d accounts", result.modified_count)
        return result.modified_count
