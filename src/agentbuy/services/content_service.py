"""
# Content Service

CRUD for admin-managed display content: banners, product showcases, agent specialties and
cargo categories. These are plain documents with an `order` sort key and an `is_active`
switch; names are unique for specialties and cargos.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from agentbuy.database import DatabaseManager, collections
from agentbuy.errors import ConflictError, NotFoundError
from agentbuy.managers.logging_manager import get_logger
from agentbuy.models.common import to_object_id, utcnow
from agentbuy.models.content_models import (
    DEFAULT_CARGOS,
    AgentSpecialtyCreate,
    BannerCreate,
    CargoCreate,
    ProductShowcaseCreate,
    TargetAudience,
)

logger = get_logger(prefix="[ContentService]")


class ContentCollection:
    """Generic CRUD over one content collection."""

    def __init__(self, db: DatabaseManager, collection_name: str, label: str, default_sort=None):
        self.db = db
        self.collection_name = collection_name
        self.label = label
        self.default_sort = default_sort or [("order", 1), ("created_at", -1)]

    @property
    def collection(self):
        return self.db.get_collection(self.collection_name)

    async def list(self, query: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self.collection.find(query or {}).sort(self.default_sort).to_list(length=None)

    async def create(self, payload: BaseModel, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        document = payload.model_dump(mode="json")
        document.update(extra or {})
        now = utcnow()
        document.update({"created_at": now, "updated_at": now})
        try:
            result = await self.collection.insert_one(document)
        except DuplicateKeyError as e:
            raise ConflictError(f"{self.label} with this name already exists") from e
        document["_id"] = result.inserted_id
        logger.info("Created %s %s", self.label.lower(), result.inserted_id)
        return document

    async def update(self, item_id: Any, payload: BaseModel) -> Dict[str, Any]:
        fields = payload.model_dump(mode="json", exclude_unset=True)
        fields["updated_at"] = utcnow()
        try:
            updated = await self.collection.find_one_and_update(
                {"_id": to_object_id(item_id, f"{self.label.lower()} id")},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as e:
            raise ConflictError(f"{self.label} with this name already exists") from e
        if not updated:
            raise NotFoundError(f"{self.label} not found")
        return updated

    async def delete(self, item_id: Any) -> bool:
        result = await self.collection.delete_one({"_id": to_object_id(item_id, f"{self.label.lower()} id")})
        if result.deleted_count == 0:
            raise NotFoundError(f"{self.label} not found")
        logger.info("Deleted %s %s", self.label.lower(), item_id)
        return True

    async def toggle(self, item_id: Any) -> Dict[str, Any]:
        """Flip `is_active`."""
        item_oid = to_object_id(item_id, f"{self.label.lower()} id")
        current = await self.collection.find_one({"_id": item_oid})
        if not current:
            raise NotFoundError(f"{self.label} not found")
        return await self.collection.find_one_and_update(
            {"_id": item_oid},
            {"$set": {"is_active": not current.get("is_active", False), "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )


class ContentService:
    def __init__(self, db: DatabaseManager):
        self.db = db
        self.banners = ContentCollection(db, collections.BANNERS, "Banner")
        self.showcases = ContentCollection(db, collections.PRODUCT_SHOWCASES, "Showcase")
        self.specialties = ContentCollection(
            db, collections.AGENT_SPECIALTIES, "Specialty", default_sort=[("order", 1), ("name", 1)]
        )
        self.cargos = ContentCollection(db, collections.CARGOS, "Cargo", default_sort=[("name", 1)])

    # --- Banners ---

    async def get_active_banners(self, role: Optional[str] = None) -> List[Dict[str, Any]]:
        """Active banners for everyone plus those targeted at `role`, by order then newest."""
        audiences = [TargetAudience.ALL.value]
        if role in (TargetAudience.USER.value, TargetAudience.AGENT.value):
            audiences.append(role)
        return await self.banners.list({"is_active": True, "target_audience": {"$in": audiences}})

    async def create_banner(self, payload: BannerCreate) -> Dict[str, Any]:
        return await self.banners.create(payload)

    # --- Showcases ---

    async def get_active_showcases(self) -> List[Dict[str, Any]]:
        return await self.showcases.list({"is_active": True})

    async def create_showcase(self, payload: ProductShowcaseCreate) -> Dict[str, Any]:
        return await self.showcases.create(payload)

    # --- Specialties ---

    async def get_public_specialties(self) -> List[Dict[str, Any]]:
        return await self.specialties.list({"is_active": True})

    async def create_specialty(self, payload: AgentSpecialtyCreate) -> Dict[str, Any]:
        """New specialties go to the end of the list (`order` = current max + 1)."""
        last = await self.specialties.collection.find_one({}, sort=[("order", -1)])
        next_order = (last.get("order", 0) + 1) if last else 1
        return await self.specialties.create(payload, extra={"order": next_order})

    # --- Cargos ---

    async def create_cargo(self, payload: CargoCreate) -> Dict[str, Any]:
        return await self.cargos.create(payload)

    async def seed_cargos(self) -> List[str]:
        """
        Upsert the default cargo categories by name. Safe to run repeatedly.

        Returns:
            List[str]: Names created or updated.
        """
        seeded = []
        collection = self.cargos.collection
        for cargo in DEFAULT_CARGOS:
            now = utcnow()
            await collection.update_one(
                {"name": cargo.name},
                {
                    "$set": {**cargo.model_dump(exclude_none=True), "updated_at": now},
                    "$setOnInsert": {"created_at": now},
                },
                upsert=True,
            )
            seeded.append(cargo.name)
            logger.info("Created/Updated cargo: %s", cargo.name)
        return seeded
