"""
# Chat Notification Throttle

When a chat message arrives for an order, the other participant may get an e-mail. To avoid
one e-mail per message, the last send time is stored per `(order_id, recipient_id)` and a
new e-mail goes out only after `CHAT_EMAIL_THROTTLE_MINUTES` have passed.

The unique compound index on `(order_id, recipient_id)` guarantees one throttle record per
conversation participant; a second insert for the same pair raises `ConflictError`.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from pymongo.errors import DuplicateKeyError

from agentbuy.config import settings
from agentbuy.database import DatabaseManager, collections
from agentbuy.errors import ConflictError
from agentbuy.managers.logging_manager import get_logger
from agentbuy.models.common import to_object_id, utcnow
from agentbuy.models.notification_models import ChatNotificationDocument

logger = get_logger(prefix="[ChatNotification]")


class ChatNotificationService:
    def __init__(self, db: DatabaseManager, throttle_minutes: Optional[int] = None):
        self.db = db
        self.collection_name = collections.CHAT_NOTIFICATIONS
        self.throttle = timedelta(
            minutes=throttle_minutes if throttle_minutes is not None else settings.CHAT_EMAIL_THROTTLE_MINUTES
        )

    def _key(self, order_id: Any, recipient_id: Any) -> Dict[str, Any]:
        return {
            "order_id": to_object_id(order_id, "order id"),
            "recipient_id": to_object_id(recipient_id, "recipient id"),
        }

    async def create_record(self, order_id: Any, recipient_id: Any, sent_at: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Insert the throttle record for a pair.

        Raises:
            ConflictError: A record for this (order, recipient) already exists.
        """
        record = ChatNotificationDocument(
            order_id=str(order_id), recipient_id=str(recipient_id), last_email_sent_at=sent_at or utcnow()
        )
        # Ids are stored as ObjectIds to match the unique index lookups in _key()
        document = {**record.model_dump(), **self._key(order_id, recipient_id)}
        collection = self.db.get_collection(self.collection_name)
        try:
            result = await collection.insert_one(document)
        except DuplicateKeyError as e:
            raise ConflictError("Notification record already exists for this recipient and order") from e
        document["_id"] = result.inserted_id
        return document

    async def should_send_email(self, order_id: Any, recipient_id: Any, now: Optional[datetime] = None) -> bool:
        collection = self.db.get_collection(self.collection_name)
        record = await collection.find_one(self._key(order_id, recipient_id))
        if not record:
            return True
        last_sent = record["last_email_sent_at"]
        now = now or utcnow()
        if last_sent.tzinfo is None:
            now = now.replace(tzinfo=None)
        return now - last_sent >= self.throttle

    async def mark_email_sent(self, order_id: Any, recipient_id: Any, now: Optional[datetime] = None):
        collection = self.db.get_collection(self.collection_name)
        await collection.update_one(
            self._key(order_id, recipient_id),
            {"$set": {"last_email_sent_at": now or utcnow()}},
            upsert=True,
        )
        logger.debug("Recorded chat e-mail for order %s recipient %s", order_id, recipient_id)
