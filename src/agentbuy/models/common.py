"""
Helpers shared by the model modules: ObjectId parsing, UTC timestamps and
conversion of raw MongoDB documents into JSON-safe dicts.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId

from agentbuy.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any, field_name: str = "id") -> ObjectId:
    """
    Parse `value` as an ObjectId.

    Raises:
        ValidationError: If the value is not a valid 24-character hex id.
    """
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError) as e:
        raise ValidationError(f"Invalid {field_name}: {value}") from e


def serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize_value(v) for v in value]
    return value


def serialize_document(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return a copy of `document` with `_id` renamed to `id` and ObjectIds as strings."""
    if document is None:
        return None
    data = {k: serialize_value(v) for k, v in document.items() if k != "_id"}
    if "_id" in document:
        data["id"] = str(document["_id"])
    return data
