"""
Database helpers

One process-wide MongoClient. It connects lazily, so importing this module
never touches the network. Route handlers receive the database through the
``get_db`` dependency so tests can swap it out.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from settings import settings

client = MongoClient(settings.DATABASE_URL, serverSelectionTimeoutMS=5000, tz_aware=True)
db = client[settings.DATABASE_NAME]


def get_db() -> Database:
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_object_id(value: Optional[str]) -> Optional[ObjectId]:
    """Return an ObjectId, or None when the string is not a valid id."""
    if value and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created_at/updated_at, returning its id"""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def to_jsonable(value: Any) -> Any:
    """Recursively convert ObjectIds and datetimes into JSON-safe values."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def to_str_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Rename ``_id`` to ``id`` and make the document JSON-safe."""
    if not doc:
        return doc
    d = dict(doc)
    if d.get("_id"):
        d["id"] = str(d.pop("_id"))
    return to_jsonable(d)


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["user"].create_index([("order_history.order_id", ASCENDING)], sparse=True)
    database["user"].create_index([("order_history.payment_id", ASCENDING)], sparse=True)
    database["product"].create_index([("owner_id", ASCENDING)])
    database["product"].create_index([("category", ASCENDING)])
