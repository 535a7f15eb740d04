"""
MongoDB access for the shop backend.

`db` is None until DATABASE_URL and DATABASE_NAME are both set. Route
handlers receive the database through the `get_db` dependency so tests can
swap in another database.
"""
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL
from errors import ValidationError
from logger import get_logger

logger = get_logger("database")

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
    logger.info("Connected to MongoDB database %s", DATABASE_NAME)
else:
    logger.warning("DATABASE_URL or DATABASE_NAME not set, database unavailable")


def get_db():
    if db is None:
        raise HTTPException(500, "Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo hands back naive UTC datetimes; make them comparable with aware ones."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def create_document(database, collection_name: str, data) -> str:
    """Insert a document (pydantic model or dict) and return its id as a string."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict.setdefault("updated_at", now)
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def paginate(collection, filter_q: dict, page: int, limit: int, sort=None, projection=None) -> dict:
    page = max(page, 1)
    limit = max(limit, 1)
    total = collection.count_documents(filter_q)
    cursor = collection.find(filter_q, projection)
    if sort:
        cursor = cursor.sort(sort)
    items = list(cursor.skip((page - 1) * limit).limit(limit))
    return {
        "items": items,
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit,
    }


def parse_object_id(value: str, label: str = "resource") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label} ID")


def serialize_doc(value: Any) -> Any:
    """Make a Mongo document JSON friendly: `_id` becomes `id`, ObjectIds and datetimes become strings."""
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k == "_id":
                out["id"] = serialize_doc(v)
            else:
                out[k] = serialize_doc(v)
        return out
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value


def ensure_indexes(database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["category"].create_index([("slug", ASCENDING)], unique=True)
    database["category"].create_index([("parent_category", ASCENDING)])
    database["product"].create_index([("slug", ASCENDING)], unique=True)
    database["product"].create_index([("sku", ASCENDING)], unique=True)
    database["product"].create_index([("category", ASCENDING), ("price", ASCENDING)])
    database["product"].create_index([("featured", ASCENDING), ("rating", DESCENDING)])
    database["review"].create_index([("product_id", ASCENDING), ("created_at", DESCENDING)])
    database["review"].create_index([("user.email", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["cart"].create_index([("user_id", ASCENDING)])
    database["cart"].create_index([("session_id", ASCENDING)])
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["transaction"].create_index([("order_id", ASCENDING)])
