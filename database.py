"""
MongoDB access for the marketplace.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; every helper
that writes checks this and raises DatabaseUnavailable.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    try:
        _client = MongoClient(DATABASE_URL)
        db = _client[DATABASE_NAME]
    except Exception as e:
        logger.error("Could not connect to MongoDB: %s", e)
        db = None


class DatabaseUnavailable(Exception):
    pass


def _require_db():
    if db is None:
        raise DatabaseUnavailable("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return db


def require_database():
    """Route dependency: fail fast with DatabaseUnavailable when no store is configured."""
    _require_db()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    database = _require_db()
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[list] = None) -> List[Dict[str, Any]]:
    database = _require_db()
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def update_document(collection_name: str, doc_id: str, changes: dict) -> Optional[Dict[str, Any]]:
    """Apply $set changes, bump updated_at and return the new document."""
    database = _require_db()
    changes = dict(changes)
    changes["updated_at"] = utcnow()
    database[collection_name].update_one({"_id": ObjectId(doc_id)}, {"$set": changes})
    return database[collection_name].find_one({"_id": ObjectId(doc_id)})


def to_str_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d


def ensure_indexes():
    """Unique constraints and lookup indexes, the document-store side of the schema."""
    database = _require_db()
    database.user.create_index("email", unique=True)
    database.session.create_index("token", unique=True)
    database.category.create_index("name", unique=True)
    database.product.create_index("seller_id")
    database.product.create_index("category_id")
    database.product.create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    database.order.create_index("buyer_id")
    database.order.create_index("seller_id")
    database.order_item.create_index("order_id")
    database["return"].create_index("order_id")
    database.wishlist.create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database.conversation.create_index(
        [("user1_id", ASCENDING), ("user2_id", ASCENDING), ("product_id", ASCENDING)], unique=True
    )
    database.message.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
    database.message.create_index("receiver_id")
