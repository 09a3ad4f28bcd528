"""
Row-level access predicates.

Every collection/action pair maps to a predicate over (user_id, row). user_id is
None for anonymous callers. Routes call `enforce` on single rows and use
`visible_filter` to scope list queries, so a row that fails its select
predicate is never returned and its existence is not revealed.
"""

import logging
from typing import Callable, Dict, Optional, Tuple

from bson import ObjectId
from fastapi import HTTPException

import database

logger = logging.getLogger(__name__)

Predicate = Callable[[Optional[str], dict], bool]


def _everyone(user_id: Optional[str], row: dict) -> bool:
    return True


def _nobody(user_id: Optional[str], row: dict) -> bool:
    return False


def _owner(*fields: str) -> Predicate:
    def check(user_id: Optional[str], row: dict) -> bool:
        if user_id is None:
            return False
        return any(str(row.get(f)) == user_id for f in fields)
    return check


def _active_or_seller(user_id: Optional[str], row: dict) -> bool:
    return row.get("status") == "active" or _owner("seller_id")(user_id, row)


def _via_order(*fields: str) -> Predicate:
    # order_item rows inherit access from their parent order
    def check(user_id: Optional[str], row: dict) -> bool:
        if user_id is None or not ObjectId.is_valid(row.get("order_id", "")):
            return False
        order = database.db.order.find_one({"_id": ObjectId(row["order_id"])})
        return order is not None and _owner(*fields)(user_id, order)
    return check


POLICIES: Dict[Tuple[str, str], Predicate] = {
    ("user_profile", "select"): _everyone,
    ("user_profile", "update"): _owner("_id"),
    ("category", "select"): _everyone,
    ("product", "select"): _active_or_seller,
    ("product", "insert"): _owner("seller_id"),
    ("product", "update"): _owner("seller_id"),
    ("product", "delete"): _owner("seller_id"),
    ("order", "select"): _owner("buyer_id", "seller_id"),
    ("order", "insert"): _owner("buyer_id"),
    ("order", "update"): _owner("seller_id"),
    ("order_item", "select"): _via_order("buyer_id", "seller_id"),
    ("order_item", "insert"): _via_order("buyer_id"),
    ("return", "select"): _owner("buyer_id", "seller_id"),
    ("return", "insert"): _owner("buyer_id"),
    ("return", "update"): _owner("seller_id"),
    ("wishlist", "select"): _owner("user_id"),
    ("wishlist", "insert"): _owner("user_id"),
    ("wishlist", "delete"): _owner("user_id"),
    ("conversation", "select"): _owner("user1_id", "user2_id"),
    ("conversation", "insert"): _owner("user1_id", "user2_id"),
    ("conversation", "update"): _owner("user1_id", "user2_id"),
    ("message", "select"): _owner("sender_id", "receiver_id"),
    ("message", "insert"): _owner("sender_id"),
    ("message", "update"): _owner("sender_id", "receiver_id"),
}


def allowed(collection: str, action: str, user_id: Optional[str], row: dict) -> bool:
    return POLICIES.get((collection, action), _nobody)(user_id, row)


def enforce(collection: str, action: str, user_id: Optional[str], row: Optional[dict],
            not_found: str = "Not found") -> dict:
    """Return row if the caller may perform action on it, else raise.

    Rows the caller cannot even select answer 404; visible rows the caller may
    not modify answer 403.
    """
    if row is None:
        raise HTTPException(status_code=404, detail=not_found)
    if allowed(collection, action, user_id, row):
        return row
    if action != "select" and allowed(collection, "select", user_id, row):
        logger.warning("Denied %s on %s %s for user %s", action, collection, row.get("_id"), user_id)
        raise HTTPException(status_code=403, detail="Not allowed")
    raise HTTPException(status_code=404, detail=not_found)


def visible_filter(collection: str, user_id: Optional[str]) -> dict:
    """Mongo filter equivalent of the select predicate, for list queries."""
    if collection == "product":
        if user_id is None:
            return {"status": "active"}
        return {"$or": [{"status": "active"}, {"seller_id": user_id}]}
    if collection in ("order", "return"):
        return {"$or": [{"buyer_id": user_id}, {"seller_id": user_id}]}
    if collection == "conversation":
        return {"$or": [{"user1_id": user_id}, {"user2_id": user_id}]}
    if collection == "message":
        return {"$or": [{"sender_id": user_id}, {"receiver_id": user_id}]}
    if collection == "wishlist":
        return {"user_id": user_id}
    return {}


def can_write_object(user_id: Optional[str], path: str) -> bool:
    """Storage objects are writable only under the caller's own folder."""
    if user_id is None:
        return False
    folder = path.strip("/").split("/", 1)[0]
    return folder == user_id
