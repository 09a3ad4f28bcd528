import logging

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pymongo.errors import DuplicateKeyError

from auth import get_current_user
from database import db, create_document, require_database
from policies import enforce, visible_filter
from products import enrich_products
from schemas import Wishlist as WishlistSchema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/wishlist", tags=["wishlist"], dependencies=[Depends(require_database)])


def toggle_wishlist(user_id: str, product_id: str) -> bool:
    """Add the product if absent, remove it if present; return membership after."""
    existing = db.wishlist.find_one({"user_id": user_id, "product_id": product_id})
    if existing:
        enforce("wishlist", "delete", user_id, existing)
        db.wishlist.delete_one({"_id": existing["_id"]})
        return False

    entry = WishlistSchema(user_id=user_id, product_id=product_id)
    enforce("wishlist", "insert", user_id, entry.model_dump())
    try:
        create_document("wishlist", entry)
    except DuplicateKeyError:
        # a concurrent toggle inserted the same pair first
        logger.warning("Duplicate wishlist insert for user %s product %s", user_id, product_id)
    return True


def _require_visible_product(product_id: str, user_id: str) -> dict:
    if not ObjectId.is_valid(product_id):
        raise HTTPException(status_code=400, detail="Invalid product id")
    product = db.product.find_one({"_id": ObjectId(product_id)})
    return enforce("product", "select", user_id, product, not_found="Product not found")


@router.post("/{product_id}/toggle")
def toggle(product_id: str, user_id: str = Depends(get_current_user)):
    _require_visible_product(product_id, user_id)
    return {"product_id": product_id, "in_wishlist": toggle_wishlist(user_id, product_id)}


@router.get("")
def get_wishlist(user_id: str = Depends(get_current_user)):
    entries = list(db.wishlist.find(visible_filter("wishlist", user_id)).sort([("created_at", -1), ("_id", -1)]))
    ids = [ObjectId(e["product_id"]) for e in entries if ObjectId.is_valid(e["product_id"])]
    products = {str(p["_id"]): p for p in db.product.find({"_id": {"$in": ids}, "status": "active"})}

    items = []
    for entry in entries:
        product = products.get(entry["product_id"])
        if product is None:
            continue
        row = enrich_products([product])[0]
        row["added_to_wishlist_at"] = entry.get("created_at")
        items.append(row)
    return {"items": items}


@router.get("/{product_id}")
def in_wishlist(product_id: str, user_id: str = Depends(get_current_user)):
    exists = db.wishlist.count_documents({"user_id": user_id, "product_id": product_id}) > 0
    return {"product_id": product_id, "in_wishlist": exists}
