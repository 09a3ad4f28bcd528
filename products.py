import logging
import re
from typing import Any, Dict, Iterable, List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from auth import get_current_user, get_optional_user
from config import DEFAULT_RADIUS_KM, MAX_RADIUS_KM
from database import db, create_document, get_documents, require_database, to_str_id, update_document
from geo import bounding_box, distance_km, location_point
from policies import enforce
from schemas import Price, Product as ProductSchema, ProductCondition, ProductStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["catalog"], dependencies=[Depends(require_database)])

RECENT_FIRST = [("created_at", -1), ("_id", -1)]

DEFAULT_CATEGORIES = [
    {"name": "Books & Textbooks", "description": "Educational materials and literature", "icon": "📚", "is_special": False},
    {"name": "Electronics", "description": "Phones, laptops, gadgets and accessories", "icon": "📱", "is_special": False},
    {"name": "Furniture", "description": "Home and office furniture", "icon": "🪑", "is_special": False},
    {"name": "Clothing", "description": "Fashion and apparel", "icon": "👕", "is_special": False},
    {"name": "Sports & Recreation", "description": "Sports equipment and recreational items", "icon": "⚽", "is_special": False},
    {"name": "Services", "description": "Professional and personal services", "icon": "🔧", "is_special": False},
    {"name": "Donate / Giveaway", "description": "Free items for donation", "icon": "🎁", "is_special": True},
    {"name": "Urgent / Moving Out", "description": "Quick sales before relocation", "icon": "📦", "is_special": True},
]

# Listing flag implied by posting into a special category
SPECIAL_CATEGORY_FLAGS = {
    "Donate / Giveaway": "is_donation",
    "Urgent / Moving Out": "is_urgent",
}


def seed_categories() -> int:
    inserted = 0
    for cat in DEFAULT_CATEGORIES:
        res = db.category.update_one({"name": cat["name"]}, {"$setOnInsert": dict(cat)}, upsert=True)
        if res.upserted_id is not None:
            inserted += 1
    if inserted:
        logger.info("Seeded %d categories", inserted)
    return inserted


def _oid(id_str: str, what: str = "id") -> ObjectId:
    if not ObjectId.is_valid(id_str):
        raise HTTPException(status_code=400, detail=f"Invalid {what}")
    return ObjectId(id_str)


def enrich_products(docs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Serialize product documents and join seller_name / category_name."""
    docs = list(docs)
    seller_ids = {ObjectId(d["seller_id"]) for d in docs if ObjectId.is_valid(d.get("seller_id", ""))}
    category_ids = {ObjectId(d["category_id"]) for d in docs if ObjectId.is_valid(d.get("category_id", ""))}
    sellers = {str(p["_id"]): p for p in db.user_profile.find({"_id": {"$in": list(seller_ids)}})}
    categories = {str(c["_id"]): c for c in db.category.find({"_id": {"$in": list(category_ids)}})}

    out = []
    for d in docs:
        row = to_str_id(d)
        seller = sellers.get(row.get("seller_id"))
        category = categories.get(row.get("category_id"))
        row["seller_name"] = seller.get("full_name") if seller else None
        row["category_name"] = category.get("name") if category else None
        if "distance_km" in row and row["distance_km"] is not None:
            row["distance_km"] = round(row["distance_km"], 3)
        out.append(row)
    return out


def nearby_products(latitude: Optional[float], longitude: Optional[float], radius_km: float = DEFAULT_RADIUS_KM,
                    limit: int = 20, extra: Optional[dict] = None) -> List[Dict[str, Any]]:
    """Active products near a point, nearest first, newest first among equals.

    Without a complete coordinate pair this is simply the `limit` most recent
    active products with distance_km set to None.
    """
    query: Dict[str, Any] = {"status": "active"}
    if extra:
        query.update(extra)

    if latitude is None or longitude is None:
        docs = list(db.product.find(query).sort(RECENT_FIRST).limit(limit))
        for d in docs:
            d["distance_km"] = None
        return enrich_products(docs)

    query.update(bounding_box(latitude, longitude, radius_km))
    query.setdefault("longitude", {"$ne": None})
    within = []
    for d in db.product.find(query).sort(RECENT_FIRST):
        if d.get("latitude") is None or d.get("longitude") is None:
            continue
        dist = distance_km(latitude, longitude, d["latitude"], d["longitude"])
        if dist <= radius_km:
            d["distance_km"] = dist
            within.append(d)
    # stable sort keeps the recency order among equal distances
    within.sort(key=lambda d: d["distance_km"])
    return enrich_products(within[:limit])


def _category_by_name(name: str) -> Optional[dict]:
    return db.category.find_one({"name": name})


def _contains(text: str) -> dict:
    return {"$regex": re.escape(text), "$options": "i"}


def product_filters(category: Optional[str] = None, condition: Optional[str] = None,
                    min_price: Optional[float] = None, max_price: Optional[float] = None,
                    city: Optional[str] = None, state: Optional[str] = None,
                    search: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Mongo filter for the listing filters; None when no product can match."""
    filt: Dict[str, Any] = {}
    if category and category != "All":
        cat = _category_by_name(category)
        if not cat:
            return None
        filt["category_id"] = str(cat["_id"])
    if condition and condition != "All":
        filt["condition"] = condition
    if min_price is not None or max_price is not None:
        price_cond: Dict[str, Any] = {}
        if min_price is not None:
            price_cond["$gte"] = float(min_price)
        if max_price is not None:
            price_cond["$lte"] = float(max_price)
        filt["price"] = price_cond
    if city:
        filt["city"] = _contains(city)
    if state:
        filt["state"] = _contains(state)
    if search:
        filt["$or"] = [{"title": _contains(search)}, {"description": _contains(search)}]
    return filt


# Categories

@router.get("/categories")
def list_categories():
    docs = get_documents("category", {}, sort=[("is_special", 1), ("name", 1)])
    return {"items": [to_str_id(d) for d in docs]}


@router.get("/categories/products")
def products_by_category(category_name: Optional[str] = None,
                         limit: int = Query(20, ge=1, le=100),
                         offset: int = Query(0, ge=0)):
    filt = product_filters(category=category_name)
    if filt is None:
        return {"items": []}
    filt["status"] = "active"
    docs = db.product.find(filt).sort(RECENT_FIRST).skip(offset).limit(limit)
    return {"items": enrich_products(docs)}


# Products

class CreateProductBody(BaseModel):
    title: str = Field(..., min_length=1, max_length=140)
    description: str = Field(..., max_length=5000)
    price: Price
    category_id: str
    condition: ProductCondition
    location: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    image_urls: List[str] = Field(default_factory=list)
    is_donation: bool = False
    is_urgent: bool = False


class UpdateProductBody(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=140)
    description: Optional[str] = Field(None, max_length=5000)
    price: Optional[Price] = None
    category_id: Optional[str] = None
    condition: Optional[ProductCondition] = None
    location: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    image_urls: Optional[List[str]] = None
    status: Optional[ProductStatus] = None
    is_donation: Optional[bool] = None
    is_urgent: Optional[bool] = None


def _require_category(category_id: str) -> dict:
    cat = db.category.find_one({"_id": _oid(category_id, "category id")})
    if not cat:
        raise HTTPException(status_code=404, detail="Category not found")
    return cat


@router.get("/products")
def list_products(category: Optional[str] = None,
                  condition: Optional[str] = None,
                  min_price: Optional[float] = Query(None, ge=0),
                  max_price: Optional[float] = Query(None, ge=0),
                  city: Optional[str] = None,
                  state: Optional[str] = None,
                  search: Optional[str] = None,
                  latitude: Optional[float] = Query(None, ge=-90, le=90),
                  longitude: Optional[float] = Query(None, ge=-180, le=180),
                  radius_km: float = Query(DEFAULT_RADIUS_KM, gt=0, le=MAX_RADIUS_KM),
                  limit: int = Query(50, ge=1, le=200)):
    filt = product_filters(category, condition, min_price, max_price, city, state, search)
    if filt is None:
        return {"items": []}
    if latitude is not None and longitude is not None:
        return {"items": nearby_products(latitude, longitude, radius_km, limit, extra=filt)}
    filt["status"] = "active"
    docs = db.product.find(filt).sort(RECENT_FIRST).limit(limit)
    return {"items": enrich_products(docs)}


@router.get("/products/nearby")
def get_nearby_products(latitude: Optional[float] = Query(None, ge=-90, le=90),
                        longitude: Optional[float] = Query(None, ge=-180, le=180),
                        radius_km: float = Query(DEFAULT_RADIUS_KM, gt=0, le=MAX_RADIUS_KM),
                        limit: int = Query(20, ge=1, le=100)):
    return {"items": nearby_products(latitude, longitude, radius_km, limit)}


@router.get("/products/special")
def special_products(product_type: Literal['all', 'donation', 'urgent'] = 'all',
                     limit: int = Query(10, ge=1, le=100)):
    if product_type == "donation":
        filt: Dict[str, Any] = {"is_donation": True}
    elif product_type == "urgent":
        filt = {"is_urgent": True}
    else:
        filt = {"$or": [{"is_donation": True}, {"is_urgent": True}]}
    filt["status"] = "active"
    docs = db.product.find(filt).sort(RECENT_FIRST).limit(limit)
    return {"items": enrich_products(docs)}


@router.get("/products/{product_id}")
def get_product(product_id: str, user_id: Optional[str] = Depends(get_optional_user)):
    doc = db.product.find_one({"_id": _oid(product_id, "product id")})
    enforce("product", "select", user_id, doc, not_found="Product not found")
    if doc["seller_id"] != user_id:
        db.product.update_one({"_id": doc["_id"]}, {"$inc": {"views": 1}})
        doc["views"] = int(doc.get("views", 0)) + 1

    row = enrich_products([doc])[0]
    seller = db.user_profile.find_one({"_id": ObjectId(doc["seller_id"])}) if ObjectId.is_valid(doc["seller_id"]) else None
    category = db.category.find_one({"_id": ObjectId(doc["category_id"])}) if ObjectId.is_valid(doc["category_id"]) else None
    row["seller"] = to_str_id(seller)
    row["category"] = to_str_id(category)
    return row


@router.post("/products", status_code=201)
def create_product(body: CreateProductBody, user_id: str = Depends(get_current_user)):
    category = _require_category(body.category_id)
    data = body.model_dump()

    if body.latitude is None and body.longitude is None and not body.city:
        # listing inherits the seller's saved location
        profile = db.user_profile.find_one({"_id": ObjectId(user_id)}) or {}
        for field in ("city", "state", "pincode", "latitude", "longitude"):
            data[field] = profile.get(field)
    if (data.get("latitude") is None) != (data.get("longitude") is None):
        raise HTTPException(status_code=400, detail="latitude and longitude must be given together")
    if not data.get("location"):
        data["location"] = ", ".join(p for p in (data.get("city"), data.get("state")) if p)

    flag = SPECIAL_CATEGORY_FLAGS.get(category["name"])
    if flag:
        data[flag] = True

    product = ProductSchema(
        seller_id=user_id,
        location_point=location_point(data.get("latitude"), data.get("longitude")),
        status="active",
        views=0,
        **{k: v for k, v in data.items() if k in ProductSchema.model_fields and k not in ("seller_id", "status", "views")},
    )
    enforce("product", "insert", user_id, product.model_dump())
    product_id = create_document("product", product)
    logger.info("User %s listed product %s", user_id, product_id)
    return enrich_products([db.product.find_one({"_id": ObjectId(product_id)})])[0]


@router.patch("/products/{product_id}")
def update_product(product_id: str, body: UpdateProductBody, user_id: str = Depends(get_current_user)):
    doc = db.product.find_one({"_id": _oid(product_id, "product id")})
    enforce("product", "update", user_id, doc, not_found="Product not found")

    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    if not changes:
        return enrich_products([doc])[0]
    if "category_id" in changes:
        category = _require_category(changes["category_id"])
        old = db.category.find_one({"_id": ObjectId(doc["category_id"])}) if ObjectId.is_valid(doc.get("category_id", "")) else None
        old_flag = SPECIAL_CATEGORY_FLAGS.get(old["name"]) if old else None
        new_flag = SPECIAL_CATEGORY_FLAGS.get(category["name"])
        if old_flag and old_flag != new_flag:
            changes.setdefault(old_flag, False)
        if new_flag:
            changes[new_flag] = True
    if "latitude" in changes or "longitude" in changes:
        lat = changes.get("latitude", doc.get("latitude"))
        lon = changes.get("longitude", doc.get("longitude"))
        if (lat is None) != (lon is None):
            raise HTTPException(status_code=400, detail="latitude and longitude must be given together")
        changes["location_point"] = location_point(lat, lon)

    updated = update_document("product", product_id, changes)
    return enrich_products([updated])[0]


@router.delete("/products/{product_id}")
def delete_product(product_id: str, user_id: str = Depends(get_current_user)):
    doc = db.product.find_one({"_id": _oid(product_id, "product id")})
    enforce("product", "delete", user_id, doc, not_found="Product not found")
    if db.order_item.count_documents({"product_id": product_id}):
        raise HTTPException(status_code=409, detail="Product has orders; mark it inactive instead")

    db.wishlist.delete_many({"product_id": product_id})
    _detach_conversations(product_id)
    db.message.update_many({"product_id": product_id}, {"$set": {"product_id": None}})
    db.product.delete_one({"_id": doc["_id"]})
    logger.info("User %s deleted product %s", user_id, product_id)
    return {"deleted": True}


def _detach_conversations(product_id: str):
    """Null out the product on its conversations, merging into an existing
    product-less thread for the same pair when there is one."""
    for conv in db.conversation.find({"product_id": product_id}):
        general = db.conversation.find_one({
            "user1_id": conv["user1_id"], "user2_id": conv["user2_id"], "product_id": None,
        })
        if general:
            db.message.update_many({"conversation_id": str(conv["_id"])},
                                   {"$set": {"conversation_id": str(general["_id"])}})
            if conv.get("last_message_at") and (not general.get("last_message_at")
                                                or conv["last_message_at"] > general["last_message_at"]):
                db.conversation.update_one({"_id": general["_id"]},
                                           {"$set": {"last_message_at": conv["last_message_at"]}})
            db.conversation.delete_one({"_id": conv["_id"]})
        else:
            db.conversation.update_one({"_id": conv["_id"]}, {"$set": {"product_id": None}})
