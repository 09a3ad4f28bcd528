import logging
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from auth import get_current_user, get_optional_user
from database import db, require_database, to_str_id, update_document, utcnow
from geo import location_point
from policies import enforce
from products import RECENT_FIRST, enrich_products
from schemas import ProductStatus, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["profiles"], dependencies=[Depends(require_database)])

LOCATION_FIELDS = ("city", "state", "pincode", "latitude", "longitude")


class UpdateProfileBody(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    address: Optional[str] = None
    role: Optional[UserRole] = None
    avatar_url: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class LocationBody(BaseModel):
    city: str
    state: str
    pincode: str
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


def _profile_oid(user_id: str) -> ObjectId:
    if not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=400, detail="Invalid user id")
    return ObjectId(user_id)


def sync_product_locations(seller_id: str, profile: Dict[str, Any]) -> int:
    """Copy the seller's location onto their active listings."""
    fields = {f: profile.get(f) for f in LOCATION_FIELDS}
    fields["location_point"] = profile.get("location_point")
    fields["updated_at"] = utcnow()
    res = db.product.update_many({"seller_id": seller_id, "status": "active"}, {"$set": fields})
    return res.modified_count


def apply_profile_update(user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    profile = db.user_profile.find_one({"_id": _profile_oid(user_id)})
    enforce("user_profile", "update", user_id, profile, not_found="Profile not found")
    if not changes:
        return profile

    if "latitude" in changes or "longitude" in changes:
        lat = changes.get("latitude", profile.get("latitude"))
        lon = changes.get("longitude", profile.get("longitude"))
        if (lat is None) != (lon is None):
            raise HTTPException(status_code=400, detail="latitude and longitude must be given together")
        changes["location_point"] = location_point(lat, lon)

    updated = update_document("user_profile", user_id, changes)
    if any(profile.get(f) != updated.get(f) for f in LOCATION_FIELDS):
        count = sync_product_locations(user_id, updated)
        logger.info("Synced location of %d active products for seller %s", count, user_id)
    return updated


@router.get("/profiles/{user_id}")
def get_profile(user_id: str, caller: Optional[str] = Depends(get_optional_user)):
    profile = db.user_profile.find_one({"_id": _profile_oid(user_id)})
    enforce("user_profile", "select", caller, profile, not_found="Profile not found")
    return to_str_id(profile)


@router.patch("/profiles/me")
def update_my_profile(body: UpdateProfileBody, user_id: str = Depends(get_current_user)):
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    return to_str_id(apply_profile_update(user_id, changes))


@router.put("/profiles/me/location")
def update_my_location(body: LocationBody, user_id: str = Depends(get_current_user)):
    return to_str_id(apply_profile_update(user_id, body.model_dump(exclude_unset=True)))


@router.get("/sellers/{seller_id}/stats")
def seller_stats(seller_id: str):
    profile = db.user_profile.find_one({"_id": _profile_oid(seller_id)})
    if not profile or profile.get("role") not in ("seller", "both"):
        raise HTTPException(status_code=404, detail="Seller not found")

    groups = list(db.product.aggregate([
        {"$match": {"seller_id": seller_id}},
        {"$group": {
            "_id": "$status",
            "count": {"$sum": 1},
            "total_views": {"$sum": "$views"},
            "avg_views": {"$avg": "$views"},
            "last_posted": {"$max": "$created_at"},
        }},
    ]))

    by_status = {g["_id"]: {"count": g["count"], "avg_views": round(g["avg_views"] or 0, 2)} for g in groups}
    total = sum(g["count"] for g in groups)
    total_views = sum(g["total_views"] or 0 for g in groups)
    posted = [g["last_posted"] for g in groups if g.get("last_posted") is not None]
    return {
        "id": seller_id,
        "full_name": profile.get("full_name"),
        "city": profile.get("city"),
        "state": profile.get("state"),
        "avatar_url": profile.get("avatar_url"),
        "member_since": profile.get("created_at"),
        "total_products": total,
        "active_products": by_status.get("active", {}).get("count", 0),
        "sold_products": by_status.get("sold", {}).get("count", 0),
        "avg_views": round(total_views / total, 2) if total else 0,
        "last_posted": max(posted) if posted else None,
        "by_status": by_status,
    }


@router.get("/sellers/{seller_id}/products")
def seller_products(seller_id: str, status: ProductStatus = Query('active'),
                    caller: Optional[str] = Depends(get_optional_user)):
    _profile_oid(seller_id)
    if status != "active" and caller != seller_id:
        return {"items": []}
    docs = db.product.find({"seller_id": seller_id, "status": status}).sort(RECENT_FIRST)
    return {"items": enrich_products(docs)}
