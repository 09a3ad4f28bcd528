import logging
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, ValidationError

from auth import get_current_user
from database import db, create_document, require_database, to_str_id, update_document
from policies import enforce, visible_filter
from schemas import (
    DeliveryAddress,
    Order as OrderSchema,
    OrderItem as OrderItemSchema,
    OrderStatus,
    Return as ReturnSchema,
    ReturnStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["orders"], dependencies=[Depends(require_database)])

# Seller-driven order lifecycle; "returned" is only reached by completing a return
ORDER_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"shipped", "cancelled"},
    "shipped": {"delivered"},
}

RETURN_TRANSITIONS = {
    "requested": {"approved", "rejected"},
    "approved": {"completed"},
}

OPEN_RETURN_STATUSES = ["requested", "approved"]


def _oid(id_str: str, what: str = "id") -> ObjectId:
    if not ObjectId.is_valid(id_str):
        raise HTTPException(status_code=400, detail=f"Invalid {what}")
    return ObjectId(id_str)


def _money(value: float) -> float:
    return round(float(value), 2)


# Orders

class CheckoutItem(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)


class CheckoutBody(BaseModel):
    items: List[CheckoutItem] = Field(..., min_length=1)
    delivery_address: DeliveryAddress
    payment_method: str = Field(..., min_length=1)
    notes: Optional[str] = None


class StatusBody(BaseModel):
    status: OrderStatus


def order_with_items(order: Dict[str, Any]) -> Dict[str, Any]:
    row = to_str_id(order)
    items = list(db.order_item.find({"order_id": row["id"]}).sort("_id", 1))
    product_ids = [ObjectId(i["product_id"]) for i in items if ObjectId.is_valid(i["product_id"])]
    products = {str(p["_id"]): to_str_id(p) for p in db.product.find({"_id": {"$in": product_ids}})}
    row["order_items"] = []
    for item in items:
        item_row = to_str_id(item)
        item_row["product"] = products.get(item["product_id"])
        row["order_items"].append(item_row)
    return row


def place_orders(buyer_id: str, body: CheckoutBody) -> List[Dict[str, Any]]:
    """Create one order per seller from the checkout lines.

    Unit prices are copied from the products at the time of checkout and every
    order total is the sum of its line totals. All orders and items are built and
    checked before the first write, so a rejected cart leaves nothing behind.
    """
    lines: Dict[str, List[Dict[str, Any]]] = {}
    for it in body.items:
        product = db.product.find_one({"_id": _oid(it.product_id, "product id")})
        if not product or product.get("status") != "active":
            raise HTTPException(status_code=404, detail=f"Product {it.product_id} not available")
        if product["seller_id"] == buyer_id:
            raise HTTPException(status_code=400, detail="You cannot buy your own product")
        unit_price = float(product["price"])
        lines.setdefault(product["seller_id"], []).append({
            "product_id": it.product_id,
            "quantity": it.quantity,
            "unit_price": unit_price,
            "total_price": _money(unit_price * it.quantity),
        })

    planned = []
    try:
        for seller_id, seller_lines in lines.items():
            order = OrderSchema(
                buyer_id=buyer_id,
                seller_id=seller_id,
                total_amount=_money(sum(line["total_price"] for line in seller_lines)),
                status="pending",
                delivery_address=body.delivery_address,
                payment_method=body.payment_method,
                notes=body.notes,
            )
            # order_id is filled in once the order row exists
            items = [OrderItemSchema(order_id="", **line) for line in seller_lines]
            planned.append((order, items))
    except ValidationError as e:
        logger.warning("Checkout by %s rejected: %s", buyer_id, e.errors()[0]["msg"])
        raise HTTPException(status_code=400, detail="Cart contains a product with an invalid price")

    for order, _ in planned:
        enforce("order", "insert", buyer_id, order.model_dump())

    created = []
    for order, items in planned:
        order_id = create_document("order", order)
        for item in items:
            item = item.model_copy(update={"order_id": order_id})
            enforce("order_item", "insert", buyer_id, item.model_dump())
            create_document("order_item", item)
        logger.info("Order %s placed by %s with seller %s for %.2f", order_id, buyer_id, order.seller_id, order.total_amount)
        created.append(order_with_items(db.order.find_one({"_id": ObjectId(order_id)})))
    return created


@router.post("/orders", status_code=201)
def create_orders(body: CheckoutBody, user_id: str = Depends(get_current_user)):
    orders = place_orders(user_id, body)
    return {"orders": orders, "grand_total": _money(sum(o["total_amount"] for o in orders))}


@router.get("/orders")
def list_orders(role: Literal['buyer', 'seller'] = 'buyer', user_id: str = Depends(get_current_user)):
    filt = visible_filter("order", user_id)
    filt[f"{role}_id"] = user_id
    docs = db.order.find(filt).sort([("created_at", -1), ("_id", -1)])
    return {"items": [order_with_items(d) for d in docs]}


@router.get("/orders/{order_id}")
def get_order(order_id: str, user_id: str = Depends(get_current_user)):
    order = db.order.find_one({"_id": _oid(order_id, "order id")})
    enforce("order", "select", user_id, order, not_found="Order not found")
    return order_with_items(order)


@router.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, body: StatusBody, user_id: str = Depends(get_current_user)):
    order = db.order.find_one({"_id": _oid(order_id, "order id")})
    enforce("order", "update", user_id, order, not_found="Order not found")
    current = order["status"]
    if body.status not in ORDER_TRANSITIONS.get(current, set()):
        raise HTTPException(status_code=400, detail=f"Cannot change order from {current} to {body.status}")
    updated = update_document("order", order_id, {"status": body.status})
    logger.info("Order %s moved %s -> %s", order_id, current, body.status)
    return order_with_items(updated)


# Returns

class CreateReturnBody(BaseModel):
    order_id: str
    reason: str = Field(..., min_length=1, max_length=1000)


class ReturnStatusBody(BaseModel):
    status: ReturnStatus


def _return_with_order(doc: Dict[str, Any]) -> Dict[str, Any]:
    row = to_str_id(doc)
    order = db.order.find_one({"_id": ObjectId(doc["order_id"])}) if ObjectId.is_valid(doc["order_id"]) else None
    row["order"] = to_str_id(order)
    return row


@router.post("/returns", status_code=201)
def create_return(body: CreateReturnBody, user_id: str = Depends(get_current_user)):
    order = db.order.find_one({"_id": _oid(body.order_id, "order id")})
    enforce("order", "select", user_id, order, not_found="Order not found")
    if order["buyer_id"] != user_id:
        raise HTTPException(status_code=403, detail="Only the buyer can request a return")
    if order["status"] != "delivered":
        raise HTTPException(status_code=400, detail="Only delivered orders can be returned")
    if db["return"].count_documents({"order_id": body.order_id, "status": {"$in": OPEN_RETURN_STATUSES}}):
        raise HTTPException(status_code=409, detail="A return is already open for this order")

    ret = ReturnSchema(order_id=body.order_id, buyer_id=user_id, seller_id=order["seller_id"], reason=body.reason)
    enforce("return", "insert", user_id, ret.model_dump())
    return_id = create_document("return", ret)
    logger.info("Return %s requested for order %s", return_id, body.order_id)
    return _return_with_order(db["return"].find_one({"_id": ObjectId(return_id)}))


@router.get("/returns")
def list_returns(role: Literal['buyer', 'seller'] = 'buyer', user_id: str = Depends(get_current_user)):
    filt = visible_filter("return", user_id)
    filt[f"{role}_id"] = user_id
    docs = db["return"].find(filt).sort([("created_at", -1), ("_id", -1)])
    return {"items": [_return_with_order(d) for d in docs]}


@router.patch("/returns/{return_id}/status")
def update_return_status(return_id: str, body: ReturnStatusBody, user_id: str = Depends(get_current_user)):
    doc = db["return"].find_one({"_id": _oid(return_id, "return id")})
    enforce("return", "update", user_id, doc, not_found="Return not found")
    current = doc["status"]
    if body.status not in RETURN_TRANSITIONS.get(current, set()):
        raise HTTPException(status_code=400, detail=f"Cannot change return from {current} to {body.status}")

    updated = update_document("return", return_id, {"status": body.status})
    if body.status == "completed":
        update_document("order", doc["order_id"], {"status": "returned"})
    logger.info("Return %s moved %s -> %s", return_id, current, body.status)
    return _return_with_order(updated)
