import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError
from starlette.concurrency import run_in_threadpool

import config
from auth import get_current_user, user_id_for_token
from database import db, create_document, require_database, to_str_id, update_document, utcnow
from policies import allowed, enforce, visible_filter
from schemas import Conversation as ConversationSchema, Message as MessageSchema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["messaging"])
http_router = APIRouter(dependencies=[Depends(require_database)])


def canonical_pair(a: str, b: str):
    return (a, b) if a < b else (b, a)


def _require_profile(user_id: str) -> dict:
    if not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=400, detail="Invalid user id")
    profile = db.user_profile.find_one({"_id": ObjectId(user_id)})
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    return profile


def _require_product(product_id: str, user_id: str) -> dict:
    if not ObjectId.is_valid(product_id):
        raise HTTPException(status_code=400, detail="Invalid product id")
    product = db.product.find_one({"_id": ObjectId(product_id)})
    return enforce("product", "select", user_id, product, not_found="Product not found")


def get_or_create_conversation(user_id: str, other_user_id: str, product_id: Optional[str] = None) -> Dict[str, Any]:
    """Find the thread between two users (optionally about one product), creating it if needed.

    The participant pair is stored sorted, so (A, B) and (B, A) land on the same
    document. Two simultaneous first calls collide on the unique index and the
    loser reads the winner's row.
    """
    if user_id == other_user_id:
        raise HTTPException(status_code=400, detail="Cannot start a conversation with yourself")
    user1_id, user2_id = canonical_pair(user_id, other_user_id)
    key = {"user1_id": user1_id, "user2_id": user2_id, "product_id": product_id}

    conv = db.conversation.find_one(key)
    if conv:
        return conv

    new_conv = ConversationSchema(last_message_at=utcnow(), **key)
    enforce("conversation", "insert", user_id, new_conv.model_dump())
    try:
        conv_id = create_document("conversation", new_conv)
    except DuplicateKeyError:
        logger.warning("Conversation %s/%s created concurrently, reusing it", user1_id, user2_id)
        return db.conversation.find_one(key)
    return db.conversation.find_one({"_id": ObjectId(conv_id)})


def _conversation_summary(conv: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    row = to_str_id(conv)
    other_id = conv["user2_id"] if conv["user1_id"] == user_id else conv["user1_id"]
    other = db.user_profile.find_one({"_id": ObjectId(other_id)}) if ObjectId.is_valid(other_id) else None
    product = None
    if conv.get("product_id") and ObjectId.is_valid(conv["product_id"]):
        product = db.product.find_one({"_id": ObjectId(conv["product_id"])})
        if product and not allowed("product", "select", user_id, product):
            product = None
    last = list(db.message.find({"conversation_id": row["id"]}).sort([("created_at", -1), ("_id", -1)]).limit(1))
    row["other_user"] = to_str_id(other)
    row["product"] = to_str_id(product)
    row["last_message"] = to_str_id(last[0]) if last else None
    row["unread_count"] = db.message.count_documents({
        "conversation_id": row["id"], "receiver_id": user_id, "is_read": False,
    })
    return row


def _load_conversation(conversation_id: str, user_id: str) -> Dict[str, Any]:
    if not ObjectId.is_valid(conversation_id):
        raise HTTPException(status_code=400, detail="Invalid conversation id")
    conv = db.conversation.find_one({"_id": ObjectId(conversation_id)})
    return enforce("conversation", "select", user_id, conv, not_found="Conversation not found")


class StartConversationBody(BaseModel):
    other_user_id: str
    product_id: Optional[str] = None


class SendMessageBody(BaseModel):
    receiver_id: str
    message_text: str = Field(..., min_length=1, max_length=5000)
    product_id: Optional[str] = None


@http_router.post("/conversations")
def start_conversation(body: StartConversationBody, user_id: str = Depends(get_current_user)):
    _require_profile(body.other_user_id)
    if body.product_id:
        _require_product(body.product_id, user_id)
    conv = get_or_create_conversation(user_id, body.other_user_id, body.product_id)
    return _conversation_summary(conv, user_id)


@http_router.get("/conversations")
def list_conversations(user_id: str = Depends(get_current_user)):
    docs = db.conversation.find(visible_filter("conversation", user_id)).sort([("last_message_at", -1), ("_id", -1)])
    return {"items": [_conversation_summary(c, user_id) for c in docs]}


@http_router.get("/conversations/{conversation_id}/messages")
def get_messages(conversation_id: str, user_id: str = Depends(get_current_user)):
    _load_conversation(conversation_id, user_id)
    filt = visible_filter("message", user_id)
    filt["conversation_id"] = conversation_id
    docs = db.message.find(filt).sort([("created_at", 1), ("_id", 1)])
    return {"items": [to_str_id(d) for d in docs]}


@http_router.post("/conversations/{conversation_id}/read")
def mark_read(conversation_id: str, user_id: str = Depends(get_current_user)):
    _load_conversation(conversation_id, user_id)
    res = db.message.update_many(
        {"conversation_id": conversation_id, "receiver_id": user_id, "is_read": False},
        {"$set": {"is_read": True, "updated_at": utcnow()}},
    )
    return {"updated": res.modified_count}


@http_router.post("/messages", status_code=201)
def send_message(body: SendMessageBody, user_id: str = Depends(get_current_user)):
    _require_profile(body.receiver_id)
    if body.product_id:
        _require_product(body.product_id, user_id)
    conv = get_or_create_conversation(user_id, body.receiver_id, body.product_id)
    conversation_id = str(conv["_id"])

    msg = MessageSchema(
        conversation_id=conversation_id,
        sender_id=user_id,
        receiver_id=body.receiver_id,
        product_id=body.product_id,
        message_text=body.message_text,
        is_read=False,
    )
    enforce("message", "insert", user_id, msg.model_dump())
    msg_id = create_document("message", msg)
    update_document("conversation", conversation_id, {"last_message_at": utcnow()})
    return to_str_id(db.message.find_one({"_id": ObjectId(msg_id)}))


@http_router.get("/messages/unread-count")
def unread_count(user_id: str = Depends(get_current_user)):
    return {"unread": db.message.count_documents({"receiver_id": user_id, "is_read": False})}


# Change feed

# Messages stamped up to this long before the newest delivered one are still
# picked up; other workers can commit slightly out of created_at order.
FEED_LOOKBACK = timedelta(seconds=5)


class FeedCursor:
    """Position in the message stream for one socket, keyed on created_at.

    `sent` remembers the ids delivered inside the lookback window so a message
    is pushed at most once.
    """

    def __init__(self, user_id: str, conversation_id: Optional[str]):
        self.filt = visible_filter("message", user_id)
        if conversation_id:
            self.filt["conversation_id"] = conversation_id
        self.position = None
        self.sent: Dict[ObjectId, Any] = {}

    def _window(self) -> dict:
        filt = dict(self.filt)
        if self.position is not None:
            filt["created_at"] = {"$gte": self.position - FEED_LOOKBACK}
        return filt

    def start(self):
        """Skip everything already stored when the socket opens."""
        last = list(db.message.find(self.filt).sort([("created_at", -1), ("_id", -1)]).limit(1))
        if not last:
            return
        self.position = last[0]["created_at"]
        for doc in db.message.find(self._window(), {"created_at": 1}):
            self.sent[doc["_id"]] = doc["created_at"]

    def poll(self):
        filt = self._window()
        if self.sent:
            filt["_id"] = {"$nin": list(self.sent)}
        docs = list(db.message.find(filt).sort([("created_at", 1), ("_id", 1)]))
        for doc in docs:
            self.sent[doc["_id"]] = doc["created_at"]
            if self.position is None or doc["created_at"] > self.position:
                self.position = doc["created_at"]
        if self.position is not None:
            horizon = self.position - FEED_LOOKBACK
            self.sent = {k: v for k, v in self.sent.items() if v >= horizon}
        return docs


async def _drain(websocket: WebSocket):
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass


@router.websocket("/ws/messages")
async def message_feed(websocket: WebSocket, token: Optional[str] = None, conversation_id: Optional[str] = None):
    """Push messages to or from the caller as they are inserted.

    Only messages created after the socket opened are sent. The store is
    polled every FEED_POLL_INTERVAL seconds.
    """
    user_id = await run_in_threadpool(user_id_for_token, token) if db is not None else None
    if user_id is None:
        await websocket.close(code=1008)
        return
    cursor = FeedCursor(user_id, conversation_id)
    await run_in_threadpool(cursor.start)
    await websocket.accept()

    listener = asyncio.ensure_future(_drain(websocket))
    try:
        while not listener.done():
            for doc in await run_in_threadpool(cursor.poll):
                await websocket.send_json(jsonable_encoder(to_str_id(doc)))
            await asyncio.sleep(config.FEED_POLL_INTERVAL)
    except WebSocketDisconnect:
        pass
    finally:
        listener.cancel()


router.include_router(http_router)
