"""
Database Schemas for the campus marketplace

Each Pydantic model maps to a MongoDB collection (lowercased class name,
OrderItem -> "order_item"). Use these for validation before anything is
written so the collections stay consistent.
"""

from datetime import datetime
from typing import Annotated, List, Optional, Literal
from pydantic import AfterValidator, BaseModel, Field, EmailStr

UserRole = Literal['buyer', 'seller', 'both']
ProductCondition = Literal['new', 'like_new', 'good', 'fair', 'poor']
ProductStatus = Literal['active', 'sold', 'inactive']
OrderStatus = Literal['pending', 'confirmed', 'shipped', 'delivered', 'cancelled', 'returned']
ReturnStatus = Literal['requested', 'approved', 'rejected', 'completed']


def _whole_cents(value: float) -> float:
    if round(value, 2) != value:
        raise ValueError("price must be a whole number of cents")
    return value


# Positive amount with at most two decimals; checkout multiplies it without rounding
Price = Annotated[float, Field(gt=0), AfterValidator(_whole_cents)]


# Login credentials; the public side of a user lives in UserProfile
class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="SHA-256 hash of password")
    is_active: bool = Field(True, description="Whether user is active")


class Session(BaseModel):
    user_id: str
    token: str


# Shares its _id with the User it was provisioned for
class UserProfile(BaseModel):
    full_name: str = Field("New User")
    phone: Optional[str] = None
    address: Optional[str] = None
    role: UserRole = Field('buyer')
    avatar_url: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    location_point: Optional[dict] = None


class Category(BaseModel):
    name: str = Field(..., max_length=80)
    description: Optional[str] = None
    icon: Optional[str] = None
    is_special: bool = Field(False, description="Promotional category, e.g. donations")


class Product(BaseModel):
    seller_id: str = Field(..., description="Owner user id")
    title: str = Field(..., min_length=1, max_length=140)
    description: str = Field(..., max_length=5000)
    price: Price
    category_id: str
    condition: ProductCondition
    location: str = Field("", description="Free-text location shown on the listing")
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    location_point: Optional[dict] = None
    image_urls: List[str] = Field(default_factory=list)
    status: ProductStatus = Field('active')
    views: int = Field(0, ge=0)
    is_donation: bool = False
    is_urgent: bool = False


class DeliveryAddress(BaseModel):
    name: str
    address: str
    city: str
    postal_code: str
    phone: str


class Order(BaseModel):
    buyer_id: str
    seller_id: str
    total_amount: float = Field(..., gt=0)
    status: OrderStatus = Field('pending')
    delivery_address: DeliveryAddress
    payment_method: str = Field(..., min_length=1)
    notes: Optional[str] = None


# Line items are written once with their order and never updated
class OrderItem(BaseModel):
    order_id: str
    product_id: str
    quantity: int = Field(..., gt=0)
    unit_price: float = Field(..., gt=0)
    total_price: float = Field(..., gt=0)


class Return(BaseModel):
    order_id: str
    buyer_id: str
    seller_id: str
    reason: str = Field(..., min_length=1, max_length=1000)
    status: ReturnStatus = Field('requested')


class Wishlist(BaseModel):
    user_id: str
    product_id: str


# user1_id < user2_id always holds, so a pair has exactly one thread per product
class Conversation(BaseModel):
    user1_id: str
    user2_id: str
    product_id: Optional[str] = None
    last_message_at: Optional[datetime] = None


class Message(BaseModel):
    conversation_id: str
    sender_id: str
    receiver_id: str
    product_id: Optional[str] = None
    message_text: str = Field(..., min_length=1, max_length=5000)
    is_read: bool = Field(False)
