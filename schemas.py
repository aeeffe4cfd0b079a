"""
Database Schemas

MongoDB collection schemas and request bodies, defined as Pydantic models.
These schemas are used for data validation in the application.

Stored models map to a collection named after the lowercase class name:
- User -> "user" collection
- Product -> "product" collection

Cart, wishlist, order and address lines are embedded in the user document,
reviews are embedded in the product document.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["user", "admin", "seller"]
PaymentMode = Literal["online", "cod"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Address(BaseModel):
    name: Optional[str] = None
    street: str
    city: str
    state: str
    pincode: str
    country: str = "India"
    is_default: bool = False


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    added_at: datetime = Field(default_factory=_now)


class WishlistItem(BaseModel):
    product_id: str
    added_at: datetime = Field(default_factory=_now)


class OrderItem(BaseModel):
    """One line of a user's order history"""
    order_id: str
    product_id: str
    quantity: int = Field(1, ge=1)
    purchased_at: datetime = Field(default_factory=_now)
    payment_mode: PaymentMode
    payment_status: bool = False
    payment_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    total_amount: float = Field(..., ge=0)
    order_status: OrderStatus = "pending"
    tracking_id: Optional[str] = None
    delivered_at: Optional[datetime] = None
    shipping_address: Optional[Address] = None


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user" (lowercase of class name)
    """
    name: str = Field("User", description="Display name")
    email: EmailStr = Field(..., description="Email address, unique")
    password: str = Field(..., description="bcrypt hash")
    role: Role = "user"
    profile_photo: str = ""
    order_history: List[OrderItem] = []
    cart: List[CartItem] = []
    wishlist: List[WishlistItem] = []
    addresses: List[Address] = []


class Review(BaseModel):
    rated_by: str
    rating: int = Field(..., ge=1, le=5)
    feedback: str = ""
    created_at: datetime = Field(default_factory=_now)


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product" (lowercase of class name)
    """
    name: str = Field(..., min_length=1, description="Product name")
    image_url: str = Field(..., description="Primary image URL")
    price: float = Field(..., ge=0, description="Price in rupees")
    company: str = ""
    available_options: List[str] = []
    category: str = "Uncategorized"
    stock: int = Field(0, ge=0)
    owner_id: str
    reviews: List[Review] = []


# Request bodies

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    new_password: str = Field(..., min_length=6)


class PlaceOrderRequest(BaseModel):
    quantity: int = Field(1, ge=1)
    payment_mode: PaymentMode = "cod"
    shipping_address: Optional[Address] = None


class ReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    feedback: str = ""


class PaymentOrderRequest(BaseModel):
    order_id: str


class PaymentVerifyRequest(BaseModel):
    order_id: str
    gateway_order_id: str
    payment_id: str
    signature: str


class PublicUser(BaseModel):
    id: str
    name: str
    profile_photo: str = ""
    role: Role
