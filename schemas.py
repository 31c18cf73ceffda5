"""
Database Schemas for the Food Ordering System

Each Pydantic model below corresponds to a MongoDB collection.
The collection name is the lowercase class name (e.g., User -> "user").
Cross-document references are stored as string ids.
"""
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

ProductCategory = Literal["fast food", "main dish", "drinks", "desserts"]
PaymentMethod = Literal["cash on delivery", "credit card", "paypal"]
OrderStatus = Literal["pending", "confirmed", "preparing", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "completed", "failed"]
SettingType = Literal["string", "number", "boolean", "object", "array"]

PHONE_PATTERN = r"^\d{10}$"
MAX_CART_QUANTITY = 99


class User(BaseModel):
    name: str = Field(..., max_length=50, description="Full name")
    email: EmailStr = Field(..., description="Unique email address")
    phone: str = Field(..., pattern=PHONE_PATTERN, description="10 digit phone number")
    password_hash: str = Field(..., description="BCrypt password hash")
    address: str = Field("", max_length=500)
    is_admin: bool = Field(False, description="Admin privileges")
    is_active: bool = True


class Product(BaseModel):
    name: str = Field(..., max_length=100)
    category: ProductCategory
    price: float = Field(..., ge=0)
    image: str = Field(..., description="Stored image filename")
    description: str = Field("", max_length=500)


class Cart(BaseModel):
    """One line of an authenticated user's cart."""
    user_id: str
    product_id: str
    quantity: int = Field(..., ge=1, le=MAX_CART_QUANTITY)


class OrderLine(BaseModel):
    """Product details frozen at the moment the order was placed."""
    model_config = ConfigDict(frozen=True)

    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: str = ""

    @property
    def extension(self) -> float:
        return self.price * self.quantity


class Order(BaseModel):
    user_id: Optional[str] = Field(None, description="Owning account; None for guest orders")
    is_guest_order: bool = False
    name: str = Field(..., max_length=50)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN)
    address: str = Field(..., max_length=500)
    payment_method: PaymentMethod
    items: List[OrderLine] = Field(..., min_length=1)
    total_price: float = Field(..., ge=0)
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"

    @model_validator(mode="after")
    def check_ownership(self):
        if self.is_guest_order and self.user_id is not None:
            raise ValueError("guest orders cannot belong to a user")
        if not self.is_guest_order and self.user_id is None:
            raise ValueError("registered orders need a user")
        return self


class Activitylog(BaseModel):
    user_id: str
    action: str = Field(..., description="create, update, delete, login, ...")
    resource: str = Field(..., description="Entity type, e.g. product, order, settings")
    resource_id: Optional[str] = None
    details: Any = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class Setting(BaseModel):
    key: str = Field(..., min_length=1)
    value: Any
    type: SettingType = "string"
    description: str = ""
    category: str = "general"


class Message(BaseModel):
    user_id: str
    name: str = Field(..., max_length=100)
    email: EmailStr
    phone: str = Field(..., pattern=r"^\d{10,12}$")
    message: str = Field(..., max_length=500)
    is_read: bool = False
