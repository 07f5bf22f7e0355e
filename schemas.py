"""
Database Schemas

MongoDB collection schemas as Pydantic models.
Each top-level model represents a collection; the model name lowercased is the
collection name (TokenBlacklist lives in ``token_blacklist``).
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSED = "processed"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MongoModel(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=True, validate_default=True)


class User(MongoModel):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lower-cased")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Role = Field(Role.USER, description="Role: user | admin")
    profile_image: Optional[str] = Field(None, description="Uploaded profile image filename")


class Product(MongoModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    description: Optional[str] = None
    image: Optional[str] = Field(None, description="Uploaded product image filename")


class CartItem(MongoModel):
    id: ObjectId = Field(default_factory=ObjectId, alias="_id")
    product_id: ObjectId
    name_at_added: str
    price_at_added: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class Cart(MongoModel):
    user_id: ObjectId
    items: List[CartItem] = Field(default_factory=list)


class OrderItem(MongoModel):
    product_id: ObjectId
    name_at_order: str
    price_at_order: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class Order(MongoModel):
    user_id: ObjectId
    items: List[OrderItem]
    total: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING


class TokenBlacklist(MongoModel):
    signature: str
    expired_at: datetime
