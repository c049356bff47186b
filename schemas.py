"""
Database Schemas

The whole store is a single JSON document holding four collections.
Each Pydantic model below describes the records of one collection; field
names are snake_case in Python and camelCase in the JSON file and on the wire.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(Record):
    id: str
    email: str = Field(..., description="Lower-cased email address")
    password_hash: str = Field(..., description="BCrypt hashed password")
    created_at: datetime
    session: Optional[str] = Field(None, description="Current session token")


class Product(Record):
    id: str
    title: str
    category: str
    price: int = Field(..., description="Price in the smallest currency unit")
    image: str
    rating: float = 0


class CartItem(Record):
    product_id: str
    title: str
    price: int
    image: str
    qty: int


class Cart(Record):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


class Order(Record):
    id: str
    user_id: str
    items: List[CartItem]
    total: int
    date: str = Field(..., description="ISO-8601 timestamp")


class Document(Record):
    """All four collections are required; a file missing any of them is corrupt."""

    users: List[User]
    products: List[Product]
    carts: List[Cart]
    orders: List[Order]
