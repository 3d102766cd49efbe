"""
Collection schemas for the TechStore API

Each Pydantic model corresponds to one JSON file in the data directory.
Field names are camelCase on disk and on the wire; use by_alias=True when
dumping.

- Product -> "product" (products.json)
- User -> "user" (users.json)
- Sale -> "sale" (sales.json)
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

Role = Literal["customer", "admin"]


class Product(BaseModel):
    id: int
    name: str
    category: str
    price: float
    stock: int = Field(..., ge=0)
    image: Optional[str] = None


class User(BaseModel):
    id: int
    name: str = Field(..., description="Full name")
    email: EmailStr
    password: Optional[str] = Field(None, description="BCrypt hash, null for guest accounts")
    phone: str = ""
    address: str = ""
    role: Role = "customer"


class Sale(BaseModel):
    """One product line of an order. Never modified after creation."""
    model_config = ConfigDict(populate_by_name=True)

    id: int
    user_id: int = Field(..., alias="userId")
    product_id: int = Field(..., alias="productId")
    quantity: int = Field(..., ge=1)
    total: float
    date: str = Field(..., description="ISO-8601 timestamp")


def public_user(doc: dict) -> dict:
    return {k: v for k, v in doc.items() if k != "password"}
