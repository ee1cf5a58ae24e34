from datetime import datetime
from typing import List, Literal, Optional

from pydantic import EmailStr, Field

from .common import ApiModel


OrderStatus = Literal["draft", "pending", "processing", "on-hold", "completed", "cancelled", "refunded", "failed"]


class Address(ApiModel):
    address_1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postcode: Optional[str] = None
    country: Optional[str] = None


class CustomerCreate(ApiModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    is_paying_customer: bool = False
    billing: Optional[Address] = None
    shipping: Optional[Address] = None
    organization_id: Optional[str] = None


class InventoryItemCreate(ApiModel):
    name: str = Field(min_length=1, max_length=255)
    sku: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    stock_quantity: int = Field(default=0, ge=0)
    status: Literal["publish", "draft", "private"] = "publish"
    organization_id: Optional[str] = None


class OrderLineItemIn(ApiModel):
    inventory_item_id: str
    quantity: int = Field(default=1, ge=1)
    subtotal: float = Field(ge=0)


class OrderCreate(ApiModel):
    customer_id: Optional[str] = None
    status: OrderStatus = "pending"
    currency: str = Field(default="USD", min_length=3, max_length=3)
    total: Optional[float] = Field(default=None, ge=0)
    created_via: Optional[str] = None
    billing: Optional[Address] = None
    shipping: Optional[Address] = None
    date_created: Optional[datetime] = None
    line_items: List[OrderLineItemIn] = []
    organization_id: Optional[str] = None
