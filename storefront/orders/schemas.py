"""
Order schemas.

Flow:
    1. Customer posts line items {product_id, quantity} + shipping address
    2. Duplicate products are merged, stock is reserved atomically
    3. Unit prices are snapshotted; total_amount is fixed at creation
    4. Status advances only through PUT /orders/{id}/status
"""

from enum import Enum
from typing import List

from pydantic import BaseModel, Field, field_validator


class OrderStatusEnum(str, Enum):
    """Lifecycle of an order."""
    PENDING = "pending"             # Created, stock reserved
    PROCESSING = "processing"       # Being packed
    SHIPPED = "shipped"             # Handed to delivery
    DELIVERED = "delivered"         # Received by customer
    CANCELLED = "cancelled"


class OrderLineItemRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class PlaceOrderRequest(BaseModel):
    """POST /orders: place an order."""
    items: List[OrderLineItemRequest] = Field(..., min_length=1)
    shipping_address: str = Field(..., min_length=1, max_length=500)

    @field_validator("shipping_address")
    @classmethod
    def validate_address(cls, v):
        if not v.strip():
            raise ValueError("Shipping address is required")
        return v.strip()


class UpdateOrderStatusRequest(BaseModel):
    """PUT /orders/{id}/status: free-form so the service reports bad values."""
    status: str


class UpdateOrderRequest(BaseModel):
    """PUT /orders/{id}: only the shipping address is editable after creation."""
    shipping_address: str = Field(..., min_length=1, max_length=500)
