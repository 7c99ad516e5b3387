# storefront/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """JSON bodies are camelCase, python attributes snake_case."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class OrderStatus(str, Enum):
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


# ---------------------------------------------------------------- cart

class CartItemIn(CamelModel):
    """Add a product variant to the cart."""

    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0, description="Must be a positive integer")
    size: str = Field(..., min_length=1)
    color: str = Field(..., min_length=1)
    guest_id: Optional[str] = None


class CartUpdateIn(CamelModel):
    """Set the quantity of a line item; 0 removes it."""

    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., ge=0)
    size: str = Field(..., min_length=1)
    color: str = Field(..., min_length=1)
    guest_id: Optional[str] = None


class CartKeyIn(CamelModel):
    product_id: int = Field(..., gt=0)
    size: str = Field(..., min_length=1)
    color: str = Field(..., min_length=1)
    guest_id: Optional[str] = None


class CartMergeIn(CamelModel):
    guest_id: str = Field(..., min_length=1)


class CartLineOut(CamelModel):
    product_id: int
    name: str
    image: Optional[str] = None
    price: Decimal
    discount_price: Optional[Decimal] = None
    size: str
    color: str
    quantity: int
    count_in_stock: int


class RemovedLineOut(CamelModel):
    product_id: int
    size: str
    color: str
    name: str
    reason: str


class AdjustedLineOut(CamelModel):
    product_id: int
    size: str
    color: str
    name: str
    old_qty: int
    new_qty: int


class CartOut(CamelModel):
    id: Optional[int] = None
    user_id: Optional[str] = None
    guest_id: Optional[str] = None
    products: List[CartLineOut] = []
    total_price: Decimal = Decimal("0")
    version: Optional[int] = None


class CartReadOut(CartOut):
    """Cart after read-time stock reconciliation."""

    removed: List[RemovedLineOut] = []
    adjusted: List[AdjustedLineOut] = []


# ---------------------------------------------------------------- checkout

class ShippingAddress(CamelModel):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class CheckoutItem(CamelModel):
    """Line snapshot copied into a checkout session and its order."""

    product_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1)
    image: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    discount_price: Optional[Decimal] = Field(None, ge=0)
    size: str = Field(..., min_length=1)
    color: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)


class CheckoutCreate(CamelModel):
    checkout_items: List[CheckoutItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: str = Field(..., min_length=1)
    payment_status: PaymentStatus
    total_price: Decimal = Field(..., gt=0)


class CheckoutFromCartIn(CamelModel):
    shipping_address: ShippingAddress
    payment_method: str = Field(..., min_length=1)
    payment_status: PaymentStatus = PaymentStatus.UNPAID


class CheckoutPayIn(CamelModel):
    payment_status: Literal["paid"]
    payment_details: Optional[Dict[str, Any]] = None


class CheckoutOut(CamelModel):
    id: int
    user_id: str
    checkout_items: List[CheckoutItem]
    shipping_address: ShippingAddress
    payment_method: str
    total_price: Decimal
    payment_status: PaymentStatus
    is_paid: bool
    paid_at: Optional[datetime] = None
    payment_details: Optional[Dict[str, Any]] = None
    is_finalized: bool
    finalized_at: Optional[datetime] = None
    created_at: datetime


# ---------------------------------------------------------------- orders

class OrderItem(CamelModel):
    product_id: int
    name: str
    image: Optional[str] = None
    price: Decimal
    discount_price: Decimal
    size: str
    color: str
    quantity: int


class OrderOut(CamelModel):
    id: int
    user_id: str
    checkout_id: int
    order_items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: str
    total_price: Decimal
    is_paid: bool
    paid_at: Optional[datetime] = None
    payment_status: PaymentStatus
    payment_details: Optional[Dict[str, Any]] = None
    status: OrderStatus
    is_delivered: bool
    delivered_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_orders: int


class OrderPage(CamelModel):
    orders: List[OrderOut]
    pagination: Pagination


class OrderStatusIn(CamelModel):
    status: OrderStatus


class OrderCancelIn(CamelModel):
    reason: str = ""


class OrderCancelOut(CamelModel):
    message: str
    order: OrderOut


# ---------------------------------------------------------------- gateway

class CreatePaymentIn(CamelModel):
    checkout_id: int = Field(..., gt=0)
    amount: Optional[Decimal] = None


class CreatePaymentOut(CamelModel):
    success: bool
    payment_url: str
    txn_ref: str
    checkout_id: int


class QueryTransactionIn(CamelModel):
    txn_ref: str = Field(..., min_length=1)
    transaction_date: str = Field(..., pattern=r"^\d{14}$", description="YYYYMMDDHHmmss")


class GatewayAck(BaseModel):
    """Acknowledgement shape the gateway expects from the IPN endpoint."""

    RspCode: str
    Message: str
