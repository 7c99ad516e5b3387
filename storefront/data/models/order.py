# storefront/data/models/order.py
from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Boolean, Numeric, JSON
from datetime import datetime, timezone

from storefront.data.database import Base


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    checkout_id = Column(Integer, ForeignKey("checkouts.id"), nullable=False, unique=True)

    order_items = Column(JSON, nullable=False)
    shipping_address = Column(JSON, nullable=False)
    payment_method = Column(String, nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)

    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_status = Column(String, nullable=False)
    payment_details = Column(JSON, nullable=True)

    status = Column(String, nullable=False, default="Processing")  # Processing, Shipped, Delivered, Cancelled
    is_delivered = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
