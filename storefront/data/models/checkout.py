# storefront/data/models/checkout.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Numeric, JSON

from storefront.data.database import Base


class CheckoutModel(Base):
    __tablename__ = "checkouts"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)

    # copied line snapshots, not linked to the cart
    checkout_items = Column(JSON, nullable=False)
    shipping_address = Column(JSON, nullable=False)
    payment_method = Column(String, nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)

    payment_status = Column(String, nullable=False, default="unpaid")  # unpaid, paid
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_details = Column(JSON, nullable=True)

    is_finalized = Column(Boolean, nullable=False, default=False)
    finalized_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
