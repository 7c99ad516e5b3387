#storefront/data/models/cart.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Numeric
from sqlalchemy.orm import relationship

from storefront.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class CartModel(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True)

    # exactly one of user_id / guest_id is set
    user_id = Column(String, nullable=True, unique=True, index=True)
    guest_id = Column(String, nullable=True, unique=True, index=True)

    total_price = Column(Numeric(12, 2), nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    items = relationship(
        "CartItemModel",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItemModel.id",
    )
