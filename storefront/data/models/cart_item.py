# storefront/data/models/cart_item.py
from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import relationship

from storefront.data.database import Base


class CartItemModel(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, nullable=False)
    size = Column(String, nullable=False)
    color = Column(String, nullable=False)

    quantity = Column(Integer, nullable=False)

    # snapshot of the product at the time of the last cart action
    name = Column(String, nullable=False)
    image = Column(String, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    discount_price = Column(Numeric(12, 2), nullable=True)
    count_in_stock = Column(Integer, nullable=False)

    cart = relationship("CartModel", back_populates="items")

    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", "size", "color", name="u_cart_line"),
    )
