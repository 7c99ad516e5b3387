from sqlalchemy import Column, Integer, String, Numeric, JSON, CheckConstraint

from storefront.data.database import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    image = Column(String, nullable=True)

    price = Column(Numeric(12, 2), nullable=False)
    discount_price = Column(Numeric(12, 2), nullable=True)

    count_in_stock = Column(Integer, nullable=False, default=0)
    total_sold = Column(Integer, nullable=False, default=0)

    sizes = Column(JSON, nullable=False, default=list)
    colors = Column(JSON, nullable=False, default=list)

    __table_args__ = (
        CheckConstraint("count_in_stock >= 0", name="ck_product_stock_non_negative"),
    )
