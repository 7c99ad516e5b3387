# storefront/data/seed.py
from decimal import Decimal

from storefront.data.database import Base, SessionLocal, engine
from storefront.data.models.product import ProductModel

SAMPLE_PRODUCTS = [
    {
        "name": "Áo thun basic",
        "price": Decimal("199000"),
        "discount_price": Decimal("159000"),
        "count_in_stock": 50,
        "sizes": ["S", "M", "L", "XL"],
        "colors": ["Đen", "Trắng"],
    },
    {
        "name": "Quần jean slim",
        "price": Decimal("459000"),
        "discount_price": None,
        "count_in_stock": 20,
        "sizes": ["29", "30", "31", "32"],
        "colors": ["Xanh"],
    },
    {
        "name": "Áo khoác gió",
        "price": Decimal("599000"),
        "discount_price": Decimal("499000"),
        "count_in_stock": 5,
        "sizes": ["M", "L"],
        "colors": ["Đen", "Xám"],
    },
]


def seed():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        # only seed an empty catalog
        if db.query(ProductModel).first():
            return
        db.add_all(ProductModel(**p) for p in SAMPLE_PRODUCTS)
        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    seed()
