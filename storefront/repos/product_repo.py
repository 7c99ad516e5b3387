# storefront/repos/product_repo.py
from typing import Dict, Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.data.models.product import ProductModel


class ProductRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: int) -> ProductModel | None:
        return self.db.get(ProductModel, product_id)

    def get_products(self, product_ids: Iterable[int]) -> Dict[int, ProductModel]:
        ids = set(product_ids)
        if not ids:
            return {}
        rows = self.db.execute(
            select(ProductModel).where(ProductModel.id.in_(ids))
        ).scalars().all()
        return {p.id: p for p in rows}

    def create_product(self, product: ProductModel) -> ProductModel:
        self.db.add(product)
        self.db.commit()
        self.db.refresh(product)
        return product

    def decrement_stock(self, product_id: int, quantity: int) -> bool:
        """UPDATE ... SET count_in_stock = count_in_stock - q WHERE count_in_stock >= q"""
        result = self.db.execute(
            update(ProductModel)
            .where(
                ProductModel.id == product_id,
                ProductModel.count_in_stock >= quantity,
            )
            .values(count_in_stock=ProductModel.count_in_stock - quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def increment_stock(self, product_id: int, quantity: int) -> bool:
        result = self.db.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id)
            .values(count_in_stock=ProductModel.count_in_stock + quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def increment_sold(self, product_id: int, quantity: int) -> bool:
        result = self.db.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id)
            .values(total_sold=ProductModel.total_sold + quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
