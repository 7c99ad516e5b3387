# storefront/repos/order_repo.py
from typing import List

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_order(self, order: OrderModel) -> OrderModel:
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)
        return order

    def get_order(self, order_id: int) -> OrderModel | None:
        return self.db.get(OrderModel, order_id)

    def get_order_by_checkout(self, checkout_id: int) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel).where(OrderModel.checkout_id == checkout_id)
        ).scalar_one_or_none()

    def list_orders(self) -> List[OrderModel]:
        return self.db.execute(
            select(OrderModel).order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
        ).scalars().all()

    def list_user_orders(self, user_id: str, offset: int, limit: int) -> List[OrderModel]:
        return self.db.execute(
            select(OrderModel)
            .where(OrderModel.user_id == user_id)
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            .offset(offset)
            .limit(limit)
        ).scalars().all()

    def count_user_orders(self, user_id: str) -> int:
        return self.db.execute(
            select(func.count()).select_from(OrderModel).where(OrderModel.user_id == user_id)
        ).scalar_one()

    def update_order_status(self, order_id: int, expected_status: str, new_data: dict) -> int:
        """Compare-and-set on the status column."""
        result = self.db.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.status == expected_status)
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def delete_order(self, order: OrderModel):
        self.db.delete(order)
        self.db.commit()

    def refresh(self, order: OrderModel) -> OrderModel:
        self.db.refresh(order)
        return order

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
