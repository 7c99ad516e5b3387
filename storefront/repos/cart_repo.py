# storefront/repos/cart_repo.py
from datetime import datetime
from typing import List

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_cart_by_user(self, user_id: str) -> CartModel | None:
        return self.db.execute(
            select(CartModel).where(CartModel.user_id == user_id)
        ).scalar_one_or_none()

    def get_cart_by_guest(self, guest_id: str) -> CartModel | None:
        return self.db.execute(
            select(CartModel).where(CartModel.guest_id == guest_id)
        ).scalar_one_or_none()

    def create_cart(self, cart: CartModel) -> CartModel:
        self.db.add(cart)
        self.db.commit()
        self.db.refresh(cart)
        return cart

    @staticmethod
    def find_item(cart: CartModel, product_id: int, size: str, color: str) -> CartItemModel | None:
        for item in cart.items:
            if item.product_id == product_id and item.size == size and item.color == color:
                return item
        return None

    def update_cart_version(self, cart_id: int, old_version: int, new_data: dict) -> int:
        """Optimistic lock: UPDATE carts SET ... WHERE id = :id AND version = :old_version"""
        result = self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart_id, CartModel.version == old_version)
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def delete_cart(self, cart: CartModel):
        self.db.delete(cart)

    def delete_cart_by_user(self, user_id: str) -> int:
        cart = self.get_cart_by_user(user_id)
        if cart is None:
            return 0
        self.db.delete(cart)
        return 1

    def get_stale_guest_carts(self, updated_before: datetime) -> List[CartModel]:
        return self.db.execute(
            select(CartModel).where(
                CartModel.guest_id.is_not(None),
                CartModel.updated_at < updated_before,
            )
        ).scalars().all()

    def refresh(self, cart: CartModel) -> CartModel:
        self.db.refresh(cart)
        return cart

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
