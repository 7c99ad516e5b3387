import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.product import ProductModel
from storefront.domain.errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from storefront.repos.cart_repo import CartRepo
from storefront.repos.product_repo import ProductRepo
from storefront.services.lock_service import LockService
from storefront.utils.settings import CART_LOCK_TTL_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CartIdentity:
    """Owner of a cart: a registered user or a guest, never both."""

    user_id: Optional[str] = None
    guest_id: Optional[str] = None

    def __str__(self):
        return f"user {self.user_id}" if self.user_id else f"guest {self.guest_id}"


def line_price(item) -> Decimal:
    return item.discount_price if item.discount_price is not None else item.price


def compute_total(items: Iterable) -> Decimal:
    return sum((line_price(i) * i.quantity for i in items), Decimal("0.00"))


def empty_cart(identity: CartIdentity | None = None) -> Dict[str, Any]:
    return {
        "id": None,
        "user_id": identity.user_id if identity else None,
        "guest_id": identity.guest_id if identity else None,
        "products": [],
        "total_price": Decimal("0.00"),
        "version": None,
    }


def cart_to_dict(cart: CartModel) -> Dict[str, Any]:
    return {
        "id": cart.id,
        "user_id": cart.user_id,
        "guest_id": cart.guest_id,
        "products": [
            {
                "product_id": i.product_id,
                "name": i.name,
                "image": i.image,
                "price": i.price,
                "discount_price": i.discount_price,
                "size": i.size,
                "color": i.color,
                "quantity": i.quantity,
                "count_in_stock": i.count_in_stock,
            }
            for i in cart.items
        ],
        "total_price": cart.total_price,
        "version": cart.version,
    }


class CartService:
    """
    Cart use cases for users and guests.

    Every command mutates line items in the session and then commits through
    a version compare-and-swap on the cart row, so a concurrent writer makes
    the later commit fail with ConflictError instead of losing an update.
    Reads reconcile cached stock snapshots and may write as well.
    """

    def __init__(self, db: Session, lock_service: LockService | None = None):
        self.repo = CartRepo(db)
        self.products = ProductRepo(db)
        self.lock_service = lock_service

    # ------------------------------------------------------------------ helpers

    def _find_cart(self, identity: CartIdentity) -> CartModel | None:
        if identity.user_id:
            return self.repo.get_cart_by_user(identity.user_id)
        if identity.guest_id:
            return self.repo.get_cart_by_guest(identity.guest_id)
        return None

    def _get_product(self, product_id: int) -> ProductModel:
        product = self.products.get_product(product_id)
        if not product:
            raise NotFoundError("Product not found")
        return product

    @staticmethod
    def _check_variant(product: ProductModel, size: str, color: str):
        if size not in (product.sizes or []) or color not in (product.colors or []):
            raise ValidationError("Invalid size or color")

    @staticmethod
    def _snapshot(item: CartItemModel, product: ProductModel):
        item.count_in_stock = product.count_in_stock

    @staticmethod
    def _new_line(product: ProductModel, size: str, color: str, quantity: int) -> CartItemModel:
        return CartItemModel(
            product_id=product.id,
            name=product.name,
            image=product.image,
            price=product.price,
            discount_price=product.discount_price,
            size=size,
            color=color,
            quantity=quantity,
            count_in_stock=product.count_in_stock,
        )

    def _commit_cart(self, cart: CartModel, old_version: int) -> CartModel:
        """Recompute the total and persist, guarded by the version column."""
        total = compute_total(cart.items)

        rowcount = self.repo.update_cart_version(
            cart_id=cart.id,
            old_version=old_version,
            new_data={
                "version": old_version + 1,
                "total_price": total,
                "updated_at": datetime.now(timezone.utc),
            },
        )

        if rowcount == 0:
            self.repo.rollback()
            raise ConflictError("Cart was modified by another request, retry")

        self.repo.commit()
        return self.repo.refresh(cart)

    def _create_cart(self, identity: CartIdentity) -> CartModel:
        guest_id = identity.guest_id
        if not identity.user_id and not guest_id:
            guest_id = f"guest_{int(time.time() * 1000)}"

        try:
            created = self.repo.create_cart(
                CartModel(
                    user_id=identity.user_id,
                    guest_id=None if identity.user_id else guest_id,
                    total_price=Decimal("0.00"),
                    version=1,
                )
            )
        except IntegrityError:
            # another request created the same owner's cart first
            self.repo.rollback()
            raise ConflictError("Cart was created by another request, retry")

        logger.info(f"Created cart {created.id} for {identity}")
        return created

    # ------------------------------------------------------------------ query

    def get_or_create(self, identity: CartIdentity) -> CartModel:
        return self._find_cart(identity) or self._create_cart(identity)

    def get_cart(self, identity: CartIdentity) -> Dict[str, Any]:
        """
        Read with stock reconciliation.

        Lines whose product vanished or sold out are dropped (``removed``),
        lines above current stock are clamped (``adjusted``). Changes are
        persisted before returning.
        """
        cart = self._find_cart(identity)
        if not cart:
            result = empty_cart(identity)
            result.update(removed=[], adjusted=[])
            return result

        products = self.products.get_products(i.product_id for i in cart.items)
        removed, adjusted = [], []
        changed = False

        for item in list(cart.items):
            product = products.get(item.product_id)

            if product is None or product.count_in_stock <= 0:
                removed.append({
                    "product_id": item.product_id,
                    "size": item.size,
                    "color": item.color,
                    "name": item.name,
                    "reason": "not_found" if product is None else "out_of_stock",
                })
                cart.items.remove(item)
                changed = True
                continue

            if item.quantity > product.count_in_stock:
                adjusted.append({
                    "product_id": item.product_id,
                    "size": item.size,
                    "color": item.color,
                    "name": item.name,
                    "old_qty": item.quantity,
                    "new_qty": product.count_in_stock,
                })
                item.quantity = product.count_in_stock
                changed = True

            if item.count_in_stock != product.count_in_stock:
                self._snapshot(item, product)
                changed = True

        if changed:
            logger.info(
                f"Reconciled cart {cart.id}: {len(removed)} removed, {len(adjusted)} adjusted"
            )
            cart = self._commit_cart(cart, cart.version)

        result = cart_to_dict(cart)
        result.update(removed=removed, adjusted=adjusted)
        return result

    # ------------------------------------------------------------------ commands

    def add_item(
        self,
        identity: CartIdentity,
        product_id: int,
        quantity: int,
        size: str,
        color: str,
    ) -> tuple[Dict[str, Any], bool]:
        """Returns the cart and whether it was created by this call."""
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("Quantity must be a positive integer")

        product = self._get_product(product_id)

        if quantity > product.count_in_stock:
            raise ValidationError("Quantity exceeds stock")

        self._check_variant(product, size, color)

        cart = self._find_cart(identity)
        created = cart is None
        if created:
            cart = self._create_cart(identity)

        old_version = cart.version
        existing_item = self.repo.find_item(cart, product_id, size, color)

        if existing_item:
            if existing_item.quantity + quantity > product.count_in_stock:
                raise ValidationError("Quantity exceeds stock")
            logger.info(
                f"Product {product_id} ({size}/{color}) already in cart {cart.id}, "
                f"quantity {existing_item.quantity} -> {existing_item.quantity + quantity}"
            )
            existing_item.quantity += quantity
            self._snapshot(existing_item, product)
        else:
            logger.info(f"Adding product {product_id} ({size}/{color}) to cart {cart.id}")
            cart.items.append(self._new_line(product, size, color, quantity))

        cart = self._commit_cart(cart, old_version)
        return cart_to_dict(cart), created

    def update_quantity(
        self,
        identity: CartIdentity,
        product_id: int,
        quantity: int,
        size: str,
        color: str,
    ) -> Dict[str, Any]:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValidationError("Quantity must be a non-negative integer")

        cart = self._find_cart(identity)
        if not cart:
            raise NotFoundError("Cart not found")

        product = self._get_product(product_id)

        if quantity > product.count_in_stock:
            raise ValidationError("Quantity exceeds stock")

        self._check_variant(product, size, color)

        item = self.repo.find_item(cart, product_id, size, color)
        if not item:
            raise NotFoundError("Product not found in cart")

        old_version = cart.version
        if quantity > 0:
            item.quantity = quantity
            self._snapshot(item, product)
        else:
            cart.items.remove(item)

        return cart_to_dict(self._commit_cart(cart, old_version))

    def remove_item(
        self,
        identity: CartIdentity,
        product_id: int,
        size: str,
        color: str,
    ) -> Dict[str, Any]:
        cart = self._find_cart(identity)
        if not cart:
            raise NotFoundError("Cart not found")

        item = self.repo.find_item(cart, product_id, size, color)
        if not item:
            raise NotFoundError("Product not found in cart")

        logger.info(f"Removing product {product_id} ({size}/{color}) from cart {cart.id}")
        old_version = cart.version
        cart.items.remove(item)

        return cart_to_dict(self._commit_cart(cart, old_version))

    def clear(self, identity: CartIdentity) -> Dict[str, Any]:
        cart = self._find_cart(identity)
        if cart:
            logger.info(f"Clearing cart {cart.id} of {identity}")
            self.repo.delete_cart(cart)
            self.repo.commit()
        return empty_cart(identity)

    def merge(self, guest_id: str, user_id: str) -> Dict[str, Any]:
        """
        Move a guest cart into the user's cart after login.

        Serialized per guest id with a Redis lock; the user cart itself is
        protected by its version column. Retrying after the guest cart is
        gone is a no-op.
        """
        if self.lock_service is None:
            return self._merge(guest_id, user_id)

        locked = self.lock_service.acquire_merge_lock(
            guest_id=guest_id,
            owner=user_id,
            ttl=CART_LOCK_TTL_SECONDS,
        )
        if not locked:
            raise ConflictError("Guest cart is already being merged")

        try:
            return self._merge(guest_id, user_id)
        finally:
            self.lock_service.release_merge_lock(guest_id, user_id)

    def _merge(self, guest_id: str, user_id: str) -> Dict[str, Any]:
        guest_cart = self.repo.get_cart_by_guest(guest_id)
        user_cart = self.repo.get_cart_by_user(user_id)

        if not guest_cart:
            logger.info(f"Guest cart {guest_id} not found, nothing to merge for user {user_id}")
            if user_cart:
                return cart_to_dict(user_cart)
            return empty_cart(CartIdentity(user_id=user_id))

        if not guest_cart.items:
            raise ValidationError("Guest cart is empty")

        products = self.products.get_products(i.product_id for i in guest_cart.items)

        try:
            if user_cart:
                old_version = user_cart.version
                self._merge_lines(guest_cart, user_cart, products)
                self.repo.delete_cart(guest_cart)
                merged = self._commit_cart(user_cart, old_version)
            else:
                old_version = guest_cart.version
                self._adopt_lines(guest_cart, products)
                guest_cart.user_id = user_id
                guest_cart.guest_id = None
                merged = self._commit_cart(guest_cart, old_version)
        except StoreError:
            self.repo.rollback()
            raise

        logger.info(f"Merged guest cart {guest_id} into cart {merged.id} of user {user_id}")
        return cart_to_dict(merged)

    def _validate_guest_line(self, item: CartItemModel, product: ProductModel, merged_qty: int):
        if item.size not in (product.sizes or []) or item.color not in (product.colors or []):
            raise ValidationError(f"Size or color of {item.name} is no longer available")
        if merged_qty > product.count_in_stock:
            raise InsufficientStockError(item.name, merged_qty, product.count_in_stock)

    def _merge_lines(self, guest_cart: CartModel, user_cart: CartModel, products: Dict[int, ProductModel]):
        for guest_item in guest_cart.items:
            product = products.get(guest_item.product_id)
            if product is None:
                logger.info(f"Dropping vanished product {guest_item.product_id} from guest cart")
                continue

            existing = self.repo.find_item(
                user_cart, guest_item.product_id, guest_item.size, guest_item.color
            )
            merged_qty = guest_item.quantity + (existing.quantity if existing else 0)
            self._validate_guest_line(guest_item, product, merged_qty)

            if existing:
                existing.quantity = merged_qty
                self._snapshot(existing, product)
            else:
                line = self._new_line(product, guest_item.size, guest_item.color, guest_item.quantity)
                # keep the price the guest saw
                line.price = guest_item.price
                line.discount_price = guest_item.discount_price
                user_cart.items.append(line)

    def _adopt_lines(self, guest_cart: CartModel, products: Dict[int, ProductModel]):
        for item in list(guest_cart.items):
            product = products.get(item.product_id)
            if product is None:
                guest_cart.items.remove(item)
                continue
            self._validate_guest_line(item, product, item.quantity)
            self._snapshot(item, product)
