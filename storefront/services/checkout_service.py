# storefront/services/checkout_service.py
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.data.models.checkout import CheckoutModel
from storefront.data.models.order import OrderModel
from storefront.data.models.product import ProductModel
from storefront.domain.errors import (
    AlreadyFinalizedError,
    ForbiddenError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from storefront.domain.schemas import (
    CheckoutCreate,
    CheckoutFromCartIn,
    CheckoutItem,
    OrderStatus,
    PaymentStatus,
)
from storefront.repos.cart_repo import CartRepo
from storefront.repos.checkout_repo import CheckoutRepo
from storefront.repos.order_repo import OrderRepo
from storefront.repos.product_repo import ProductRepo
from storefront.services.cart_service import CartIdentity, CartService
from storefront.services.notification_service import NotificationService
from storefront.services.order_service import order_to_dict
from storefront.utils.settings import FINALIZE_PREFLIGHT_STOCK
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

FINALIZABLE_STATUSES = {PaymentStatus.PAID.value, PaymentStatus.UNPAID.value}


def checkout_to_dict(checkout: CheckoutModel) -> Dict[str, Any]:
    return {
        "id": checkout.id,
        "user_id": checkout.user_id,
        "checkout_items": checkout.checkout_items,
        "shipping_address": checkout.shipping_address,
        "payment_method": checkout.payment_method,
        "total_price": checkout.total_price,
        "payment_status": checkout.payment_status,
        "is_paid": checkout.is_paid,
        "paid_at": checkout.paid_at,
        "payment_details": checkout.payment_details,
        "is_finalized": checkout.is_finalized,
        "finalized_at": checkout.finalized_at,
        "created_at": checkout.created_at,
    }


class CheckoutService:
    """
    Checkout session lifecycle: create -> (mark paid) -> finalize.

    Finalize is the only place stock is decremented and orders are created.
    At most one order per session is guaranteed by a conditional update on
    ``is_finalized`` that only one caller can win.
    """

    def __init__(
        self,
        db: Session,
        notification_service: NotificationService | None = None,
        preflight_stock: bool = FINALIZE_PREFLIGHT_STOCK,
    ):
        self.db = db
        self.repo = CheckoutRepo(db)
        self.products = ProductRepo(db)
        self.orders = OrderRepo(db)
        self.carts = CartRepo(db)
        self.notification_service = notification_service
        self.preflight_stock = preflight_stock

    # ------------------------------------------------------------------ helpers

    def _load(self, checkout_id: int, user_id: Optional[str] = None) -> CheckoutModel:
        checkout = self.repo.get_checkout(checkout_id)
        if not checkout:
            raise NotFoundError("Checkout not found")
        if user_id is not None and checkout.user_id != user_id:
            raise ForbiddenError("Not allowed to access this checkout")
        return checkout

    # ------------------------------------------------------------------ create

    def create_checkout(self, user_id: str, payload: CheckoutCreate) -> Dict[str, Any]:
        is_paid = payload.payment_status == PaymentStatus.PAID
        now = datetime.now(timezone.utc)

        checkout = self.repo.create_checkout(
            CheckoutModel(
                user_id=user_id,
                checkout_items=[i.model_dump(mode="json") for i in payload.checkout_items],
                shipping_address=payload.shipping_address.model_dump(mode="json"),
                payment_method=payload.payment_method,
                total_price=payload.total_price,
                payment_status=payload.payment_status.value,
                is_paid=is_paid,
                paid_at=now if is_paid else None,
            )
        )

        logger.info(f"Checkout {checkout.id} created for user {user_id} ({checkout.payment_status})")
        return checkout_to_dict(checkout)

    def create_from_cart(
        self,
        user_id: str,
        payload: CheckoutFromCartIn,
        cart_service: CartService,
    ) -> Dict[str, Any]:
        """Snapshot the caller's reconciled cart into a new checkout session."""
        cart = cart_service.get_cart(CartIdentity(user_id=user_id))
        if not cart["products"]:
            raise ValidationError("No items in checkout")

        items = [
            CheckoutItem(
                product_id=line["product_id"],
                name=line["name"],
                image=line["image"],
                price=line["price"],
                discount_price=line["discount_price"],
                size=line["size"],
                color=line["color"],
                quantity=line["quantity"],
            )
            for line in cart["products"]
        ]

        return self.create_checkout(
            user_id,
            CheckoutCreate(
                checkout_items=items,
                shipping_address=payload.shipping_address,
                payment_method=payload.payment_method,
                payment_status=payload.payment_status,
                total_price=cart["total_price"],
            ),
        )

    def get_checkout(self, checkout_id: int, user_id: Optional[str] = None) -> Dict[str, Any]:
        return checkout_to_dict(self._load(checkout_id, user_id))

    def payable_amount(self, checkout_id: int, amount: Optional[Decimal] = None) -> Decimal:
        """The amount a payment for this session must carry: its stored total."""
        checkout = self._load(checkout_id)
        if checkout.is_finalized:
            raise AlreadyFinalizedError(checkout_id)
        if amount is not None and Decimal(amount) != checkout.total_price:
            logger.warning(
                f"Payment amount {amount} does not match checkout {checkout_id} total {checkout.total_price}"
            )
            raise ValidationError("Amount does not match checkout total")
        return checkout.total_price

    # ------------------------------------------------------------------ pay

    def mark_paid(
        self,
        checkout_id: int,
        payment_details: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Record a payment. Re-delivery just re-stamps ``paid_at``; no order
        is created here.
        """
        checkout = self._load(checkout_id, user_id)

        rowcount = self.repo.mark_paid(
            checkout_id=checkout.id,
            paid_at=datetime.now(timezone.utc),
            payment_details=payment_details,
        )
        if rowcount == 0:
            self.repo.rollback()
            raise AlreadyFinalizedError(checkout_id)

        self.repo.commit()
        logger.info(f"Checkout {checkout_id} marked as paid")
        return checkout_to_dict(self.repo.refresh(checkout))

    # ------------------------------------------------------------------ finalize

    def finalize(
        self,
        checkout_id: int,
        user_id: Optional[str] = None,
        strict_stock: bool = True,
    ) -> Dict[str, Any]:
        """
        Turn a checkout session into an order.

        1. load and validate (no side effects)
        2. claim the session with a conditional update
        3. decrement stock line by line
        4. create the order, drop the cart, queue the notification

        With ``strict_stock`` a shortfall releases the claim and raises
        InsufficientStockError; decrements already committed for earlier
        lines stay committed. Without it (gateway callbacks, the customer
        already paid) shortfalls are logged and the order is still created.
        If the order cannot be written the taken stock is put back and the
        session is reopened.
        """
        checkout = self._load(checkout_id, user_id)

        if checkout.is_finalized:
            raise AlreadyFinalizedError(checkout_id)

        if checkout.payment_status not in FINALIZABLE_STATUSES:
            raise InvalidStateError("Invalid checkout payment status")

        items = [CheckoutItem.model_validate(i) for i in checkout.checkout_items]
        owner = checkout.user_id

        now = datetime.now(timezone.utc)
        if not self.repo.claim_finalize(checkout.id, now):
            self.repo.rollback()
            logger.info(f"Checkout {checkout_id} was finalized by a concurrent request")
            raise AlreadyFinalizedError(checkout_id)
        self.repo.commit()

        try:
            products, taken = self._decrement_stock(items, strict_stock)
        except (NotFoundError, InsufficientStockError):
            self.repo.release_finalize(checkout.id)
            self.repo.commit()
            raise

        try:
            order = self.orders.create_order(
                OrderModel(
                    user_id=owner,
                    checkout_id=checkout.id,
                    order_items=self._order_items(items, products),
                    shipping_address=checkout.shipping_address,
                    payment_method=checkout.payment_method,
                    total_price=checkout.total_price,
                    is_paid=checkout.is_paid,
                    paid_at=checkout.paid_at,
                    payment_status=checkout.payment_status,
                    payment_details=checkout.payment_details,
                    status=OrderStatus.PROCESSING.value,
                    is_delivered=False,
                )
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to create order for checkout {checkout_id}: {e}")
            self._undo_finalize(checkout_id, taken)
            raise
        logger.info(f"Order {order.id} created from checkout {checkout_id}")

        self._delete_cart(owner)
        self._notify(owner, order.id)

        return order_to_dict(order)

    def _undo_finalize(self, checkout_id: int, taken: Dict[int, int]):
        """Put the decremented stock back and reopen the session for a retry."""
        self.repo.rollback()
        for product_id, quantity in taken.items():
            self.products.increment_stock(product_id, quantity)
        self.repo.release_finalize(checkout_id)
        self.repo.commit()
        logger.warning(f"Checkout {checkout_id} reopened, restored stock {taken}")

    def _decrement_stock(
        self, items: List[CheckoutItem], strict: bool
    ) -> Tuple[Dict[int, ProductModel], Dict[int, int]]:
        """Returns the products and the quantity actually taken per product."""
        products = self.products.get_products(i.product_id for i in items)
        taken: Dict[int, int] = defaultdict(int)

        for item in items:
            if item.product_id not in products:
                if strict:
                    raise NotFoundError(f"Product not found: {item.product_id}")
                logger.error(f"Product {item.product_id} vanished, order line kept without stock change")

        if strict and self.preflight_stock:
            needed = defaultdict(int)
            for item in items:
                needed[item.product_id] += item.quantity
            for product_id, quantity in needed.items():
                product = products[product_id]
                if product.count_in_stock < quantity:
                    raise InsufficientStockError(product.name, quantity, product.count_in_stock)

        for item in items:
            product = products.get(item.product_id)
            if product is None:
                continue

            if self.products.decrement_stock(product.id, item.quantity):
                self.products.commit()
                taken[product.id] += item.quantity
                continue

            self.products.rollback()
            available = self.products.get_product(product.id).count_in_stock
            if strict:
                raise InsufficientStockError(product.name, item.quantity, available)
            logger.error(
                f"Oversold product {product.id} ({product.name}): "
                f"ordered {item.quantity}, in stock {available}; order kept"
            )

        return products, dict(taken)

    @staticmethod
    def _order_items(items: List[CheckoutItem], products: Dict[int, ProductModel]) -> List[Dict[str, Any]]:
        lines = []
        for item in items:
            product = products.get(item.product_id)
            discount = item.discount_price
            if discount is None and product is not None:
                discount = product.discount_price
            if discount is None:
                discount = Decimal("0")

            line = item.model_dump(mode="json")
            line["discount_price"] = str(discount)
            lines.append(line)
        return lines

    def _delete_cart(self, user_id: str):
        try:
            if self.carts.delete_cart_by_user(user_id):
                self.carts.commit()
                logger.info(f"Cart of user {user_id} deleted after finalize")
        except SQLAlchemyError as e:
            self.carts.rollback()
            logger.warning(f"Failed to delete cart of user {user_id}: {e}")

    def _notify(self, user_id: str, order_id: int):
        if self.notification_service is None:
            return
        try:
            self.notification_service.send_order_notification(user_id, order_id)
        except Exception as e:
            logger.warning(f"Failed to queue notification for order {order_id}: {e}")
