# storefront/services/order_service.py
import math
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel
from storefront.domain.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from storefront.domain.schemas import OrderStatus, PaymentStatus
from storefront.repos.order_repo import OrderRepo
from storefront.repos.product_repo import ProductRepo
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

ALLOWED_TRANSITIONS = {
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

CANCELLABLE = {OrderStatus.PROCESSING, OrderStatus.SHIPPED}


def order_to_dict(order: OrderModel) -> Dict[str, Any]:
    return {
        "id": order.id,
        "user_id": order.user_id,
        "checkout_id": order.checkout_id,
        "order_items": order.order_items,
        "shipping_address": order.shipping_address,
        "payment_method": order.payment_method,
        "total_price": order.total_price,
        "is_paid": order.is_paid,
        "paid_at": order.paid_at,
        "payment_status": order.payment_status,
        "payment_details": order.payment_details,
        "status": order.status,
        "is_delivered": order.is_delivered,
        "delivered_at": order.delivered_at,
        "cancel_reason": order.cancel_reason,
        "cancelled_at": order.cancelled_at,
        "created_at": order.created_at,
    }


class OrderService:
    """
    Orders after creation: customer reads and the admin status workflow.
    """

    def __init__(self, db: Session):
        self.repo = OrderRepo(db)
        self.products = ProductRepo(db)

    def _load(self, order_id: int) -> OrderModel:
        order = self.repo.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    # ------------------------------------------------------------------ queries

    def get_order(self, order_id: int) -> Dict[str, Any]:
        return order_to_dict(self._load(order_id))

    def get_user_order(self, order_id: int, user_id: str) -> Dict[str, Any]:
        order = self._load(order_id)
        if order.user_id != user_id:
            raise ForbiddenError("Not allowed to access this order")
        return order_to_dict(order)

    def list_orders(self) -> List[Dict[str, Any]]:
        return [order_to_dict(o) for o in self.repo.list_orders()]

    def list_user_orders(self, user_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        page = max(page, 1)
        limit = max(limit, 1)

        total = self.repo.count_user_orders(user_id)
        orders = self.repo.list_user_orders(user_id, offset=(page - 1) * limit, limit=limit)

        return {
            "orders": [order_to_dict(o) for o in orders],
            "pagination": {
                "current_page": page,
                "total_pages": math.ceil(total / limit),
                "total_orders": total,
            },
        }

    # ------------------------------------------------------------------ admin commands

    def set_status(self, order_id: int, new_status: OrderStatus) -> Dict[str, Any]:
        """
        Move an order through Processing -> Shipped -> Delivered/Cancelled.

        Delivered also settles the payment (cash on delivery) and adds the
        ordered quantities to each product's ``total_sold``. That counter is
        never decremented, even if the order is cancelled afterwards.
        """
        order = self._load(order_id)
        current = OrderStatus(order.status)

        if new_status == current:
            return order_to_dict(order)

        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStateError(f"Cannot change order status from {current.value} to {new_status.value}")

        now = datetime.now(timezone.utc)
        new_data: Dict[str, Any] = {"status": new_status.value}

        if new_status == OrderStatus.DELIVERED:
            new_data.update(
                is_delivered=True,
                delivered_at=now,
                is_paid=True,
                paid_at=order.paid_at or now,
                payment_status=PaymentStatus.PAID.value,
            )
        elif new_status == OrderStatus.CANCELLED:
            new_data.update(cancelled_at=now)

        items = list(order.order_items)
        self._apply_status(order, current, new_data)

        if new_status == OrderStatus.DELIVERED:
            for item in items:
                if not self.products.increment_sold(item["product_id"], item["quantity"]):
                    logger.warning(f"Product {item['product_id']} of order {order_id} no longer exists")

        self.repo.commit()
        logger.info(f"Order {order_id} status {current.value} -> {new_status.value}")
        return order_to_dict(self.repo.refresh(order))

    def cancel(self, order_id: int, reason: str) -> Dict[str, Any]:
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required")

        order = self._load(order_id)
        current = OrderStatus(order.status)

        if current not in CANCELLABLE:
            raise InvalidStateError("Only processing or shipped orders can be cancelled")

        self._apply_status(
            order,
            current,
            {
                "status": OrderStatus.CANCELLED.value,
                "cancel_reason": reason.strip(),
                "cancelled_at": datetime.now(timezone.utc),
            },
        )
        self.repo.commit()

        logger.info(f"Order {order_id} cancelled: {reason.strip()}")
        return order_to_dict(self.repo.refresh(order))

    def _apply_status(self, order: OrderModel, expected: OrderStatus, new_data: Dict[str, Any]):
        rowcount = self.repo.update_order_status(order.id, expected.value, new_data)
        if rowcount == 0:
            self.repo.rollback()
            raise ConflictError("Order was modified by another request, retry")

    def delete(self, order_id: int):
        order = self._load(order_id)
        self.repo.delete_order(order)
        logger.info(f"Order {order_id} deleted")
