# storefront/api/routers/admin_orders.py
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import CurrentUser, require_admin
from storefront.data.database import get_db
from storefront.domain.schemas import OrderCancelIn, OrderCancelOut, OrderOut, OrderStatusIn
from storefront.services.order_service import OrderService

router = APIRouter(prefix="/api/admin/orders", tags=["admin"])


def get_service(db: Session):
    return OrderService(db)


@router.get("", response_model=List[OrderOut])
def list_orders(
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.list_orders()


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.get_order(order_id)


@router.put("/{order_id}", response_model=OrderOut)
def update_status(
    order_id: int,
    payload: OrderStatusIn,
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.set_status(order_id, payload.status)


@router.post("/{order_id}/cancel", response_model=OrderCancelOut)
def cancel_order(
    order_id: int,
    payload: OrderCancelIn,
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    order = svc.cancel(order_id, payload.reason)
    return {"message": "Order cancelled", "order": order}


@router.delete("/{order_id}")
def delete_order(
    order_id: int,
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    svc.delete(order_id)
    return {"message": "Order deleted"}
