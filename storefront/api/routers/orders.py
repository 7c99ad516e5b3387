# storefront/api/routers/orders.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import CurrentUser, get_current_user
from storefront.data.database import get_db
from storefront.domain.schemas import OrderOut, OrderPage
from storefront.services.order_service import OrderService

router = APIRouter(prefix="/api/orders", tags=["orders"])


def get_service(db: Session):
    return OrderService(db)


@router.get("/my-orders", response_model=OrderPage)
def my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Orders of the logged-in user, newest first.
    """
    svc = get_service(db)
    return svc.list_user_orders(user.id, page=page, limit=limit)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.get_user_order(order_id, user.id)
