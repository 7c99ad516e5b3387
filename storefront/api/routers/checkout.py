# storefront/api/routers/checkout.py
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import CurrentUser, get_current_user, get_gateway
from storefront.data.database import get_db
from storefront.domain.schemas import (
    CheckoutCreate,
    CheckoutFromCartIn,
    CheckoutOut,
    CheckoutPayIn,
    GatewayAck,
    OrderOut,
)
from storefront.services.cart_service import CartService
from storefront.services.checkout_service import CheckoutService
from storefront.services.notification_service import NotificationService
from storefront.services.payment_gateway import PaymentGateway
from storefront.services.reconciler import PaymentReconciler

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


def get_service(db: Session):
    return CheckoutService(db=db, notification_service=NotificationService())


@router.post("", response_model=CheckoutOut, status_code=201)
def create_checkout(
    payload: CheckoutCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Create a checkout session from explicit line snapshots.
    Stock and cart are left untouched.
    """
    svc = get_service(db)
    return svc.create_checkout(user.id, payload)


@router.post("/from-cart", response_model=CheckoutOut, status_code=201)
def create_checkout_from_cart(
    payload: CheckoutFromCartIn,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.create_from_cart(user.id, payload, CartService(db))


@router.post("/gateway/callback", response_model=GatewayAck)
def gateway_callback(
    params: Dict[str, Any] = Body(...),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    """
    Server-to-server payment notification. Always answers with the
    gateway's acknowledgement shape.
    """
    params = {k: str(v) for k, v in params.items()}
    signature = params.pop("vnp_SecureHash", None)
    reconciler = PaymentReconciler(gateway, get_service(db))
    return reconciler.handle_gateway_callback(params, signature)


@router.get("/{checkout_id}", response_model=CheckoutOut)
def get_checkout(
    checkout_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.get_checkout(checkout_id, user.id)


@router.put("/{checkout_id}/pay", response_model=CheckoutOut)
def mark_paid(
    checkout_id: int,
    payload: CheckoutPayIn,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.mark_paid(checkout_id, payload.payment_details, user_id=user.id)


@router.post("/{checkout_id}/finalize", response_model=OrderOut, status_code=201)
def finalize_checkout(
    checkout_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Decrement stock, create the order and drop the cart. A session can be
    finalized once; later calls get AlreadyFinalizedError.
    """
    svc = get_service(db)
    return svc.finalize(checkout_id, user_id=user.id)
