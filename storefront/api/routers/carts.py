# storefront/api/routers/carts.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from storefront.api.deps import CurrentUser, get_current_user, get_lock_service, get_optional_user
from storefront.data.database import get_db
from storefront.domain.schemas import (
    CartItemIn,
    CartKeyIn,
    CartMergeIn,
    CartOut,
    CartReadOut,
    CartUpdateIn,
)
from storefront.services.cart_service import CartIdentity, CartService
from storefront.services.lock_service import LockService

router = APIRouter(prefix="/api/cart", tags=["cart"])


def get_service(db: Session, lock_service: LockService | None = None):
    return CartService(db=db, lock_service=lock_service)


def identity_for(user: Optional[CurrentUser], guest_id: Optional[str]) -> CartIdentity:
    # a logged-in user always acts on their own cart
    if user is not None:
        return CartIdentity(user_id=user.id)
    return CartIdentity(guest_id=guest_id)


@router.get("", response_model=CartReadOut)
def get_cart(
    guest_id: Optional[str] = Query(None, alias="guestId"),
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.get_cart(identity_for(user, guest_id))


@router.post("", response_model=CartOut)
def add_item(
    payload: CartItemIn,
    response: Response,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    cart, created = svc.add_item(
        identity_for(user, payload.guest_id),
        product_id=payload.product_id,
        quantity=payload.quantity,
        size=payload.size,
        color=payload.color,
    )
    response.status_code = 201 if created else 200
    return cart


@router.put("", response_model=CartOut)
def update_item(
    payload: CartUpdateIn,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.update_quantity(
        identity_for(user, payload.guest_id),
        product_id=payload.product_id,
        quantity=payload.quantity,
        size=payload.size,
        color=payload.color,
    )


@router.delete("", response_model=CartOut)
def remove_item(
    payload: CartKeyIn,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.remove_item(
        identity_for(user, payload.guest_id),
        product_id=payload.product_id,
        size=payload.size,
        color=payload.color,
    )


@router.delete("/clear", response_model=CartOut)
def clear_cart(
    guest_id: Optional[str] = Query(None, alias="guestId"),
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.clear(identity_for(user, guest_id))


@router.post("/merge", response_model=CartOut)
def merge_cart(
    payload: CartMergeIn,
    user: CurrentUser = Depends(get_current_user),
    lock_service: LockService = Depends(get_lock_service),
    db: Session = Depends(get_db),
):
    svc = get_service(db, lock_service)
    return svc.merge(payload.guest_id, user.id)
