# storefront/api/routers/vnpay.py
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from storefront.api.deps import CurrentUser, client_ip, get_gateway, require_admin
from storefront.data.database import get_db
from storefront.domain.schemas import CreatePaymentIn, CreatePaymentOut, GatewayAck, QueryTransactionIn
from storefront.services.checkout_service import CheckoutService
from storefront.services.notification_service import NotificationService
from storefront.services.payment_gateway import PaymentGateway
from storefront.services.reconciler import PaymentReconciler

router = APIRouter(prefix="/api/vnpay", tags=["vnpay"])


def _split_signature(request: Request):
    params = dict(request.query_params)
    signature = params.pop("vnp_SecureHash", None)
    return params, signature


@router.post("/create-payment", response_model=CreatePaymentOut)
def create_payment(
    payload: CreatePaymentIn,
    request: Request,
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    amount = CheckoutService(db=db).payable_amount(payload.checkout_id, payload.amount)
    return gateway.create_payment_url(payload.checkout_id, amount, client_ip(request))


@router.get("/vnpay-return")
def vnpay_return(request: Request, gateway: PaymentGateway = Depends(get_gateway)):
    """Browser redirect after payment; only decides where to send the customer."""
    params, signature = _split_signature(request)
    return RedirectResponse(gateway.return_redirect_url(params, signature), status_code=302)


@router.get("/vnpay-ipn", response_model=GatewayAck)
def vnpay_ipn(
    request: Request,
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    params, signature = _split_signature(request)
    svc = CheckoutService(db=db, notification_service=NotificationService())
    return PaymentReconciler(gateway, svc).handle_gateway_callback(params, signature)


@router.post("/querydr")
def query_transaction(
    payload: QueryTransactionIn,
    request: Request,
    _: CurrentUser = Depends(require_admin),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return gateway.query_transaction(payload.txn_ref, payload.transaction_date, client_ip(request))
