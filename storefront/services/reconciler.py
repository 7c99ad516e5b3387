# storefront/services/reconciler.py
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from storefront.domain.errors import AlreadyFinalizedError, InvalidSignatureError
from storefront.repos.checkout_repo import CheckoutRepo
from storefront.services.checkout_service import CheckoutService
from storefront.services.payment_gateway import VNP_SUCCESS, PaymentGateway, parse_checkout_id
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def ack(code: str, message: str) -> Dict[str, str]:
    return {"RspCode": code, "Message": message}


class PaymentReconciler:
    """
    Applies gateway payment notifications (IPN) to checkout sessions.

    The gateway retries until it gets an acknowledgement, so every branch
    answers with the gateway's ack shape and repeated deliveries for a
    finalized session are acknowledged without reprocessing.
    """

    def __init__(self, gateway: PaymentGateway, checkout_service: CheckoutService):
        self.gateway = gateway
        self.checkout_service = checkout_service
        self.checkouts = CheckoutRepo(checkout_service.db)

    def handle_gateway_callback(self, params: Mapping[str, Any], signature: Optional[str]) -> Dict[str, str]:
        try:
            self.gateway.verify_callback(params, signature)
        except InvalidSignatureError as e:
            logger.warning(f"Rejected gateway callback for {params.get('vnp_TxnRef')}: {e.message}")
            return ack("97", "Checksum failed")

        txn_ref = params.get("vnp_TxnRef", "")
        checkout_id = parse_checkout_id(txn_ref)
        checkout = self.checkouts.get_checkout(checkout_id) if checkout_id else None
        if checkout is None:
            logger.warning(f"Gateway callback for unknown checkout (txn {txn_ref})")
            return ack("01", "Order not found")

        if checkout.is_finalized:
            logger.info(f"Checkout {checkout_id} already finalized, acknowledging re-delivery")
            return ack("00", "Confirm Success")

        if not self._amount_matches(params.get("vnp_Amount"), checkout.total_price):
            logger.warning(
                f"Amount mismatch for checkout {checkout_id}: "
                f"gateway {params.get('vnp_Amount')}, expected {checkout.total_price}"
            )
            return ack("04", "Invalid amount")

        code = params.get("vnp_ResponseCode")
        if code != VNP_SUCCESS:
            logger.info(f"Payment for checkout {checkout_id} failed with gateway code {code}")
            return ack(code or "99", "Failed")

        try:
            self.checkout_service.mark_paid(checkout_id, payment_details=self._details(params))
            self.checkout_service.finalize(checkout_id, strict_stock=False)
        except AlreadyFinalizedError:
            logger.info(f"Checkout {checkout_id} finalized concurrently, acknowledging")

        logger.info(f"IPN success: checkout {checkout_id} paid and finalized")
        return ack("00", "Confirm Success")

    @staticmethod
    def _amount_matches(raw_amount: Any, expected: Decimal) -> bool:
        try:
            # gateway amounts are in hundredths
            return Decimal(str(raw_amount)) / 100 == Decimal(expected)
        except (InvalidOperation, TypeError):
            return False

    @staticmethod
    def _details(params: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "gateway": "vnpay",
            "txnRef": params.get("vnp_TxnRef"),
            "transactionNo": params.get("vnp_TransactionNo"),
            "bankCode": params.get("vnp_BankCode"),
            "payDate": params.get("vnp_PayDate"),
            "responseCode": params.get("vnp_ResponseCode"),
        }
