# storefront/services/payment_gateway.py
import hashlib
import hmac
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote_plus

import requests

from storefront.domain.errors import InvalidSignatureError, UpstreamError, ValidationError
from storefront.utils import settings
from storefront.utils.retry import http_retry
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

VNP_VERSION = "2.1.0"
VNP_SUCCESS = "00"
MIN_AMOUNT = Decimal("1000")

# VNPay timestamps are Vietnam local time
_VN_TZ = timezone(timedelta(hours=7))
_SIGNATURE_FIELDS = ("vnp_SecureHash", "vnp_SecureHashType")


def vn_timestamp(moment: Optional[datetime] = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(_VN_TZ).strftime("%Y%m%d%H%M%S")


@dataclass(frozen=True)
class GatewayConfig:
    """VNPay merchant credentials and endpoints, built once at startup."""

    tmn_code: str
    hash_secret: str
    return_url: str
    payment_url: str
    api_url: str
    frontend_url: str
    timeout: float = 10.0

    @classmethod
    def from_settings(cls) -> "GatewayConfig":
        missing = [
            name
            for name in ("VNPAY_TMN_CODE", "VNPAY_HASH_SECRET", "VNPAY_RETURN_URL")
            if not getattr(settings, name)
        ]
        if missing:
            raise RuntimeError(f"VNPay configuration missing: {', '.join(missing)}")

        return cls(
            tmn_code=settings.VNPAY_TMN_CODE,
            hash_secret=settings.VNPAY_HASH_SECRET,
            return_url=settings.VNPAY_RETURN_URL,
            payment_url=settings.VNPAY_PAYMENT_URL,
            api_url=settings.VNPAY_API_URL,
            frontend_url=settings.FRONTEND_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )


def parse_checkout_id(txn_ref: str) -> Optional[int]:
    """Transaction refs are ``<checkoutId>_<millis>``."""
    head = (txn_ref or "").split("_")[0]
    return int(head) if head.isdigit() else None


class PaymentGateway:
    """
    VNPay integration: signed payment URLs, callback verification and the
    ``querydr`` transaction lookup.
    """

    def __init__(self, config: GatewayConfig):
        self.config = config

    # ------------------------------------------------------------------ signing

    def _hmac(self, data: str) -> str:
        return hmac.new(
            self.config.hash_secret.encode("utf-8"),
            data.encode("utf-8"),
            hashlib.sha512,
        ).hexdigest()

    @staticmethod
    def _sign_data(params: Mapping[str, Any]) -> str:
        # sorted vnp_* fields, values url-encoded, joined with '&'
        return "&".join(
            f"{key}={quote_plus(str(params[key]))}"
            for key in sorted(params)
            if key.startswith("vnp_") and key not in _SIGNATURE_FIELDS
        )

    def sign(self, params: Mapping[str, Any]) -> str:
        return self._hmac(self._sign_data(params))

    def verify_callback(self, params: Mapping[str, Any], signature: Optional[str]):
        """Raises InvalidSignatureError unless ``signature`` matches ``params``."""
        if not signature:
            raise InvalidSignatureError("Missing signature")
        expected = self.sign(params)
        if not hmac.compare_digest(expected, signature.lower()):
            raise InvalidSignatureError()

    def return_redirect_url(self, params: Mapping[str, Any], signature: Optional[str]) -> str:
        """Where to send the customer's browser after the gateway redirect."""
        checkout_id = parse_checkout_id(params.get("vnp_TxnRef", ""))
        code = params.get("vnp_ResponseCode")

        try:
            self.verify_callback(params, signature)
        except InvalidSignatureError:
            logger.warning(f"Invalid signature on return redirect for txn {params.get('vnp_TxnRef')}")
            return f"{self.config.frontend_url}/checkout?status=failed&code=97"

        if code == VNP_SUCCESS and checkout_id is not None:
            return f"{self.config.frontend_url}/order-confirmation?checkoutId={checkout_id}&status=success"
        return f"{self.config.frontend_url}/checkout?status=failed&code={code or '99'}"

    # ------------------------------------------------------------------ outbound

    def create_payment_url(self, checkout_id: int, amount: Decimal, client_ip: str) -> Dict[str, Any]:
        if amount is None or amount < MIN_AMOUNT:
            raise ValidationError("Invalid amount or checkoutId")
        # VND has no minor unit
        if amount != amount.to_integral_value():
            raise ValidationError("Amount must be a whole number of VND")

        now = datetime.now(timezone.utc)
        txn_ref = f"{checkout_id}_{int(time.time() * 1000)}"

        params = {
            "vnp_Version": VNP_VERSION,
            "vnp_Command": "pay",
            "vnp_TmnCode": self.config.tmn_code,
            "vnp_Amount": int(amount) * 100,
            "vnp_CurrCode": "VND",
            "vnp_TxnRef": txn_ref,
            "vnp_OrderInfo": f"Thanh toan don hang {checkout_id}",
            "vnp_OrderType": "250000",
            "vnp_Locale": "vn",
            "vnp_ReturnUrl": self.config.return_url,
            "vnp_IpAddr": client_ip.replace("::ffff:", ""),
            "vnp_CreateDate": vn_timestamp(now),
            "vnp_ExpireDate": vn_timestamp(now + timedelta(days=1)),
        }

        query = self._sign_data(params)
        payment_url = f"{self.config.payment_url}?{query}&vnp_SecureHash={self._hmac(query)}"

        logger.info(f"VNPay payment url created for checkout {checkout_id}, txn {txn_ref}")
        return {
            "success": True,
            "payment_url": payment_url,
            "txn_ref": txn_ref,
            "checkout_id": checkout_id,
        }

    @http_retry()
    def _post(self, payload: Dict[str, Any]) -> Any:
        logger.info(f"VNPay POST {self.config.api_url} ({payload['vnp_Command']})")
        resp = requests.post(self.config.api_url, json=payload, timeout=self.config.timeout)
        resp.raise_for_status()
        return resp.json()

    def query_transaction(self, txn_ref: str, transaction_date: str, client_ip: str) -> Dict[str, Any]:
        """Ask VNPay for the current state of a transaction (``querydr``)."""
        request_id = uuid.uuid4().hex
        create_date = vn_timestamp()
        order_info = f"Truy van giao dich {txn_ref}"

        # querydr signs a '|' joined list in this fixed order
        data = "|".join([
            request_id,
            VNP_VERSION,
            "querydr",
            self.config.tmn_code,
            txn_ref,
            transaction_date,
            create_date,
            client_ip,
            order_info,
        ])

        payload = {
            "vnp_RequestId": request_id,
            "vnp_Version": VNP_VERSION,
            "vnp_Command": "querydr",
            "vnp_TmnCode": self.config.tmn_code,
            "vnp_TxnRef": txn_ref,
            "vnp_OrderInfo": order_info,
            "vnp_TransactionDate": transaction_date,
            "vnp_CreateDate": create_date,
            "vnp_IpAddr": client_ip,
            "vnp_SecureHash": self._hmac(data),
        }

        try:
            body = self._post(payload)
        except requests.RequestException as e:
            logger.error(f"VNPay querydr for {txn_ref} failed: {e}")
            raise UpstreamError("Payment gateway unavailable") from e

        if not isinstance(body, dict) or "vnp_ResponseCode" not in body:
            logger.error(f"VNPay querydr for {txn_ref} returned malformed body: {body!r}")
            raise UpstreamError("Payment gateway returned an invalid response")

        return body
