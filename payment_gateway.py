"""
Razorpay payment gateway client.

Only the two calls the checkout flow needs: creating a gateway order and
verifying the signature returned by the checkout widget.
"""
import hashlib
import hmac
from typing import Any, Dict, Optional

import httpx

from logging_config import get_logger
from settings import settings

logger = get_logger("shopsmart.payments")


class PaymentGatewayError(Exception):
    """Raised when the gateway rejects a request or cannot be reached."""


class PaymentGateway:
    def __init__(self, key_id: str, key_secret: str, base_url: str, currency: str = "INR", timeout: float = 10.0):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.currency = currency
        self.timeout = timeout

    @staticmethod
    def to_minor_units(amount: float) -> int:
        """Rupees to paise."""
        return int(round(amount * 100))

    def create_order(self, amount: float, receipt: str, notes: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        payload = {
            "amount": self.to_minor_units(amount),
            "currency": self.currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            response = httpx.post(
                f"{self.base_url}/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Gateway rejected order", receipt=receipt, status_code=e.response.status_code, body=e.response.text[:200])
            raise PaymentGatewayError(f"Gateway returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("Gateway unreachable", receipt=receipt, error=str(e))
            raise PaymentGatewayError(str(e)) from e

        order = response.json()
        logger.info("Gateway order created", receipt=receipt, gateway_order_id=order.get("id"))
        return order

    def expected_signature(self, gateway_order_id: str, payment_id: str) -> str:
        message = f"{gateway_order_id}|{payment_id}".encode()
        return hmac.new(self.key_secret.encode(), message, hashlib.sha256).hexdigest()

    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        return hmac.compare_digest(self.expected_signature(gateway_order_id, payment_id), signature or "")


payment_gateway = PaymentGateway(
    key_id=settings.RAZORPAY_KEY_ID,
    key_secret=settings.RAZORPAY_KEY_SECRET,
    base_url=settings.RAZORPAY_BASE_URL,
    currency=settings.PAYMENT_CURRENCY,
)


def get_payment_gateway() -> PaymentGateway:
    return payment_gateway
