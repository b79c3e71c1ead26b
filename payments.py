"""
Razorpay integration: gateway order creation and payment signature checks.

Checkout itself runs in the gateway's client SDK; the backend only creates the
gateway order and verifies the signature the SDK hands back.
"""

import hashlib
import hmac
import logging
import os

import requests

logger = logging.getLogger(__name__)

RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_API_URL = os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1")


class PaymentGatewayError(Exception):
    """Raised when the gateway rejects a request or cannot be reached."""


def is_configured() -> bool:
    return bool(RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET)


def to_paise(amount: float) -> int:
    return int(round(amount * 100))


def create_gateway_order(amount: float, currency: str, receipt: str) -> dict:
    """Create a Razorpay order and return the gateway's JSON response."""
    try:
        r = requests.post(
            f"{RAZORPAY_API_URL}/orders",
            auth=(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET),
            json={
                "amount": to_paise(amount),
                "currency": currency,
                "receipt": receipt,
                "payment_capture": 1,
            },
            timeout=15,
        )
    except requests.RequestException as e:
        logger.error("Razorpay order creation failed for %s: %s", receipt, e)
        raise PaymentGatewayError(str(e)) from e
    if r.status_code >= 300:
        logger.error("Razorpay rejected order %s: %s", receipt, r.text)
        raise PaymentGatewayError(r.text)
    return r.json()


def verify_signature(razorpay_order_id: str, razorpay_payment_id: str, razorpay_signature: str) -> bool:
    generated_signature = hmac.new(
        bytes(RAZORPAY_KEY_SECRET, "utf-8"),
        msg=bytes(razorpay_order_id + "|" + razorpay_payment_id, "utf-8"),
        digestmod=hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(generated_signature.encode(), razorpay_signature.encode())
