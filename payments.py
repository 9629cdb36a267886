"""
Razorpay payment provider.

A gateway is built per call from the settings singleton, so credential edits in
the admin take effect on the next checkout without a restart.
"""
import logging
from typing import Any, Dict, Optional

import razorpay
from razorpay.errors import SignatureVerificationError

from errors import UpstreamError
from settings_store import razorpay_credentials, require_settings

logger = logging.getLogger(__name__)

SIGNATURE_FIELDS = ("razorpay_order_id", "razorpay_payment_id", "razorpay_signature")


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str, client: Optional[razorpay.Client] = None):
        self.key_id = key_id
        self._client = client or razorpay.Client(auth=(key_id, key_secret))

    def create_order(self, amount: int, currency: str = "INR", receipt: Optional[str] = None) -> Dict[str, Any]:
        data = {"amount": int(amount), "currency": currency, "payment_capture": 1}
        if receipt:
            data["receipt"] = receipt
        try:
            order = self._client.order.create(data=data)
        except Exception as e:
            logger.error(f"Razorpay order creation failed for amount={amount} {currency}: {e}")
            raise UpstreamError("Razorpay order creation", str(e)) from e
        logger.info(f"Razorpay order {order.get('id')} created for {amount} {currency}")
        return {"order_id": order["id"], "amount": order["amount"], "currency": order["currency"]}

    def verify_payment(self, payload: Dict[str, Any]) -> bool:
        params = {field: payload.get(field) or "" for field in SIGNATURE_FIELDS}
        if not all(params.values()):
            logger.warning("Payment verification called with incomplete payload")
            return False
        try:
            self._client.utility.verify_payment_signature(params)
        except SignatureVerificationError:
            logger.warning(f"Invalid payment signature for order {params['razorpay_order_id']}")
            return False
        except Exception as e:
            logger.error(f"Razorpay verification error: {e}")
            raise UpstreamError("Razorpay payment verification", str(e)) from e
        return True


def gateway_from_settings() -> RazorpayGateway:
    key_id, key_secret = razorpay_credentials(require_settings())
    return RazorpayGateway(key_id, key_secret)
