"""Razorpay client: order (intent) creation and checkout signature checks."""
import hashlib
import hmac
import logging
from decimal import Decimal, ROUND_HALF_UP

import httpx

from shared.utils import settings, to_decimal, UpstreamUnavailable

logger = logging.getLogger("payments-service")

def to_paise(amount) -> int:
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    generated_signature = hmac.new(
        bytes(secret, 'utf-8'),
        msg=bytes(order_id + '|' + payment_id, 'utf-8'),
        digestmod=hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(generated_signature, signature)

class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str, api_url: str, currency: str, timeout: float = 15.0):
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_url = api_url.rstrip("/")
        self.currency = currency
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def ensure_configured(self):
        if not self.configured:
            raise UpstreamUnavailable("Payment gateway not configured")

    async def create_intent(self, amount, receipt: str) -> dict:
        self.ensure_configured()
        payload = {
            "amount": to_paise(amount),
            "currency": self.currency,
            "receipt": receipt,
            "payment_capture": 1
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    f"{self.api_url}/orders",
                    auth=(self.key_id, self.key_secret),
                    json=payload
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error("Razorpay rejected order", extra={"status_code": e.response.status_code})
                raise UpstreamUnavailable("Payment gateway error")
            except httpx.RequestError:
                logger.error("Razorpay unreachable")
                raise UpstreamUnavailable("Payment gateway unavailable")

        data = response.json()
        return {
            "id": data["id"],
            "amount": data.get("amount", payload["amount"]),
            "currency": data.get("currency", self.currency),
            "key_id": self.key_id
        }

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        self.ensure_configured()
        return verify_signature(order_id, payment_id, signature, self.key_secret)

def get_gateway() -> RazorpayGateway:
    return RazorpayGateway(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        api_url=settings.RAZORPAY_API_URL,
        currency=settings.CURRENCY
    )
