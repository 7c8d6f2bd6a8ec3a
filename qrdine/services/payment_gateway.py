"""Payment verification adapter.

Two implementations share one contract:

- ``create_intent(amount, currency, metadata) -> external ref``
- ``verify(external_ref, external_payment_ref, proof) -> bool``

``RazorpayGateway`` opens orders over the gateway's REST API and checks the
HMAC-SHA256 signature of ``"<order_id>|<payment_id>"`` with the key secret.
``MockGateway`` is used when no credentials are configured; its refs carry the
``order_mock_`` prefix and always verify.
"""
import hashlib
import hmac
import logging
import time
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Protocol

import httpx

from qrdine.config import settings
from qrdine.errors import InternalError

logger = logging.getLogger(__name__)

MOCK_PREFIX = "order_mock_"


def to_minor_units(amount: Decimal) -> int:
    """Rupees to paise."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(Protocol):
    mock: bool
    key_id: str

    def create_intent(self, amount: Decimal, currency: str, metadata: dict) -> str: ...

    def verify(self, external_ref: str, external_payment_ref: str | None, proof: str | None) -> bool: ...

    def close(self) -> None: ...


class MockGateway:
    mock = True
    key_id = "rzp_test_mock"

    def create_intent(self, amount: Decimal, currency: str, metadata: dict) -> str:
        return f"{MOCK_PREFIX}{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"

    def verify(self, external_ref: str, external_payment_ref: str | None, proof: str | None) -> bool:
        return external_ref.startswith(MOCK_PREFIX)

    def close(self) -> None:
        pass


class RazorpayGateway:
    mock = False

    def __init__(self, key_id: str, key_secret: str, api_url: str = settings.RAZORPAY_API_URL,
                 timeout: float = settings.PAYMENT_HTTP_TIMEOUT, transport: httpx.BaseTransport | None = None):
        self.key_id = key_id
        self._secret = key_secret
        self._client = httpx.Client(
            base_url=api_url, auth=(key_id, key_secret), timeout=timeout, transport=transport,
        )

    def create_intent(self, amount: Decimal, currency: str, metadata: dict) -> str:
        body = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": f"order_{int(time.time() * 1000)}",
            "notes": {k: str(v) for k, v in metadata.items()},
        }
        try:
            r = self._client.post("/orders", json=body)
            r.raise_for_status()
            return r.json()["id"]
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.error("gateway order creation failed: %s", exc)
            raise InternalError("Payment service unavailable, please retry") from exc

    def signature_for(self, external_ref: str, external_payment_ref: str) -> str:
        body = f"{external_ref}|{external_payment_ref}".encode()
        return hmac.new(self._secret.encode(), body, hashlib.sha256).hexdigest()

    def verify(self, external_ref: str, external_payment_ref: str | None, proof: str | None) -> bool:
        if not external_payment_ref or not proof:
            return False
        return hmac.compare_digest(self.signature_for(external_ref, external_payment_ref), proof)

    def close(self) -> None:
        self._client.close()


def build_gateway() -> PaymentGateway:
    if settings.payments_mocked or not settings.RAZORPAY_KEY_SECRET:
        logger.info("payment gateway credentials not configured, using mock mode")
        return MockGateway()
    return RazorpayGateway(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
