# backend/utils/razorpay_client.py
import hashlib
import hmac
import httpx
import logging
from typing import Optional
from pydantic import ValidationError

from config import settings
from schemas.gateway import GatewayOrder, GatewayOrderRequest, PaymentLink, PaymentLinkRequest

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Transport failure, non-2xx answer or unrecognised response from the gateway."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _hmac_sha256(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class RazorpayClient:
    def __init__(
        self,
        api_url: Optional[str] = None,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        # Initialize configuration; transport is swapped out in tests
        self.api_url = api_url or settings.RAZORPAY_API_URL
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self.webhook_secret = webhook_secret or settings.RAZORPAY_WEBHOOK_SECRET
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _post(self, path: str, payload: dict) -> dict:
        async with self._client() as client:
            try:
                response = await client.post(path, json=payload)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                logger.error("Razorpay %s error %s: %s", path, e.response.status_code, e.response.text[:500])
                raise GatewayError(f"Gateway returned {e.response.status_code}", e.response.status_code) from e
            except httpx.RequestError as e:
                logger.error("Razorpay %s request failed: %s", path, e)
                raise GatewayError(f"Gateway unreachable: {e}") from e
            except ValueError as e:
                logger.error("Razorpay %s returned non-JSON body", path)
                raise GatewayError("Gateway returned an unreadable response") from e

    async def create_order(self, request: GatewayOrderRequest) -> GatewayOrder:
        # Create the order the embedded checkout widget pays against
        data = await self._post("/v1/orders", request.model_dump())
        try:
            return GatewayOrder.model_validate(data)
        except ValidationError as e:
            logger.error("Unexpected Razorpay order response: %s", e)
            raise GatewayError("Unexpected gateway order response") from e

    async def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink:
        # Request a hosted payment page the shopper completes out of band
        data = await self._post("/v1/payment_links", request.model_dump(exclude_none=True))
        try:
            return PaymentLink.model_validate(data)
        except ValidationError as e:
            logger.error("Unexpected Razorpay payment link response: %s", e)
            raise GatewayError("Unexpected gateway payment link response") from e

    def verify_payment_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        """Checks the signature the checkout widget hands back on success."""
        if not (gateway_order_id and payment_id and signature):
            return False
        expected = _hmac_sha256(self.key_secret, f"{gateway_order_id}|{payment_id}".encode("utf-8"))
        return hmac.compare_digest(expected, signature)

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """Verifies the X-Razorpay-Signature header of a webhook delivery."""
        if not signature:
            return False
        expected = _hmac_sha256(self.webhook_secret, body)
        return hmac.compare_digest(expected, signature)


razorpay_client = RazorpayClient()


def get_gateway() -> RazorpayClient:
    return razorpay_client
