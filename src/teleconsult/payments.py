import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from teleconsult.circuit_breaker import CircuitBreaker
from teleconsult.errors import ConsultationError, PaymentError, PaymentWebhookProcessingFailure
from teleconsult.service import ConsultationService
from teleconsult.validation import is_positive_minutes, normalize_room_name

logger = logging.getLogger(__name__)

PAYSTACK_BASE_URL = "https://api.paystack.co"
CHARGE_SUCCESS_EVENT = "charge.success"


@dataclass(frozen=True)
class ExtensionOffer:
    minutes: int
    amount_minor: int  # smallest currency unit, as Paystack expects
    currency: str = "USD"

    @property
    def label(self) -> str:
        return f"{self.minutes} minutes - ${self.amount_minor / 100:.2f}"

    def to_public(self) -> dict:
        return {
            "minutes": self.minutes,
            "amount": self.amount_minor,
            "currency": self.currency,
            "label": self.label,
        }


EXTENSION_OFFERS = (
    ExtensionOffer(minutes=15, amount_minor=500),
    ExtensionOffer(minutes=30, amount_minor=900),
    ExtensionOffer(minutes=60, amount_minor=1500),
)


def find_offer(minutes: int) -> ExtensionOffer | None:
    for offer in EXTENSION_OFFERS:
        if offer.minutes == minutes:
            return offer
    return None


def verify_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """Check Paystack's ``x-paystack-signature`` (hex HMAC-SHA512 of the raw body)."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


class PaystackClient:
    """HTTP client for the Paystack transaction API.

    Wrapped with a circuit breaker so a down gateway fails checkout quickly
    instead of holding the participant's request open.
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = PAYSTACK_BASE_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.timeout = timeout
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="Paystack",
        )
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {secret_key}",
                },
                timeout=self.timeout,
            )

    async def close(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, label: str, **kwargs) -> dict:
        if not self._circuit.should_try():
            logger.warning("Paystack circuit breaker open, skipping %s", label)
            raise PaymentError("Payment gateway unavailable. Please try again shortly.")
        try:
            resp = await self._client.request(method, path, **kwargs)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            self._circuit.record_failure()
            logger.error("%s failed: %s", label, e)
            raise PaymentError("Payment gateway request failed.", {"cause": str(e)}) from e
        self._circuit.record_success()
        if not body.get("status"):
            logger.error("%s rejected: %s", label, body.get("message"))
            raise PaymentError(body.get("message") or "Payment gateway rejected the request.")
        return body.get("data") or {}

    async def initialize_transaction(
        self,
        email: str,
        amount_minor: int,
        metadata: dict[str, Any],
        currency: str = "USD",
        callback_url: str = "",
    ) -> dict:
        payload = {
            "email": email,
            "amount": amount_minor,
            "currency": currency,
            "metadata": metadata,
        }
        if callback_url:
            payload["callback_url"] = callback_url
        return await self._request(
            "POST", "/transaction/initialize", "initialize_transaction", json=payload
        )

    async def verify_transaction(self, reference: str) -> dict:
        return await self._request(
            "GET", f"/transaction/verify/{reference}", "verify_transaction"
        )


def _parse_metadata(raw) -> dict:
    # Paystack echoes metadata back as a JSON string when it was sent as one
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    return raw if isinstance(raw, dict) else {}


def _parse_minutes(raw) -> int:
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    if is_positive_minutes(raw):
        return raw
    return 0


class PaymentWebhookHandler:
    """Applies paid extensions delivered by the Paystack webhook.

    ``handle`` never raises: the gateway only needs an acknowledgment, and
    redelivery is its responsibility. Each payment reference extends at most
    once, so repeated deliveries are harmless.
    """

    def __init__(self, service: ConsultationService):
        self.service = service

    async def handle(self, event: dict) -> bool:
        event_type = event.get("event", "")
        logger.info("Received Paystack webhook event: %s", event_type)
        if event_type != CHARGE_SUCCESS_EVENT:
            return False
        try:
            await self._apply_extension(event.get("data") or {})
        except PaymentWebhookProcessingFailure as e:
            logger.error("Paystack webhook not applied: %s %s", e.message, e.details)
            return False
        return True

    async def _apply_extension(self, data: dict) -> None:
        reference = data.get("reference") or ""
        metadata = _parse_metadata(data.get("metadata"))
        room = normalize_room_name(metadata.get("roomName"))
        minutes = _parse_minutes(metadata.get("minutesToExtend"))

        if not reference or not room or not minutes:
            raise PaymentWebhookProcessingFailure(
                "charge.success without reference, roomName or minutesToExtend",
                {"reference": reference, "metadata": metadata},
            )

        offer = find_offer(minutes)
        amount = data.get("amount")
        if offer and isinstance(amount, int) and amount < offer.amount_minor:
            raise PaymentWebhookProcessingFailure(
                "Paid amount is below the extension price",
                {"reference": reference, "amount": amount, "expected": offer.amount_minor},
            )

        store = self.service.store
        try:
            if not await store.claim_payment_reference(reference):
                logger.info("Payment %s already applied, ignoring redelivery", reference)
                return
        except ConsultationError as e:
            raise PaymentWebhookProcessingFailure(
                e.message, {"reference": reference, "room": room, **e.details}
            ) from e

        try:
            new_end_at = await self.service.extend(room, minutes)
        except ConsultationError as e:
            # let a redelivery of the same reference try again
            await store.release_payment_reference(reference)
            raise PaymentWebhookProcessingFailure(
                e.message, {"reference": reference, "room": room, **e.details}
            ) from e
        logger.info(
            "Payment %s extended %s by %d min, new end %s",
            reference, room, minutes, new_end_at.isoformat(),
        )
