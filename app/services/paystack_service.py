# app/services/paystack_service.py
"""Paystack payment gateway adapter.

Wraps the two calls the voting flow needs (transaction initialize and
verify) plus webhook signature checking. Holds no durable state: the
PaymentTransaction row is owned by the ledger.
"""
import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import httpx

from app.config import settings
from app.core.exceptions import (
    GatewayError,
    GatewayUnavailable,
    InvalidAmount,
    ReferenceNotFound,
)
from app.core.logger import logger
from app.models.payment import PaymentStatus

# Paystack transaction status -> our status
_STATUS_MAP = {
    "success": PaymentStatus.SUCCESS,
    "failed": PaymentStatus.FAILED,
    "reversed": PaymentStatus.FAILED,
}

PAYMENT_CHANNELS = ["card", "bank", "ussd", "qr", "mobile_money", "bank_transfer"]


@dataclass
class InitializedPayment:
    reference: str
    redirect_url: str
    access_code: Optional[str] = None


@dataclass
class VerifiedPayment:
    reference: str
    status: PaymentStatus
    amount_paid: Decimal
    currency: str
    metadata: dict = field(default_factory=dict)
    channel: Optional[str] = None
    paid_at: Optional[datetime] = None
    gateway_status: Optional[str] = None
    raw: dict = field(default_factory=dict)


def to_minor_units(amount: Decimal) -> int:
    """Naira -> kobo"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount) -> Decimal:
    return (Decimal(amount or 0) / 100).quantize(Decimal("0.01"))


def _parse_paid_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable paid_at from gateway: {value}")
        return None


class PaystackClient:
    """Thin async client for the Paystack transaction API"""

    def __init__(
        self,
        secret_key: str = None,
        base_url: str = None,
        timeout: float = None,
        transport: httpx.AsyncBaseTransport = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.paystack_secret_key
        self.base_url = (base_url or settings.paystack_base_url).rstrip("/")
        self.timeout = timeout or settings.gateway_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            },
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"Paystack {method} {path} transport error: {e}")
            raise GatewayUnavailable() from e

        if response.status_code >= 500:
            logger.warning(f"Paystack {method} {path} returned {response.status_code}")
            raise GatewayUnavailable()
        return response

    async def initialize(
        self,
        amount: Decimal,
        currency: str,
        payer_email: str,
        metadata: dict,
        reference: str = None,
        callback_url: str = None,
    ) -> InitializedPayment:
        """Start a transaction; returns the checkout URL"""
        if amount is None or Decimal(amount) <= 0:
            raise InvalidAmount()

        payload = {
            "email": payer_email,
            "amount": to_minor_units(amount),
            "currency": currency,
            "callback_url": callback_url or settings.paystack_callback_url,
            "metadata": metadata,
            "channels": PAYMENT_CHANNELS,
        }
        if reference:
            payload["reference"] = reference

        response = await self._request("POST", "/transaction/initialize", json=payload)
        body = _json(response)

        if response.status_code >= 400 or not body.get("status"):
            logger.error(
                f"Paystack initialize rejected ({response.status_code}): {body.get('message')}"
            )
            raise GatewayError(body.get("message") or GatewayError.message)

        data = body.get("data") or {}
        logger.info(f"Paystack transaction initialized: {data.get('reference')}")
        return InitializedPayment(
            reference=data.get("reference") or reference,
            redirect_url=data["authorization_url"],
            access_code=data.get("access_code"),
        )

    async def verify(self, reference: str) -> VerifiedPayment:
        """Query the gateway for the transaction state. Safe to repeat."""
        response = await self._request("GET", f"/transaction/verify/{reference}")
        body = _json(response)

        if response.status_code == 404 or (
            not body.get("status") and "not found" in str(body.get("message", "")).lower()
        ):
            raise ReferenceNotFound()
        if response.status_code >= 400 or not body.get("status"):
            raise GatewayError(body.get("message") or GatewayError.message)

        data = body.get("data") or {}
        gateway_status = str(data.get("status", "")).lower()
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            # Paystack returns "" when no metadata was sent
            metadata = {}

        return VerifiedPayment(
            reference=data.get("reference") or reference,
            status=_STATUS_MAP.get(gateway_status, PaymentStatus.PENDING),
            amount_paid=from_minor_units(data.get("amount")),
            currency=data.get("currency") or "",
            metadata=metadata,
            channel=data.get("channel"),
            paid_at=_parse_paid_at(data.get("paid_at")),
            gateway_status=gateway_status,
            raw=data,
        )

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """x-paystack-signature is HMAC-SHA512 of the raw body with the secret key"""
        if not signature or not self.secret_key:
            return False
        expected = hmac.new(self.secret_key.encode(), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)


def _json(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
