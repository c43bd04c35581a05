"""PayPal client: Payouts API batches and webhook signature verification.

Credentials come from the environment:

    PAYPAL_CLIENT_ID / PAYPAL_CLIENT_SECRET   REST app credentials
    PAYPAL_PAYOUTS_MODE                       ``sandbox`` (default) or ``live``
    PAYPAL_WEBHOOK_ID                         enables webhook verification
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from clients.http import HttpError, request
from clients.paypal.exceptions import PayPalAPIError, PayPalNotConfiguredError

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://api-m.sandbox.paypal.com"
LIVE_URL = "https://api-m.paypal.com"

# Webhook headers PayPal signs each delivery with
SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


@dataclass
class PayPalConfig:
    client_id: str
    client_secret: str
    mode: str = "sandbox"
    webhook_id: Optional[str] = None

    @classmethod
    def from_env(cls) -> "PayPalConfig":
        return cls(
            client_id=os.environ.get("PAYPAL_CLIENT_ID", ""),
            client_secret=os.environ.get("PAYPAL_CLIENT_SECRET", ""),
            mode=os.environ.get("PAYPAL_PAYOUTS_MODE", "sandbox"),
            webhook_id=os.environ.get("PAYPAL_WEBHOOK_ID") or None,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def base_url(self) -> str:
        return LIVE_URL if self.mode == "live" else SANDBOX_URL


@dataclass
class PayoutBatch:
    batch_id: str
    batch_status: str
    sender_batch_id: str


class PayPalClient:
    """Async wrapper around the PayPal REST endpoints used for vendor payouts."""

    def __init__(self, config: Optional[PayPalConfig] = None) -> None:
        self.config = config or PayPalConfig.from_env()

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            return await request(method, url, **kwargs)
        except (OSError, ValueError) as e:
            # Refused connections, DNS failures, timeouts and non-JSON bodies
            raise PayPalAPIError(f"PayPal request {method} {url} failed: {e}") from e

    async def _access_token(self) -> str:
        if not self.is_configured:
            raise PayPalNotConfiguredError("PayPal credentials not configured")
        try:
            data = await self._request(
                "POST",
                f"{self.config.base_url}/v1/oauth2/token",
                form_data={"grant_type": "client_credentials"},
                basic_auth=(self.config.client_id, self.config.client_secret),
            )
        except HttpError as e:
            raise PayPalAPIError(f"Failed to get PayPal access token: {e}") from e
        if not isinstance(data, dict) or not data.get("access_token"):
            raise PayPalAPIError("PayPal token response has no access_token")
        return data["access_token"]

    async def _call(self, method: str, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        token = await self._access_token()
        try:
            result = await self._request(
                method,
                f"{self.config.base_url}{path}",
                headers={"Authorization": f"Bearer {token}"},
                json_data=body,
                timeout=20.0,
            )
        except HttpError as e:
            message = e.body.get("message") if isinstance(e.body, dict) else e.body
            raise PayPalAPIError(f"PayPal {path} failed ({e.status}): {message}") from e
        if not isinstance(result, dict):
            raise PayPalAPIError(f"PayPal {path} returned an unexpected body: {result!r}")
        return result

    async def create_payout(
        self,
        sender_batch_id: str,
        receiver_email: str,
        amount_cents: int,
        note: str = "Vendor earnings payout",
        currency: str = "USD",
    ) -> PayoutBatch:
        """Submit a single-item payout batch. *sender_batch_id* is PayPal's
        idempotency key: resubmitting the same id does not pay twice."""
        body = {
            "sender_batch_header": {
                "sender_batch_id": sender_batch_id,
                "email_subject": "You have a payout",
                "email_message": note,
            },
            "items": [
                {
                    "recipient_type": "EMAIL",
                    "amount": {"value": f"{amount_cents / 100:.2f}", "currency": currency},
                    "receiver": receiver_email,
                    "note": note,
                    "sender_item_id": sender_batch_id,
                }
            ],
        }
        result = await self._call("POST", "/v1/payments/payouts", body)
        header = result.get("batch_header")
        if not isinstance(header, dict) or not header.get("payout_batch_id"):
            raise PayPalAPIError(f"PayPal payout response has no batch id: {result!r}")
        logger.info(f"PayPal batch {header['payout_batch_id']} created ({header.get('batch_status')})")
        return PayoutBatch(
            batch_id=header["payout_batch_id"],
            batch_status=header.get("batch_status", "PENDING"),
            sender_batch_id=sender_batch_id,
        )

    async def verify_webhook(self, headers: Dict[str, str], event: Dict[str, Any]) -> bool:
        """Verify a webhook delivery. Without PAYPAL_WEBHOOK_ID every event is
        accepted (local development)."""
        if not self.config.webhook_id:
            logger.warning("PAYPAL_WEBHOOK_ID not set, skipping PayPal webhook verification")
            return True
        lowered = {k.lower(): v for k, v in headers.items()}
        body = {key: lowered.get(header) for key, header in SIGNATURE_HEADERS.items()}
        body["webhook_id"] = self.config.webhook_id
        body["webhook_event"] = event
        result = await self._call("POST", "/v1/notifications/verify-webhook-signature", body)
        return result.get("verification_status") == "SUCCESS"
