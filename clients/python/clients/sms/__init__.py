"""Outbound SMS over the Twilio REST API.

With TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN / TWILIO_FROM_NUMBER unset the
client runs in log-only mode and reports every message as delivered.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Optional

from clients.http import HttpError, request

logger = logging.getLogger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"
MAX_MESSAGE_LENGTH = 1600
_E164 = re.compile(r"^\+[1-9]\d{6,14}$")


class SmsError(Exception):
    pass


@dataclass
class SmsResult:
    message_id: str
    delivered: bool


class SmsClient:
    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        env_tag: Optional[str] = None,
    ) -> None:
        self.account_sid = account_sid if account_sid is not None else os.environ.get("TWILIO_ACCOUNT_SID", "")
        self.auth_token = auth_token if auth_token is not None else os.environ.get("TWILIO_AUTH_TOKEN", "")
        self.from_number = from_number if from_number is not None else os.environ.get("TWILIO_FROM_NUMBER", "")
        self.env_tag = env_tag if env_tag is not None else os.environ.get("ENVIRONMENT", "development")

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def _format(self, message: str) -> str:
        if self.env_tag != "production":
            return f"[{self.env_tag.upper()}] {message}"
        return message

    async def send(self, to: str, message: str) -> SmsResult:
        if not _E164.match(to or ""):
            raise SmsError(f"Invalid E.164 phone number: {to}")
        if not message:
            raise SmsError("SMS message cannot be empty")
        if len(message) > MAX_MESSAGE_LENGTH:
            raise SmsError(f"SMS message too long: {len(message)} chars (max {MAX_MESSAGE_LENGTH})")

        body = self._format(message)
        if not self.is_configured:
            logger.info(f"SMS (log-only) -> {to}: {body}")
            return SmsResult(message_id="log-only", delivered=True)

        try:
            result = await request(
                "POST",
                f"{TWILIO_API_URL}/Accounts/{self.account_sid}/Messages.json",
                form_data={"To": to, "From": self.from_number, "Body": body},
                basic_auth=(self.account_sid, self.auth_token),
            )
        except HttpError as e:
            raise SmsError(f"Twilio rejected message to {to}: {e}") from e
        logger.info(f"SMS sent -> {to} sid={result.get('sid')}")
        return SmsResult(message_id=result.get("sid", ""), delivered=True)


_client: Optional[SmsClient] = None


def get_sms_client() -> SmsClient:
    global _client
    if _client is None:
        _client = SmsClient()
    return _client
