import logging
import re
from typing import Optional

import requests

from .config import ReminderSettings
from .exceptions import GatewayConfigurationError, GatewaySendError
from .schemas import GatewayReceipt

logger = logging.getLogger(__name__)

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def is_e164(phone_number: Optional[str]) -> bool:
    return bool(phone_number) and bool(E164_PATTERN.match(phone_number))


class TwilioSmsGateway:
    """Sends SMS through the Twilio Messages REST API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        base_url: str = "https://api.twilio.com/2010-04-01",
        timeout: int = 10,
        session: Optional[requests.Session] = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, to_address: str, body: str) -> GatewayReceipt:
        url = f"{self.base_url}/Accounts/{self.account_sid}/Messages.json"
        try:
            response = self.session.post(
                url,
                data={"To": to_address, "From": self.from_number, "Body": body},
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GatewaySendError(f"Twilio request failed: {e}") from e

        if response.status_code >= 400:
            try:
                error = response.json()
            except ValueError:
                error = {}
            code = error.get("code")
            raise GatewaySendError(
                error.get("message") or f"Twilio returned HTTP {response.status_code}",
                status_code=response.status_code,
                error_code=str(code) if code is not None else None,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        receipt = GatewayReceipt(gateway_message_id=payload.get("sid"), status=payload.get("status") or "queued")
        logger.debug(f"📨 [Twilio] Accepted {receipt.gateway_message_id} status={receipt.status}")
        return receipt


def build_gateway(settings: ReminderSettings) -> TwilioSmsGateway:
    if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_FROM_NUMBER):
        raise GatewayConfigurationError(
            "REMINDER_TWILIO_ACCOUNT_SID, REMINDER_TWILIO_AUTH_TOKEN and REMINDER_TWILIO_FROM_NUMBER must be set"
        )
    return TwilioSmsGateway(
        account_sid=settings.TWILIO_ACCOUNT_SID,
        auth_token=settings.TWILIO_AUTH_TOKEN,
        from_number=settings.TWILIO_FROM_NUMBER,
        base_url=settings.TWILIO_API_BASE_URL,
        timeout=settings.TWILIO_TIMEOUT_SECONDS,
    )
