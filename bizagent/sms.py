"""
SMS provider client (smsc.ua).

SMS_API_KEY holds "login:password". The provider answers with plain text:
"OK - 1 SMS, ID = 123" on success (the id is read after "="),
"ERROR = 2 (...)" on failure.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from bizagent.config import config
from bizagent.logging_config import get_logger

logger = get_logger(__name__)

SMSC_SEND_URL = "https://smsc.ua/sys/send.php"


class SmsError(Exception):
    """SMS provider is not configured or unreachable."""


@dataclass
class SmsSendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class SmsService:
    """Sends SMS through the configured provider."""

    def __init__(self, provider: Optional[str] = None, api_key: Optional[str] = None,
                 sender: Optional[str] = None, timeout: Optional[float] = None,
                 http_client: Optional[httpx.Client] = None):
        self.provider = provider or config.SMS_PROVIDER
        self.api_key = api_key if api_key is not None else config.SMS_API_KEY
        self.sender = sender if sender is not None else config.SMS_SENDER
        self.timeout = timeout or config.SMS_TIMEOUT_SECONDS
        self._http_client = http_client

    @property
    def configured(self) -> bool:
        return bool(self.provider and self.api_key)

    def send(self, phone: str, text: str) -> SmsSendResult:
        """
        Send one SMS to a normalized phone.

        Raises SmsError when the provider is not configured or the HTTP call fails;
        a provider-level rejection is returned as success=False.
        """
        if not self.configured:
            raise SmsError("sms provider not configured")
        if self.provider != "smsc":
            raise SmsError(f"unsupported sms provider: {self.provider}")

        login, _, password = self.api_key.partition(":")
        data = {
            "login": login,
            "psw": password,
            "phones": phone.lstrip("+"),
            "mes": text,
            "charset": "utf-8",
        }
        if self.sender:
            data["sender"] = self.sender

        try:
            if self._http_client is not None:
                resp = self._http_client.post(SMSC_SEND_URL, data=data)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = client.post(SMSC_SEND_URL, data=data)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("sms_send_http_error", error=str(e)[:300])
            raise SmsError(str(e)) from e

        body = resp.text.strip()
        if body.startswith("ERROR"):
            logger.warning("sms_rejected", response=body[:200])
            return SmsSendResult(success=False, error=body[:300])

        message_id = None
        if "=" in body:
            message_id = body.split("=", 1)[1].split(",", 1)[0].strip() or None
        logger.info("sms_sent", message_id=message_id)
        return SmsSendResult(success=True, message_id=message_id)
