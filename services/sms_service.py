"""SMS channel for OTP delivery over a JSON HTTP gateway.

Env vars:
  SMS_API_URL, SMS_API_TOKEN, SMS_SENDER, SMS_TEMPLATE, SMS_TIMEOUT_SECONDS
"""
import logging
import os
import time
from typing import Optional

import httpx

from services.errors import DeliveryError
from utils.principals import mask_code, mask_principal

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = "Your OrozcoRealty verification code is {code}. It expires in {minutes} minutes."


class SmsService:
    max_attempts = 3
    backoff_seconds = 0.5

    def __init__(self, url: Optional[str] = None, token: Optional[str] = None, sender: Optional[str] = None,
                 client: Optional[httpx.Client] = None):
        self.url = url or os.getenv("SMS_API_URL", "")
        self.token = token or os.getenv("SMS_API_TOKEN") or None
        self.sender = sender or os.getenv("SMS_SENDER") or None
        self.template = os.getenv("SMS_TEMPLATE") or DEFAULT_TEMPLATE
        self.timeout = float(os.getenv("SMS_TIMEOUT_SECONDS", "10"))
        self.client = client

    @property
    def enabled(self) -> bool:
        return bool((self.url or "").strip())

    def build_message(self, code: str, ttl_minutes: int) -> str:
        try:
            return self.template.format(code=code, minutes=ttl_minutes)
        except (KeyError, IndexError, ValueError):
            return DEFAULT_TEMPLATE.format(code=code, minutes=ttl_minutes)

    def _post(self, payload: dict, headers: dict) -> httpx.Response:
        if self.client is not None:
            return self.client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        return httpx.post(self.url, json=payload, headers=headers, timeout=self.timeout)

    def send_otp_sms(self, phone: str, code: str, ttl_minutes: int = 10) -> bool:
        """Returns True if the gateway accepted the message, False in dev mode.

        Retries transport errors and 5xx responses with exponential backoff; 4xx fails immediately."""
        if not self.enabled:
            logger.info("Dev mode (no SMS gateway configured). OTP for %s: %s", mask_principal(phone), mask_code(code))
            return False
        payload = {"to": phone, "message": self.build_message(code, ttl_minutes)}
        if self.sender:
            payload["sender"] = self.sender
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        delay = self.backoff_seconds
        for attempt in range(1, self.max_attempts + 1):
            try:
                res = self._post(payload, headers)
                res.raise_for_status()
                logger.info("Sent OTP SMS to %s", mask_principal(phone))
                return True
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status < 500 or attempt == self.max_attempts:
                    logger.error("SMS gateway rejected message to %s (status %s)", mask_principal(phone), status)
                    raise DeliveryError("SMS send failed", channel="sms") from e
            except httpx.HTTPError as e:
                if attempt == self.max_attempts:
                    logger.error("SMS gateway unreachable for %s: %s", mask_principal(phone), e.__class__.__name__)
                    raise DeliveryError("SMS send failed", channel="sms") from e
            logger.warning("SMS attempt %s for %s failed, retrying", attempt, mask_principal(phone))
            time.sleep(delay)
            delay *= 2
