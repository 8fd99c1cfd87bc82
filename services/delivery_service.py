"""Delivery Dispatcher - routes a raw OTP code to the email or SMS channel.

Channels are configured independently; an unconfigured channel runs in dev
mode unless OTP_REQUIRE_DELIVERY is set, in which case it fails the send.
"""
import logging
import os
from enum import Enum
from typing import Dict, Optional

from services.email_service import EmailService
from services.errors import DeliveryError
from services.sms_service import SmsService

logger = logging.getLogger(__name__)


class Channel(str, Enum):
    EMAIL = "email"
    SMS = "sms"


class DeliveryDispatcher:
    def __init__(self, email_service: Optional[EmailService] = None, sms_service: Optional[SmsService] = None,
                 require_delivery: Optional[bool] = None):
        self.email_service = email_service or EmailService()
        self.sms_service = sms_service or SmsService()
        if require_delivery is None:
            require_delivery = os.getenv("OTP_REQUIRE_DELIVERY", "false").lower() == "true"
        self.require_delivery = require_delivery

    def channel_enabled(self, channel: Channel) -> bool:
        if channel == Channel.EMAIL:
            return self.email_service.enabled
        return self.sms_service.enabled

    def send(self, channel: Channel, principal: str, code: str, context: Optional[Dict] = None,
             ttl_minutes: int = 10) -> bool:
        """Send the code out-of-band. Returns True when a provider accepted it, False in dev mode."""
        channel = Channel(channel)
        if self.require_delivery and not self.channel_enabled(channel):
            logger.error("%s channel is not configured and delivery is required", channel.value)
            raise DeliveryError(f"{channel.value} delivery is not configured", channel=channel.value)
        if channel == Channel.EMAIL:
            return self.email_service.send_otp_email(principal, code, context or {}, ttl_minutes=ttl_minutes)
        return self.sms_service.send_otp_sms(principal, code, ttl_minutes=ttl_minutes)
