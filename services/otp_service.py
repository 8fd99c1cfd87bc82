"""OTP Service - issues and verifies one-time passcodes for email and SMS principals.

Only an HMAC digest of each code is persisted. A principal has at most one
live record; a new issuance overwrites the previous one and a successful
verification deletes it.

Env vars:
  ENV, OTP_TTL_SECONDS, OTP_MAX_ATTEMPTS, OTP_CODE_WIDTH, OTP_STORAGE_SECRET, OTP_FIXED_CODE
"""
import hashlib
import hmac
import logging
import os
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from services.delivery_service import Channel, DeliveryDispatcher
from services.errors import (
    DeliveryError,
    ExpiredError,
    InvalidCodeError,
    NotFoundError,
    TooManyAttemptsError,
    ValidationError,
)
from services.otp_store import OTPRecord, OTPStore, build_store
from utils.principals import channel_for, mask_principal, normalize_principal

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_CODE_WIDTH = 6
DEV_ENVS = ("dev", "test")


def generate_code(width: int = DEFAULT_CODE_WIDTH) -> str:
    return f"{secrets.randbelow(10 ** width):0{width}d}"


def digest_code(code: str, principal: str, secret: str) -> str:
    msg = f"{principal}|{code}".encode()
    return hmac.new(secret.encode(), msg, hashlib.sha256).hexdigest()


@dataclass
class IssueResult:
    principal: str
    channel: Channel
    expires_at: float
    delivered: bool

    @property
    def expires_at_iso(self) -> str:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc).isoformat()


@dataclass
class VerifyResult:
    principal: str
    context: Dict = field(default_factory=dict)


class OTPService:
    def __init__(
        self,
        store: Optional[OTPStore] = None,
        dispatcher: Optional[DeliveryDispatcher] = None,
        *,
        ttl_seconds: Optional[int] = None,
        max_attempts: Optional[int] = None,
        code_width: Optional[int] = None,
        secret: Optional[str] = None,
        fixed_code: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        env = (os.getenv("ENV", "dev") or "dev").lower()
        self.store = store or build_store()
        self.dispatcher = dispatcher or DeliveryDispatcher()
        self.ttl_seconds = ttl_seconds or int(os.getenv("OTP_TTL_SECONDS", str(DEFAULT_TTL_SECONDS)))
        self.max_attempts = max_attempts or int(os.getenv("OTP_MAX_ATTEMPTS", str(DEFAULT_MAX_ATTEMPTS)))
        self.code_width = code_width or int(os.getenv("OTP_CODE_WIDTH", str(DEFAULT_CODE_WIDTH)))
        self.clock = clock

        self.secret = secret if secret is not None else os.getenv("OTP_STORAGE_SECRET", "")
        if not self.secret:
            if env not in DEV_ENVS:
                raise RuntimeError("OTP_STORAGE_SECRET must be configured outside dev/test")
            logger.warning("OTP_STORAGE_SECRET not set; digests are unkeyed (dev only)")

        if fixed_code is None:
            fixed_code = os.getenv("OTP_FIXED_CODE") or None
        if fixed_code and env not in DEV_ENVS:
            logger.warning("OTP_FIXED_CODE ignored outside dev/test")
            fixed_code = None
        if fixed_code:
            logger.warning("Fixed OTP code mode is active (test-only configuration)")
        self.fixed_code = fixed_code

    def _validate_principal(self, principal: str) -> tuple:
        normalized = normalize_principal(principal)
        channel = channel_for(normalized)
        if channel is None:
            raise ValidationError("Valid email or E.164 phone required")
        return normalized, Channel(channel)

    def _new_code(self) -> str:
        return self.fixed_code or generate_code(self.code_width)

    def issue(self, principal: str, context: Optional[Dict] = None) -> IssueResult:
        normalized, channel = self._validate_principal(principal)
        code = self._new_code()
        now = self.clock()
        record = OTPRecord(
            principal=normalized,
            code_digest=digest_code(code, normalized, self.secret),
            created_at=now,
            expires_at=now + self.ttl_seconds,
            attempts=0,
            max_attempts=self.max_attempts,
            context=dict(context or {}),
        )
        self.store.purge_expired(now)
        # Stored before dispatch so an undelivered code can still be verified or reissued.
        self.store.put(normalized, record, self.ttl_seconds)
        logger.info("Issued OTP for %s via %s", mask_principal(normalized), channel.value)

        try:
            delivered = self.dispatcher.send(
                channel, normalized, code, record.context, ttl_minutes=max(1, self.ttl_seconds // 60)
            )
        except DeliveryError:
            logger.warning("OTP delivery failed for %s; record kept for reissue", mask_principal(normalized))
            raise
        return IssueResult(principal=normalized, channel=channel, expires_at=record.expires_at, delivered=delivered)

    def verify(self, principal: str, code: str) -> VerifyResult:
        normalized, _ = self._validate_principal(principal)
        candidate = (code or "").strip()
        if len(candidate) != self.code_width or not candidate.isdigit():
            raise ValidationError(f"Code must be {self.code_width} digits")

        record = self.store.get(normalized)
        masked = mask_principal(normalized)
        if record is None:
            logger.info("OTP verify for %s: not_found", masked)
            raise NotFoundError("No code on record")
        if record.is_expired(self.clock()):
            self.store.delete(normalized)
            logger.info("OTP verify for %s: expired", masked)
            raise ExpiredError("Code expired")

        # The attempt is reserved before the guess is compared; concurrent guesses each get a distinct count.
        attempts = self.store.increment_attempts(normalized)
        if attempts is None:
            logger.info("OTP verify for %s: consumed concurrently", masked)
            raise NotFoundError("No code on record")
        if attempts > record.max_attempts:
            self.store.delete(normalized)
            logger.info("OTP verify for %s: too_many_attempts", masked)
            raise TooManyAttemptsError("Too many attempts")

        expected = digest_code(candidate, normalized, self.secret)
        if not hmac.compare_digest(expected, record.code_digest):
            logger.info("OTP verify for %s: invalid_code (attempts=%s)", masked, attempts)
            raise InvalidCodeError("Invalid code")

        # Only the record this guess was checked against; a newer issuance survives.
        if not self.store.consume(normalized, record.code_digest):
            logger.info("OTP verify for %s: consumed or replaced concurrently", masked)
            raise NotFoundError("No code on record")
        logger.info("OTP verified for %s", masked)
        return VerifyResult(principal=normalized, context=record.context)
