"""OTP error taxonomy shared by the store, delivery and OTP services."""


class OTPError(Exception):
    """Base exception for OTP operations."""

    kind = "otp_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class ValidationError(OTPError):
    kind = "validation_error"


class NotFoundError(OTPError):
    kind = "not_found"


class ExpiredError(OTPError):
    kind = "expired"


class TooManyAttemptsError(OTPError):
    kind = "too_many_attempts"


class InvalidCodeError(OTPError):
    kind = "invalid_code"


class DeliveryError(OTPError):
    """Email/SMS provider rejected the send or timed out. The stored record is kept."""

    kind = "delivery_error"

    def __init__(self, message: str = "", channel: str = ""):
        super().__init__(message)
        self.channel = channel


class StoreError(OTPError):
    """Record store unavailable; safe to retry."""

    kind = "store_error"
