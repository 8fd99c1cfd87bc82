"""OTP routes - issue and verify one-time codes for leads (email or SMS)"""
import logging
import os
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from jose import jwt
from pydantic import BaseModel

from services.errors import (
    DeliveryError,
    ExpiredError,
    InvalidCodeError,
    NotFoundError,
    StoreError,
    TooManyAttemptsError,
    ValidationError,
)
from services.otp_service import OTPService

SECRET_KEY = os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
GENERIC_REJECTION = "Invalid or expired code. Request a new code and try again."

logger = logging.getLogger(__name__)
router = APIRouter()

_otp_service: Optional[OTPService] = None
_otp_service_lock = Lock()


def get_otp_service() -> OTPService:
    global _otp_service
    if _otp_service is None:
        with _otp_service_lock:
            if _otp_service is None:
                _otp_service = OTPService()
    return _otp_service


class IssueRequest(BaseModel):
    principal: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    rank: Optional[str] = None
    lastName: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    def resolve_principal(self) -> str:
        return (self.principal or self.email or self.phone or "").strip()

    def resolve_context(self) -> Dict[str, Any]:
        context = dict(self.context or {})
        # legacy front-end sends identity fields at the top level
        for key, value in (("rank", self.rank), ("last_name", self.lastName), ("phone", self.phone)):
            if value and key not in context:
                context[key] = value
        return context


class VerifyRequest(BaseModel):
    principal: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    code: str = ""

    def resolve_principal(self) -> str:
        return (self.principal or self.email or self.phone or "").strip()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _preflight() -> Response:
    return Response(
        status_code=204,
        headers={
            "Allow": "POST, OPTIONS",
            "Access-Control-Allow-Methods": "POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type, Authorization",
            "Access-Control-Max-Age": "86400",
        },
    )


@router.options("/issue")
async def issue_preflight():
    return _preflight()


@router.options("/verify")
async def verify_preflight():
    return _preflight()


@router.post("/issue")
def issue_code(body: IssueRequest, otp_service: OTPService = Depends(get_otp_service)):
    """Create, store and deliver a code. The code itself is never returned."""
    try:
        result = otp_service.issue(body.resolve_principal(), body.resolve_context())
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"error": e.kind, "message": e.message})
    except DeliveryError as e:
        raise HTTPException(
            status_code=502,
            detail={"error": e.kind, "message": "We could not deliver your code. Please request a new one."},
        )
    except StoreError as e:
        raise HTTPException(status_code=503, detail={"error": e.kind, "message": "Please try again shortly."})
    return {
        "ok": True,
        "expiresAt": result.expires_at_iso,
        "channel": result.channel.value,
        "delivered": result.delivered,
    }


@router.post("/verify")
def verify_code(body: VerifyRequest, otp_service: OTPService = Depends(get_otp_service)):
    try:
        result = otp_service.verify(body.resolve_principal(), body.code)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"error": e.kind, "message": e.message})
    except (NotFoundError, ExpiredError, InvalidCodeError):
        raise HTTPException(status_code=400, detail={"error": "invalid_or_expired", "message": GENERIC_REJECTION})
    except TooManyAttemptsError as e:
        raise HTTPException(
            status_code=429,
            detail={"error": e.kind, "message": "Too many attempts. Request a new code."},
        )
    except StoreError as e:
        raise HTTPException(status_code=503, detail={"error": e.kind, "message": "Please try again shortly."})
    token = create_access_token({"sub": result.principal, "scope": "verified_lead"})
    return {"ok": True, "context": result.context, "access_token": token, "token_type": "bearer"}
