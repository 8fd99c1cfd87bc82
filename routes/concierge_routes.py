"""
Concierge Routes - scripted real-estate advisor chat over the completions API
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Any, Dict, Optional
import logging

from services.ai_service import AIService, ConciergeUpstreamError

logger = logging.getLogger(__name__)
router = APIRouter()


class AskRequest(BaseModel):
    message: str = ""
    lead: Optional[Dict[str, Any]] = None


class AskResponse(BaseModel):
    reply: str


def get_ai_service() -> AIService:
    return AIService()


@router.post("/ask", response_model=AskResponse)
def ask(request: AskRequest, ai_service: AIService = Depends(get_ai_service)):
    """Single-turn question to the concierge persona."""
    message = (request.message or "").strip()
    if not message:
        raise HTTPException(status_code=400, detail="Missing message")
    try:
        reply = ai_service.ask_concierge(message, request.lead)
    except ConciergeUpstreamError:
        raise HTTPException(status_code=502, detail="Concierge upstream error")
    return AskResponse(reply=reply)
