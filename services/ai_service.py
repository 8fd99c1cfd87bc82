from openai import AzureOpenAI, OpenAI, OpenAIError
import os
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)

CONCIERGE_PERSONA = " ".join([
    "You are Elena, a professional, executive-grade real-estate advisor and A.I. concierge.",
    "Specialties: VA loans, affordability strategy, comps, and investor ROI.",
    "Answer with a personal touch in 4-8 sentences.",
    "Include next steps when helpful and always ask if there is another way to serve them.",
])
EMPTY_REPLY = "I'm here. What would you like to explore?"


class ConciergeUpstreamError(Exception):
    """The completions API failed or returned an unusable response."""


class AIService:
    def __init__(self, client=None):
        """Initialize the chat completions client.

        The key MUST be supplied via environment. If missing, client is set to None
        and replies fall back to a dev echo so the front end keeps working.
        OPENAI_API_BASE switches to an Azure OpenAI deployment.
        """
        self.model = os.getenv("OPENAI_MODEL") or "gpt-4o-mini"
        self.temperature = float(os.getenv("OPENAI_TEMPERATURE", "0.4"))
        self.max_tokens = int(os.getenv("OPENAI_MAX_TOKENS", "500"))
        if client is not None:
            self.client = client
            return
        api_key = os.getenv("OPENAI_API_KEY")
        azure_endpoint = os.getenv("OPENAI_API_BASE")
        if not api_key:
            logger.warning("OPENAI_API_KEY not set. AIService will operate in echo mode only.")
            self.client = None
        elif azure_endpoint:
            self.client = AzureOpenAI(
                api_key=api_key,
                api_version=os.getenv("OPENAI_API_VERSION") or "2024-02-15-preview",
                azure_endpoint=azure_endpoint,
                timeout=30.0,
                max_retries=2,
            )
        else:
            self.client = OpenAI(api_key=api_key, timeout=30.0, max_retries=2)

    def build_messages(self, message: str, lead: Optional[Dict] = None):
        system = CONCIERGE_PERSONA
        if lead:
            name = " ".join(str(lead.get(k) or "").strip() for k in ("rank", "lastName", "last_name")).strip()
            if name:
                system += f" The lead you are speaking with is {name}."
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": message},
        ]

    def ask_concierge(self, message: str, lead: Optional[Dict] = None) -> str:
        if self.client is None:
            return f"Elena (dev echo): \"{message}\" - Add OPENAI_API_KEY to enable real answers."
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(message, lead),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as e:
            logger.error(f"Concierge completion failed: {e.__class__.__name__}")
            raise ConciergeUpstreamError("Completions API error") from e
        if not response.choices:
            return EMPTY_REPLY
        reply = (response.choices[0].message.content or "").strip()
        return reply or EMPTY_REPLY
