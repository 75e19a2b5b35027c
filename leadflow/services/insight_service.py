# leadflow/services/insight_service.py
"""
Insight enrichment for contacts via OpenAI.
The output is opaque display text: failures degrade to a fallback message
instead of failing the request.
"""

import openai
from openai import AsyncOpenAI

from leadflow.config import settings
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.contact_domain import Contact, Interaction

logger = get_logger(__name__)

NO_INSIGHT = "No insights available at this time."
INSIGHT_FAILED = "Failed to generate AI insights."
RECENT_INTERACTION_LIMIT = 10


class InsightService:
    def __init__(self, client: AsyncOpenAI | None = None):
        self.client = client
        if self.client is None and settings.OPENAI_API_KEY:
            self.client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=settings.INSIGHT_TIMEOUT_SECONDS,
            )
            logger.info("OpenAI client initialized", model=settings.OPENAI_MODEL)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def _complete(self, prompt: str, max_tokens: int, temperature: float) -> str:
        response = await self.client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=[
                {"role": "system", "content": "You are a concise assistant for a sales CRM."},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return (response.choices[0].message.content or "").strip()

    async def analyze_relationship(
        self, contact: Contact, recent_interactions: list[Interaction] | None = None
    ) -> str:
        """Short relationship summary plus a suggested next step (max ~30 words)."""
        if not self.enabled:
            return NO_INSIGHT

        interactions = recent_interactions
        if interactions is None:
            interactions = contact.interactions[-RECENT_INTERACTION_LIMIT:]
        history = "\n".join(
            f"- {i.date.date().isoformat()}: {i.type.value} - {i.summary}" for i in interactions
        )
        prompt = (
            "Analyze the following CRM contact data and interaction history.\n"
            'Provide a concise "AI Insight" (max 30 words) summarizing the relationship '
            "status and a suggested next step.\n\n"
            f"Contact: {contact.name} ({contact.company})\n"
            f"Current Stage: {contact.stage.value}\n"
            f"Interactions:\n{history or '- none'}"
        )

        try:
            text = await self._complete(prompt, max_tokens=100, temperature=0.7)
        except openai.APIError as e:
            logger.error("Insight generation failed", contact_id=contact.id, error=str(e))
            return INSIGHT_FAILED

        return text or NO_INSIGHT

    async def generate_follow_up_draft(self, contact: Contact) -> str | None:
        """Short personalized follow-up email body, or None when unavailable."""
        if not self.enabled:
            return None

        prompt = (
            f"Draft a short, professional follow-up email for {contact.name} "
            f"from {contact.company}.\n"
            f'The lead is currently in the "{contact.stage.value}" stage.\n'
            "Keep it under 60 words and personalized."
        )

        try:
            text = await self._complete(prompt, max_tokens=200, temperature=0.7)
        except openai.APIError as e:
            logger.error("Follow-up draft generation failed", contact_id=contact.id, error=str(e))
            return None

        return text or None
