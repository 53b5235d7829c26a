"""
AI Responder

Thin async wrapper around an OpenAI-compatible chat completions endpoint.
Stateless: every call carries the full conversation it needs. No retries, no
caching; callers decide what to do when a call fails.
"""
import logging
from typing import Dict, List, Optional, Sequence

from openai import AsyncOpenAI

import config
from errors import UpstreamError

logger = logging.getLogger(__name__)

CARE_SYSTEM_PROMPT = (
    "You are a compassionate elder-care assistant focused on health and wellness. "
    "Keep answers concise, ask clarifying questions when needed, and avoid topics "
    "unrelated to health and care. Always remind users to consult professionals "
    "for medical decisions."
)

TITLE_SYSTEM_PROMPT = (
    "You are a title maker agent. I will give you a part of a conversation which will have "
    "a question from a user and a response from an AI. You will produce a short 3-word title. "
    "I will also give you a list of previous conversation titles which you will keep in mind "
    "and produce a different title than them. Reply with the title only."
)


class AIResponder:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.api_key = config.AI_API_KEY if api_key is None else api_key
        self.base_url = config.AI_BASE_URL if base_url is None else base_url
        self.model = model or config.AI_MODEL
        self.timeout = config.AI_TIMEOUT_SECONDS if timeout is None else timeout
        self._client = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def _get_client(self) -> AsyncOpenAI:
        if not self.configured:
            raise UpstreamError("AI_API_KEY is not configured")
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def complete(self, history: Sequence[Dict[str, str]]) -> str:
        """Return the assistant reply for the ordered ``{role, content}`` history."""
        client = self._get_client()
        messages = [{"role": "system", "content": CARE_SYSTEM_PROMPT}]
        messages.extend({"role": m["role"], "content": m["content"]} for m in history)

        completion = await client.chat.completions.create(
            model=self.model,
            messages=messages
        )
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""

    async def title_for(self, user_message: str, ai_message: str, prior_titles: List[str]) -> str:
        client = self._get_client()
        formatted = (
            f"User Message: {user_message}\n"
            f"AI Message: {ai_message}\n"
            f"Previous Titles: {', '.join(prior_titles)}"
        )
        completion = await client.chat.completions.create(
            model=self.model,
            max_tokens=20,
            messages=[
                {"role": "system", "content": TITLE_SYSTEM_PROMPT},
                {"role": "user", "content": formatted}
            ]
        )
        if not completion.choices:
            return ""
        raw = completion.choices[0].message.content or ""
        return raw.strip().strip('"\'').strip()

    async def close(self):
        if self._client is not None:
            await self._client.close()
            self._client = None
