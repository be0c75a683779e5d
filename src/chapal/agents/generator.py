"""Primary model streaming client.

Streams a Gemini reply chunk by chunk through a KeyRotationManager:
a rate limit before the first chunk moves to the next key, a rate limit
with every key spent raises GenerationCredentialsExhausted, and anything
else (including a rate limit after output has started) is a transient
failure for the orchestrator to retry.
"""

from __future__ import annotations

from typing import Any, AsyncIterator

from google import genai
from google.genai import types

from chapal.agents.base import BaseAgent
from chapal.config import Settings
from chapal.errors import GenerationCredentialsExhausted, GenerationTransientFailure
from chapal.logging import get_logger
from chapal.review.models import Turn
from chapal.safety.keys import KeyRotationManager, is_rate_limit_error

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are a helpful AI assistant. Be concise but thorough in your responses. If the user shares documents, analyze them carefully and provide relevant insights.

MEDICAL ADVICE GUIDELINES:
- You CAN provide basic wellness tips like: drink more water, walk more, get enough sleep, eat vegetables, stretch regularly, wash hands, take breaks from screens.
- You MUST NOT provide serious medical advice including: specific medication recommendations, dosages, diagnosis of conditions, treatment plans, or interpretation of symptoms for specific diseases.
- For any serious medical questions, politely redirect users to consult a healthcare professional.
- If asked about medications, dosages, or specific treatments, explain that you cannot provide that information and recommend consulting a doctor or pharmacist."""

# Gemini names the assistant role "model"
_ROLES = {"user": "user", "assistant": "model"}


def build_contents(history: list[Turn], user_text: str) -> list[types.Content]:
    contents = [
        types.Content(role=_ROLES.get(turn.role, "user"), parts=[types.Part(text=turn.content)])
        for turn in history
        if turn.content
    ]
    contents.append(types.Content(role="user", parts=[types.Part(text=user_text)]))
    return contents


class GeminiResponseGenerator(BaseAgent):
    """Streams replies from the primary Gemini model."""

    def __init__(
        self,
        keys: KeyRotationManager[Any] | None = None,
        settings: Settings | None = None,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        super().__init__(settings)
        self.system_prompt = system_prompt
        self.keys = keys or KeyRotationManager(
            self.settings.generation_api_keys,
            lambda api_key: genai.Client(api_key=api_key),
            name="generation",
        )

    async def stream(
        self,
        history: list[Turn],
        user_text: str,
        keys: KeyRotationManager[Any] | None = None,
    ) -> AsyncIterator[str]:
        """Yield reply text chunks for one generation attempt."""
        if keys is None:
            keys = self.keys.for_request()
        if not keys.has_keys():
            raise GenerationCredentialsExhausted("No generation API keys configured")

        validated = self._validate_and_truncate_input(user_text)
        contents = build_contents(history, validated)
        config = types.GenerateContentConfig(system_instruction=self.system_prompt)

        while True:
            client = keys.current_client()
            yielded = False
            try:
                stream = await client.aio.models.generate_content_stream(
                    model=self.settings.generation_model,
                    contents=contents,
                    config=config,
                )
                async for chunk in stream:
                    text = chunk.text
                    if text:
                        yielded = True
                        yield text
                return
            except Exception as e:
                if yielded or not is_rate_limit_error(e):
                    raise GenerationTransientFailure(str(e)) from e
                logger.info(
                    "generation_rate_limited",
                    key_index=keys.current_index + 1,
                    key_count=keys.size,
                )
                if not keys.rotate():
                    raise GenerationCredentialsExhausted() from e
