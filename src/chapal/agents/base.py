"""Base agent plumbing shared by the model-facing components.

Holds settings and the input guard applied before any text reaches an
external model.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Protocol, runtime_checkable

from chapal.config import Settings, get_settings
from chapal.logging import get_logger
from chapal.review.models import Turn

logger = get_logger(__name__)


@runtime_checkable
class SupportsGenerate(Protocol):
    """Anything that can stream a reply for a conversation."""

    def stream(
        self, history: list[Turn], user_text: str, keys: Any = None
    ) -> AsyncIterator[str]: ...


class BaseAgent:
    """Minimal base class for model-facing agents."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    @property
    def name(self) -> str:
        return self.__class__.__name__.lower()

    @property
    def max_input_length(self) -> int:
        return self.settings.max_input_length

    def _validate_and_truncate_input(
        self, user_input: str, max_length: int | None = None
    ) -> str:
        """Validate and truncate user input to prevent API issues.

        Args:
            user_input: Raw user input text
            max_length: Override default max length

        Returns:
            Validated and potentially truncated input string
        """
        if not user_input or not user_input.strip():
            logger.warning("empty_user_input", agent=self.name)
            return ""

        max_len = max_length or self.max_input_length
        input_len = len(user_input)

        # Warn if approaching limit
        if input_len > max_len // 2:
            logger.warning(
                "long_user_input",
                agent=self.name,
                length=input_len,
                max_length=max_len,
            )

        if input_len > max_len:
            logger.info(
                "input_truncated",
                agent=self.name,
                original_length=input_len,
                truncated_length=max_len,
            )
            return user_input[:max_len]

        return user_input
