"""
Key rotation for external model services.

A KeyRotationManager owns an ordered pool of API keys and one lazily
built client per key. Exhaustion flags live on the manager instance, so
each top-level request works on its own copy (see `for_request`) while
the underlying clients are shared.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from chapal.logging import get_logger

logger = get_logger(__name__)

ClientT = TypeVar("ClientT")

RATE_LIMIT_SIGNATURES = ("429", "rate limit", "quota exceeded", "resource exhausted")


def is_rate_limit_error(error: BaseException) -> bool:
    """Classify an SDK error as a rate-limit condition.

    Checks the HTTP status exposed by the openai (`status_code`) and
    google-genai (`code`) error types, then falls back to the message.
    """
    for attr in ("status_code", "code"):
        if getattr(error, attr, None) == 429:
            return True
    message = str(error).lower().replace("_", " ")
    return any(signature in message for signature in RATE_LIMIT_SIGNATURES)


@dataclass
class CredentialSlot:
    """One key in the pool."""

    index: int
    is_exhausted: bool = False


class KeyRotationManager(Generic[ClientT]):
    """
    Ordered credential pool with monotonic, non-wrapping rotation.

    Usage per request:
        keys = manager.for_request()
        client = keys.current_client()
        ... on a rate-limit error: if not keys.rotate(): give up
    """

    def __init__(
        self,
        api_keys: list[str],
        client_factory: Callable[[str], ClientT],
        name: str = "default",
        _clients: dict[int, ClientT] | None = None,
    ):
        self.name = name
        self._api_keys = list(api_keys)
        self._client_factory = client_factory
        self._clients: dict[int, ClientT] = _clients if _clients is not None else {}
        self.slots = [CredentialSlot(index=i) for i in range(len(self._api_keys))]
        self.current_index = 0

    @property
    def size(self) -> int:
        return len(self._api_keys)

    def has_keys(self) -> bool:
        return bool(self._api_keys)

    def current_client(self) -> ClientT | None:
        """Client for the current key, built on first use. None when the pool is empty."""
        if not self._api_keys:
            return None
        index = self.current_index
        client = self._clients.get(index)
        if client is None:
            client = self._client_factory(self._api_keys[index])
            self._clients[index] = client
        return client

    def rotate(self) -> bool:
        """Mark the current key exhausted and advance. False when none remain."""
        if not self._api_keys:
            return False
        self.slots[self.current_index].is_exhausted = True
        if self.current_index + 1 >= len(self._api_keys):
            logger.warning(
                "all_keys_exhausted", pool=self.name, key_count=len(self._api_keys)
            )
            return False
        self.current_index += 1
        logger.info(
            "key_rotated",
            pool=self.name,
            key_index=self.current_index + 1,
            key_count=len(self._api_keys),
        )
        return True

    def reset_to_first(self) -> None:
        """Start over from the first key with every slot fresh."""
        self.current_index = 0
        for slot in self.slots:
            slot.is_exhausted = False

    def for_request(self) -> KeyRotationManager[ClientT]:
        """A fresh, reset manager for one top-level request sharing the client cache."""
        return KeyRotationManager(
            self._api_keys,
            self._client_factory,
            name=self.name,
            _clients=self._clients,
        )
