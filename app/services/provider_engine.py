"""
Provider Engine - produces assistant text from provider A or B

Provides:
- Deterministic mock responses (PROVIDER_MODE=mock, the default)
- Live OpenAI-compatible chat completions per provider (PROVIDER_MODE=live)
- A hard timeout per call; timeouts surface as ProviderError(reason="timeout")

The core never retries a failed generation; a failure aborts the turn.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from typing import List, Dict, Optional

from openai import AsyncOpenAI, APIError, APIConnectionError, APITimeoutError

from app.config import settings
from app.core.errors import ProviderError, ProviderNotConfigured
from app.db.models import ChatMode, Provider

logger = logging.getLogger(__name__)

EXPLORATION_PROMPT = "You are a helpful assistant. Be concise and clear."
VERIFIED_PROMPT = (
    "You are a careful assistant. Provide: (1) key claim, (2) reasoning, "
    "(3) uncertainty/assumptions, (4) what would change the conclusion. Keep it concise."
)


@dataclass
class ProviderConfig:
    base_url: str
    api_key: str
    model: str


def get_provider_config(key: Provider) -> Optional[ProviderConfig]:
    """Live config for a provider, or None when any part is missing."""
    prefix = f"provider_{key.value.lower()}"
    base_url = getattr(settings, f"{prefix}_base_url") or ""
    api_key = getattr(settings, f"{prefix}_api_key") or ""
    model = getattr(settings, f"{prefix}_model") or ""
    if not (base_url and api_key and model):
        return None
    return ProviderConfig(base_url=base_url.rstrip("/"), api_key=api_key, model=model)


def system_prompt(mode: ChatMode) -> str:
    return VERIFIED_PROMPT if mode == ChatMode.VERIFIED else EXPLORATION_PROMPT


def max_output_tokens(mode: ChatMode) -> int:
    raw = (
        settings.max_output_tokens_verified
        if mode == ChatMode.VERIFIED
        else settings.max_output_tokens_exploration
    )
    return min(2000, max(300, raw))


def temperature(mode: ChatMode) -> float:
    return 0.2 if mode == ChatMode.VERIFIED else 0.7


def _deterministic_seed(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:8]


def mock_response(key: Provider, user_message: str, mode: ChatMode) -> str:
    seed = _deterministic_seed(f"{key.value}-{mode.value}-{user_message}")
    if key == Provider.A:
        return f"Summary ({seed}): {user_message[:120]}\n\n- Point 1: ...\n- Point 2: ...\n- Next: ..."
    return f"Answer ({seed}): {user_message[:140]}\n\nKey idea: ..."


class ProviderEngine:
    """
    Response generator for the two interchangeable providers.

    ``generate`` is the only suspension point of a chat turn and is always
    bounded by ``timeout_seconds``.
    """

    def __init__(self, mode: Optional[str] = None, timeout_seconds: Optional[float] = None):
        self.mode = (mode or settings.provider_mode or "mock").lower()
        self.timeout_seconds = timeout_seconds or settings.provider_timeout_seconds
        self._clients: Dict[Provider, AsyncOpenAI] = {}

    @property
    def is_live(self) -> bool:
        return self.mode == "live"

    def _client(self, key: Provider, config: ProviderConfig) -> AsyncOpenAI:
        client = self._clients.get(key)
        if client is None:
            client = AsyncOpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                max_retries=0,
                timeout=self.timeout_seconds,
            )
            self._clients[key] = client
        return client

    async def generate(
        self,
        key: Provider,
        messages: List[Dict[str, str]],
        mode: ChatMode,
    ) -> str:
        """
        Generate assistant text for the conversation so far.

        Args:
            key: Provider to ask
            messages: Conversation context, oldest first, role/content dicts
            mode: exploration or verified

        Raises:
            ProviderNotConfigured: live mode without base URL / key / model
            ProviderError: upstream failure, empty answer or timeout
        """
        if not self.is_live:
            user_message = next(
                (m["content"] for m in reversed(messages) if m.get("role") == "user"), ""
            )
            return mock_response(key, user_message, mode)

        config = get_provider_config(key)
        if config is None:
            raise ProviderNotConfigured(f"provider {key.value} has no live configuration")

        try:
            response = await asyncio.wait_for(
                self._client(key, config).chat.completions.create(
                    model=config.model,
                    messages=[{"role": "system", "content": system_prompt(mode)}, *messages],
                    temperature=temperature(mode),
                    max_tokens=max_output_tokens(mode),
                ),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, APITimeoutError) as e:
            logger.warning(f"Provider {key.value} timed out after {self.timeout_seconds}s")
            raise ProviderError(f"provider {key.value} timed out", reason="timeout") from e
        except (APIConnectionError, APIError) as e:
            logger.error(f"Provider {key.value} API error: {e}")
            raise ProviderError(f"provider {key.value}: {e}") from e

        content = ""
        if response.choices:
            content = (response.choices[0].message.content or "").strip()
        if not content:
            raise ProviderError(f"provider {key.value} returned no content")
        return content


# Singleton instance
_provider_engine: Optional[ProviderEngine] = None


def get_provider_engine() -> ProviderEngine:
    """Get the provider engine singleton."""
    global _provider_engine
    if _provider_engine is None:
        _provider_engine = ProviderEngine()
    return _provider_engine
