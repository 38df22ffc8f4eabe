from __future__ import annotations

import logging
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from ..errors import ProviderError

"""Text-generation provider backed by the OpenAI chat completions API."""

__all__ = [
    "DEFAULT_MODEL",
    "DEFAULT_SYSTEM_PROMPT",
    "OpenAIPitchGenerator",
]

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-5-mini"
DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant that creates personalized, professional pitches "
    "based on the provided template and information. Keep the tone professional "
    "and engaging."
)


class OpenAIPitchGenerator:
    """generate(prompt) -> text. Any API failure surfaces as ProviderError."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = DEFAULT_MODEL,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        temperature: float | None = None,
        timeout_s: float = 60.0,
        client: Any = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self.model = model
        self.system_prompt = system_prompt
        self.temperature = temperature
        self._client = client
        self._timeout_s = timeout_s

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise ProviderError(
                    "OpenAI API key is not configured. Set OPENAI_API_KEY in the environment."
                )
            self._client = AsyncOpenAI(api_key=self._api_key, timeout=self._timeout_s)
        return self._client

    async def generate(self, prompt: str) -> str:
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
        }
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        try:
            response = await client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            logger.warning(f"generation failed: {e}")
            raise ProviderError(f"Failed to generate pitch: {e}") from e
        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise ProviderError("Failed to generate pitch: empty response")
        return content
