"""Language-model client wrapping OpenAI chat completions."""

from __future__ import annotations

from typing import AsyncIterator, Sequence

from openai import AsyncOpenAI

from code_companion.core.errors import ConfigurationError
from code_companion.core.logging import get_logger
from code_companion.models.entities import ConversationMessage

logger = get_logger(__name__)


class LLMClient:
    """Blocking and streaming generation against a chat-completions model."""

    def __init__(self, api_key: str | None, model: str, base_url: str | None = None) -> None:
        self.model = model
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url) if api_key else None

    @property
    def configured(self) -> bool:
        return self._client is not None

    def _require_client(self) -> AsyncOpenAI:
        if self._client is None:
            raise ConfigurationError("LLM API key is not configured. Set CC_OPENAI_API_KEY.")
        return self._client

    async def generate(self, system_prompt: str, user_prompt: str, json_mode: bool = True) -> str:
        client = self._require_client()
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            **kwargs,
        )
        return response.choices[0].message.content or ""

    async def generate_stream(
        self,
        system_prompt: str | None,
        user_prompt: str,
        history: Sequence[ConversationMessage] = (),
    ) -> AsyncIterator[str]:
        client = self._require_client()
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        for turn in history:
            messages.append({"role": "assistant" if turn.role == "model" else "user", "content": turn.content})
        messages.append({"role": "user", "content": user_prompt})
        stream = await client.chat.completions.create(model=self.model, messages=messages, stream=True)
        async for chunk in stream:
            if not chunk.choices:
                continue
            text = chunk.choices[0].delta.content
            if text:
                yield text


__all__ = ["LLMClient"]
