import logging
from typing import Dict, List, Optional

from ...domain.errors import UpstreamUnavailable
from ...domain.ports import ChatCompletionPort
from ...infrastructure.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class OpenAIChatCompletion(ChatCompletionPort):
    """Chat completions against any OpenAI-compatible endpoint (Groq by default)."""

    def __init__(self, config: Optional[Settings] = None, client=None) -> None:
        config = config or default_settings
        self._model = config.groq_model
        if client is not None:
            self._client = client
            return
        # Imported here so the rest of the package works without the SDK configured.
        from openai import AsyncOpenAI  # type: ignore

        if not config.groq_api_key:
            raise RuntimeError("GROQ_API_KEY must be set")
        self._client = AsyncOpenAI(api_key=config.groq_api_key, base_url=config.groq_base_url)

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
        model: Optional[str] = None,
    ) -> str:
        from openai import OpenAIError  # type: ignore

        try:
            chat = await self._client.chat.completions.create(
                model=model or self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as exc:
            logger.error("Chat completion failed: %s", exc)
            raise UpstreamUnavailable("The assistant is unavailable right now, please try again") from exc
        if not chat.choices:
            return ""
        return (chat.choices[0].message.content or "").strip()
