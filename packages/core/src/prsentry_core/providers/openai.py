from __future__ import annotations

import openai

from prsentry_core.models import ProviderConfig
from prsentry_core.providers.base import BaseProvider
from prsentry_core.providers.registry import register_provider


@register_provider("openai")
class OpenAIProvider(BaseProvider):
    MODEL = "gpt-4o"
    TEMPERATURE = 0.2
    BASE_URL: str | None = None

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        # max_retries=0: retries belong to the job scheduler, not the SDK.
        self.client = openai.OpenAI(
            api_key=config.api_key,
            base_url=config.base_url or self.BASE_URL,
            timeout=config.timeout,
            max_retries=0,
        )

    def _is_transport_error(self, exc: Exception) -> bool:
        # APITimeoutError is a subclass of APIConnectionError.
        return isinstance(exc, openai.APIConnectionError) or super()._is_transport_error(exc)

    def _call_api(self, system_prompt: str, user_prompt: str, model: str) -> tuple[str, int]:
        response = self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content if response.choices else ""
        tokens = response.usage.total_tokens if response.usage else 0
        return content or "", tokens
