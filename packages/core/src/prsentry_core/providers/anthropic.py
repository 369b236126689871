from __future__ import annotations

import anthropic
from anthropic.types import TextBlock

from prsentry_core.models import ProviderConfig
from prsentry_core.providers.base import BaseProvider
from prsentry_core.providers.registry import register_provider


@register_provider("anthropic")
class AnthropicProvider(BaseProvider):
    MODEL = "claude-sonnet-4-20250514"
    TEMPERATURE = 0.3

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self.client = anthropic.Anthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=0,
        )

    def _is_transport_error(self, exc: Exception) -> bool:
        return isinstance(exc, anthropic.APIConnectionError) or super()._is_transport_error(exc)

    def _call_api(self, system_prompt: str, user_prompt: str, model: str) -> tuple[str, int]:
        response = self.client.messages.create(
            model=model,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        usage = response.usage
        tokens = (usage.input_tokens + usage.output_tokens) if usage else 0
        return "".join(text_blocks).strip(), tokens
