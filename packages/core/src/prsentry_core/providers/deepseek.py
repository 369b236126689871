from __future__ import annotations

from prsentry_core.providers.openai import OpenAIProvider
from prsentry_core.providers.registry import register_provider


@register_provider("deepseek")
class DeepSeekProvider(OpenAIProvider):
    """DeepSeek exposes an OpenAI-compatible chat completions endpoint."""

    MODEL = "deepseek-chat"
    BASE_URL = "https://api.deepseek.com"
