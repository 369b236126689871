"""Provider registry: provider identifier → adapter class.

Backends register themselves with ``@register_provider("name")``. The
pipeline never branches on provider names; it resolves an adapter once per
ProviderConfig through ``create_provider``.
"""

from __future__ import annotations

import importlib
import logging
from typing import Callable

from prsentry_core.models import ProviderConfig
from prsentry_core.providers.base import BaseProvider

logger = logging.getLogger(__name__)

_BUILTIN_MODULES = (
    "prsentry_core.providers.openai",
    "prsentry_core.providers.deepseek",
    "prsentry_core.providers.anthropic",
)

_REGISTRY: dict[str, type[BaseProvider]] = {}


def register_provider(name: str) -> Callable[[type[BaseProvider]], type[BaseProvider]]:
    def decorator(cls: type[BaseProvider]) -> type[BaseProvider]:
        _REGISTRY[name] = cls
        return cls

    return decorator


def _load_builtins() -> None:
    for module in _BUILTIN_MODULES:
        importlib.import_module(module)


def available_providers() -> list[str]:
    _load_builtins()
    return sorted(_REGISTRY)


def create_provider(config: ProviderConfig) -> BaseProvider:
    _load_builtins()
    cls = _REGISTRY.get(config.provider)
    if cls is None:
        raise ValueError(
            f"Unknown provider: {config.provider!r}. Choose one of: {', '.join(sorted(_REGISTRY))}."
        )
    return cls(config)


def build_providers(config: dict) -> dict[str, BaseProvider]:
    """Instantiate every registered provider that has an API key configured."""
    providers: dict[str, BaseProvider] = {}
    api_keys = config.get("api_keys") or {}
    timeout = (config.get("timeouts") or {}).get("review", 120.0)
    for name in available_providers():
        key = api_keys.get(name)
        if not key:
            continue
        model = config.get("model") if name == config.get("provider") else None
        providers[name] = create_provider(ProviderConfig(provider=name, api_key=key, model=model, timeout=timeout))
        logger.debug("Provider %s ready", name)
    return providers
