"""Maps a configured provider name to a ready provider instance."""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from sona_wallet.config import LLMConfig
from sona_wallet.llm.base import BaseLLMProvider

if TYPE_CHECKING:
    from sona_wallet.config import LLMProviderConfig

logger = logging.getLogger(__name__)

# Imported lazily so a deployment only needs the SDK it actually uses.
_PROVIDER_FACTORIES: dict[str, str] = {
    "anthropic": "sona_wallet.llm.anthropic.AnthropicProvider",
    "openai": "sona_wallet.llm.openai.OpenAIProvider",
}


def _import_provider_class(dotted_path: str) -> type[BaseLLMProvider]:
    module_path, class_name = dotted_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    if not (isinstance(cls, type) and issubclass(cls, BaseLLMProvider)):
        raise TypeError(f"Expected a BaseLLMProvider subclass at '{dotted_path}', got {cls!r}")
    return cls


class LLMRouter:
    """Builds and caches the provider used by the intent classifier.

    Parameters
    ----------
    llm_config:
        The ``llm`` section of the application configuration.
    """

    def __init__(self, llm_config: LLMConfig):
        self._config = llm_config
        self._providers: dict[str, BaseLLMProvider] = {}

    @property
    def is_configured(self) -> bool:
        """True if the default provider has a config block with an API key."""
        block = getattr(self._config, self._config.default_provider, None)
        return block is not None and bool(block.api_key)

    def _get_provider_config(self, provider_name: str) -> "LLMProviderConfig":
        config_block = getattr(self._config, provider_name, None)
        if config_block is None:
            available = [
                attr for attr in ("anthropic", "openai")
                if getattr(self._config, attr, None) is not None
            ]
            raise ValueError(
                f"Provider '{provider_name}' is not configured. "
                f"Available configured providers: {available or 'none'}."
            )
        return config_block

    def get_provider(self, provider_name: str | None = None) -> BaseLLMProvider:
        """Get or create the provider called *provider_name* (default if None).

        Raises
        ------
        ValueError
            If the provider is unknown, not configured, or lacks a key or model.
        """
        name = provider_name or self._config.default_provider
        if name in self._providers:
            return self._providers[name]

        if name not in _PROVIDER_FACTORIES:
            raise ValueError(
                f"Unknown provider '{name}'. "
                f"Supported providers: {sorted(_PROVIDER_FACTORIES)}"
            )

        provider_config = self._get_provider_config(name)
        if not provider_config.api_key:
            raise ValueError(
                f"API key for provider '{name}' is empty. "
                f"Set it in config.yaml or via an environment variable "
                f"(e.g. ${{OPENAI_API_KEY}})."
            )
        if not provider_config.model:
            raise ValueError(f"No model specified for provider '{name}'.")

        provider_cls = _import_provider_class(_PROVIDER_FACTORIES[name])
        provider = provider_cls(
            api_key=provider_config.api_key,
            model=provider_config.model,
            base_url=provider_config.base_url,
            max_tokens=provider_config.max_tokens,
        )
        self._providers[name] = provider
        logger.info(
            "Created %s provider (model=%s, base_url=%s)",
            name,
            provider_config.model,
            provider_config.base_url or "default",
        )
        return provider
