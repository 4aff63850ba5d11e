"""Provider registry, switching and cross-provider failover."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..config import KeyStore
from ..exceptions import CellClawError, ConfigurationError, TransportError
from ..models import CompletionRequest, CompletionResponse
from .anthropic import AnthropicProvider
from .base import Provider, ProviderConfig
from .gemini import GeminiProvider
from .openai import OpenAIProvider, OpenRouterProvider

logger = logging.getLogger("cellclaw.providers.manager")

FAILOVER_ORDER = ("gemini", "openai", "anthropic", "openrouter")


@dataclass(frozen=True)
class FailoverEvent:
    """Recorded when a completion was served by a fallback provider."""

    from_provider: str
    to_provider: str
    reason: str


@dataclass(frozen=True)
class ProviderInfo:
    type: str
    display_name: str
    default_model: str
    has_key: bool
    models: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "display_name": self.display_name,
            "default_model": self.default_model,
            "has_key": self.has_key,
            "models": list(self.models),
        }


_CATALOG = {
    "anthropic": (
        "Anthropic (Claude)",
        ("claude-sonnet-4-6", "claude-opus-4-6", "claude-haiku-4-5"),
    ),
    "openai": (
        "OpenAI (GPT)",
        ("gpt-5.2", "gpt-5.2-chat-latest", "gpt-5-mini", "gpt-4.1", "gpt-4.1-mini"),
    ),
    "gemini": (
        "Google (Gemini)",
        ("gemini-2.5-flash", "gemini-2.5-pro", "gemini-3-flash-preview"),
    ),
    "openrouter": (
        "OpenRouter",
        (
            "google/gemini-2.5-flash",
            "google/gemini-2.5-pro",
            "anthropic/claude-sonnet-4.6",
            "openai/gpt-5.2",
        ),
    ),
}


class ProviderManager:
    """Owns one provider instance per vendor and tracks the active one.

    The configured model applies only to the active provider; fallbacks use
    their own default model.

    Example:
        manager = ProviderManager(KeyStore.from_env(), provider_type="openai")
        response = await manager.complete_with_failover(request)
    """

    def __init__(
        self,
        keys: KeyStore,
        provider_type: str = "anthropic",
        model: str = "",
        failover: bool = False,
        providers: Optional[dict[str, Provider]] = None,
        config: Optional[ProviderConfig] = None,
        thinking_budget: int = 0,
    ) -> None:
        self.keys = keys
        self.model = model
        self.failover = failover
        if providers is None:
            providers = {
                "anthropic": AnthropicProvider(config=config, thinking_budget=thinking_budget),
                "openai": OpenAIProvider(config=config),
                "gemini": GeminiProvider(config=config),
                "openrouter": OpenRouterProvider(config=config),
            }
        self._providers = dict(providers)
        if provider_type not in self._providers:
            raise ConfigurationError(f"Unknown provider type: {provider_type}")
        self._active_type = provider_type

    @property
    def active_type(self) -> str:
        return self._active_type

    def provider_types(self) -> list[str]:
        return list(self._providers)

    def get(self, provider_type: str) -> Provider:
        provider = self._providers.get(provider_type)
        if provider is None:
            raise ConfigurationError(f"Unknown provider type: {provider_type}")
        return provider

    def _configure(self, provider_type: str, model: Optional[str] = None) -> Provider:
        provider = self.get(provider_type)
        api_key = self.keys.get_api_key(provider_type)
        if api_key:
            provider.configure(api_key, model or None)
        return provider

    def active_provider(self) -> Provider:
        """The active provider, configured from the key store."""
        return self._configure(self._active_type, self.model)

    def switch(self, provider_type: str, model: Optional[str] = None) -> None:
        """Make another provider active. Takes effect at the next call."""
        if provider_type not in self._providers:
            raise ConfigurationError(f"Unknown provider type: {provider_type}")
        logger.info("Switching provider %s -> %s", self._active_type, provider_type)
        self._active_type = provider_type
        self.model = model or ""

    def has_key(self, provider_type: str) -> bool:
        return self.keys.has_api_key(provider_type)

    def set_api_key(self, provider_type: str, api_key: str) -> None:
        self.get(provider_type)
        self.keys.store_api_key(provider_type, api_key)

    def remove_api_key(self, provider_type: str) -> None:
        self.keys.delete_api_key(provider_type)

    def available_providers(self) -> list[ProviderInfo]:
        infos = []
        for provider_type, provider in self._providers.items():
            display_name, models = _CATALOG.get(provider_type, (provider_type, ()))
            infos.append(
                ProviderInfo(
                    type=provider_type,
                    display_name=display_name,
                    default_model=provider.default_model,
                    has_key=self.keys.has_api_key(provider_type),
                    models=models,
                )
            )
        return infos

    async def complete_with_failover(
        self,
        request: CompletionRequest,
        on_failover: Optional[Callable[[FailoverEvent], None]] = None,
    ) -> CompletionResponse:
        """Complete on the active provider, falling back when enabled.

        Auth failures (401/403) and configuration errors are never failed
        over. Fallbacks without a stored key are skipped. When a fallback
        serves the request, ``on_failover`` receives the event for this call.

        Raises:
            ConfigurationError: Active provider has no key.
            TransportError: Every attempted provider failed.
            ProtocolError: Active provider returned an unusable body and
                failover is disabled.
        """
        active = self._active_type
        try:
            return await self.active_provider().complete(request)
        except ConfigurationError:
            raise
        except CellClawError as e:
            if not self.failover:
                raise
            if isinstance(e, TransportError) and e.is_auth_failure:
                raise
            primary_error = e

        logger.warning("Primary provider '%s' failed: %s", active, primary_error.message)
        errors = [f"{active}: {primary_error.message}"]

        for fallback in FAILOVER_ORDER:
            if fallback == active or fallback not in self._providers:
                continue
            if not self.keys.has_api_key(fallback):
                continue
            provider = self._configure(fallback)
            logger.warning("Failing over from '%s' to '%s'", active, fallback)
            try:
                response = await provider.complete(request)
            except CellClawError as e:
                logger.warning("Failover provider '%s' also failed: %s", fallback, e.message)
                errors.append(f"{fallback}: {e.message}")
                continue
            logger.info("Failover to '%s' succeeded", fallback)
            if on_failover is not None:
                on_failover(FailoverEvent(active, fallback, primary_error.message))
            return response

        raise TransportError(
            "All providers failed. Errors:\n" + "\n".join(errors),
            status_code=primary_error.status_code,
        )
