"""
Provider registry.

Holds the configured provider instances for one configuration generation.
A configuration change builds a new registry rather than mutating this one,
so a lookup that captured a registry keeps a consistent provider set.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

import httpx

from harmony_engine.config import Config
from harmony_engine.models import ProviderInfo
from harmony_engine.providers import PROVIDER_CLASSES, BaseProvider

log = logging.getLogger(__name__)


class ProviderRegistry:
    """Name-indexed set of providers with priority ordering."""

    def __init__(
        self,
        providers: Iterable[BaseProvider] = (),
        default_providers: Iterable[str] = ("musicbrainz",),
    ):
        self._providers: dict[str, BaseProvider] = {}
        self._default_names = list(default_providers)
        for provider in providers:
            self.register(provider)

    @classmethod
    def from_config(
        cls,
        config: Config,
        client: httpx.AsyncClient | None = None,
    ) -> ProviderRegistry:
        """
        Instantiate every configured provider.

        Providers missing required credentials are skipped with a warning.
        Disabled providers are still registered so they can be listed.

        Args:
            config: Loaded configuration
            client: Optional HTTP client shared by all providers
        """
        registry = cls(default_providers=config.lookup.default_providers)
        for name, provider_config in config.providers.items():
            provider_class = PROVIDER_CLASSES.get(name)
            if provider_class is None:
                continue
            if not provider_config.has_credentials():
                if provider_config.enabled:
                    log.warning(f"Skipping provider {name}: credentials not configured")
                continue
            registry.register(provider_class(provider_config, client=client))
        return registry

    def register(self, provider: BaseProvider) -> None:
        """Add a provider, replacing any provider registered under the same name."""
        if provider.name in self._providers:
            log.debug(f"Replacing registered provider {provider.name}")
        self._providers[provider.name] = provider

    def get(self, name: str) -> BaseProvider | None:
        return self._providers.get(name)

    def get_all(self) -> list[BaseProvider]:
        return list(self._providers.values())

    def get_enabled(self) -> list[BaseProvider]:
        """Enabled providers, highest priority first (registration order on ties)."""
        return sorted(
            (p for p in self._providers.values() if p.enabled),
            key=lambda p: p.priority,
            reverse=True,
        )

    def get_defaults(self) -> list[BaseProvider]:
        """Enabled providers named in ``lookup.default_providers``, in priority order."""
        return [p for p in self.get_enabled() if p.name in self._default_names]

    def find_by_url(self, url: str) -> BaseProvider | None:
        """First enabled provider (by priority) that recognizes the URL."""
        for provider in self.get_enabled():
            if provider.can_handle_url(url):
                return provider
        return None

    def info(self) -> list[ProviderInfo]:
        return [p.info() for p in sorted(self._providers.values(), key=lambda p: p.priority, reverse=True)]

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    async def aclose(self) -> None:
        """Close every provider's HTTP client."""
        for provider in self._providers.values():
            await provider.aclose()
