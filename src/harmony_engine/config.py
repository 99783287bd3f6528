from __future__ import annotations

import os
import tomllib
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, Field

from harmony_engine.rate_limiter import RateLimitStrategy
from harmony_engine.retry import RetryPolicy

_TRUTHY = ("true", "1", "yes")


class RateLimitConfig(BaseModel):
    """Request budget: ``requests`` per ``window_ms``."""

    requests: int = Field(default=1, ge=1)
    window_ms: int = Field(default=1000, gt=0)
    strategy: RateLimitStrategy = Field(default=RateLimitStrategy.FIXED)
    max_wait_ms: int | None = Field(default=None, ge=0)  # None = wait as long as needed


class ProviderCacheConfig(BaseModel):
    ttl_seconds: int = Field(default=86400, ge=0)


class ProviderConfig(BaseModel):
    """Settings shared by every provider."""

    enabled: bool = Field(default=True)
    priority: int = Field(default=0)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    cache: ProviderCacheConfig = Field(default_factory=ProviderCacheConfig)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    timeout_s: float = Field(default=30.0, gt=0)

    def has_credentials(self) -> bool:
        return True


class MusicBrainzConfig(ProviderConfig):
    """MusicBrainz settings (1 req/sec per their rate limiting rules)."""

    priority: int = Field(default=100)
    rate_limit: RateLimitConfig = Field(
        default_factory=lambda: RateLimitConfig(requests=1, window_ms=1000)
    )
    cache: ProviderCacheConfig = Field(
        default_factory=lambda: ProviderCacheConfig(ttl_seconds=86400)
    )

    # User-Agent parts, MusicBrainz asks for a contact URL or email
    app_name: str = Field(default="harmony-engine")
    app_version: str = Field(default="0.1.0")
    contact: str | None = Field(default=None)


class SpotifyConfig(ProviderConfig):
    """Spotify Web API settings (client credentials flow)."""

    priority: int = Field(default=80)
    rate_limit: RateLimitConfig = Field(
        default_factory=lambda: RateLimitConfig(requests=10, window_ms=1000)
    )
    cache: ProviderCacheConfig = Field(default_factory=lambda: ProviderCacheConfig(ttl_seconds=3600))
    retry: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(min_timeout_ms=500, max_timeout_ms=5000)
    )

    # Read from env vars if not provided
    client_id: str | None = Field(default=None)
    client_secret: str | None = Field(default=None)
    market: str | None = Field(default=None)

    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)


class TidalConfig(ProviderConfig):
    """Tidal v2 API settings (client credentials flow)."""

    priority: int = Field(default=75)
    rate_limit: RateLimitConfig = Field(
        default_factory=lambda: RateLimitConfig(requests=10, window_ms=1000)
    )
    cache: ProviderCacheConfig = Field(default_factory=lambda: ProviderCacheConfig(ttl_seconds=3600))
    retry: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(min_timeout_ms=500, max_timeout_ms=5000)
    )

    client_id: str | None = Field(default=None)
    client_secret: str | None = Field(default=None)
    country_code: str = Field(default="US")

    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)


class ProvidersConfig(BaseModel):
    musicbrainz: MusicBrainzConfig = Field(default_factory=MusicBrainzConfig)
    spotify: SpotifyConfig = Field(default_factory=SpotifyConfig)
    tidal: TidalConfig = Field(default_factory=TidalConfig)

    def items(self) -> list[tuple[str, ProviderConfig]]:
        return [(name, getattr(self, name)) for name in type(self).model_fields]


class CacheBackendType(StrEnum):
    """Supported snapshot cache backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"
    NONE = "none"


class CacheConfig(BaseModel):
    """Snapshot cache configuration."""

    backend: CacheBackendType = Field(default=CacheBackendType.MEMORY)
    directory: Path = Field(default=Path(".cache/harmony"))
    ttl_seconds: int = Field(default=86400, ge=0)
    max_entries: int = Field(default=10000, ge=1)  # memory backend only


class LookupConfig(BaseModel):
    """Fan-out behaviour of the lookup coordinator."""

    max_concurrency: int = Field(default=8, ge=1)
    single_flight: bool = Field(default=True)
    default_search_limit: int = Field(default=25, ge=1)
    default_providers: list[str] = Field(default_factory=lambda: ["musicbrainz"])


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="WARNING")  # DEBUG, INFO, WARNING, ERROR
    format: str = Field(default="%(message)s")


class Config(BaseModel):
    """
    Main configuration for harmony-engine.

    Loads from TOML file with optional environment variable overrides.
    """

    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    lookup: LookupConfig = Field(default_factory=LookupConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """
        Load configuration from TOML file with environment variable overrides.

        Environment variables take precedence and follow the pattern:
        HARMONY_<SECTION>_<KEY> (e.g., HARMONY_CACHE_TTL_SECONDS). Provider
        credentials use the provider's own names (SPOTIFY_CLIENT_ID, ...).

        All values are gathered into a single dictionary first, then validated
        by Pydantic to ensure consistent type checking and coercion.
        """
        config_dict: dict[str, object] = {}

        if config_path and config_path.exists():
            config_dict = tomllib.loads(config_path.read_text())

        config_dict = cls._merge_env_overrides(config_dict)
        return cls.model_validate(config_dict)

    @classmethod
    def _merge_env_overrides(cls, config_dict: dict[str, object]) -> dict[str, object]:
        """
        Merge environment variable overrides into config dictionary.

        Returns a new dictionary with env vars applied, ready for Pydantic validation.
        """
        env_prefix = "HARMONY_"

        cache = _section(config_dict, "cache")
        if cache_backend := os.getenv(f"{env_prefix}CACHE_BACKEND"):
            cache["backend"] = cache_backend.lower()
        if cache_dir := os.getenv(f"{env_prefix}CACHE_DIRECTORY"):
            cache["directory"] = cache_dir
        if cache_ttl := os.getenv(f"{env_prefix}CACHE_TTL_SECONDS"):
            cache["ttl_seconds"] = cache_ttl
        if cache_max := os.getenv(f"{env_prefix}CACHE_MAX_ENTRIES"):
            cache["max_entries"] = cache_max

        lookup = _section(config_dict, "lookup")
        if max_concurrency := os.getenv(f"{env_prefix}LOOKUP_MAX_CONCURRENCY"):
            lookup["max_concurrency"] = max_concurrency
        if single_flight := os.getenv(f"{env_prefix}LOOKUP_SINGLE_FLIGHT"):
            lookup["single_flight"] = single_flight.lower() in _TRUTHY
        if search_limit := os.getenv(f"{env_prefix}LOOKUP_DEFAULT_SEARCH_LIMIT"):
            lookup["default_search_limit"] = search_limit

        providers = _section(config_dict, "providers")
        for name in ProvidersConfig.model_fields:
            provider = _section(providers, name)
            key = f"{env_prefix}PROVIDERS_{name.upper()}_"
            if enabled := os.getenv(f"{key}ENABLED"):
                provider["enabled"] = enabled.lower() in _TRUTHY
            if priority := os.getenv(f"{key}PRIORITY"):
                provider["priority"] = priority
            if ttl := os.getenv(f"{key}CACHE_TTL_SECONDS"):
                _section(provider, "cache")["ttl_seconds"] = ttl

        # API credentials from env
        if mb_contact := os.getenv("MUSICBRAINZ_CONTACT"):
            _section(providers, "musicbrainz")["contact"] = mb_contact
        if spotify_id := os.getenv("SPOTIFY_CLIENT_ID"):
            _section(providers, "spotify")["client_id"] = spotify_id
        if spotify_secret := os.getenv("SPOTIFY_CLIENT_SECRET"):
            _section(providers, "spotify")["client_secret"] = spotify_secret
        if tidal_id := os.getenv("TIDAL_CLIENT_ID"):
            _section(providers, "tidal")["client_id"] = tidal_id
        if tidal_secret := os.getenv("TIDAL_CLIENT_SECRET"):
            _section(providers, "tidal")["client_secret"] = tidal_secret

        logging_config = _section(config_dict, "logging")
        if log_level := os.getenv(f"{env_prefix}LOGGING_LEVEL"):
            logging_config["level"] = log_level
        if log_format := os.getenv(f"{env_prefix}LOGGING_FORMAT"):
            logging_config["format"] = log_format

        return config_dict


def _section(parent: dict[str, object], name: str) -> dict[str, object]:
    """Get or create a nested table, replacing a non-table value."""
    section = parent.setdefault(name, {})
    if not isinstance(section, dict):
        section = {}
        parent[name] = section
    return section


## Tests


def test_config_defaults():
    config = Config()
    assert config.cache.backend == CacheBackendType.MEMORY
    assert config.cache.ttl_seconds == 86400
    assert config.lookup.max_concurrency == 8
    assert config.lookup.single_flight is True
    assert config.providers.musicbrainz.priority == 100
    assert config.providers.musicbrainz.rate_limit.requests == 1
    assert config.providers.spotify.priority == 80
    assert config.providers.spotify.retry.min_timeout_ms == 500
    assert config.providers.tidal.country_code == "US"


def test_config_from_dict():
    config = Config.model_validate(
        {
            "cache": {"backend": "sqlite", "directory": "/tmp/cache"},
            "providers": {"spotify": {"client_id": "id", "client_secret": "secret"}},
        }
    )
    assert config.cache.backend == CacheBackendType.SQLITE
    assert config.cache.directory == Path("/tmp/cache")
    assert config.providers.spotify.has_credentials()
    assert not config.providers.tidal.has_credentials()

