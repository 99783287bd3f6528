"""
Provider abstraction.

A provider wraps one external catalog. Subclasses implement the
underscore-prefixed fetch methods and the response transforms; the public
methods defined here run them through the provider's retry policy, and every
upstream API request takes a token from the provider's rate limiter first.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, ClassVar, Literal, TypeVar

import httpx

from harmony_engine.config import ProviderConfig
from harmony_engine.errors import ConfigError, HttpError, ProviderError, UserAuthNotSupportedError
from harmony_engine.models import (
    HarmonizedArtist,
    HarmonizedRelease,
    HarmonizedTrack,
    HarmonizedUserProfile,
    ProviderInfo,
    ProviderSource,
)
from harmony_engine.rate_limiter import RateLimiter
from harmony_engine.retry import with_retry

T = TypeVar("T")

log = logging.getLogger(__name__)

UrlType = Literal["release", "track", "artist"]

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class ParsedUrl:
    """Entity reference extracted from a provider URL."""

    type: UrlType
    id: str


def parse_retry_after(value: str | None) -> float | None:
    """
    Parse a ``Retry-After`` header into seconds.

    Accepts delta-seconds or an HTTP date. Returns None when absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


class BaseProvider(ABC):
    """
    One external metadata catalog.

    Identity (``name``, ``display_name``, confidence, URL patterns) is fixed
    per class; priority, enabled flag, rate limit and retry policy come from
    the provider's config section.
    """

    name: ClassVar[str]
    display_name: ClassVar[str]
    base_url: ClassVar[str]
    confidence: ClassVar[float] = 1.0
    supports_user_auth: ClassVar[bool] = False
    config_class: ClassVar[type[ProviderConfig]] = ProviderConfig

    # Host check for can_handle_url, then per-entity id patterns for parse_url
    url_host_pattern: ClassVar[re.Pattern[str]]
    url_patterns: ClassVar[dict[UrlType, re.Pattern[str]]] = {}

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        """
        Initialize provider.

        Args:
            config: Provider config section (defaults to ``config_class()``)
            client: Optional shared/injected HTTP client; created and owned otherwise
            sleep: Awaitable sleep used by rate limiting and retry backoff
        """
        self.config = config or self.config_class()
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.config.timeout_s)

        rate_limit = self.config.rate_limit
        self.rate_limiter = RateLimiter(
            self.name,
            rate_limit.requests,
            rate_limit.window_ms,
            strategy=rate_limit.strategy,
            max_wait_ms=rate_limit.max_wait_ms,
            sleep=sleep,
        )
        self.retry_policy = self.config.retry

    @property
    def priority(self) -> int:
        return self.config.priority

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def cache_ttl_seconds(self) -> int:
        return self.config.cache.ttl_seconds

    def info(self) -> ProviderInfo:
        return ProviderInfo(
            name=self.name,
            display_name=self.display_name,
            priority=self.priority,
            enabled=self.enabled,
            supports_user_auth=self.supports_user_auth,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} priority={self.priority} enabled={self.enabled}>"

    # URL handling

    def can_handle_url(self, url: str) -> bool:
        return bool(self.url_host_pattern.search(url))

    def parse_url(self, url: str) -> ParsedUrl | None:
        """Extract the entity type and id from a provider URL, or None."""
        if not self.can_handle_url(url):
            return None
        for url_type, pattern in self.url_patterns.items():
            if match := pattern.search(url):
                return ParsedUrl(type=url_type, id=match.group(1))
        return None

    # Public operations: retry + rate limiting around the fetch methods

    async def lookup_by_gtin(self, gtin: str) -> HarmonizedRelease | None:
        return await self._call("lookup_by_gtin", lambda: self._lookup_by_gtin(gtin))

    async def lookup_by_isrc(self, isrc: str) -> HarmonizedTrack | None:
        return await self._call("lookup_by_isrc", lambda: self._lookup_by_isrc(isrc))

    async def lookup_by_url(self, url: str) -> HarmonizedRelease | None:
        return await self._call("lookup_by_url", lambda: self._lookup_by_url(url))

    async def lookup_release_by_id(self, release_id: str) -> HarmonizedRelease | None:
        return await self._call(
            "lookup_release_by_id", lambda: self._lookup_release_by_id(release_id)
        )

    async def lookup_artist_by_id(self, artist_id: str) -> HarmonizedArtist | None:
        return await self._call("lookup_artist_by_id", lambda: self._lookup_artist_by_id(artist_id))

    async def lookup_artist_by_url(self, url: str) -> HarmonizedArtist | None:
        parsed = self.parse_url(url)
        if parsed is None or parsed.type != "artist":
            return None
        return await self.lookup_artist_by_id(parsed.id)

    async def search(self, query: str, limit: int = 25) -> list[HarmonizedRelease]:
        return await self._call("search", lambda: self._search_releases(query, limit))

    async def search_tracks(self, query: str, limit: int = 25) -> list[HarmonizedTrack]:
        return await self._call("search_tracks", lambda: self._search_tracks(query, limit))

    async def search_artists(self, query: str, limit: int = 25) -> list[HarmonizedArtist]:
        return await self._call("search_artists", lambda: self._search_artists(query, limit))

    async def get_current_user(self, access_token: str) -> HarmonizedUserProfile:
        """
        Profile of the account owning a user OAuth token.

        Raises:
            UserAuthNotSupportedError: If the provider has no user-authenticated API
        """
        if not self.supports_user_auth:
            raise UserAuthNotSupportedError(self.name)
        return await self._call("get_current_user", lambda: self._get_current_user(access_token))

    # Fetch methods implemented by subclasses

    @abstractmethod
    async def _lookup_by_gtin(self, gtin: str) -> HarmonizedRelease | None: ...

    @abstractmethod
    async def _lookup_by_isrc(self, isrc: str) -> HarmonizedTrack | None: ...

    @abstractmethod
    async def _lookup_release_by_id(self, release_id: str) -> HarmonizedRelease | None: ...

    @abstractmethod
    async def _lookup_artist_by_id(self, artist_id: str) -> HarmonizedArtist | None: ...

    @abstractmethod
    async def _search_releases(self, query: str, limit: int) -> list[HarmonizedRelease]: ...

    @abstractmethod
    async def _search_tracks(self, query: str, limit: int) -> list[HarmonizedTrack]: ...

    @abstractmethod
    async def _search_artists(self, query: str, limit: int) -> list[HarmonizedArtist]: ...

    async def _lookup_by_url(self, url: str) -> HarmonizedRelease | None:
        parsed = self.parse_url(url)
        if parsed is None or parsed.type != "release":
            return None
        return await self._lookup_release_by_id(parsed.id)

    async def _get_current_user(self, access_token: str) -> HarmonizedUserProfile:
        raise UserAuthNotSupportedError(self.name)

    # HTTP plumbing

    async def _call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(
            fn,
            self.retry_policy,
            label=f"{self.name}.{operation}",
            logger=log,
            sleep=self._sleep,
        )

    def default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def _auth_headers(self) -> dict[str, str]:
        return {}

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
        throttle: bool = True,
    ) -> httpx.Response:
        """Issue one request, translating transport failures into ProviderError."""
        if throttle:
            await self.rate_limiter.acquire()
        log.debug(f"[{self.name}] {method} {url} params={params}")
        try:
            return await self._client.request(method, url, params=params, headers=headers, data=data)
        except httpx.TransportError as e:
            raise ProviderError(f"{self.display_name} request failed: {e}", self.name, cause=e) from e

    async def _get_json(
        self,
        path: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any | None:
        """
        GET a JSON document from the provider API.

        Args:
            path: Path relative to ``base_url``, or an absolute URL
            params: Query parameters
            headers: Extra headers (auth headers are added automatically)

        Returns:
            Decoded JSON, or None for HTTP 404

        Raises:
            HttpError: For any other non-success status
            ProviderError: On transport failure or an undecodable body
        """
        url = path if path.startswith(("http://", "https://")) else f"{self.base_url}/{path.lstrip('/')}"
        request_headers = {**self.default_headers(), **await self._auth_headers(), **(headers or {})}
        response = await self._send("GET", url, params=params, headers=request_headers)
        return self._decode(response)

    def _decode(self, response: httpx.Response) -> Any | None:
        if response.status_code == 404:
            return None
        if not response.is_success:
            if response.status_code == 401:
                self._on_unauthorized()
            raise HttpError(
                f"{self.display_name} API error: {response.status_code}",
                response.status_code,
                self.name,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"{self.display_name} returned invalid JSON", self.name, cause=e) from e

    def _on_unauthorized(self) -> None:
        """Hook for providers holding cached credentials that a 401 invalidates."""

    def create_source(self, source_id: str, url: str | None = None) -> ProviderSource:
        return ProviderSource(provider=self.name, id=source_id, url=url)

    async def aclose(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            await self._client.aclose()


class ClientCredentialsProvider(BaseProvider):
    """
    Provider authenticated with the OAuth2 client credentials flow.

    The app token is cached until 60 seconds before it expires and dropped
    when the API answers 401.
    """

    token_url: ClassVar[str]

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        super().__init__(config, client=client, sleep=sleep)
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()

    @property
    def client_id(self) -> str | None:
        return getattr(self.config, "client_id", None)

    @property
    def client_secret(self) -> str | None:
        return getattr(self.config, "client_secret", None)

    async def _auth_headers(self) -> dict[str, str]:
        token = await self._get_access_token()
        return {"Authorization": f"Bearer {token}"}

    async def _get_access_token(self) -> str:
        """
        Get access token using client credentials flow.

        Caches token until expiration.
        """
        async with self._token_lock:
            # Return cached token if still valid
            if self._access_token and time.time() < self._token_expires_at:
                return self._access_token

            if not self.client_id or not self.client_secret:
                raise ConfigError(
                    f"{self.display_name} client_id and client_secret required", self.name
                )

            credentials = f"{self.client_id}:{self.client_secret}"
            b64_credentials = base64.b64encode(credentials.encode()).decode()

            response = await self._send(
                "POST",
                self.token_url,
                headers={
                    "Authorization": f"Basic {b64_credentials}",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={"grant_type": "client_credentials"},
                throttle=False,
            )
            if not response.is_success:
                raise HttpError(
                    f"Failed to obtain {self.display_name} access token: {response.status_code}",
                    response.status_code,
                    self.name,
                    retry_after=parse_retry_after(response.headers.get("Retry-After")),
                )

            data = response.json()
            token = data["access_token"]
            self._access_token = token
            expires_in = data.get("expires_in", 3600)
            self._token_expires_at = time.time() + expires_in - 60  # 60s buffer
            log.debug(f"[{self.name}] obtained access token, expires in {expires_in}s")

            return token

    def _on_unauthorized(self) -> None:
        self._access_token = None
        self._token_expires_at = 0.0
