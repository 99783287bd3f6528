"""
Error taxonomy for the harmonization engine.

Callers only ever see these types: provider-specific response shapes and
raw ``httpx`` exceptions are translated inside the providers.
"""

from __future__ import annotations

from collections.abc import Mapping


class HarmonyError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, code: str, provider: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.provider = provider


class ValidationError(HarmonyError):
    """Malformed input (identifier, URL, query). Never reaches a provider."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, "VALIDATION_ERROR")
        self.field = field


class ConfigError(HarmonyError):
    """Invalid or incomplete provider configuration."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message, "CONFIG_ERROR", provider)


class HttpError(HarmonyError):
    """Non-success HTTP response from a provider API."""

    def __init__(
        self,
        message: str,
        status: int,
        provider: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, f"HTTP_{status}", provider)
        self.status = status
        self.retry_after = retry_after


class ProviderError(HarmonyError):
    """Provider failure that carries no HTTP status (transport, bad payload)."""

    def __init__(self, message: str, provider: str, cause: BaseException | None = None):
        super().__init__(message, "PROVIDER_ERROR", provider)
        self.cause = cause


class RateLimitExceeded(HarmonyError):
    """Rate-limit budget exhausted and the configured maximum wait would be exceeded."""

    def __init__(self, provider: str, retry_after: float | None = None):
        super().__init__(f"Rate limit exceeded for {provider}", "RATE_LIMITED", provider)
        self.retry_after = retry_after


class ProviderNotFoundError(HarmonyError):
    """No configured (or enabled) provider matches the request."""

    def __init__(self, provider: str):
        super().__init__(f"Provider not found: {provider}", "PROVIDER_NOT_FOUND")


class UserAuthNotSupportedError(HarmonyError):
    """Provider has no user-authenticated API."""

    def __init__(self, provider: str):
        super().__init__(
            f"User authentication is not supported by {provider}",
            "USER_AUTH_NOT_SUPPORTED",
            provider,
        )


class MergeError(HarmonyError):
    """Merge invoked without candidates."""

    def __init__(self, message: str):
        super().__init__(message, "MERGE_ERROR")


class NotFoundError(HarmonyError):
    """
    No queried provider returned the entity.

    ``failures`` holds the errors of providers that failed instead of
    answering cleanly (empty when all of them reported not-found).
    """

    def __init__(self, message: str, failures: Mapping[str, BaseException] | None = None):
        super().__init__(message, "NOT_FOUND")
        self.failures: dict[str, BaseException] = dict(failures or {})


class AggregateFailure(HarmonyError):
    """Every queried provider failed with an error."""

    def __init__(self, message: str, failures: Mapping[str, BaseException]):
        super().__init__(message, "ALL_PROVIDERS_FAILED")
        self.failures: dict[str, BaseException] = dict(failures)

    def __str__(self) -> str:
        details = "; ".join(f"{name}: {err}" for name, err in self.failures.items())
        return f"{self.message} ({details})" if details else self.message
