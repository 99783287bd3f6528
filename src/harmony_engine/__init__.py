__all__ = (
    "__version__",
    "HarmonizationEngine",
    "Config",
    "ProviderRegistry",
    "LookupCoordinator",
    "SnapshotCache",
    # Providers
    "BaseProvider",
    "MusicBrainzProvider",
    "SpotifyProvider",
    "TidalProvider",
    # Entities
    "HarmonizedRelease",
    "HarmonizedTrack",
    "HarmonizedArtist",
    "HarmonizedArtistCredit",
    "HarmonizedUserProfile",
    "ProviderInfo",
    "ProviderSource",
    "PartialDate",
    "ReleaseType",
    # Errors
    "HarmonyError",
    "ValidationError",
    "ProviderError",
    "HttpError",
    "RateLimitExceeded",
    "ProviderNotFoundError",
    "NotFoundError",
    "AggregateFailure",
    # Identifiers
    "is_valid_gtin",
    "normalize_gtin",
    "is_valid_isrc",
    "normalize_isrc",
)

__version__ = "0.1.0"

from harmony_engine.cache import SnapshotCache
from harmony_engine.config import Config
from harmony_engine.coordinator import LookupCoordinator
from harmony_engine.engine import HarmonizationEngine
from harmony_engine.errors import (
    AggregateFailure,
    HarmonyError,
    HttpError,
    NotFoundError,
    ProviderError,
    ProviderNotFoundError,
    RateLimitExceeded,
    ValidationError,
)
from harmony_engine.models import (
    HarmonizedArtist,
    HarmonizedArtistCredit,
    HarmonizedRelease,
    HarmonizedTrack,
    HarmonizedUserProfile,
    PartialDate,
    ProviderInfo,
    ProviderSource,
    ReleaseType,
)
from harmony_engine.providers import (
    BaseProvider,
    MusicBrainzProvider,
    SpotifyProvider,
    TidalProvider,
)
from harmony_engine.registry import ProviderRegistry
from harmony_engine.validation import (
    is_valid_gtin,
    is_valid_isrc,
    normalize_gtin,
    normalize_isrc,
)
