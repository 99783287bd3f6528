"""CLI for harmony-engine using Typer and Rich.

Look up releases, tracks and artists across MusicBrainz, Spotify and Tidal
and print the harmonized result.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
from pydantic import BaseModel
from rich.markup import escape
from rich.table import Table

from harmony_engine.cache import SnapshotCache
from harmony_engine.config import CacheBackendType, Config
from harmony_engine.console import (
    print as cprint,
)
from harmony_engine.console import (
    print_error,
    print_provider_failures,
    print_success,
    print_warning,
    set_console,
    status,
)
from harmony_engine.engine import HarmonizationEngine
from harmony_engine.errors import HarmonyError, NotFoundError, ProviderNotFoundError
from harmony_engine.models import (
    HarmonizedArtist,
    HarmonizedRelease,
    HarmonizedTrack,
    HarmonizedUserProfile,
    ProviderInfo,
    render_artist_credit,
)
from harmony_engine.safe_logging import configure_rich_logging

T = TypeVar("T")


class OutputFormat(StrEnum):
    """Output format for CLI commands."""

    TEXT = "text"
    JSON = "json"


class SearchType(StrEnum):
    RELEASES = "releases"
    TRACKS = "tracks"
    ARTISTS = "artists"


class ExitCode:
    """Standard exit codes for CLI commands."""

    SUCCESS = 0
    ERROR = 1
    NO_RESULTS = 2


app = typer.Typer(
    name="harmony",
    help="Harmony: music metadata lookup and harmonization across providers",
    no_args_is_help=True,
    add_completion=False,
)

lookup_app = typer.Typer(help="Look up an entity by identifier or URL", no_args_is_help=True)
cache_app = typer.Typer(help="Snapshot cache management commands", no_args_is_help=True)

app.add_typer(lookup_app, name="lookup")
app.add_typer(cache_app, name="cache")


class AppState:
    """Global application state passed between commands."""

    config: Config
    output_format: OutputFormat
    verbose: int


state = AppState()

ProviderOption = Annotated[
    list[str] | None,
    typer.Option("--provider", "-p", help="Provider to query (repeatable, default: all enabled)"),
]
NoCacheOption = Annotated[
    bool, typer.Option("--no-cache", help="Bypass the snapshot cache for this lookup")
]


@app.callback()
def main(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to configuration TOML file", exists=True),
    ] = None,
    output: Annotated[
        OutputFormat,
        typer.Option("--output", "-o", help="Output format"),
    ] = OutputFormat.TEXT,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
    cache_backend: Annotated[
        CacheBackendType | None,
        typer.Option(help="Snapshot cache backend"),
    ] = None,
    cache_dir: Annotated[Path | None, typer.Option(help="Snapshot cache directory")] = None,
    cache_ttl: Annotated[int | None, typer.Option(help="Default cache TTL in seconds")] = None,
) -> None:
    """Harmony: look up music metadata across providers and merge the results."""
    logger = logging.getLogger(__name__)

    # Load config (TOML + env vars)
    cfg = Config.load(config_path)

    # CLI overrides (CLI > Env > Config File > Defaults)
    if cache_backend is not None:
        cfg.cache.backend = cache_backend
    if cache_dir:
        cfg.cache.directory = cache_dir
    if cache_ttl is not None:
        cfg.cache.ttl_seconds = cache_ttl

    if verbose > 0:
        log_level = logging.DEBUG if verbose >= 2 else logging.INFO
    else:
        log_level = getattr(logging, cfg.logging.level.upper(), logging.WARNING)

    console = configure_rich_logging(
        level=log_level,
        show_time=True,
        show_path=False,
        format_string=cfg.logging.format,
    )
    set_console(console)

    # Suppress HTTP client logging unless very verbose (-vvv)
    if verbose < 3:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    if config_path:
        logger.info(f"Loaded config from {config_path}")
    logger.debug(f"Logging configured: level={logging.getLevelName(log_level)}")

    state.config = cfg
    state.output_format = output
    state.verbose = verbose


# ====================================================================
# HELPERS
# ====================================================================


def _create_engine(config: Config) -> HarmonizationEngine:
    return HarmonizationEngine(config)


def _run(operation: Callable[[HarmonizationEngine], Awaitable[T]], message: str) -> T:
    """Run one engine operation on a fresh event loop, mapping errors to exit codes."""

    async def runner() -> T:
        async with _create_engine(state.config) as engine:
            return await operation(engine)

    try:
        with status(message):
            return asyncio.run(runner())
    except NotFoundError as e:
        print_warning(e.message)
        print_provider_failures(e.failures)
        raise typer.Exit(code=ExitCode.NO_RESULTS) from e
    except HarmonyError as e:
        print_error(str(e))
        raise typer.Exit(code=ExitCode.ERROR) from e


def _emit_json(data: Any) -> None:
    # Plain echo keeps the document unwrapped and free of console markup
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    elif isinstance(data, list):
        data = [item.model_dump(mode="json") if isinstance(item, BaseModel) else item for item in data]
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


def format_duration(duration_ms: int | None) -> str:
    """Render milliseconds as ``m:ss``."""
    if not duration_ms:
        return ""
    seconds = round(duration_ms / 1000)
    return f"{seconds // 60}:{seconds % 60:02d}"


def _sources(entity: HarmonizedRelease | HarmonizedTrack | HarmonizedArtist) -> str:
    return ", ".join(f"{s.provider}:{s.id}" for s in entity.sources)


def _show_release(release: HarmonizedRelease) -> None:
    cprint(f"[bold]{escape(release.title)}[/bold]")
    cprint(f"  Artist:    {release.artist_credit}", markup=False)
    if release.gtin:
        cprint(f"  GTIN:      {release.gtin}")
    if release.release_date:
        cprint(f"  Released:  {release.release_date}")
    cprint(f"  Type:      {release.release_type}")
    if release.labels:
        labels = ", ".join(
            f"{label.name} ({label.catalog_number})" if label.catalog_number else label.name
            for label in release.labels
        )
        cprint(f"  Label:     {labels}", markup=False)
    if release.genres:
        cprint(f"  Genres:    {', '.join(release.genres)}", markup=False)
    cprint(f"  Sources:   {_sources(release)}", markup=False)
    cprint(f"  Confidence: {release.confidence:.2f}")

    if release.track_count:
        table = Table(show_header=True, header_style="bold")
        table.add_column("#", justify="right")
        table.add_column("Title")
        table.add_column("Artist")
        table.add_column("ISRC")
        table.add_column("Length", justify="right")
        for medium in release.media:
            for track in medium.tracks:
                position = str(track.position)
                if len(release.media) > 1:
                    position = f"{medium.position}.{track.position}"
                table.add_row(
                    position,
                    escape(track.title),
                    escape(render_artist_credit(track.artists)),
                    track.isrc or "",
                    format_duration(track.duration_ms),
                )
        cprint(table)


def _show_track(track: HarmonizedTrack) -> None:
    cprint(f"[bold]{escape(track.title)}[/bold]")
    cprint(f"  Artist:    {render_artist_credit(track.artists)}", markup=False)
    if track.isrc:
        cprint(f"  ISRC:      {track.isrc}")
    if track.duration_ms:
        cprint(f"  Length:    {format_duration(track.duration_ms)}")
    cprint(f"  Sources:   {_sources(track)}", markup=False)


def _show_artist(artist: HarmonizedArtist) -> None:
    cprint(f"[bold]{escape(artist.name)}[/bold]")
    if artist.type:
        cprint(f"  Type:      {artist.type}")
    if artist.country:
        cprint(f"  Country:   {artist.country}")
    if artist.genres:
        cprint(f"  Genres:    {', '.join(artist.genres)}", markup=False)
    cprint(f"  Sources:   {_sources(artist)}", markup=False)


def _show_user(profile: HarmonizedUserProfile) -> None:
    name = profile.display_name or profile.username or profile.id
    cprint(f"[bold]{escape(name)}[/bold]")
    cprint(f"  Provider:  {profile.provider}")
    cprint(f"  User id:   {profile.id}")
    if profile.country:
        cprint(f"  Country:   {profile.country}")


def _show(entity: Any) -> None:
    if state.output_format == OutputFormat.JSON:
        _emit_json(entity)
    elif isinstance(entity, HarmonizedRelease):
        _show_release(entity)
    elif isinstance(entity, HarmonizedTrack):
        _show_track(entity)
    elif isinstance(entity, HarmonizedArtist):
        _show_artist(entity)
    else:
        _show_user(entity)


def _results_table(results: list[Any], search_type: SearchType) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    if search_type == SearchType.RELEASES:
        table.add_column("Title")
        table.add_column("Artist")
        table.add_column("Date")
        table.add_column("GTIN")
        table.add_column("Sources")
        for i, release in enumerate(results, 1):
            table.add_row(
                str(i),
                escape(release.title),
                escape(release.artist_credit),
                str(release.release_date or ""),
                release.gtin or "",
                ", ".join(s.provider for s in release.sources),
            )
    elif search_type == SearchType.TRACKS:
        table.add_column("Title")
        table.add_column("Artist")
        table.add_column("ISRC")
        table.add_column("Length", justify="right")
        table.add_column("Sources")
        for i, track in enumerate(results, 1):
            table.add_row(
                str(i),
                escape(track.title),
                escape(render_artist_credit(track.artists)),
                track.isrc or "",
                format_duration(track.duration_ms),
                ", ".join(s.provider for s in track.sources),
            )
    else:
        table.add_column("Name")
        table.add_column("Type")
        table.add_column("Country")
        table.add_column("Sources")
        for i, artist in enumerate(results, 1):
            table.add_row(
                str(i),
                escape(artist.name),
                str(artist.type or ""),
                artist.country or "",
                ", ".join(s.provider for s in artist.sources),
            )
    return table


# ====================================================================
# LOOKUP COMMANDS
# ====================================================================


@lookup_app.command("gtin")
def lookup_gtin(
    gtin: Annotated[str, typer.Argument(help="Barcode (UPC/EAN/GTIN-8/12/13/14)")],
    provider: ProviderOption = None,
    no_cache: NoCacheOption = False,
) -> None:
    """Look up a release by barcode.

    Examples:
        harmony lookup gtin 0602445790920
        harmony -o json lookup gtin 0602445790920 -p musicbrainz -p spotify
    """
    release = _run(
        lambda engine: engine.lookup_by_gtin(gtin, provider, bypass_cache=no_cache),
        f"Looking up GTIN {gtin}...",
    )
    _show(release)


@lookup_app.command("isrc")
def lookup_isrc(
    isrc: Annotated[str, typer.Argument(help="ISRC, e.g. GBAYE0601498")],
    provider: ProviderOption = None,
    no_cache: NoCacheOption = False,
) -> None:
    """Look up a recording by ISRC."""
    track = _run(
        lambda engine: engine.lookup_by_isrc(isrc, provider, bypass_cache=no_cache),
        f"Looking up ISRC {isrc}...",
    )
    _show(track)


@lookup_app.command("url")
def lookup_url(
    url: Annotated[str, typer.Argument(help="Provider release URL")],
    provider: ProviderOption = None,
    no_cache: NoCacheOption = False,
) -> None:
    """Resolve a provider release URL and merge in other providers by barcode.

    Examples:
        harmony lookup url https://open.spotify.com/album/4aawyAB9vmqN3uQ7FjRGTy
        harmony lookup url https://musicbrainz.org/release/<mbid>
    """
    release = _run(
        lambda engine: engine.lookup_by_url(url, provider, bypass_cache=no_cache),
        "Resolving URL...",
    )
    _show(release)


@lookup_app.command("artist")
def lookup_artist(
    url: Annotated[str, typer.Argument(help="Provider artist URL")],
    provider: ProviderOption = None,
    no_cache: NoCacheOption = False,
) -> None:
    """Resolve a provider artist URL."""
    artist = _run(
        lambda engine: engine.lookup_artist_by_url(url, provider, bypass_cache=no_cache),
        "Resolving artist URL...",
    )
    _show(artist)


# ====================================================================
# MAIN COMMANDS
# ====================================================================


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search text")],
    search_type: Annotated[
        SearchType, typer.Option("--type", "-t", help="Entity type to search")
    ] = SearchType.RELEASES,
    limit: Annotated[int | None, typer.Option(help="Maximum number of results", min=1)] = None,
    provider: ProviderOption = None,
) -> None:
    """Search providers by free text; results sharing a barcode or ISRC are merged.

    Examples:
        harmony search "OK Computer"
        harmony search "Paranoid Android" --type tracks --limit 5
    """

    async def run_search(engine: HarmonizationEngine) -> list[Any]:
        if search_type == SearchType.TRACKS:
            return await engine.search_tracks(query, provider, limit)
        if search_type == SearchType.ARTISTS:
            return await engine.search_artists(query, provider, limit)
        return await engine.search(query, provider, limit)

    results = _run(run_search, f"Searching {search_type}...")

    if state.output_format == OutputFormat.JSON:
        _emit_json(results)
    elif results:
        cprint(_results_table(results, search_type))

    if not results:
        if state.output_format == OutputFormat.TEXT:
            print_warning(f"No {search_type} found for {query!r}")
        raise typer.Exit(code=ExitCode.NO_RESULTS)


@app.command()
def providers() -> None:
    """List configured providers in priority order."""

    async def list_providers(engine: HarmonizationEngine) -> list[ProviderInfo]:
        return engine.registry.info()

    infos = _run(list_providers, "Loading providers...")

    if state.output_format == OutputFormat.JSON:
        _emit_json(infos)
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Provider")
    table.add_column("Name")
    table.add_column("Priority", justify="right")
    table.add_column("Enabled")
    table.add_column("User auth")
    for info in infos:
        table.add_row(
            info.name,
            info.display_name,
            str(info.priority),
            "yes" if info.enabled else "no",
            "yes" if info.supports_user_auth else "no",
        )
    cprint(table)


@app.command()
def user(
    token: Annotated[
        str,
        typer.Option(envvar="HARMONY_USER_TOKEN", help="User access token for the provider"),
    ],
    provider: Annotated[str, typer.Option("--provider", "-p", help="Provider name")] = "tidal",
) -> None:
    """Show the profile of the user owning an access token."""

    async def fetch(engine: HarmonizationEngine) -> HarmonizedUserProfile:
        target = engine.get_provider(provider)
        if target is None:
            raise ProviderNotFoundError(provider)
        return await target.get_current_user(token)

    profile = _run(fetch, f"Fetching {provider} user profile...")
    _show(profile)


# ====================================================================
# CACHE COMMANDS
# ====================================================================


def _snapshot_cache() -> SnapshotCache:
    cache = SnapshotCache.from_config(state.config.cache)
    if not cache.enabled:
        print_warning("Snapshot cache is disabled (backend = none)")
        raise typer.Exit(code=ExitCode.SUCCESS)
    if state.config.cache.backend == CacheBackendType.MEMORY:
        # A fresh process starts with an empty in-memory cache
        print_warning("Snapshot cache is in-memory (backend = memory); nothing persists between runs")
        raise typer.Exit(code=ExitCode.SUCCESS)
    return cache


@cache_app.command("purge")
def cache_purge() -> None:
    """Remove expired snapshot cache entries."""
    cache = _snapshot_cache()

    async def purge() -> int:
        removed = await cache.purge_expired()
        await cache.aclose()
        return removed

    removed = asyncio.run(purge())
    if state.output_format == OutputFormat.JSON:
        _emit_json({"removed": removed})
    else:
        print_success(f"Purged {removed} expired cache entries")


@cache_app.command("clear")
def cache_clear(
    force: Annotated[bool, typer.Option(help="Skip confirmation prompt")] = False,
) -> None:
    """Delete every snapshot cache entry."""
    if not force:
        typer.confirm("Delete all cached snapshots?", abort=True)
    cache = _snapshot_cache()

    async def clear() -> None:
        await cache.clear()
        await cache.aclose()

    asyncio.run(clear())
    print_success("Snapshot cache cleared")


# ====================================================================
# ENTRY POINT
# ====================================================================


def cli() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()
