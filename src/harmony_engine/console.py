"""Shared Rich console and output helpers for the harmony CLI.

Command output goes to the console installed by ``set_console`` (stdout);
logging goes to stderr through ``safe_logging.configure_rich_logging``.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.status import Status

_console: Console | None = None


def get_console() -> Console:
    """Return the console installed by the CLI callback.

    Raises:
        RuntimeError: If no console has been installed yet
    """
    if _console is None:
        raise RuntimeError("Console not initialized. Call set_console() first.")
    return _console


def set_console(console: Console) -> None:
    global _console
    _console = console


@contextmanager
def status(message: str, spinner: str = "dots") -> Iterator[Status]:
    """Show a spinner while provider requests are running.

    Nothing is drawn when stdout is not a terminal, so piped JSON output
    stays clean.

    Example:
        with status("Looking up GTIN 00602445790920..."):
            release = asyncio.run(lookup())
    """
    with get_console().status(message, spinner=spinner) as st:
        yield st


def print(*args: Any, **kwargs: Any) -> None:
    get_console().print(*args, **kwargs)


def print_error(message: str) -> None:
    get_console().print(f"[red]Error: {escape(message)}[/red]")


def print_warning(message: str) -> None:
    get_console().print(f"[yellow]Warning: {escape(message)}[/yellow]")


def print_success(message: str) -> None:
    get_console().print(f"[green]{escape(message)}[/green]")


def print_provider_failures(failures: Mapping[str, BaseException]) -> None:
    """List the providers that failed during a lookup, one per line."""
    for name, err in failures.items():
        detail = str(err) or type(err).__name__
        get_console().print(f"  [dim]{escape(name)}:[/dim] {escape(detail)}")
