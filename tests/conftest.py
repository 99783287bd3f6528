"""Pytest configuration and shared fixtures for harmony-engine tests."""

from __future__ import annotations

import os

import pytest

from harmony_engine.cache import MemoryCacheBackend, SnapshotCache

# Provider credentials and overrides from the developer's shell must not leak in
ENV_VARS = (
    "MUSICBRAINZ_CONTACT",
    "SPOTIFY_CLIENT_ID",
    "SPOTIFY_CLIENT_SECRET",
    "TIDAL_CLIENT_ID",
    "TIDAL_CLIENT_SECRET",
    "HARMONY_USER_TOKEN",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove provider credentials and HARMONY_* overrides from the environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("HARMONY_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def snapshot_cache():
    """Snapshot cache over an in-memory backend."""
    return SnapshotCache(MemoryCacheBackend(max_entries=100))
