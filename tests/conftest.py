"""Shared fixtures for Strongroom tests."""

from __future__ import annotations

import functools
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from werkzeug.security import generate_password_hash

from strongroom._strongroom_async import StrongroomAsync
from strongroom.config import StrongroomConfig
from strongroom.fs.metadata import MetadataStore
from strongroom.fs.migration import MetadataMigrator
from strongroom.fs.paths import PathResolver
from strongroom.fs.versioning import VersioningService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from pathlib import Path

# Few pbkdf2 rounds for share-password tests.
_fast_hash = functools.partial(generate_password_hash, method="pbkdf2:sha256:1000")


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def fast_hash() -> Callable[[str], str]:
    return _fast_hash


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def root(tmp_path: Path) -> Path:
    """Empty storage root."""
    path = tmp_path / "root"
    path.mkdir()
    return path


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Metadata directory kept outside the storage root."""
    return tmp_path / "data"


@pytest.fixture
def resolver(root: Path) -> PathResolver:
    return PathResolver(root)


@pytest.fixture
def store(data_dir: Path) -> MetadataStore:
    return MetadataStore(data_dir)


@pytest.fixture
def migrator(store: MetadataStore) -> MetadataMigrator:
    return MetadataMigrator(store)


@pytest.fixture
def versioning(
    resolver: PathResolver, store: MetadataStore, data_dir: Path, clock: FakeClock
) -> VersioningService:
    return VersioningService(resolver, store, data_dir / "versions", clock=clock)


@pytest.fixture
def config(data_dir: Path) -> StrongroomConfig:
    return StrongroomConfig(data_dir=data_dir, flush_interval=0)


@pytest.fixture
async def room(
    root: Path, config: StrongroomConfig, clock: FakeClock
) -> AsyncIterator[StrongroomAsync]:
    """Opened StrongroomAsync with a fake clock and fast password hashing."""
    async with StrongroomAsync(root, config=config, clock=clock, hash_password=_fast_hash) as r:
        yield r
