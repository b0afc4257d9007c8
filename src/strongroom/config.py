"""StrongroomConfig — tunables with environment-variable overrides."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from strongroom.fs.versioning import MAX_VERSION_SIZE, MAX_VERSIONS

logger = logging.getLogger(__name__)

ENV_PREFIX = "STRONGROOM_"

DEFAULT_TRASH_RETENTION = timedelta(days=30)
DEFAULT_FLUSH_INTERVAL = 60.0  # seconds
DEFAULT_TOTAL_QUOTA = 10 * 1024 * 1024 * 1024  # 10 GiB
DATA_DIR_NAME = ".strongroom"


def _env_path(key: str) -> Path | None:
    """Resolve an environment-provided path, or None if unset."""
    value = os.environ.get(ENV_PREFIX + key)
    if value:
        return Path(value).expanduser().resolve()
    return None


def _env_number(key: str, default: float, *, minimum: float = 0) -> float:
    """Parse a numeric environment variable, falling back to *default* on bad input."""
    raw = os.environ.get(ENV_PREFIX + key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid value for %s%s: %r. Using default: %s", ENV_PREFIX, key, raw, default)
        return default
    if value != value or value < minimum:  # NaN or below range
        logger.warning("Out-of-range value for %s%s: %r. Using default: %s", ENV_PREFIX, key, raw, default)
        return default
    return value


@dataclass(frozen=True)
class StrongroomConfig:
    """Configuration for a Strongroom instance.

    ``data_dir`` defaults to ``<root>/.strongroom`` when left as None;
    keep it outside the storage root in production so metadata and
    quarantine are not browsable.
    """

    data_dir: Path | None = None
    trash_retention: timedelta = field(default=DEFAULT_TRASH_RETENTION)
    flush_interval: float = DEFAULT_FLUSH_INTERVAL
    max_versions: int = MAX_VERSIONS
    max_version_size: int = MAX_VERSION_SIZE
    total_quota: int = DEFAULT_TOTAL_QUOTA

    def resolve_data_dir(self, root: Path) -> Path:
        if self.data_dir is not None:
            return Path(self.data_dir).expanduser().resolve()
        return root / DATA_DIR_NAME

    @classmethod
    def from_env(cls) -> StrongroomConfig:
        """Build a config from ``STRONGROOM_*`` environment variables.

        Recognised: ``DATA_DIR``, ``TRASH_RETENTION_DAYS``,
        ``FLUSH_INTERVAL_SECONDS``, ``MAX_VERSIONS``,
        ``MAX_VERSION_SIZE_MB``, ``TOTAL_QUOTA_GB``.
        """
        return cls(
            data_dir=_env_path("DATA_DIR"),
            trash_retention=timedelta(
                days=_env_number("TRASH_RETENTION_DAYS", DEFAULT_TRASH_RETENTION.days)
            ),
            flush_interval=_env_number("FLUSH_INTERVAL_SECONDS", DEFAULT_FLUSH_INTERVAL),
            max_versions=int(_env_number("MAX_VERSIONS", MAX_VERSIONS, minimum=1)),
            max_version_size=int(
                _env_number("MAX_VERSION_SIZE_MB", MAX_VERSION_SIZE / (1024 * 1024))
                * 1024
                * 1024
            ),
            total_quota=int(
                _env_number("TOTAL_QUOTA_GB", DEFAULT_TOTAL_QUOTA / (1024 * 1024 * 1024))
                * 1024
                * 1024
                * 1024
            ),
        )
