"""Centralized configuration for sourcecache."""

import os
from dataclasses import dataclass

CACHE_HOME_ENV = "SOURCECACHE_CACHE_HOME"
DISABLE_INSECURE_FEATURES_ENV = "SOURCECACHE_DISABLE_INSECURE_FEATURES"
LOG_LEVEL_ENV = "SOURCECACHE_LOG_LEVEL"

_TRUE_VALUES = ("1", "t", "T", "TRUE", "true", "True")
_FALSE_VALUES = ("0", "f", "F", "FALSE", "false", "False")


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean flag the way Go's strconv.ParseBool does, falling back to `default`."""
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return default


@dataclass(frozen=True)
class SourceCacheConfig:
    """All sourcecache configuration in one place.

    Environment variables (all optional):
        SOURCECACHE_CACHE_HOME:                 Base directory for cached sources.
        SOURCECACHE_DISABLE_INSECURE_FEATURES:  Disable remote sources entirely.
        SOURCECACHE_LOG_LEVEL:                  Logging level. Default "INFO".
    """

    cache_home: str | None = None
    disable_insecure_features: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, *, log_level: str = "INFO") -> "SourceCacheConfig":
        """Build config from environment variables."""
        return cls(
            cache_home=os.environ.get(CACHE_HOME_ENV) or None,
            disable_insecure_features=parse_bool(os.environ.get(DISABLE_INSECURE_FEATURES_ENV)),
            log_level=os.environ.get(LOG_LEVEL_ENV, log_level),
        )
