import os
import sys
from pathlib import Path

from sourcecache.internal.config import SourceCacheConfig

APP_NAME = "sourcecache"

# Relative, hidden directory used when no user cache directory can be found.
FALLBACK_CACHE_DIR = ".sourcecache"


# ---------------------------------------------------------------------
# Base directories
# ---------------------------------------------------------------------

def get_user_cache_dir() -> Path | None:
    """
    Returns the OS user cache directory, or None if it cannot be determined.

    - Windows: %LOCALAPPDATA%
    - macOS: ~/Library/Caches
    - Linux/other: $XDG_CACHE_HOME, else ~/.cache
    """
    if os.name == "nt":  # Windows
        base = os.environ.get("LOCALAPPDATA")
        return Path(base) if base else None

    if sys.platform == "darwin":
        home = os.environ.get("HOME")
        return Path(home) / "Library" / "Caches" if home else None

    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg:
        # XDG Base Directory requires an absolute path.
        return Path(xdg) if os.path.isabs(xdg) else None
    home = os.environ.get("HOME")
    return Path(home) / ".cache" if home else None


def cache_dir(config: SourceCacheConfig | None = None) -> str:
    """
    Returns the directory remote sources are cached in.

    Resolution order: SOURCECACHE_CACHE_HOME, the OS user cache directory
    joined with the application name, then a relative hidden directory.
    """
    if config is None:
        config = SourceCacheConfig.from_env()
    if config.cache_home:
        return config.cache_home

    user_cache = get_user_cache_dir()
    if user_cache is None:
        return FALLBACK_CACHE_DIR
    return str(user_cache / APP_NAME)
