"""Resolve remote source references to cached local paths."""
from sourcecache.factory import new_remote
from sourcecache.kernel.cache_key import derive_cache_key
from sourcecache.kernel.errors import (
    CachePathConflictError,
    InvalidURLError,
    RemoteSourcesDisabledError,
    RetrievalError,
    SourceCacheError,
    UnsupportedSchemeError,
)
from sourcecache.kernel.remote import Remote
from sourcecache.kernel.source import Source, is_remote, parse

__all__ = [
    "CachePathConflictError",
    "InvalidURLError",
    "Remote",
    "RemoteSourcesDisabledError",
    "RetrievalError",
    "Source",
    "SourceCacheError",
    "UnsupportedSchemeError",
    "derive_cache_key",
    "is_remote",
    "new_remote",
    "parse",
]
