"""
This module defines the core resolution service of sourcecache.
It turns a source reference into a local path, delegating retrieval to the
Getter ports and answering repeated calls from the on-disk cache.

Cache layout:

    <home>/<cache_dir?>/<cache key>/<file or tree>

Presence on disk is the cache record; nothing here ever evicts an entry.
"""
import os
import shutil
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional, Protocol

from sourcecache.internal.config import SourceCacheConfig, DISABLE_INSECURE_FEATURES_ENV
from sourcecache.internal.logging import get_logger
from sourcecache.internal.paths import cache_dir as default_cache_dir
from sourcecache.kernel.cache_key import derive_cache_key
from sourcecache.kernel.errors import (
    CachePathConflictError,
    InvalidURLError,
    RemoteSourcesDisabledError,
    RetrievalError,
)
from sourcecache.kernel.getters import Getter
from sourcecache.kernel.source import NORMAL_GETTER, Source, parse

GENERIC = "generic"
S3 = "s3"
HTTP = "http"

# (forced getter, scheme) -> strategy. Anything missing goes to GENERIC.
DISPATCH_TABLE = {
    (NORMAL_GETTER, "s3"): S3,
    (NORMAL_GETTER, "http"): HTTP,
    (NORMAL_GETTER, "https"): HTTP,
}


def select_strategy(source: Source) -> str:
    return DISPATCH_TABLE.get((source.getter, source.scheme), GENERIC)


@dataclass
class _PathLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class ExistenceChecker(Protocol):
    def file_exists_at(self, path: str) -> bool: ...

    def directory_exists_at(self, path: str) -> bool: ...


class Remote:
    """
    Locates local paths for remote and local references.

    One instance is meant to be shared across a process so that every call
    reuses the same cache. Concurrent fetches of the same reference within the
    process are serialized by a per-cache-path lock; nothing guards against
    other processes populating the same entry at the same time.
    """

    def __init__(
        self,
        *,
        getter: Getter,
        s3_getter: Getter,
        http_getter: Getter,
        fs: ExistenceChecker,
        home: str = "",
        config: Optional[SourceCacheConfig] = None,
        logger=None,
    ):
        config = config or SourceCacheConfig.from_env()
        if config.disable_insecure_features:
            raise RemoteSourcesDisabledError(
                f"Remote sources are disabled due to '{DISABLE_INSECURE_FEATURES_ENV}'"
            )

        self.home = home or default_cache_dir(config)
        self.getter = getter
        self.s3_getter = s3_getter
        self.http_getter = http_getter
        self.fs = fs
        self.logger = logger or get_logger(__name__)

        self._locks: dict[str, _PathLock] = {}
        self._locks_guard = threading.Lock()

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def locate(self, url_or_path: str, cache_dir: Optional[str] = None) -> str:
        """
        Return a usable local path for a local path or a remote reference.

        Existing local paths win over any remote interpretation. References
        that do not parse as remote are returned unchanged, leaving the
        "not found" decision to the caller.
        """
        if self.fs.file_exists_at(url_or_path) or self.fs.directory_exists_at(url_or_path):
            return url_or_path
        try:
            return self.fetch(url_or_path, cache_dir=cache_dir)
        except InvalidURLError:
            return url_or_path

    def fetch(self, path: str, cache_dir: Optional[str] = None) -> str:
        """
        Fetch the remote reference `path` into the cache and return the local
        path of the file it names.

        Args:
            path: The remote reference.
            cache_dir: Optional subdirectory of home, shared by callers that
                want to share cached imports.

        Raises:
            InvalidURLError, UnsupportedSchemeError: `path` could not be parsed.
            CachePathConflictError: a plain file sits where the cache directory belongs.
            RetrievalError: the retrieval strategy failed.
        """
        u = parse(path)
        cache_key = derive_cache_key(u)

        self.logger.debug(
            "remote> parsed",
            getter=u.getter,
            scheme=u.scheme,
            has_user=bool(u.user),
            host=u.host,
            dir=u.dir,
            file=u.file,
        )

        # e.g. https_github_com_cloudposse_helmfiles_git.ref=0.40.0
        getter_dst = os.path.join(cache_dir or "", cache_key)
        cache_dir_path = os.path.join(self.home, getter_dst)

        self.logger.debug("remote> cache", home=self.home, getter_dst=getter_dst, cache_dir_path=cache_dir_path)

        # Held across the hit test too, so a half-written entry from another
        # thread is never reported as cached.
        with self._lock_for(cache_dir_path):
            if not self._is_cached(u, getter_dst, cache_dir_path):
                self._retrieve(u, path, cache_dir_path)

        return os.path.join(cache_dir_path, u.file)

    def select_getter(self, source: Source) -> tuple[str, Getter]:
        strategy = select_strategy(source)
        return strategy, {GENERIC: self.getter, S3: self.s3_getter, HTTP: self.http_getter}[strategy]

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _is_cached(self, u: Source, getter_dst: str, cache_dir_path: str) -> bool:
        if self.fs.file_exists_at(cache_dir_path):
            raise CachePathConflictError(getter_dst)

        if u.getter == NORMAL_GETTER and self.fs.file_exists_at(os.path.join(cache_dir_path, u.file)):
            return True
        return self.fs.directory_exists_at(cache_dir_path)

    @contextmanager
    def _lock_for(self, cache_dir_path: str) -> Iterator[None]:
        """Hold the lock of one cache path; the entry is dropped when its last user leaves."""
        with self._locks_guard:
            entry = self._locks.get(cache_dir_path)
            if entry is None:
                entry = self._locks[cache_dir_path] = _PathLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[cache_dir_path]

    def _retrieve(self, u: Source, path: str, cache_dir_path: str) -> None:
        strategy, getter = self.select_getter(u)
        if strategy == GENERIC:
            src = u.getter_source()
            if u.getter:
                src = f"{u.getter}::{src}"
        else:
            # Direct strategies receive the reference exactly as written.
            src = path

        self.logger.debug("remote> downloading", strategy=strategy, source=u.source_dir, dst=cache_dir_path)

        try:
            getter.get(self.home, src, cache_dir_path)
        except Exception as exc:
            cleanup_error = self._cleanup(cache_dir_path)
            if isinstance(exc, RetrievalError):
                if cleanup_error is not None:
                    exc.cleanup_error = cleanup_error
                raise
            raise RetrievalError(f"get: {exc}", source=u.source_dir, cleanup_error=cleanup_error) from exc

    def _cleanup(self, cache_dir_path: str) -> Optional[OSError]:
        """Remove a partially populated cache entry, returning the error if that fails."""
        if not os.path.lexists(cache_dir_path):
            return None
        try:
            if os.path.isdir(cache_dir_path) and not os.path.islink(cache_dir_path):
                shutil.rmtree(cache_dir_path)
            else:
                os.remove(cache_dir_path)
        except OSError as rmerr:
            self.logger.warning("remote> failed to remove partial download", path=cache_dir_path, error=str(rmerr))
            return rmerr
        return None
