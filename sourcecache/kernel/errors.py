"""
Error taxonomy for source resolution.

Every recoverable failure raised by the kernel derives from SourceCacheError.
RemoteSourcesDisabledError is deliberately outside that hierarchy: it is a
fatal construction-time failure, not something callers should catch and retry.
"""
from typing import Optional


class SourceCacheError(Exception):
    """Base class for all recoverable source resolution errors."""


class InvalidURLError(SourceCacheError):
    """
    The reference is not a parseable remote reference.

    Locate() treats this as "the reference is a local path".
    """


class UnsupportedSchemeError(SourceCacheError):
    """A direct `scheme://` reference uses a scheme other than s3, http or https."""

    def __init__(self, reference: str, scheme: str = ""):
        self.reference = reference
        self.scheme = scheme
        super().__init__(f"failed to parse URL {reference}: unsupported scheme {scheme!r}")


class CachePathConflictError(SourceCacheError):
    """A plain file occupies the path where a cache directory should live."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            f"{path} is not a directory. please remove it so that it can be used for dependency caching"
        )


class RetrievalError(SourceCacheError):
    """
    A retrieval strategy failed to fetch a source.

    If removing the partially populated cache directory failed as well,
    `cleanup_error` holds that second failure.
    """

    def __init__(self, message: str, source: str = "", cleanup_error: Optional[BaseException] = None):
        self.message = message
        self.source = source
        self.cleanup_error = cleanup_error
        super().__init__(message)

    def __str__(self) -> str:
        if self.cleanup_error is None:
            return self.message
        return f"{self.message}; cleanup also failed: {self.cleanup_error}"


class RemoteSourcesDisabledError(RuntimeError):
    """Remote sources were disabled by configuration."""
