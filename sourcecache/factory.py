from sourcecache.adapters.filesystem import FileSystem
from sourcecache.adapters.generic import GenericGetter
from sourcecache.adapters.http import HttpGetter
from sourcecache.adapters.s3 import S3Getter
from sourcecache.internal.config import SourceCacheConfig
from sourcecache.kernel.remote import Remote


def new_remote(home: str = "", fs=None, config: SourceCacheConfig | None = None, logger=None) -> Remote:
    """
    Wire a Remote with the default retrieval strategies.

    Raises:
        RemoteSourcesDisabledError: remote sources are disabled by configuration.
    """
    return Remote(
        getter=GenericGetter(),
        s3_getter=S3Getter(),
        http_getter=HttpGetter(),
        fs=fs or FileSystem(),
        home=home,
        config=config,
        logger=logger,
    )
