"""
A retrieval strategy that downloads a single file over HTTP(S).
"""
import os
import posixpath
from urllib.parse import urlsplit

import requests

from sourcecache.internal.logging import get_logger
from sourcecache.kernel.errors import RetrievalError

logger = get_logger(__name__)

CHUNK_SIZE = 1024 * 1024
DEFAULT_TIMEOUT = 60


def http_file_exists(src: str, session: requests.Session | None = None, timeout: float = DEFAULT_TIMEOUT) -> None:
    """
    Issue a HEAD request for `src`.

    Raises:
        RetrievalError: on transport failure or a non-success status.
    """
    session = session or requests.Session()
    try:
        response = session.head(src, allow_redirects=True, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as exc:
        raise RetrievalError(f"HEAD {src} failed: {exc}", source=src) from exc


def download_to(
    src: str,
    target_path: str,
    session: requests.Session | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> None:
    """
    Stream the body of GET `src` into `target_path`.

    The body is written to a ".tmp" sibling and only renamed once complete.
    """
    session = session or requests.Session()
    temp_path = f"{target_path}.tmp"
    try:
        with session.get(src, stream=True, timeout=timeout) as r:
            r.raise_for_status()
            with open(temp_path, "wb") as f:
                for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                    f.write(chunk)
        os.replace(temp_path, target_path)
    except requests.exceptions.RequestException as exc:
        raise RetrievalError(f"GET {src} failed: {exc}", source=src) from exc
    except OSError as exc:
        raise RetrievalError(f"writing {target_path} failed: {exc}", source=src) from exc
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)


class HttpGetter:
    """Downloads `src` into `dst/<basename of the URL path>`."""

    def __init__(self, session: requests.Session | None = None, timeout: float = DEFAULT_TIMEOUT):
        self._session = session or requests.Session()
        self._timeout = timeout

    def get(self, wd: str, src: str, dst: str) -> None:
        file = posixpath.basename(urlsplit(src).path)
        if not file:
            raise RetrievalError(f"{src} does not name a file", source=src)
        target_file_path = os.path.join(dst, file)

        http_file_exists(src, session=self._session, timeout=self._timeout)

        try:
            os.makedirs(dst, mode=0o700, exist_ok=True)
        except OSError as exc:
            raise RetrievalError(f"creating {dst} failed: {exc}", source=src) from exc

        logger.debug("Downloading over HTTP", src=src, target=target_file_path)
        download_to(src, target_file_path, session=self._session, timeout=self._timeout)
