"""
Parsing of source references into normalized Source descriptors.

Accepted syntax:

    [getter::]scheme://[user@]host/path[@file][?query]

A reference that contains `://` without a forced getter is a "normal"
reference and must use one of the direct schemes (s3, http, https). It names a
single file. Anything carrying a forced getter goes to the generic fetcher,
which may retrieve a whole tree.
"""
import posixpath
from dataclasses import dataclass
from urllib.parse import quote, unquote, urlsplit

from sourcecache.kernel.errors import InvalidURLError, UnsupportedSchemeError

GETTER_SEPARATOR = "::"
SCHEME_SEPARATOR = "://"
# Characters left unescaped when a decoded dir is put back into a URL.
PATH_SAFE = "/@:~!$&'()*+,;="
NORMAL_GETTER = "normal"
NORMAL_PROTOCOLS = ("s3", "http", "https")


@dataclass(frozen=True)
class Source:
    """
    A normalized, immutable view of a source reference.

    `dir` identifies the retrievable unit (repository, bucket prefix, base path)
    and is "" for a root path. `file` is the file of interest inside that unit.
    """
    getter: str
    scheme: str
    user: str
    host: str
    dir: str
    file: str
    raw_query: str  # still percent-encoded, unlike dir and file

    @property
    def is_normal(self) -> bool:
        return self.getter == NORMAL_GETTER

    @property
    def source_dir(self) -> str:
        """`scheme://host/dir`, without user info or query."""
        return f"{self.scheme}://{self.host}{self.dir}"

    def getter_source(self) -> str:
        """
        The string handed to the generic fetcher.

        Unlike source_dir it keeps user info and the raw query, secrets
        included, since the retrieval itself needs them. The decoded dir is
        escaped again so the result is still a valid URL.
        """
        path = quote(self.dir, safe=PATH_SAFE)
        if self.user:
            src = f"{self.scheme}://{self.user}@{self.host}{path}"
        else:
            src = f"{self.scheme}://{self.host}{path}"
        if self.raw_query:
            src = f"{src}?{self.raw_query}"
        return src


def _split_netloc(netloc: str) -> tuple[str, str]:
    user, sep, host = netloc.rpartition("@")
    if not sep:
        return "", netloc
    return user, host


def _split_dir_file(path: str) -> tuple[str, str]:
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    directory = posixpath.dirname(path)
    if directory == "/":
        directory = ""
    return directory, posixpath.basename(path)


def normal_protocol(reference: str) -> str:
    """Return the lowercased scheme of a direct reference, or raise UnsupportedSchemeError."""
    protocol = reference.split(SCHEME_SEPARATOR)[0].lower()
    if protocol not in NORMAL_PROTOCOLS:
        raise UnsupportedSchemeError(reference, protocol)
    return protocol


def parse_normal(reference: str) -> Source:
    normal_protocol(reference)
    try:
        parts = urlsplit(reference)
    except ValueError as exc:
        raise InvalidURLError(f"parse url: {exc}") from exc

    user, host = _split_netloc(parts.netloc)
    directory, file = _split_dir_file(unquote(parts.path))
    return Source(
        getter=NORMAL_GETTER,
        scheme=parts.scheme,
        user=user,
        host=host,
        dir=directory,
        file=file,
        raw_query=parts.query,
    )


def parse(reference: str) -> Source:
    """
    Parse a source reference.

    Raises:
        InvalidURLError: the reference has no scheme (probably a local path)
            or could not be parsed at all.
        UnsupportedSchemeError: a direct reference uses an unsupported scheme.
    """
    getter = ""
    items = reference.split(GETTER_SEPARATOR)
    if len(items) == 2:
        getter, reference = items
    elif len(reference.split(SCHEME_SEPARATOR)) == 2:
        return parse_normal(reference)

    try:
        parts = urlsplit(reference)
    except ValueError as exc:
        raise InvalidURLError(f"parse url: {exc}") from exc

    # A one letter scheme is a Windows drive letter, not a protocol.
    if len(parts.scheme) < 2:
        raise InvalidURLError(
            f"parse url: missing scheme - probably this is a local file path? {reference}"
        )

    user, host = _split_netloc(parts.netloc)
    path = unquote(parts.path)
    path_components = path.split("@")
    if len(path_components) == 2:
        directory, file = path_components
    else:
        directory, file = _split_dir_file(path)

    return Source(
        getter=getter,
        scheme=parts.scheme,
        user=user,
        host=host,
        dir=directory,
        file=file,
        raw_query=parts.query,
    )


def is_remote(reference: str) -> bool:
    try:
        parse(reference)
    except (InvalidURLError, UnsupportedSchemeError):
        return False
    return True
