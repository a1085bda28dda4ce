"""
Derivation of cache keys from Source descriptors.

A cache key is a single flat, filesystem-safe token, e.g.

    https://github.com/cloudposse/helmfiles.git?ref=0.40.0
    -> https_github_com_cloudposse_helmfiles_git.ref=0.40.0
"""
import re
from urllib.parse import parse_qs, urlencode

from sourcecache.kernel.source import Source

SECRET_QUERY_PARAM = "sshkey"
REDACTED = "redacted"

# Alternatives are tried in order at each position, so "//" wins over "/".
_UNSAFE = re.compile(r":|//|/|\.")
_REPLACEMENTS = {":": "", "//": "_", "/": "_", ".": "_"}


def sanitize(value: str) -> str:
    return _UNSAFE.sub(lambda m: _REPLACEMENTS[m.group(0)], value)


def redact_query(raw_query: str) -> str:
    """Re-encode a query string with keys sorted and the secret parameter masked."""
    params = parse_qs(raw_query, keep_blank_values=True)
    if SECRET_QUERY_PARAM in params:
        params[SECRET_QUERY_PARAM] = [REDACTED]
    return urlencode(sorted(params.items()), doseq=True)


def _params_key(raw_query: str) -> str:
    return redact_query(raw_query).replace("&", "_")


def derive_cache_key(source: Source) -> str:
    """
    Map a Source to its cache key.

    User info never takes part in the key. The value of the `sshkey` query
    parameter is replaced by a fixed marker, so references differing only in
    that value share a cache entry and no key material lands on disk.
    """
    dir_key = sanitize(source.source_dir)
    if not source.raw_query:
        return dir_key
    return f"{dir_key}.{_params_key(source.raw_query)}"
