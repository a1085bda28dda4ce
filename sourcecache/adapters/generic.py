"""
The generic, multi-protocol retrieval strategy.

Materializes a source string as a directory tree. The protocol is picked from
an optional forced getter prefix (`git::`, `http::`, `https::`, `file::`,
`s3::`) or inferred from the URL:

- git:   `git`/`ssh` schemes, or an http(s) path ending in `.git`.
         Query options: `ref` (branch, tag or commit), `depth`, `sshkey`
         (base64 encoded private key).
- archives: http(s), file or s3 URLs whose path ends in a known archive
         suffix, or that carry `archive=<format>`. `archive=false` disables
         unpacking.
- file:  a local directory or file, relative paths resolved against `wd`.
- s3:    only when forced, with an `s3://bucket/prefix` URL. Every object
         under the prefix is downloaded.
- http:  any other http(s) URL, downloaded as a single file.

A `//subdir` suffix on the path selects a subdirectory of the retrieved tree.

The `hg::`, `gcs::` and `smb::` getters are not available and fail with
RetrievalError.
"""
import base64
import binascii
import os
import posixpath
import re
import shutil
import subprocess
import tarfile
import tempfile
import zipfile
from pathlib import Path
from urllib.parse import parse_qs, unquote, urlencode, urlsplit, urlunsplit

import requests

from sourcecache.adapters.archive import ARCHIVE_FORMATS, ArchiveSecurityError, archive_mode, safe_extract
from sourcecache.adapters.http import DEFAULT_TIMEOUT, download_to
from sourcecache.adapters.s3 import ClientFactory, S3Getter, download_prefix
from sourcecache.internal.logging import get_logger
from sourcecache.kernel.cache_key import redact_query
from sourcecache.kernel.errors import RetrievalError

logger = get_logger(__name__)

FORCED_GETTERS = ("git", "http", "https", "file", "s3")
GIT_SCHEMES = ("git", "ssh")
GIT_QUERY_PARAMS = ("ref", "depth", "sshkey")
_COMMIT_SHA = re.compile(r"^[0-9a-fA-F]{7,40}$")


def split_forced_getter(src: str) -> tuple[str, str]:
    getter, sep, rest = src.partition("::")
    if not sep:
        return "", src
    return getter, rest


def source_dir_subdir(src: str) -> tuple[str, str]:
    """
    Split `scheme://host/path//subdir?query` into (`scheme://host/path?query`, `subdir`).
    """
    stop = src.find("?")
    if stop == -1:
        stop = len(src)

    offset = src.find("://", 0, stop)
    offset = offset + 3 if offset > -1 else 0

    idx = src.find("//", offset, stop)
    if idx == -1:
        return src, ""

    subdir = src[idx + 2:]
    src = src[:idx]
    query_idx = subdir.find("?")
    if query_idx > -1:
        src += subdir[query_idx:]
        subdir = subdir[:query_idx]
    return src, subdir


def display_source(src: str) -> str:
    """`src` with any secret query parameter masked, safe for logs and errors."""
    base, sep, query = src.partition("?")
    if not sep:
        return src
    return f"{base}?{redact_query(query)}"


def _first(query: dict, name: str) -> str:
    values = query.get(name)
    return values[0] if values else ""


def _without(query: dict, names) -> str:
    return urlencode([(k, v) for k, vs in query.items() if k not in names for v in vs])


class GenericGetter:
    """Retrieves git repositories, archives, local trees and plain files into a directory."""

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        s3_client_factory: ClientFactory | None = None,
    ):
        self._session = session or requests.Session()
        self._timeout = timeout
        self._s3_client_factory = s3_client_factory

    def get(self, wd: str, src: str, dst: str) -> None:
        forced, url = split_forced_getter(src)
        url, subdir = source_dir_subdir(url)
        parts = urlsplit(url)
        query = parse_qs(parts.query, keep_blank_values=True)

        kind = self._detect(forced, parts, query, src)
        logger.debug("Generic get", kind=kind, src=display_source(src), subdir=subdir, dst=dst)

        try:
            if kind == "git":
                self._get_git(parts, query, subdir, dst)
            elif kind == "file":
                self._get_file(wd, parts, query, subdir, dst)
            elif kind == "s3":
                self._get_s3(wd, parts, query, subdir, dst)
            else:
                self._get_http(parts, query, subdir, dst)
        except RetrievalError:
            raise
        except (ArchiveSecurityError, tarfile.TarError, zipfile.BadZipFile, ValueError, OSError) as exc:
            raise RetrievalError(f"get: {exc}", source=display_source(src)) from exc

    def _detect(self, forced: str, parts, query: dict, src: str) -> str:
        if forced:
            if forced not in FORCED_GETTERS:
                raise RetrievalError(f"get: unsupported getter {forced!r}", source=display_source(src))
            return "http" if forced == "https" else forced

        scheme = parts.scheme.lower()
        if scheme in GIT_SCHEMES:
            return "git"
        if scheme in ("http", "https"):
            if parts.path.endswith(".git") and not _first(query, "archive"):
                return "git"
            return "http"
        if scheme == "file":
            return "file"
        raise RetrievalError(f"get: no getter available for scheme {scheme!r}", source=display_source(src))

    # -----------------------------------------------------------------
    # Git
    # -----------------------------------------------------------------

    def _get_git(self, parts, query: dict, subdir: str, dst: str) -> None:
        ref = _first(query, "ref")
        depth = _first(query, "depth") or "1"
        sshkey = _first(query, "sshkey")
        url = urlunsplit((parts.scheme, parts.netloc, parts.path, _without(query, GIT_QUERY_PARAMS), ""))

        with tempfile.TemporaryDirectory() as tmp:
            env = os.environ.copy()
            if sshkey:
                env["GIT_SSH_COMMAND"] = f"ssh -i {self._write_ssh_key(sshkey, tmp)} -o IdentitiesOnly=yes"

            checkout = os.path.join(tmp, "checkout")
            if ref and _COMMIT_SHA.match(ref):
                self._run_git(["git", "clone", "--", url, checkout], env)
                self._run_git(["git", "-C", checkout, "checkout", "--quiet", ref], env)
            else:
                cmd = ["git", "clone", "--depth", depth]
                if ref:
                    cmd += ["--branch", ref]
                self._run_git(cmd + ["--", url, checkout], env)

            self._install_tree(Path(checkout), subdir, dst)

    def _write_ssh_key(self, encoded: str, directory: str) -> str:
        try:
            key = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise RetrievalError(f"sshkey must be base64 encoded: {exc}") from exc
        key_path = os.path.join(directory, "ssh_key")
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key)
        return key_path

    def _run_git(self, cmd: list[str], env: dict) -> None:
        logger.debug("Running git", cmd=" ".join(cmd[:-2] if "--" in cmd else cmd))
        try:
            res = subprocess.run(cmd, capture_output=True, text=True, check=False, env=env)
        except FileNotFoundError as exc:
            raise RetrievalError("git executable not found on PATH") from exc

        if res.returncode != 0:
            raise RetrievalError(f"git {cmd[1]} failed: {res.stderr.strip()}")

    # -----------------------------------------------------------------
    # Local files
    # -----------------------------------------------------------------

    def _get_file(self, wd: str, parts, query: dict, subdir: str, dst: str) -> None:
        if parts.netloc not in ("", "localhost"):
            raise RetrievalError(f"get: file URLs on remote hosts are not supported: {parts.netloc}")
        path = unquote(parts.path)
        if not os.path.isabs(path):
            path = os.path.join(wd, path)
        if not os.path.exists(path):
            raise RetrievalError(f"get: local source {path} does not exist", source=path)

        mode = self._archive_mode(path, query)
        if mode is not None:
            self._install_archive(Path(path), mode, subdir, dst)
        elif os.path.isdir(path):
            self._install_tree(Path(path), subdir, dst)
        else:
            os.makedirs(dst, exist_ok=True)
            shutil.copy2(path, os.path.join(dst, os.path.basename(path)))

    # -----------------------------------------------------------------
    # HTTP
    # -----------------------------------------------------------------

    def _get_http(self, parts, query: dict, subdir: str, dst: str) -> None:
        url = urlunsplit((parts.scheme, parts.netloc, parts.path, _without(query, ("archive",)), ""))
        file = unquote(posixpath.basename(parts.path))
        mode = self._archive_mode(parts.path, query)

        if mode is None:
            if not file:
                raise RetrievalError(f"get: {url} does not name a file", source=url)
            os.makedirs(dst, exist_ok=True)
            download_to(url, os.path.join(dst, file), session=self._session, timeout=self._timeout)
            return

        with tempfile.TemporaryDirectory() as tmp:
            archive_path = Path(tmp) / (file or "archive")
            download_to(url, str(archive_path), session=self._session, timeout=self._timeout)
            self._install_archive(archive_path, mode, subdir, dst)

    # -----------------------------------------------------------------
    # S3
    # -----------------------------------------------------------------

    def _get_s3(self, wd: str, parts, query: dict, subdir: str, dst: str) -> None:
        if parts.scheme.lower() != "s3":
            raise RetrievalError(f"get: the s3 getter needs an s3:// URL, got {parts.scheme}://")
        url = urlunsplit(("s3", parts.netloc, parts.path, "", ""))
        client_factory = self._s3_client_factory
        mode = self._archive_mode(parts.path, query)

        with tempfile.TemporaryDirectory() as tmp:
            if mode is not None:
                S3Getter(client_factory=client_factory).get(wd, url, tmp)
                archive_path = Path(tmp) / unquote(posixpath.basename(parts.path))
                self._install_archive(archive_path, mode, subdir, dst)
            elif subdir:
                tree = os.path.join(tmp, "tree")
                download_prefix(url, tree, client_factory=client_factory)
                self._install_tree(Path(tree), subdir, dst)
            else:
                download_prefix(url, dst, client_factory=client_factory)

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------

    def _archive_mode(self, path: str, query: dict) -> str | None:
        requested = _first(query, "archive")
        if requested == "false":
            return None
        if requested:
            if requested not in ARCHIVE_FORMATS:
                raise RetrievalError(f"get: unsupported archive format {requested!r}")
            return ARCHIVE_FORMATS[requested]
        return archive_mode(path)

    def _install_archive(self, archive_path: Path, mode: str, subdir: str, dst: str) -> None:
        if not subdir:
            safe_extract(archive_path, Path(dst), mode)
            return
        with tempfile.TemporaryDirectory() as tmp:
            safe_extract(archive_path, Path(tmp), mode)
            self._install_tree(Path(tmp), subdir, dst)

    def _install_tree(self, tree: Path, subdir: str, dst: str) -> None:
        root = tree
        if subdir:
            root = (tree / subdir).resolve()
            if not root.is_relative_to(tree.resolve()):
                raise RetrievalError(f"get: subdir {subdir!r} escapes the retrieved tree")
            if not root.is_dir():
                raise RetrievalError(f"get: subdir {subdir!r} not found in the retrieved tree")
        shutil.copytree(root, dst, symlinks=True, dirs_exist_ok=True)
