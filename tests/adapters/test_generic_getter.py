import base64
import io
import os
import subprocess
import tarfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from sourcecache.adapters.generic import GenericGetter, display_source, source_dir_subdir, split_forced_getter
from sourcecache.kernel.errors import RetrievalError

# --- Helpers ---

def make_tarball(files: dict) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def fake_git(files: dict, returncode: int = 0, stderr: str = ""):
    """A subprocess.run replacement that 'clones' by writing files into the target directory."""
    calls = []

    def run(cmd, **kwargs):
        calls.append((cmd, kwargs))
        if returncode == 0 and cmd[1] == "clone":
            checkout = Path(cmd[-1])
            for name, content in files.items():
                target = checkout / name
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content)
        return subprocess.CompletedProcess(cmd, returncode, stdout="", stderr=stderr)

    run.calls = calls
    return run


@pytest.fixture
def getter():
    return GenericGetter()


# --- Source string helpers ---

@pytest.mark.parametrize("src, expected", [
    ("https://example.com/org/repo.git", ("https://example.com/org/repo.git", "")),
    ("https://example.com/org/repo.git//sub/dir", ("https://example.com/org/repo.git", "sub/dir")),
    ("https://example.com/org/repo.git//sub?ref=v1", ("https://example.com/org/repo.git?ref=v1", "sub")),
    ("https://example.com/a?url=http://x//y", ("https://example.com/a?url=http://x//y", "")),
])
def test_source_dir_subdir(src, expected):
    assert source_dir_subdir(src) == expected


def test_split_forced_getter():
    assert split_forced_getter("git::https://example.com/repo.git") == ("git", "https://example.com/repo.git")
    assert split_forced_getter("https://example.com/repo.git") == ("", "https://example.com/repo.git")


def test_display_source_masks_secret():
    assert display_source("git::ssh://example.com/repo.git?sshkey=c2VjcmV0") == (
        "git::ssh://example.com/repo.git?sshkey=redacted"
    )


# --- Git ---

def test_git_clone_with_ref(getter, tmp_path, mocker):
    run = fake_git({"values.yaml": "a: 1"})
    mocker.patch("sourcecache.adapters.generic.subprocess.run", side_effect=run)
    dst = tmp_path / "dst"

    getter.get(str(tmp_path), "git::https://example.com/org/repo.git?ref=v1.0", str(dst))

    assert (dst / "values.yaml").read_text() == "a: 1"
    cmd = run.calls[0][0]
    assert cmd[:2] == ["git", "clone"]
    assert ["--depth", "1"] == cmd[2:4]
    assert ["--branch", "v1.0"] == cmd[4:6]
    assert "https://example.com/org/repo.git" in cmd


def test_git_clone_selects_subdir(getter, tmp_path, mocker):
    run = fake_git({"charts/app/values.yaml": "sub", "README.md": "root"})
    mocker.patch("sourcecache.adapters.generic.subprocess.run", side_effect=run)
    dst = tmp_path / "dst"

    getter.get(str(tmp_path), "git::https://example.com/org/repo.git//charts/app?ref=main", str(dst))

    assert (dst / "values.yaml").read_text() == "sub"
    assert not (dst / "README.md").exists()


def test_git_inferred_from_dot_git_suffix(getter, tmp_path, mocker):
    run = fake_git({"values.yaml": "a: 1"})
    mocker.patch("sourcecache.adapters.generic.subprocess.run", side_effect=run)

    getter.get(str(tmp_path), "https://example.com/org/repo.git", str(tmp_path / "dst"))

    assert run.calls[0][0][:2] == ["git", "clone"]


def test_git_commit_ref_is_checked_out_after_full_clone(getter, tmp_path, mocker):
    run = fake_git({"values.yaml": "a: 1"})
    mocker.patch("sourcecache.adapters.generic.subprocess.run", side_effect=run)
    sha = "0123456789abcdef0123456789abcdef01234567"

    getter.get(str(tmp_path), f"git::https://example.com/org/repo.git?ref={sha}", str(tmp_path / "dst"))

    clone_cmd, checkout_cmd = run.calls[0][0], run.calls[1][0]
    assert "--depth" not in clone_cmd
    assert checkout_cmd[-1] == sha


def test_git_sshkey_is_passed_through_ssh_command(getter, tmp_path, mocker):
    run = fake_git({"values.yaml": "a: 1"})
    mocker.patch("sourcecache.adapters.generic.subprocess.run", side_effect=run)
    key = base64.b64encode(b"-----BEGIN KEY-----").decode()

    getter.get(str(tmp_path), f"git::ssh://git@example.com/org/repo.git?sshkey={key}", str(tmp_path / "dst"))

    cmd, kwargs = run.calls[0]
    assert "GIT_SSH_COMMAND" in kwargs["env"]
    assert not any(key in part for part in cmd)
    assert "ssh://git@example.com/org/repo.git" in cmd


def test_git_invalid_sshkey(getter, tmp_path):
    with pytest.raises(RetrievalError, match="base64"):
        getter.get(str(tmp_path), "git::ssh://git@example.com/org/repo.git?sshkey=not*base64", str(tmp_path / "dst"))


def test_git_clone_failure_raises(getter, tmp_path, mocker):
    run = fake_git({}, returncode=128, stderr="fatal: repository not found")
    mocker.patch("sourcecache.adapters.generic.subprocess.run", side_effect=run)
    dst = tmp_path / "dst"

    with pytest.raises(RetrievalError, match="repository not found"):
        getter.get(str(tmp_path), "git::https://example.com/org/missing.git", str(dst))
    assert not dst.exists()


def test_git_missing_executable(getter, tmp_path, mocker):
    mocker.patch("sourcecache.adapters.generic.subprocess.run", side_effect=FileNotFoundError("git"))
    with pytest.raises(RetrievalError, match="git executable not found"):
        getter.get(str(tmp_path), "git::https://example.com/org/repo.git", str(tmp_path / "dst"))


def test_missing_subdir_raises(getter, tmp_path, mocker):
    mocker.patch("sourcecache.adapters.generic.subprocess.run", side_effect=fake_git({"values.yaml": "a"}))
    with pytest.raises(RetrievalError, match="not found"):
        getter.get(str(tmp_path), "git::https://example.com/org/repo.git//nope", str(tmp_path / "dst"))


# --- Archives over HTTP ---

def test_http_archive_is_extracted(getter, tmp_path, requests_mock):
    url = "https://example.com/releases/charts.tar.gz"
    requests_mock.get(url, content=make_tarball({"app/values.yaml": "v: 1"}))
    dst = tmp_path / "dst"

    getter.get(str(tmp_path), url, str(dst))

    assert (dst / "app" / "values.yaml").read_text() == "v: 1"


def test_http_archive_with_subdir_and_explicit_format(getter, tmp_path, requests_mock):
    requests_mock.get("https://example.com/download", content=make_tarball({"app/values.yaml": "v: 2"}))
    dst = tmp_path / "dst"

    getter.get(str(tmp_path), "https://example.com/download//app?archive=tar.gz", str(dst))

    assert (dst / "values.yaml").read_text() == "v: 2"
    assert requests_mock.last_request.url == "https://example.com/download"


def test_http_plain_file_is_downloaded(getter, tmp_path, requests_mock):
    requests_mock.get("https://example.com/values.yaml", content=b"plain")
    dst = tmp_path / "dst"

    getter.get(str(tmp_path), "http::https://example.com/values.yaml", str(dst))

    assert (dst / "values.yaml").read_bytes() == b"plain"


def test_corrupt_archive_raises_retrieval_error(getter, tmp_path, requests_mock):
    url = "https://example.com/broken.tar.gz"
    requests_mock.get(url, content=b"not a tarball")
    with pytest.raises(RetrievalError):
        getter.get(str(tmp_path), url, str(tmp_path / "dst"))


# --- Local files ---

def test_file_directory_is_copied_relative_to_working_dir(getter, tmp_path):
    src_dir = tmp_path / "charts"
    (src_dir / "app").mkdir(parents=True)
    (src_dir / "app" / "values.yaml").write_text("local")
    dst = tmp_path / "dst"

    getter.get(str(tmp_path), "file::charts//app", str(dst))

    assert (dst / "values.yaml").read_text() == "local"


def test_file_url_single_file_is_copied(getter, tmp_path):
    source = tmp_path / "values.yaml"
    source.write_text("single")
    dst = tmp_path / "dst"

    getter.get(str(tmp_path), f"file://{source.as_posix()}", str(dst))

    assert (dst / "values.yaml").read_text() == "single"


def test_file_missing_source(getter, tmp_path):
    with pytest.raises(RetrievalError, match="does not exist"):
        getter.get(str(tmp_path), "file::missing", str(tmp_path / "dst"))


# --- S3 ---

def s3_client_with(objects: dict) -> MagicMock:
    client = MagicMock()
    client.get_bucket_location.return_value = {"LocationConstraint": "eu-central-1"}
    client.get_paginator.return_value.paginate.return_value = [
        {"Contents": [{"Key": key} for key in objects]},
    ]
    client.get_object.side_effect = lambda Bucket, Key: {"Body": io.BytesIO(objects[Key])}
    return client


def test_forced_s3_downloads_every_object_under_prefix(tmp_path):
    client = s3_client_with({
        "charts/": b"",
        "charts/values.yaml": b"a: 1",
        "charts/app/values.yaml": b"b: 2",
    })
    getter = GenericGetter(s3_client_factory=MagicMock(return_value=client))
    dst = tmp_path / "dst"

    getter.get(str(tmp_path), "s3::s3://my-bucket/charts", str(dst))

    assert (dst / "values.yaml").read_bytes() == b"a: 1"
    assert (dst / "app" / "values.yaml").read_bytes() == b"b: 2"
    client.get_paginator.return_value.paginate.assert_called_once_with(Bucket="my-bucket", Prefix="charts/")


def test_forced_s3_selects_subdir(tmp_path):
    client = s3_client_with({"charts/app/values.yaml": b"sub", "charts/README.md": b"root"})
    getter = GenericGetter(s3_client_factory=MagicMock(return_value=client))
    dst = tmp_path / "dst"

    getter.get(str(tmp_path), "s3::s3://my-bucket/charts//app", str(dst))

    assert (dst / "values.yaml").read_bytes() == b"sub"
    assert not (dst / "README.md").exists()


def test_forced_s3_archive_is_extracted(tmp_path):
    client = s3_client_with({"releases/charts.tar.gz": make_tarball({"app/values.yaml": "v: 3"})})
    getter = GenericGetter(s3_client_factory=MagicMock(return_value=client))
    dst = tmp_path / "dst"

    getter.get(str(tmp_path), "s3::s3://my-bucket/releases/charts.tar.gz", str(dst))

    assert (dst / "app" / "values.yaml").read_text() == "v: 3"
    client.head_object.assert_called_once_with(Bucket="my-bucket", Key="releases/charts.tar.gz")


def test_forced_s3_empty_prefix_raises(tmp_path):
    getter = GenericGetter(s3_client_factory=MagicMock(return_value=s3_client_with({})))
    with pytest.raises(RetrievalError, match="no objects found"):
        getter.get(str(tmp_path), "s3::s3://my-bucket/missing", str(tmp_path / "dst"))


def test_forced_s3_requires_s3_url(getter, tmp_path):
    with pytest.raises(RetrievalError, match="s3://"):
        getter.get(str(tmp_path), "s3::https://s3.amazonaws.com/my-bucket/charts", str(tmp_path / "dst"))


# --- Unsupported ---

@pytest.mark.parametrize("src", [
    "hg::https://example.com/repo",
    "gcs::https://example.com/bucket/path",
    "smb::smb://host/share/path",
    "ftp://example.com/file.tar.gz",
])
def test_unsupported_sources_raise(getter, tmp_path, src):
    with pytest.raises(RetrievalError):
        getter.get(str(tmp_path), src, str(tmp_path / "dst"))
    assert not os.path.exists(tmp_path / "dst")
