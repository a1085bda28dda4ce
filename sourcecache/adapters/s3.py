"""
Retrieval from S3.

S3Getter downloads the single object a direct `s3://bucket/key` reference
names. download_prefix copies every object under a key prefix, and serves the
generic fetcher's forced `s3::` references.

Credentials come from the ambient boto3 configuration (environment, shared
config files, instance profiles).
"""
import os
import posixpath
from typing import Any, Callable
from urllib.parse import unquote, urlsplit

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from sourcecache.internal.logging import get_logger
from sourcecache.kernel.errors import RetrievalError

logger = get_logger(__name__)

CHUNK_SIZE = 1024 * 1024
# get_bucket_location reports us-east-1 as no constraint and eu-west-1 by its legacy name.
_LEGACY_REGIONS = {None: "us-east-1", "": "us-east-1", "EU": "eu-west-1"}

ClientFactory = Callable[..., Any]


def parse_s3_url(s3_url: str, require_key: bool = True) -> tuple[str, str]:
    """Split `s3://bucket/key` into (bucket, key), the key percent-decoded."""
    try:
        parsed_url = urlsplit(s3_url)
    except ValueError as exc:
        raise RetrievalError(f"failed to parse S3 URL: {exc}", source=s3_url) from exc

    if parsed_url.scheme != "s3":
        raise RetrievalError("invalid URL scheme (expected 's3')", source=s3_url)

    bucket = parsed_url.netloc
    key = unquote(parsed_url.path).lstrip("/")
    if not bucket or (require_key and not key):
        raise RetrievalError(f"S3 URL must name a bucket and a key: {s3_url}", source=s3_url)
    return bucket, key


def bucket_region(bucket: str, client_factory: ClientFactory = boto3.client) -> str:
    location = client_factory("s3").get_bucket_location(Bucket=bucket).get("LocationConstraint")
    return _LEGACY_REGIONS.get(location, location)


def s3_file_exists(src: str, client_factory: ClientFactory = boto3.client) -> str:
    """
    Resolve the bucket region for `src` and check that the object exists.

    Returns:
        The bucket's region name.
    """
    bucket, key = parse_s3_url(src)
    try:
        region = bucket_region(bucket, client_factory)
        regional_client = client_factory("s3", region_name=region)
        regional_client.head_object(Bucket=bucket, Key=key)
    except (BotoCoreError, ClientError) as exc:
        raise RetrievalError(f"s3 object {src} could not be resolved: {exc}", source=src) from exc
    return region


def _download_object(client, bucket: str, key: str, target_file_path: str) -> None:
    """Stream one object to `target_file_path` through a temporary file."""
    temp_path = f"{target_file_path}.tmp"
    try:
        body = client.get_object(Bucket=bucket, Key=key)["Body"]
        try:
            with open(temp_path, "wb") as f:
                for chunk in iter(lambda: body.read(CHUNK_SIZE), b""):
                    f.write(chunk)
        finally:
            body.close()
        os.replace(temp_path, target_file_path)
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)


def download_prefix(src: str, dst: str, client_factory: ClientFactory | None = None) -> int:
    """
    Copy every object under the key prefix of `src` into `dst`, keeping the
    layout below the prefix.

    Returns:
        The number of objects downloaded.
    """
    client_factory = client_factory or boto3.client
    bucket, prefix = parse_s3_url(src, require_key=False)
    if prefix and not prefix.endswith("/"):
        prefix += "/"
    root = os.path.realpath(dst)

    count = 0
    try:
        client = client_factory("s3", region_name=bucket_region(bucket, client_factory))
        paginator = client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                relative = obj["Key"][len(prefix):]
                # Zero-byte "folder" markers.
                if not relative or relative.endswith("/"):
                    continue
                target = os.path.realpath(os.path.join(root, relative))
                if os.path.commonpath([root, target]) != root:
                    raise RetrievalError(f"s3 key {obj['Key']} escapes {dst}", source=src)

                os.makedirs(os.path.dirname(target), mode=0o700, exist_ok=True)
                _download_object(client, bucket, obj["Key"], target)
                count += 1
    except (BotoCoreError, ClientError) as exc:
        raise RetrievalError(f"downloading {src} failed: {exc}", source=src) from exc
    except OSError as exc:
        raise RetrievalError(f"writing into {dst} failed: {exc}", source=src) from exc

    if count == 0:
        raise RetrievalError(f"no objects found under {src}", source=src)
    logger.debug("Downloaded S3 prefix", bucket=bucket, prefix=prefix, objects=count, target=dst)
    return count


class S3Getter:
    """Downloads `s3://bucket/key` into `dst/<basename of key>`."""

    def __init__(self, client_factory: ClientFactory | None = None):
        self._client_factory = client_factory or boto3.client

    def get(self, wd: str, src: str, dst: str) -> None:
        bucket, key = parse_s3_url(src)
        target_file_path = os.path.join(dst, posixpath.basename(key))

        region = s3_file_exists(src, client_factory=self._client_factory)

        try:
            os.makedirs(dst, mode=0o700, exist_ok=True)
        except OSError as exc:
            raise RetrievalError(f"creating {dst} failed: {exc}", source=src) from exc

        logger.debug("Downloading from S3", bucket=bucket, key=key, region=region, target=target_file_path)

        try:
            client = self._client_factory("s3", region_name=region)
            _download_object(client, bucket, key, target_file_path)
        except (BotoCoreError, ClientError) as exc:
            raise RetrievalError(f"downloading {src} failed: {exc}", source=src) from exc
        except OSError as exc:
            raise RetrievalError(f"writing {target_file_path} failed: {exc}", source=src) from exc
