"""Key -> bytes storage backends (local filesystem or S3)."""
import os
import logging
from pathlib import Path
from typing import List

from ..errors import NotFoundError, InvalidRequestError, UpstreamFailure

# Optional dependency for the S3 backend
try:
    import boto3
    from botocore.exceptions import ClientError, BotoCoreError
    BOTO3_AVAILABLE = True
except ImportError:
    BOTO3_AVAILABLE = False
    boto3 = None

logger = logging.getLogger(__name__)


def validate_key(key: str) -> str:
    """
    Reject keys that could escape the store root.

    Keys are '/'-separated, relative, and contain no empty or '..' segments.
    """
    if not key or key.startswith("/") or "\\" in key:
        raise InvalidRequestError(f"Invalid storage key: {key!r}")
    parts = key.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise InvalidRequestError(f"Invalid storage key: {key!r}")
    return key


class BlobStore:
    """Interface shared by the storage backends."""

    def read(self, key: str) -> bytes:
        raise NotImplementedError

    def write(self, key: str, data: bytes) -> None:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def list(self, prefix: str) -> List[str]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    """Stores each key as a file below ``root_dir``."""

    def __init__(self, root_dir: str):
        self.root = Path(root_dir).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"LocalBlobStore initialized at {self.root}")

    def _path(self, key: str) -> Path:
        path = (self.root / validate_key(key)).resolve()
        # Resolve symlinks too, the file must stay inside the store root
        if self.root not in path.parents:
            raise InvalidRequestError(f"Storage key escapes the store root: {key!r}")
        return path

    def read(self, key: str) -> bytes:
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise NotFoundError(f"No such key: {key}")
        except OSError as e:
            raise UpstreamFailure(f"Could not read {key}: {e}")

    def write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except OSError as e:
            raise UpstreamFailure(f"Could not write {key}: {e}")

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def list(self, prefix: str) -> List[str]:
        keys = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.name.endswith(".tmp"):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise UpstreamFailure(f"Could not delete {key}: {e}")


class S3BlobStore(BlobStore):
    """Stores each key as an object in a single S3 bucket."""

    def __init__(self, bucket: str, region: str = None, client=None):
        if not BOTO3_AVAILABLE:
            raise ImportError("Install boto3 to use the S3 storage backend: pip install 'neyasbook[s3]'")
        if client is None:
            client = boto3.client("s3", region_name=region) if region else boto3.client("s3")
        if not bucket:
            raise ValueError("STORY_BUCKET not set")
        self.bucket = bucket
        self.client = client
        logger.info(f"S3BlobStore initialized for bucket {bucket}")

    def read(self, key: str) -> bytes:
        validate_key(key)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise NotFoundError(f"No such key: {key}")
            raise UpstreamFailure(f"S3 read failed for {key}: {e}")
        except BotoCoreError as e:
            raise UpstreamFailure(f"S3 read failed for {key}: {e}")

    def write(self, key: str, data: bytes) -> None:
        validate_key(key)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as e:
            raise UpstreamFailure(f"S3 write failed for {key}: {e}")

    def exists(self, key: str) -> bool:
        validate_key(key)
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404", "NotFound"):
                return False
            raise UpstreamFailure(f"S3 head failed for {key}: {e}")
        except BotoCoreError as e:
            raise UpstreamFailure(f"S3 head failed for {key}: {e}")

    def list(self, prefix: str) -> List[str]:
        keys = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(item["Key"] for item in page.get("Contents", []))
        except (ClientError, BotoCoreError) as e:
            raise UpstreamFailure(f"S3 list failed for {prefix}: {e}")
        return keys

    def delete(self, key: str) -> None:
        validate_key(key)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise UpstreamFailure(f"S3 delete failed for {key}: {e}")


def create_blob_store(config) -> BlobStore:
    """Build the backend named by ``STORAGE_BACKEND``."""
    backend = (config.get("STORAGE_BACKEND") or "local").lower()
    if backend == "s3":
        return S3BlobStore(config.get("STORY_BUCKET"), region=config.get("AWS_REGION"))
    if backend == "local":
        return LocalBlobStore(config.get("STORAGE_DIR"))
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")
