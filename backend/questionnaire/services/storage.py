# questionnaire/services/storage.py
"""
Blob storage with local and S3 backends.
Set STORAGE_BACKEND env var to 'local' or 's3' to switch.

Keys are '/'-separated; the first segment acts as a collection name
(files/, responses/, results/).
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from questionnaire.config import Settings, get_settings
from questionnaire.errors import PersistenceError, UpstreamError

logger = logging.getLogger(__name__)

# {"key": str, "size": int, "last_modified": ISO-8601 str}
ObjectInfo = Dict[str, Any]


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class StorageBackend:
    """Abstract storage interface"""

    def write_file(self, key: str, content: bytes) -> str:
        """Write object, return its location"""
        raise NotImplementedError

    def write_text(self, key: str, content: str) -> str:
        return self.write_file(key, content.encode('utf-8'))

    def write_json(self, key: str, data: Any) -> str:
        content = json.dumps(data, ensure_ascii=False, indent=2)
        return self.write_text(key, content)

    def read_file(self, key: str) -> bytes:
        """Read object content; FileNotFoundError when the key is absent"""
        raise NotImplementedError

    def read_text(self, key: str) -> str:
        return self.read_file(key).decode('utf-8')

    def read_json(self, key: str) -> Any:
        return json.loads(self.read_text(key))

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def list_dir(self, prefix: str) -> List[ObjectInfo]:
        """List objects under prefix, skipping zero-byte folder markers"""
        raise NotImplementedError

    def delete_file(self, key: str) -> None:
        """Delete object; FileNotFoundError when the key is absent"""
        raise NotImplementedError


class LocalStorage(StorageBackend):
    """Local filesystem storage. Writes go to a temp file and are renamed into place."""

    def __init__(self, base_dir: str = "data"):
        self.base_dir = Path(base_dir)

    def _full_path(self, key: str) -> Path:
        return self.base_dir / key

    def write_file(self, key: str, content: bytes) -> str:
        full_path = self._full_path(key)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=full_path.parent, prefix=f".{full_path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, 'wb') as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, full_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"could not write {key}: {e}") from e
        return str(full_path)

    def read_file(self, key: str) -> bytes:
        with open(self._full_path(key), 'rb') as f:
            return f.read()

    def exists(self, key: str) -> bool:
        return self._full_path(key).is_file()

    def list_dir(self, prefix: str) -> List[ObjectInfo]:
        full_path = self._full_path(prefix)
        if not full_path.is_dir():
            return []
        items: List[ObjectInfo] = []
        for p in sorted(full_path.iterdir()):
            if not p.is_file() or p.name.startswith("."):
                continue
            stat = p.stat()
            if stat.st_size == 0:
                continue
            items.append({
                "key": f"{prefix.rstrip('/')}/{p.name}",
                "size": stat.st_size,
                "last_modified": _iso(datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)),
            })
        return items

    def delete_file(self, key: str) -> None:
        full_path = self._full_path(key)
        if not full_path.is_file():
            raise FileNotFoundError(key)
        try:
            full_path.unlink()
        except OSError as e:
            raise PersistenceError(f"could not delete {key}: {e}") from e


class S3Storage(StorageBackend):
    """AWS S3 storage backend"""

    def __init__(self, bucket: str, region: str = "ap-southeast-1", client=None):
        self.bucket = bucket
        self.region = region
        self._client = client

    @property
    def client(self):
        """Lazy load boto3 client"""
        if self._client is None:
            import boto3
            self._client = boto3.client('s3', region_name=self.region)
        return self._client

    def _s3_key(self, key: str) -> str:
        return key.replace('\\', '/')

    @staticmethod
    def _is_missing(error) -> bool:
        code = str(error.response.get("Error", {}).get("Code", ""))
        return code in {"404", "NoSuchKey", "NotFound"}

    def write_file(self, key: str, content: bytes) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        s3_key = self._s3_key(key)
        try:
            self.client.put_object(Bucket=self.bucket, Key=s3_key, Body=content)
        except (BotoCoreError, ClientError) as e:
            raise PersistenceError(f"could not write s3://{self.bucket}/{s3_key}: {e}") from e
        return f"s3://{self.bucket}/{s3_key}"

    def read_file(self, key: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError

        s3_key = self._s3_key(key)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=s3_key)
        except ClientError as e:
            if self._is_missing(e):
                raise FileNotFoundError(key) from e
            raise UpstreamError(f"could not read s3://{self.bucket}/{s3_key}: {e}") from e
        except BotoCoreError as e:
            raise UpstreamError(f"could not read s3://{self.bucket}/{s3_key}: {e}") from e
        return response['Body'].read()

    def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self.client.head_object(Bucket=self.bucket, Key=self._s3_key(key))
            return True
        except ClientError as e:
            if self._is_missing(e):
                return False
            raise UpstreamError(f"could not stat s3://{self.bucket}/{key}: {e}") from e

    def list_dir(self, prefix: str) -> List[ObjectInfo]:
        from botocore.exceptions import BotoCoreError, ClientError

        s3_prefix = self._s3_key(prefix).rstrip('/') + '/'
        items: List[ObjectInfo] = []
        try:
            paginator = self.client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket, Prefix=s3_prefix):
                for obj in page.get('Contents', []):
                    # zero-byte objects are console-created folder markers
                    if obj['Key'].endswith('/') or obj.get('Size', 0) == 0:
                        continue
                    items.append({
                        "key": obj['Key'],
                        "size": obj['Size'],
                        "last_modified": _iso(obj['LastModified']),
                    })
        except (BotoCoreError, ClientError) as e:
            raise UpstreamError(f"could not list s3://{self.bucket}/{s3_prefix}: {e}") from e
        return items

    def delete_file(self, key: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        # S3 deletes are idempotent, so check first to report missing keys
        if not self.exists(key):
            raise FileNotFoundError(key)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._s3_key(key))
        except (BotoCoreError, ClientError) as e:
            raise PersistenceError(f"could not delete s3://{self.bucket}/{key}: {e}") from e


def create_storage(settings: Optional[Settings] = None) -> StorageBackend:
    settings = settings or get_settings()
    if settings.storage_backend == "s3":
        logger.info("storage backend: s3", extra={"bucket": settings.s3_bucket})
        return S3Storage(bucket=settings.s3_bucket, region=settings.aws_region)
    logger.info("storage backend: local", extra={"base_dir": settings.data_dir})
    return LocalStorage(base_dir=settings.data_dir)
