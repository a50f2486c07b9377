"""
Object storage for backups and verification screenshots.

Local directory for single-host installs, an in-memory client for tests and
an S3-compatible bucket for production.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError


@dataclass
class StoredObject:
    path: str
    size: int
    modified_at: float


class StorageClient(Protocol):
    """Defines the operations the site needs from object storage."""

    def put_bytes(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        ...

    def get_bytes(self, path: str) -> bytes:
        ...

    def list_objects(self, prefix: str) -> list[StoredObject]:
        ...

    def delete(self, path: str) -> None:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    stored_objects: dict[str, tuple[bytes, float]] = field(default_factory=dict)

    def put_bytes(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        self.stored_objects[path] = (bytes(data), time.time())

    def get_bytes(self, path: str) -> bytes:
        stored = self.stored_objects.get(path)
        if stored is None:
            raise FileNotFoundError(path)
        return stored[0]

    def list_objects(self, prefix: str) -> list[StoredObject]:
        return [
            StoredObject(path=path, size=len(data), modified_at=modified_at)
            for path, (data, modified_at) in sorted(self.stored_objects.items())
            if path.startswith(prefix)
        ]

    def delete(self, path: str) -> None:
        self.stored_objects.pop(path, None)


@dataclass
class LocalStorageClient:
    """Stores objects as files under ``root``."""

    root: str

    def _resolve(self, path: str) -> Path:
        root = Path(self.root).resolve()
        target = (root / path).resolve()
        if root != target and root not in target.parents:
            raise ValueError(f"path escapes storage root: {path}")
        return target

    def put_bytes(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def get_bytes(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise FileNotFoundError(path)
        return target.read_bytes()

    def list_objects(self, prefix: str) -> list[StoredObject]:
        root = Path(self.root).resolve()
        if not root.exists():
            return []
        objects = []
        for file_path in sorted(root.rglob("*")):
            if not file_path.is_file():
                continue
            relative = file_path.relative_to(root).as_posix()
            if relative.startswith(prefix):
                stat = file_path.stat()
                objects.append(
                    StoredObject(path=relative, size=stat.st_size, modified_at=stat.st_mtime)
                )
        return objects

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        if target.is_file():
            os.remove(target)


@dataclass
class S3StorageClient:
    """S3-compatible bucket storage (AWS, R2, MinIO, COS)."""

    bucket: str
    region: Optional[str] = None
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None

    def __post_init__(self):
        config = Config(signature_version="s3v4", retries={"max_attempts": 3})
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def put_bytes(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        self._client.put_object(
            Bucket=self.bucket, Key=path, Body=data, ContentType=content_type
        )

    def get_bytes(self, path: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise FileNotFoundError(path) from exc
            raise
        return response["Body"].read()

    def list_objects(self, prefix: str) -> list[StoredObject]:
        paginator = self._client.get_paginator("list_objects_v2")
        objects = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                objects.append(
                    StoredObject(
                        path=item["Key"],
                        size=item["Size"],
                        modified_at=item["LastModified"].timestamp(),
                    )
                )
        return objects

    def delete(self, path: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=path)
