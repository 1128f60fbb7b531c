"""
Object storage for user files.

Operations:
  - Upload objects (no overwrite unless upsert)
  - Download by key
  - List one "folder" level, newest first
  - Delete objects
  - URL for a key (local objects resolve to the owner's download route)

Classes:
  - ObjectStore: Abstract interface
  - LocalObjectStore: Files under a directory (development, tests)
  - AzureBlobStore: Azure Blob Storage container per bucket

Stores are cheap to build; `create_object_store` is called once per request.
"""

import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

import dotenv
from loguru import logger

from core.errors import ConflictError, NotFoundError, UpstreamError, ValidationError

dotenv.load_dotenv()

USER_FILES_BUCKET = "user-files"
EMPTY_FOLDER_PLACEHOLDER = ".emptyFolderPlaceholder"

# Authenticated download route for `<principal_id>/<name>` keys
LOCAL_DOWNLOAD_PATH = "/api/files"


class StorageConfig:
    """Configuration for the object store"""

    def __init__(self):
        self.backend = os.getenv("STORAGE_BACKEND", "local").lower()
        self.root = os.getenv("STORAGE_ROOT", "./storage-data")
        self.azure_connection_string = os.getenv("AZURE_STORAGE_CONNECTION_STRING")
        self.bucket = os.getenv("USER_FILES_BUCKET", USER_FILES_BUCKET)
        self.public_base_url = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")


@dataclass
class StoredObject:
    name: str
    key: str
    size: int
    created_at: datetime
    content_type: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "size": self.size,
            "created_at": self.created_at.isoformat(),
        }


def validate_key(key: str) -> str:
    """Reject keys that could escape their namespace."""
    parts = key.split("/")
    if not key or key.startswith("/") or any(p in ("", ".", "..") for p in parts[:-1]) or parts[-1] in (".", ".."):
        raise ValidationError(f"Invalid object key: {key}")
    return key


def folder_prefix(folder: str) -> str:
    return folder if folder.endswith("/") else f"{folder}/"


class ObjectStore(ABC):
    """Bucket-scoped object store"""

    def __init__(self, bucket: str):
        self.bucket = bucket

    @abstractmethod
    def list(self, folder: str, limit: int = 100) -> List[StoredObject]:
        """Objects directly inside `folder`, newest first."""
        raise NotImplementedError

    @abstractmethod
    def upload(self, key: str, data: bytes, content_type: Optional[str] = None, upsert: bool = False) -> StoredObject:
        raise NotImplementedError

    @abstractmethod
    def download(self, key: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def remove(self, keys: List[str]) -> None:
        raise NotImplementedError

    @abstractmethod
    def public_url(self, key: str) -> str:
        raise NotImplementedError

    @staticmethod
    def _sort_newest_first(objects: List[StoredObject]) -> List[StoredObject]:
        # name breaks ties so listings are stable
        objects.sort(key=lambda o: o.name)
        objects.sort(key=lambda o: o.created_at, reverse=True)
        return objects


class LocalObjectStore(ObjectStore):
    """Stores objects as files under <root>/<bucket>/<key>"""

    def __init__(self, root: str, bucket: str = USER_FILES_BUCKET, public_base_url: str = "http://localhost:8000"):
        super().__init__(bucket)
        self.base_path = Path(root) / bucket
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        return self.base_path / validate_key(key)

    def list(self, folder: str, limit: int = 100) -> List[StoredObject]:
        prefix = folder_prefix(folder)
        directory = self.base_path / prefix
        if not directory.is_dir():
            return []

        try:
            objects = []
            for entry in directory.iterdir():
                if not entry.is_file():
                    continue
                stat = entry.stat()
                objects.append(StoredObject(
                    name=entry.name,
                    key=f"{prefix}{entry.name}",
                    size=stat.st_size,
                    created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                ))
        except OSError as e:
            logger.error(f"[STORAGE] Listing {prefix} failed: {e}")
            raise UpstreamError("Object listing failed", cause=e)

        return self._sort_newest_first(objects)[:limit]

    def upload(self, key: str, data: bytes, content_type: Optional[str] = None, upsert: bool = False) -> StoredObject:
        path = self._path(key)
        if path.exists() and not upsert:
            raise ConflictError(f"Object already exists: {key}")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            logger.error(f"[STORAGE] Upload of {key} failed: {e}")
            raise UpstreamError("Object upload failed", cause=e)

        logger.info(f"[STORAGE] Stored {key} ({len(data)} bytes)")
        return StoredObject(
            name=path.name,
            key=key,
            size=len(data),
            created_at=datetime.now(timezone.utc),
            content_type=content_type,
        )

    def download(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise NotFoundError(f"Object not found: {key}")
        try:
            return path.read_bytes()
        except OSError as e:
            raise UpstreamError("Object download failed", cause=e)

    def remove(self, keys: List[str]) -> None:
        for key in keys:
            path = self._path(key)
            if not path.is_file():
                raise NotFoundError(f"Object not found: {key}")
            try:
                path.unlink()
            except OSError as e:
                logger.error(f"[STORAGE] Delete of {key} failed: {e}")
                raise UpstreamError("Object delete failed", cause=e)
            logger.info(f"[STORAGE] Deleted {key}")

    def public_url(self, key: str) -> str:
        # Nothing serves the bucket directory; the file routes stream it to its owner
        name = validate_key(key).rsplit("/", 1)[-1]
        return f"{self.public_base_url}{LOCAL_DOWNLOAD_PATH}/{quote(name)}"


class AzureBlobStore(ObjectStore):
    """One Azure Blob container per bucket"""

    def __init__(self, connection_string: str, bucket: str = USER_FILES_BUCKET):
        from azure.storage.blob import BlobServiceClient

        super().__init__(bucket)
        service = BlobServiceClient.from_connection_string(connection_string)
        self.container = service.get_container_client(bucket)

    def list(self, folder: str, limit: int = 100) -> List[StoredObject]:
        from azure.core.exceptions import AzureError

        prefix = folder_prefix(folder)
        try:
            objects = []
            for blob in self.container.list_blobs(name_starts_with=prefix):
                name = blob.name[len(prefix):]
                if "/" in name:
                    continue
                objects.append(StoredObject(
                    name=name,
                    key=blob.name,
                    size=blob.size or 0,
                    created_at=blob.creation_time or datetime.now(timezone.utc),
                    content_type=getattr(blob.content_settings, "content_type", None),
                ))
        except AzureError as e:
            logger.error(f"[STORAGE] Listing {prefix} failed: {e}")
            raise UpstreamError("Object listing failed", cause=e)

        return self._sort_newest_first(objects)[:limit]

    def upload(self, key: str, data: bytes, content_type: Optional[str] = None, upsert: bool = False) -> StoredObject:
        from azure.core.exceptions import AzureError, ResourceExistsError
        from azure.storage.blob import ContentSettings

        validate_key(key)
        try:
            self.container.upload_blob(
                name=key,
                data=data,
                overwrite=upsert,
                content_settings=ContentSettings(content_type=content_type, cache_control="max-age=3600"),
            )
        except ResourceExistsError:
            raise ConflictError(f"Object already exists: {key}")
        except AzureError as e:
            logger.error(f"[STORAGE] Upload of {key} failed: {e}")
            raise UpstreamError("Object upload failed", cause=e)

        return StoredObject(
            name=key.rsplit("/", 1)[-1],
            key=key,
            size=len(data),
            created_at=datetime.now(timezone.utc),
            content_type=content_type,
        )

    def download(self, key: str) -> bytes:
        from azure.core.exceptions import AzureError, ResourceNotFoundError

        try:
            return self.container.download_blob(validate_key(key)).readall()
        except ResourceNotFoundError:
            raise NotFoundError(f"Object not found: {key}")
        except AzureError as e:
            raise UpstreamError("Object download failed", cause=e)

    def remove(self, keys: List[str]) -> None:
        from azure.core.exceptions import AzureError, ResourceNotFoundError

        for key in keys:
            try:
                self.container.delete_blob(validate_key(key))
            except ResourceNotFoundError:
                raise NotFoundError(f"Object not found: {key}")
            except AzureError as e:
                logger.error(f"[STORAGE] Delete of {key} failed: {e}")
                raise UpstreamError("Object delete failed", cause=e)

    def public_url(self, key: str) -> str:
        return self.container.get_blob_client(validate_key(key)).url


def create_object_store(config: Optional[StorageConfig] = None) -> ObjectStore:
    """Build the configured store."""
    config = config or StorageConfig()

    if config.backend == "azure":
        if not config.azure_connection_string:
            raise ValueError("AZURE_STORAGE_CONNECTION_STRING not set")
        return AzureBlobStore(config.azure_connection_string, bucket=config.bucket)

    if config.backend == "local":
        return LocalObjectStore(config.root, bucket=config.bucket, public_base_url=config.public_base_url)

    raise ValueError(f"Unknown STORAGE_BACKEND: {config.backend}")


_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_file_name(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", name)


def format_file_size(size: int) -> str:
    """Human readable size: Bytes, KB or MB with at most two decimals."""
    if size <= 0:
        return "0 Bytes"

    units = ["Bytes", "KB", "MB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    number = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{number} {units[index]}"
