from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Protocol

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)

from genmedia.config import settings
from genmedia.domain.errors import StorageError

logger = logging.getLogger("genmedia.storage")


@dataclass(frozen=True)
class StoredObject:
    container: str
    path: str
    content_type: str
    bytes: int


class ObjectStorage(Protocol):
    async def write(self, path: str, data: bytes, content_type: str) -> StoredObject:
        ...

    async def sign_url(self, obj: StoredObject, expiry: timedelta) -> str:
        ...

    async def make_public(self, obj: StoredObject) -> str:
        ...

    async def delete(self, obj: StoredObject) -> None:
        ...


def _parse_connection_string(cs: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for item in (cs or "").split(";"):
        if "=" not in item:
            continue
        k, v = item.split("=", 1)
        k = (k or "").strip()
        if k:
            out[k] = (v or "").strip()
    return out


class AzureBlobStorage:
    """
    Azure Blob Storage bound to a single container.

    Private containers hand out read SAS URLs (sign_url); public containers
    (blob-level anonymous read) hand out the plain blob URL (make_public).
    The sync SDK runs in a worker thread so the event loop is never blocked.
    """

    def __init__(
        self,
        *,
        container: str,
        connection_string: Optional[str] = None,
        public: bool = False,
        auto_create: Optional[bool] = None,
    ):
        self.connection_string = (connection_string or settings.AZURE_STORAGE_CONNECTION_STRING or "").strip()
        if not self.connection_string:
            raise RuntimeError("missing_azure_storage_connection_string")

        self.container = (container or "").strip()
        if not self.container:
            raise RuntimeError("missing_container")
        self.public = public

        self.blob_service = BlobServiceClient.from_connection_string(self.connection_string)

        parts = _parse_connection_string(self.connection_string)
        self.account_name = (getattr(self.blob_service, "account_name", None) or parts.get("AccountName") or "").strip()
        self.account_key = (parts.get("AccountKey") or "").strip()

        self._container_client = self.blob_service.get_container_client(self.container)

        create = settings.AZURE_STORAGE_AUTO_CREATE_CONTAINER if auto_create is None else auto_create
        if create:
            self._ensure_container_exists_best_effort()

    @classmethod
    def for_private(cls) -> "AzureBlobStorage":
        return cls(container=settings.MEDIA_PRIVATE_CONTAINER, public=False)

    @classmethod
    def for_public(cls) -> "AzureBlobStorage":
        return cls(container=settings.MEDIA_PUBLIC_CONTAINER, public=True)

    def _ensure_container_exists_best_effort(self) -> None:
        try:
            self._container_client.create_container(public_access="blob" if self.public else None)
        except ResourceExistsError:
            pass
        except AzureError:
            logger.warning("container_create_failed", extra={"container": self.container}, exc_info=True)

    def _sync_upload(self, path: str, data: bytes, content_type: str) -> None:
        blob_client = self.blob_service.get_blob_client(container=self.container, blob=path)
        blob_client.upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type),
        )

    def _sync_delete(self, path: str) -> None:
        blob_client = self.blob_service.get_blob_client(container=self.container, blob=path)
        try:
            blob_client.delete_blob()
        except ResourceNotFoundError:
            pass

    async def write(self, path: str, data: bytes, content_type: str) -> StoredObject:
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError("data must be bytes")
        path = (path or "").strip().lstrip("/")
        if not path:
            raise ValueError("invalid_blob_name")

        try:
            await asyncio.to_thread(self._sync_upload, path, bytes(data), content_type)
        except AzureError as e:
            raise StorageError(f"blob_upload_failed: {e}") from e

        return StoredObject(container=self.container, path=path, content_type=content_type, bytes=len(data))

    async def sign_url(self, obj: StoredObject, expiry: timedelta) -> str:
        if not self.account_name or not self.account_key:
            # SAS-only connection strings can't mint SAS here.
            raise StorageError("could_not_parse_storage_account_credentials")

        now = datetime.now(timezone.utc)
        sas_token = generate_blob_sas(
            account_name=self.account_name,
            container_name=obj.container,
            blob_name=obj.path,
            account_key=self.account_key,
            permission=BlobSasPermissions(read=True),
            start=now - timedelta(minutes=5),  # clock skew
            expiry=now + expiry,
        )
        return f"{self._blob_url(obj)}?{sas_token}"

    async def make_public(self, obj: StoredObject) -> str:
        if not self.public:
            raise StorageError(f"container_not_public: {obj.container}")
        return self._blob_url(obj)

    async def delete(self, obj: StoredObject) -> None:
        try:
            await asyncio.to_thread(self._sync_delete, obj.path)
        except AzureError as e:
            raise StorageError(f"blob_delete_failed: {e}") from e

    def _blob_url(self, obj: StoredObject) -> str:
        return self.blob_service.get_blob_client(container=obj.container, blob=obj.path).url
