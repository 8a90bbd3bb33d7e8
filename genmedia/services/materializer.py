from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Optional, Tuple
from urllib.parse import urlparse

import httpx

from genmedia.config import settings
from genmedia.domain.enums import StorageCategory
from genmedia.domain.errors import InvalidDestinationError, MaterializationError
from genmedia.domain.models import Destination, MaterializedAsset
from genmedia.services.azure_storage_service import ObjectStorage, StoredObject
from genmedia.services.storage_paths import (
    build_storage_path,
    content_type_for_ext,
    ext_for_content_type,
    ext_from_url,
)

logger = logging.getLogger("genmedia.materializer")

_GENERIC_TYPES = ("", "application/octet-stream", "binary/octet-stream")


@dataclass(frozen=True)
class _Fetched:
    data: bytes
    content_type: Optional[str]


def _decode_data_url(url: str) -> _Fetched:
    # data:image/png;base64,....
    try:
        header, payload = url.split(",", 1)
    except ValueError as e:
        raise MaterializationError("invalid_data_url") from e
    meta = header[len("data:"):]
    content_type = meta.split(";", 1)[0].strip() or None
    try:
        data = base64.b64decode(payload, validate=False) if ";base64" in meta else payload.encode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise MaterializationError(f"invalid_data_url: {e}") from e
    return _Fetched(data=data, content_type=content_type)


class ResultMaterializer:
    """
    Copies a vendor-hosted, time-limited asset into storage we own.

    Private categories get a long-lived read SAS; categories listed as public are
    written to the public container and get the plain blob URL. Either the whole
    copy succeeds or no destination object remains.
    """

    def __init__(
        self,
        private_storage: ObjectStorage,
        public_storage: Optional[ObjectStorage] = None,
        *,
        public_categories: Optional[Iterable[str]] = None,
        signed_url_expiry: Optional[timedelta] = None,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.private_storage = private_storage
        self.public_storage = public_storage
        cats = settings.PUBLIC_CATEGORIES if public_categories is None else public_categories
        self.public_categories = {str(c).strip() for c in cats if str(c).strip()}
        self.signed_url_expiry = signed_url_expiry or timedelta(days=settings.SIGNED_URL_EXPIRY_DAYS)
        self.max_bytes = int(max_bytes or settings.DOWNLOAD_MAX_BYTES)

        t = float(timeout or settings.DOWNLOAD_TIMEOUT_SECONDS)
        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=30.0, read=t, write=30.0, pool=30.0),
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    def is_public(self, category: StorageCategory) -> bool:
        return category.value in self.public_categories and self.public_storage is not None

    async def _fetch(self, url: str) -> _Fetched:
        if url.startswith("data:"):
            fetched = _decode_data_url(url)
        else:
            scheme = (urlparse(url).scheme or "").lower()
            if scheme not in ("http", "https"):
                raise MaterializationError(f"invalid_output_ref_scheme: {scheme or '<none>'}")
            try:
                async with self._http.stream("GET", url) as resp:
                    if resp.status_code < 200 or resp.status_code >= 300:
                        raise MaterializationError(f"fetch_failed {resp.status_code}: {url[:200]}")
                    chunks = []
                    size = 0
                    async for chunk in resp.aiter_bytes(chunk_size=1024 * 1024):
                        size += len(chunk)
                        if size > self.max_bytes:
                            raise MaterializationError(f"output_too_large: >{self.max_bytes} bytes")
                        chunks.append(chunk)
                    ct = resp.headers.get("content-type")
            except httpx.HTTPError as e:
                raise MaterializationError(f"fetch_transport_error: {e}") from e
            fetched = _Fetched(data=b"".join(chunks), content_type=ct)

        if not fetched.data:
            raise MaterializationError("fetched_output_is_empty")
        return fetched

    @staticmethod
    def _resolve_type(destination: Destination, fetched: _Fetched, url: str) -> Tuple[str, str]:
        url_ext = None if url.startswith("data:") else ext_from_url(url)
        header_ct = (fetched.content_type or "").split(";", 1)[0].strip().lower()
        if header_ct in _GENERIC_TYPES:
            header_ct = ""

        content_type = destination.content_type or header_ct or content_type_for_ext(url_ext) or "application/octet-stream"
        ext = ext_for_content_type(content_type) or url_ext or "bin"
        return content_type, ext

    async def materialize(self, output_ref: str, destination: Destination) -> MaterializedAsset:
        url = (output_ref or "").strip()
        if not url:
            raise MaterializationError("output_ref is empty")

        fetched = await self._fetch(url)
        content_type, ext = self._resolve_type(destination, fetched, url)

        public = self.is_public(destination.category)
        storage = self.public_storage if public else self.private_storage

        try:
            path = build_storage_path(
                owner_id=destination.owner_id,
                category=destination.category,
                base_name=destination.base_name,
                ext=ext,
            )
        except ValueError as e:
            raise InvalidDestinationError(f"invalid_destination: {e}") from e

        try:
            obj: StoredObject = await storage.write(path, fetched.data, content_type)
        except Exception as e:
            raise MaterializationError(f"storage_write_failed: {e}") from e

        try:
            if public:
                access_url = await storage.make_public(obj)
            else:
                access_url = await storage.sign_url(obj, self.signed_url_expiry)
        except Exception as e:
            try:
                await storage.delete(obj)
            except Exception:
                logger.warning("orphan_cleanup_failed", extra={"storage_path": obj.path}, exc_info=True)
            raise MaterializationError(f"access_url_failed: {e}") from e

        logger.info(
            "materialized",
            extra={"storage_path": obj.path, "bytes": len(fetched.data), "public": public},
        )
        return MaterializedAsset(
            storage_path=obj.path,
            url=access_url,
            content_type=content_type,
            bytes=len(fetched.data),
            sha256=hashlib.sha256(fetched.data).hexdigest(),
            public=public,
        )
