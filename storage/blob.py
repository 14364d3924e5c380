"""Blob storage for archived listing images."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class BlobStorageError(Exception):
    """Blob storage rejected or failed an operation."""


class BlobExistsError(BlobStorageError):
    """An object already exists at the target path."""


class BlobStore(ABC):
    """Write-once object storage addressed by path."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """
        Store ``data`` at ``path``; existing objects are never overwritten.

        Returns:
            The stored path

        Raises:
            BlobExistsError: If an object is already stored at ``path``
            BlobStorageError: On any other storage failure
        """
        pass

    @abstractmethod
    async def list(self, prefix: str) -> List[str]:
        """Paths of entries directly or transitively under ``prefix``."""
        pass

    async def aclose(self) -> None:
        """Release network resources, if any."""
        return None


class InMemoryBlobStore(BlobStore):
    """Process-local store used for tests and dry runs."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        if path in self.objects:
            raise BlobExistsError(f"Object already exists: {path}")
        self.objects[path] = data
        self.content_types[path] = content_type
        return path

    async def list(self, prefix: str) -> List[str]:
        return sorted(path for path in self.objects if path.startswith(prefix))


class SupabaseBlobStore(BlobStore):
    """Supabase Storage REST API over httpx."""

    DEFAULT_BUCKET = "property-images"
    CACHE_CONTROL = "3600"

    def __init__(
        self,
        url: str,
        key: str,
        bucket: str = DEFAULT_BUCKET,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not url or not key:
            raise ValueError("Missing required fields 'storage.blob.url' and 'storage.blob.key' in config")
        self.base_url = url.rstrip("/")
        self.bucket = bucket
        self.headers = {
            "Authorization": f"Bearer {key}",
            "apikey": key,
        }
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{path}"
        try:
            response = await self.http.post(
                url,
                content=data,
                headers={
                    **self.headers,
                    "Content-Type": content_type,
                    "Cache-Control": self.CACHE_CONTROL,
                    "x-upsert": "false",
                },
            )
        except httpx.HTTPError as e:
            raise BlobStorageError(f"Upload of {path} failed: {e}") from e

        if response.status_code == 409 or "already exists" in response.text.lower():
            raise BlobExistsError(f"Object already exists: {path}")
        if response.status_code >= 400:
            raise BlobStorageError(
                f"Upload of {path} failed: status={response.status_code} {response.text[:200]}"
            )

        logger.debug(f"Uploaded {path} ({len(data)} bytes)")
        return path

    async def list(self, prefix: str) -> List[str]:
        url = f"{self.base_url}/storage/v1/object/list/{self.bucket}"
        payload: Dict[str, Any] = {
            "prefix": prefix,
            "limit": 1000,
            "offset": 0,
            "sortBy": {"column": "name", "order": "asc"},
        }
        try:
            response = await self.http.post(url, json=payload, headers=self.headers)
            response.raise_for_status()
            entries = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise BlobStorageError(f"Listing {prefix} failed: {e}") from e

        base = prefix if prefix.endswith("/") or not prefix else prefix + "/"
        return [f"{base}{entry['name']}" for entry in entries if entry.get("name")]


def create_blob_store(config: Dict[str, Any]) -> BlobStore:
    """
    Build the blob store named by ``storage.blob.backend``.

    Raises:
        ValueError: If the backend is unknown or misconfigured
    """
    blob_config = config.get("storage", {}).get("blob", {})
    backend = blob_config.get("backend", "memory").lower()

    if backend == "supabase":
        return SupabaseBlobStore(
            url=blob_config.get("url", ""),
            key=blob_config.get("key", ""),
            bucket=blob_config.get("bucket", SupabaseBlobStore.DEFAULT_BUCKET),
            timeout=float(blob_config.get("timeout", 30.0)),
        )
    elif backend == "memory":
        logger.warning("Using in-memory blob store - archived images are not persisted")
        return InMemoryBlobStore()
    else:
        raise ValueError(
            f"Unsupported blob backend: {backend}. Supported backends: 'supabase', 'memory'"
        )
