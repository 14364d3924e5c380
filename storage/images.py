"""Download, deduplicate and archive listing photos."""

import asyncio
import hashlib
import itertools
import logging
import re
import struct
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import unquote, urlparse

import httpx

from models.constants import BROWSER_USER_AGENT
from models.image import ImageRecord

from .blob import BlobExistsError, BlobStorageError, BlobStore
from .snapshots import SnapshotStore

logger = logging.getLogger(__name__)

JPEG_SOF_MARKERS = {0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF}
SAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


def probe_dimensions(data: bytes) -> Tuple[Optional[int], Optional[int]]:
    """
    Read width/height from PNG, GIF or JPEG headers.

    Returns (None, None) for other formats or truncated data.
    """
    try:
        if data[:8] == b"\x89PNG\r\n\x1a\n":
            width, height = struct.unpack(">II", data[16:24])
            return width, height

        if data[:6] in (b"GIF87a", b"GIF89a"):
            width, height = struct.unpack("<HH", data[6:10])
            return width, height

        if data[:2] == b"\xff\xd8":
            i = 2
            while i + 9 < len(data):
                if data[i] != 0xFF:
                    i += 1
                    continue
                marker = data[i + 1]
                if marker in JPEG_SOF_MARKERS:
                    height, width = struct.unpack(">HH", data[i + 5:i + 9])
                    return width, height
                if marker == 0xFF:
                    i += 1
                    continue
                if marker in (0x01, 0xD8) or 0xD0 <= marker <= 0xD7:
                    i += 2
                    continue
                (length,) = struct.unpack(">H", data[i + 2:i + 4])
                i += 2 + length
    except struct.error:
        pass
    return None, None


def filename_for(url: str, content_type: str) -> str:
    """File name from the URL path, else ``image.{subtype}``."""
    segment = unquote(urlparse(url).path.rsplit("/", 1)[-1])
    segment = SAFE_FILENAME.sub("_", segment).strip("._")
    if segment and "." in segment:
        return segment
    subtype = content_type.split("/")[-1] if "/" in content_type else "jpeg"
    return f"image.{subtype}"


class ImageArchiver:
    """
    Archive listing photos into blob storage.

    URLs already stored for a listing are never downloaded again; their
    stored records are reused. Stored objects are write-once: every upload
    goes to a fresh ``{listing_id}/{date}/{seq}/`` directory.
    """

    DEFAULT_CHUNK_SIZE = 3
    DEFAULT_CHUNK_DELAY = 1.0
    DEFAULT_TIMEOUT = 30.0
    MAX_PATH_ATTEMPTS = 3

    def __init__(
        self,
        config: Dict[str, Any],
        blob_store: BlobStore,
        snapshots: SnapshotStore,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize archiver.

        Args:
            config: Full configuration dictionary (rate_limiting, images)
            blob_store: Destination for image bytes
            snapshots: Holds per-listing image records
            http_client: Client used for downloads (tests inject a MockTransport)
            clock: Returns current UTC time; decides the date directory
        """
        rate_config = config.get("rate_limiting", {})
        image_config = config.get("images", {})

        self.chunk_size = max(1, int(rate_config.get("image_chunk_size", self.DEFAULT_CHUNK_SIZE)))
        self.chunk_delay = float(rate_config.get("image_chunk_delay", self.DEFAULT_CHUNK_DELAY))
        self.timeout = float(image_config.get("download_timeout", self.DEFAULT_TIMEOUT))

        self.blob_store = blob_store
        self.snapshots = snapshots
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers={"User-Agent": BROWSER_USER_AGENT},
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    async def _next_sequence(self, prefix: str) -> int:
        """First unused sequence number under ``prefix``."""
        try:
            paths = await self.blob_store.list(prefix)
        except BlobStorageError as e:
            logger.warning(f"Could not list {prefix}, starting sequence at 1: {e}")
            return 1

        highest = 0
        for path in paths:
            head = path[len(prefix):].split("/", 1)[0]
            if head.isdigit():
                highest = max(highest, int(head))
        return highest + 1

    async def _upload(
        self,
        prefix: str,
        sequence: Iterator[int],
        filename: str,
        data: bytes,
        content_type: str,
    ) -> Optional[str]:
        for _ in range(self.MAX_PATH_ATTEMPTS):
            path = f"{prefix}{next(sequence):03d}/{filename}"
            try:
                return await self.blob_store.upload(path, data, content_type)
            except BlobExistsError:
                logger.warning(f"Blob path already taken, trying next sequence: {path}")
            except BlobStorageError as e:
                logger.warning(f"Image upload failed for {path}: {e}")
                return None
        return None

    async def _archive_one(
        self,
        listing_id: str,
        url: str,
        existing: Optional[ImageRecord],
        prefix: str,
        sequence: Iterator[int],
    ) -> ImageRecord:
        record = existing or ImageRecord(id=str(uuid.uuid4()), listing_id=listing_id, url=url)

        try:
            response = await self.http.get(url, timeout=self.timeout)
            response.raise_for_status()
        except Exception as e:
            # Malformed URLs raise before any request is made
            logger.warning(f"Image download failed for {url}: {e}")
            return record

        data = response.content
        content_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        width, height = probe_dimensions(data)

        record.hash = hashlib.sha256(data).hexdigest()
        record.size = len(data)
        record.width = width
        record.height = height
        record.format = content_type.split("/")[-1] if "/" in content_type else None
        try:
            record.storage_path = await self._upload(
                prefix, sequence, filename_for(url, content_type), data, content_type
            )
        except Exception as e:
            logger.warning(f"Image upload failed for {url}: {e}")
            record.storage_path = None
        return record

    @staticmethod
    def _assign_primary(stored: List[ImageRecord], current: List[ImageRecord]) -> None:
        """Keep an existing primary; otherwise prefer the first archived current image."""
        primaries = [record for record in stored if record.is_primary]
        if primaries:
            for record in primaries[1:]:
                record.is_primary = False
            return

        if not current:
            return
        chosen = next((record for record in current if record.is_archived), current[0])
        chosen.is_primary = True

    async def archive(self, listing_id: str, image_urls: List[str]) -> List[ImageRecord]:
        """
        Archive a listing's photos.

        Args:
            listing_id: Listing the photos belong to
            image_urls: Photo URLs in display order

        Returns:
            One record per distinct URL, in input order. Records of failed
            downloads have no hash; failed uploads have no storage_path.
        """
        stored = await self.snapshots.get_images(listing_id)
        by_url = {record.url: record for record in stored}

        urls = list(dict.fromkeys(url for url in image_urls if url))
        pending = [url for url in urls if not (url in by_url and by_url[url].is_stored)]

        logger.info(
            f"Archiving images for {listing_id}: {len(urls)} referenced, "
            f"{len(urls) - len(pending)} already stored, {len(pending)} to download"
        )

        if pending:
            prefix = f"{listing_id}/{self.clock().astimezone(timezone.utc).strftime('%Y-%m-%d')}/"
            sequence = itertools.count(await self._next_sequence(prefix))

            for start in range(0, len(pending), self.chunk_size):
                if start > 0 and self.chunk_delay > 0:
                    await asyncio.sleep(self.chunk_delay)
                chunk = pending[start:start + self.chunk_size]
                records = await asyncio.gather(
                    *[
                        self._archive_one(listing_id, url, by_url.get(url), prefix, sequence)
                        for url in chunk
                    ]
                )
                for record in records:
                    if record.url not in by_url:
                        stored.append(record)
                    by_url[record.url] = record

        current = [by_url[url] for url in urls]
        self._assign_primary(stored, current)

        await self.snapshots.put_images(listing_id, stored)
        return current
