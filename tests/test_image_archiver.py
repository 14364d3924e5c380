"""Test image archiving: dedup, storage paths and primary selection."""

import sys
from pathlib import Path

# Add parent directory to path to import project modules
sys.path.insert(0, str(Path(__file__).parent.parent))

import asyncio
import struct
from datetime import datetime, timezone

import httpx
import pytest

from storage.blob import BlobStorageError, InMemoryBlobStore
from storage.images import ImageArchiver, filename_for, probe_dimensions
from storage.kv import InMemoryKeyValueStore
from storage.snapshots import SnapshotStore

NOW = datetime(2025, 10, 19, 12, 0, tzinfo=timezone.utc)

URL_1 = "https://img.example/photos/1.jpg"
URL_2 = "https://img.example/photos/2.jpg"
BROKEN_URL = "https://img.example/photos/broken.jpg"


def png_bytes(width: int = 640, height: int = 480) -> bytes:
    return (
        b"\x89PNG\r\n\x1a\n"
        + struct.pack(">I", 13)
        + b"IHDR"
        + struct.pack(">II", width, height)
        + b"\x08\x02\x00\x00\x00"
    )


class FlakyBlobStore(InMemoryBlobStore):
    """Rejects uploads while ``fail`` is set."""

    def __init__(self):
        super().__init__()
        self.fail = True

    async def upload(self, path, data, content_type):
        if self.fail:
            raise BlobStorageError("bucket unavailable")
        return await super().upload(path, data, content_type)


class TestImageArchiver:
    """Test ImageArchiver.archive."""

    def setup_method(self):
        """Setup archiver with in-memory stores and a mock image server."""
        self.downloads = []
        self.blob_store = InMemoryBlobStore()
        self.snapshots = SnapshotStore(InMemoryKeyValueStore(), clock=lambda: NOW)
        self.archiver = self.make_archiver(self.blob_store)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.downloads.append(str(request.url))
        if "broken" in str(request.url):
            return httpx.Response(404)
        return httpx.Response(200, content=png_bytes(), headers={"content-type": "image/png"})

    def make_archiver(self, blob_store) -> ImageArchiver:
        config = {"rate_limiting": {"image_chunk_size": 1, "image_chunk_delay": 0}}
        http = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return ImageArchiver(config, blob_store, self.snapshots, http_client=http, clock=lambda: NOW)

    def test_records_and_storage_paths(self):
        records = asyncio.run(self.archiver.archive("L1", [URL_1, URL_2]))

        assert [record.url for record in records] == [URL_1, URL_2]
        assert [record.storage_path for record in records] == [
            "L1/2025-10-19/001/1.jpg",
            "L1/2025-10-19/002/2.jpg",
        ]
        record = records[0]
        assert record.listing_id == "L1"
        assert record.width == 640
        assert record.height == 480
        assert record.format == "png"
        assert record.size == len(png_bytes())
        assert len(record.hash) == 64
        assert self.blob_store.content_types["L1/2025-10-19/001/1.jpg"] == "image/png"

    def test_second_run_downloads_nothing(self):
        async def run():
            first = await self.archiver.archive("L1", [URL_1, URL_2])
            second = await self.archiver.archive("L1", [URL_1, URL_2])
            stored = await self.snapshots.get_images("L1")
            return first, second, stored

        first, second, stored = asyncio.run(run())

        assert len(self.downloads) == 2
        assert len(stored) == 2
        assert len(self.blob_store.objects) == 2
        assert [record.id for record in second] == [record.id for record in first]

    def test_duplicate_urls_in_one_call(self):
        records = asyncio.run(self.archiver.archive("L1", [URL_1, URL_1, ""]))

        assert len(records) == 1
        assert self.downloads == [URL_1]

    def test_sequence_continues_after_existing_objects(self):
        self.blob_store.objects["L1/2025-10-19/001/old.jpg"] = b"x"
        self.blob_store.objects["L1/2025-10-19/004/old.jpg"] = b"x"

        records = asyncio.run(self.archiver.archive("L1", [URL_1]))

        assert records[0].storage_path == "L1/2025-10-19/005/1.jpg"

    def test_failed_download_is_recorded_and_retried(self):
        async def run():
            first = await self.archiver.archive("L1", [BROKEN_URL, URL_1])
            await self.archiver.archive("L1", [BROKEN_URL, URL_1])
            return first

        first = asyncio.run(run())

        broken = first[0]
        assert broken.hash is None
        assert broken.storage_path is None
        assert not broken.is_archived
        # The archived image is preferred as primary
        assert first[1].is_primary
        assert not broken.is_primary
        assert self.downloads.count(BROKEN_URL) == 2
        assert self.downloads.count(URL_1) == 1

    def test_primary_is_sticky(self):
        async def run():
            await self.archiver.archive("L1", [URL_1])
            records = await self.archiver.archive("L1", [URL_2, URL_1])
            stored = await self.snapshots.get_images("L1")
            return records, stored

        records, stored = asyncio.run(run())

        assert [record.is_primary for record in records] == [False, True]
        assert sum(1 for record in stored if record.is_primary) == 1

    def test_upload_failure_keeps_metadata_and_retries(self):
        blob_store = FlakyBlobStore()
        archiver = self.make_archiver(blob_store)

        async def run():
            first = await archiver.archive("L1", [URL_1])
            blob_store.fail = False
            second = await archiver.archive("L1", [URL_1])
            return first, second

        first, second = asyncio.run(run())

        assert first[0].is_archived
        assert first[0].storage_path is None
        assert not first[0].is_stored
        assert second[0].storage_path == "L1/2025-10-19/001/1.jpg"
        assert second[0].id == first[0].id
        assert self.downloads.count(URL_1) == 2

    def test_malformed_url_does_not_abort_batch(self):
        bad_url = "http://[::1/bad.jpg"

        async def run():
            records = await self.archiver.archive("L1", [bad_url, URL_1])
            return records, await self.snapshots.get_images("L1")

        records, stored = asyncio.run(run())

        assert [record.url for record in records] == [bad_url, URL_1]
        assert records[0].hash is None
        assert records[1].storage_path == "L1/2025-10-19/001/1.jpg"
        assert records[1].is_primary
        assert len(stored) == 2


class TestImageHelpers:
    """Test header probing and file naming."""

    def test_png_dimensions(self):
        assert probe_dimensions(png_bytes(800, 600)) == (800, 600)

    def test_gif_dimensions(self):
        data = b"GIF89a" + struct.pack("<HH", 32, 16) + b"\x00" * 8

        assert probe_dimensions(data) == (32, 16)

    def test_jpeg_dimensions(self):
        app0 = b"\xff\xe0" + struct.pack(">H", 16) + b"JFIF\x00" + b"\x00" * 9
        sof0 = b"\xff\xc0" + struct.pack(">H", 17) + b"\x08" + struct.pack(">HH", 300, 400) + b"\x03" + b"\x00" * 9
        data = b"\xff\xd8" + app0 + sof0

        assert probe_dimensions(data) == (400, 300)

    def test_unknown_format(self):
        assert probe_dimensions(b"not an image") == (None, None)

    @pytest.mark.parametrize(
        "url,content_type,expected",
        [
            ("https://img.example/a/front%20door.jpg", "image/jpeg", "front_door.jpg"),
            ("https://img.example/a/photo", "image/webp", "image.webp"),
            ("https://img.example/", "application/octet-stream", "image.octet-stream"),
        ],
    )
    def test_filename_for(self, url, content_type, expected):
        assert filename_for(url, content_type) == expected
