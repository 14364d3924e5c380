"""Persistence: key/value snapshots and blob-stored images."""

from .blob import BlobExistsError, BlobStorageError, BlobStore, InMemoryBlobStore, SupabaseBlobStore
from .images import ImageArchiver
from .kv import FileKeyValueStore, InMemoryKeyValueStore, KeyValueStore
from .snapshots import SnapshotStore

__all__ = [
    "BlobStore",
    "BlobStorageError",
    "BlobExistsError",
    "InMemoryBlobStore",
    "SupabaseBlobStore",
    "ImageArchiver",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "FileKeyValueStore",
    "SnapshotStore",
]
