"""
Object store capability and adapters.

The stager only needs two things from a store:
- exists(uri) -> size of the object, or None if it is absent
- create_exclusive(uri) -> context manager yielding a writable binary stream
  that fails if the object already exists

Adapters:
- LocalObjectStore: file:// URIs and plain paths
- GcsObjectStore: gs://bucket/path via google-cloud-storage

Stores also classify their own failures (is_access_denied) so the stager's
retry loop stays free of client-specific exception types.
"""

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Protocol, runtime_checkable
from urllib.parse import unquote, urlparse

from google.api_core.exceptions import GoogleAPICallError
from google.cloud import storage
from google.cloud.exceptions import Forbidden, NotFound, PreconditionFailed, Unauthorized

from stagehand.errors import ObjectExistsError

logger = logging.getLogger(__name__)

BINARY = "application/octet-stream"

# Uploads buffer in memory up to this size before spilling to disk
SPOOL_MAX_BYTES = 8 * 1024 * 1024

# I/O and client failures a store may raise from any call
STORE_ERRORS: tuple[type[BaseException], ...] = (OSError, GoogleAPICallError)

# Failures the stager treats as retryable upload errors
UPLOAD_ERRORS: tuple[type[BaseException], ...] = (*STORE_ERRORS, ObjectExistsError)


@runtime_checkable
class ObjectStore(Protocol):
    """
    Protocol for the staging object store.

    Implementations must be safe for sequential reuse across staging calls.
    Thread safety is not assumed.
    """

    def exists(self, uri: str) -> Optional[int]:
        """Return the size of the object at `uri`, or None if it does not exist."""
        ...

    def create_exclusive(self, uri: str, content_type: Optional[str] = None):
        """
        Open a new object for writing.

        Returns a context manager yielding a binary stream. Nothing is left
        behind if the block raises. Raises ObjectExistsError if the object
        already exists.
        """
        ...

    def is_access_denied(self, error: BaseException) -> bool:
        """True if `error` means the caller lacks permission to write."""
        ...


def join_uri(base: str, name: str) -> str:
    """Join a staging base location and a name with exactly one slash."""
    return base.rstrip("/") + "/" + name.lstrip("/")


class LocalObjectStore:
    """
    ObjectStore backed by the local filesystem.

    Accepts file:// URIs and plain paths.
    """

    @staticmethod
    def _path(uri: str) -> Path:
        parsed = urlparse(uri)
        if parsed.scheme == "file":
            return Path(unquote(parsed.path))
        if parsed.scheme and len(parsed.scheme) > 1:
            raise ValueError(f"LocalObjectStore cannot handle URI: {uri}")
        return Path(uri)

    def exists(self, uri: str) -> Optional[int]:
        path = self._path(uri)
        try:
            return path.stat().st_size
        except FileNotFoundError:
            return None

    @contextmanager
    def create_exclusive(self, uri: str, content_type: Optional[str] = None) -> Iterator[BinaryIO]:
        path = self._path(uri)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            f = open(path, "xb")
        except FileExistsError as e:
            raise ObjectExistsError(uri) from e

        try:
            with f:
                yield f
        except BaseException:
            # Never leave a partial object behind
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            raise

    def is_access_denied(self, error: BaseException) -> bool:
        return isinstance(error, PermissionError)


class GcsObjectStore:
    """
    ObjectStore backed by Google Cloud Storage.

    Writes are spooled locally and uploaded on a clean exit with
    if_generation_match=0, so the object only appears if the whole write
    succeeded and nobody created it in the meantime.
    """

    def __init__(self, client: Optional[storage.Client] = None):
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    @staticmethod
    def parse_uri(uri: str) -> tuple[str, str]:
        """Split gs://bucket/path into (bucket, path)."""
        parsed = urlparse(uri)
        if parsed.scheme != "gs" or not parsed.netloc:
            raise ValueError(f"Not a GCS URI: {uri}")
        return parsed.netloc, parsed.path.lstrip("/")

    def exists(self, uri: str) -> Optional[int]:
        bucket_name, blob_name = self.parse_uri(uri)
        try:
            blob = self.client.bucket(bucket_name).get_blob(blob_name)
        except NotFound:
            return None
        if blob is None:
            return None
        return blob.size

    @contextmanager
    def create_exclusive(self, uri: str, content_type: Optional[str] = None) -> Iterator[BinaryIO]:
        bucket_name, blob_name = self.parse_uri(uri)
        blob = self.client.bucket(bucket_name).blob(blob_name)

        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES) as spool:
            yield spool
            try:
                blob.upload_from_file(
                    spool,
                    rewind=True,
                    content_type=content_type or BINARY,
                    if_generation_match=0,
                )
            except PreconditionFailed as e:
                raise ObjectExistsError(uri) from e

    def is_access_denied(self, error: BaseException) -> bool:
        return isinstance(error, (Forbidden, Unauthorized))


_STORES_BY_SCHEME = {
    "gs": GcsObjectStore,
    "file": LocalObjectStore,
    "": LocalObjectStore,
}


def object_store_for(uri: str) -> ObjectStore:
    """Pick an ObjectStore adapter for the scheme of `uri`."""
    scheme = urlparse(uri).scheme
    # Windows drive letters parse as one-letter schemes
    if len(scheme) == 1:
        scheme = ""
    try:
        store_cls = _STORES_BY_SCHEME[scheme]
    except KeyError:
        raise ValueError(
            f"Unsupported staging location scheme '{scheme}' in {uri}. "
            f"Supported: {', '.join(s or '<path>' for s in _STORES_BY_SCHEME)}"
        ) from None
    logger.debug("Using %s for %s", store_cls.__name__, uri)
    return store_cls()
