"""
Durable blob storage for uploaded documents.

``LocalBlobStore`` keeps objects under ``<root>/<bucket>/<path>`` and
hands out public URLs (either under a configured base URL or as
``file://`` URIs). ``fetch_url_bytes`` downloads a document by URL with
exponential backoff on transient network failures.
"""

from pathlib import Path
from typing import Optional, Union
from urllib.parse import unquote, urlparse

import requests

from autograde.utils.logger import get_logger
from autograde.utils.retry_utils import retry_with_backoff

log = get_logger(__name__)

DEFAULT_FETCH_TIMEOUT = 300.0


class TransientHTTPError(requests.HTTPError):
    """5xx or 429 response; worth retrying."""


class LocalBlobStore:
    """Filesystem-backed bucket/path object store."""

    def __init__(self, root: Union[str, Path], base_url: str = ""):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url.rstrip("/")

    def _resolve(self, bucket: str, path: str) -> Path:
        target = (self.root / bucket / path).resolve()
        if self.root not in target.parents:
            raise ValueError(f"Path escapes storage root: {bucket}/{path}")
        return target

    def put(self, bucket: str, path: str, data: bytes) -> str:
        """Write *data* (overwriting) and return its public URL."""
        target = self._resolve(bucket, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        log.info("Stored %d bytes at %s/%s", len(data), bucket, path)
        return self.public_url(bucket, path)

    def get(self, bucket: str, path: str) -> bytes:
        """
        Read an object.

        Raises:
            FileNotFoundError: If the object does not exist.
        """
        return self._resolve(bucket, path).read_bytes()

    def delete(self, bucket: str, path: str) -> bool:
        """Remove an object; returns False if it was already gone."""
        target = self._resolve(bucket, path)
        try:
            target.unlink()
        except FileNotFoundError:
            log.warning("Blob %s/%s already deleted", bucket, path)
            return False
        log.info("Deleted blob %s/%s", bucket, path)
        return True

    def public_url(self, bucket: str, path: str) -> str:
        if self.base_url:
            return f"{self.base_url}/{bucket}/{path}"
        return self._resolve(bucket, path).as_uri()


def fetch_url_bytes(
    url: str,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
    session: Optional[requests.Session] = None,
) -> bytes:
    """
    Download the bytes behind *url*.

    ``file://`` URLs are read directly. HTTP downloads are retried with
    exponential backoff on connection errors, timeouts, 429 and 5xx.

    Raises:
        requests.RequestException: After the final failed attempt, or
            immediately on a non-transient HTTP error.
    """
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path)).read_bytes()
    return _download(url, timeout, session or requests)


@retry_with_backoff(
    max_retries=3,
    base_delay=1.0,
    exceptions=(requests.ConnectionError, requests.Timeout, TransientHTTPError),
)
def _download(url: str, timeout: float, client) -> bytes:
    response = client.get(url, timeout=timeout, headers={"Cache-Control": "no-store"})
    if response.status_code == 429 or response.status_code >= 500:
        raise TransientHTTPError(
            f"{response.status_code} fetching {url}", response=response
        )
    response.raise_for_status()
    log.info("Fetched %d bytes from %s", len(response.content), url)
    return response.content
