"""Object storage backends holding the original uploaded documents."""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote

import requests

from .config import Config
from .exceptions import StorageError

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Base class for storage backends."""

    kind = ""

    @abstractmethod
    def fetch(self, path: str) -> bytes:
        """Return the stored bytes at ``path``.

        Raises:
            StorageError: If the object cannot be read
        """
        pass


class LocalStorageBackend(StorageBackend):
    """Documents stored under a directory on the local filesystem."""

    kind = "local"

    def __init__(self, root: str = "./uploads"):
        self.root = Path(root).resolve()

    def fetch(self, path: str) -> bytes:
        target = (self.root / path.lstrip("/")).resolve()
        if self.root not in target.parents and target != self.root:
            raise StorageError(f"Path escapes storage root: {path}", path=path, backend=self.kind)

        try:
            with open(target, "rb") as f:
                content = f.read()
        except OSError as e:
            logger.error(f"Failed to read {target}: {e}")
            raise StorageError(f"Failed to read {path}: {e}", path=path, backend=self.kind)

        logger.debug(f"Read {len(content)} bytes from {target}")
        return content


class HttpStorageBackend(StorageBackend):
    """Documents served over HTTP(S) below a base URL."""

    kind = "http"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize backend.

        Args:
            base_url: URL prefix the storage path is appended to
            timeout: Request timeout in seconds
            session: Optional requests session (for auth headers, pooling)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, path: str) -> bytes:
        url = f"{self.base_url}/{quote(path.lstrip('/'))}"
        try:
            logger.info(f"Downloading original document from {url}")
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Storage request failed: {e}")
            raise StorageError(f"Failed to download {path}: {e}", path=path, backend=self.kind)

        return response.content


class ObjectStorage:
    """Explicit registry of storage backends keyed by kind.

    Example:
        >>> storage = ObjectStorage.from_config(Config(storage_root="./uploads"))
        >>> data = storage.fetch_original_bytes("doc-1/paper.docx")
    """

    def __init__(self, default_backend: str = "local"):
        self.default_backend = default_backend
        self._backends: Dict[str, StorageBackend] = {}

    @classmethod
    def from_config(cls, config: Config) -> "ObjectStorage":
        """Registry with the local backend, plus http when a base URL is set."""
        storage = cls(default_backend=config.storage_backend)
        storage.register(LocalStorageBackend(config.storage_root))
        if config.storage_base_url:
            storage.register(HttpStorageBackend(config.storage_base_url, config.storage_timeout))
        return storage

    def register(self, backend: StorageBackend, kind: Optional[str] = None) -> None:
        self._backends[kind or backend.kind] = backend

    def fetch_original_bytes(self, path: str, backend_kind: Optional[str] = None) -> bytes:
        """Fetch a stored original document.

        Args:
            path: Storage path of the document
            backend_kind: Backend to use (defaults to the configured one)

        Returns:
            Container bytes

        Raises:
            StorageError: If the backend is unknown or the fetch fails
        """
        kind = backend_kind or self.default_backend
        backend = self._backends.get(kind)
        if backend is None:
            raise StorageError(
                f"No storage backend registered for {kind!r} "
                f"(available: {', '.join(sorted(self._backends)) or 'none'})",
                path=path,
                backend=kind,
            )
        return backend.fetch(path)
