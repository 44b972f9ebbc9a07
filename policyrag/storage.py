"""
Blob storage for uploaded policy files.

Files are written below a local storage root and addressed by a public URL
when ``PUBLIC_FILES_BASE_URL`` is set, otherwise by a ``file://`` URL.
Fetching accepts both, so documents uploaded elsewhere can still be ingested.
"""

from __future__ import annotations

import random
import re
import string
import time
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlparse

import requests

from policyrag.errors import StorageError
from policyrag.utils import setup_logging

logger = setup_logging()

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_file_name(file_name: str) -> str:
    return _UNSAFE_CHARS.sub("_", file_name)


def build_storage_key(plan_id: str, file_name: str) -> str:
    """policy-files/<plan>/<millis>-<random6>-<sanitized name>"""
    timestamp = int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"policy-files/{plan_id}/{timestamp}-{suffix}-{sanitize_file_name(file_name)}"


@dataclass
class StoredFile:
    storage_key: str
    storage_url: str
    size_in_bytes: int


class PolicyFileStorage:
    def __init__(
        self,
        storage_root: str | Path,
        public_base_url: str | None = None,
        timeout: float = 60.0,
        session: requests.Session | None = None,
    ):
        self.storage_root = Path(storage_root)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.timeout = timeout
        self.session = session or requests.Session()

    def url_for(self, storage_key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{storage_key}"
        return (self.storage_root / storage_key).resolve().as_uri()

    def save(self, plan_id: str, file_name: str, data: bytes) -> StoredFile:
        storage_key = build_storage_key(plan_id, file_name)
        path = self.storage_root / storage_key
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Cannot store policy file {file_name}: {e}") from e

        logger.info(f"Stored policy file {file_name} as {storage_key} ({len(data)} bytes)")
        return StoredFile(storage_key=storage_key, storage_url=self.url_for(storage_key), size_in_bytes=len(data))

    def fetch(self, storage_url: str, storage_key: str | None = None) -> bytes:
        """
        Read a stored policy file.

        Local copies are preferred; remote URLs are downloaded.

        Raises:
            StorageError: If the file cannot be read
        """
        if storage_key:
            local = self.storage_root / storage_key
            if local.is_file():
                return local.read_bytes()

        parsed = urlparse(storage_url)
        if parsed.scheme in ("http", "https"):
            try:
                response = self.session.get(storage_url, timeout=self.timeout)
                response.raise_for_status()
            except requests.exceptions.RequestException as e:
                raise StorageError(f"Failed to fetch policy file {storage_url}: {e}") from e
            return response.content

        path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(storage_url)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read policy file {storage_url}: {e}") from e
