"""
Local filesystem storage provider.
Documents are written below STORAGE_DIR using their canonical key as relative path.
"""
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Optional

import structlog
from slugify import slugify

from ..config import settings
from .provider import StorageProvider


logger = structlog.get_logger(__name__)


def canonical_key(organization_id: str, category: Optional[str], original_name: str) -> str:
    today = datetime.utcnow().strftime("%Y-%m-%d")
    year = datetime.utcnow().strftime("%Y")
    stem, ext = os.path.splitext(original_name or "file")
    safe_name = slugify(stem) or "file"
    folder = slugify(category or "files")
    stamp = datetime.utcnow().strftime("%H%M%S%f")
    return f"org/{organization_id}/{year}/{folder}/{today}_{stamp}_{safe_name}{ext.lower()}"


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider."""

    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.storage_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        # Remove leading slash and parent references
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / clean_key

    def save(self, stream: BinaryIO, key: str) -> int:
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            shutil.copyfileobj(stream, f)
        size = path.stat().st_size
        logger.info("file_stored", key=key, size=size)
        return size

    def open(self, key: str) -> BinaryIO:
        return open(self._get_path(key), "rb")

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()
