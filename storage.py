import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Optional

from fastapi import Depends

import config
from validation import sanitize_file_name

logger = logging.getLogger(__name__)


class StorageError(ValueError):
    """Upload refused before anything was written."""


@dataclass
class StoredImage:
    name: str
    url: str


class ImageStore:
    """Item images on local disk, served publicly under ``base_url``."""

    def __init__(
        self,
        root: Path,
        base_url: str,
        max_bytes: int = config.MAX_IMAGE_BYTES,
        allowed_types: Optional[dict] = None,
    ):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.max_bytes = max_bytes
        self.allowed_types = allowed_types or config.ALLOWED_IMAGE_TYPES

    def validate(self, size: int, content_type: Optional[str]) -> None:
        if size == 0:
            raise StorageError("No file provided")
        if size > self.max_bytes:
            limit_mb = self.max_bytes // (1024 * 1024)
            raise StorageError(f"File size must be less than {limit_mb}MB")
        if content_type not in self.allowed_types:
            raise StorageError("Invalid file type. Only images are allowed.")

    def _generate_name(self, content_type: str) -> str:
        # the client filename never picks the extension; /media serves by suffix
        ext = self.allowed_types[content_type]
        return f"{int(time.time() * 1000)}_{secrets.token_hex(4)}.{ext}"

    def save(self, data: bytes, filename: Optional[str], content_type: Optional[str]) -> StoredImage:
        self.validate(len(data), content_type)
        name = self._generate_name(content_type)
        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / name).write_bytes(data)
        logger.info("Stored upload %r as %s (%d bytes)", filename, name, len(data))
        return StoredImage(name=name, url=self.public_url(name))

    def public_url(self, name: str) -> str:
        return f"{self.base_url}/{name}"

    def delete(self, name: Optional[str]) -> bool:
        if not name:
            return False
        path = self.root / sanitize_file_name(name)
        if not path.is_file():
            return False
        path.unlink()
        logger.info("Deleted image %s", name)
        return True


images = ImageStore(config.MEDIA_DIR, config.MEDIA_URL)


def get_image_store() -> ImageStore:
    return images


ImageStoreDep = Annotated[ImageStore, Depends(get_image_store)]
