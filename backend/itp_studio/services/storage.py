from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from itp_studio.core.errors import UploadError
from itp_studio.core.settings import Settings
from itp_studio.models.entities import AssetKind, utcnow

logger = logging.getLogger(__name__)


class Storage(ABC):
    @abstractmethod
    def upload(self, data: bytes, path: str, content_type: str = "image/png") -> str:
        """Store ``data`` at ``path`` and return its public URL."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, path: str) -> None:
        raise NotImplementedError


class LocalStorage(Storage):
    """Files under ``outputs_dir``, served by the API at ``/outputs``."""

    def __init__(self, root: str, public_base_url: str = ""):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def upload(self, data: bytes, path: str, content_type: str = "image/png") -> str:
        target = self.root / path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise UploadError(f"Failed to write {path}: {exc}") from exc
        return f"{self.public_base_url}/outputs/{path}"

    def delete(self, path: str) -> None:
        (self.root / path).unlink(missing_ok=True)


class MinioStorage(Storage):
    """S3-compatible bucket storage."""

    def __init__(self, endpoint: str, access_key: str, secret_key: str, bucket: str, public_url: str, secure: bool = False):
        from minio import Minio

        self.client = Minio(endpoint, access_key=access_key, secret_key=secret_key, secure=secure)
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")

    def upload(self, data: bytes, path: str, content_type: str = "image/png") -> str:
        from minio.error import S3Error

        try:
            self.client.put_object(self.bucket, path, BytesIO(data), length=len(data), content_type=content_type)
        except S3Error as exc:
            raise UploadError(f"Failed to upload {path}: {exc}") from exc
        return f"{self.public_url}/{self.bucket}/{path}"

    def delete(self, path: str) -> None:
        self.client.remove_object(self.bucket, path)


def get_storage(config: Settings) -> Storage:
    if config.storage_backend == "minio":
        return MinioStorage(
            config.minio_endpoint,
            config.minio_access_key,
            config.minio_secret_key,
            config.minio_bucket,
            config.minio_public_url,
            secure=config.minio_secure,
        )
    return LocalStorage(config.outputs_dir, config.public_base_url)


def build_asset_path(slug: str, kind: AssetKind, template: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """Fresh path per upload so duplicate processing never overwrites an asset."""
    ts = (now or utcnow()).strftime("%Y%m%d_%H%M%S")
    suffix = uuid.uuid4().hex[:8]
    kind = AssetKind(kind)
    if kind == AssetKind.SOURCE:
        return f"graphics/{slug}/original/{slug}-original-{ts}-{suffix}.png"
    if kind == AssetKind.NOBG:
        return f"graphics/{slug}/transparent/{slug}-transparent-{ts}-{suffix}.png"
    if kind == AssetKind.UPSCALED:
        return f"upscaled/{slug}/{slug}-upscaled-{ts}-{suffix}.png"
    template = template or "default"
    return f"mockups/{slug}/{template}/{slug}-{template}-{ts}-{suffix}.png"


def image_size(data: bytes) -> Tuple[int, int]:
    try:
        with Image.open(BytesIO(data)) as im:
            return im.size
    except UnidentifiedImageError:
        logger.warning("Stored output is not a readable image; size unknown")
        return 0, 0
