from __future__ import annotations
import logging
import mimetypes
import os
import uuid
from typing import Optional, Tuple
from urllib.parse import urlsplit

import requests

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024


class BlobStore:
    """Object storage behind a plain HTTP API (PUT/DELETE {base}/object/{bucket}/{path})."""

    def __init__(self, base_url: str, bucket: str, token: Optional[str] = None, timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.token = token
        self.timeout = timeout

    def _headers(self, content_type: Optional[str] = None) -> dict:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/object/public/{self.bucket}/{path}"

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        response = requests.put(
            f"{self.base_url}/object/{self.bucket}/{path}",
            data=data,
            headers=self._headers(content_type),
            timeout=self.timeout,
        )
        response.raise_for_status()
        return self.public_url(path)

    def remove(self, path: str) -> None:
        response = requests.delete(
            f"{self.base_url}/object/{self.bucket}/{path}",
            headers=self._headers(),
            timeout=self.timeout,
        )
        if response.status_code != 404:
            response.raise_for_status()


def get_blob_store() -> Optional[BlobStore]:
    base_url = os.getenv("STORAGE_URL")
    if not base_url:
        return None
    return BlobStore(base_url, os.getenv("STORAGE_BUCKET", "images"), os.getenv("STORAGE_TOKEN") or None)


def download_image(url: str, timeout: float = 20) -> Tuple[bytes, str]:
    with requests.get(url, timeout=timeout, stream=True) as response:
        response.raise_for_status()
        content_type = (response.headers.get("Content-Type") or "").split(";")[0].strip()
        if not content_type.startswith("image/"):
            raise ValueError(f"Not an image: {content_type or 'unknown content type'}")
        data = response.raw.read(MAX_IMAGE_BYTES + 1, decode_content=True)
    if len(data) > MAX_IMAGE_BYTES:
        raise ValueError("Image too large")
    return data, content_type


def storage_path_for(image_url: str, content_type: str, prefix: str = "opportunities") -> str:
    ext = os.path.splitext(urlsplit(image_url).path)[1].lower()
    if not ext or len(ext) > 5:
        ext = mimetypes.guess_extension(content_type) or ".img"
    return f"{prefix}/{uuid.uuid4().hex}{ext}"
