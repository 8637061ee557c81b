# estate_mint/images.py
import base64
import binascii
import logging
import time
from typing import Callable, Optional

import requests

from .errors import DependencyError, DependencyTimeoutError, InputError

log = logging.getLogger(__name__)

# content type -> file extension
IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


class ImageNormalizer:
    """
    Turns whatever the client sent as an image into a stable reference.

    Inline data URLs, uploaded files and remote URLs are re-hosted through the
    content publisher; anything else is passed through as-is.
    """

    def __init__(
        self,
        publisher,
        max_bytes: int = 10 * 1024 * 1024,
        timeout: float = 8.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], int] = time.time_ns,
    ):
        self.publisher = publisher
        self.max_bytes = max_bytes
        self.timeout = timeout
        self.session = session or requests.Session()
        self._clock = clock

    def normalize(self, ref: Optional[str]) -> str:
        if not ref:
            return ""
        if ref.startswith("data:image/"):
            return self.from_data_url(ref)
        if ref.startswith(("http://", "https://")):
            if ref.startswith(self.publisher.gateway_url("")):
                return ref
            return self.from_url(ref)
        return ref

    def from_upload(self, data: bytes, content_type: Optional[str]) -> str:
        ext = IMAGE_TYPES.get((content_type or "").lower())
        if ext is None:
            raise InputError("Invalid file type. Only JPEG, PNG, GIF, and WebP are allowed")
        return self._rehost(data, ext)

    def from_data_url(self, data_url: str) -> str:
        # data:image/png;base64,iVBORw0KGgo...
        header, sep, payload = data_url.partition(",")
        if not sep or ";base64" not in header:
            raise InputError("invalid data URL format")
        ext = IMAGE_TYPES.get(header[len("data:"):].split(";", 1)[0].lower())
        if ext is None:
            raise InputError("unsupported image type")
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InputError(f"failed to decode base64 image: {e}") from e
        return self._rehost(data, ext)

    def from_url(self, url: str) -> str:
        try:
            with self.session.get(url, timeout=self.timeout, stream=True) as resp:
                if resp.status_code != 200:
                    raise InputError(f"failed to download image: status {resp.status_code}")
                content_type = resp.headers.get("Content-Type", "").split(";", 1)[0].strip().lower()
                ext = IMAGE_TYPES.get(content_type)
                if ext is None:
                    raise InputError(f"unsupported image type: {content_type or 'unknown'}")
                declared = resp.headers.get("Content-Length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise InputError("File size too large")
                chunks, size = [], 0
                for chunk in resp.iter_content(chunk_size=64 * 1024):
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise InputError("File size too large")
                    chunks.append(chunk)
        except requests.Timeout as e:
            raise DependencyTimeoutError(f"image download timed out: {url}") from e
        except requests.RequestException as e:
            raise DependencyError(f"failed to download image: {e}") from e
        return self._rehost(b"".join(chunks), ext)

    def _rehost(self, data: bytes, ext: str) -> str:
        if len(data) > self.max_bytes:
            raise InputError("File size too large")
        cid = self.publisher.publish(data, f"{self._clock()}.{ext}")
        return self.publisher.gateway_url(cid)
