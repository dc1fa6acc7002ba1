"""Image hosting on Cloudinary.

Uploads go through Cloudinary's signed REST API: parameters are sorted,
joined as `key=value&...`, suffixed with the API secret and hashed with
SHA-1. Every payload is checked with Pillow before it leaves the server.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import io
import logging
import re
import time
from typing import Optional

import requests
from PIL import Image

from ..config import settings

_LOGGER = logging.getLogger("aklatan.media")

DEFAULT_FOLDER = "mystery-box"
IMAGE_TRANSFORMATION = "w_400,h_400,c_fill,q_auto,f_webp"
_DATA_URL = re.compile(r"^data:(image/[\w.+-]+);base64,(.*)$", re.DOTALL)
_PUBLIC_ID = re.compile(r"/upload/(?:[^/]*,[^/]*/)*(?:v\d+/)?(.+?)(?:\.[A-Za-z0-9]+)?$")


class MediaUploadError(Exception):
    """Raised when an image cannot be validated, uploaded or removed."""


def is_data_url(value: Optional[str]) -> bool:
    return bool(value) and value.startswith("data:image/")


def is_cloudinary_url(value: Optional[str]) -> bool:
    return bool(value) and "cloudinary.com" in value


def decode_data_url(data_url: str) -> bytes:
    match = _DATA_URL.match(data_url or "")
    if not match:
        raise MediaUploadError("invalid image data format")
    try:
        return base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError):
        raise MediaUploadError("invalid base64 image payload")


def verify_image(payload: bytes) -> str:
    """Return the image format reported by Pillow or raise `MediaUploadError`."""
    if len(payload) > settings.MAX_UPLOAD_BYTES:
        raise MediaUploadError("image too large")
    try:
        with Image.open(io.BytesIO(payload)) as img:
            fmt = img.format
            img.verify()
    except Exception:
        raise MediaUploadError("unsupported file content; expected an image")
    return (fmt or "").lower()


def public_id_from_url(url: str) -> Optional[str]:
    """Extract the Cloudinary public id (folder included) from a delivery URL."""
    match = _PUBLIC_ID.search(url or "")
    return match.group(1) if match else None


def sign_params(params: dict, api_secret: str) -> str:
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
    return hashlib.sha1((to_sign + api_secret).encode("utf-8")).hexdigest()


class CloudinaryClient:
    def __init__(self, cloud_name: str = None, api_key: str = None, api_secret: str = None, timeout: float = 30.0):
        self.cloud_name = cloud_name if cloud_name is not None else settings.CLOUDINARY_CLOUD_NAME
        self.api_key = api_key if api_key is not None else settings.CLOUDINARY_API_KEY
        self.api_secret = api_secret if api_secret is not None else settings.CLOUDINARY_API_SECRET
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def _endpoint(self, action: str) -> str:
        return f"https://api.cloudinary.com/v1_1/{self.cloud_name}/image/{action}"

    def upload_image(self, image, folder: str = DEFAULT_FOLDER) -> str:
        """Upload a data URL or raw image bytes and return its `secure_url`."""
        if not self.configured:
            raise MediaUploadError("media storage is not configured")
        if isinstance(image, str):
            payload = decode_data_url(image)
        else:
            payload = bytes(image)
        fmt = verify_image(payload)
        params = {"folder": folder, "timestamp": int(time.time()), "transformation": IMAGE_TRANSFORMATION}
        data = dict(params, api_key=self.api_key, signature=sign_params(params, self.api_secret))
        try:
            resp = requests.post(
                self._endpoint("upload"),
                data=data,
                files={"file": (f"upload.{fmt or 'bin'}", payload)},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            _LOGGER.exception("cloudinary upload failed")
            raise MediaUploadError("failed to upload image") from exc
        if resp.status_code >= 400:
            _LOGGER.error("cloudinary upload rejected status=%s body=%s", resp.status_code, resp.text[:500])
            raise MediaUploadError("failed to upload image")
        url = resp.json().get("secure_url")
        if not url:
            raise MediaUploadError("upload response missing secure_url")
        return url

    def delete_image(self, url: str) -> bool:
        """Destroy the asset behind `url`. Returns False when nothing was removed."""
        public_id = public_id_from_url(url)
        if not public_id or not self.configured:
            return False
        params = {"public_id": public_id, "timestamp": int(time.time())}
        data = dict(params, api_key=self.api_key, signature=sign_params(params, self.api_secret))
        try:
            resp = requests.post(self._endpoint("destroy"), data=data, timeout=self.timeout)
        except requests.RequestException:
            _LOGGER.exception("cloudinary destroy failed for %s", public_id)
            return False
        if resp.status_code >= 400:
            _LOGGER.warning("cloudinary destroy rejected status=%s public_id=%s", resp.status_code, public_id)
            return False
        return resp.json().get("result") == "ok"


def get_media_client() -> CloudinaryClient:
    return CloudinaryClient()
