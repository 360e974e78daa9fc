"""
Image hosting on Cloudinary.

Talks to the REST upload API directly. Requests are signed with the API
secret: SHA-1 over the sorted `key=value` pairs joined by `&`, followed by
the secret.
"""
import hashlib
import logging
import os
import time
from typing import Any, Dict, Optional, Union

import requests

logger = logging.getLogger(__name__)

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")
TIMEOUT = 30


class MediaError(Exception):
    pass


def sign(params: Dict[str, Any], secret: str) -> str:
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ""))
    return hashlib.sha1((to_sign + secret).encode()).hexdigest()


def _endpoint(action: str) -> str:
    if not (CLOUDINARY_CLOUD_NAME and CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET):
        raise MediaError("Cloudinary credentials not set")
    return f"https://api.cloudinary.com/v1_1/{CLOUDINARY_CLOUD_NAME}/image/{action}"


def _signed(params: Dict[str, Any]) -> Dict[str, Any]:
    params = {k: v for k, v in params.items() if v is not None}
    params["timestamp"] = int(time.time())
    params["signature"] = sign(params, CLOUDINARY_API_SECRET)
    params["api_key"] = CLOUDINARY_API_KEY
    return params


def upload(file: Union[bytes, str], folder: str = "products", filename: Optional[str] = None,
           transformation: Optional[str] = None) -> Dict[str, str]:
    """Upload raw bytes or a `data:` URI. Returns {"url", "public_id"}."""
    url = _endpoint("upload")
    data = _signed({"folder": folder, "transformation": transformation})
    try:
        if isinstance(file, bytes):
            r = requests.post(url, data=data, files={"file": (filename or "upload", file)}, timeout=TIMEOUT)
        else:
            data["file"] = file
            r = requests.post(url, data=data, timeout=TIMEOUT)
    except requests.RequestException as exc:
        raise MediaError(f"Cloudinary upload failed: {exc}") from exc
    if r.status_code != 200:
        raise MediaError(f"Cloudinary upload failed: {r.status_code} {r.text}")
    result = r.json()
    return {"url": result["secure_url"], "public_id": result["public_id"]}


def destroy(public_id: str) -> None:
    url = _endpoint("destroy")
    try:
        r = requests.post(url, data=_signed({"public_id": public_id}), timeout=TIMEOUT)
    except requests.RequestException as exc:
        raise MediaError(f"Cloudinary destroy failed: {exc}") from exc
    if r.status_code != 200:
        raise MediaError(f"Cloudinary destroy failed: {r.status_code} {r.text}")
    logger.info("Destroyed Cloudinary asset %s", public_id)
