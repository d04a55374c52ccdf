# chapter_portal/backends/blobs.py
# Blob store for content too large for a spreadsheet cell
# (button HTML, recruit photos). Failures here never fail the caller:
# uploads fall back to inline content, deletes leave an orphan.

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import re
import time
import uuid
from typing import Optional, Protocol, Tuple
from urllib.parse import quote, unquote

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest

from chapter_portal.backends.credentials import STORAGE_SCOPES, load_service_account
from chapter_portal.config import Settings
from chapter_portal.middleware.error_handler import BackingServiceError

logger = logging.getLogger(__name__)

PUBLIC_HOST = "https://storage.googleapis.com"
UPLOAD_ENDPOINT = f"{PUBLIC_HOST}/upload/storage/v1/b"
OBJECT_ENDPOINT = f"{PUBLIC_HOST}/storage/v1/b"

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/heic": ".heic",
    "image/heif": ".heif",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
}

_DATA_URL_RE = re.compile(r"^data:(.*?);base64,")
_BLOB_ERRORS = (httpx.HTTPError, GoogleAuthError, BackingServiceError)


def is_blob_url(value: str) -> bool:
    return bool(value) and "storage.googleapis.com" in value


def multipart_related(metadata: str, content_type: str, payload: str) -> Tuple[str, str]:
    """Metadata plus media body for a multipart upload, with a fresh boundary."""
    boundary = f"chapter_portal_{uuid.uuid4().hex}"
    body = (
        f"--{boundary}\r\n"
        "Content-Type: application/json; charset=UTF-8\r\n\r\n"
        f"{metadata}\r\n"
        f"--{boundary}\r\n"
        f"Content-Type: {content_type}\r\n\r\n"
        f"{payload}\r\n"
        f"--{boundary}--"
    )
    return boundary, body


def object_name_from_url(url: str) -> Optional[str]:
    path = (url or "").split("?", 1)[0].rstrip("/")
    if "/" not in path:
        return None
    name = path.rsplit("/", 1)[1]
    return unquote(name) if name else None


class BlobStore(Protocol):
    async def upload_html(self, bucket: str, name: str, html: str) -> Optional[str]: ...

    async def upload_data_url(self, bucket: str, base_name: str, data_url: str) -> Optional[str]: ...

    async def delete(self, bucket: str, name: str) -> bool: ...

    async def fetch(self, url: str) -> Optional[str]: ...


class GcsBlobStore:
    """Google Cloud Storage JSON API over httpx with a service-account bearer token."""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None, credentials=None):
        self._settings = settings
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(settings.BACKEND_TIMEOUT))
        self._credentials = credentials

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _token(self) -> str:
        if self._credentials is None:
            self._credentials = load_service_account(self._settings, STORAGE_SCOPES)
        if not self._credentials.valid:
            # google-auth refresh is blocking
            await asyncio.to_thread(self._credentials.refresh, GoogleAuthRequest())
        return self._credentials.token

    async def upload_data_url(self, bucket: str, base_name: str, data_url: str) -> Optional[str]:
        match = _DATA_URL_RE.match(data_url or "")
        if not match:
            logger.error("Upload skipped: payload is not a base64 data URL")
            return None
        mime_type = match.group(1)
        try:
            body = base64.b64decode(data_url[match.end():], validate=False)
        except (binascii.Error, ValueError) as e:
            logger.error(f"Upload skipped: undecodable payload ({e})")
            return None

        file_name = base_name + MIME_EXTENSIONS.get(mime_type, ".bin")
        try:
            token = await self._token()
            response = await self._http.post(
                f"{UPLOAD_ENDPOINT}/{bucket}/o",
                params={"uploadType": "media", "name": file_name},
                headers={"Authorization": f"Bearer {token}", "Content-Type": mime_type},
                content=body,
            )
        except _BLOB_ERRORS as e:
            logger.error(f"Upload of {file_name} failed: {e}")
            return None

        if response.is_success:
            logger.info(f"Uploaded {file_name} to {bucket}")
            return f"{PUBLIC_HOST}/{bucket}/{quote(file_name)}"
        logger.error(f"Upload of {file_name} rejected ({response.status_code}): {response.text}")
        return None

    async def upload_html(self, bucket: str, name: str, html: str) -> Optional[str]:
        stamp = int(time.time() * 1000)
        metadata = json.dumps({
            "name": name,
            "contentType": "text/html",
            "cacheControl": "no-cache, no-store, must-revalidate",
            "metadata": {"updated": str(stamp)},
        })
        boundary, body = multipart_related(metadata, "text/html", html)
        try:
            token = await self._token()
            response = await self._http.post(
                f"{UPLOAD_ENDPOINT}/{bucket}/o",
                params={"uploadType": "multipart"},
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": f"multipart/related; boundary={boundary}",
                },
                content=body.encode("utf-8"),
            )
        except _BLOB_ERRORS as e:
            logger.error(f"HTML upload of {name} failed: {e}")
            return None

        if response.is_success:
            return f"{PUBLIC_HOST}/{bucket}/{quote(name)}?v={stamp}"
        logger.error(f"HTML upload of {name} rejected ({response.status_code}): {response.text}")
        return None

    async def delete(self, bucket: str, name: str) -> bool:
        try:
            token = await self._token()
            response = await self._http.delete(
                f"{OBJECT_ENDPOINT}/{bucket}/o/{quote(name, safe='')}",
                headers={"Authorization": f"Bearer {token}"},
            )
        except _BLOB_ERRORS as e:
            logger.error(f"Delete of {name} failed: {e}")
            return False
        if response.status_code == 204:
            return True
        logger.error(f"Delete of {name} rejected ({response.status_code})")
        return False

    async def fetch(self, url: str) -> Optional[str]:
        try:
            response = await self._http.get(url)
        except _BLOB_ERRORS as e:
            logger.error(f"Fetch of {url} failed: {e}")
            return None
        if response.is_success:
            return response.text
        logger.error(f"Fetch of {url} returned {response.status_code}")
        return None
