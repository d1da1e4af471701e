"""WebDAV implementation of the remote object store over httpx."""

from __future__ import annotations

import logging
import posixpath
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlparse

import httpx

from notesync.storage.remote import RemoteNotFoundError, RemoteStoreError, TransientRemoteError
from notesync.storage.retry import RetryingStore

if TYPE_CHECKING:
    from notesync.config import Settings

logger = logging.getLogger(__name__)

_DAV_NS = "{DAV:}"
_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
_PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<D:propfind xmlns:D="DAV:"><D:prop><D:resourcetype/></D:prop></D:propfind>'
)


def parse_propfind_names(xml_text: str, collection_path: str) -> list[str]:
    """Return child names from a Depth-1 PROPFIND multistatus body.

    The collection itself is listed by the server as the first response and is
    skipped, as is anything that does not sit directly below it.
    """
    root = ET.fromstring(xml_text)
    base = collection_path.rstrip("/")
    names: list[str] = []
    for href_el in root.iter(f"{_DAV_NS}href"):
        if not href_el.text:
            continue
        href_path = unquote(urlparse(href_el.text.strip()).path).rstrip("/")
        parent, name = posixpath.split(href_path)
        if not name or not parent.endswith(base):
            continue
        if name not in names:
            names.append(name)
    return names


class WebDAVStore:
    """Remote object store speaking WebDAV verbs with basic auth.

    Transport failures, timeouts and 408/429/5xx responses raise
    ``TransientRemoteError`` so a ``RetryingStore`` can retry them; other
    failures raise ``RemoteStoreError``. Nothing is retried here.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        *,
        timeout: float = 30.0,
        light_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.light_timeout = light_timeout
        self.client = httpx.AsyncClient(
            auth=httpx.BasicAuth(username, password),
            timeout=timeout,
            transport=transport,
        )

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        content: bytes | str | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self.client.request(
                method,
                self._url(path),
                content=content,
                headers=headers,
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            msg = f"{method} {path} timed out after {timeout:.0f}s"
            raise TransientRemoteError(msg) from exc
        except httpx.TransportError as exc:
            msg = f"{method} {path} failed: {exc}"
            raise TransientRemoteError(msg) from exc

        logger.debug("%s %s -> %d", method, path, response.status_code)
        if response.status_code in _RETRYABLE_STATUS_CODES:
            msg = f"{method} {path} returned {response.status_code}"
            raise TransientRemoteError(msg, status_code=response.status_code)
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response, method: str, path: str) -> None:
        if response.is_success:
            return
        msg = f"{method} {path} returned {response.status_code}"
        raise RemoteStoreError(msg, status_code=response.status_code)

    async def get(self, path: str) -> bytes | None:
        response = await self._request("GET", path, timeout=self.timeout)
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "GET", path)
        return response.content

    async def put(self, path: str, data: bytes) -> None:
        response = await self._request(
            "PUT",
            path,
            timeout=self.timeout,
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        self._raise_for_status(response, "PUT", path)

    async def move(self, src: str, dst: str, *, overwrite: bool = True) -> None:
        response = await self._request(
            "MOVE",
            src,
            timeout=self.light_timeout,
            headers={
                "Destination": self._url(dst),
                "Overwrite": "T" if overwrite else "F",
            },
        )
        if response.status_code == 404:
            raise RemoteNotFoundError(src)
        self._raise_for_status(response, "MOVE", src)

    async def delete(self, path: str) -> None:
        response = await self._request("DELETE", path, timeout=self.light_timeout)
        if response.status_code == 404:
            return
        self._raise_for_status(response, "DELETE", path)

    async def mkdir(self, path: str) -> None:
        response = await self._request("MKCOL", path, timeout=self.light_timeout)
        # 405 Method Not Allowed: the collection already exists
        if response.status_code == 405:
            return
        self._raise_for_status(response, "MKCOL", path)

    async def list(self, path: str) -> list[str]:
        response = await self._request(
            "PROPFIND",
            path,
            timeout=self.light_timeout,
            content=_PROPFIND_BODY,
            headers={"Depth": "1", "Content-Type": "application/xml"},
        )
        if response.status_code == 404:
            return []
        self._raise_for_status(response, "PROPFIND", path)
        try:
            return parse_propfind_names(response.text, path)
        except ET.ParseError as exc:
            msg = f"PROPFIND {path} returned malformed XML"
            raise RemoteStoreError(msg, status_code=response.status_code) from exc

    async def close(self) -> None:
        await self.client.aclose()


def create_remote_store(settings: Settings) -> RetryingStore:
    """Build the retrying WebDAV store described by *settings*."""
    webdav = WebDAVStore(
        settings.webdav_url,
        settings.webdav_username,
        settings.webdav_password,
        timeout=settings.request_timeout_seconds,
        light_timeout=settings.light_request_timeout_seconds,
    )
    return RetryingStore(
        webdav,
        max_attempts=settings.retry_max_attempts,
        backoff_seconds=settings.retry_backoff_seconds,
        max_delay_seconds=settings.retry_max_delay_seconds,
    )
