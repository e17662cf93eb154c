from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from email.utils import parsedate_to_datetime
from urllib.parse import quote, unquote, urlparse

import requests

from marksync.core.errors import (
    OfflineError,
    RemoteAuthError,
    RemoteConflictError,
    RemoteError,
    RemoteNotFoundError,
)
from marksync.storage.records import RemoteFile

logger = logging.getLogger("webdav")

DAV_NS = {"d": "DAV:"}

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:displayname/><d:getlastmodified/><d:getcontentlength/><d:resourcetype/>"
    "</d:prop></d:propfind>"
)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _parse_http_date(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(parsedate_to_datetime(value.strip()).timestamp() * 1000)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None


class WebDAVClient:
    def __init__(
        self,
        base_url: str,
        username: str = "",
        password: str = "",
        timeout: int = 30,
        session: requests.Session | None = None,
    ):
        self.base_url = (base_url or "").strip().rstrip("/")
        self.auth = (username, password) if username or password else None
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, path: str = "") -> str:
        clean = (path or "").strip("/")
        if not clean:
            return f"{self.base_url}/"
        return f"{self.base_url}/{quote(clean, safe='/')}"

    def _request(self, method: str, path: str = "", **kwargs) -> requests.Response:
        if not self.base_url:
            raise RemoteError("webdav_url_missing")
        try:
            return self.session.request(method, self._url(path), auth=self.auth, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise OfflineError(f"webdav_unreachable: {e}") from e

    @staticmethod
    def _check(res: requests.Response, action: str, path: str, allowed: tuple[int, ...] = ()) -> requests.Response:
        status = res.status_code
        if status in allowed or 200 <= status < 300:
            return res
        detail = f"webdav_{action}_failed: status={status} path={path}"
        if status in (401, 403):
            raise RemoteAuthError(detail, status_code=status)
        if status == 404:
            raise RemoteNotFoundError(detail, status_code=status)
        if status == 409:
            raise RemoteConflictError(detail, status_code=status)
        raise RemoteError(detail, status_code=status)

    def is_reachable(self) -> bool:
        if not self.base_url:
            return False
        try:
            self.session.request("OPTIONS", self._url(), auth=self.auth, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout):
            return False
        return True

    def exists(self, path: str) -> bool:
        res = self._request("PROPFIND", path, headers={"Depth": "0"})
        if res.status_code == 404:
            return False
        self._check(res, "propfind", path)
        return True

    def test_connection(self) -> bool:
        res = self._request("PROPFIND", "", headers={"Depth": "0"})
        self._check(res, "propfind", "/")
        return True

    def create_directory(self, path: str) -> None:
        # MKCOL only creates one level; 405 means it already exists.
        parts = [p for p in (path or "").strip("/").split("/") if p]
        for i in range(len(parts)):
            sub = "/".join(parts[: i + 1])
            res = self._request("MKCOL", sub)
            self._check(res, "mkcol", sub, allowed=(405,))
        logger.debug("directory_ensured path=%s", path)

    def list_files(self, path: str) -> list[RemoteFile]:
        res = self._request(
            "PROPFIND",
            path,
            headers={"Depth": "1", "Content-Type": "application/xml; charset=utf-8"},
            data=PROPFIND_BODY.encode("utf-8"),
        )
        if res.status_code == 404:
            return []
        self._check(res, "list", path)
        return self._parse_listing(res.content, path)

    def _parse_listing(self, content: bytes, path: str) -> list[RemoteFile]:
        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            raise RemoteError(f"webdav_listing_unparseable: {e}") from e

        dir_path = unquote(urlparse(self._url(path)).path).rstrip("/")
        rel_dir = (path or "").strip("/")
        files: list[RemoteFile] = []
        for response in root.findall("d:response", DAV_NS):
            href = response.findtext("d:href", default="", namespaces=DAV_NS).strip()
            href_path = unquote(urlparse(href).path).rstrip("/")
            if not href_path or href_path == dir_path:
                continue
            if response.find(".//d:resourcetype/d:collection", DAV_NS) is not None:
                continue
            name = href_path.rsplit("/", 1)[-1]
            size_text = response.findtext(".//d:getcontentlength", default="", namespaces=DAV_NS).strip()
            files.append(
                RemoteFile(
                    name=name,
                    path=f"{rel_dir}/{name}" if rel_dir else name,
                    last_modified=_parse_http_date(response.findtext(".//d:getlastmodified", namespaces=DAV_NS)),
                    size=int(size_text) if size_text.isdigit() else None,
                )
            )
        return files

    def put_file(self, path: str, data: bytes, content_type: str = "application/gzip") -> None:
        res = self._request("PUT", path, data=data, headers={"Content-Type": content_type})
        self._check(res, "put", path)
        logger.debug("file_uploaded path=%s bytes=%s", path, len(data))

    def get_file(self, path: str) -> bytes:
        res = self._request("GET", path, headers=dict(NO_CACHE_HEADERS))
        self._check(res, "get", path)
        return res.content

    def delete_file(self, path: str) -> None:
        res = self._request("DELETE", path)
        self._check(res, "delete", path, allowed=(404,))
