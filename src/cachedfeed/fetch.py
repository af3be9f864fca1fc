from __future__ import annotations

import base64
import gzip
import hashlib
import http.client
import logging
import os
import tempfile
import time
import zlib
from pathlib import Path
from typing import NamedTuple, Optional, Protocol, Tuple
from urllib.error import HTTPError, URLError
from urllib.request import (
    HTTPErrorProcessor,
    HTTPRedirectHandler,
    Request,
    build_opener,
)

try:
    import brotli

    HAS_BROTLI = True
except ImportError:
    HAS_BROTLI = False

from .config import FeedConfig
from .exceptions import FetchError, TransportError

logger = logging.getLogger(__name__)

Credentials = Tuple[str, str]


class TransportResponse(NamedTuple):
    status: int
    body: bytes


class Transport(Protocol):
    supports_auth: bool

    def get(
        self,
        url: str,
        *,
        auth: Optional[Credentials] = None,
        timeout: float,
        follow_redirects: bool,
        user_agent: str,
    ) -> TransportResponse: ...


class _NoRedirectHandler(HTTPRedirectHandler):
    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


def _decode_body(content: bytes, content_encoding: Optional[str]) -> bytes:
    if content_encoding == "gzip":
        return gzip.decompress(content)
    if content_encoding == "deflate":
        return zlib.decompress(content, -zlib.MAX_WBITS)
    if content_encoding == "br":
        if not HAS_BROTLI:
            raise TransportError(
                "Received brotli-compressed response but 'brotli' is not installed"
            )
        try:
            return brotli.decompress(content)
        except brotli.error as e:
            raise TransportError(f"Corrupt brotli body: {e}") from e
    return content


class UrllibTransport:
    """HTTP GET through ``urllib.request`` with preemptive basic auth."""

    supports_auth = True

    def get(
        self,
        url: str,
        *,
        auth: Optional[Credentials] = None,
        timeout: float,
        follow_redirects: bool,
        user_agent: str,
    ) -> TransportResponse:
        headers = {
            "Accept-Encoding": "gzip, deflate, br" if HAS_BROTLI else "gzip, deflate",
            "User-Agent": user_agent,
        }
        if auth is not None:
            token = base64.b64encode(f"{auth[0]}:{auth[1]}".encode("utf-8"))
            headers["Authorization"] = "Basic " + token.decode("ascii")
        redirect_handler = (
            HTTPRedirectHandler() if follow_redirects else _NoRedirectHandler()
        )
        opener = build_opener(redirect_handler, HTTPErrorProcessor())
        try:
            request = Request(url, method="GET", headers=headers)
            with opener.open(request, timeout=timeout) as response:
                content: bytes = response.read()
                content = _decode_body(
                    content, response.headers.get("Content-Encoding")
                )
                return TransportResponse(response.status, content)
        except HTTPError as e:
            return TransportResponse(e.code, b"")
        except (
            URLError, http.client.HTTPException, OSError, ValueError, zlib.error
        ) as e:
            raise TransportError(f"GET {url} failed: {e}") from e


class CacheStore:
    """Raw response bodies on disk, one ``feed.<md5>.xml`` file per URL."""

    def __init__(self, directory: Optional[Path], expire: int = 86400):
        self.directory = Path(directory) if directory is not None else None
        self.expire = expire

    @property
    def enabled(self) -> bool:
        return self.directory is not None

    def path_for(self, url: str) -> Optional[Path]:
        if self.directory is None:
            return None
        digest = hashlib.md5(url.encode("utf-8")).hexdigest()
        return self.directory / f"feed.{digest}.xml"

    def read(self, url: str) -> Optional[bytes]:
        """Return the cached body for ``url`` if it is not older than ``expire``."""
        path = self.path_for(url)
        if path is None:
            return None
        try:
            age = time.time() - path.stat().st_mtime
            if age > self.expire:
                logger.debug("Cache entry for %s expired (%.0fs old)", url, age)
                return None
            return path.read_bytes()
        except OSError as e:
            logger.debug("Cache miss for %s: %s", url, e)
            return None

    def read_stale(self, url: str) -> Optional[bytes]:
        """Return the cached body for ``url`` regardless of its age."""
        path = self.path_for(url)
        if path is None:
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            logger.debug("No stale cache entry for %s: %s", url, e)
            return None

    def write(self, url: str, data: bytes) -> None:
        path = self.path_for(url)
        if path is None:
            return
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=path.parent, prefix=path.name + ".", delete=False
            ) as fh:
                tmp_name = fh.name
                fh.write(data)
            os.replace(tmp_name, path)
        except OSError as e:
            logger.warning("Could not write cache entry for %s: %s", url, e)
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass


class Fetcher:
    """Fetch feed bodies, serving fresh cache hits and stale ones on failure."""

    def __init__(
        self,
        config: Optional[FeedConfig] = None,
        transport: Optional[Transport] = None,
    ):
        self.config = config or FeedConfig()
        self.transport = transport if transport is not None else UrllibTransport()
        self.cache = CacheStore(self.config.cache_dir, self.config.cache_expire)

    def fetch(
        self, url: str, user: Optional[str] = None, password: Optional[str] = None
    ) -> bytes:
        """Return the raw body of ``url``.

        Raises:
            FetchError: If neither the network nor the cache can provide a body,
                or credentials were given to a transport without basic auth.
        """
        if self.cache.enabled:
            cached = self.cache.read(url)
            if cached is not None:
                logger.debug("Serving %s from cache", url)
                return cached

        auth: Optional[Credentials] = None
        if user is not None or password is not None:
            if not getattr(self.transport, "supports_auth", False):
                raise FetchError("No capable HTTP client for authenticated requests")
            auth = (user or "", password or "")

        logger.info("Fetching %s", url)
        try:
            response = self.transport.get(
                url,
                auth=auth,
                timeout=self.config.timeout,
                follow_redirects=self.config.follow_redirects,
                user_agent=self.config.user_agent,
            )
        except TransportError as e:
            failure = str(e)
        else:
            if 200 <= response.status < 300:
                if self.cache.enabled:
                    self.cache.write(url, response.body)
                return response.body
            failure = f"HTTP status {response.status}"

        if self.cache.enabled:
            stale = self.cache.read_stale(url)
            if stale is not None:
                logger.warning(
                    "Fetching %s failed (%s), serving stale cache", url, failure
                )
                return stale
        raise FetchError(f"Cannot load channel {url}: {failure}")
