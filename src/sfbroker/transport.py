"""One HTTPS call per invocation, plus the status/body classification rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Union

import requests

from .exceptions import AuthError, DecodeError, RequestError, TransportError

_logger = logging.getLogger(__name__)

NO_CONTENT_BODY = {"errors": [], "success": True}
JSON_TYPE = "application/json"
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class Blob:
    """A buffered non-JSON body, kept as raw bytes."""

    type: Optional[str]
    content: bytes


@dataclass(frozen=True)
class BlobInfo:
    name: Optional[str]
    content_type: Optional[str]
    size: Optional[int]


class ResponseStream:
    """Live, not-yet-read response body handed to the caller.

    Iterating pulls chunks off the connection; it can be consumed once.
    The caller owns it and must ``close()`` it (or use ``with``).
    """

    def __init__(self, response: requests.Response, info: Optional[BlobInfo] = None):
        self._response = response
        self.info = info
        self._consumed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def content_type(self) -> Optional[str]:
        if self.info and self.info.content_type:
            return self.info.content_type
        return self._response.headers.get("Content-Type")

    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        if self._consumed:
            raise RuntimeError("Response stream has already been consumed")
        self._consumed = True
        for chunk in self._response.iter_content(chunk_size=chunk_size):
            if chunk:
                yield chunk

    __iter__ = iter_chunks

    def read(self) -> bytes:
        return b"".join(self.iter_chunks())

    def save(
        self,
        path: str,
        progress: Optional[Callable[[int], Any]] = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> int:
        """Write the whole stream to ``path``; returns bytes written and closes."""
        total = 0
        try:
            with open(path, "wb") as f:
                for chunk in self.iter_chunks(chunk_size):
                    f.write(chunk)
                    total += len(chunk)
                    if progress is not None:
                        progress(len(chunk))
        finally:
            self.close()
        return total

    def close(self) -> None:
        self._response.close()

    def __enter__(self) -> "ResponseStream":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<ResponseStream status={self.status_code} info={self.info!r}>"


Result = Union[dict, list, Blob, ResponseStream, Any]


def _is_json(content_type: Optional[str]) -> bool:
    return bool(content_type) and content_type.lower().startswith(JSON_TYPE)


def _error_detail(r: requests.Response) -> Any:
    try:
        return r.json()
    except ValueError:
        return r.text[:500]


class Transport:
    """Thin wrapper over a ``requests.Session`` speaking the REST API's dialect."""

    def __init__(self, session: Optional[requests.Session] = None, *, timeout: Optional[float] = None):
        self.session = session or requests.Session()
        self.timeout = timeout

    def close(self) -> None:
        self.session.close()

    def call(
        self,
        token: str,
        host: str,
        path: str,
        method: str,
        payload: Optional[bytes] = None,
        want_stream: bool = False,
    ) -> Result:
        headers = {"Authorization": f"OAuth {token}"}
        if payload is not None:
            headers["Content-Type"] = JSON_TYPE
            headers["Content-Length"] = str(len(payload))
            headers["Expect"] = "100-continue"

        url = f"https://{host}{path}"
        _logger.debug("%s %s (stream=%s)", method, url, want_stream)
        try:
            r = self.session.request(
                method,
                url,
                data=payload,
                headers=headers,
                stream=want_stream,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        try:
            return self._classify(r, want_stream)
        except Exception:
            r.close()
            raise

    def _classify(self, r: requests.Response, want_stream: bool) -> Result:
        status = r.status_code
        if status == 401:
            raise AuthError("Not Authenticated", status=status, retryable=True)
        if status == 403:
            raise AuthError("Access Denied", status=status)
        if status == 204:
            r.close()
            return dict(NO_CONTENT_BODY, errors=[])
        if status > 299:
            detail = _error_detail(r)
            _logger.error("HTTP %s error for %s: %s", status, r.url, detail)
            raise RequestError(status, detail)

        if want_stream:
            return ResponseStream(r)

        content_type = r.headers.get("Content-Type")
        if _is_json(content_type):
            try:
                return r.json()
            except ValueError as e:
                raise DecodeError(f"Invalid JSON body from {r.url}: {e}") from e
        return Blob(type=content_type, content=r.content)
