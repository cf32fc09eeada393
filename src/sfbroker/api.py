from __future__ import annotations

import base64
import json
import logging
import os
from concurrent.futures import Future
from dataclasses import dataclass
from typing import IO, Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import requests

from .auth import TokenBundle, authenticate
from .engine import Action, BrokerSession, Callback, resolve
from .env_loader import load_env_files
from .exceptions import BrokerError
from .transport import BlobInfo, ResponseStream, Transport
from .urls import build_url
from .utils import simple_mime

__author__ = "Kevin Steptoe"
__copyright__ = "Kevin Steptoe"
__license__ = "MIT"

_logger = logging.getLogger(__name__)

# Ensure .env is loaded for library use as well (e.g., scripts importing SalesforceBroker)
load_env_files(quiet=True)

DEFAULT_API_VERSION = "v25.0"

Fields = Union[Sequence[str], Mapping[str, Any], None]


# ----------------------------------------------------------------------
# Configuration dataclass
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class SFConfig:
    """Credentials and connection settings; immutable once the broker exists."""

    # Login host, not the instance host (that comes back from the token call)
    login_host: str = "login.salesforce.com"

    username: Optional[str] = None
    password: Optional[str] = None
    # Security token, appended to the password on login
    credential: str = ""

    client_id: Optional[str] = None
    client_secret: Optional[str] = None

    api_version: str = DEFAULT_API_VERSION

    # Per-request timeout in seconds; None waits forever
    timeout: Optional[float] = None

    @classmethod
    def from_env(cls) -> SFConfig:
        """Load configuration from environment variables."""
        timeout = os.getenv("SF_TIMEOUT")
        return cls(
            login_host=os.getenv("SF_LOGIN_HOST", "login.salesforce.com"),
            username=os.getenv("SF_USERNAME"),
            password=os.getenv("SF_PASSWORD"),
            credential=os.getenv("SF_SECURITY_TOKEN", ""),
            client_id=os.getenv("SF_CLIENT_ID"),
            client_secret=os.getenv("SF_CLIENT_SECRET"),
            api_version=os.getenv("SF_API_VERSION", DEFAULT_API_VERSION),
            timeout=float(timeout) if timeout else None,
        )

    @property
    def service_root(self) -> str:
        return f"/services/data/{self.api_version}"

    def missing(self) -> List[str]:
        """Env var names of required settings that are empty."""
        return [
            k
            for k, v in {
                "SF_LOGIN_HOST": self.login_host,
                "SF_USERNAME": self.username,
                "SF_PASSWORD": self.password,
                "SF_CLIENT_ID": self.client_id,
                "SF_CLIENT_SECRET": self.client_secret,
            }.items()
            if not v
        ]


def _encode(obj: Any) -> bytes:
    return json.dumps(obj).encode("utf-8")


def _fields_query(fields: Fields) -> Optional[Dict[str, str]]:
    if isinstance(fields, str):
        fields = [fields]
    elif isinstance(fields, Mapping):
        fields = list(fields.keys())
    if not fields:
        return None
    return {"fields": ", ".join(fields)}


def _read_all(stream: Union[IO[bytes], Iterable[bytes]]) -> bytes:
    read = getattr(stream, "read", None)
    if callable(read):
        return read()
    return b"".join(stream)


# ----------------------------------------------------------------------
# Main broker
# ----------------------------------------------------------------------
class SalesforceBroker:
    """Queued Salesforce REST client.

    Every operation is queued and runs in submission order on a single
    background worker; it returns a ``concurrent.futures.Future`` and also
    accepts ``callback(error, result)``. Login happens lazily before the
    first call and again whenever the token is rejected.

    Callbacks run on the worker thread: they may queue further operations
    but must not block on another operation's future.

    Example:
        >>> with SalesforceBroker(SFConfig.from_env()) as sf:
        ...     acct = sf.fetch_object("Account", "001xx", ["Name"]).result()
    """

    def __init__(
        self,
        cfg: Optional[SFConfig] = None,
        *,
        http: Optional[requests.Session] = None,
        max_auth_retries: int = 1,
    ) -> None:
        self.cfg = cfg or SFConfig.from_env()
        self.http = http or requests.Session()
        self.transport = Transport(self.http, timeout=self.cfg.timeout)
        self.session = BrokerSession(
            self.login,
            self.transport,
            max_auth_retries=max_auth_retries,
        )

    def __enter__(self) -> SalesforceBroker:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def close(self) -> None:
        """Wait for queued work, then release the worker and the HTTP session."""
        self.session.close()
        self.transport.close()

    def login(self) -> TokenBundle:
        """Log in directly, outside the queue. The queue does its own logins."""
        return authenticate(
            self.http,
            login_host=self.cfg.login_host,
            username=self.cfg.username,
            password=self.cfg.password,
            credential=self.cfg.credential,
            client_id=self.cfg.client_id,
            client_secret=self.cfg.client_secret,
            timeout=self.cfg.timeout,
        )

    def _url(self, segments, query: Optional[Mapping[str, Any]] = None) -> str:
        return build_url(self.cfg.service_root, segments, query)

    def _queue(
        self,
        method: str,
        command: str,
        *,
        payload: Optional[bytes] = None,
        stream: bool = False,
        callback: Optional[Callback] = None,
    ) -> Future:
        action = Action(
            command=command,
            method=method,
            payload=payload,
            stream_response=stream,
            on_complete=callback,
        )
        return self.session.enqueue(action)

    # --------------------------- Schema & search ----------------------

    def describe(self, object_name: Optional[str] = None, *, callback: Optional[Callback] = None) -> Future:
        """Global describe, or ``sobjects/<name>/describe`` for one object."""
        segments = ["sobjects"] if object_name is None else ["sobjects", object_name, "describe"]
        return self._queue("GET", self._url(segments), callback=callback)

    def query_objects(self, soql: str, *, callback: Optional[Callback] = None) -> Future:
        return self._queue("GET", self._url("query", {"q": soql}), callback=callback)

    def search_objects(self, sosl: str, *, callback: Optional[Callback] = None) -> Future:
        return self._queue("GET", self._url("search", {"q": sosl}), callback=callback)

    # --------------------------- Records by Id ------------------------

    def create_object(self, name: str, obj: Any, *, callback: Optional[Callback] = None) -> Future:
        return self._queue("POST", self._url(["sobjects", name]), payload=_encode(obj), callback=callback)

    def fetch_object(
        self,
        name: str,
        record_id: str,
        fields: Fields = None,
        *,
        callback: Optional[Callback] = None,
    ) -> Future:
        """GET one record; ``fields`` may be a list of names or a mapping whose keys are used."""
        url = self._url(["sobjects", name, record_id], _fields_query(fields))
        return self._queue("GET", url, callback=callback)

    def update_object(self, name: str, record_id: str, data: Any, *, callback: Optional[Callback] = None) -> Future:
        url = self._url(["sobjects", name, record_id])
        return self._queue("PATCH", url, payload=_encode(data), callback=callback)

    def upsert_object(
        self,
        name: str,
        data: Mapping[str, Any],
        index_field: str,
        *,
        callback: Optional[Callback] = None,
    ) -> Future:
        """PATCH to ``sobjects/<name>/<index_field>/<data[index_field]>``."""
        url = self._url(["sobjects", name, index_field, data[index_field]])
        return self._queue("PATCH", url, payload=_encode(data), callback=callback)

    def delete_object(self, name: str, record_id: str, *, callback: Optional[Callback] = None) -> Future:
        return self._queue("DELETE", self._url(["sobjects", name, record_id]), callback=callback)

    # --------------------------- Records by external id ---------------

    def fetch_external_object(
        self, name: str, index_field: str, value: Any, *, callback: Optional[Callback] = None
    ) -> Future:
        return self._queue("GET", self._url(["sobjects", name, index_field, value]), callback=callback)

    def update_external_object(
        self,
        name: str,
        data: Mapping[str, Any],
        index_field: str,
        *,
        callback: Optional[Callback] = None,
    ) -> Future:
        url = self._url(["sobjects", name, index_field, data[index_field]])
        return self._queue("PATCH", url, payload=_encode(data), callback=callback)

    upsert_external_object = upsert_object

    def delete_external_object(
        self, name: str, index_field: str, value: Any, *, callback: Optional[Callback] = None
    ) -> Future:
        return self._queue("DELETE", self._url(["sobjects", name, index_field, value]), callback=callback)

    # --------------------------- Attachments --------------------------

    def create_attachment(
        self,
        parent_id: str,
        name: str,
        content: Any,
        content_type: Optional[str] = None,
        *,
        callback: Optional[Callback] = None,
    ) -> Future:
        """Upload an Attachment; non-bytes ``content`` is stored as its JSON encoding."""
        if isinstance(content, bytearray):
            content = bytes(content)
        elif not isinstance(content, bytes):
            content = _encode(content)
        body = {
            "ParentId": parent_id,
            "ContentType": content_type or simple_mime(name),
            "Name": name,
            "Body": base64.b64encode(content).decode("ascii"),
        }
        url = self._url(["sobjects", "Attachment"])
        return self._queue("POST", url, payload=_encode(body), callback=callback)

    attach_buffer = create_attachment

    def attach_stream(
        self,
        parent_id: str,
        name: str,
        stream: Union[IO[bytes], Iterable[bytes]],
        content_type: Optional[str] = None,
        *,
        callback: Optional[Callback] = None,
    ) -> Future:
        """Read ``stream`` to the end, then upload it as an Attachment.

        A read error fails the returned future without queueing anything.
        """
        try:
            content = _read_all(stream)
        except Exception as e:
            _logger.error("Reading attachment %s failed: %s", name, e)
            return self._failed(e, callback)
        return self.create_attachment(parent_id, name, content, content_type, callback=callback)

    def attach_file(
        self,
        parent_id: str,
        filename: str,
        content_type: Optional[str] = None,
        *,
        callback: Optional[Callback] = None,
    ) -> Future:
        name = os.path.basename(filename)
        content_type = content_type or simple_mime(name)
        try:
            f = open(filename, "rb")
        except OSError as e:
            _logger.error("Opening attachment file %s failed: %s", filename, e)
            return self._failed(e, callback)
        with f:
            return self.attach_stream(parent_id, name, f, content_type, callback=callback)

    # --------------------------- Streaming ----------------------------

    def blob_stream(
        self,
        name: str,
        record_id: str,
        field: str,
        *,
        callback: Optional[Callback] = None,
    ) -> Future:
        """Open a live stream on a binary field (e.g. ``Attachment/<id>/Body``)."""
        url = self._url(["sobjects", name, record_id, field])
        return self._queue("GET", url, stream=True, callback=callback)

    def attachment_stream(self, attachment_id: str, *, callback: Optional[Callback] = None) -> Future:
        """Stream an Attachment body, annotated with its name, type and size.

        Queues a metadata fetch; once it completes, queues the body stream.
        """
        outer: Future = Future()

        def finish(error: Optional[BaseException], result: Any) -> None:
            if callback is not None:
                try:
                    callback(error, result)
                except Exception:
                    _logger.exception("Callback for attachment %s raised", attachment_id)
            if not resolve(outer, error, result) and isinstance(result, ResponseStream):
                # Caller cancelled while we were waiting; nobody will close it.
                result.close()

        def on_info(err: Optional[BaseException], info: Any) -> None:
            if err is not None or not isinstance(info, Mapping):
                finish(err or BrokerError("No Attachment Information"), None)
                return

            def on_stream(err2: Optional[BaseException], stream: Any) -> None:
                if err2 is not None or not isinstance(stream, ResponseStream):
                    finish(err2 or BrokerError("No Attachment Stream"), None)
                    return
                try:
                    stream.info = BlobInfo(
                        name=info.get("Name"),
                        content_type=info.get("ContentType") or simple_mime(info.get("Name")),
                        size=info.get("BodyLength"),
                    )
                except Exception as e:
                    stream.close()
                    finish(e, None)
                    return
                finish(None, stream)

            self.blob_stream("Attachment", attachment_id, "Body", callback=on_stream)

        self.fetch_object(
            "Attachment",
            attachment_id,
            ["Name", "ContentType", "BodyLength"],
            callback=on_info,
        )
        return outer

    # --------------------------- Helpers ------------------------------

    @staticmethod
    def _failed(error: BaseException, callback: Optional[Callback]) -> Future:
        fut: Future = Future()
        if callback is not None:
            try:
                callback(error, None)
            except Exception:
                _logger.exception("Callback for failed attachment raised")
        fut.set_exception(error)
        return fut
