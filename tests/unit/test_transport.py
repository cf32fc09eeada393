"""Tests for sfbroker.transport: headers and status/body classification."""

import pytest
import requests

from sfbroker.exceptions import AuthError, DecodeError, RequestError, TransportError
from sfbroker.transport import Blob, BlobInfo, ResponseStream, Transport


@pytest.fixture
def transport_for(fake_http):
    def _make(*responses, timeout=None):
        http = fake_http(responses=responses)
        return Transport(http, timeout=timeout), http

    return _make


def test_get_sends_oauth_header_only(transport_for, fake_response):
    t, http = transport_for(fake_response(json_data={"Id": "001"}), timeout=12.5)

    res = t.call("TOKEN", "na1.salesforce.com", "/services/data/v25.0/sobjects/Account/001", "GET")

    assert res == {"Id": "001"}
    call = http.calls[0]
    assert call["url"] == "https://na1.salesforce.com/services/data/v25.0/sobjects/Account/001"
    assert call["headers"] == {"Authorization": "OAuth TOKEN"}
    assert call["data"] is None
    assert call["timeout"] == 12.5


def test_payload_headers(transport_for, fake_response):
    t, http = transport_for(fake_response(201, json_data={"id": "003xx", "success": True}))
    body = b'{"LastName": "Doe"}'

    t.call("TOKEN", "host", "/p", "POST", body)

    headers = http.calls[0]["headers"]
    assert headers["Content-Type"] == "application/json"
    assert headers["Content-Length"] == str(len(body))
    assert headers["Expect"] == "100-continue"
    assert http.calls[0]["data"] == body


def test_401_is_retryable_auth_error(transport_for, fake_response):
    resp = fake_response(401, json_data=[{"errorCode": "INVALID_SESSION_ID"}])
    t, _ = transport_for(resp)

    with pytest.raises(AuthError) as exc_info:
        t.call("TOKEN", "host", "/p", "GET")

    assert exc_info.value.retryable
    assert exc_info.value.status == 401
    assert resp.closed


def test_403_is_not_retryable(transport_for, fake_response):
    t, _ = transport_for(fake_response(403))

    with pytest.raises(AuthError) as exc_info:
        t.call("TOKEN", "host", "/p", "GET")

    assert not exc_info.value.retryable
    assert exc_info.value.status == 403


def test_204_synthesizes_success(transport_for, fake_response):
    t, _ = transport_for(fake_response(204, body=b"", content_type=None))

    assert t.call("TOKEN", "host", "/p", "PATCH", b"{}") == {"errors": [], "success": True}


def test_204_body_is_a_fresh_dict(transport_for, fake_response):
    t, _ = transport_for(fake_response(204), fake_response(204))

    first = t.call("TOKEN", "host", "/p", "DELETE")
    first["errors"].append("mutated")

    assert t.call("TOKEN", "host", "/p", "DELETE") == {"errors": [], "success": True}


@pytest.mark.parametrize("status", [300, 400, 404, 500, 503])
def test_other_statuses_are_request_errors(transport_for, fake_response, status):
    t, _ = transport_for(fake_response(status, json_data=[{"message": "nope"}]))

    with pytest.raises(RequestError) as exc_info:
        t.call("TOKEN", "host", "/p", "GET")

    assert exc_info.value.status == status
    assert exc_info.value.detail == [{"message": "nope"}]


def test_bad_json_is_decode_error(transport_for, fake_response):
    t, _ = transport_for(fake_response(200, body=b'{"truncated": '))

    with pytest.raises(DecodeError):
        t.call("TOKEN", "host", "/p", "GET")


def test_non_json_body_is_returned_as_raw_bytes(transport_for, fake_response):
    raw = bytes(range(256)) * 4
    t, _ = transport_for(fake_response(200, body=raw, content_type="application/pdf"))

    res = t.call("TOKEN", "host", "/p", "GET")

    assert res == Blob(type="application/pdf", content=raw)


def test_connection_failure_is_transport_error(fake_http):
    cause = requests.ConnectionError("connection reset")
    t = Transport(fake_http(responses=[cause]))

    with pytest.raises(TransportError) as exc_info:
        t.call("TOKEN", "host", "/p", "GET")

    assert exc_info.value.__cause__ is cause


class TestStreaming:
    def test_stream_is_not_consumed(self, transport_for, fake_response):
        resp = fake_response(200, body=b"abcdef", content_type="image/png")
        t, http = transport_for(resp)

        stream = t.call("TOKEN", "host", "/p", "GET", want_stream=True)

        assert isinstance(stream, ResponseStream)
        assert http.calls[0]["stream"] is True
        assert not resp.closed
        assert stream.content_type == "image/png"
        assert b"".join(stream.iter_chunks(chunk_size=2)) == b"abcdef"

    def test_stream_reads_once(self, transport_for, fake_response):
        t, _ = transport_for(fake_response(200, body=b"abc", content_type="image/png"))
        stream = t.call("TOKEN", "host", "/p", "GET", want_stream=True)

        assert stream.read() == b"abc"
        with pytest.raises(RuntimeError):
            stream.read()

    def test_stream_errors_are_classified(self, transport_for, fake_response):
        resp = fake_response(404)
        t, _ = transport_for(resp)

        with pytest.raises(RequestError):
            t.call("TOKEN", "host", "/p", "GET", want_stream=True)
        assert resp.closed

    def test_save_writes_and_closes(self, tmp_path, transport_for, fake_response):
        resp = fake_response(200, body=b"x" * 1000, content_type="application/pdf")
        t, _ = transport_for(resp)
        stream = t.call("TOKEN", "host", "/p", "GET", want_stream=True)
        progress = []

        written = stream.save(str(tmp_path / "out.pdf"), progress=progress.append, chunk_size=300)

        assert written == 1000
        assert sum(progress) == 1000
        assert (tmp_path / "out.pdf").read_bytes() == b"x" * 1000
        assert resp.closed

    def test_info_overrides_content_type(self, fake_response):
        stream = ResponseStream(
            fake_response(200, content_type="application/octet-stream"),
            BlobInfo(name="a.pdf", content_type="application/pdf", size=3),
        )

        with stream as s:
            assert s.content_type == "application/pdf"
