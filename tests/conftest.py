import json

import pytest
from requests.structures import CaseInsensitiveDict

from sfbroker.auth import TokenBundle

INSTANCE_URL = "https://na1.salesforce.com"


class FakeResponse:
    """Just enough of requests.Response for the transport and login code."""

    def __init__(
        self,
        status_code=200,
        *,
        json_data=None,
        body=b"",
        content_type="application/json;charset=UTF-8",
        url="https://na1.salesforce.com/fake",
    ):
        if json_data is not None:
            body = json.dumps(json_data).encode("utf-8")
        self.status_code = status_code
        self.content = body
        self.headers = CaseInsensitiveDict()
        if content_type:
            self.headers["Content-Type"] = content_type
        self.url = url
        self.closed = False

    @property
    def text(self):
        return self.content.decode("utf-8", "replace")

    def json(self):
        return json.loads(self.content.decode("utf-8"))

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]

    def close(self):
        self.closed = True


class FakeHTTP:
    """Scripted stand-in for requests.Session.

    ``logins`` feeds ``post`` (token endpoint), ``responses`` feeds ``request``.
    Items that are exceptions are raised instead of returned.
    """

    def __init__(self, logins=None, responses=None):
        self.logins = list(logins or [])
        self.responses = list(responses or [])
        self.login_calls = []
        self.calls = []
        self.closed = False

    def post(self, url, data=None, timeout=None):
        self.login_calls.append({"url": url, "data": data, "timeout": timeout})
        item = self.logins.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def request(self, method, url, data=None, headers=None, stream=False, timeout=None):
        self.calls.append(
            {
                "method": method,
                "url": url,
                "data": data,
                "headers": dict(headers or {}),
                "stream": stream,
                "timeout": timeout,
            }
        )
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self):
        self.closed = True


def token_response(token="00DTOKEN-0000000000000001", instance_url=INSTANCE_URL):
    return FakeResponse(json_data={"access_token": token, "instance_url": instance_url})


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_http():
    return FakeHTTP


@pytest.fixture
def login_ok():
    return token_response


@pytest.fixture
def bundle():
    return TokenBundle(
        access_token="00DOLD-TOKEN-000000000000",
        instance_url=INSTANCE_URL,
        instance_host="na1.salesforce.com",
    )


@pytest.fixture(autouse=True)
def _clean_sf_env(monkeypatch):
    """Keep a developer's real SF_* settings out of the tests."""
    for var in (
        "SF_LOGIN_HOST",
        "SF_USERNAME",
        "SF_PASSWORD",
        "SF_SECURITY_TOKEN",
        "SF_CLIENT_ID",
        "SF_CLIENT_SECRET",
        "SF_API_VERSION",
        "SF_TIMEOUT",
    ):
        monkeypatch.delenv(var, raising=False)
