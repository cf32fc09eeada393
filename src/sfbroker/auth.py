"""Password-grant login against the Salesforce OAuth token endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import requests

from .exceptions import AuthError, TransportError

_logger = logging.getLogger(__name__)

TOKEN_PATH = "/services/oauth2/token"


@dataclass(frozen=True)
class TokenBundle:
    """Access token plus the instance host every API call goes to."""

    access_token: str
    instance_url: str
    instance_host: str
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


def token_preview(token: str) -> str:
    return f"{token[:10]}...{token[-6:]}" if len(token) > 20 else "***"


def authenticate(
    session: requests.Session,
    *,
    login_host: str,
    username: Optional[str],
    password: Optional[str],
    credential: Optional[str],
    client_id: Optional[str],
    client_secret: Optional[str],
    timeout: Optional[float] = None,
) -> TokenBundle:
    """Exchange username/password(+security token) for a TokenBundle.

    Raises AuthError on a non-2xx status or an unusable body, and
    TransportError when the request never completes. Never retries.
    """
    token_url = f"https://{login_host}{TOKEN_PATH}"
    data = {
        "grant_type": "password",
        "client_id": client_id or "",
        "client_secret": client_secret or "",
        "username": username or "",
        "password": (password or "") + (credential or ""),
        "format": "json",
    }

    _logger.debug("Requesting access token from %s for %s", token_url, username)
    try:
        r = session.post(token_url, data=data, timeout=timeout)
    except requests.RequestException as e:
        raise TransportError(f"Login request failed: {e}") from e

    if r.status_code > 299:
        raise AuthError(f"Invalid Login: {r.status_code}", status=r.status_code)

    try:
        payload = r.json()
    except ValueError as e:
        raise AuthError(f"Invalid Login: unparseable token response ({e})") from e

    if not isinstance(payload, dict) or not payload.get("access_token") or not payload.get("instance_url"):
        raise AuthError("Invalid Login: token response lacks access_token/instance_url")

    instance_url = str(payload["instance_url"]).rstrip("/")
    host = urlparse(instance_url).hostname
    if not host:
        raise AuthError(f"Invalid Login: bad instance_url {instance_url!r}")

    bundle = TokenBundle(
        access_token=payload["access_token"],
        instance_url=instance_url,
        instance_host=host,
        raw=payload,
    )
    _logger.info("Logged in as %s; instance host=%s", username, host)
    return bundle
