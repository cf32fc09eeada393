"""Queued Salesforce REST client: ordered actions, lazy login, one auth retry."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sfbroker")
except PackageNotFoundError:  # pragma: no cover - running from a source checkout
    __version__ = "unknown"

from .api import SalesforceBroker, SFConfig
from .exceptions import (
    AuthError,
    BrokerError,
    DecodeError,
    MissingCredentialsError,
    RequestError,
    TransportError,
)
from .transport import Blob, BlobInfo, ResponseStream

__all__ = [
    "__version__",
    "SalesforceBroker",
    "SFConfig",
    "AuthError",
    "BrokerError",
    "DecodeError",
    "MissingCredentialsError",
    "RequestError",
    "TransportError",
    "Blob",
    "BlobInfo",
    "ResponseStream",
]
