from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Union
from urllib.parse import quote, urlencode

Segments = Union[str, Iterable[Any]]


def build_url(
    service_root: str,
    segments: Segments,
    query: Optional[Mapping[str, Any]] = None,
) -> str:
    """Compose ``<root>/<seg>/<seg>?<query>``.

    Segments are joined as-is; callers pass already-safe identifiers.
    List values in ``query`` become repeated parameters. The ``?`` is
    omitted when there is nothing to encode.
    """
    if isinstance(segments, str):
        segments = [segments]
    path = "/".join([service_root, *(str(s) for s in segments)])

    if not query:
        return path
    return path + "?" + urlencode(query, doseq=True, quote_via=quote)
