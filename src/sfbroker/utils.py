from __future__ import annotations

import os
import re

_SIMPLE_MIME = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".png": "image/png",
}
DEFAULT_MIME = "application/octet-stream"


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def sanitize_filename(name: str, repl: str = "_") -> str:
    """
    Make a portable filename:
    - replace invalid characters (/:*?"<>| and whitespace) with `_`
    - strip leading/trailing separators
    - fallback to 'file' if empty
    """
    safe = re.sub(r'[\\/:*?"<>|\s]+', repl, name or "").strip(repl)
    return safe or "file"


def simple_mime(name: str | None) -> str:
    """Guess a MIME type from a file-name extension (attachments only need a few)."""
    ext = os.path.splitext(name or "")[1].lower()
    return _SIMPLE_MIME.get(ext, DEFAULT_MIME)
