"""Content type and disposition derivation for served files."""

from __future__ import annotations

import mimetypes
import posixpath
from dataclasses import dataclass
from urllib.parse import quote


DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Built-in table only, so results do not depend on the host's mime.types files.
_MIME_TYPES = mimetypes.MimeTypes()


@dataclass(frozen=True)
class ContentDescriptor:
    content_type: str
    disposition_filename: str
    content_disposition: str


def content_type_for(key: str) -> str:
    extension = posixpath.splitext(key)[1]
    if not extension:
        return DEFAULT_CONTENT_TYPE
    table = _MIME_TYPES.types_map[True]
    content_type = table.get(extension) or table.get(extension.lower())
    if not content_type:
        return DEFAULT_CONTENT_TYPE
    if content_type.startswith("text/"):
        return f"{content_type}; charset=utf-8"
    return content_type


def _quoted_filename(name: str) -> str:
    cleaned = "".join(ch for ch in name if ch >= " " and ch != "\x7f")
    return cleaned.replace("\\", "\\\\").replace('"', '\\"')


def content_disposition_for(key: str) -> str:
    quoted = _quoted_filename(key)
    try:
        quoted.encode("latin-1")
    except UnicodeEncodeError:
        fallback = quoted.encode("ascii", "replace").decode("ascii")
        encoded = quote(key, safe="")
        return f"inline; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"
    return f'inline; filename="{quoted}"'


def describe(key: str) -> ContentDescriptor:
    return ContentDescriptor(
        content_type=content_type_for(key),
        disposition_filename=key,
        content_disposition=content_disposition_for(key),
    )
