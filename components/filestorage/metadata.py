"""Translation between S3 object headers and ``FileMetadata``.

Name, type and last-modified time are stored as ``x-amz-meta-*`` headers so
they survive independently of the object's native attributes. Size is always
taken from ``Content-Length``.
"""

from __future__ import annotations

from email.utils import parsedate_to_datetime
from typing import Dict, Mapping, Optional
from urllib.parse import quote, unquote

import httpx

from .contracts import FileMetadata
from .files import FileLike

META_NAME = "x-amz-meta-name"
META_TYPE = "x-amz-meta-type"
META_LAST_MODIFIED = "x-amz-meta-lastmodified"

# Same reserved set that JS encodeURI leaves untouched.
_NAME_SAFE = ";,/?:@&=+$!*'()#"


def encode_name(name: str) -> str:
    return quote(name, safe=_NAME_SAFE)


def decode_name(value: str) -> str:
    return unquote(value)


def encode(file: FileLike) -> Dict[str, str]:
    headers = {
        META_NAME: encode_name(file.name),
        META_LAST_MODIFIED: str(int(file.last_modified)),
    }
    if file.type:
        headers["Content-Type"] = file.type
        headers[META_TYPE] = file.type
    return headers


def _http_date_ms(value: Optional[str]) -> int:
    if not value:
        return 0
    try:
        return int(parsedate_to_datetime(value).timestamp() * 1000)
    except (TypeError, ValueError):
        return 0


def _int_or_none(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def default_name(key: str) -> str:
    return key.rsplit("/", 1)[-1] or key


def decode(key: str, headers: Mapping[str, str]) -> FileMetadata:
    h = headers if isinstance(headers, httpx.Headers) else httpx.Headers(headers)

    raw_name = h.get(META_NAME)
    name = decode_name(raw_name) if raw_name else default_name(key)

    last_modified = _int_or_none(h.get(META_LAST_MODIFIED))
    if last_modified is None:
        last_modified = _http_date_ms(h.get("last-modified"))

    type_ = h.get(META_TYPE) or h.get("content-type") or ""
    size = _int_or_none(h.get("content-length")) or 0

    return FileMetadata(key=key, name=name, type=type_, size=size, last_modified=last_modified)
