from __future__ import annotations

from typing import TYPE_CHECKING, AsyncIterator, Optional

from components.filestorage.files import now_ms

if TYPE_CHECKING:
    from .parser import MultipartPart


class FileUpload:
    """A file that was uploaded as part of a ``multipart/form-data`` request.

    This is an intermediary: save it to disk or object storage as soon as
    possible, since the rest of the request body waits until it is read.

    ``size`` is always ``None``: the length is unknown without buffering the
    whole part, so storages treat it as an unknown-length source.
    """

    def __init__(self, part: "MultipartPart"):
        self.name = part.filename or ""
        self.type = part.media_type or ""
        self.last_modified = now_ms()
        self._part = part
        self._streamed = False

    @property
    def field_name(self) -> Optional[str]:
        """The name of the <input> field used to upload the file."""
        return self._part.name

    @property
    def size(self) -> Optional[int]:
        return None

    def stream(self) -> AsyncIterator[bytes]:
        if self._streamed:
            raise RuntimeError("a FileUpload can only be streamed once")
        self._streamed = True
        return self._part.body()

    async def bytes(self) -> bytes:
        buf = bytearray()
        async for chunk in self.stream():
            buf += chunk
        return bytes(buf)

    async def text(self) -> str:
        return (await self.bytes()).decode(self._part.charset, errors="replace")

    def __repr__(self) -> str:
        return f"FileUpload(field_name={self.field_name!r}, name={self.name!r}, type={self.type!r})"
