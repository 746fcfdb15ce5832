
from __future__ import annotations

import time
from typing import AsyncIterator, Optional, Protocol

DEFAULT_READ_SIZE = 64 * 1024


def now_ms() -> int:
    return int(time.time() * 1000)


class FileLike(Protocol):
    """Anything that can be written to a file storage.

    ``size`` is ``None`` when the length cannot be known without consuming
    the stream (e.g. a form upload that is still arriving).
    """

    name: str
    type: str
    last_modified: int

    @property
    def size(self) -> Optional[int]: ...

    def stream(self) -> AsyncIterator[bytes]: ...


class LazyContent(Protocol):
    """A byte source whose I/O starts only when ``stream()`` is iterated.

    ``end`` is exclusive; ``start`` defaults to 0.
    """

    byte_length: int

    def stream(self, start: Optional[int] = None, end: Optional[int] = None) -> AsyncIterator[bytes]: ...


async def _empty() -> AsyncIterator[bytes]:
    return
    yield  # pragma: no cover


class _ReadAll:
    async def bytes(self) -> bytes:
        buf = bytearray()
        async for chunk in self.stream():
            buf += chunk
        return bytes(buf)

    async def text(self, encoding: str = "utf-8") -> str:
        return (await self.bytes()).decode(encoding)


class BytesFile(_ReadAll):
    """In-memory file with a known size."""

    def __init__(self, data: bytes, name: str, *, type: str = "", last_modified: Optional[int] = None,
                 chunk_size: int = DEFAULT_READ_SIZE):
        self.data = bytes(data)
        self.name = name
        self.type = type
        self.last_modified = now_ms() if last_modified is None else int(last_modified)
        self._chunk_size = chunk_size

    @property
    def size(self) -> Optional[int]:
        return len(self.data)

    async def stream(self) -> AsyncIterator[bytes]:
        for i in range(0, len(self.data), self._chunk_size):
            yield self.data[i:i + self._chunk_size]

    def __repr__(self) -> str:
        return f"BytesFile(name={self.name!r}, size={len(self.data)}, type={self.type!r})"


def _clamp(index: int, size: int) -> int:
    if index < 0:
        return max(size + index, 0)
    return min(index, size)


class LazyFile(_ReadAll):
    """A file backed by ``LazyContent``; nothing is read until ``stream()`` is iterated.

    ``slice()`` narrows the window without any I/O, so reading a small slice
    of a remote object only transfers that slice.
    """

    def __init__(self, content: LazyContent, name: str, *, type: str = "", last_modified: Optional[int] = None,
                 start: int = 0, end: Optional[int] = None):
        self.content = content
        self.name = name
        self.type = type
        self.last_modified = now_ms() if last_modified is None else int(last_modified)
        self._start = start
        self._end = content.byte_length if end is None else end

    @property
    def size(self) -> Optional[int]:
        return max(self._end - self._start, 0)

    @property
    def is_sliced(self) -> bool:
        return self._start != 0 or self._end != self.content.byte_length

    def slice(self, start: int = 0, end: Optional[int] = None, content_type: Optional[str] = None) -> "LazyFile":
        size = self.size
        s = _clamp(start, size)
        e = size if end is None else _clamp(end, size)
        e = max(e, s)
        return LazyFile(
            self.content,
            self.name,
            type=self.type if content_type is None else content_type,
            last_modified=self.last_modified,
            start=self._start + s,
            end=self._start + e,
        )

    def stream(self) -> AsyncIterator[bytes]:
        if not self.is_sliced:
            return self.content.stream()
        if self.size == 0:
            return _empty()
        return self.content.stream(self._start, self._end)

    async def aclose(self) -> None:
        close = getattr(self.content, "aclose", None)
        if close is not None:
            await close()

    def __repr__(self) -> str:
        return f"LazyFile(name={self.name!r}, size={self.size}, type={self.type!r})"
