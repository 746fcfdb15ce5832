"""Streaming ``multipart/form-data`` decoding on top of python-multipart.

Unlike ``Request.form()``, file parts are never spooled: each one is handed to
an upload handler as a ``FileUpload`` whose stream pulls the request body
through the parser on demand. Nothing past the current part is read until the
handler has finished with it.
"""

from __future__ import annotations

import inspect
import logging
from collections import deque
from typing import AsyncIterator, Awaitable, Callable, Deque, List, Optional, Tuple, Union

import python_multipart
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import parse_options_header
from starlette.datastructures import FormData
from starlette.requests import Request

from components.filestorage.files import BytesFile, FileLike
from .errors import FormDataLimitExceeded, FormDataParseError
from .upload import FileUpload

log = logging.getLogger("formdataparser")

Event = Tuple[str, object]
HandlerResult = Union[None, str, FileLike]
FileUploadHandler = Callable[[FileUpload], Union[HandlerResult, Awaitable[HandlerResult]]]


def is_multipart(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    media_type, _ = parse_options_header(content_type)
    return media_type == b"multipart/form-data"


class _MultipartEvents:
    """Feeds body chunks to the parser and hands back its callbacks as an ordered queue."""

    def __init__(self, chunks: AsyncIterator[bytes], boundary: bytes):
        self._chunks = chunks.__aiter__()
        self._pending: Deque[Event] = deque()
        self._headers: List[Tuple[bytes, bytes]] = []
        self._field = b""
        self._value = b""
        self._done = False
        callbacks = {
            "on_part_begin": self._on_part_begin,
            "on_part_data": self._on_part_data,
            "on_part_end": self._on_part_end,
            "on_header_field": self._on_header_field,
            "on_header_value": self._on_header_value,
            "on_header_end": self._on_header_end,
            "on_headers_finished": self._on_headers_finished,
        }
        self._parser = python_multipart.MultipartParser(boundary, callbacks)

    def _on_part_begin(self) -> None:
        self._headers = []

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._pending.append(("data", data[start:end]))

    def _on_part_end(self) -> None:
        self._pending.append(("end", None))

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers.append((self._field.lower(), self._value))
        self._field = b""
        self._value = b""

    def _on_headers_finished(self) -> None:
        self._pending.append(("headers", self._headers))

    async def next(self) -> Optional[Event]:
        while not self._pending:
            if self._done:
                return None
            try:
                chunk = await self._chunks.__anext__()
            except StopAsyncIteration:
                chunk = None
            try:
                if chunk is None:
                    self._done = True
                    self._parser.finalize()
                else:
                    self._parser.write(chunk)
            except MultipartParseError as e:
                raise FormDataParseError(str(e)) from e
        return self._pending.popleft()


class MultipartPart:
    """Headers of one part plus on-demand access to its body."""

    def __init__(self, headers: List[Tuple[bytes, bytes]], events: _MultipartEvents):
        self.headers = {k.decode("latin-1"): v.decode("latin-1") for k, v in headers}
        _, params = parse_options_header(dict(headers).get(b"content-disposition", b""))
        self.name = self._param(params, b"name")
        self.filename = self._param(params, b"filename")
        media_type, type_params = parse_options_header(dict(headers).get(b"content-type", b""))
        self.media_type = media_type.decode("latin-1") or None
        self.charset = self._param(type_params, b"charset") or "utf-8"
        self.finished = False
        self._events = events

    @staticmethod
    def _param(params: dict, name: bytes) -> Optional[str]:
        value = params.get(name)
        return value.decode("utf-8", errors="replace") if value is not None else None

    @property
    def is_file(self) -> bool:
        return self.filename is not None

    async def read_chunk(self) -> Optional[bytes]:
        """Next body chunk of this part, or ``None`` once the part has ended."""
        while not self.finished:
            event = await self._events.next()
            if event is None:
                raise FormDataParseError("unexpected end of multipart body")
            kind, payload = event
            if kind == "data" and payload:
                return payload
            if kind == "end":
                self.finished = True
        return None

    async def body(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read_chunk()
            if chunk is None:
                return
            yield chunk

    async def drain(self) -> None:
        while await self.read_chunk() is not None:
            pass

    async def text(self, limit: Optional[int] = None) -> str:
        buf = bytearray()
        async for chunk in self.body():
            buf += chunk
            if limit is not None and len(buf) > limit:
                raise FormDataLimitExceeded(f"field {self.name!r} exceeds {limit} bytes")
        return buf.decode(self.charset, errors="replace")


async def buffer_upload(file: FileUpload) -> BytesFile:
    # Slow path: the whole file ends up in memory.
    data = await file.bytes()
    return BytesFile(data, file.name, type=file.type, last_modified=file.last_modified)


async def parse_form_data(
    request: Request,
    upload_handler: Optional[FileUploadHandler] = None,
    *,
    max_files: int = 1000,
    max_fields: int = 1000,
    max_field_size: int = 1024 * 1024,
) -> FormData:
    """Parse a request body into ``FormData``, streaming file parts through ``upload_handler``.

    The handler receives each ``FileUpload`` while the body is still arriving
    and should move it somewhere (disk, object storage) before returning. It
    may return a ``str`` or file to store under the field name, or ``None`` to
    leave the field out. Without a handler each file is buffered in memory.
    Non-multipart bodies are delegated to ``request.form()``.
    """
    content_type = request.headers.get("content-type")
    if not is_multipart(content_type):
        return await request.form()

    _, params = parse_options_header(content_type)
    boundary = params.get(b"boundary")
    if not boundary:
        raise FormDataParseError("missing boundary in multipart/form-data content type")

    handler = upload_handler or buffer_upload
    events = _MultipartEvents(request.stream(), boundary)
    items: List[Tuple[str, Union[str, FileLike]]] = []
    files = fields = 0

    while True:
        event = await events.next()
        if event is None:
            break
        kind, payload = event
        if kind != "headers":
            continue
        part = MultipartPart(payload, events)

        if not part.name:
            await part.drain()
            continue

        if part.is_file:
            files += 1
            if files > max_files:
                raise FormDataLimitExceeded(f"too many files, maximum is {max_files}")
            upload = FileUpload(part)
            result = handler(upload)
            if inspect.isawaitable(result):
                result = await result
            # whatever the handler left unread must be consumed before the next part
            await part.drain()
            if result is not None:
                items.append((part.name, result))
            log.debug("formdata.file field=%s filename=%s stored=%s", part.name, upload.name, result is not None)
        else:
            fields += 1
            if fields > max_fields:
                raise FormDataLimitExceeded(f"too many fields, maximum is {max_fields}")
            items.append((part.name, await part.text(limit=max_field_size)))

    return FormData(items)
