
from __future__ import annotations
import logging
import time
from contextlib import contextmanager
from typing import Optional

from opentelemetry import trace

from .contracts import ErrorPayload, ListOptions, ListResult, MetaPayload, UWFResponse
from .errors import FetchFailed, FileStorageError, ProtocolError, RemoveFailed, StreamFailed, UploadFailed
from .files import FileLike, LazyFile
from .ports import FileStoragePort

log = logging.getLogger("filestorage.service")

# No-op unless an OpenTelemetry SDK is configured by the host application.
tracer = trace.get_tracer("filestorage")

@contextmanager
def _span(name: str, **attrs):
    with tracer.start_as_current_span(name) as span:
        for k, v in attrs.items():
            if v is not None:
                span.set_attribute(f"file.{k}", v)
        yield span

def uwf_ok(result, meta: MetaPayload) -> UWFResponse:
    return UWFResponse(ok=True, result=result, meta=meta)

def uwf_err(e: Exception, meta: MetaPayload) -> UWFResponse:
    if isinstance(e, ValueError):
        t, code = "VALIDATION", "FILE_VALIDATION"
    elif isinstance(e, LookupError):
        t, code = "NOT_FOUND", "FILE_NOT_FOUND"
    elif isinstance(e, (UploadFailed, FetchFailed, RemoveFailed, StreamFailed, ProtocolError)):
        t, code = "UPSTREAM", f"FILE_{type(e).__name__.upper()}"
    else:
        t, code = "INTERNAL", "FILE_INTERNAL"

    details = {"status": e.status} if isinstance(e, FileStorageError) and e.status else None
    err = ErrorPayload(type=t, code=code, message=str(e) or type(e).__name__, details=details)
    return UWFResponse(ok=False, error=err, meta=meta)

class FileStorageService:
    """Wraps any ``FileStoragePort`` with timing logs and tracing spans.

    Errors are logged and re-raised unchanged.
    """

    def __init__(self, adapter: FileStoragePort, adapter_name: str):
        self.adapter = adapter
        self.adapter_name = adapter_name

    def _ms(self, t0: float) -> int:
        return int((time.time() - t0) * 1000)

    async def has(self, key: str) -> bool:
        t0 = time.time()
        with _span("filestorage.has", key=key, adapter=self.adapter_name):
            try:
                found = await self.adapter.has(key)
            except Exception:
                log.exception("file.has err key=%s adapter=%s dur_ms=%s", key, self.adapter_name, self._ms(t0))
                raise
            log.info("file.has ok key=%s found=%s dur_ms=%s", key, found, self._ms(t0))
            return found

    async def get(self, key: str) -> Optional[LazyFile]:
        t0 = time.time()
        with _span("filestorage.get", key=key, adapter=self.adapter_name):
            try:
                file = await self.adapter.get(key)
            except Exception:
                log.exception("file.get err key=%s adapter=%s dur_ms=%s", key, self.adapter_name, self._ms(t0))
                raise
            log.info("file.get ok key=%s found=%s size=%s dur_ms=%s",
                     key, file is not None, file.size if file else None, self._ms(t0))
            return file

    async def set(self, key: str, file: FileLike) -> None:
        t0 = time.time()
        with _span("filestorage.set", key=key, adapter=self.adapter_name, size=file.size):
            try:
                await self.adapter.set(key, file)
            except Exception:
                log.exception("file.set err key=%s adapter=%s dur_ms=%s", key, self.adapter_name, self._ms(t0))
                raise
            log.info("file.set ok key=%s name=%s adapter=%s dur_ms=%s",
                     key, file.name, self.adapter_name, self._ms(t0))

    async def put(self, key: str, file: FileLike) -> LazyFile:
        t0 = time.time()
        with _span("filestorage.put", key=key, adapter=self.adapter_name, size=file.size):
            try:
                stored = await self.adapter.put(key, file)
            except Exception:
                log.exception("file.put err key=%s adapter=%s dur_ms=%s", key, self.adapter_name, self._ms(t0))
                raise
            log.info("file.put ok key=%s size=%s adapter=%s dur_ms=%s",
                     key, stored.size, self.adapter_name, self._ms(t0))
            return stored

    async def remove(self, key: str) -> None:
        t0 = time.time()
        with _span("filestorage.remove", key=key, adapter=self.adapter_name):
            try:
                await self.adapter.remove(key)
            except Exception:
                log.exception("file.remove err key=%s adapter=%s", key, self.adapter_name)
                raise
            log.info("file.remove ok key=%s dur_ms=%s", key, self._ms(t0))

    async def list(self, options: Optional[ListOptions] = None) -> ListResult:
        t0 = time.time()
        opts = options or ListOptions()
        with _span("filestorage.list", prefix=opts.prefix, adapter=self.adapter_name):
            try:
                res = await self.adapter.list(opts)
            except Exception:
                log.exception("file.list err prefix=%s adapter=%s", opts.prefix, self.adapter_name)
                raise
            log.info("file.list ok prefix=%s count=%s more=%s dur_ms=%s",
                     opts.prefix, len(res.files), res.cursor is not None, self._ms(t0))
            return res
