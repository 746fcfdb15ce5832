
from __future__ import annotations

import logging
import re
import time
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from components.formdataparser import FileUpload, FormDataError, parse_form_data
from .contracts import FileMetadata, ListOptions, MetaPayload
from .errors import FileStorageError
from .service import FileStorageService, uwf_err, uwf_ok

logger = logging.getLogger("filestorage.http")
router = APIRouter(prefix="/files", tags=["files"])

# --- Dependency wiring (replace in app startup) ---

_service_singleton: Optional[FileStorageService] = None


def set_file_service(svc: FileStorageService) -> None:
    global _service_singleton
    _service_singleton = svc


def get_file_service() -> FileStorageService:
    global _service_singleton
    if _service_singleton is None:
        from . import make_storage_from_env

        storage, name = make_storage_from_env()
        _service_singleton = FileStorageService(storage, name)
    return _service_singleton


def _meta(svc: FileStorageService, t0: float) -> MetaPayload:
    return MetaPayload(adapter=svc.adapter_name, duration_ms=int((time.time() - t0) * 1000))


def _error(e: Exception, svc: FileStorageService, t0: float) -> JSONResponse:
    if isinstance(e, (ValueError, FormDataError)):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(e, LookupError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, FileStorageError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(uwf_err(e, _meta(svc, t0)).model_dump(), status_code=code)


_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


def parse_range(value: str, size: int) -> Optional[Tuple[int, int]]:
    """Parse a single-range ``Range`` header into an end-exclusive window.

    Returns ``None`` for anything that should be answered with the whole file
    (multiple ranges, other units). Raises ``ValueError`` when unsatisfiable.
    """
    m = _RANGE_RE.match(value.strip())
    if not m or m.group(1) == m.group(2) == "":
        return None
    first, last = m.groups()
    if first == "":
        suffix = int(last)
        if suffix == 0 or size == 0:
            raise ValueError("unsatisfiable range")
        return max(size - suffix, 0), size
    start = int(first)
    end = size if last == "" else min(int(last) + 1, size)
    if start >= size or end <= start:
        raise ValueError("unsatisfiable range")
    return start, end


# --- Routes ---

@router.post("", status_code=status.HTTP_201_CREATED)
async def upload_files(
    request: Request,
    prefix: str = Query(""),
    svc: FileStorageService = Depends(get_file_service),
):
    t0 = time.time()
    stored: List[FileMetadata] = []
    base = prefix.strip("/")

    async def store(upload: FileUpload):
        name = upload.name.replace("\\", "/").rsplit("/", 1)[-1]
        if not name:
            return None
        key = f"{base}/{name}" if base else name
        file = await svc.put(key, upload)
        # an eager store holds the GET open until the file is closed
        await file.aclose()
        stored.append(FileMetadata(key=key, name=file.name, type=file.type,
                                   size=file.size or 0, last_modified=file.last_modified))
        return None

    try:
        form = await parse_form_data(request, store)
    except Exception as e:
        logger.exception("files.upload failed prefix=%s", base)
        return _error(e, svc, t0)

    fields = {k: v for k, v in form.multi_items() if isinstance(v, str)}
    result = {"files": [m.model_dump() for m in stored], "fields": fields}
    return JSONResponse(uwf_ok(result, _meta(svc, t0)).model_dump(), status_code=status.HTTP_201_CREATED)


@router.get("")
async def list_files(
    prefix: Optional[str] = None,
    cursor: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    include_metadata: bool = False,
    svc: FileStorageService = Depends(get_file_service),
):
    t0 = time.time()
    try:
        res = await svc.list(ListOptions(prefix=prefix, cursor=cursor, limit=limit,
                                         include_metadata=include_metadata))
    except Exception as e:
        return _error(e, svc, t0)
    return uwf_ok(res.model_dump(), _meta(svc, t0)).model_dump()


@router.head("/{key:path}")
async def head_file(key: str, svc: FileStorageService = Depends(get_file_service)):
    t0 = time.time()
    try:
        file = await svc.get(key)
    except Exception as e:
        return _error(e, svc, t0)
    if file is None:
        return Response(status_code=status.HTTP_404_NOT_FOUND)
    await file.aclose()
    return Response(headers={
        "Content-Length": str(file.size),
        "Content-Type": file.type or "application/octet-stream",
        "Accept-Ranges": "bytes",
    })


@router.get("/{key:path}")
async def download_file(
    key: str,
    range_header: Optional[str] = Header(None, alias="Range"),
    svc: FileStorageService = Depends(get_file_service),
):
    t0 = time.time()
    try:
        file = await svc.get(key)
    except Exception as e:
        return _error(e, svc, t0)
    if file is None:
        return _error(LookupError(f"file {key!r} not found"), svc, t0)

    size = file.size or 0
    headers = {"Accept-Ranges": "bytes"}
    body, code = file, status.HTTP_200_OK
    if range_header:
        try:
            window = parse_range(range_header, size)
        except ValueError:
            await file.aclose()
            return Response(status_code=status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE,
                            headers={"Content-Range": f"bytes */{size}"})
        if window is not None:
            start, end = window
            body, code = file.slice(start, end), status.HTTP_206_PARTIAL_CONTENT
            headers["Content-Range"] = f"bytes {start}-{end - 1}/{size}"

    headers["Content-Length"] = str(body.size)
    return StreamingResponse(
        body.stream(),
        status_code=code,
        media_type=file.type or "application/octet-stream",
        headers=headers,
        background=BackgroundTask(file.aclose),
    )


@router.delete("/{key:path}")
async def delete_file(key: str, svc: FileStorageService = Depends(get_file_service)):
    t0 = time.time()
    try:
        await svc.remove(key)
    except Exception as e:
        return _error(e, svc, t0)
    return uwf_ok({"key": key, "deleted": True}, _meta(svc, t0)).model_dump()
