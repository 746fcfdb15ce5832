
from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, constr, conint

# ---------- Unified Wire Format (UWF) ----------

class ErrorPayload(BaseModel):
    type: Literal["VALIDATION", "NOT_FOUND", "UPSTREAM", "INTERNAL"]
    code: constr(strip_whitespace=True, min_length=1)
    message: constr(strip_whitespace=True, min_length=1)
    details: Optional[Dict[str, Any]] = None

class MetaPayload(BaseModel):
    trace_id: Optional[str] = None
    request_id: Optional[str] = None
    duration_ms: Optional[int] = None
    adapter: Optional[str] = None

class UWFResponse(BaseModel):
    ok: bool
    result: Optional[Any] = None
    error: Optional[ErrorPayload] = None
    meta: MetaPayload = Field(default_factory=MetaPayload)

# ---------- File records ----------

class FileKey(BaseModel):
    key: str

class FileMetadata(BaseModel):
    key: str
    name: str
    type: str = ""
    size: int = 0
    last_modified: int = 0  # epoch milliseconds

class ListOptions(BaseModel):
    prefix: Optional[str] = None
    cursor: Optional[str] = None  # opaque
    limit: Optional[conint(ge=1, le=1000)] = None
    include_metadata: bool = False

class ListResult(BaseModel):
    files: List[Union[FileMetadata, FileKey]] = Field(default_factory=list)
    cursor: Optional[str] = None

    def keys(self) -> List[str]:
        return [f.key for f in self.files]

# ---------- Multipart session ----------

class CompletedPart(BaseModel):
    part_number: conint(ge=1, le=10000)
    etag: constr(min_length=1)

class UploadSession(BaseModel):
    upload_id: constr(min_length=1)
    key: constr(min_length=1)
    parts: List[CompletedPart] = Field(default_factory=list)

    @property
    def next_part_number(self) -> int:
        return len(self.parts) + 1

    def record(self, etag: str) -> CompletedPart:
        part = CompletedPart(part_number=self.next_part_number, etag=etag)
        self.parts.append(part)
        return part
