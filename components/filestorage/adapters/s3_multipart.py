"""S3 multipart upload driven as an explicit state machine.

    IDLE -> INITIATED -> UPLOADING -> COMPLETING -> DONE
      \\________\\____________\\____________\\-> ABORTING -> ABORTED

Every failure after the session exists (including task cancellation) goes
through ABORTING, which issues a best-effort DELETE for the upload id and
then re-raises the original error. Parts are sent one at a time.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Dict, Mapping, Optional
from urllib.parse import quote

import httpx

from ..contracts import UploadSession
from ..errors import ProtocolError, UploadFailed
from . import s3_xml

log = logging.getLogger("filestorage.multipart")

MIN_PART_SIZE = 5 * 1024 * 1024
DEFAULT_PART_SIZE = 8 * 1024 * 1024


class MultipartState(str, Enum):
    IDLE = "IDLE"
    INITIATED = "INITIATED"
    UPLOADING = "UPLOADING"
    COMPLETING = "COMPLETING"
    DONE = "DONE"
    ABORTING = "ABORTING"
    ABORTED = "ABORTED"


_TRANSITIONS = {
    MultipartState.IDLE: {MultipartState.INITIATED, MultipartState.ABORTING},
    MultipartState.INITIATED: {MultipartState.UPLOADING, MultipartState.COMPLETING, MultipartState.ABORTING},
    MultipartState.UPLOADING: {MultipartState.UPLOADING, MultipartState.COMPLETING, MultipartState.ABORTING},
    MultipartState.COMPLETING: {MultipartState.DONE, MultipartState.ABORTING},
    MultipartState.ABORTING: {MultipartState.ABORTED},
    MultipartState.DONE: set(),
    MultipartState.ABORTED: set(),
}


async def iter_parts(source: AsyncIterator[bytes], part_size: int) -> AsyncIterator[bytes]:
    """Regroup arbitrarily sized reads into ``part_size`` slices plus a final remainder.

    Reading pauses while a yielded part is being uploaded.
    """
    buffer = bytearray()
    async for chunk in source:
        if not chunk:
            continue
        buffer += chunk
        while len(buffer) >= part_size:
            part = bytes(buffer[:part_size])
            del buffer[:part_size]
            yield part
    if buffer:
        yield bytes(buffer)


class MultipartUpload:
    """One multipart upload of ``key`` to ``object_url``. Single use."""

    def __init__(self, client: httpx.AsyncClient, object_url: str, key: str, *,
                 headers: Optional[Mapping[str, str]] = None, part_size: int = DEFAULT_PART_SIZE):
        if part_size < MIN_PART_SIZE:
            raise ValueError(f"part_size must be at least {MIN_PART_SIZE} bytes")
        self.client = client
        self.object_url = object_url
        self.key = key
        self.headers: Dict[str, str] = dict(headers or {})
        self.part_size = part_size
        self.state = MultipartState.IDLE
        self.session: Optional[UploadSession] = None
        self._session_released = False

    def _transition(self, new: MultipartState) -> None:
        if new not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal multipart transition {self.state.value} -> {new.value}")
        log.debug("multipart key=%s %s -> %s", self.key, self.state.value, new.value)
        self.state = new

    def _session_url(self, **params: object) -> str:
        query = "&".join(f"{k}={quote(str(v), safe='')}" for k, v in params.items())
        return f"{self.object_url}?{query}"

    async def run(self, source: AsyncIterator[bytes]) -> None:
        try:
            await self._initiate()
            async for part in iter_parts(source, self.part_size):
                await self._upload_part(part)
            await self._complete()
        except (Exception, asyncio.CancelledError) as exc:
            await self._abort(exc)
            raise
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _initiate(self) -> None:
        try:
            response = await self.client.post(f"{self.object_url}?uploads=", headers=self.headers)
        except httpx.HTTPError as e:
            raise UploadFailed(f"Failed to initiate multipart upload: {e}") from e
        if not response.is_success:
            raise UploadFailed(
                f"Failed to initiate multipart upload: {response.reason_phrase}", status=response.status_code
            )
        upload_id = s3_xml.find_text(s3_xml.parse(response.text), "UploadId")
        if not upload_id:
            raise ProtocolError("Failed to get upload ID for multipart upload")
        self.session = UploadSession(upload_id=upload_id, key=self.key)
        self._transition(MultipartState.INITIATED)
        log.info("multipart.initiate key=%s upload_id=%s", self.key, upload_id)

    async def _upload_part(self, part: bytes) -> None:
        self._transition(MultipartState.UPLOADING)
        number = self.session.next_part_number
        url = self._session_url(partNumber=number, uploadId=self.session.upload_id)
        try:
            response = await self.client.put(url, content=part)
        except httpx.HTTPError as e:
            raise UploadFailed(f"Failed to upload part {number}: {e}") from e
        if not response.is_success:
            raise UploadFailed(f"Failed to upload part {number}: {response.reason_phrase}",
                               status=response.status_code)
        etag = response.headers.get("ETag")
        if not etag:
            raise ProtocolError(f"No ETag returned for part {number}")
        self.session.record(etag)
        log.debug("multipart.part key=%s part=%s size=%s", self.key, number, len(part))

    async def _complete(self) -> None:
        self._transition(MultipartState.COMPLETING)
        if not self.session.parts:
            await self._complete_empty()
            return

        body = s3_xml.completion_body(self.session.parts)
        url = self._session_url(uploadId=self.session.upload_id)
        try:
            response = await self.client.post(url, content=body, headers={"Content-Type": "application/xml"})
        except httpx.HTTPError as e:
            raise UploadFailed(f"Failed to complete multipart upload: {e}") from e
        if not response.is_success:
            raise UploadFailed(
                f"Failed to complete multipart upload: {response.reason_phrase}, Details: {response.text}",
                status=response.status_code,
            )
        self._transition(MultipartState.DONE)
        log.info("multipart.complete key=%s parts=%s", self.key, len(self.session.parts))

    async def _complete_empty(self) -> None:
        # S3 rejects a completion with no parts: drop the session and write an empty object.
        await self._release_session()
        try:
            response = await self.client.put(self.object_url, content=b"", headers=self.headers)
        except httpx.HTTPError as e:
            raise UploadFailed(f"Failed to upload file: {e}") from e
        if not response.is_success:
            raise UploadFailed(f"Failed to upload file: {response.reason_phrase}", status=response.status_code)
        self._transition(MultipartState.DONE)
        log.info("multipart.empty key=%s written with single PUT", self.key)

    async def _release_session(self) -> None:
        if self.session is None or self._session_released:
            return
        self._session_released = True
        try:
            response = await self.client.delete(self._session_url(uploadId=self.session.upload_id))
        except Exception:
            log.exception("Error aborting multipart upload key=%s upload_id=%s", self.key, self.session.upload_id)
            return
        if not response.is_success:
            log.error("Error aborting multipart upload key=%s upload_id=%s status=%s",
                      self.key, self.session.upload_id, response.status_code)

    async def _abort(self, exc: BaseException) -> None:
        if self.state in (MultipartState.DONE, MultipartState.ABORTED):
            return
        self._transition(MultipartState.ABORTING)
        log.warning("multipart.abort key=%s reason=%r", self.key, exc)
        await self._release_session()
        self._transition(MultipartState.ABORTED)
