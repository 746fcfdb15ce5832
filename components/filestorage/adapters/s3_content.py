
from __future__ import annotations

from typing import AsyncIterator, Optional

import httpx

from ..errors import StreamFailed


def range_header(start: Optional[int] = None, end: Optional[int] = None) -> Optional[str]:
    """Translate an end-exclusive window into an inclusive HTTP ``Range`` value."""
    if start is None and end is None:
        return None
    value = f"bytes={start or 0}-"
    if end is not None:
        value += str(end - 1)
    return value


def _loaded(response: httpx.Response) -> bool:
    try:
        response.content
    except httpx.ResponseNotRead:
        return False
    return True


class S3LazyContent:
    """Remote object bytes, fetched only when a stream is iterated.

    An eager ``get`` hands over its still-open GET response; the first
    unranged read relays that body instead of issuing a second request.
    """

    def __init__(self, client: httpx.AsyncClient, url: str, byte_length: int,
                 initial: Optional[httpx.Response] = None):
        self._client = client
        self.url = url
        self.byte_length = byte_length
        self._initial = initial

    def stream(self, start: Optional[int] = None, end: Optional[int] = None) -> AsyncIterator[bytes]:
        # async generator: no request is made before the first __anext__
        return self._relay(range_header(start, end))

    def _claim_initial(self, rng: Optional[str]) -> Optional[httpx.Response]:
        initial = self._initial
        if rng is None and initial is not None and (_loaded(initial) or not initial.is_stream_consumed):
            self._initial = None
            return initial
        return None

    async def _relay(self, rng: Optional[str]) -> AsyncIterator[bytes]:
        response = self._claim_initial(rng)
        if response is None:
            headers = {"Range": rng} if rng else {}
            try:
                response = await self._client.send(
                    self._client.build_request("GET", self.url, headers=headers), stream=True
                )
            except httpx.HTTPError as e:
                raise StreamFailed(f"Failed to fetch file content: {e}") from e

        try:
            if not response.is_success:
                raise StreamFailed(
                    f"Failed to fetch file content: {response.status_code} {response.reason_phrase}",
                    status=response.status_code,
                )
            if _loaded(response):
                # transports may hand back a body that is already in memory
                if response.content:
                    yield response.content
                return
            try:
                async for chunk in response.aiter_raw():
                    if chunk:
                        yield chunk
            except (httpx.HTTPError, httpx.StreamError) as e:
                raise StreamFailed(f"Stream interrupted: {e}") from e
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        if self._initial is not None:
            await self._initial.aclose()
            self._initial = None
