
from __future__ import annotations
from typing import Optional
from abc import ABC, abstractmethod

from .contracts import ListOptions, ListResult
from .errors import FetchFailed
from .files import FileLike, LazyFile

class FileStoragePort(ABC):
    """Keyed file store. Writes silently replace whatever is stored at ``key``."""

    @abstractmethod
    async def has(self, key: str) -> bool: ...

    @abstractmethod
    async def set(self, key: str, file: FileLike) -> None: ...

    @abstractmethod
    async def get(self, key: str) -> Optional[LazyFile]: ...

    @abstractmethod
    async def remove(self, key: str) -> None: ...

    @abstractmethod
    async def list(self, options: Optional[ListOptions] = None) -> ListResult: ...

    async def put(self, key: str, file: FileLike) -> LazyFile:
        await self.set(key, file)
        stored = await self.get(key)
        if stored is None:
            raise FetchFailed(f"file {key!r} missing right after it was written")
        return stored
