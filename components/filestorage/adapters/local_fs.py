
from __future__ import annotations
import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import AsyncIterator, List, Optional, Union

from ..contracts import FileKey, FileMetadata, ListOptions, ListResult
from ..files import FileLike, LazyFile, DEFAULT_READ_SIZE
from ..metadata import default_name
from ..ports import FileStoragePort

def _safe_join(root: Path, key: str) -> Path:
    parts = [p for p in key.replace("\\", "/").split("/") if p]
    if not parts or any(p in (".", "..") for p in parts):
        raise ValueError(f"invalid key {key!r}")
    return root.joinpath(*parts)


class LocalFileContent:
    """Reads a byte window of a file on disk; the file is opened on first read."""

    def __init__(self, path: Path, byte_length: int):
        self.path = path
        self.byte_length = byte_length

    async def stream(self, start: Optional[int] = None, end: Optional[int] = None) -> AsyncIterator[bytes]:
        start = start or 0
        remaining = None if end is None else max(end - start, 0)
        f = await asyncio.to_thread(open, self.path, "rb")
        try:
            await asyncio.to_thread(f.seek, start)
            while remaining is None or remaining > 0:
                to_read = DEFAULT_READ_SIZE if remaining is None else min(DEFAULT_READ_SIZE, remaining)
                data = await asyncio.to_thread(f.read, to_read)
                if not data:
                    break
                if remaining is not None:
                    remaining -= len(data)
                yield data
        finally:
            await asyncio.to_thread(f.close)


class LocalFSFileStorage(FileStoragePort):
    """Stores file bytes under ``<root>/data`` and their metadata as JSON under ``<root>/meta``."""

    def __init__(self, root_dir: str):
        self.root = Path(root_dir).resolve()
        self.data_root = self.root / "data"
        self.meta_root = self.root / "meta"
        self.data_root.mkdir(parents=True, exist_ok=True)
        self.meta_root.mkdir(parents=True, exist_ok=True)
        self.adapter = "localfs"

    def _data_path(self, key: str) -> Path:
        return _safe_join(self.data_root, key)

    def _meta_path(self, key: str) -> Path:
        p = _safe_join(self.meta_root, key)
        return p.with_name(p.name + ".json")

    async def has(self, key: str) -> bool:
        return self._data_path(key).is_file()

    async def set(self, key: str, file: FileLike) -> None:
        path = self._data_path(key)
        meta_path = self._meta_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        meta_path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
        size = 0
        try:
            with os.fdopen(fd, "wb") as f:
                async for chunk in file.stream():
                    await asyncio.to_thread(f.write, chunk)
                    size += len(chunk)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

        meta = FileMetadata(key=key, name=file.name, type=file.type, size=size,
                            last_modified=int(file.last_modified))
        meta_path.write_text(meta.model_dump_json(), encoding="utf-8")

    def _read_meta(self, key: str, path: Path) -> FileMetadata:
        meta_path = self._meta_path(key)
        size = path.stat().st_size
        if meta_path.is_file():
            meta = FileMetadata.model_validate(json.loads(meta_path.read_text(encoding="utf-8")))
            return meta.model_copy(update={"size": size})
        return FileMetadata(key=key, name=default_name(key), size=size,
                            last_modified=int(path.stat().st_mtime * 1000))

    async def get(self, key: str) -> Optional[LazyFile]:
        path = self._data_path(key)
        if not path.is_file():
            return None
        meta = await asyncio.to_thread(self._read_meta, key, path)
        return LazyFile(LocalFileContent(path, meta.size), meta.name, type=meta.type,
                        last_modified=meta.last_modified)

    async def remove(self, key: str) -> None:
        def rm():
            for p in (self._data_path(key), self._meta_path(key)):
                if p.exists():
                    os.remove(p)

        await asyncio.to_thread(rm)

    async def list(self, options: Optional[ListOptions] = None) -> ListResult:
        opts = options or ListOptions()
        prefix = opts.prefix or ""

        def keys_sync() -> List[str]:
            found = []
            for dirpath, _, filenames in os.walk(self.data_root):
                for fn in filenames:
                    if fn.startswith(".upload-"):
                        continue
                    rel = (Path(dirpath) / fn).relative_to(self.data_root).as_posix()
                    if rel.startswith(prefix):
                        found.append(rel)
            return sorted(found)

        keys = await asyncio.to_thread(keys_sync)
        if opts.cursor:
            # cursor is the last key of the previous page
            keys = [k for k in keys if k > opts.cursor]

        next_cursor = None
        if opts.limit is not None and len(keys) > opts.limit:
            keys = keys[:opts.limit]
            next_cursor = keys[-1]

        files: List[Union[FileMetadata, FileKey]] = []
        for key in keys:
            if opts.include_metadata:
                files.append(await asyncio.to_thread(self._read_meta, key, self._data_path(key)))
            else:
                files.append(FileKey(key=key))
        return ListResult(files=files, cursor=next_cursor)
