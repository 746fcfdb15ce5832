
from __future__ import annotations
import logging
from typing import Any, List, Optional, Union
from urllib.parse import quote, urlencode, urlsplit

import httpx
from botocore.credentials import Credentials

from .. import metadata
from ..contracts import FileKey, FileMetadata, ListOptions, ListResult
from ..errors import FetchFailed, RemoveFailed, UploadFailed
from ..files import FileLike, LazyFile
from ..ports import FileStoragePort
from . import s3_xml
from .s3_content import S3LazyContent
from .s3_multipart import DEFAULT_PART_SIZE, MIN_PART_SIZE, MultipartUpload
from .signing import SigV4Auth, resolve_credentials

log = logging.getLogger("filestorage.s3")

# Largest object S3 accepts in a single PUT.
SINGLE_PUT_LIMIT = 5 * 1024 * 1024 * 1024


def _require_key(key: str) -> None:
    if not key:
        raise ValueError("key must be a non-empty string")


class S3FileStorage(FileStoragePort):
    """A ``FileStoragePort`` backed by a bucket on S3 or an S3-compatible service.

    Important: no attempt is made to avoid overwriting existing files.
    """

    def __init__(self, bucket: str, *, region: Optional[str] = None, endpoint: Optional[str] = None,
                 force_path_style: bool = False, eager: bool = False, part_size: int = DEFAULT_PART_SIZE,
                 client: Optional[httpx.AsyncClient] = None, credentials: Optional[Credentials] = None,
                 timeout: Union[float, httpx.Timeout, None] = 30.0):
        if not bucket:
            raise ValueError("bucket is required")
        if part_size < MIN_PART_SIZE:
            raise ValueError(f"part_size must be at least {MIN_PART_SIZE} bytes")
        self.bucket = bucket
        self.region = region or "us-east-1"
        self.endpoint = (endpoint or f"https://{bucket}.s3.{self.region}.amazonaws.com").rstrip("/")

        # Same rule the AWS SDKs use: virtual-hosted only when the endpoint host already names the bucket.
        if force_path_style:
            self.force_path_style = True
        else:
            hostname = urlsplit(self.endpoint).hostname or ""
            self.force_path_style = not hostname.startswith(bucket + ".")

        self.bucket_url = f"{self.endpoint}/{bucket}" if self.force_path_style else self.endpoint
        self.eager = eager
        self.part_size = part_size

        self._owns_client = client is None
        if client is None:
            auth = SigV4Auth(credentials or resolve_credentials(), self.region)
            client = httpx.AsyncClient(auth=auth, timeout=timeout)
        self.client = client
        self.adapter = "s3"

    def object_url(self, key: str) -> str:
        return f"{self.bucket_url}/{quote(key, safe='')}"

    async def _request(self, method: str, url: str, error: type, action: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise error(f"Failed to {action}: {e}") from e

    async def has(self, key: str) -> bool:
        _require_key(key)
        response = await self._request("HEAD", self.object_url(key), FetchFailed, "check existence of file")
        if response.is_success:
            return True
        if response.status_code == 404:
            return False
        raise FetchFailed(f"Failed to check existence of file: {response.reason_phrase}",
                          status=response.status_code)

    async def set(self, key: str, file: FileLike) -> None:
        _require_key(key)
        headers = metadata.encode(file)
        size = file.size

        if size is None or size > SINGLE_PUT_LIMIT:
            # unknown or too large for one PUT
            log.info("s3.set multipart key=%s size=%s", key, size)
            upload = MultipartUpload(self.client, self.object_url(key), key,
                                     headers=headers, part_size=self.part_size)
            await upload.run(file.stream())
            return

        headers["Content-Length"] = str(size)
        response = await self._request("PUT", self.object_url(key), UploadFailed, "upload file",
                                       content=file.stream(), headers=headers)
        if not response.is_success:
            raise UploadFailed(f"Failed to upload file: {response.reason_phrase}", status=response.status_code)
        log.info("s3.set put key=%s size=%s", key, size)

    async def get(self, key: str) -> Optional[LazyFile]:
        """Return the file at ``key`` or ``None``.

        Lazy mode (default) issues only a HEAD; the body is fetched when the
        returned file is streamed, and only for the range being read. Eager
        mode issues the GET now and keeps the unread body for the first full read.
        """
        _require_key(key)
        url = self.object_url(key)
        initial: Optional[httpx.Response] = None

        if self.eager:
            try:
                initial = await self.client.send(self.client.build_request("GET", url), stream=True)
            except httpx.HTTPError as e:
                raise FetchFailed(f"Failed to get file: {e}") from e
            if not initial.is_success:
                await initial.aclose()
                if initial.status_code == 404:
                    return None
                raise FetchFailed(f"Failed to get file: {initial.reason_phrase}", status=initial.status_code)
            headers = initial.headers
        else:
            response = await self._request("HEAD", url, FetchFailed, "get file metadata")
            if not response.is_success:
                if response.status_code == 404:
                    return None
                raise FetchFailed(f"Failed to get file metadata: {response.reason_phrase}",
                                  status=response.status_code)
            headers = response.headers

        meta = metadata.decode(key, headers)
        content = S3LazyContent(self.client, url, meta.size, initial=initial)
        return LazyFile(content, meta.name, type=meta.type, last_modified=meta.last_modified)

    async def remove(self, key: str) -> None:
        _require_key(key)
        response = await self._request("DELETE", self.object_url(key), RemoveFailed, "remove file")
        if not response.is_success and response.status_code != 404:
            raise RemoveFailed(f"Failed to remove file: {response.reason_phrase}", status=response.status_code)

    async def head(self, key: str) -> FileMetadata:
        response = await self._request("HEAD", self.object_url(key), FetchFailed, "fetch metadata for file")
        if not response.is_success:
            raise FetchFailed(f"Failed to fetch metadata for file: {response.reason_phrase}",
                              status=response.status_code)
        return metadata.decode(key, response.headers)

    async def list(self, options: Optional[ListOptions] = None) -> ListResult:
        opts = options or ListOptions()
        params = [("list-type", "2")]
        if opts.limit is not None:
            params.append(("max-keys", str(opts.limit)))
        if opts.prefix:
            params.append(("prefix", opts.prefix))
        if opts.cursor:
            params.append(("continuation-token", opts.cursor))
        url = f"{self.bucket_url}?{urlencode(params, quote_via=quote)}"

        response = await self._request("GET", url, FetchFailed, "list objects")
        if not response.is_success:
            raise FetchFailed(f"Failed to list objects: {response.reason_phrase}", status=response.status_code)

        root = s3_xml.parse(response.text)
        keys = s3_xml.listed_keys(root)
        cursor = s3_xml.find_text(root, "NextContinuationToken")

        files: List[Union[FileMetadata, FileKey]]
        if opts.include_metadata:
            # one HEAD per key, sequentially
            files = [await self.head(key) for key in keys]
        else:
            files = [FileKey(key=key) for key in keys]
        return ListResult(files=files, cursor=cursor or None)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "S3FileStorage":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
