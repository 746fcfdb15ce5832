"""In-memory S3 speaking just enough of the REST protocol for the storage tests.

Every request is recorded so tests can assert on methods, query strings,
headers and how many body bytes were actually served.
"""

from __future__ import annotations

import itertools
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from urllib.parse import parse_qs, unquote, urlsplit

import httpx

from components.filestorage import S3FileStorage

NS = "http://s3.amazonaws.com/doc/2006-03-01/"
ENDPOINT = "http://s3.test"
BUCKET = "bucket"
LAST_MODIFIED = "Wed, 21 Oct 2015 07:28:00 GMT"


@dataclass
class Recorded:
    method: str
    url: str
    path: str
    query: Dict[str, str]
    headers: httpx.Headers
    body: bytes
    served: int = 0  # object body bytes actually streamed back


@dataclass
class _Upload:
    key: str
    headers: Dict[str, str]
    parts: Dict[int, bytes] = field(default_factory=dict)


class FakeS3:
    def __init__(self, bucket: str = BUCKET):
        self.bucket = bucket
        self.objects: Dict[str, tuple] = {}
        self.uploads: Dict[str, _Upload] = {}
        self.requests: List[Recorded] = []
        # return a Response (or raise) to override normal handling
        self.intercept: Optional[Callable[[Recorded], Optional[httpx.Response]]] = None
        self._ids = itertools.count(1)

    # --- helpers for tests ---

    def storage(self, **kwargs) -> S3FileStorage:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        kwargs.setdefault("endpoint", ENDPOINT)
        return S3FileStorage(self.bucket, client=client, **kwargs)

    def put_object(self, key: str, data: bytes, headers: Optional[Dict[str, str]] = None) -> None:
        self.objects[key] = (data, dict(headers or {}))

    def calls(self, method: Optional[str] = None) -> List[Recorded]:
        return [r for r in self.requests if method is None or r.method == method]

    def part_puts(self) -> List[Recorded]:
        return [r for r in self.calls("PUT") if "partNumber" in r.query]

    # --- transport ---

    async def handler(self, request: httpx.Request) -> httpx.Response:
        body = await request.aread()
        split = urlsplit(str(request.url))
        query = {k: v[0] for k, v in parse_qs(split.query, keep_blank_values=True).items()}
        rec = Recorded(request.method, str(request.url), split.path, query, request.headers, body)
        self.requests.append(rec)

        if self.intercept is not None:
            response = self.intercept(rec)
            if response is not None:
                return response

        key = unquote(split.path[len(f"/{self.bucket}/"):]) if split.path.startswith(f"/{self.bucket}/") else ""
        return self._route(rec, key)

    def _route(self, rec: Recorded, key: str) -> httpx.Response:
        q = rec.query
        if rec.method == "GET" and q.get("list-type") == "2":
            return self._list(q)
        if rec.method == "POST" and "uploads" in q:
            upload_id = f"upload-{next(self._ids)}"
            self.uploads[upload_id] = _Upload(key, self._meta_headers(rec.headers))
            return _xml(f"<InitiateMultipartUploadResult xmlns=\"{NS}\"><Bucket>{self.bucket}</Bucket>"
                        f"<Key>{key}</Key><UploadId>{upload_id}</UploadId></InitiateMultipartUploadResult>")
        if rec.method == "PUT" and "partNumber" in q:
            upload = self.uploads.get(q["uploadId"])
            if upload is None:
                return httpx.Response(404)
            number = int(q["partNumber"])
            upload.parts[number] = rec.body
            return httpx.Response(200, headers={"ETag": f'"etag-{number}"'})
        if rec.method == "POST" and "uploadId" in q:
            return self._complete(q["uploadId"], rec.body)
        if rec.method == "DELETE" and "uploadId" in q:
            self.uploads.pop(q["uploadId"], None)
            return httpx.Response(204)
        if rec.method == "PUT":
            self.objects[key] = (rec.body, self._meta_headers(rec.headers))
            return httpx.Response(200, headers={"ETag": '"object-etag"'})
        if rec.method == "HEAD":
            if key not in self.objects:
                return httpx.Response(404)
            data, headers = self.objects[key]
            return httpx.Response(200, headers=self._object_headers(data, headers))
        if rec.method == "GET":
            if key not in self.objects:
                return httpx.Response(404, content=b"<Error><Code>NoSuchKey</Code></Error>")
            return self._get(rec, key)
        if rec.method == "DELETE":
            self.objects.pop(key, None)
            return httpx.Response(204)
        return httpx.Response(405)

    @staticmethod
    def _meta_headers(headers: httpx.Headers) -> Dict[str, str]:
        return {k.lower(): v for k, v in headers.items()
                if k.lower().startswith("x-amz-meta-") or k.lower() == "content-type"}

    @staticmethod
    def _object_headers(data: bytes, headers: Dict[str, str]) -> Dict[str, str]:
        out = {"Content-Length": str(len(data)), "Last-Modified": LAST_MODIFIED, "ETag": '"object-etag"'}
        out.update(headers)
        return out

    def _get(self, rec: Recorded, key: str) -> httpx.Response:
        data, headers = self.objects[key]
        rng = rec.headers.get("range")
        if not rng:
            return httpx.Response(200, headers=self._object_headers(data, headers), stream=_Body(data, rec))
        first, _, last = rng[len("bytes="):].partition("-")
        start = int(first)
        end = len(data) if last == "" else min(int(last) + 1, len(data))
        if start >= len(data):
            return httpx.Response(416)
        chunk = data[start:end]
        out = self._object_headers(chunk, headers)
        out["Content-Range"] = f"bytes {start}-{end - 1}/{len(data)}"
        return httpx.Response(206, headers=out, stream=_Body(chunk, rec))

    def _complete(self, upload_id: str, body: bytes) -> httpx.Response:
        upload = self.uploads.pop(upload_id, None)
        if upload is None:
            return httpx.Response(404)
        root = ET.fromstring(body)
        numbers = [int(p.findtext("PartNumber")) for p in root.findall("Part")]
        if not numbers:
            return httpx.Response(400, content=b"<Error><Code>MalformedXML</Code></Error>")
        data = b"".join(upload.parts[n] for n in numbers)
        self.objects[upload.key] = (data, upload.headers)
        return _xml(f"<CompleteMultipartUploadResult xmlns=\"{NS}\"><Key>{upload.key}</Key>"
                    f"</CompleteMultipartUploadResult>")

    def _list(self, q: Dict[str, str]) -> httpx.Response:
        prefix = q.get("prefix", "")
        keys = sorted(k for k in self.objects if k.startswith(prefix))
        start = int(q["continuation-token"][len("tok-"):]) if q.get("continuation-token") else 0
        limit = int(q.get("max-keys", "1000"))
        page = keys[start:start + limit]
        contents = "".join(f"<Contents><Key>{k}</Key><Size>{len(self.objects[k][0])}</Size></Contents>"
                           for k in page)
        token = ""
        if start + limit < len(keys):
            token = f"<IsTruncated>true</IsTruncated><NextContinuationToken>tok-{start + limit}</NextContinuationToken>"
        return _xml(f"<ListBucketResult xmlns=\"{NS}\"><Name>{self.bucket}</Name>{contents}{token}</ListBucketResult>")


class _Body(httpx.AsyncByteStream):
    """Object body streamed in chunks; counts what the client really pulled."""

    def __init__(self, data: bytes, rec: Recorded, chunk_size: int = 64 * 1024):
        self.data = data
        self.rec = rec
        self.chunk_size = chunk_size

    async def __aiter__(self):
        for i in range(0, len(self.data), self.chunk_size):
            chunk = self.data[i:i + self.chunk_size]
            self.rec.served += len(chunk)
            yield chunk


def _xml(text: str) -> httpx.Response:
    return httpx.Response(200, headers={"Content-Type": "application/xml"}, content=text.encode("utf-8"))
