import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from components.filestorage import FileStorageService, LocalFSFileStorage
from components.filestorage.http import parse_range, router, set_file_service
from fake_s3 import FakeS3

MiB = 1024 * 1024


@pytest.fixture
def client(tmp_path):
    set_file_service(FileStorageService(LocalFSFileStorage(str(tmp_path)), "localfs"))
    app = FastAPI()
    app.include_router(router)
    return TestClient(app)


def _upload(client, files, prefix="docs", data=None):
    return client.post(f"/files?prefix={prefix}", files=files, data=data or {})


def test_upload_then_download(client):
    r = _upload(client, {"file": ("hello.txt", b"hello", "text/plain")}, data={"caption": "greeting"})
    assert r.status_code == 201
    body = r.json()
    assert body["ok"] is True
    assert body["meta"]["adapter"] == "localfs"
    stored = body["result"]["files"]
    assert [(f["key"], f["name"], f["type"], f["size"]) for f in stored] == [("docs/hello.txt", "hello.txt", "text/plain", 5)]
    assert body["result"]["fields"] == {"caption": "greeting"}

    r = client.get("/files/docs/hello.txt")
    assert r.status_code == 200
    assert r.content == b"hello"
    assert r.headers["content-type"].startswith("text/plain")
    assert r.headers["accept-ranges"] == "bytes"


def test_upload_strips_client_directories(client):
    r = _upload(client, {"file": ("C:\\Users\\me\\report.csv", b"a,b", "text/csv")}, prefix="")
    assert r.json()["result"]["files"][0]["key"] == "report.csv"


def test_range_requests(client):
    _upload(client, {"file": ("digits.txt", b"0123456789", "text/plain")})

    r = client.get("/files/docs/digits.txt", headers={"Range": "bytes=2-4"})
    assert r.status_code == 206
    assert r.content == b"234"
    assert r.headers["content-range"] == "bytes 2-4/10"

    r = client.get("/files/docs/digits.txt", headers={"Range": "bytes=-3"})
    assert r.content == b"789"

    r = client.get("/files/docs/digits.txt", headers={"Range": "bytes=50-"})
    assert r.status_code == 416
    assert r.headers["content-range"] == "bytes */10"


def test_head_list_delete(client):
    _upload(client, {"file": ("a.txt", b"aaa", "text/plain")})
    _upload(client, {"file": ("b.txt", b"bb", "text/plain")})

    r = client.head("/files/docs/a.txt")
    assert r.status_code == 200
    assert r.headers["content-length"] == "3"
    assert client.head("/files/docs/missing.txt").status_code == 404

    r = client.get("/files", params={"prefix": "docs/", "limit": 1})
    page = r.json()["result"]
    assert [f["key"] for f in page["files"]] == ["docs/a.txt"]
    r = client.get("/files", params={"prefix": "docs/", "limit": 1, "cursor": page["cursor"],
                                     "include_metadata": True})
    page = r.json()["result"]
    assert page["files"][0]["key"] == "docs/b.txt"
    assert page["files"][0]["size"] == 2
    assert page["cursor"] is None

    r = client.delete("/files/docs/a.txt")
    assert r.json()["result"] == {"key": "docs/a.txt", "deleted": True}

    r = client.get("/files/docs/a.txt")
    assert r.status_code == 404
    assert r.json()["ok"] is False
    assert r.json()["error"]["type"] == "NOT_FOUND"


def test_upload_streams_into_s3_multipart():
    fake = FakeS3()
    set_file_service(FileStorageService(fake.storage(part_size=5 * MiB), "s3"))
    app = FastAPI()
    app.include_router(router)
    client = TestClient(app)

    data = b"m" * (11 * MiB)
    r = _upload(client, {"file": ("movie.bin", data, "application/octet-stream")}, prefix="media")

    assert r.status_code == 201
    assert r.json()["result"]["files"][0]["size"] == len(data)
    assert [len(p.body) for p in fake.part_puts()] == [5 * MiB, 5 * MiB, 1 * MiB]
    assert fake.objects["media/movie.bin"][0] == data


def test_eager_upload_releases_its_connection():
    fake = FakeS3()
    storage = fake.storage(eager=True)
    opened = []
    send = storage.client.send

    async def tracking_send(request, **kwargs):
        response = await send(request, **kwargs)
        opened.append(response)
        return response

    storage.client.send = tracking_send
    set_file_service(FileStorageService(storage, "s3"))
    app = FastAPI()
    app.include_router(router)

    r = _upload(TestClient(app), {"file": ("a.txt", b"abc", "text/plain")})

    assert r.status_code == 201
    assert r.json()["result"]["files"][0]["size"] == 3
    assert len(fake.calls("GET")) == 1
    assert opened and all(resp.is_closed for resp in opened)


def test_upstream_failure_is_502():
    fake = FakeS3()
    fake.intercept = lambda rec: httpx.Response(500) if rec.method == "HEAD" else None
    set_file_service(FileStorageService(fake.storage(), "s3"))
    app = FastAPI()
    app.include_router(router)

    r = TestClient(app).get("/files/any.txt")
    assert r.status_code == 502
    assert r.json()["error"]["code"] == "FILE_FETCHFAILED"
    assert r.json()["error"]["details"] == {"status": 500}


@pytest.mark.parametrize("value,size,expected", [
    ("bytes=0-0", 10, (0, 1)),
    ("bytes=5-", 10, (5, 10)),
    ("bytes=3-100", 10, (3, 10)),
    ("bytes=-4", 10, (6, 10)),
    ("bytes=-40", 10, (0, 10)),
    ("bytes=0-1,4-5", 10, None),
    ("items=0-1", 10, None),
])
def test_parse_range(value, size, expected):
    assert parse_range(value, size) == expected


@pytest.mark.parametrize("value,size", [("bytes=10-", 10), ("bytes=-0", 10), ("bytes=4-2", 10), ("bytes=-1", 0)])
def test_parse_range_unsatisfiable(value, size):
    with pytest.raises(ValueError):
        parse_range(value, size)
