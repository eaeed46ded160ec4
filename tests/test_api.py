from pathlib import Path

from fastapi.testclient import TestClient

from filedrop.main import create_app

TEN_BYTES = b"\x89PNG\r\n\x1a\n\x00\x01"


def _upload(client, data=TEN_BYTES, name="a.png", mime="image/png"):
    return client.post("/upload", files={"file": (name, data, mime)})


def _path(file_url: str) -> str:
    return file_url.removeprefix("https://files.example.com")


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200 and r.json()["status"] == "ok"


def test_upload_then_download(client):
    r = _upload(client)
    assert r.status_code == 200
    file_url = r.json()["fileUrl"]
    assert file_url.startswith("https://files.example.com/files/")
    assert file_url.endswith(".png")
    file_id = file_url.rsplit("/", 1)[1].removesuffix(".png")
    assert len(file_id) == 10 and file_id.isalnum()

    r = client.get(_path(file_url))
    assert r.status_code == 200
    assert r.content == TEN_BYTES
    assert r.headers["content-length"] == "10"
    assert r.headers["content-type"] == "image/png"
    assert r.headers["accept-ranges"] == "bytes"


def test_range_requests(client):
    path = _path(_upload(client).json()["fileUrl"])

    r = client.get(path, headers={"Range": "bytes=2-5"})
    assert r.status_code == 206
    assert r.content == TEN_BYTES[2:6]
    assert r.headers["content-range"] == "bytes 2-5/10"
    assert r.headers["content-length"] == "4"

    r = client.get(path, headers={"Range": "bytes=0-9"})
    assert r.status_code == 206
    assert r.content == TEN_BYTES
    assert r.headers["content-range"] == "bytes 0-9/10"

    r = client.get(path, headers={"Range": "bytes=10-"})
    assert r.status_code == 416
    assert r.headers["content-range"] == "bytes */10"
    assert r.json()["error"] == "RangeNotSatisfiable"

    r = client.get(path, headers={"Range": "bytes=oops"})
    assert r.status_code == 416


def test_head_request(client):
    path = _path(_upload(client).json()["fileUrl"])
    r = client.head(path)
    assert r.status_code == 200
    assert r.headers["content-length"] == "10"
    assert r.content == b""


def test_rejections_are_structured(client):
    r = _upload(client, b"MZ\x90\x00", "setup.exe", "application/x-msdownload")
    assert r.status_code == 400
    assert r.json()["error"] == "TypeNotAllowed"

    r = _upload(client, b"x" * 1025)
    assert r.status_code == 400
    assert r.json()["error"] == "TooLarge"

    r = client.post("/upload", data={"note": "no file here"})
    assert r.status_code == 400
    assert r.json()["error"] == "NoPayload"


def test_oversized_content_length_rejected_up_front(client):
    r = _upload(client, b"x" * (1024 + 70 * 1024))
    assert r.status_code == 400
    assert r.json()["error"] == "TooLarge"


def test_unknown_ids_are_404(client):
    for path in ("/files/neverIssued", "/files/neverIssued.png", "/api/files/neverIssued"):
        r = client.get(path)
        assert r.status_code == 404
        assert r.json()["error"] == "NotFound"


def test_metadata_hides_location(client):
    file_url = _upload(client).json()["fileUrl"]
    name = file_url.rsplit("/", 1)[1]
    r = client.get(f"/api/files/{name}")
    assert r.status_code == 200
    body = r.json()
    assert body["fileUrl"] == file_url
    assert body["sizeBytes"] == 10
    assert body["contentType"] == "image/png"
    assert "location" not in body


def test_admin_delete(client):
    file_url = _upload(client).json()["fileUrl"]
    name = file_url.rsplit("/", 1)[1]
    assert client.delete(f"/api/files/{name}").json()["deleted"] is True
    assert client.get(f"/files/{name}").status_code == 404
    assert client.delete(f"/api/files/{name}").status_code == 404


def test_admin_delete_disabled(test_settings):
    test_settings.ADMIN_DELETE_ENABLED = False
    with TestClient(create_app(test_settings)) as c:
        name = _upload(c).json()["fileUrl"].rsplit("/", 1)[1]
        assert c.delete(f"/api/files/{name}").status_code == 404
        assert c.get(f"/files/{name}").status_code == 200


def test_base_url_falls_back_to_request(test_settings):
    test_settings.PUBLIC_BASE_URL = ""
    with TestClient(create_app(test_settings)) as c:
        assert _upload(c).json()["fileUrl"].startswith("http://testserver/files/")


def test_database_backend_end_to_end(test_settings):
    test_settings.FILE_STORAGE_TYPE = "database"
    with TestClient(create_app(test_settings)) as c:
        path = _path(_upload(c).json()["fileUrl"])
        assert c.get(path).content == TEN_BYTES
        r = c.get(path, headers={"Range": "bytes=3-"})
        assert r.status_code == 206
        assert r.content == TEN_BYTES[3:]
        assert r.headers["content-range"] == "bytes 3-9/10"


BOUNDARY = "apiTestBoundary"


def _multipart_chunks(data: bytes, name: str = "a.png", mime: str = "image/png", chunk: int = 256):
    head = (
        f"--{BOUNDARY}\r\n"
        f'Content-Disposition: form-data; name="file"; filename="{name}"\r\n'
        f"Content-Type: {mime}\r\n\r\n"
    ).encode()
    yield head
    for i in range(0, len(data), chunk):
        yield data[i:i + chunk]
    yield f"\r\n--{BOUNDARY}--\r\n".encode()


def _post_chunked(client, chunks):
    # An iterator body goes out with Transfer-Encoding: chunked and no Content-Length.
    return client.post(
        "/upload",
        content=chunks,
        headers={"Content-Type": f"multipart/form-data; boundary={BOUNDARY}"},
    )


def test_chunked_upload_without_content_length(client):
    r = _post_chunked(client, _multipart_chunks(TEN_BYTES * 50))
    assert r.status_code == 200
    assert client.get(_path(r.json()["fileUrl"])).content == TEN_BYTES * 50


def test_chunked_oversized_upload_is_rejected(client, test_settings):
    r = _post_chunked(client, _multipart_chunks(b"x" * (2 * 1024 * 1024), chunk=64 * 1024))
    assert r.status_code == 400
    assert r.json() == {"error": "TooLarge", "detail": "File is too large. Maximum size is 1KB."}
    assert list(Path(test_settings.FILE_STAGING_PATH).iterdir()) == []


def test_more_than_one_file_is_rejected(client):
    r = client.post("/upload", files=[
        ("file", ("a.png", TEN_BYTES, "image/png")),
        ("file", ("b.png", TEN_BYTES, "image/png")),
    ])
    assert r.status_code == 400
    assert r.json()["error"] == "ValidationError"
    assert "one file" in r.json()["detail"]


def test_framework_errors_use_the_same_shape(client):
    r = client.put("/upload")
    assert r.status_code == 405
    assert r.json()["error"] == "MethodNotAllowed"
    assert "detail" in r.json()

    r = client.get("/no/such/route")
    assert r.status_code == 404
    assert r.json() == {"error": "NotFound", "detail": "Not Found"}


def test_short_ids_still_start(test_settings, caplog):
    test_settings.ID_LENGTH = 3
    with caplog.at_level("WARNING", logger="filedrop.main"):
        with TestClient(create_app(test_settings)) as c:
            file_id = _upload(c).json()["fileUrl"].rsplit("/", 1)[1].removesuffix(".png")
    assert len(file_id) == 3
    assert f"allows only {62 ** 3:,} file ids" in caplog.text
