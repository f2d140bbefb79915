"""HTTP API: uploads run the real processor against temporary storage and database."""
from pathlib import Path

import pytest
from bs4 import BeautifulSoup
from fastapi.testclient import TestClient

from config import Settings, get_settings
from main import app

CHAT_HTML = b"""<!DOCTYPE html>
<html><body>
<div class="message"><span class="from">Alice</span><p>Lunch tomorrow?</p>
<img src="photos/lunch.jpg"></div>
<div class="message"><span class="from">Bob</span><p>Sure</p>
<audio controls><source src="voice.ogg"></audio>
<a href="https://example.com/menu">menu</a> <a href="other_chat.html">older</a></div>
</body></html>
"""


@pytest.fixture
def settings(tmp_path):
    return Settings(
        upload_dir=tmp_path / "uploads",
        upload_pending_dir=tmp_path / "uploads" / "pending",
        database_path=tmp_path / "data" / "documents.db",
    )


@pytest.fixture
def client(settings):
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _bulk(client):
    files = [
        ("files", ("export/chat.html", CHAT_HTML, "text/html")),
        ("files", ("export/photos/lunch.jpg", b"jpeg-bytes", "image/jpeg")),
        ("files", ("export/voice.ogg", b"ogg-bytes", "audio/ogg")),
    ]
    return client.post("/api/files/upload-bulk", files=files)


def test_root_and_status(client):
    assert client.get("/").status_code == 200
    body = client.get("/status").json()
    assert body == {"database": "online", "storage": "writable"}


def test_upload_single_html(client, settings):
    r = client.post(
        "/api/files/upload",
        files={"htmlFile": ("chat.html", b"<body><p>Hello</p><img src='missing.png'></body>", "text/html")},
    )
    assert r.status_code == 201
    body = r.json()
    assert body["mediaCount"] == 0
    doc = body["file"]
    assert doc["originalName"] == "chat.html"
    assert doc["textContent"] == "Hello"
    assert "missing.png" in doc["content"]
    stored = Path(doc["filePath"])
    assert stored.exists()
    assert stored.read_text(encoding="utf-8") == doc["content"]
    assert not any(Path(settings.upload_pending_dir).iterdir())


def test_upload_requires_file(client):
    assert client.post("/api/files/upload").status_code == 400


def test_upload_rejects_non_html(client):
    r = client.post("/api/files/upload", files={"htmlFile": ("photo.jpg", b"x", "image/jpeg")})
    assert r.status_code == 400


def test_upload_too_large(client, settings):
    settings.max_upload_bytes = 10
    r = client.post("/api/files/upload", files={"htmlFile": ("big.html", b"<p>" + b"x" * 20 + b"</p>", "text/html")})
    assert r.status_code == 413


def test_failed_save_removes_copied_media(client, settings, tmp_path, monkeypatch):
    pic = tmp_path / "outside" / "pic.png"
    pic.parent.mkdir()
    pic.write_bytes(b"png")

    def refuse(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr("app.repository.create_document", refuse)
    html = f'<body><p>hi</p><img src="{pic}"></body>'.encode()
    r = client.post("/api/files/upload", files={"htmlFile": ("chat.html", html, "text/html")})
    assert r.status_code == 500
    assert "database is locked" in r.json()["detail"]
    assert [p.name for p in Path(settings.upload_dir).iterdir()] == ["pending"]
    assert not any(Path(settings.upload_pending_dir).iterdir())
    assert pic.read_bytes() == b"png"


def test_bulk_upload_resolves_sibling_media(client):
    r = _bulk(client)
    assert r.status_code == 200
    body = r.json()
    assert body["successCount"] == 1
    assert body["errorCount"] == 0
    statuses = {item["fileName"]: item["status"] for item in body["results"]}
    assert statuses["export/chat.html"] == "success"
    assert statuses["export/voice.ogg"] == "skipped"
    ok = next(item for item in body["results"] if item["status"] == "success")
    assert ok["mediaCount"] == 2
    assert ok["referenceCount"] == 2

    doc = client.get(f"/api/files/{ok['id']}").json()
    assert [m["type"] for m in doc["media"]] == ["image", "audio"]
    assert [m["originalName"] for m in doc["media"]] == ["lunch.jpg", "voice.ogg"]
    assert "Alice" in doc["textContent"] and "Lunch tomorrow?" in doc["textContent"]

    soup = BeautifulSoup(doc["content"], "html.parser")
    img_src = soup.find("img")["src"]
    assert img_src == "/uploads/" + Path(doc["media"][0]["path"]).name
    assert soup.find("a", string="older")["href"] == "other_chat.html"
    assert soup.find("a", string="menu")["href"] == "https://example.com/menu"

    served = client.get(img_src)
    assert served.status_code == 200
    assert served.content == b"jpeg-bytes"


def test_bulk_upload_rejects_unsupported_type(client):
    r = client.post("/api/files/upload-bulk", files=[("files", ("tool.exe", b"MZ", "application/octet-stream"))])
    assert r.status_code == 400


def test_bulk_upload_requires_files(client):
    assert client.post("/api/files/upload-bulk").status_code == 400


def test_list_excludes_content(client):
    _bulk(client)
    client.post("/api/files/upload", files={"htmlFile": ("second.html", b"<p>two</p>", "text/html")})
    body = client.get("/api/files", params={"limit": 1}).json()
    assert body["pagination"] == {"total": 2, "page": 1, "limit": 1, "pages": 2}
    assert len(body["files"]) == 1
    assert "content" not in body["files"][0]


def test_get_missing_is_404(client):
    assert client.get("/api/files/does-not-exist").status_code == 404


def test_update_metadata(client):
    doc_id = _bulk(client).json()["results"][0]["id"]
    r = client.put(f"/api/files/{doc_id}", json={"originalName": "Renamed chat.html"})
    assert r.status_code == 200
    assert r.json()["originalName"] == "Renamed chat.html"
    assert client.put("/api/files/nope", json={"originalName": "x.html"}).status_code == 404


def test_update_rejects_unknown_fields(client):
    doc_id = _bulk(client).json()["results"][0]["id"]
    assert client.put(f"/api/files/{doc_id}", json={"media": []}).status_code == 422


def test_delete_removes_stored_files(client):
    doc_id = _bulk(client).json()["results"][0]["id"]
    doc = client.get(f"/api/files/{doc_id}").json()
    paths = [Path(doc["filePath"]), *(Path(m["path"]) for m in doc["media"])]
    assert all(p.exists() for p in paths)

    r = client.delete(f"/api/files/{doc_id}")
    assert r.status_code == 200
    assert not any(p.exists() for p in paths)
    assert client.get(f"/api/files/{doc_id}").status_code == 404
    assert client.delete(f"/api/files/{doc_id}").status_code == 404


def test_search_text_and_media_type(client):
    _bulk(client)
    client.post("/api/files/upload", files={"htmlFile": ("notes.html", b"<p>grocery list</p>", "text/html")})

    body = client.get("/api/search", params={"search": "lunch"}).json()
    assert body["pagination"]["total"] == 1
    hit = body["files"][0]
    assert hit["originalName"] == "chat.html"
    assert hit["score"] is not None
    assert "content" not in hit

    body = client.get("/api/search", params={"mediaType": "audio"}).json()
    assert [f["originalName"] for f in body["files"]] == ["chat.html"]

    body = client.get("/api/search", params={"search": "grocery", "sortField": "relevance"}).json()
    assert [f["originalName"] for f in body["files"]] == ["notes.html"]


def test_search_bad_date_is_400(client):
    assert client.get("/api/search", params={"startDate": "last week"}).status_code == 400


def test_suggestions_and_stats(client):
    _bulk(client)
    assert client.get("/api/search/suggestions", params={"term": "c"}).json() == {"suggestions": []}
    assert client.get("/api/search/suggestions", params={"term": "cha"}).json() == {"suggestions": ["chat"]}

    stats = client.get("/api/search/stats").json()
    assert stats["totalFiles"] == 1
    assert {s["type"]: s["count"] for s in stats["filesByMediaType"]} == {"image": 1, "audio": 1}


def test_serve_upload_rejects_traversal(client):
    assert client.get("/uploads/..%2Fdata%2Fdocuments.db").status_code == 404
    assert client.get("/uploads/nothing.png").status_code == 404
