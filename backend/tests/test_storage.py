from __future__ import annotations

import pytest

from homebids.domain_errors import DomainError
from homebids.storage import LocalBlobStore, sanitize_blob_path


def test_sanitize_blob_path_accepts_nested_relative_path() -> None:
    path = "message-attachments/35bf5afa-184f-495e-8a0d-7257fe204aa0/photo.png"
    assert sanitize_blob_path(path) == path


@pytest.mark.parametrize(
    "path",
    ["", "../secret.txt", "a/../../etc/passwd", "/etc/passwd", "a\\b.png", "a//b.png", "a/./b.png", "a/.hidden"],
)
def test_sanitize_blob_path_rejects_traversal(path: str) -> None:
    with pytest.raises(DomainError) as exc:
        sanitize_blob_path(path)

    assert exc.value.code == "INVALID_BLOB_PATH"
    assert exc.value.http_status == 422


def test_put_get_list(tmp_path) -> None:
    store = LocalBlobStore(root=tmp_path, base_url="/files/")

    url = store.put("message-attachments/m1/a.png", b"abc", "image/png")
    store.put("message-attachments/m1/b.pdf", b"%PDF", "application/pdf")
    store.put("other/c.txt", b"x", "text/plain")

    assert url == "/files/message-attachments/m1/a.png"
    assert store.get("message-attachments/m1/a.png") == b"abc"
    entries = store.list("message-attachments")
    assert [(e.path, e.size) for e in entries] == [
        ("message-attachments/m1/a.png", 3),
        ("message-attachments/m1/b.pdf", 4),
    ]
    assert entries[1].url == "/files/message-attachments/m1/b.pdf"


def test_put_never_overwrites(tmp_path) -> None:
    store = LocalBlobStore(root=tmp_path, base_url="/files")
    store.put("a/b.png", b"first", "image/png")

    with pytest.raises(DomainError) as exc:
        store.put("a/b.png", b"second", "image/png")

    assert exc.value.code == "BLOB_EXISTS"
    assert store.get("a/b.png") == b"first"


def test_get_missing_blob(tmp_path) -> None:
    store = LocalBlobStore(root=tmp_path, base_url="/files")

    with pytest.raises(DomainError) as exc:
        store.get("a/missing.png")

    assert exc.value.code == "BLOB_NOT_FOUND"
    assert exc.value.http_status == 404
    assert store.list("a") == []


def test_delete_removes_blob_and_tolerates_missing(tmp_path) -> None:
    store = LocalBlobStore(root=tmp_path, base_url="/files")
    store.put("message-attachments/m1/a.png", b"abc", "image/png")

    store.delete("message-attachments/m1/a.png")
    store.delete("message-attachments/m1/a.png")

    assert store.list("message-attachments") == []
