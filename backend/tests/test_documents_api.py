"""Tests for the /api/documents router."""
from __future__ import annotations

from pathlib import Path

import pytest

from conftest import add_document, make_image_bytes


def _upload(client, title="Scan", pages=1, **form):
    files = [
        ("files", (f"page{n}.png", make_image_bytes(color=(n * 40, 10, 10)), "image/png"))
        for n in range(pages)
    ]
    return client.post("/api/documents", data={"title": title, **form}, files=files)


# --- Upload & read ---


def test_upload_document(client, settings):
    resp = _upload(client, title="Lease", pages=2, description="flat", folder_id="home")
    assert resp.status_code == 201
    data = resp.json()
    assert data["title"] == "Lease"
    assert data["description"] == "flat"
    assert data["folder_id"] == "home"
    assert data["page_count"] == 2
    assert data["mime_type"] == "image/png"
    assert data["original_file_name"] == "page0.png"
    assert data["ocr_status"] == "pending"
    assert data["thumbnail_path"] is not None
    for path in data["pages"]:
        stored = Path(path)
        assert stored.parent == settings.documents_dir
        assert stored.name.endswith(".png.enc")
        assert b"PNG" not in stored.read_bytes()[:16]


def test_upload_requires_files(client):
    resp = client.post("/api/documents", data={"title": "Empty"})
    assert resp.status_code == 422


def test_get_document(client):
    doc_id = _upload(client, title="Receipt").json()["id"]
    resp = client.get(f"/api/documents/{doc_id}")
    assert resp.status_code == 200
    assert resp.json()["title"] == "Receipt"
    assert resp.json()["tags"] == []


def test_get_document_not_found(client):
    resp = client.get("/api/documents/does-not-exist")
    assert resp.status_code == 404


def test_list_documents_newest_first(client, session):
    add_document(session, "old", age_minutes=30)
    add_document(session, "new", age_minutes=0)
    add_document(session, "mid", age_minutes=10)
    resp = client.get("/api/documents")
    assert resp.status_code == 200
    assert [d["title"] for d in resp.json()] == ["new", "mid", "old"]


def test_list_documents_order_and_paging(client, session):
    for title in ["b", "c", "a"]:
        add_document(session, title)
    resp = client.get("/api/documents", params={"order_by": "title", "limit": 2, "offset": 1})
    assert [d["title"] for d in resp.json()] == ["b", "c"]


def test_list_documents_bad_order_by(client):
    resp = client.get("/api/documents", params={"order_by": "-password"})
    assert resp.status_code == 422


def test_thumbnail(client):
    doc_id = _upload(client).json()["id"]
    resp = client.get(f"/api/documents/{doc_id}/thumbnail")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/jpeg"
    assert resp.content[:2] == b"\xff\xd8"


def test_thumbnail_missing(client, session):
    doc = add_document(session, "no thumb")
    resp = client.get(f"/api/documents/{doc.id}/thumbnail")
    assert resp.status_code == 404


# --- Edits ---


def test_patch_document(client, session):
    doc = add_document(session, "Draft")
    resp = client.patch(
        f"/api/documents/{doc.id}", json={"title": "Final", "is_favorite": True}
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["title"] == "Final"
    assert data["is_favorite"] is True
    assert data["updated_at"] > doc.updated_at.isoformat()[:19]


def test_patch_rejects_blank_title(client, session):
    doc = add_document(session, "Draft")
    resp = client.patch(f"/api/documents/{doc.id}", json={"title": "   "})
    assert resp.status_code == 422


def test_patch_not_found(client):
    resp = client.patch("/api/documents/missing", json={"title": "x"})
    assert resp.status_code == 404


def test_toggle_favorite(client, session):
    doc = add_document(session, "Passport")
    assert client.post(f"/api/documents/{doc.id}/favorite").json()["is_favorite"] is True
    favorites = client.get("/api/documents/favorites").json()
    assert [d["id"] for d in favorites] == [doc.id]
    assert client.post(f"/api/documents/{doc.id}/favorite").json()["is_favorite"] is False
    assert client.get("/api/documents/favorites").json() == []


def test_move_and_folder_listing(client, session):
    doc = add_document(session, "Bill")
    add_document(session, "Loose")
    resp = client.post(f"/api/documents/{doc.id}/move", json={"folder_id": "finance"})
    assert resp.json()["folder_id"] == "finance"

    in_folder = client.get("/api/documents/folder", params={"folder_id": "finance"}).json()
    assert [d["title"] for d in in_folder] == ["Bill"]
    root = client.get("/api/documents/folder").json()
    assert [d["title"] for d in root] == ["Loose"]


def test_move_not_found(client):
    resp = client.post("/api/documents/missing/move", json={"folder_id": "x"})
    assert resp.status_code == 404


def test_update_ocr(client, session):
    doc = add_document(session, "Letter")
    resp = client.put(f"/api/documents/{doc.id}/ocr", json={"text": "dear sir"})
    assert resp.status_code == 200
    assert resp.json()["ocr_text"] == "dear sir"
    assert resp.json()["ocr_status"] == "completed"


def test_update_ocr_text_needs_completed_status(client, session):
    doc = add_document(session, "Letter")
    resp = client.put(
        f"/api/documents/{doc.id}/ocr", json={"text": "partial", "status": "processing"}
    )
    assert resp.status_code == 422


def test_update_ocr_status_only(client, session):
    doc = add_document(session, "Letter")
    resp = client.put(f"/api/documents/{doc.id}/ocr", json={"status": "failed"})
    assert resp.status_code == 200
    assert resp.json()["ocr_status"] == "failed"
    assert resp.json()["ocr_text"] is None


# --- Delete ---


def test_delete_document_removes_files(client):
    data = _upload(client).json()
    resp = client.delete(f"/api/documents/{data['id']}")
    assert resp.status_code == 204
    assert client.get(f"/api/documents/{data['id']}").status_code == 404
    assert not Path(data["pages"][0]).exists()
    assert not Path(data["thumbnail_path"]).exists()


def test_delete_not_found(client):
    assert client.delete("/api/documents/missing").status_code == 404


def test_bulk_delete(client, session):
    a = add_document(session, "a")
    b = add_document(session, "b")
    keep = add_document(session, "keep")
    resp = client.post("/api/documents/bulk-delete", json={"ids": [a.id, b.id]})
    assert resp.status_code == 204
    assert [d["id"] for d in client.get("/api/documents").json()] == [keep.id]


def test_bulk_delete_unknown_id_deletes_nothing(client, session):
    a = add_document(session, "a")
    resp = client.post("/api/documents/bulk-delete", json={"ids": [a.id, "ghost"]})
    assert resp.status_code == 404
    assert client.get(f"/api/documents/{a.id}").status_code == 200


# --- Tags on documents ---


def test_document_tags(client, session):
    doc = add_document(session, "Invoice")
    tag_id = client.post("/api/tags", json={"name": "Tax"}).json()["id"]

    resp = client.post(f"/api/documents/{doc.id}/tags", json={"tag_id": tag_id})
    assert resp.status_code == 200
    assert [t["name"] for t in resp.json()] == ["tax"]

    # adding twice is a no-op
    again = client.post(f"/api/documents/{doc.id}/tags", json={"tag_id": tag_id})
    assert len(again.json()) == 1
    assert client.get(f"/api/documents/{doc.id}").json()["tags"] == [tag_id]

    assert client.delete(f"/api/documents/{doc.id}/tags/{tag_id}").status_code == 204
    assert client.get(f"/api/documents/{doc.id}/tags").json() == []


def test_add_unknown_tag(client, session):
    doc = add_document(session, "Invoice")
    resp = client.post(f"/api/documents/{doc.id}/tags", json={"tag_id": "nope"})
    assert resp.status_code == 404


def test_tags_of_missing_document(client):
    assert client.get("/api/documents/missing/tags").status_code == 404


# --- Storage ---


def test_storage_info(client):
    _upload(client, pages=2)
    resp = client.get("/api/documents/storage")
    assert resp.status_code == 200
    data = resp.json()
    assert data["document_count"] == 1
    assert data["documents_bytes"] > 0
    assert data["thumbnails_bytes"] > 0
    assert data["total_bytes"] == (
        data["documents_bytes"] + data["thumbnails_bytes"] + data["temp_bytes"]
    )


# --- Null fields & page files ---


@pytest.mark.parametrize("field", ["title", "is_favorite"])
def test_patch_rejects_null_for_required_fields(client, session, field):
    doc = add_document(session, "Draft")
    resp = client.patch(f"/api/documents/{doc.id}", json={field: None})
    assert resp.status_code == 422
    assert client.get(f"/api/documents/{doc.id}").json()["title"] == "Draft"


def test_patch_allows_clearing_description(client, session):
    doc = add_document(session, "Draft", description="temporary")
    resp = client.patch(f"/api/documents/{doc.id}", json={"description": None})
    assert resp.status_code == 200
    assert resp.json()["description"] is None


def test_get_page_content(client):
    data = _upload(client, pages=2).json()
    resp = client.get(f"/api/documents/{data['id']}/pages/1")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    assert resp.content == make_image_bytes(color=(40, 10, 10))


def test_get_page_out_of_range(client):
    doc_id = _upload(client).json()["id"]
    assert client.get(f"/api/documents/{doc_id}/pages/4").status_code == 422


def test_replace_page(client):
    data = _upload(client, pages=2).json()
    rescan = make_image_bytes(color=(0, 0, 250), fmt="JPEG")
    resp = client.put(
        f"/api/documents/{data['id']}/pages/0",
        files={"file": ("rescan.jpg", rescan, "image/jpeg")},
    )
    assert resp.status_code == 200
    updated = resp.json()
    assert updated["original_file_name"] == "rescan.jpg"
    assert updated["mime_type"] == "image/jpeg"
    assert updated["pages"][1] == data["pages"][1]
    assert not Path(data["pages"][0]).exists()

    page = client.get(f"/api/documents/{data['id']}/pages/0")
    assert page.headers["content-type"] == "image/jpeg"
    assert page.content == rescan


def test_replace_page_of_missing_document(client):
    resp = client.put(
        "/api/documents/missing/pages/0",
        files={"file": ("rescan.png", make_image_bytes(), "image/png")},
    )
    assert resp.status_code == 404


def test_storage_reports_indexed_documents(client, session, search_index):
    add_document(session, "One")
    add_document(session, "Two")
    data = client.get("/api/documents/storage").json()
    assert data["indexed_documents"] == (2 if search_index.is_available else 0)
