import base64
import json
from types import SimpleNamespace

import pytest

from quizhub import runtime as app_module
from quizhub.services import knowledge_service


@pytest.fixture()
def knowledge_db(make_db, fake_firestore, monkeypatch):
    db = make_db({
        "knowledge_base/k1": {
            "content": "A" * 250,
            "visual_description": "Chart",
            "metadata": {"subject": "Biology", "type": "book", "bookName": "Bio XI", "chapter": "Cells", "uploadedAt": 30.0},
        },
        "knowledge_base/k2": {
            "content": "Syllabus text",
            "metadata": {"subject": "Biology", "type": "syllabus", "bookName": "Bio Syllabus", "uploadedAt": 20.0},
        },
        "knowledge_base/k3": {
            "content": "Forces",
            "metadata": {"subject": "Physics", "type": "book", "bookName": "Phy XI", "uploadedAt": 10.0},
        },
    })
    monkeypatch.setattr(app_module, "db", db)
    monkeypatch.setattr(app_module, "firestore", fake_firestore)
    monkeypatch.setattr(app_module, "time", SimpleNamespace(time=lambda: 500.0))
    return db


def _b64(data):
    return base64.b64encode(data).decode("ascii")


def test_clean_metadata_defaults_type_to_book():
    metadata = knowledge_service.clean_metadata({"subject": " Biology ", "type": "poster", "extra": "x"})

    assert metadata == {"subject": "Biology", "bookName": "", "province": "", "year": "", "type": "book"}


def test_embedding_text_prefixes_metadata():
    text = knowledge_service.embedding_text("Body", "Diagram", "Ch 1", {"subject": "Biology", "bookName": "Bio XI"})

    assert text.splitlines() == ["Subject: Biology", "Book: Bio XI", "Chapter: Ch 1", "Content: Body", "Visuals: Diagram"]


def test_analyze_requires_staff(client, as_role):
    as_role("student")

    assert client.post("/api/knowledge/analyze", json={"fileData": "abc"}).status_code == 403


def test_analyze_rejects_missing_and_oversized_payloads(client, as_role, monkeypatch):
    as_role("teacher")
    monkeypatch.setattr(knowledge_service, "MAX_INLINE_BASE64_CHARS", 8)

    assert client.post("/api/knowledge/analyze", json={}).status_code == 400
    assert client.post("/api/knowledge/analyze", json={"fileData": "A" * 20}).status_code == 413


def test_analyze_returns_structured_page(client, as_role, make_gemini, monkeypatch):
    as_role("teacher")
    reply = {"text": "Mitochondria", "description": "Diagram of a cell", "chapter": "2 Cells", "page_number": "14"}
    fake = make_gemini([json.dumps(reply)])
    monkeypatch.setattr(app_module, "gemini_client", fake)

    response = client.post("/api/knowledge/analyze", json={"fileData": _b64(b"image-bytes"), "mimeType": "image/png"})

    assert response.status_code == 200
    assert response.get_json() == {"success": True, "data": reply}
    assert fake.calls[0]["model"] == app_module.ANALYSIS_MODEL


def test_analyze_repairs_truncated_json(client, as_role, make_gemini, monkeypatch):
    as_role("teacher")
    monkeypatch.setattr(app_module, "gemini_client", make_gemini(['{"text": "Cut off here']))

    response = client.post("/api/knowledge/analyze", json={"fileData": _b64(b"img")})

    assert response.status_code == 200
    assert response.get_json()["data"]["text"] == "Cut off here"


def test_analyze_reports_unusable_json(client, as_role, make_gemini, monkeypatch):
    as_role("teacher")
    monkeypatch.setattr(app_module, "gemini_client", make_gemini(["not json at all"]))

    response = client.post("/api/knowledge/analyze", json={"fileData": _b64(b"img")})

    assert response.status_code == 502


def test_save_embeds_and_stores_page(client, as_role, knowledge_db, make_gemini, monkeypatch):
    as_role("teacher")
    fake = make_gemini(embedding=[0.5, 0.25])
    monkeypatch.setattr(app_module, "gemini_client", fake)

    response = client.post("/api/knowledge/save", json={
        "text": "Osmosis is the movement of water",
        "description": "Beaker diagram",
        "chapter": "Transport",
        "pageNumber": "33",
        "fileName": "bio.pdf",
        "metadata": {"subject": "Biology", "bookName": "Bio XI", "type": "book"},
    })

    body = response.get_json()
    assert response.status_code == 200
    stored = knowledge_db.data(f"knowledge_base/{body['id']}")
    assert stored["content"] == "Osmosis is the movement of water"
    assert list(stored["embedding"]) == [0.5, 0.25]
    assert stored["metadata"]["page"] == "33"
    assert stored["metadata"]["uploadedAt"] == 500.0
    assert fake.embedded[0].startswith("Subject: Biology\nBook: Bio XI\nChapter: Transport")


def test_save_requires_text_and_subject(client, as_role, knowledge_db):
    as_role("teacher")

    assert client.post("/api/knowledge/save", json={"metadata": {"subject": "Biology"}}).status_code == 400
    assert client.post("/api/knowledge/save", json={"text": "x", "metadata": {}}).status_code == 400


def test_list_documents_filters_and_truncates(client, as_role, knowledge_db):
    as_role("teacher")

    response = client.get("/api/knowledge/documents?subject=Biology&limit=1")

    body = response.get_json()
    assert response.status_code == 200
    assert [doc["id"] for doc in body["documents"]] == ["k1"]
    assert body["documents"][0]["content"] == "A" * 200 + "..."
    assert body["hasMore"] is True
    assert body["lastDocId"] == "k1"

    next_page = client.get("/api/knowledge/documents?subject=Biology&limit=1&startAfter=k1").get_json()
    assert [doc["id"] for doc in next_page["documents"]] == ["k2"]
    assert next_page["documents"][0]["metadata"]["chapter"] == "Unknown"


def test_stats_counts_by_type_subject_and_book(client, as_role, knowledge_db):
    as_role("teacher")

    stats = client.get("/api/knowledge/stats").get_json()["stats"]

    assert stats["total"] == 3
    assert stats["byType"] == {"book": 2, "syllabus": 1}
    assert stats["bySubject"] == {"Biology": 2, "Physics": 1}


def test_delete_requires_admin_and_existing_document(client, as_role, knowledge_db):
    as_role("teacher")
    assert client.delete("/api/knowledge/documents/k1").status_code == 403

    as_role("admin")
    assert client.delete("/api/knowledge/documents/ghost").status_code == 404
    response = client.delete("/api/knowledge/documents/k1")

    assert response.status_code == 200
    assert knowledge_db.data("knowledge_base/k1") is None


def test_split_pdf_endpoint(client, as_role, make_pdf):
    as_role("teacher")

    response = client.post("/api/knowledge/split-pdf", json={"pdfBase64": _b64(make_pdf("One", "Two"))})

    body = response.get_json()
    assert response.status_code == 200
    assert body["totalPages"] == 2
    assert body["pages"][1]["pageNumber"] == 2


def test_split_pdf_rejects_invalid_input(client, as_role):
    as_role("teacher")

    assert client.post("/api/knowledge/split-pdf", json={}).status_code == 400
    assert client.post("/api/knowledge/split-pdf", json={"pdfBase64": _b64(b"not a pdf")}).status_code == 400


def test_extract_text_endpoint(client, as_role, make_pdf):
    as_role("teacher")

    response = client.post("/api/knowledge/extract-text", json={"fileData": _b64(make_pdf("Photosynthesis"))})

    body = response.get_json()
    assert response.status_code == 200
    assert body["totalPages"] == 1
    assert "Photosynthesis" in body["text"]


def test_detect_chapter_clamps_confidence(client, as_role, make_gemini, monkeypatch):
    as_role("teacher")
    monkeypatch.setattr(app_module, "gemini_client", make_gemini(['{"isStart": true, "title": " Chapter 3 ", "confidence": 1.7}']))

    response = client.post("/api/knowledge/detect-chapter", json={"image": _b64(b"img")})

    assert response.status_code == 200
    assert response.get_json() == {"isStart": True, "title": "Chapter 3", "confidence": 1.0}


def test_detect_chapter_requires_image(client, as_role):
    as_role("teacher")

    assert client.post("/api/knowledge/detect-chapter", json={}).status_code == 400
