import io
from types import SimpleNamespace

import pytest
from docx import Document
from pypdf import PdfReader

from quizhub import runtime as app_module
from quizhub.services import export_service


QUIZ = {
    "title": "Mock Test 1",
    "selectedQuestions": [
        {"id": "q1", "correctAnswer": "A", "subject": "Biology"},
        {"id": "q2", "correctAnswer": "B", "subject": "Biology"},
        {"id": "q3", "correctAnswer": "C", "subject": "Physics"},
        {"id": "q4", "correctAnswer": "D", "subject": "Physics", "graceMark": True},
    ],
}

QUESTIONS = [
    {
        "questionText": "<p>Which organelle makes ATP?</p>",
        "options": ["Nucleus", "Mitochondria", "Ribosome", "Vacuole"],
        "correctAnswer": "Mitochondria",
        "explanation": "<b>Mitochondria</b> run cellular respiration.",
    },
    {"questionText": "", "options": ["Yes", "No"], "correctAnswer": "Yes"},
]


@pytest.fixture()
def export_db(make_db, monkeypatch):
    db = make_db({
        "quizzes/quiz-1": QUIZ,
        "users/u1": {"fullName": "Asha Khan"},
        "users/u1/quizAttempts/quiz-1/results/quiz-1": {"answers": {"q1": "A", "q2": "C"}},
    })
    monkeypatch.setattr(app_module, "db", db)
    monkeypatch.setattr(app_module, "time", SimpleNamespace(time=lambda: 1_772_000_000.0))
    return db


def test_remark_bands():
    assert export_service.remark_for(100) == "Perfect Score! Outstanding!"
    assert export_service.remark_for(92) == "Excellent Performance!"
    assert export_service.remark_for(70) == "Great Job!"
    assert export_service.remark_for(50) == "Good Effort"
    assert export_service.remark_for(49.9) == "Keep Practicing"


def test_result_summary_counts_grace_marks_and_skips():
    summary = export_service.build_result_summary({"answers": {"q1": "A", "q2": "C"}}, QUIZ, "Asha")

    assert summary["score"] == 2
    assert summary["totalQuestions"] == 4
    assert summary["skippedQuestions"] == 1
    assert summary["wrongAnswers"] == 1
    assert summary["percentage"] == 50.0
    assert summary["remark"] == "Good Effort"
    assert summary["subjectStats"] == [
        {"subject": "Biology", "total": 2, "correct": 1, "wrong": 1, "percentage": 50.0},
        {"subject": "Physics", "total": 2, "correct": 1, "wrong": 0, "percentage": 50.0},
    ]


def test_plain_text_and_safe_filename():
    assert export_service.plain_text("<p>Line one<br/>Line two</p>") == "Line one\nLine two"
    assert export_service.safe_filename("Mock Test: 1", "Result.pdf") == "Mock_Test__1_Result.pdf"


def test_questions_docx_marks_correct_answers():
    docx_io = export_service.build_questions_docx("Bank", QUESTIONS)

    paragraphs = Document(docx_io).paragraphs
    texts = [paragraph.text for paragraph in paragraphs]
    assert texts[0] == "Bank"
    assert "1. Which organelle makes ATP?" in texts
    assert "2. Question 2" in texts
    correct = next(paragraph for paragraph in paragraphs if paragraph.text == "B. Mitochondria")
    assert correct.runs[0].bold is True
    assert "Explanation: Mitochondria run cellular respiration." in texts


def test_questions_docx_can_hide_answers():
    docx_io = export_service.build_questions_docx("Bank", QUESTIONS, include_answers=False)

    texts = [paragraph.text for paragraph in Document(docx_io).paragraphs]
    assert not any(text.startswith("Explanation:") for text in texts)


def test_questions_pdf_renders_every_question():
    pdf_io = export_service.build_questions_pdf("Bank", QUESTIONS)

    text = "".join(page.extract_text() for page in PdfReader(pdf_io).pages)
    assert "Which organelle makes ATP?" in text
    assert "Explanation:" in text


def test_result_card_endpoint_returns_pdf(client, as_role, export_db):
    as_role("student", uid="u1")

    response = client.get("/api/results/quiz-1/pdf")

    assert response.status_code == 200
    assert response.mimetype == "application/pdf"
    assert "Mock_Test_1_Result.pdf" in response.headers["Content-Disposition"]
    text = PdfReader(io.BytesIO(response.data)).pages[0].extract_text()
    assert "Asha Khan" in text
    assert "Good Effort" in text


def test_result_card_is_private_to_owner(client, as_role, export_db):
    as_role("student", uid="u2")

    assert client.get("/api/results/quiz-1/pdf?userId=u1").status_code == 403


def test_result_card_admin_can_export_for_student(client, as_role, export_db):
    as_role("admin", uid="a1")

    assert client.get("/api/results/quiz-1/pdf?userId=u1").status_code == 200


def test_result_card_missing_result(client, as_role, export_db):
    as_role("student", uid="u3")

    assert client.get("/api/results/quiz-1/pdf").status_code == 404


def test_result_card_reports_missing_reportlab(client, as_role, export_db, monkeypatch):
    as_role("student", uid="u1")
    monkeypatch.setattr(export_service, "REPORTLAB_AVAILABLE", False)

    assert client.get("/api/results/quiz-1/pdf").status_code == 503


def test_export_questions_docx(client, as_role):
    as_role("teacher")

    response = client.post("/api/exports/questions", json={"questions": QUESTIONS, "format": "docx", "title": "Bio Bank"})

    assert response.status_code == 200
    assert response.mimetype == export_service.DOCX_MIME_TYPE
    assert "Bio_Bank_questions.docx" in response.headers["Content-Disposition"]


def test_export_questions_validates_request(client, as_role, monkeypatch):
    as_role("teacher")
    monkeypatch.setattr(export_service, "MAX_EXPORT_QUESTIONS", 1)

    assert client.post("/api/exports/questions", json={"questions": "x"}).status_code == 400
    assert client.post("/api/exports/questions", json={"questions": QUESTIONS}).status_code == 400
    assert client.post("/api/exports/questions", json={"questions": [], "format": "xlsx"}).status_code == 400


def test_export_questions_is_staff_only(client, as_role):
    as_role("student")

    assert client.post("/api/exports/questions", json={"questions": []}).status_code == 403
