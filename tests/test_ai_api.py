import json
from types import SimpleNamespace

import pytest

from quizhub import runtime as app_module


VALID_QUESTION = {
    "questionText": "What is the powerhouse of the cell?",
    "options": ["Nucleus", "Mitochondria", "Ribosome", "Golgi body"],
    "correctAnswer": "Mitochondria",
    "explanation": "It produces ATP.",
    "difficulty": "easy",
}


@pytest.fixture()
def gemini(make_gemini, monkeypatch):
    def _install(*replies):
        fake = make_gemini(list(replies))
        monkeypatch.setattr(app_module, "gemini_client", fake)
        return fake

    return _install


@pytest.fixture()
def jobs_db(make_db, fake_firestore, monkeypatch):
    db = make_db({
        "questions/q1": {"subject": "Biology", "questionText": "<p>Cell wall?</p>"},
        "questions/q2": {"subject": "Biology", "questionText": "<p>Allele?</p>", "chapter": "Genetics"},
        "questions/q3": {"subject": "Physics", "questionText": "<p>Force?</p>"},
    })
    monkeypatch.setattr(app_module, "db", db)
    monkeypatch.setattr(app_module, "firestore", fake_firestore)
    monkeypatch.setattr(app_module, "time", SimpleNamespace(time=lambda: 1000.0, sleep=lambda _s: None))
    return db


@pytest.fixture()
def started_workers(monkeypatch):
    started = []
    monkeypatch.setattr(app_module, "start_tagging_worker", lambda job_id: started.append(job_id) or True)
    return started


def test_generate_requires_login(client, as_role):
    as_role(None)

    response = client.post("/api/ai/generate", json={"prompt": "cells"})

    assert response.status_code == 401


def test_generate_requires_prompt(client, as_role, allow_all_rate_limits):
    as_role("student")

    response = client.post("/api/ai/generate", json={"prompt": "   "})

    assert response.status_code == 400


def test_generate_reports_unconfigured_ai(client, as_role, allow_all_rate_limits, monkeypatch):
    as_role("student")
    monkeypatch.setattr(app_module, "gemini_client", None)

    response = client.post("/api/ai/generate", json={"prompt": "cells"})

    assert response.status_code == 503


def test_generate_returns_sanitized_questions(client, as_role, allow_all_rate_limits, gemini):
    as_role("student")
    broken = {"questionText": "No options", "options": [], "correctAnswer": "x"}
    fake = gemini(json.dumps({"questions": [VALID_QUESTION, broken]}))

    response = client.post("/api/ai/generate", json={"prompt": "cells", "subject": "Biology", "difficulty": "hard"})

    body = response.get_json()
    assert response.status_code == 200
    assert len(body["questions"]) == 1
    assert body["questions"][0]["correctAnswer"] == "Mitochondria"
    assert body["questions"][0]["difficulty"] == "Easy"
    assert fake.calls[0]["model"] == app_module.GENERATION_MODEL


def test_generate_falls_back_to_template_when_quota_is_exhausted(client, as_role, allow_all_rate_limits, gemini):
    as_role("student")
    gemini(RuntimeError("429 RESOURCE_EXHAUSTED: quota exceeded"))

    response = client.post("/api/ai/generate", json={"prompt": "photosynthesis"})

    body = response.get_json()
    assert response.status_code == 200
    assert body["isMock"] is True
    assert "photosynthesis" in body["questions"][0]["questionText"]


def test_generate_returns_502_when_reply_has_no_usable_questions(client, as_role, allow_all_rate_limits, gemini):
    as_role("student")
    gemini("I cannot help with that.")

    response = client.post("/api/ai/generate", json={"prompt": "cells"})

    assert response.status_code == 502


def test_generate_is_rate_limited(client, as_role, gemini, monkeypatch):
    as_role("student")
    gemini(json.dumps([VALID_QUESTION]))
    monkeypatch.setattr(app_module, "check_rate_limit", lambda **_kwargs: (False, 42))

    response = client.post("/api/ai/generate", json={"prompt": "cells"})

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "42"
    assert response.get_json()["retry_after_seconds"] == 42


def test_bulk_generate_is_staff_only(client, as_role):
    as_role("student")

    response = client.post("/api/ai/bulk-generate", json={"prompt": "cells"})

    assert response.status_code == 403


def test_bulk_generate_flattens_numbered_options(client, as_role, gemini):
    as_role("teacher")
    reply = json.dumps([
        {"questionText": "Q1", "option1": "A", "option2": "B", "option3": "", "option4": "D", "correctAnswer": "B"},
        {"questionText": "Q2", "option1": "only one"},
    ])
    fake = gemini(f"```json\n{reply}\n```")

    response = client.post("/api/ai/bulk-generate", json={
        "prompt": "Mitosis",
        "count": 2,
        "strictMode": True,
        "metadata": {"subject": "Biology", "chapter": "Cells", "difficulty": "hard"},
    })

    body = response.get_json()
    assert response.status_code == 200
    assert body["questions"] == [{
        "questionText": "Q1",
        "options": ["A", "B", "D"],
        "correctAnswer": "B",
        "explanation": "",
        "difficulty": "Medium",
        "topic": "",
    }]
    assert fake.calls[0]["model"] == app_module.BULK_MODEL


def test_bulk_generate_rejects_unknown_action(client, as_role, gemini):
    as_role("teacher")

    response = client.post("/api/ai/bulk-generate", json={"prompt": "x", "action": "summarize"})

    assert response.status_code == 400


def test_bulk_generate_requires_an_array_reply(client, as_role, gemini):
    as_role("teacher")
    gemini('{"questions": "none"}')

    response = client.post("/api/ai/bulk-generate", json={"prompt": "x", "action": "parse"})

    assert response.status_code == 502


def test_bulk_prompt_switches_context_blocks():
    from quizhub.services import ai_api_service

    strict = ai_api_service.build_bulk_prompt("text", 5, {"subject": "Chemistry"}, True, True, "parse")
    relaxed = ai_api_service.build_bulk_prompt("text", 5, {}, False, False, "generate")

    assert "Chemistry" in strict
    assert strict != relaxed


def test_generate_mcq_from_text(client, as_role, gemini):
    as_role("teacher")
    gemini(json.dumps({"questions": [
        {"question": "2 + 2?", "options": ["1", "2", "3", "4"], "answer": "4"},
        {"question": "2 + 2?", "options": ["1", "2", "3", "4"], "answer": "4"},
        {"question": "Bad", "options": ["1", "1", "2", "3"], "answer": "1"},
    ]}))

    response = client.post("/api/ai/generate-mcq", json={"text": "Arithmetic notes", "count": 3})

    body = response.get_json()
    assert response.status_code == 200
    assert [question["questionText"] for question in body["questions"]] == ["2 + 2?"]
    assert body["questions"][0]["correctAnswer"] == "4"


def test_generate_mcq_requires_text(client, as_role, gemini):
    as_role("teacher")

    response = client.post("/api/ai/generate-mcq", json={"text": ""})

    assert response.status_code == 400


def test_auto_tag_preview_validates_input(client, as_role, gemini):
    as_role("teacher")

    assert client.post("/api/ai/auto-tag", json={"questions": [], "validChapters": ["Cells"]}).status_code == 400
    assert client.post("/api/ai/auto-tag", json={"questions": [{"id": "q1"}], "validChapters": []}).status_code == 400


def test_auto_tag_preview_returns_parsed_reply(client, as_role, gemini):
    as_role("teacher")
    preview = {"results": [{"question_id": "q1", "assigned_chapter": "Cells"}]}
    gemini(f"```json\n{json.dumps(preview)}\n```")

    response = client.post("/api/ai/auto-tag", json={
        "questions": [{"id": "q1", "questionText": "Cell wall?"}],
        "validChapters": ["Cells"],
        "subject": "Biology",
    })

    assert response.status_code == 200
    assert response.get_json() == preview


def test_auto_tag_preview_rejects_non_json_reply(client, as_role, gemini):
    as_role("teacher")
    gemini("Chapter: Cells")

    response = client.post("/api/ai/auto-tag", json={
        "questions": [{"id": "q1", "questionText": "Cell wall?"}],
        "validChapters": ["Cells"],
    })

    assert response.status_code == 502


def test_deduplicate_preview_without_ai_returns_exact_groups(client, as_role, monkeypatch):
    as_role("teacher")
    monkeypatch.setattr(app_module, "gemini_client", None)

    response = client.post("/api/ai/deduplicate-preview", json={"questions": [
        {"id": "a", "text": "<p>What is DNA?</p>"},
        {"id": "b", "text": "what is  dna?"},
        {"id": "c", "text": "What is RNA?"},
    ]})

    body = response.get_json()
    assert response.status_code == 200
    assert body == {"duplicateGroups": [], "exactGroups": [[0, 1]]}


def test_deduplicate_preview_keeps_only_known_ids(client, as_role, gemini):
    as_role("teacher")
    gemini(json.dumps({"duplicateGroups": [["a", "c", "zzz"], ["b"]]}))

    response = client.post("/api/ai/deduplicate-preview", json={"questions": [
        {"id": "a", "text": "What is DNA?"},
        {"id": "b", "text": "Define osmosis"},
        {"id": "c", "text": "Explain deoxyribonucleic acid"},
    ]})

    assert response.status_code == 200
    assert response.get_json()["duplicateGroups"] == [["a", "c"]]


def test_deduplicate_preview_requires_array(client, as_role):
    as_role("teacher")

    response = client.post("/api/ai/deduplicate-preview", json={"questions": "nope"})

    assert response.status_code == 400


def test_start_tagging_job_creates_running_job(client, as_role, jobs_db, started_workers):
    as_role("teacher", uid="t1")

    response = client.post("/api/ai/auto-tag/start", json={
        "courseId": "course-1",
        "subject": "Biology",
        "validChapters": ["Cells", "Genetics"],
        "batchSize": 2,
    })

    body = response.get_json()
    assert response.status_code == 200
    assert body["totalQuestions"] == 1
    assert body["batchSize"] == 5
    job = jobs_db.data(f"tagging_jobs/{body['jobId']}")
    assert job["status"] == "running"
    assert job["questionIds"] == ["q1"]
    assert job["createdBy"] == "t1"
    assert started_workers == [body["jobId"]]


def test_start_tagging_job_refuses_a_second_active_job(client, as_role, jobs_db, started_workers):
    as_role("teacher")
    jobs_db.docs[("tagging_jobs", "existing")] = {"subject": "Biology", "status": "running"}

    response = client.post("/api/ai/auto-tag/start", json={
        "courseId": "course-1",
        "subject": "Biology",
        "validChapters": ["Cells"],
    })

    assert response.status_code == 409
    assert response.get_json()["jobId"] == "existing"
    assert started_workers == []


def test_start_tagging_job_reports_nothing_to_tag(client, as_role, jobs_db, started_workers):
    as_role("teacher")
    jobs_db.docs[("questions", "q1")]["chapter"] = "Cells"

    response = client.post("/api/ai/auto-tag/start", json={
        "courseId": "course-1",
        "subject": "Biology",
        "validChapters": ["Cells"],
    })

    assert response.status_code == 404
    assert response.get_json()["message"] == "All questions are already tagged!"


def test_start_tagging_job_requires_fields(client, as_role, jobs_db):
    as_role("teacher")

    response = client.post("/api/ai/auto-tag/start", json={"subject": "Biology"})

    assert response.status_code == 400


def test_process_endpoint_runs_one_batch(client, as_role, jobs_db, gemini):
    as_role("teacher")
    jobs_db.docs[("tagging_jobs", "job-1")] = {
        "status": "running",
        "courseId": "course-1",
        "subject": "Biology",
        "batchSize": 5,
        "validChapters": ["Cells"],
        "questionIds": ["q1"],
        "currentBatchIndex": 0,
        "logs": [],
    }
    gemini(json.dumps({"results": [{"question_id": "q1", "assigned_chapter": "Cells", "difficulty": "Easy"}]}))

    response = client.post("/api/ai/auto-tag/process", json={"jobId": "job-1"})

    body = response.get_json()
    assert response.status_code == 200
    assert body["success"] is True
    assert body["status"] == "completed"
    assert jobs_db.data("questions/q1")["chapter"] == "Cells"


def test_process_endpoint_unknown_job(client, as_role, jobs_db):
    as_role("teacher")

    response = client.post("/api/ai/auto-tag/process", json={"jobId": "ghost"})

    assert response.status_code == 404


def test_status_hides_question_ids(client, as_role, jobs_db):
    as_role("teacher")
    jobs_db.docs[("tagging_jobs", "job-1")] = {"status": "running", "questionIds": ["q1"], "processedCount": 3}

    response = client.get("/api/ai/auto-tag/status?jobId=job-1")

    body = response.get_json()
    assert response.status_code == 200
    assert body == {"status": "running", "processedCount": 3, "id": "job-1"}


def test_pause_and_resume_cycle(client, as_role, jobs_db, started_workers):
    as_role("teacher")
    jobs_db.docs[("tagging_jobs", "job-1")] = {"status": "running", "lastError": "old"}

    paused = client.post("/api/ai/auto-tag/pause", json={"jobId": "job-1"})
    assert paused.status_code == 200
    assert jobs_db.data("tagging_jobs/job-1")["status"] == "paused"

    resumed = client.post("/api/ai/auto-tag/resume", json={"jobId": "job-1"})
    assert resumed.status_code == 200
    job = jobs_db.data("tagging_jobs/job-1")
    assert job["status"] == "running"
    assert "lastError" not in job
    assert started_workers == ["job-1"]


def test_pause_rejects_finished_jobs(client, as_role, jobs_db):
    as_role("teacher")
    jobs_db.docs[("tagging_jobs", "job-1")] = {"status": "completed"}

    assert client.post("/api/ai/auto-tag/pause", json={"jobId": "job-1"}).status_code == 409
    assert client.post("/api/ai/auto-tag/resume", json={"jobId": "job-1"}).status_code == 409


def test_start_tagging_worker_runs_once_per_job(monkeypatch):
    started = []
    monkeypatch.setattr(app_module, "start_background_task", lambda target, *args: started.append(args))
    monkeypatch.setattr(app_module, "TAGGING_WORKERS", set())

    assert app_module.start_tagging_worker("job-1") is True
    assert app_module.start_tagging_worker("job-1") is False
    assert started == [("job-1",)]
