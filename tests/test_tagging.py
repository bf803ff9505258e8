import base64
import json
import logging
from types import SimpleNamespace

from quizhub.services import tagging_service

LOGGER = logging.getLogger("tests.tagging")


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now
        self.sleeps = []

    def time(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _no_http(*_args, **_kwargs):
    raise AssertionError("no images expected")


def _job(question_ids, batch_size=5, **extra):
    job = {
        "status": "running",
        "courseId": "course-1",
        "subject": "Biology",
        "model": "gemini-test",
        "batchSize": batch_size,
        "validChapters": ["Cells", "Genetics"],
        "questionIds": list(question_ids),
        "currentBatchIndex": 0,
        "processedCount": 0,
        "failedCount": 0,
        "logs": [],
    }
    job.update(extra)
    return job


def _run_batch(db, fake_firestore, generate_reply, clock=None):
    return tagging_service.process_next_batch(
        db,
        "job-1",
        generate_reply=generate_reply,
        http_get=_no_http,
        firestore_module=fake_firestore,
        time_module=clock or FakeClock(),
        logger=LOGGER,
    )


def test_clamp_batch_size_bounds_and_defaults():
    assert tagging_service.clamp_batch_size(None) == 15
    assert tagging_service.clamp_batch_size("abc") == 15
    assert tagging_service.clamp_batch_size(1) == 5
    assert tagging_service.clamp_batch_size(500) == 50
    assert tagging_service.clamp_batch_size("20") == 20


def test_select_question_ids_skips_foreign_course_and_tagged_in_pending_mode(make_db):
    db = make_db({
        "questions/q1": {"subject": "Biology"},
        "questions/q2": {"subject": "Biology", "chapter": "Cells"},
        "questions/q3": {"subject": "Biology", "courseId": "other"},
        "questions/q4": {"subject": "Biology", "courseId": "course-1", "chapter": " "},
    })
    snapshots = list(db.collection("questions").stream())

    assert sorted(tagging_service.select_question_ids(snapshots, "course-1", "pending")) == ["q1", "q4"]
    assert sorted(tagging_service.select_question_ids(snapshots, "course-1", "all")) == ["q1", "q2", "q4"]


def test_build_job_fills_defaults():
    job = tagging_service.build_job(
        course_id="c1",
        subject="Biology",
        model="",
        batch_size=None,
        syllabus_context="",
        valid_chapters=("Cells",),
        processing_mode="",
        question_ids=["q1", "q2"],
        created_by="",
        now_ts=10.0,
    )

    assert job["status"] == "pending"
    assert job["model"] == tagging_service.DEFAULT_TAGGING_MODEL
    assert job["batchSize"] == 15
    assert job["processingMode"] == "pending"
    assert job["totalQuestions"] == 2
    assert job["createdBy"] == "anonymous"
    assert job["validChapters"] == ["Cells"]


def test_extract_image_urls_caps_at_three():
    html = "".join(f'<p><img src="https://cdn.example.com/{index}.png"></p>' for index in range(5))

    assert tagging_service.extract_image_urls(html) == [f"https://cdn.example.com/{index}.png" for index in range(3)]


def test_fetch_image_decodes_data_urls():
    payload = base64.b64encode(b"png-bytes").decode("ascii")

    assert tagging_service.fetch_image(f"data:image/png;base64,{payload}", _no_http) == (b"png-bytes", "image/png")
    assert tagging_service.fetch_image("data:image/png,not-base64", _no_http) is None


def test_fetch_image_uses_http_status_and_content_type():
    def http_get(url, timeout):
        if url.endswith("missing.png"):
            return SimpleNamespace(status_code=404, headers={}, content=b"")
        return SimpleNamespace(status_code=200, headers={"content-type": "image/webp; charset=binary"}, content=b"img")

    assert tagging_service.fetch_image("https://cdn.example.com/ok.webp", http_get) == (b"img", "image/webp")
    assert tagging_service.fetch_image("https://cdn.example.com/missing.png", http_get) is None


def test_fetch_image_treats_network_errors_as_missing():
    def http_get(url, timeout):
        raise ConnectionError("boom")

    assert tagging_service.fetch_image("https://cdn.example.com/a.png", http_get) is None


def test_parse_tag_results_ignores_malformed_replies():
    assert tagging_service.parse_tag_results("not json") == []
    assert tagging_service.parse_tag_results('{"results": "nope"}') == []
    assert tagging_service.parse_tag_results('```json\n{"results": [{"question_id": "q1"}, 3]}\n```') == [{"question_id": "q1"}]


def test_process_next_batch_tags_valid_chapters_only(make_db, fake_firestore):
    db = make_db({
        "tagging_jobs/job-1": _job(["q1", "q2", "q3"]),
        "questions/q1": {"questionText": "<p>What is a cell membrane made of?</p>"},
        "questions/q2": {"questionText": "<p>Define allele</p>"},
        "questions/q3": {"questionText": "<p>Define osmosis</p>"},
    })
    reply = json.dumps({"results": [
        {"question_id": "q1", "assigned_chapter": "Cells", "difficulty": "hard"},
        {"question_id": "q2", "assigned_chapter": "Astronomy", "difficulty": "easy"},
        {"question_id": "unknown", "assigned_chapter": "Cells"},
    ]})
    prompts = []

    def generate_reply(model, prompt_text, extra_parts):
        prompts.append((model, prompt_text, extra_parts))
        return reply

    outcome = _run_batch(db, fake_firestore, generate_reply)

    assert outcome == {"status": "completed", "processed": 1, "nextBatch": False}
    assert prompts[0][0] == "gemini-test"
    assert "Q1 (ID: q1)" in prompts[0][1]
    tagged = db.data("questions/q1")
    assert tagged["chapter"] == "Cells"
    assert tagged["difficulty"] == "Hard"
    assert tagged["aiTagged"] is True
    assert tagged["courseId"] == "course-1"
    assert "chapter" not in db.data("questions/q2")
    job = db.data("tagging_jobs/job-1")
    assert job["processedCount"] == 1
    assert job["failedCount"] == 2
    assert job["currentBatchIndex"] == 5
    assert job["status"] == "completed"
    assert [entry["id"] for entry in job["logs"]] == ["q1"]


def test_process_next_batch_counts_ai_failures_and_keeps_going(make_db, fake_firestore):
    db = make_db({
        "tagging_jobs/job-1": _job(["q1", "q2"], batch_size=1),
        "questions/q1": {"questionText": "One"},
        "questions/q2": {"questionText": "Two"},
    })

    def generate_reply(model, prompt_text, extra_parts):
        raise RuntimeError("model overloaded")

    outcome = _run_batch(db, fake_firestore, generate_reply)

    assert outcome["status"] == "running"
    assert outcome["nextBatch"] is True
    job = db.data("tagging_jobs/job-1")
    assert job["failedCount"] == 1
    assert job["currentBatchIndex"] == 1


def test_process_next_batch_pauses_job_on_store_error(make_db, fake_firestore):
    db = make_db({
        "tagging_jobs/job-1": _job(["q1"]),
        "questions/q1": {"questionText": "One"},
    })

    def broken_batch():
        raise RuntimeError("write quota exceeded")

    db.batch = broken_batch

    outcome = _run_batch(db, fake_firestore, lambda *_args: "{}")

    assert outcome["status"] == "paused"
    assert outcome["nextBatch"] is False
    job = db.data("tagging_jobs/job-1")
    assert job["status"] == "paused"
    assert job["lastError"] == "write quota exceeded"
    assert job["currentBatchIndex"] == 0


def test_claim_next_batch_hands_out_distinct_batches(make_db, fake_firestore):
    db = make_db({"tagging_jobs/job-1": _job(["q1", "q2", "q3", "q4"], batch_size=2)})

    _, first = tagging_service.claim_next_batch(db, "job-1", firestore_module=fake_firestore, now_ts=1.0)
    _, second = tagging_service.claim_next_batch(db, "job-1", firestore_module=fake_firestore, now_ts=2.0)
    _, third = tagging_service.claim_next_batch(db, "job-1", firestore_module=fake_firestore, now_ts=3.0)

    assert (first, second, third) == (0, 2, 4)
    assert db.data("tagging_jobs/job-1")["currentBatchIndex"] == 4


def test_process_next_batch_after_another_claim_tags_the_following_batch(make_db, fake_firestore):
    db = make_db({
        "tagging_jobs/job-1": _job(["q1", "q2", "q3", "q4"], batch_size=2),
        "questions/q1": {"questionText": "One"},
        "questions/q2": {"questionText": "Two"},
        "questions/q3": {"questionText": "Three"},
        "questions/q4": {"questionText": "Four"},
    })
    tagging_service.claim_next_batch(db, "job-1", firestore_module=fake_firestore, now_ts=1.0)
    prompts = []

    def generate_reply(model, prompt_text, extra_parts):
        prompts.append(prompt_text)
        return json.dumps({"results": [{"question_id": "q3", "assigned_chapter": "Cells"}]})

    outcome = _run_batch(db, fake_firestore, generate_reply)

    assert outcome["nextBatch"] is False
    assert "(ID: q3)" in prompts[0]
    assert "(ID: q1)" not in prompts[0]
    assert db.data("questions/q3")["chapter"] == "Cells"
    assert db.data("tagging_jobs/job-1")["currentBatchIndex"] == 4


def test_claim_next_batch_leaves_stopped_jobs_alone(make_db, fake_firestore):
    db = make_db({"tagging_jobs/job-1": _job(["q1"], status="paused")})

    job, start = tagging_service.claim_next_batch(db, "job-1", firestore_module=fake_firestore, now_ts=1.0)

    assert job["status"] == "paused"
    assert start is None
    assert db.data("tagging_jobs/job-1")["currentBatchIndex"] == 0


def test_process_next_batch_handles_missing_and_stopped_jobs(make_db, fake_firestore):
    db = make_db({"tagging_jobs/job-2": _job(["q1"], status="paused")})

    assert _run_batch(db, fake_firestore, _no_http) == {"status": "missing", "nextBatch": False}

    outcome = tagging_service.process_next_batch(
        db,
        "job-2",
        generate_reply=_no_http,
        http_get=_no_http,
        firestore_module=fake_firestore,
        time_module=FakeClock(),
        logger=LOGGER,
    )
    assert outcome["status"] == "paused"
    assert outcome["nextBatch"] is False


def test_process_next_batch_completes_when_cursor_is_past_the_end(make_db, fake_firestore):
    db = make_db({"tagging_jobs/job-1": _job(["q1"], currentBatchIndex=5)})

    outcome = _run_batch(db, fake_firestore, _no_http)

    assert outcome == {"status": "completed", "nextBatch": False}
    assert db.data("tagging_jobs/job-1")["status"] == "completed"


def test_process_next_batch_trims_job_logs(make_db, fake_firestore):
    old_logs = [{"id": f"old-{index}"} for index in range(60)]
    db = make_db({
        "tagging_jobs/job-1": _job(["q1"], logs=old_logs),
        "questions/q1": {"questionText": "One"},
    })
    reply = json.dumps({"results": [{"question_id": "q1", "assigned_chapter": "Genetics"}]})

    _run_batch(db, fake_firestore, lambda *_args: reply)

    logs = db.data("tagging_jobs/job-1")["logs"]
    assert len(logs) == tagging_service.MAX_JOB_LOGS
    assert logs[-1]["id"] == "q1"


def test_run_job_throttles_between_batches(make_db, fake_firestore):
    db = make_db({
        "tagging_jobs/job-1": _job(["q1", "q2", "q3"], batch_size=1),
        "questions/q1": {"questionText": "One"},
        "questions/q2": {"questionText": "Two"},
        "questions/q3": {"questionText": "Three"},
    })
    clock = FakeClock()

    outcome, batches = tagging_service.run_job(
        db,
        "job-1",
        generate_reply=lambda *_args: "{}",
        http_get=_no_http,
        firestore_module=fake_firestore,
        time_module=clock,
        logger=LOGGER,
        throttle_seconds=2.0,
    )

    assert outcome["status"] == "completed"
    assert batches == 3
    assert clock.sleeps == [2.0, 2.0]
    assert db.data("tagging_jobs/job-1")["failedCount"] == 3
