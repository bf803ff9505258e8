from quizhub.services import search_service


class _RecordingSearchClient:
    def __init__(self):
        self.calls = []

    def save_objects(self, index_name, objects):
        self.calls.append(("save", index_name, objects))

    def delete_objects(self, index_name, object_ids):
        self.calls.append(("delete", index_name, object_ids))

    def partial_update_objects(self, index_name, objects, create_if_not_exists):
        self.calls.append(("partial", index_name, objects, create_if_not_exists))


def test_generate_search_tokens_dedupes_and_drops_short_words():
    tokens = search_service.generate_search_tokens("<p>The cell's <b>cell</b> wall: a barrier!</p>")

    assert tokens == ["the", "cell", "wall", "barrier"]
    assert search_service.generate_search_tokens(None) == []


def test_sync_index_saves_record_to_mock_index():
    client = _RecordingSearchClient()

    operations = search_service.sync_index(
        client,
        question_type="mock",
        question_id="q1",
        question_ids=None,
        data={"questionText": "<p>What?</p>", "courseId": "c1"},
        action="update",
        now_ms=123,
    )

    assert operations == ["save"]
    _op, index_name, objects = client.calls[0]
    assert index_name == "mock-questions"
    assert objects[0]["objectID"] == "q1"
    assert objects[0]["questionText"] == "What?"
    assert objects[0]["course"] == "c1"
    assert objects[0]["updatedAt"] == 123


def test_sync_index_bulk_soft_delete_and_delete():
    client = _RecordingSearchClient()

    assert search_service.sync_index(
        client, question_type="question", question_id=None, question_ids=["a", "b"], data=None, action="soft-delete", now_ms=1,
    ) == ["soft-delete"]
    assert client.calls[0] == ("partial", "questions", [{"objectID": "a", "isDeleted": True}, {"objectID": "b", "isDeleted": True}], False)

    assert search_service.sync_index(
        client, question_type="question", question_id="c", question_ids=None, data=None, action="delete", now_ms=1,
    ) == ["delete"]
    assert client.calls[1] == ("delete", "questions", ["c"])


def test_backfill_search_tokens_skips_tokenized_questions(make_db):
    db = make_db({
        "questions/q1": {"questionText": "Photosynthesis happens in leaves"},
        "questions/q2": {"questionText": "Already done", "searchTokens": ["already"]},
    })

    stats, errors = search_service.backfill_search_tokens(db, 10.0)

    assert stats == {"total": 2, "updated": 1, "skipped": 1, "errors": 0}
    assert errors == []
    assert db.data("questions/q1")["searchTokens"] == ["photosynthesis", "happens", "in", "leaves"]


def test_backfill_dry_run_writes_nothing(make_db):
    db = make_db({"questions/q1": {"questionText": "Photosynthesis"}})

    stats, _errors = search_service.backfill_search_tokens(db, 10.0, apply=False)

    assert stats["updated"] == 1
    assert "searchTokens" not in db.data("questions/q1")


def test_generate_search_tokens_drops_non_ascii_letters():
    assert search_service.generate_search_tokens("café θ angle") == ["caf", "angle"]
    assert search_service.generate_search_tokens("Resistance in Ω units") == ["resistance", "in", "units"]
