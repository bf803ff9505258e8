"""Leaderboard accuracy per user and the materialised top-N document."""

from quizhub.repositories import attempts_repo, leaderboard_repo, quizzes_repo, users_repo
from quizhub.services.quiz_rules import round_half_up

TOP_N = 10
QUESTIONS_PER_ATTEMPT = 10
REBUILD_BATCH_SIZE = 10


def _normalized_answer(value):
    return str(value or '').strip().lower()


def tally_attempt(selected_questions, answers):
    """Count ``(attempted, correct)`` over the first questions of one attempt."""
    attempted = 0
    correct = 0
    answers = answers or {}
    for question in (selected_questions or [])[:QUESTIONS_PER_ATTEMPT]:
        if not isinstance(question, dict) or not question.get('id'):
            continue
        attempted += 1
        user_answer = _normalized_answer(answers.get(question['id']))
        if user_answer and user_answer == _normalized_answer(question.get('correctAnswer')):
            correct += 1
    return attempted, correct


def accuracy_percent(attempted, correct):
    if attempted <= 0:
        return 0
    return round_half_up((correct / attempted) * 100)


def compute_user_accuracy(db, uid):
    attempted = 0
    correct = 0
    quiz_cache = {}
    for attempt in attempts_repo.list_attempts(db, uid):
        result_snapshot = attempts_repo.result_ref(db, uid, attempt.id).get()
        if not result_snapshot.exists:
            continue
        if attempt.id not in quiz_cache:
            quiz_snapshot = quizzes_repo.get_quiz(db, attempt.id)
            quiz_cache[attempt.id] = (quiz_snapshot.to_dict() or {}) if quiz_snapshot.exists else None
        quiz = quiz_cache[attempt.id]
        if quiz is None:
            continue
        result = result_snapshot.to_dict() or {}
        attempt_attempted, attempt_correct = tally_attempt(quiz.get('selectedQuestions'), result.get('answers'))
        attempted += attempt_attempted
        correct += attempt_correct
    return accuracy_percent(attempted, correct)


def recompute_user(db, uid, *, logger=None):
    accuracy = compute_user_accuracy(db, uid)
    users_repo.update_doc(db, uid, {'leaderboardAccuracy': accuracy})
    if logger is not None:
        logger.info(f"Leaderboard accuracy for {uid}: {accuracy}%")
    return accuracy


def display_name(user_data):
    return str(user_data.get('fullName') or '').strip() or 'Anonymous'


def refresh_top(db, now_ts, *, firestore_module, limit=TOP_N):
    """Rewrite ``leaderboard/top`` and the rank field on every affected user."""
    top_docs = users_repo.list_top_by_accuracy(db, limit)
    entries = []
    for doc in top_docs:
        data = doc.to_dict() or {}
        entries.append({
            'userId': doc.id,
            'accuracy': int(data.get('leaderboardAccuracy') or 0),
            'name': display_name(data),
        })

    top_ids = {entry['userId'] for entry in entries}
    batch = db.batch()
    batch.set(leaderboard_repo.top_ref(db), {'users': entries, 'lastUpdated': now_ts})
    for index, entry in enumerate(entries):
        batch.update(users_repo.doc_ref(db, entry['userId']), {'leaderboardRank': index + 1})
    for doc in users_repo.list_ranked(db):
        if doc.id not in top_ids:
            batch.update(users_repo.doc_ref(db, doc.id), {'leaderboardRank': firestore_module.DELETE_FIELD})
    batch.commit()
    return entries


def rebuild_batch(db, start_after_uid='', *, batch_size=REBUILD_BATCH_SIZE, logger=None):
    """Recompute accuracy for one page of users ordered by id.

    Returns ``(processed_count, next_start_after)``; the cursor is None once the
    last page has been handled.
    """
    docs = users_repo.list_page_by_id(db, batch_size, start_after_uid)
    processed = 0
    for doc in docs:
        try:
            recompute_user(db, doc.id)
            processed += 1
        except Exception as e:
            if logger is not None:
                logger.error(f"Leaderboard recompute failed for {doc.id}: {e}")
    next_cursor = docs[-1].id if len(docs) == batch_size else None
    return processed, next_cursor
