"""Aggregated per-student statistics and per-question performance counters."""

from quizhub.repositories import questions_repo, users_repo
from quizhub.services.quiz_rules import option_count_key, round_half_up

KIND_ADMIN = 'admin'
KIND_USER = 'user'


def default_stats():
    return {
        'totalQuizzes': 0,
        'totalQuestions': 0,
        'totalCorrect': 0,
        'totalWrong': 0,
        'totalTime': 0,
        'overallAccuracy': 0,
        'lastQuizDate': None,
        'totalMockQuizzes': 0,
        'totalMockQuestions': 0,
        'totalMockCorrect': 0,
        'mockAccuracy': 0,
        'subjectStats': {},
    }


def percent(part, whole):
    if not whole:
        return 0
    return round_half_up((part / whole) * 100)


def summarize_answers(answers, score):
    attempted = len([key for key in (answers or {}) if key])
    correct = int(score or 0)
    return attempted, correct, attempted - correct


def _apply_subject_breakdown(subject_stats, question_results, quiz_subjects):
    for subject in quiz_subjects:
        if subject:
            subject_stats.setdefault(subject, {'attempted': 0, 'correct': 0, 'wrong': 0, 'accuracy': 0})
    for result in question_results:
        if not result.get('answered'):
            continue
        entry = subject_stats.setdefault(
            result.get('subject') or 'Uncategorized',
            {'attempted': 0, 'correct': 0, 'wrong': 0, 'accuracy': 0},
        )
        entry['attempted'] += 1
        if result.get('answerCorrect'):
            entry['correct'] += 1
        else:
            entry['wrong'] += 1
        entry['accuracy'] = percent(entry['correct'], entry['attempted'])


def _copy_breakdown(breakdown):
    return {name: dict(entry) for name, entry in (breakdown or {}).items() if isinstance(entry, dict)}


def normalize_quiz_subjects(subject):
    if isinstance(subject, list):
        values = subject
    else:
        values = [subject or 'Uncategorized']
    names = []
    for value in values:
        if isinstance(value, dict):
            value = value.get('name')
        if value:
            names.append(str(value))
    return names


def merge_stats(stats, *, kind, answers, score, question_results, quiz_subject, now_ts):
    """Return a new stats map with one more quiz folded in."""
    merged = default_stats()
    merged.update(stats or {})
    merged['subjectStats'] = _copy_breakdown(merged.get('subjectStats'))
    attempted, correct, wrong = summarize_answers(answers, score)
    quiz_subjects = normalize_quiz_subjects(quiz_subject)

    if kind == KIND_ADMIN:
        merged['totalQuizzes'] = int(merged.get('totalQuizzes') or 0) + 1
        merged['totalQuestions'] = int(merged.get('totalQuestions') or 0) + attempted
        merged['totalCorrect'] = int(merged.get('totalCorrect') or 0) + correct
        merged['totalWrong'] = int(merged.get('totalWrong') or 0) + wrong
        merged['totalScore'] = int(merged.get('totalScore') or 0) + int(score or 0)
        merged['overallAccuracy'] = percent(merged['totalCorrect'], merged['totalQuestions'])
        merged['adminAttempts'] = merged['totalQuizzes']
        merged['adminCorrect'] = merged['totalCorrect']
        merged['adminWrong'] = merged['totalWrong']
        merged['adminAccuracy'] = merged['overallAccuracy']
        merged['lastQuizDate'] = now_ts
        _apply_subject_breakdown(merged['subjectStats'], question_results, quiz_subjects)
        return merged

    merged['totalMockQuizzes'] = int(merged.get('totalMockQuizzes') or 0) + 1
    merged['totalMockQuestions'] = int(merged.get('totalMockQuestions') or 0) + attempted
    merged['totalMockCorrect'] = int(merged.get('totalMockCorrect') or 0) + correct
    merged['mockAccuracy'] = percent(merged['totalMockCorrect'], merged['totalMockQuestions'])
    merged['userAttempts'] = merged['totalMockQuizzes']
    merged['userCorrect'] = merged['totalMockCorrect']
    merged['userWrong'] = int(merged.get('userWrong') or 0) + wrong
    merged['userAccuracy'] = merged['mockAccuracy']
    merged['userSubjectStats'] = _copy_breakdown(merged.get('userSubjectStats'))
    _apply_subject_breakdown(merged['userSubjectStats'], question_results, quiz_subjects)
    return merged


def update_student_stats(db, uid, *, kind, answers, score, question_results, quiz_subject, now_ts, firestore_module):
    user_ref = users_repo.doc_ref(db, uid)

    @firestore_module.transactional
    def _apply(txn):
        snapshot = user_ref.get(transaction=txn)
        if not snapshot.exists:
            return False
        current = (snapshot.to_dict() or {}).get('stats') or {}
        txn.update(user_ref, {'stats': merge_stats(
            current,
            kind=kind,
            answers=answers,
            score=score,
            question_results=question_results,
            quiz_subject=quiz_subject,
            now_ts=now_ts,
        )})
        return True

    return _apply(db.transaction())


def record_question_performance(db, question_results, *, firestore_module, collection_name=questions_repo.QUESTIONS_COLLECTION):
    batch = db.batch()
    writes = 0
    for result in question_results:
        question_id = result.get('questionId')
        if not question_id:
            continue
        updates = {
            'totalAttempts': firestore_module.Increment(1),
            f"optionCounts.{option_count_key(result.get('chosenOption'))}": firestore_module.Increment(1),
            'totalTimeSpent': firestore_module.Increment(result.get('timeSpent', 0) or 0),
        }
        if result.get('isCorrect'):
            updates['correctAttempts'] = firestore_module.Increment(1)
        batch.update(questions_repo.question_ref(db, question_id, collection_name), updates)
        writes += 1
    if writes:
        batch.commit()
    return writes

