"""Firestore accessors for quiz attempts, results and submissions."""

from quizhub.repositories.query_utils import DESCENDING
from quizhub.repositories.users_repo import doc_ref as user_doc_ref

ATTEMPTS_SUBCOLLECTION = 'quizAttempts'
USER_ATTEMPTS_SUBCOLLECTION = 'user-quizattempts'
RESULTS_SUBCOLLECTION = 'results'
SUBMISSIONS_COLLECTION = 'submissions'
QUESTION_USAGE_SUBCOLLECTION = 'question-usage'


def attempts_collection(db, uid):
    return user_doc_ref(db, uid).collection(ATTEMPTS_SUBCOLLECTION)


def attempt_ref(db, uid, quiz_id):
    return attempts_collection(db, uid).document(quiz_id)


def result_ref(db, uid, quiz_id):
    return attempt_ref(db, uid, quiz_id).collection(RESULTS_SUBCOLLECTION).document(quiz_id)


def user_attempt_ref(db, uid, quiz_id):
    return user_doc_ref(db, uid).collection(USER_ATTEMPTS_SUBCOLLECTION).document(quiz_id)


def list_attempts(db, uid):
    return list(attempts_collection(db, uid).stream())


def list_recent_attempts(db, uid, limit):
    query = attempts_collection(db, uid).order_by('submittedAt', direction=DESCENDING).limit(limit)
    return list(query.stream())


def submission_ref(db, submission_key):
    return db.collection(SUBMISSIONS_COLLECTION).document(submission_key)


def question_usage_ref(db, uid, subject):
    return user_doc_ref(db, uid).collection(QUESTION_USAGE_SUBCOLLECTION).document(subject)
