"""Firestore accessors for quizzes and user-built mock quizzes."""

from quizhub.repositories.query_utils import DESCENDING, apply_where

QUIZZES_COLLECTION = 'quizzes'
USER_QUIZZES_COLLECTION = 'user-quizzes'
ENROLLMENTS_COLLECTION = 'enrollments'


def quiz_ref(db, quiz_id):
    return db.collection(QUIZZES_COLLECTION).document(quiz_id)


def get_quiz(db, quiz_id):
    return quiz_ref(db, quiz_id).get()


def list_quizzes_page(db, limit, quiz_type='', subject='', start_after_id=''):
    query = db.collection(QUIZZES_COLLECTION)
    if quiz_type:
        query = apply_where(query, 'quizType', '==', quiz_type)
    if subject:
        query = apply_where(query, 'subject', '==', subject)
    query = query.order_by('createdDate', direction=DESCENDING)
    if start_after_id:
        cursor = get_quiz(db, start_after_id)
        if cursor.exists:
            query = query.start_after(cursor)
    return list(query.limit(limit).stream())


def new_user_quiz_ref(db):
    return db.collection(USER_QUIZZES_COLLECTION).document()


def get_user_quiz(db, quiz_id):
    return db.collection(USER_QUIZZES_COLLECTION).document(quiz_id).get()


def list_active_enrollments(db, student_id):
    query = apply_where(db.collection(ENROLLMENTS_COLLECTION), 'studentId', '==', student_id)
    query = apply_where(query, 'status', '==', 'active')
    return list(query.stream())
