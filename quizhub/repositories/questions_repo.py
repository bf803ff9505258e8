"""Firestore accessors for the question banks."""

from quizhub.repositories.query_utils import apply_where

QUESTIONS_COLLECTION = 'questions'
MOCK_QUESTIONS_COLLECTION = 'mock-questions'


def question_ref(db, question_id, collection_name=QUESTIONS_COLLECTION):
    return db.collection(collection_name).document(question_id)


def get_question(db, question_id, collection_name=QUESTIONS_COLLECTION):
    return question_ref(db, question_id, collection_name).get()


def list_all(db, collection_name=QUESTIONS_COLLECTION):
    return list(db.collection(collection_name).stream())


def list_by_subject(db, subject, collection_name=QUESTIONS_COLLECTION):
    query = apply_where(db.collection(collection_name), 'subject', '==', subject)
    return list(query.stream())


def list_by_subject_and_chapter(db, subject, chapter, collection_name=QUESTIONS_COLLECTION):
    query = apply_where(db.collection(collection_name), 'subject', '==', subject)
    query = apply_where(query, 'chapter', '==', chapter)
    return list(query.stream())


def get_many(db, question_ids, collection_name=QUESTIONS_COLLECTION):
    snapshots = []
    for question_id in question_ids:
        snapshot = get_question(db, question_id, collection_name)
        if snapshot.exists:
            snapshots.append(snapshot)
    return snapshots
