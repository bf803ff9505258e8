"""Firestore accessors for user profiles."""

from quizhub.repositories.query_utils import DESCENDING, DOCUMENT_ID_FIELD, apply_where

USERS_COLLECTION = 'users'


def doc_ref(db, uid):
    return db.collection(USERS_COLLECTION).document(uid)


def get_doc(db, uid):
    return doc_ref(db, uid).get()


def update_doc(db, uid, data):
    return doc_ref(db, uid).update(data)


def list_page_by_id(db, limit, start_after_uid=''):
    query = db.collection(USERS_COLLECTION).order_by(DOCUMENT_ID_FIELD)
    if start_after_uid:
        cursor = get_doc(db, start_after_uid)
        if cursor.exists:
            query = query.start_after(cursor)
    return list(query.limit(limit).stream())


def list_top_by_accuracy(db, limit):
    query = db.collection(USERS_COLLECTION).order_by('leaderboardAccuracy', direction=DESCENDING)
    query = query.order_by(DOCUMENT_ID_FIELD)
    return list(query.limit(limit).stream())


def list_ranked(db):
    query = apply_where(db.collection(USERS_COLLECTION), 'leaderboardRank', '>', 0)
    return list(query.stream())


def list_students_page(db, sort_by, direction, limit, start_after_uid=''):
    query = apply_where(db.collection(USERS_COLLECTION), 'role', '==', 'student')
    query = query.order_by(sort_by, direction=direction)
    if start_after_uid:
        cursor = get_doc(db, start_after_uid)
        if cursor.exists:
            query = query.start_after(cursor)
    return list(query.limit(limit).stream())
