"""Firestore accessors for AI tutor conversation logs."""

from quizhub.repositories.query_utils import DESCENDING, apply_where

TUTOR_LOGS_COLLECTION = 'ai_tutor_logs'


def log_ref(db, log_id):
    return db.collection(TUTOR_LOGS_COLLECTION).document(log_id)


def add_log(db, data):
    ref = db.collection(TUTOR_LOGS_COLLECTION).document()
    ref.set(data)
    return ref.id


def get_log(db, log_id):
    return log_ref(db, log_id).get()


def update_log(db, log_id, data):
    return log_ref(db, log_id).update(data)


def list_recent(db, limit):
    query = db.collection(TUTOR_LOGS_COLLECTION).order_by('timestamp', direction=DESCENDING).limit(limit)
    return list(query.stream())


def list_since(db, since_ts, limit=5000):
    query = apply_where(db.collection(TUTOR_LOGS_COLLECTION), 'timestamp', '>=', since_ts)
    query = query.order_by('timestamp', direction=DESCENDING).limit(limit)
    return list(query.stream())
