"""Firestore accessors for background auto-tag jobs."""

from quizhub.repositories.query_utils import apply_where

TAGGING_JOBS_COLLECTION = 'tagging_jobs'
ACTIVE_STATUSES = ['pending', 'running']


def job_ref(db, job_id):
    return db.collection(TAGGING_JOBS_COLLECTION).document(job_id)


def create_job(db, data):
    ref = db.collection(TAGGING_JOBS_COLLECTION).document()
    ref.set(data)
    return ref.id


def get_job(db, job_id):
    return job_ref(db, job_id).get()


def update_job(db, job_id, data):
    return job_ref(db, job_id).update(data)


def list_active_for_subject(db, subject):
    query = apply_where(db.collection(TAGGING_JOBS_COLLECTION), 'subject', '==', subject)
    query = apply_where(query, 'status', 'in', ACTIVE_STATUSES)
    return list(query.limit(1).stream())
