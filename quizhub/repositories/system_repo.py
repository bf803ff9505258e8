"""Firestore accessors for operational records: audit logs, index reports, rate-limit counters."""

AUDIT_LOGS_COLLECTION = 'auditLogs'
DETECTED_INDEXES_COLLECTION = 'detected_indexes'
RATE_LIMIT_COUNTER_COLLECTION = 'rate_limit_counters'


def add_audit_log(db, data):
    ref = db.collection(AUDIT_LOGS_COLLECTION).document()
    ref.set(data)
    return ref.id


def detected_index_ref(db, index_id):
    return db.collection(DETECTED_INDEXES_COLLECTION).document(index_id)


def counter_doc_ref(db, collection_name, counter_id):
    return db.collection(collection_name).document(counter_id)
