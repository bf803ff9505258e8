"""Firestore accessors for the leaderboard summary document."""

LEADERBOARD_COLLECTION = 'leaderboard'
TOP_DOC_ID = 'top'


def top_ref(db):
    return db.collection(LEADERBOARD_COLLECTION).document(TOP_DOC_ID)


def get_top(db):
    snapshot = top_ref(db).get()
    return (snapshot.to_dict() or {}) if snapshot.exists else {}
