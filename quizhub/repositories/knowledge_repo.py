"""Firestore accessors for the tutor knowledge base (vector documents)."""

from google.cloud.firestore_v1.base_vector_query import DistanceMeasure
from google.cloud.firestore_v1.vector import Vector

from quizhub.repositories.query_utils import DESCENDING, apply_equality_filters

KNOWLEDGE_COLLECTION = 'knowledge_base'
EMBEDDING_FIELD = 'embedding'


def chunk_ref(db, chunk_id):
    return db.collection(KNOWLEDGE_COLLECTION).document(chunk_id)


def add_chunk(db, content, visual_description, embedding, metadata):
    ref = db.collection(KNOWLEDGE_COLLECTION).document()
    ref.set({
        'content': content,
        'visual_description': visual_description,
        EMBEDDING_FIELD: Vector(list(embedding)),
        'metadata': metadata,
    })
    return ref.id


def list_chunks(db, filters, limit, start_after_id=''):
    query = apply_equality_filters(db.collection(KNOWLEDGE_COLLECTION), filters)
    query = query.order_by('metadata.uploadedAt', direction=DESCENDING)
    if start_after_id:
        cursor = chunk_ref(db, start_after_id).get()
        if cursor.exists:
            query = query.start_after(cursor)
    return list(query.limit(limit).stream())


def stream_all(db):
    return db.collection(KNOWLEDGE_COLLECTION).stream()


def delete_chunk(db, chunk_id):
    return chunk_ref(db, chunk_id).delete()


def find_nearest(db, embedding, limit, filters=None):
    query = apply_equality_filters(db.collection(KNOWLEDGE_COLLECTION), filters)
    vector_query = query.find_nearest(
        vector_field=EMBEDDING_FIELD,
        query_vector=Vector(list(embedding)),
        distance_measure=DistanceMeasure.COSINE,
        limit=limit,
    )
    return list(vector_query.get())
