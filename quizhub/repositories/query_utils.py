"""Helpers shared by the Firestore accessors."""

from google.cloud.firestore_v1.base_query import FieldFilter

ASCENDING = 'ASCENDING'
DESCENDING = 'DESCENDING'
DOCUMENT_ID_FIELD = '__name__'
MAX_BATCH_WRITES = 500


def apply_where(query, field_path, op_string, value):
    try:
        return query.where(filter=FieldFilter(field_path, op_string, value))
    except TypeError:
        # Test doubles only understand the positional form.
        return query.where(field_path, op_string, value)


def apply_equality_filters(query, filters):
    for field_path, value in (filters or {}).items():
        if value in (None, ''):
            continue
        query = apply_where(query, field_path, '==', value)
    return query


def chunked(items, size=MAX_BATCH_WRITES):
    items = list(items)
    for start in range(0, len(items), size):
        yield items[start:start + size]
