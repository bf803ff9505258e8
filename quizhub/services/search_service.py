"""Search tokens for Firestore prefix queries and Algolia index records."""

import re

from quizhub.repositories import questions_repo
from quizhub.repositories.query_utils import MAX_BATCH_WRITES

QUESTIONS_INDEX = 'questions'
MOCK_QUESTIONS_INDEX = 'mock-questions'
BULK_FLAG_ACTIONS = {'soft-delete', 'restore'}

_TAG_RE = re.compile(r'<[^>]*>')
_PUNCTUATION_RE = re.compile(r'[^A-Za-z0-9_\s]')
_WHITESPACE_RE = re.compile(r'\s+')


def strip_html(value):
    if not value or not isinstance(value, str):
        return ''
    return _WHITESPACE_RE.sub(' ', _TAG_RE.sub(' ', value)).strip()


def generate_search_tokens(text):
    """Unique lower-case words of two or more characters, in first-seen order."""
    if not text or not isinstance(text, str):
        return []
    plain = _PUNCTUATION_RE.sub(' ', _TAG_RE.sub(' ', text).lower())
    tokens = []
    seen = set()
    for word in plain.split():
        if len(word) < 2 or word in seen:
            continue
        seen.add(word)
        tokens.append(word)
    return tokens


def index_name_for(question_type):
    return MOCK_QUESTIONS_INDEX if question_type == 'mock' else QUESTIONS_INDEX


def build_index_record(question_id, data, now_ms):
    raw_text = data.get('questionText') or ''
    return {
        'objectID': question_id,
        'questionText': _TAG_RE.sub(' ', raw_text).strip(),
        'rawQuestionText': raw_text,
        'options': data.get('options') or [],
        'correctAnswer': data.get('correctAnswer'),
        'explanation': data.get('explanation'),
        'subject': data.get('subject'),
        'chapter': data.get('chapter'),
        'topic': data.get('topic'),
        'difficulty': data.get('difficulty'),
        'course': data.get('course') or data.get('courseId'),
        'status': data.get('status'),
        'isDeleted': bool(data.get('isDeleted')),
        'updatedAt': now_ms,
    }


def sync_index(search_client, *, question_type, question_id, question_ids, data, action, now_ms):
    """Apply one sync request to Algolia; returns the list of operations performed."""
    index_name = index_name_for(question_type)
    ids = list(question_ids or ([question_id] if question_id else []))
    operations = []
    if action == 'delete':
        search_client.delete_objects(index_name=index_name, object_ids=ids)
        return ['delete']
    if question_id and isinstance(data, dict):
        search_client.save_objects(index_name=index_name, objects=[build_index_record(question_id, data, now_ms)])
        operations.append('save')
    if question_ids and action in BULK_FLAG_ACTIONS:
        search_client.partial_update_objects(
            index_name=index_name,
            objects=[{'objectID': object_id, 'isDeleted': action == 'soft-delete'} for object_id in ids],
            create_if_not_exists=False,
        )
        operations.append(action)
    return operations


def backfill_search_tokens(db, now_ts, *, apply=True, collection_name=questions_repo.QUESTIONS_COLLECTION, logger=None):
    """Write ``searchTokens`` on questions that lack them, in Firestore-sized batches."""
    stats = {'total': 0, 'updated': 0, 'skipped': 0, 'errors': 0}
    error_details = []
    batch = db.batch() if apply else None
    pending = 0
    for doc in questions_repo.list_all(db, collection_name):
        stats['total'] += 1
        try:
            data = doc.to_dict() or {}
            existing = data.get('searchTokens')
            if isinstance(existing, list) and existing:
                stats['skipped'] += 1
                continue
            tokens = generate_search_tokens(data.get('questionText') or '')
            if apply:
                batch.update(doc.reference, {'searchTokens': tokens, 'updatedAt': now_ts})
                pending += 1
            stats['updated'] += 1
            if apply and pending >= MAX_BATCH_WRITES:
                batch.commit()
                if logger is not None:
                    logger.info(f"Committed search token batch of {pending} updates")
                batch = db.batch()
                pending = 0
        except Exception as e:
            stats['errors'] += 1
            error_details.append(f"Error processing {doc.id}: {e}")
    if apply and pending:
        batch.commit()
    return stats, error_details
