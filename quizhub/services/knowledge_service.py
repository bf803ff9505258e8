"""Knowledge base page analysis, embedding storage and listing."""

from quizhub.repositories import knowledge_repo
from quizhub.services import ai_service, prompt_registry

MAX_INLINE_BASE64_CHARS = 27 * 1024 * 1024
LIST_PREVIEW_CHARS = 200
DESCRIPTION_PREVIEW_CHARS = 100
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
KNOWLEDGE_TYPES = {'book', 'syllabus'}
METADATA_FIELDS = ('subject', 'bookName', 'province', 'year', 'type')

ANALYSIS_SCHEMA = {
    'type': 'OBJECT',
    'properties': {
        'text': {'type': 'STRING', 'description': 'Extracted text or summary.'},
        'description': {'type': 'STRING', 'description': 'Visual description of diagrams.'},
        'chapter': {'type': 'STRING', 'description': 'Chapter number and name.'},
        'page_number': {'type': 'STRING', 'description': 'Page number.'},
    },
    'required': ['text', 'description', 'chapter', 'page_number'],
}

CHAPTER_START_SCHEMA = {
    'type': 'OBJECT',
    'properties': {
        'isStart': {'type': 'BOOLEAN'},
        'title': {'type': 'STRING', 'nullable': True},
        'confidence': {'type': 'NUMBER'},
    },
    'required': ['isStart', 'confidence'],
}


def analysis_config():
    return ai_service.build_generation_config(
        max_output_tokens=8192,
        response_mime_type='application/json',
        response_schema=ANALYSIS_SCHEMA,
    )


def analyze_page(client, model, file_bytes, mime_type):
    raw_text = ai_service.generate_text(
        client,
        model,
        prompt_registry.PROMPT_ANALYZE_DOCUMENT,
        extra_parts=[ai_service.inline_part(file_bytes, mime_type)],
        config=analysis_config(),
    )
    parsed = ai_service.parse_structured_reply(raw_text)
    if not isinstance(parsed, dict):
        raise ValueError('Invalid JSON from AI: expected an object')
    return {
        'text': str(parsed.get('text') or ''),
        'description': str(parsed.get('description') or ''),
        'chapter': str(parsed.get('chapter') or ''),
        'page_number': str(parsed.get('page_number') or ''),
    }


def detect_chapter_start(client, model, image_bytes, mime_type):
    raw_text = ai_service.generate_text(
        client,
        model,
        prompt_registry.PROMPT_DETECT_CHAPTER_START,
        extra_parts=[ai_service.inline_part(image_bytes, mime_type)],
        config=ai_service.build_generation_config(
            max_output_tokens=1024,
            response_mime_type='application/json',
            response_schema=CHAPTER_START_SCHEMA,
        ),
    )
    parsed = ai_service.extract_json_payload(raw_text) or {}
    try:
        confidence = float(parsed.get('confidence') or 0)
    except (TypeError, ValueError):
        confidence = 0.0
    title = parsed.get('title')
    return {
        'isStart': bool(parsed.get('isStart')),
        'title': str(title).strip() if title else None,
        'confidence': min(max(confidence, 0.0), 1.0),
    }


def clean_metadata(raw):
    raw = raw if isinstance(raw, dict) else {}
    metadata = {field: str(raw.get(field, '') or '').strip() for field in METADATA_FIELDS}
    if metadata['type'] not in KNOWLEDGE_TYPES:
        metadata['type'] = 'book'
    return metadata


def embedding_text(text, description, chapter, metadata):
    return '\n'.join([
        f"Subject: {metadata.get('subject', '')}",
        f"Book: {metadata.get('bookName', '')}",
        f"Chapter: {chapter}",
        f"Content: {text}",
        f"Visuals: {description}",
    ])


def save_page(db, embed, *, text, description, chapter, page_number, file_name, metadata, now_ts):
    """Embed a page with its metadata prefix and store it; returns the new document id."""
    vector = embed(embedding_text(text, description, chapter, metadata))
    stored_metadata = dict(metadata)
    stored_metadata.update({
        'chapter': chapter or 'Unknown',
        'page': page_number or 'Unknown',
        'fileName': file_name or '',
        'uploadedAt': now_ts,
    })
    return knowledge_repo.add_chunk(db, text, description, vector, stored_metadata)


def _truncate(value, limit):
    text = str(value or '')
    return text[:limit] + ('...' if len(text) > limit else '')


def document_summary(snapshot):
    data = snapshot.to_dict() or {}
    metadata = data.get('metadata') or {}
    return {
        'id': snapshot.id,
        'content': _truncate(data.get('content'), LIST_PREVIEW_CHARS),
        'visual_description': str(data.get('visual_description') or '')[:DESCRIPTION_PREVIEW_CHARS],
        'metadata': {
            'subject': metadata.get('subject') or 'Unknown',
            'bookName': metadata.get('bookName') or 'Unknown',
            'province': metadata.get('province') or 'Unknown',
            'year': metadata.get('year') or 'Unknown',
            'type': metadata.get('type') or 'book',
            'chapter': metadata.get('chapter') or 'Unknown',
            'page': metadata.get('page') or 'Unknown',
            'fileName': metadata.get('fileName') or 'Unknown',
            'uploadedAt': metadata.get('uploadedAt'),
        },
    }


def list_documents(db, *, limit, subject='', doc_type='', chapter='', start_after_id=''):
    filters = {
        'metadata.subject': subject,
        'metadata.type': doc_type,
        'metadata.chapter': chapter,
    }
    docs = knowledge_repo.list_chunks(db, filters, limit, start_after_id)
    documents = [document_summary(doc) for doc in docs]
    return {
        'documents': documents,
        'lastDocId': documents[-1]['id'] if documents else None,
        'hasMore': len(documents) == limit,
    }


def collection_stats(db):
    stats = {'total': 0, 'byType': {'book': 0, 'syllabus': 0}, 'bySubject': {}, 'byBook': {}}
    for doc in knowledge_repo.stream_all(db):
        metadata = (doc.to_dict() or {}).get('metadata') or {}
        stats['total'] += 1
        doc_type = metadata.get('type') or 'book'
        subject = metadata.get('subject') or 'Unknown'
        book = metadata.get('bookName') or 'Unknown'
        stats['byType'][doc_type] = stats['byType'].get(doc_type, 0) + 1
        stats['bySubject'][subject] = stats['bySubject'].get(subject, 0) + 1
        stats['byBook'][book] = stats['byBook'].get(book, 0) + 1
    return stats

