"""Retrieval-augmented tutor answers, support chat context and tutor analytics."""

import hashlib
import json
import re
from datetime import datetime, timezone

from quizhub.repositories import knowledge_repo, tutor_logs_repo
from quizhub.services import prompt_registry
from quizhub.services.quiz_rules import round_half_up

RESPONSE_CACHE_TTL_SECONDS = 30 * 60
RESPONSE_CACHE_MAX_ENTRIES = 500
EMBEDDING_CACHE_MAX_ENTRIES = 200
SUPPORT_CONTEXT_TTL_SECONDS = 24 * 60 * 60
SUPPORT_FETCH_TIMEOUT_SECONDS = 3
SUPPORT_PAGE_MAX_CHARS = 5000
SUPPORT_SECTION_LIMITS = (3000, 2000, 2000, 1500)
SUPPORT_HISTORY_TURNS = 6
BOOK_RESULTS = 5
SYLLABUS_RESULTS = 2
STAFF_BOOK_RESULTS = 3
STAFF_SYLLABUS_RESULTS = 1
FEEDBACK_VALUES = {'helpful', 'not_helpful'}
DEFAULT_ANALYTICS_DAYS = 7

PRACTICE_REFUSAL = (
    "I apologize, but I cannot generate MCQs or practice quizzes. Please use the **Quiz Bank** or "
    "**Create Quiz** feature for practice questions. I can help explain concepts or solve specific problems instead."
)
SUPPORT_ACK = "Understood. I'll help users with platform information."

SUBJECT_KEYWORDS = {
    'Biology': [
        'cell', 'dna', 'rna', 'protein', 'mitosis', 'meiosis', 'enzyme', 'photosynthesis', 'respiration', 'gene',
        'chromosome', 'tissue', 'organ', 'blood', 'heart', 'nerve', 'muscle', 'bacteria', 'virus', 'plant',
        'animal', 'ecology', 'evolution', 'taxonomy',
    ],
    'Chemistry': [
        'atom', 'molecule', 'element', 'compound', 'reaction', 'acid', 'base', 'salt', 'ion', 'bond', 'organic',
        'inorganic', 'periodic', 'oxidation', 'reduction', 'molar', 'solution', 'equilibrium', 'thermodynamic',
    ],
    'Physics': [
        'force', 'motion', 'velocity', 'acceleration', 'energy', 'work', 'power', 'wave', 'light', 'sound',
        'electric', 'magnetic', 'current', 'voltage', 'resistance', 'momentum', 'gravity', 'newton', 'quantum',
        'nuclear',
    ],
    'English': [
        'grammar', 'vocabulary', 'reading', 'comprehension', 'essay', 'writing', 'literature', 'poetry', 'prose',
        'tense', 'verb', 'noun', 'adjective', 'synonym', 'antonym',
    ],
}

INTENT_PATTERNS = (
    ('procedural', re.compile(r'how (to|do|does|can|should)|step|process|procedure|method', re.IGNORECASE)),
    ('comparative', re.compile(r'difference|compare|contrast|vs\.?|versus|between .* and', re.IGNORECASE)),
    ('practice', re.compile(r'mcq|quiz|question|test|practice|example problem', re.IGNORECASE)),
    ('factual', re.compile(r'what (is|are)|define|explain|describe|tell me about', re.IGNORECASE)),
)

FORMAT_INSTRUCTIONS = {
    'procedural': 'Provide a clear step-by-step explanation with numbered steps.',
    'comparative': 'Use a table to compare and contrast the items. Highlight key differences.',
    'practice': 'Provide 2-3 MCQ-style practice questions with answers and brief explanations.',
    'factual': 'Give a direct, concise definition followed by key points.',
}

STATIC_SUPPORT_CONTEXT = """QUICK FACTS:
- Exam preparation platform with quiz series, mock tests and a question bank.
- Features: AI tutor, mock tests, question bank, performance analytics."""

_SCRIPT_RE = re.compile(r'<(script|style|nav|footer|header)\b[^>]*>[\s\S]*?</\1>', re.IGNORECASE)
_TAG_RE = re.compile(r'<[^>]+>')
_WHITESPACE_RE = re.compile(r'\s+')


# --- caches -------------------------------------------------------------------

def response_cache_key(query):
    normalized = _WHITESPACE_RE.sub(' ', str(query or '').lower().strip())
    return hashlib.md5(normalized.encode('utf-8')).hexdigest()


def _evict_oldest(cache, max_entries):
    while len(cache) > max_entries:
        cache.pop(next(iter(cache)))


def get_cached_response(cache, lock, key, now_ts, ttl_seconds=RESPONSE_CACHE_TTL_SECONDS):
    with lock:
        entry = cache.get(key)
        if entry and now_ts - entry['timestamp'] < ttl_seconds:
            return {'response': entry['response'], 'sources': entry['sources']}
        cache.pop(key, None)
        return None


def set_cached_response(cache, lock, key, response, sources, now_ts, max_entries=RESPONSE_CACHE_MAX_ENTRIES):
    with lock:
        cache[key] = {'response': response, 'sources': list(sources), 'timestamp': now_ts}
        _evict_oldest(cache, max_entries)


def get_cached_embedding(cache, lock, text):
    with lock:
        return cache.get(str(text or '').lower().strip())


def set_cached_embedding(cache, lock, text, embedding, max_entries=EMBEDDING_CACHE_MAX_ENTRIES):
    with lock:
        cache[str(text or '').lower().strip()] = list(embedding)
        _evict_oldest(cache, max_entries)


# --- query understanding ----------------------------------------------------

def detect_subject(query):
    """Subject with the most keyword hits, or None when nothing matches."""
    lowered = str(query or '').lower()
    best_subject = None
    best_hits = 0
    for subject, keywords in SUBJECT_KEYWORDS.items():
        hits = sum(1 for keyword in keywords if keyword in lowered)
        if hits > best_hits:
            best_hits = hits
            best_subject = subject
    return best_subject


def classify_intent(query):
    text = str(query or '')
    for intent, pattern in INTENT_PATTERNS:
        if pattern.search(text):
            return intent
    return 'general'


def format_instructions(intent):
    return FORMAT_INSTRUCTIONS.get(intent, 'Explain clearly and concisely.')


def calculate_confidence(book_docs, syllabus_docs):
    if book_docs and syllabus_docs:
        return {'score': 'high', 'message': 'This topic is in your syllabus with supporting textbook content.'}
    if book_docs:
        return {'score': 'medium', 'message': 'Found in textbook materials.'}
    if syllabus_docs:
        return {'score': 'medium', 'message': 'This topic is mentioned in the syllabus.'}
    return {'score': 'low', 'message': 'Limited sources found. This is a general answer.'}


def status_line(status, **fields):
    payload = {'status': status}
    payload.update(fields)
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


# --- retrieval ----------------------------------------------------------------

def retrieve_context(db, embedding, subject=None, book_limit=BOOK_RESULTS, syllabus_limit=SYLLABUS_RESULTS):
    book_filters = {'metadata.type': 'book', 'metadata.subject': subject}
    syllabus_filters = {'metadata.type': 'syllabus', 'metadata.subject': subject}
    book_docs = knowledge_repo.find_nearest(db, embedding, book_limit, book_filters)
    syllabus_docs = knowledge_repo.find_nearest(db, embedding, syllabus_limit, syllabus_filters)

    sources = []
    book_sections = []
    for index, doc in enumerate(book_docs):
        data = doc.to_dict() or {}
        metadata = data.get('metadata') or {}
        sources.append({
            'type': 'book',
            'bookName': metadata.get('bookName'),
            'page': metadata.get('page'),
            'chapter': metadata.get('chapter'),
        })
        section = (
            f"[Source {index + 1}] Book: {metadata.get('bookName')} (Ch: {metadata.get('chapter')}, "
            f"Page {metadata.get('page') or '?'})\nContent: {data.get('content', '')}"
        )
        if data.get('visual_description'):
            section += f"\nVisuals: {data['visual_description']}"
        book_sections.append(section)
    syllabus_sections = []
    for doc in syllabus_docs:
        data = doc.to_dict() or {}
        metadata = data.get('metadata') or {}
        sources.append({'type': 'syllabus', 'bookName': metadata.get('bookName')})
        syllabus_sections.append(f"[Syllabus] {metadata.get('bookName')}\nContent: {data.get('content', '')}")

    return {
        'sources': sources,
        'confidence': calculate_confidence(book_docs, syllabus_docs),
        'book_context': '\n---\n'.join(book_sections),
        'syllabus_context': '\n---\n'.join(syllabus_sections),
    }


def build_tutor_prompt(message, subject, intent, context, *, platform_name, support_contact):
    return prompt_registry.render(
        prompt_registry.PROMPT_TUTOR_ANSWER,
        platform_name=platform_name,
        message=message,
        subject_line=f"Subject: {subject}" if subject else '',
        book_context=context['book_context'] or 'No specific textbook content found.',
        syllabus_context=context['syllabus_context'] or 'No specific syllabus content found.',
        format_instructions=format_instructions(intent),
        confidence_message=context['confidence']['message'],
        support_contact=support_contact,
    )


def build_staff_prompt(message, context):
    return prompt_registry.render(
        prompt_registry.PROMPT_STAFF_TUTOR_ANSWER,
        message=message,
        book_context=context['book_context'] or 'None',
        syllabus_context=context['syllabus_context'] or 'None',
    )


# --- logs and analytics -----------------------------------------------------

def log_conversation(db, data, now_ts, logger=None):
    """Store one exchange; returns the log id, or None when logging fails."""
    try:
        payload = dict(data)
        payload['timestamp'] = now_ts
        return tutor_logs_repo.add_log(db, payload)
    except Exception as e:
        if logger is not None:
            logger.warning(f"Failed to log tutor conversation: {e}")
        return None


def record_feedback(db, log_id, feedback, notes, now_ts):
    tutor_logs_repo.update_log(db, log_id, {
        'feedback': feedback,
        'feedbackNotes': notes or None,
        'feedbackTimestamp': now_ts,
    })


def _as_epoch(value):
    if hasattr(value, 'timestamp'):
        return value.timestamp()
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def summarize_logs(snapshots):
    total = 0
    cached = 0
    total_response_ms = 0
    by_subject = {}
    by_intent = {}
    confidence = {'high': 0, 'medium': 0, 'low': 0}
    frequency = {}
    per_day = {}
    feedback = {'helpful': 0, 'notHelpful': 0}

    for snapshot in snapshots:
        data = snapshot.to_dict() or {}
        total += 1
        total_response_ms += int(data.get('responseTimeMs') or 0)
        if data.get('wasFromCache'):
            cached += 1
        subject = data.get('subject') or 'general'
        by_subject[subject] = by_subject.get(subject, 0) + 1
        intent = data.get('intent') or 'general'
        by_intent[intent] = by_intent.get(intent, 0) + 1
        if data.get('confidence') in confidence:
            confidence[data['confidence']] += 1
        query = str(data.get('query') or '').lower().strip()[:50] or 'unknown'
        frequency[query] = frequency.get(query, 0) + 1
        epoch = _as_epoch(data.get('timestamp'))
        if epoch is not None:
            day = datetime.fromtimestamp(epoch, tz=timezone.utc).date().isoformat()
            per_day[day] = per_day.get(day, 0) + 1
        if data.get('feedback') == 'helpful':
            feedback['helpful'] += 1
        elif data.get('feedback') == 'not_helpful':
            feedback['notHelpful'] += 1

    top_queries = sorted(frequency.items(), key=lambda item: item[1], reverse=True)[:10]
    return {
        'totalQueries': total,
        'cachedResponses': cached,
        'avgResponseTimeMs': round_half_up(total_response_ms / total) if total else 0,
        'queriesBySubject': by_subject,
        'queriesByIntent': by_intent,
        'confidenceDistribution': confidence,
        'topQueries': [{'query': query, 'count': count} for query, count in top_queries],
        'feedbackSummary': feedback,
        'queriesOverTime': [{'date': day, 'count': count} for day, count in sorted(per_day.items())],
    }


# --- support chat -------------------------------------------------------------

def clean_site_html(html):
    text = _SCRIPT_RE.sub('', str(html or ''))
    text = _TAG_RE.sub(' ', text)
    return _WHITESPACE_RE.sub(' ', text).strip()[:SUPPORT_PAGE_MAX_CHARS]


def fetch_site_text(url, http_get, timeout=SUPPORT_FETCH_TIMEOUT_SECONDS, logger=None):
    try:
        response = http_get(url, timeout=timeout)
    except Exception as e:
        if logger is not None:
            logger.warning(f"Support context fetch failed for {url}: {e}")
        return ''
    if response.status_code != 200:
        return ''
    return clean_site_html(response.text)


def build_support_context(urls, http_get, *, platform_name, support_contact, logger=None):
    sections = []
    for index, url in enumerate(urls):
        limit = SUPPORT_SECTION_LIMITS[index] if index < len(SUPPORT_SECTION_LIMITS) else SUPPORT_SECTION_LIMITS[-1]
        text = fetch_site_text(url, http_get, logger=logger)[:limit]
        sections.append(f"Page {url}:\n{text or 'Unable to fetch, use the quick facts above.'}")
    return prompt_registry.render(
        prompt_registry.PROMPT_SUPPORT_CONTEXT,
        platform_name=platform_name,
        static_context=f"{STATIC_SUPPORT_CONTEXT}\n- Contact: {support_contact}",
        site_sections='\n\n'.join(sections) or 'None configured.',
        support_contact=support_contact,
    )


def fallback_support_context(platform_name, support_contact):
    return f"You are {platform_name}'s AI assistant.\n{STATIC_SUPPORT_CONTEXT}\nFor account help contact {support_contact}."


def get_support_context(state, lock, now_ts, build, ttl_seconds=SUPPORT_CONTEXT_TTL_SECONDS):
    """Return the cached site context, rebuilding it with ``build()`` once the TTL lapses."""
    with lock:
        if state.get('text') and now_ts - state.get('fetched_at', 0) < ttl_seconds:
            return state['text']
    text = build()
    with lock:
        state['text'] = text
        state['fetched_at'] = now_ts
    return text


def support_history(history, max_turns=SUPPORT_HISTORY_TURNS):
    """``(role, text)`` turns for the chat; a leading model turn is dropped."""
    if not isinstance(history, list):
        return []
    turns = []
    for message in history:
        if not isinstance(message, dict):
            continue
        role = 'user' if message.get('role') == 'user' else 'model'
        turns.append((role, str(message.get('text') or '')))
    if turns and turns[0][0] == 'model':
        turns.pop(0)
    return turns[-max_turns:]
