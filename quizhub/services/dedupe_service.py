"""Duplicate-question detection, bank quality checks and bank-to-bank sync helpers."""

import json
import re

from quizhub.services import prompt_registry

TAG_RE = re.compile(r'<[^>]*>?')
WHITESPACE_RE = re.compile(r'\s+')
NON_WORD_RE = re.compile(r'[^A-Za-z0-9_\s]')

SEMANTIC_BATCH_SIZE = 30
QUALITY_BATCH_SIZE = 15
MIN_OPTIONS = 4
SIMILARITY_THRESHOLD = 0.85
MIN_SIMILARITY_TEXT_LENGTH = 20
MAX_SIMILARITY_TARGETS = 100
EMPTY_EXPLANATIONS = {'', '<p></p>'}


def normalize_html_text(value):
    """Strip tags, collapse whitespace and lower-case."""
    text = TAG_RE.sub('', str(value or ''))
    return WHITESPACE_RE.sub(' ', text).strip().lower()


def composite_key(question):
    normalized_options = sorted(normalize_html_text(option) for option in (question.get('options') or []))
    return f"{normalize_html_text(question.get('text'))}###{'|'.join(normalized_options)}"


def find_exact_duplicate_groups(questions):
    """Group question ids whose text and option set match after normalisation."""
    groups = {}
    for question in questions:
        groups.setdefault(composite_key(question), []).append(question['id'])
    return [ids for ids in groups.values() if len(ids) > 1]


def sanitize_duplicate_groups(raw_groups, allowed_ids):
    allowed = set(allowed_ids)
    seen = set()
    cleaned = []
    if not isinstance(raw_groups, list):
        return cleaned
    for group in raw_groups:
        if not isinstance(group, list):
            continue
        ids = []
        for item in group:
            if item in allowed and item not in seen and item not in ids:
                ids.append(item)
        if len(ids) < 2:
            continue
        seen.update(ids)
        cleaned.append(ids)
    return cleaned


def semantic_batch_payload(batch):
    return [
        {
            'id': question['id'],
            'text': normalize_html_text(question.get('text'))[:300],
            'options': [normalize_html_text(option)[:100] for option in (question.get('options') or [])],
        }
        for question in batch
    ]


def find_semantic_duplicate_groups(questions, generate_json, logger=None, batch_size=SEMANTIC_BATCH_SIZE):
    """Ask the model for same-meaning groups, one batch at a time.

    ``generate_json(prompt)`` returns the parsed reply or None; a failed batch
    contributes no groups.
    """
    groups = []
    if len(questions) < 2:
        return groups
    for start in range(0, len(questions), batch_size):
        batch = questions[start:start + batch_size]
        if len(batch) < 2:
            continue
        prompt = prompt_registry.render(
            prompt_registry.PROMPT_SEMANTIC_DUPLICATES,
            questions_json=json.dumps(semantic_batch_payload(batch), indent=2, ensure_ascii=False),
        )
        try:
            parsed = generate_json(prompt)
        except Exception as e:
            if logger is not None:
                logger.warning(f"Semantic duplicate batch failed: {e}")
            continue
        if not isinstance(parsed, dict):
            continue
        groups.extend(sanitize_duplicate_groups(parsed.get('duplicateGroups'), [question['id'] for question in batch]))
    return groups


def _plain_answer(value):
    return TAG_RE.sub('', str(value or '')).strip().lower()


def structural_issues(question):
    issues = []
    options = question.get('options') or []
    if len(options) < MIN_OPTIONS:
        issues.append({
            'type': 'missing_options',
            'comment': f"Question has {len(options)} options. Expected {MIN_OPTIONS} options for MCQ.",
        })
    blank_options = [option for option in options if not str(option or '').strip()]
    if blank_options:
        issues.append({
            'type': 'missing_options',
            'comment': f"{len(blank_options)} option(s) are empty or blank.",
        })
    correct_answer = str(question.get('correctAnswer') or '')
    if not correct_answer.strip():
        issues.append({
            'type': 'missing_correct_answer',
            'comment': 'No correct answer is specified for this question.',
        })
    if correct_answer and question.get('options') is not None:
        normalized_options = [_plain_answer(option) for option in options]
        if _plain_answer(correct_answer) not in normalized_options:
            issues.append({
                'type': 'invalid_correct_answer',
                'comment': f"Correct answer \"{correct_answer[:50]}...\" is not found in the available options.",
            })
    if str(question.get('explanation') or '').strip() in EMPTY_EXPLANATIONS:
        issues.append({
            'type': 'missing_explanation',
            'comment': 'No explanation is provided for this question.',
        })
    return issues


def quality_batch_payload(batch):
    return [
        {
            'id': question['id'],
            'question': TAG_RE.sub('', str(question.get('text') or ''))[:400],
            'options': [TAG_RE.sub('', str(option or ''))[:150] for option in (question.get('options') or [])],
            'correctAnswer': TAG_RE.sub('', str(question.get('correctAnswer') or ''))[:150],
        }
        for question in batch
    ]


def analyze_question_quality(questions, generate_json=None, logger=None, batch_size=QUALITY_BATCH_SIZE):
    issues = []
    flagged = set()
    for question in questions:
        question_issues = structural_issues(question)
        if question_issues:
            flagged.add(question['id'])
            issues.append({'questionId': question['id'], 'issues': question_issues})

    if generate_json is None:
        return issues
    clean_questions = [question for question in questions if question['id'] not in flagged]
    known_ids = {question['id'] for question in clean_questions}
    for start in range(0, len(clean_questions), batch_size):
        batch = clean_questions[start:start + batch_size]
        prompt = prompt_registry.render(
            prompt_registry.PROMPT_QUALITY_REVIEW,
            questions_json=json.dumps(quality_batch_payload(batch), indent=2, ensure_ascii=False),
        )
        try:
            parsed = generate_json(prompt)
        except Exception as e:
            if logger is not None:
                logger.warning(f"Quality review batch failed: {e}")
            continue
        if not isinstance(parsed, dict):
            continue
        for item in parsed.get('issues') or []:
            if not isinstance(item, dict):
                continue
            question_id = item.get('id')
            comment = str(item.get('comment') or '').strip()
            if question_id in known_ids and comment:
                issues.append({'questionId': question_id, 'issues': [{'type': 'ai_detected', 'comment': comment[:200]}]})
    return issues


def analyze_chapter(questions, *, enable_ai_analysis, enable_quality_check, generate_json, logger=None):
    exact_groups = find_exact_duplicate_groups(questions)
    grouped_ids = {question_id for group in exact_groups for question_id in group}
    semantic_groups = []
    if enable_ai_analysis and generate_json is not None:
        remaining = [question for question in questions if question['id'] not in grouped_ids]
        semantic_groups = find_semantic_duplicate_groups(remaining, generate_json, logger=logger)
    quality_issues = []
    if enable_quality_check:
        quality_issues = analyze_question_quality(questions, generate_json, logger=logger)
    return {
        'duplicateGroups': exact_groups + semantic_groups,
        'qualityIssues': quality_issues,
        'totalQuestions': len(questions),
    }


def find_preview_duplicates(questions):
    """Index groups (0-based positions) of questions with the same normalised text."""
    groups = {}
    for index, question in enumerate(questions):
        text = question.get('text') if isinstance(question, dict) else question
        groups.setdefault(normalize_html_text(text), []).append(index)
    return [indexes for key, indexes in groups.items() if key and len(indexes) > 1]


# --- question bank sync -----------------------------------------------------

def normalize_sync_text(value):
    text = TAG_RE.sub('', str(value or '')).lower()
    text = WHITESPACE_RE.sub(' ', text)
    return NON_WORD_RE.sub('', text).strip()


def _to_int32(value):
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _to_base36(value):
    digits = '0123456789abcdefghijklmnopqrstuvwxyz'
    if value == 0:
        return '0'
    out = []
    while value:
        value, remainder = divmod(value, 36)
        out.append(digits[remainder])
    return ''.join(reversed(out))


def question_hash(question_text, correct_answer):
    """djb2 over UTF-16 code units, matching hashes stored by the web client."""
    combined = f"{normalize_sync_text(question_text)}:::{str(correct_answer or '').lower().strip()}"
    encoded = combined.encode('utf-16-le')
    value = 5381
    for index in range(0, len(encoded), 2):
        code_unit = encoded[index] | (encoded[index + 1] << 8)
        value = _to_int32(_to_int32(value) << 5) + value + code_unit
    return _to_base36(abs(value))


def word_similarity(text_a, text_b):
    words_a = set(word for word in normalize_sync_text(text_a).split(' ') if word)
    words_b = set(word for word in normalize_sync_text(text_b).split(' ') if word)
    if not words_a and not words_b:
        return 1.0
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def find_sync_duplicates(source_questions, target_questions, threshold=SIMILARITY_THRESHOLD):
    target_hashes = {}
    target_texts = []
    for target in target_questions:
        target_hashes.setdefault(question_hash(target.get('questionText'), target.get('correctAnswer')), target['id'])
        target_texts.append({'id': target['id'], 'text': normalize_sync_text(target.get('questionText'))})
    targets_to_check = target_texts[:MAX_SIMILARITY_TARGETS]

    results = []
    for source in source_questions:
        source_hash = question_hash(source.get('questionText'), source.get('correctAnswer'))
        if source_hash in target_hashes:
            results.append({'sourceId': source['id'], 'status': 'duplicate', 'matchedId': target_hashes[source_hash], 'similarityScore': 1})
            continue
        normalized = normalize_sync_text(source.get('questionText'))
        if len(normalized) < MIN_SIMILARITY_TEXT_LENGTH:
            results.append({'sourceId': source['id'], 'status': 'new'})
            continue
        best = None
        for target in targets_to_check:
            if len(target['text']) < len(normalized) * 0.5 or len(target['text']) > len(normalized) * 1.5:
                continue
            score = word_similarity(normalized, target['text'])
            if score >= threshold and (best is None or score > best[1]):
                best = (target['id'], score)
        if best:
            results.append({'sourceId': source['id'], 'status': 'similar', 'matchedId': best[0], 'similarityScore': best[1]})
        else:
            results.append({'sourceId': source['id'], 'status': 'new'})
    return results


def map_question_fields(source, course_name, teacher_name, now_ts):
    return {
        'questionText': source.get('questionText') or '',
        'options': source.get('options') or [],
        'correctAnswer': source.get('correctAnswer') or '',
        'explanation': source.get('explanation') or '',
        'subject': source.get('subject') or '',
        'course': course_name or source.get('course') or '',
        'chapter': source.get('chapter') or '',
        'topic': source.get('topic') or '',
        'difficulty': source.get('difficulty') or 'Medium',
        'year': source.get('year') or '',
        'book': source.get('book') or '',
        'teacher': teacher_name or '',
        'enableExplanation': True,
        'status': 'published',
        'isDeleted': False,
        'type': source.get('type') or 'multiple-choice',
        'syncedFrom': source['id'],
        'syncedAt': now_ts,
        'sourceCollection': 'questions',
    }
