"""Pure rules for quiz availability, attempt limits and scoring."""

import math
import re
from datetime import datetime, timezone

from zoneinfo import ZoneInfo

PREVIEW_ROLES = {'admin', 'teacher'}
RESTRICTED_ACCESS_TYPES = {'series', 'paid'}
DEFAULT_MAX_ATTEMPTS = 1
UNANSWERED_OPTION_KEY = 'unanswered'

NOT_PUBLISHED_ERROR = 'This quiz is not published yet'
NOT_STARTED_ERROR = 'This quiz has not started yet. Please check back later.'
ENDED_ERROR = 'This quiz has ended and is no longer available.'
NOT_ENROLLED_ERROR = 'You are not enrolled in the required series or course for this quiz.'
MAX_ATTEMPTS_ERROR = 'You have reached the maximum number of attempts for this quiz.'
MAX_ATTEMPTS_PRIMARY = 'Maximum attempts reached'

_SCHEDULE_FORMATS = ('%Y-%m-%dT%H:%M', '%Y-%m-%dT%H:%M:%S')


def round_half_up(value):
    """Nearest integer, halves rounded up."""
    return int(math.floor(value + 0.5))


def resolve_timezone(name):
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except Exception:
        return timezone.utc


def parse_schedule_timestamp(date_value, time_value, tz=timezone.utc):
    """Combine ``YYYY-MM-DD`` and ``HH:MM`` into epoch seconds, or None if unparseable."""
    date_text = str(date_value or '').strip()
    time_text = str(time_value or '').strip()
    if not date_text or not time_text:
        return None
    combined = f"{date_text}T{time_text}"
    for fmt in _SCHEDULE_FORMATS:
        try:
            parsed = datetime.strptime(combined, fmt)
        except ValueError:
            continue
        return parsed.replace(tzinfo=tz).timestamp()
    return None


def schedule_errors(quiz, now_ts, tz=timezone.utc):
    errors = []
    start_ts = parse_schedule_timestamp(quiz.get('startDate'), quiz.get('startTime'), tz)
    if start_ts is not None and now_ts < start_ts:
        errors.append(NOT_STARTED_ERROR)
    end_ts = parse_schedule_timestamp(quiz.get('endDate'), quiz.get('endTime'), tz)
    if end_ts is not None and now_ts > end_ts:
        errors.append(ENDED_ERROR)
    return errors


def required_series(quiz):
    if str(quiz.get('accessType', '') or '').strip().lower() not in RESTRICTED_ACCESS_TYPES:
        return []
    series = quiz.get('series')
    if not isinstance(series, list):
        return []
    return [str(item) for item in series if item]


def is_enrolled(enrolled_series_ids, series_ids):
    return bool(set(enrolled_series_ids) & set(series_ids))


def max_attempts_for(quiz):
    try:
        value = int(quiz.get('maxAttempts') or DEFAULT_MAX_ATTEMPTS)
    except (TypeError, ValueError):
        value = DEFAULT_MAX_ATTEMPTS
    return max(1, value)


def completed_attempt_count(attempt_data):
    """Attempts already used; an unfinished attempt does not count."""
    if not attempt_data or not attempt_data.get('completed'):
        return 0
    try:
        return int(attempt_data.get('attemptNumber') or 1)
    except (TypeError, ValueError):
        return 1


def submission_key(user_id, quiz_id, timestamp):
    return f"{user_id}_{quiz_id}_{timestamp}"


def question_subject(question, fallback='Uncategorized'):
    subject = question.get('subject')
    if isinstance(subject, dict):
        subject = subject.get('name')
    return str(subject or fallback)


def option_count_key(chosen_option):
    """Firestore field name for an answer; dots would split the field path."""
    text = str(chosen_option or '').strip()
    if not text:
        return UNANSWERED_OPTION_KEY
    safe = re.sub(r'[^A-Za-z0-9_-]+', '_', text)[:80].strip('_')
    return safe or UNANSWERED_OPTION_KEY


def score_submission(selected_questions, answers, time_logs=None):
    """Return ``(score, total, question_results)`` for a submitted answer sheet."""
    answers = answers or {}
    time_logs = time_logs or {}
    score = 0
    question_results = []
    for question in selected_questions or []:
        if not isinstance(question, dict):
            continue
        question_id = question.get('id')
        chosen = answers.get(question_id) if question_id else None
        grace = bool(question.get('graceMark'))
        is_correct = grace or (chosen is not None and chosen == question.get('correctAnswer'))
        if is_correct:
            score += 1
        if not question_id:
            continue
        try:
            time_spent = float(time_logs.get(question_id, 0) or 0)
        except (TypeError, ValueError):
            time_spent = 0.0
        question_results.append({
            'questionId': question_id,
            'subject': question_subject(question),
            'chosenOption': chosen if chosen else UNANSWERED_OPTION_KEY,
            'answered': bool(chosen),
            'isCorrect': is_correct,
            'answerCorrect': bool(chosen) and chosen == question.get('correctAnswer'),
            'graceMark': grace,
            'timeSpent': time_spent,
        })
    return score, len(selected_questions or []), question_results
