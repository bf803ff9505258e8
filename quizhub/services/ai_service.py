"""Gemini request helpers and parsing of model replies."""

import json
import re

from google.genai import types

EMBEDDING_DIMENSIONS = 2048
MAX_TEXT_LEN = 4000
QUOTA_ERROR_MARKERS = ('429', 'quota', 'resource_exhausted', 'rate limit')
DIFFICULTY_LEVELS = {'easy': 'Easy', 'medium': 'Medium', 'hard': 'Hard'}


def build_generation_config(
    max_output_tokens=8192,
    thinking_budget=None,
    response_mime_type=None,
    response_schema=None,
    temperature=None,
):
    base_config = {'max_output_tokens': max_output_tokens}
    if response_mime_type:
        base_config['response_mime_type'] = response_mime_type
    if response_schema is not None:
        base_config['response_schema'] = response_schema
    if temperature is not None:
        base_config['temperature'] = temperature
    if thinking_budget is not None and hasattr(types, 'ThinkingConfig'):
        base_config['thinking_config'] = types.ThinkingConfig(thinking_budget=thinking_budget)
    try:
        return types.GenerateContentConfig(**base_config)
    except Exception:
        base_config.pop('thinking_config', None)
        return types.GenerateContentConfig(**base_config)


def build_user_content(prompt_text, extra_parts=None):
    parts = [types.Part.from_text(text=prompt_text)]
    parts.extend(extra_parts or [])
    return types.Content(role='user', parts=parts)


def inline_part(data, mime_type):
    return types.Part.from_bytes(data=data, mime_type=mime_type)


def text_part(text):
    return types.Part.from_text(text=text)


def generate_text(client, model, prompt_text, *, extra_parts=None, config=None):
    if client is None:
        raise RuntimeError('Gemini client is not configured')
    response = client.models.generate_content(
        model=model,
        contents=[build_user_content(prompt_text, extra_parts)],
        config=config or build_generation_config(),
    )
    return getattr(response, 'text', '') or ''


def stream_text(client, model, prompt_text, *, config=None):
    if client is None:
        raise RuntimeError('Gemini client is not configured')
    for chunk in client.models.generate_content_stream(
        model=model,
        contents=[build_user_content(prompt_text)],
        config=config or build_generation_config(),
    ):
        text = getattr(chunk, 'text', '') or ''
        if text:
            yield text


def chat_reply(client, model, history, message, *, config=None):
    """Send one turn with prior ``(role, text)`` history and return the reply text."""
    if client is None:
        raise RuntimeError('Gemini client is not configured')
    contents = [
        types.Content(role=role, parts=[types.Part.from_text(text=text)])
        for role, text in history
    ]
    contents.append(build_user_content(message))
    response = client.models.generate_content(model=model, contents=contents, config=config or build_generation_config())
    return getattr(response, 'text', '') or ''


def embed_text(client, model, text, dimensions=EMBEDDING_DIMENSIONS):
    if client is None:
        raise RuntimeError('Gemini client is not configured')
    result = client.models.embed_content(
        model=model,
        contents=text,
        config=types.EmbedContentConfig(output_dimensionality=dimensions),
    )
    return list(result.embeddings[0].values)[:dimensions]


def is_quota_error(exc):
    message = str(exc or '').lower()
    return any(marker in message for marker in QUOTA_ERROR_MARKERS)


def strip_code_fences(raw_text):
    text = (raw_text or '').strip()
    if text.startswith('```'):
        lines = text.splitlines()
        if len(lines) >= 3 and lines[0].startswith('```') and lines[-1].strip() == '```':
            text = '\n'.join(lines[1:-1]).strip()
    return text


def extract_json_payload(raw_text):
    """Return the first JSON object in a model reply, or None."""
    text = strip_code_fences(raw_text)
    start = text.find('{')
    if start == -1:
        return None
    decoder = json.JSONDecoder()
    try:
        parsed, _ = decoder.raw_decode(text[start:])
        return parsed
    except json.JSONDecodeError:
        end = text.rfind('}')
        if end == -1 or end <= start:
            return None
        try:
            return json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            return None


def extract_json_value(raw_text):
    """Parse a reply that may be an object or an array, falling back to the outermost ``[...]``."""
    text = strip_code_fences(raw_text)
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    start = text.find('[')
    end = text.rfind(']')
    if start != -1 and end > start:
        try:
            return json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            pass
    return extract_json_payload(text)


def parse_structured_reply(raw_text):
    """Parse schema-constrained output, closing a truncated trailing string once."""
    text = strip_code_fences(raw_text)
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        if 'Unterminated string' not in str(exc):
            raise ValueError(f"Invalid JSON from AI: {exc}") from exc
    try:
        return json.loads(text + '"}')
    except json.JSONDecodeError as exc:
        raise ValueError(f"AI response truncated: {exc}") from exc


def normalize_difficulty(value, default='Medium'):
    return DIFFICULTY_LEVELS.get(str(value or '').strip().lower(), default)


def questions_from_reply(parsed):
    """Accept ``{"questions": [...]}``, a bare list, or a single question object."""
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        if isinstance(parsed.get('questions'), list):
            return parsed['questions']
        if parsed.get('questionText'):
            return [parsed]
    return []


def sanitize_generated_questions(items, default_difficulty='Medium', max_items=50):
    cleaned = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        question_text = str(item.get('questionText', '') or '').strip()[:MAX_TEXT_LEN]
        options = [str(option or '').strip()[:MAX_TEXT_LEN] for option in (item.get('options') or [])]
        correct_answer = str(item.get('correctAnswer', '') or '').strip()[:MAX_TEXT_LEN]
        if not question_text or len(options) < 2 or correct_answer not in options:
            continue
        tags = item.get('tags') if isinstance(item.get('tags'), list) else []
        cleaned.append({
            'questionText': question_text,
            'options': options,
            'correctAnswer': correct_answer,
            'explanation': str(item.get('explanation', '') or '').strip()[:MAX_TEXT_LEN],
            'topic': str(item.get('topic', '') or '').strip()[:200],
            'difficulty': normalize_difficulty(item.get('difficulty'), default_difficulty),
            'tags': [str(tag).strip()[:60] for tag in tags if str(tag).strip()][:10],
        })
        if len(cleaned) >= max_items:
            break
    return cleaned


def fallback_question(prompt_text, difficulty):
    """Placeholder question returned while the AI quota is exhausted."""
    return {
        'questionText': f"<p>Explain the core concept of <strong>{prompt_text}</strong> and its importance.</p>",
        'options': ['Option A (Example)', 'Option B (Example)', 'Option C (Example)', 'Option D (Example)'],
        'correctAnswer': 'Option A (Example)',
        'explanation': f"This is a template question for \"{prompt_text}\" because the AI quota is currently exhausted.",
        'topic': prompt_text,
        'difficulty': normalize_difficulty(difficulty),
        'tags': [],
        'isMock': True,
    }


def normalize_bulk_question(item):
    """Flatten ``option1..option4`` into an options list; None when unusable."""
    if not isinstance(item, dict):
        return None
    options = [str(item.get(f"option{index}", '') or '').strip() for index in range(1, 5)]
    options = [option for option in options if option]
    question_text = str(item.get('questionText', '') or '').strip()
    if not question_text or len(options) < 2:
        return None
    return {
        'questionText': question_text,
        'options': options,
        'correctAnswer': str(item.get('correctAnswer', '') or '').strip(),
        'explanation': str(item.get('explanation', '') or '').strip(),
        'difficulty': normalize_difficulty(item.get('difficulty')),
        'topic': str(item.get('topic', '') or '').strip(),
    }


def sanitize_text_questions(items, max_items):
    """Keep well-formed four-option questions, dropping duplicate stems."""
    if not isinstance(items, list):
        return []
    cleaned = []
    seen = set()
    for item in items:
        if not isinstance(item, dict):
            continue
        question = str(item.get('question', '')).strip()[:MAX_TEXT_LEN]
        options = item.get('options', [])
        answer = str(item.get('answer', '')).strip()[:MAX_TEXT_LEN]
        if not question or not isinstance(options, list) or len(options) != 4 or not answer:
            continue
        option_strings = [str(option).strip()[:MAX_TEXT_LEN] for option in options]
        if any(not option for option in option_strings) or len(set(option_strings)) != 4:
            continue
        if answer not in option_strings:
            continue
        dedupe_key = re.sub(r'\s+', ' ', question.lower())
        if dedupe_key in seen:
            continue
        seen.add(dedupe_key)
        cleaned.append({
            'questionText': question,
            'options': option_strings,
            'correctAnswer': answer,
            'explanation': str(item.get('explanation', '')).strip()[:MAX_TEXT_LEN],
        })
        if len(cleaned) >= max_items:
            break
    return cleaned
