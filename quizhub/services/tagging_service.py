"""Background chapter/difficulty tagging jobs over the question bank."""

import base64
import binascii
import json
import re

from quizhub.repositories import questions_repo, tagging_jobs_repo
from quizhub.services import ai_service, prompt_registry

DEFAULT_TAGGING_MODEL = 'gemini-3-flash-preview'
DEFAULT_BATCH_SIZE = 15
MIN_BATCH_SIZE = 5
MAX_BATCH_SIZE = 50
MAX_IMAGES_PER_QUESTION = 3
IMAGE_FETCH_TIMEOUT_SECONDS = 5
MAX_QUESTION_TEXT = 1000
MAX_JOB_LOGS = 50
STOPPED_STATUSES = {'completed', 'failed', 'paused'}
PROCESSING_MODE_PENDING = 'pending'

_IMG_SRC_RE = re.compile(r'<img[^>]+src=["\']([^"\']+)["\']', re.IGNORECASE)
_DATA_URL_RE = re.compile(r'^data:([^;]+);base64,(.+)$', re.DOTALL)
_TAG_RE = re.compile(r'<[^>]*>')


def clamp_batch_size(value):
    try:
        size = int(value)
    except (TypeError, ValueError):
        size = DEFAULT_BATCH_SIZE
    return min(max(size, MIN_BATCH_SIZE), MAX_BATCH_SIZE)


def select_question_ids(snapshots, course_id, processing_mode):
    """Questions owned by another course are never re-tagged."""
    question_ids = []
    for snapshot in snapshots:
        data = snapshot.to_dict() or {}
        if data.get('courseId') and data.get('courseId') != course_id:
            continue
        if processing_mode == PROCESSING_MODE_PENDING and str(data.get('chapter') or '').strip():
            continue
        question_ids.append(snapshot.id)
    return question_ids


def build_job(*, course_id, subject, model, batch_size, syllabus_context, valid_chapters, processing_mode, question_ids, created_by, now_ts):
    return {
        'status': 'pending',
        'courseId': course_id,
        'subject': subject,
        'model': model or DEFAULT_TAGGING_MODEL,
        'batchSize': clamp_batch_size(batch_size),
        'syllabusContext': syllabus_context or '',
        'validChapters': list(valid_chapters),
        'processingMode': processing_mode or PROCESSING_MODE_PENDING,
        'totalQuestions': len(question_ids),
        'processedCount': 0,
        'failedCount': 0,
        'currentBatchIndex': 0,
        'questionIds': list(question_ids),
        'logs': [],
        'createdAt': now_ts,
        'updatedAt': now_ts,
        'createdBy': created_by or 'anonymous',
    }


def extract_image_urls(html, limit=MAX_IMAGES_PER_QUESTION):
    return _IMG_SRC_RE.findall(str(html or ''))[:limit]


def fetch_image(url, http_get, timeout=IMAGE_FETCH_TIMEOUT_SECONDS):
    """Return ``(bytes, mime_type)`` for an inline data URL or a reachable image, else None."""
    if not url:
        return None
    if url.startswith('data:'):
        match = _DATA_URL_RE.match(url)
        if not match:
            return None
        try:
            return base64.b64decode(match.group(2)), match.group(1)
        except (binascii.Error, ValueError):
            return None
    try:
        response = http_get(url, timeout=timeout)
    except Exception:
        return None
    if response.status_code != 200:
        return None
    content_type = str(response.headers.get('content-type') or 'image/jpeg').split(';')[0].strip()
    return response.content, content_type or 'image/jpeg'


def prepare_questions(snapshots, http_get):
    prepared = []
    for snapshot in snapshots:
        data = snapshot.to_dict() or {}
        html = str(data.get('questionText') or '')
        images = []
        for url in extract_image_urls(html):
            image = fetch_image(url, http_get)
            if image is not None:
                images.append(image)
        prepared.append({
            'id': snapshot.id,
            'text': _TAG_RE.sub('', html).strip()[:MAX_QUESTION_TEXT],
            'images': images,
        })
    return prepared


def build_batch_prompt(job, prepared):
    lines = []
    for index, question in enumerate(prepared):
        lines.append(f"Q{index + 1} (ID: {question['id']}): {question['text']}")
        if question['images']:
            lines.append(f"[+ {len(question['images'])} Images]")
    return prompt_registry.render(
        prompt_registry.PROMPT_AUTO_TAG_BATCH,
        subject=job.get('subject', ''),
        syllabus_context=job.get('syllabusContext') or 'Not provided',
        chapters_json=json.dumps(job.get('validChapters') or [], ensure_ascii=False),
        questions_block='\n'.join(lines),
    )


def build_image_parts(prepared):
    parts = []
    for question in prepared:
        if not question['images']:
            continue
        parts.append(ai_service.text_part(f"\n[Images for ID: {question['id']}]"))
        for data, mime_type in question['images']:
            parts.append(ai_service.inline_part(data, mime_type))
    return parts


def parse_tag_results(raw_text):
    parsed = ai_service.extract_json_payload(raw_text)
    if not isinstance(parsed, dict) or not isinstance(parsed.get('results'), list):
        return []
    return [item for item in parsed['results'] if isinstance(item, dict)]


def claim_next_batch(db, job_id, *, firestore_module, now_ts):
    """Read the job and move its cursor past the next batch in one transaction.

    Returns ``(job, start_index)``; ``job`` is None when the document is gone and
    ``start_index`` is None when the job is stopped. Two callers never get the
    same start index.
    """
    ref = tagging_jobs_repo.job_ref(db, job_id)

    @firestore_module.transactional
    def _claim(txn):
        snapshot = ref.get(transaction=txn)
        if not snapshot.exists:
            return None, None
        job = snapshot.to_dict() or {}
        if job.get('status') in STOPPED_STATUSES:
            return job, None
        start_index = int(job.get('currentBatchIndex') or 0)
        batch_size = int(job.get('batchSize') or DEFAULT_BATCH_SIZE)
        if start_index < len(job.get('questionIds') or []):
            txn.update(ref, {'currentBatchIndex': start_index + batch_size, 'updatedAt': now_ts})
        return job, start_index

    return _claim(db.transaction())


def process_next_batch(db, job_id, *, generate_reply, http_get, firestore_module, time_module, logger):
    """Tag one batch of a job and advance its cursor.

    ``generate_reply(model, prompt_text, extra_parts)`` returns raw model text.
    Returns a summary dict with ``status`` and ``nextBatch``.
    """
    job, current_index = claim_next_batch(db, job_id, firestore_module=firestore_module, now_ts=time_module.time())
    if job is None:
        return {'status': 'missing', 'nextBatch': False}
    if current_index is None:
        return {'status': job.get('status'), 'nextBatch': False, 'message': 'Job stopped or completed'}

    try:
        batch_size = int(job.get('batchSize') or DEFAULT_BATCH_SIZE)
        all_ids = list(job.get('questionIds') or [])
        if current_index >= len(all_ids):
            tagging_jobs_repo.update_job(db, job_id, {'status': 'completed', 'completedAt': time_module.time()})
            return {'status': 'completed', 'nextBatch': False}

        batch_ids = all_ids[current_index:current_index + batch_size]
        prepared = prepare_questions(questions_repo.get_many(db, batch_ids), http_get)
        prepared_by_id = {question['id']: question for question in prepared}

        results = []
        try:
            raw_text = generate_reply(
                job.get('model') or DEFAULT_TAGGING_MODEL,
                build_batch_prompt(job, prepared),
                build_image_parts(prepared),
            )
            results = parse_tag_results(raw_text)
        except Exception as e:
            logger.warning(f"Auto-tag job {job_id}: AI batch at {current_index} failed: {e}")

        now_ts = time_module.time()
        valid_chapters = set(job.get('validChapters') or [])
        batch = db.batch()
        new_logs = []
        for item in results:
            question_id = item.get('question_id')
            chapter = str(item.get('assigned_chapter') or '').strip()
            if question_id not in prepared_by_id or not chapter:
                continue
            if valid_chapters and chapter not in valid_chapters:
                continue
            difficulty = ai_service.normalize_difficulty(item.get('difficulty'))
            batch.update(questions_repo.question_ref(db, question_id), {
                'chapter': chapter,
                'difficulty': difficulty,
                'aiTagged': True,
                'courseId': job.get('courseId'),
            })
            new_logs.append({
                'id': question_id,
                'questionPreview': prepared_by_id[question_id]['text'][:30] + '...',
                'newChapter': chapter,
                'difficulty': difficulty,
                'status': 'success',
                'timestamp': now_ts,
            })
            prepared_by_id.pop(question_id)
        if new_logs:
            batch.commit()

        is_finished = current_index + batch_size >= len(all_ids)
        update = {
            'processedCount': firestore_module.Increment(len(new_logs)),
            'failedCount': firestore_module.Increment(len(batch_ids) - len(new_logs)),
            'logs': (list(job.get('logs') or []) + new_logs)[-MAX_JOB_LOGS:],
            'updatedAt': now_ts,
            'status': 'completed' if is_finished else 'running',
        }
        if is_finished:
            update['completedAt'] = now_ts
        tagging_jobs_repo.update_job(db, job_id, update)
        logger.info(f"Auto-tag job {job_id}: batch {current_index}-{current_index + len(batch_ids)} tagged {len(new_logs)}")
        return {'status': update['status'], 'processed': len(new_logs), 'nextBatch': not is_finished}
    except Exception as e:
        logger.error(f"Auto-tag job {job_id} paused after error: {e}")
        tagging_jobs_repo.update_job(db, job_id, {
            'status': 'paused',
            'lastError': str(e)[:500],
            'currentBatchIndex': current_index,
            'updatedAt': time_module.time(),
        })
        return {'status': 'paused', 'nextBatch': False, 'error': str(e)}


def run_job(db, job_id, *, generate_reply, http_get, firestore_module, time_module, logger, throttle_seconds=2.0):
    """Process batches until the job completes, pauses or disappears."""
    batches = 0
    while True:
        outcome = process_next_batch(
            db,
            job_id,
            generate_reply=generate_reply,
            http_get=http_get,
            firestore_module=firestore_module,
            time_module=time_module,
            logger=logger,
        )
        batches += 1
        if not outcome.get('nextBatch'):
            return outcome, batches
        time_module.sleep(throttle_seconds)
