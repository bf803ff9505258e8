"""Business logic handlers for AI generation, preview and tagging job APIs."""

import json

from quizhub.repositories import questions_repo, tagging_jobs_repo
from quizhub.services import ai_service, dedupe_service, prompt_registry, tagging_service

MAX_PROMPT_CHARS = 20000
MAX_SOURCE_TEXT_CHARS = 100000
MAX_BULK_QUESTIONS = 50
MAX_TEXT_QUESTIONS = 20
MAX_PREVIEW_QUESTIONS = 200
BULK_ACTIONS = {'generate', 'parse'}


def _auth_failure(app_ctx, auth_error):
    message, status = auth_error
    return app_ctx.jsonify({'error': message}), status


def _ai_unavailable(app_ctx):
    return app_ctx.jsonify({'error': 'AI service is not configured'}), 503


def _check_ai_rate_limit(app_ctx, uid):
    allowed, retry_after = app_ctx.check_rate_limit(
        key=f"ai:{app_ctx.normalize_rate_limit_key_part(uid)}",
        limit=app_ctx.AI_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=app_ctx.AI_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not allowed:
        return app_ctx.build_rate_limited_response('Too many AI requests. Please wait a moment.', retry_after)
    return None


def generate_questions(app_ctx, request):
    user_ctx, auth_error = app_ctx.authorize_request(request, 'user')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    prompt = str(data.get('prompt', '') or '').strip()[:MAX_PROMPT_CHARS]
    if not prompt:
        return app_ctx.jsonify({'error': 'Prompt is required'}), 400
    subject = str(data.get('subject', '') or '').strip() or 'General'
    difficulty = ai_service.normalize_difficulty(data.get('difficulty'))
    rate_limited = _check_ai_rate_limit(app_ctx, user_ctx['uid'])
    if rate_limited:
        return rate_limited
    if app_ctx.gemini_client is None:
        return _ai_unavailable(app_ctx)

    try:
        raw_text = app_ctx.generate_ai_text(
            prompt_registry.render(
                prompt_registry.PROMPT_GENERATE_QUESTIONS,
                prompt=prompt,
                subject=subject,
                difficulty=difficulty,
            ),
            model=app_ctx.GENERATION_MODEL,
            response_mime_type='application/json',
        )
    except Exception as e:
        if ai_service.is_quota_error(e):
            app_ctx.logger.warning(f"AI quota exhausted, returning template question: {e}")
            return app_ctx.jsonify({'questions': [ai_service.fallback_question(prompt, difficulty)], 'isMock': True})
        app_ctx.logger.error(f"Question generation failed: {e}")
        return app_ctx.jsonify({'error': 'Failed to generate questions'}), 500

    questions = ai_service.sanitize_generated_questions(
        ai_service.questions_from_reply(ai_service.extract_json_value(raw_text)),
        default_difficulty=difficulty,
    )
    if not questions:
        return app_ctx.jsonify({'error': 'AI returned no usable questions'}), 502
    app_ctx.log_event(app_ctx.logging.INFO, 'ai_questions_generated', uid=user_ctx['uid'], count=len(questions))
    return app_ctx.jsonify({'questions': questions})


def build_bulk_prompt(prompt, count, metadata, strict_mode, correct_grammar, action):
    if action == 'parse':
        text = prompt_registry.render(prompt_registry.PROMPT_BULK_PARSE, prompt=prompt)
    else:
        text = prompt_registry.render(prompt_registry.PROMPT_BULK_GENERATE, prompt=prompt, count=count)
    text += prompt_registry.PROMPT_BULK_FIELDS
    if strict_mode:
        text += prompt_registry.render(
            prompt_registry.PROMPT_BULK_STRICT_CONTEXT,
            subject=metadata.get('subject') or 'General',
            chapter=metadata.get('chapter') or 'Any',
            difficulty=ai_service.normalize_difficulty(metadata.get('difficulty')),
        )
    else:
        text += prompt_registry.PROMPT_BULK_AUTO_CONTEXT
    if correct_grammar:
        text += prompt_registry.PROMPT_BULK_GRAMMAR
    return text


def bulk_generate(app_ctx, request):
    user_ctx, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    action = str(data.get('action', '') or 'generate').strip().lower()
    if action not in BULK_ACTIONS:
        return app_ctx.jsonify({'error': 'action must be generate or parse'}), 400
    prompt = str(data.get('prompt', '') or '').strip()[:MAX_SOURCE_TEXT_CHARS]
    if not prompt:
        return app_ctx.jsonify({'error': 'Prompt is required'}), 400
    count = app_ctx.sanitize_int(data.get('count'), 10, 1, MAX_BULK_QUESTIONS)
    metadata = data.get('metadata') if isinstance(data.get('metadata'), dict) else {}
    if app_ctx.gemini_client is None:
        return _ai_unavailable(app_ctx)

    try:
        raw_text = app_ctx.generate_ai_text(
            build_bulk_prompt(prompt, count, metadata, data.get('strictMode') is True, data.get('correctGrammar') is True, action),
            model=app_ctx.BULK_MODEL,
        )
    except Exception as e:
        app_ctx.logger.error(f"Bulk generation failed: {e}")
        return app_ctx.jsonify({'error': str(e) or 'Failed to generate questions'}), 500

    parsed = ai_service.extract_json_value(raw_text)
    if not isinstance(parsed, list):
        app_ctx.logger.warning(f"Bulk generation returned a non-array reply: {raw_text[:200]}")
        return app_ctx.jsonify({'error': 'AI did not return an array'}), 502
    questions = [question for question in (ai_service.normalize_bulk_question(item) for item in parsed) if question]
    app_ctx.log_event(app_ctx.logging.INFO, 'ai_bulk_questions', uid=user_ctx['uid'], action=action, count=len(questions))
    return app_ctx.jsonify({'questions': questions})


def generate_from_text(app_ctx, request):
    user_ctx, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    text = str(data.get('text', '') or '').strip()
    if not text:
        return app_ctx.jsonify({'error': 'Text content is required'}), 400
    count = app_ctx.sanitize_int(data.get('count'), 5, 1, MAX_TEXT_QUESTIONS)
    if app_ctx.gemini_client is None:
        return _ai_unavailable(app_ctx)
    try:
        raw_text = app_ctx.generate_ai_text(
            prompt_registry.render(prompt_registry.PROMPT_GENERATE_FROM_TEXT, count=count, text=text[:MAX_SOURCE_TEXT_CHARS]),
            model=app_ctx.GENERATION_MODEL,
            response_mime_type='application/json',
        )
        parsed = ai_service.extract_json_payload(raw_text) or {}
        questions = ai_service.sanitize_text_questions(parsed.get('questions'), count)
        return app_ctx.jsonify({'questions': questions})
    except Exception as e:
        app_ctx.logger.error(f"MCQ generation from text failed for {user_ctx['uid']}: {e}")
        return app_ctx.jsonify({'error': str(e) or 'Failed to generate questions'}), 500


def auto_tag_preview(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    questions = data.get('questions')
    valid_chapters = data.get('validChapters')
    if not isinstance(questions, list) or not questions:
        return app_ctx.jsonify({'error': 'No questions provided'}), 400
    if not isinstance(valid_chapters, list) or not valid_chapters:
        return app_ctx.jsonify({'error': 'No valid chapters provided'}), 400
    if app_ctx.gemini_client is None:
        return _ai_unavailable(app_ctx)

    payload = [
        {'id': question.get('id'), 'text': question.get('questionText') or question.get('text')}
        for question in questions[:MAX_PREVIEW_QUESTIONS]
        if isinstance(question, dict)
    ]
    try:
        raw_text = app_ctx.generate_ai_text(
            prompt_registry.render(
                prompt_registry.PROMPT_AUTO_TAG_PREVIEW,
                subject=str(data.get('subject', '') or ''),
                question_count=len(payload),
                chapters_json=json.dumps(valid_chapters, ensure_ascii=False),
                questions_json=json.dumps(payload, ensure_ascii=False),
            ),
            model=app_ctx.TAGGING_PREVIEW_MODEL,
        )
    except Exception as e:
        app_ctx.logger.error(f"Auto-tag preview failed: {e}")
        return app_ctx.jsonify({'error': f"AI Error: {e}"}), 500

    try:
        parsed = json.loads(ai_service.strip_code_fences(raw_text))
    except json.JSONDecodeError:
        app_ctx.logger.warning(f"Auto-tag preview reply was not JSON: {raw_text[:200]}")
        return app_ctx.jsonify({'error': 'Failed to parse AI response: ' + raw_text[:100]}), 502
    return app_ctx.jsonify(parsed)


def deduplicate_preview(app_ctx, request):
    """Exact duplicates by normalised text, plus conceptual groups from the model."""
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    questions = data.get('questions')
    if not isinstance(questions, list):
        return app_ctx.jsonify({'error': 'Questions array is required'}), 400
    questions = questions[:MAX_PREVIEW_QUESTIONS]
    exact_groups = dedupe_service.find_preview_duplicates(questions)
    if app_ctx.gemini_client is None or len(questions) < 2:
        return app_ctx.jsonify({'duplicateGroups': [], 'exactGroups': exact_groups})

    payload = [
        {'id': question.get('id', index), 'text': dedupe_service.normalize_html_text(question.get('text'))[:300]}
        for index, question in enumerate(questions)
        if isinstance(question, dict)
    ]
    try:
        parsed = app_ctx.generate_ai_json(
            prompt_registry.render(
                prompt_registry.PROMPT_DEDUPE_PREVIEW,
                questions_json=json.dumps(payload, indent=2, ensure_ascii=False),
            )
        )
    except Exception as e:
        app_ctx.logger.error(f"Deduplication preview failed: {e}")
        return app_ctx.jsonify({'error': 'Failed to analyze duplicates', 'details': str(e)}), 500
    groups = []
    if isinstance(parsed, dict):
        groups = dedupe_service.sanitize_duplicate_groups(parsed.get('duplicateGroups'), [item['id'] for item in payload])
    return app_ctx.jsonify({'duplicateGroups': groups, 'exactGroups': exact_groups})


# --- background tagging jobs -------------------------------------------------

def start_tagging_job(app_ctx, request):
    user_ctx, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    course_id = str(data.get('courseId', '') or '').strip()
    subject = str(data.get('subject', '') or '').strip()
    valid_chapters = data.get('validChapters')
    if not course_id or not subject or not isinstance(valid_chapters, list) or not valid_chapters:
        return app_ctx.jsonify({'error': 'Missing required fields'}), 400
    if app_ctx.db is None:
        return app_ctx.jsonify({'error': 'Database not available'}), 500
    processing_mode = str(data.get('processingMode', '') or tagging_service.PROCESSING_MODE_PENDING).strip()

    try:
        existing = tagging_jobs_repo.list_active_for_subject(app_ctx.db, subject)
        if existing:
            return app_ctx.jsonify({
                'error': 'Job already exists',
                'jobId': existing[0].id,
                'status': (existing[0].to_dict() or {}).get('status'),
                'message': 'A job is already running for this subject. Resume or cancel it first.',
            }), 409

        snapshots = questions_repo.list_by_subject(app_ctx.db, subject)
        if not snapshots:
            return app_ctx.jsonify({'error': 'No questions found for this subject'}), 404
        question_ids = tagging_service.select_question_ids(snapshots, course_id, processing_mode)
        if not question_ids:
            return app_ctx.jsonify({
                'error': 'No questions to process',
                'message': (
                    'All questions are already tagged!'
                    if processing_mode == tagging_service.PROCESSING_MODE_PENDING
                    else 'No questions found'
                ),
            }), 404

        job = tagging_service.build_job(
            course_id=course_id,
            subject=subject,
            model=str(data.get('model', '') or '').strip(),
            batch_size=data.get('batchSize'),
            syllabus_context=str(data.get('syllabusContext', '') or ''),
            valid_chapters=[str(chapter) for chapter in valid_chapters],
            processing_mode=processing_mode,
            question_ids=question_ids,
            created_by=user_ctx['uid'],
            now_ts=app_ctx.time.time(),
        )
        job_id = tagging_jobs_repo.create_job(app_ctx.db, job)
        tagging_jobs_repo.update_job(app_ctx.db, job_id, {'status': 'running', 'updatedAt': app_ctx.time.time()})
        app_ctx.start_tagging_worker(job_id)
    except Exception as e:
        app_ctx.logger.error(f"Failed to start auto-tag job for {subject}: {e}")
        return app_ctx.jsonify({'error': 'Failed to start job', 'details': str(e)}), 500

    app_ctx.log_event(
        app_ctx.logging.INFO,
        'tagging_job_started',
        job_id=job_id,
        subject=subject,
        total=len(question_ids),
        uid=user_ctx['uid'],
    )
    return app_ctx.jsonify({
        'success': True,
        'jobId': job_id,
        'totalQuestions': len(question_ids),
        'batchSize': job['batchSize'],
        'message': f"Job started! Processing {len(question_ids)} questions in batches of {job['batchSize']}",
    })


def _job_id_from(request):
    data = request.get_json(silent=True) or {}
    return str(data.get('jobId', '') or request.args.get('jobId', '') or '').strip()


def process_tagging_batch(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    job_id = _job_id_from(request)
    if not job_id:
        return app_ctx.jsonify({'error': 'Missing jobId'}), 400
    outcome = app_ctx.process_tagging_batch(job_id)
    if outcome.get('status') == 'missing':
        return app_ctx.jsonify({'error': 'Job not found'}), 404
    return app_ctx.jsonify(dict(outcome, success='error' not in outcome))


def tagging_job_status(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    job_id = str(request.args.get('jobId', '') or '').strip()
    if not job_id:
        return app_ctx.jsonify({'error': 'Missing jobId'}), 400
    try:
        snapshot = tagging_jobs_repo.get_job(app_ctx.db, job_id)
        if not snapshot.exists:
            return app_ctx.jsonify({'error': 'Job not found'}), 404
        job = snapshot.to_dict() or {}
        job.pop('questionIds', None)
        job['id'] = snapshot.id
        return app_ctx.jsonify(job)
    except Exception as e:
        app_ctx.logger.error(f"Failed to fetch auto-tag status for {job_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to fetch status', 'details': str(e)}), 500


def pause_tagging_job(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    job_id = _job_id_from(request)
    if not job_id:
        return app_ctx.jsonify({'error': 'Missing jobId'}), 400
    try:
        snapshot = tagging_jobs_repo.get_job(app_ctx.db, job_id)
        if not snapshot.exists:
            return app_ctx.jsonify({'error': 'Job not found'}), 404
        status = (snapshot.to_dict() or {}).get('status')
        if status not in tagging_jobs_repo.ACTIVE_STATUSES:
            return app_ctx.jsonify({'error': f"Job is {status} and cannot be paused"}), 409
        tagging_jobs_repo.update_job(app_ctx.db, job_id, {'status': 'paused', 'updatedAt': app_ctx.time.time()})
        return app_ctx.jsonify({'success': True, 'jobId': job_id, 'status': 'paused'})
    except Exception as e:
        app_ctx.logger.error(f"Failed to pause auto-tag job {job_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to pause job'}), 500


def resume_tagging_job(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    job_id = _job_id_from(request)
    if not job_id:
        return app_ctx.jsonify({'error': 'Missing jobId'}), 400
    try:
        snapshot = tagging_jobs_repo.get_job(app_ctx.db, job_id)
        if not snapshot.exists:
            return app_ctx.jsonify({'error': 'Job not found'}), 404
        status = (snapshot.to_dict() or {}).get('status')
        if status != 'paused':
            return app_ctx.jsonify({'error': f"Job is {status} and cannot be resumed"}), 409
        tagging_jobs_repo.update_job(app_ctx.db, job_id, {
            'status': 'running',
            'lastError': app_ctx.firestore.DELETE_FIELD,
            'updatedAt': app_ctx.time.time(),
        })
        app_ctx.start_tagging_worker(job_id)
        return app_ctx.jsonify({'success': True, 'jobId': job_id, 'status': 'running'})
    except Exception as e:
        app_ctx.logger.error(f"Failed to resume auto-tag job {job_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to resume job'}), 500
