"""Business logic handlers for the AI tutor and support chat APIs."""

from quizhub.repositories import tutor_logs_repo
from quizhub.services import ai_service, tutor_service

BLOCKED_RESPONSE = 'BLOCKED: MCQ Request'
MAX_MESSAGE_CHARS = 4000
MAX_ANALYTICS_DAYS = 90


def _auth_failure(app_ctx, auth_error):
    message, status = auth_error
    return app_ctx.jsonify({'error': message}), status


def _message_from(data):
    return str(data.get('message', '') or '').strip()[:MAX_MESSAGE_CHARS]


def _event_stream(app_ctx, generator, headers=None):
    response = app_ctx.Response(app_ctx.stream_with_context(generator), mimetype='text/event-stream')
    response.headers['Cache-Control'] = 'no-cache'
    for key, value in (headers or {}).items():
        response.headers[key] = value
    return response


def _user_fields(data):
    return {
        'userId': str(data.get('userId') or 'anonymous'),
        'userName': str(data.get('userName') or 'Student'),
        'userRole': str(data.get('userRole') or 'student'),
    }


def tutor(app_ctx, request):
    data = request.get_json(silent=True) or {}
    message = _message_from(data)
    if not message:
        return app_ctx.jsonify({'error': 'Message required'}), 400
    stream_status = data.get('streamStatus', True) is not False
    user_fields = _user_fields(data)

    allowed, retry_after = app_ctx.check_rate_limit(
        key=f"tutor:{app_ctx.normalize_rate_limit_key_part(user_fields['userId'] if user_fields['userId'] != 'anonymous' else request.remote_addr)}",
        limit=app_ctx.TUTOR_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=app_ctx.TUTOR_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not allowed:
        return app_ctx.build_rate_limited_response('Too many tutor requests. Please wait a moment.', retry_after)

    started_at = app_ctx.time.time()
    intent = tutor_service.classify_intent(message)

    def elapsed_ms():
        return int((app_ctx.time.time() - started_at) * 1000)

    if intent == 'practice':
        tutor_service.log_conversation(app_ctx.db, dict(
            user_fields,
            query=message,
            response=BLOCKED_RESPONSE,
            sources=[],
            subject=None,
            intent='practice',
            responseTimeMs=elapsed_ms(),
            wasFromCache=False,
        ), app_ctx.time.time(), app_ctx.logger)

        def refusal():
            yield tutor_service.PRACTICE_REFUSAL

        return _event_stream(app_ctx, refusal(), {'X-Intent': intent})

    cache_key = tutor_service.response_cache_key(message)
    cached = tutor_service.get_cached_response(
        app_ctx.TUTOR_RESPONSE_CACHE,
        app_ctx.TUTOR_CACHE_LOCK,
        cache_key,
        started_at,
    )
    if cached is not None:
        def replay():
            yield cached['response']
            log_id = tutor_service.log_conversation(app_ctx.db, dict(
                user_fields,
                query=message,
                response=cached['response'],
                sources=cached['sources'],
                subject=tutor_service.detect_subject(message),
                intent=intent,
                responseTimeMs=elapsed_ms(),
                wasFromCache=True,
            ), app_ctx.time.time(), app_ctx.logger)
            if log_id:
                yield '\n\n' + tutor_service.status_line('log_id', id=log_id)

        return _event_stream(app_ctx, replay(), {'X-Intent': intent, 'X-Cache': 'HIT'})

    if app_ctx.db is None or app_ctx.gemini_client is None:
        return app_ctx.jsonify({'error': 'AI tutor is not available'}), 503

    subject = tutor_service.detect_subject(message)
    try:
        embedding = app_ctx.embed_query(message)
        context = tutor_service.retrieve_context(app_ctx.db, embedding, subject)
        prompt = tutor_service.build_tutor_prompt(
            message,
            subject,
            intent,
            context,
            platform_name=app_ctx.PLATFORM_NAME,
            support_contact=app_ctx.SUPPORT_CONTACT,
        )
        chunks = ai_service.stream_text(app_ctx.gemini_client, app_ctx.TUTOR_MODEL, prompt)
    except Exception as e:
        app_ctx.logger.error(f"Tutor retrieval failed: {e}")
        return app_ctx.jsonify({'error': str(e)}), 500

    sources = context['sources']
    confidence = context['confidence']

    def generate():
        if stream_status:
            yield tutor_service.status_line('found', message=f"Found {len(sources)} relevant sources...")
            yield tutor_service.status_line('writing', message='Writing response...')
        parts = []
        try:
            for text in chunks:
                parts.append(text)
                yield text
        except Exception as e:
            app_ctx.logger.error(f"Tutor stream interrupted: {e}")
            yield tutor_service.status_line('error', message='The response was interrupted. Please try again.')
            return
        full_response = ''.join(parts)
        tutor_service.set_cached_response(
            app_ctx.TUTOR_RESPONSE_CACHE,
            app_ctx.TUTOR_CACHE_LOCK,
            cache_key,
            full_response,
            sources,
            app_ctx.time.time(),
        )
        log_id = tutor_service.log_conversation(app_ctx.db, dict(
            user_fields,
            query=message,
            response=full_response,
            sources=sources,
            subject=subject,
            intent=intent,
            confidence=confidence['score'],
            responseTimeMs=elapsed_ms(),
            wasFromCache=False,
        ), app_ctx.time.time(), app_ctx.logger)
        if log_id:
            yield tutor_service.status_line('log_id', id=log_id)

    return _event_stream(app_ctx, generate(), {
        'X-Confidence': confidence['score'],
        'X-Subject': subject or 'general',
        'X-Intent': intent,
    })


def tutor_feedback(app_ctx, request):
    data = request.get_json(silent=True) or {}
    log_id = str(data.get('logId', '') or '').strip()
    feedback = str(data.get('feedback', '') or '').strip()
    if not log_id or not feedback:
        return app_ctx.jsonify({'error': 'Log ID and feedback required'}), 400
    if feedback not in tutor_service.FEEDBACK_VALUES:
        return app_ctx.jsonify({'error': 'Invalid feedback value'}), 400
    if app_ctx.db is None:
        return app_ctx.jsonify({'error': 'Database not available'}), 503
    try:
        if not tutor_logs_repo.get_log(app_ctx.db, log_id).exists:
            return app_ctx.jsonify({'error': 'Log not found'}), 404
        notes = str(data.get('notes', '') or '').strip()[:1000]
        tutor_service.record_feedback(app_ctx.db, log_id, feedback, notes, app_ctx.time.time())
        return app_ctx.jsonify({'success': True})
    except Exception as e:
        app_ctx.logger.error(f"Feedback update failed for {log_id}: {e}")
        return app_ctx.jsonify({'error': 'Could not save feedback'}), 500


def chat_tutor(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    message = _message_from(data)
    if not message:
        return app_ctx.jsonify({'error': 'Message required'}), 400
    if app_ctx.gemini_client is None:
        return app_ctx.jsonify({'error': 'AI service is not configured'}), 503
    try:
        context = tutor_service.retrieve_context(
            app_ctx.db,
            app_ctx.embed_query(message),
            book_limit=tutor_service.STAFF_BOOK_RESULTS,
            syllabus_limit=tutor_service.STAFF_SYLLABUS_RESULTS,
        )
        reply = ai_service.generate_text(
            app_ctx.gemini_client,
            app_ctx.TUTOR_MODEL,
            tutor_service.build_staff_prompt(message, context),
        )
        return app_ctx.jsonify({
            'response': reply,
            'sources': context['sources'],
            'confidence': context['confidence'],
        })
    except Exception as e:
        app_ctx.logger.error(f"Staff tutor error: {e}")
        return app_ctx.jsonify({'error': str(e)}), 500


def tutor_analytics(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'admin')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    days = app_ctx.sanitize_int(request.args.get('days'), tutor_service.DEFAULT_ANALYTICS_DAYS, 1, MAX_ANALYTICS_DAYS)
    try:
        since_ts = app_ctx.time.time() - days * 86400
        summary = tutor_service.summarize_logs(tutor_logs_repo.list_since(app_ctx.db, since_ts))
        summary['days'] = days
        summary['cacheHitRate'] = (
            round(summary['cachedResponses'] / summary['totalQueries'] * 100, 1)
            if summary['totalQueries'] else 0
        )
        return app_ctx.jsonify({'success': True, 'analytics': summary})
    except Exception as e:
        app_ctx.logger.error(f"Tutor analytics failed: {e}")
        return app_ctx.jsonify({'error': 'Could not load analytics'}), 500


def _support_system_prompt(app_ctx):
    def build():
        return tutor_service.build_support_context(
            app_ctx.SUPPORT_CONTEXT_URLS,
            app_ctx.http_get,
            platform_name=app_ctx.PLATFORM_NAME,
            support_contact=app_ctx.SUPPORT_CONTACT,
            logger=app_ctx.logger,
        )

    try:
        return tutor_service.get_support_context(
            app_ctx.SUPPORT_CONTEXT_STATE,
            app_ctx.SUPPORT_CONTEXT_LOCK,
            app_ctx.time.time(),
            build,
        )
    except Exception as e:
        app_ctx.logger.warning(f"Support context build failed, using static context: {e}")
        return tutor_service.fallback_support_context(app_ctx.PLATFORM_NAME, app_ctx.SUPPORT_CONTACT)


def chat_support(app_ctx, request):
    data = request.get_json(silent=True) or {}
    message = _message_from(data)
    if not message:
        return app_ctx.jsonify({'error': 'Message required'}), 400
    if app_ctx.gemini_client is None:
        return app_ctx.jsonify({'error': 'AI service is not configured'}), 503

    allowed, retry_after = app_ctx.check_rate_limit(
        key=f"support:{app_ctx.normalize_rate_limit_key_part(request.remote_addr)}",
        limit=app_ctx.SUPPORT_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=app_ctx.SUPPORT_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not allowed:
        return app_ctx.build_rate_limited_response('Too many messages. Please wait a moment.', retry_after)

    history = [
        ('user', _support_system_prompt(app_ctx)),
        ('model', tutor_service.SUPPORT_ACK),
    ]
    history.extend(tutor_service.support_history(data.get('history')))
    try:
        reply = ai_service.chat_reply(app_ctx.gemini_client, app_ctx.SUPPORT_MODEL, history, message)
        return app_ctx.jsonify({'response': reply})
    except Exception as e:
        app_ctx.logger.error(f"Support chat error: {e}")
        return app_ctx.jsonify({'error': f"Error: {e}"}), 500
