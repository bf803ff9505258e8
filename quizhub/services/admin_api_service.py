"""Business logic handlers for admin APIs."""

import hashlib
import hmac
import re

from quizhub.repositories import questions_repo, system_repo
from quizhub.repositories.query_utils import chunked
from quizhub.services import dedupe_service, leaderboard_service, search_service

INDEX_LINK_RE = re.compile(r'https://console\.firebase\.google\.com[^\s]*')
INDEX_ERROR_MARKER = 'requires an index'
MAX_SYNC_QUESTIONS = 2000


def _auth_failure(app_ctx, auth_error):
    message, status = auth_error
    return app_ctx.jsonify({'error': message}), status


def _chapters_from(data):
    chapters = data.get('chapters')
    if isinstance(chapters, list):
        return [str(chapter).strip() for chapter in chapters if str(chapter or '').strip()]
    chapter = str(data.get('chapter', '') or '').strip()
    return [chapter] if chapter else []


def _bank_questions(db, subject, chapter):
    questions = []
    for doc in questions_repo.list_by_subject_and_chapter(db, subject, chapter, questions_repo.MOCK_QUESTIONS_COLLECTION):
        data = doc.to_dict() or {}
        if data.get('isDeleted') is True:
            continue
        question = dict(data)
        question['id'] = doc.id
        question['text'] = data.get('questionText')
        question['options'] = data.get('options') or []
        questions.append(question)
    return questions


def find_repeated_questions(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    subject = str(data.get('subject', '') or '').strip()
    chapters = _chapters_from(data)
    if not subject or not chapters:
        return app_ctx.jsonify({'error': 'Subject and at least one Chapter are required'}), 400
    enable_ai_analysis = data.get('enableAiAnalysis', True) is not False
    enable_quality_check = data.get('enableQualityCheck') is True

    try:
        by_chapter = {}
        total_processed = 0
        for chapter in chapters:
            questions = _bank_questions(app_ctx.db, subject, chapter)
            result = dedupe_service.analyze_chapter(
                questions,
                enable_ai_analysis=enable_ai_analysis,
                enable_quality_check=enable_quality_check,
                generate_json=app_ctx.generate_ai_json if app_ctx.gemini_client is not None else None,
                logger=app_ctx.logger,
            )
            total_processed += result['totalQuestions']
            by_chapter[chapter] = result
        all_groups = [group for result in by_chapter.values() for group in result['duplicateGroups']]
        return app_ctx.jsonify({
            'totalProcessed': total_processed,
            'byChapter': by_chapter,
            'allGroups': all_groups,
            'exactDuplicates': all_groups,
            'aiDuplicates': [],
        })
    except Exception as e:
        app_ctx.logger.error(f"Find repeated failed for {subject}: {e}")
        return app_ctx.jsonify({'error': 'Failed to analyze duplicates', 'details': str(e)}), 500


def sync_mock_questions(app_ctx, request):
    """Copy bank questions into the mock bank, skipping duplicates and near-duplicates."""
    admin_ctx, auth_error = app_ctx.authorize_request(request, 'admin')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    subject = str(data.get('subject', '') or '').strip()
    chapter = str(data.get('chapter', '') or '').strip()
    if not subject:
        return app_ctx.jsonify({'error': 'Subject is required'}), 400
    dry_run = data.get('dryRun') is True
    threshold = data.get('similarityThreshold')
    try:
        threshold = float(threshold) if threshold is not None else dedupe_service.SIMILARITY_THRESHOLD
    except (TypeError, ValueError):
        return app_ctx.jsonify({'error': 'similarityThreshold must be a number'}), 400

    db = app_ctx.db
    try:
        if chapter:
            source_docs = questions_repo.list_by_subject_and_chapter(db, subject, chapter)
        else:
            source_docs = questions_repo.list_by_subject(db, subject)
        source = []
        for doc in source_docs[:MAX_SYNC_QUESTIONS]:
            question = doc.to_dict() or {}
            if question.get('isDeleted') is True:
                continue
            question['id'] = doc.id
            source.append(question)
        target = []
        for doc in questions_repo.list_by_subject(db, subject, questions_repo.MOCK_QUESTIONS_COLLECTION):
            question = doc.to_dict() or {}
            question['id'] = doc.id
            target.append(question)

        results = dedupe_service.find_sync_duplicates(source, target, threshold=threshold)
        source_by_id = {question['id']: question for question in source}
        new_ids = [item['sourceId'] for item in results if item['status'] == 'new']
        created = 0
        if not dry_run and new_ids:
            now_ts = app_ctx.time.time()
            mock_collection = db.collection(questions_repo.MOCK_QUESTIONS_COLLECTION)
            for chunk in chunked(new_ids):
                batch = db.batch()
                for source_id in chunk:
                    fields = dedupe_service.map_question_fields(
                        source_by_id[source_id],
                        str(data.get('courseName', '') or ''),
                        str(data.get('teacherName', '') or ''),
                        now_ts,
                    )
                    fields['searchTokens'] = search_service.generate_search_tokens(fields['questionText'])
                    batch.set(mock_collection.document(), fields)
                batch.commit()
                created += len(chunk)

        app_ctx.log_event(
            app_ctx.logging.INFO,
            'mock_questions_synced',
            admin_uid=admin_ctx['uid'],
            subject=subject,
            created=created,
            dry_run=dry_run,
        )
        return app_ctx.jsonify({
            'success': True,
            'dryRun': dry_run,
            'total': len(results),
            'new': len(new_ids),
            'duplicates': sum(1 for item in results if item['status'] == 'duplicate'),
            'similar': sum(1 for item in results if item['status'] == 'similar'),
            'created': created,
            'results': results,
        })
    except Exception as e:
        app_ctx.logger.error(f"Mock question sync failed for {subject}: {e}")
        return app_ctx.jsonify({'error': 'Sync failed'}), 500


def sync_algolia(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    question_id = str(data.get('questionId', '') or '').strip()
    question_ids = data.get('questionIds') if isinstance(data.get('questionIds'), list) else None
    if not data.get('type') or (not question_id and not question_ids):
        return app_ctx.jsonify({'error': 'Missing required fields'}), 400
    if app_ctx.search_client is None:
        return app_ctx.jsonify({'error': 'Search index is not configured'}), 503
    try:
        operations = search_service.sync_index(
            app_ctx.search_client,
            question_type=data.get('type'),
            question_id=question_id,
            question_ids=question_ids,
            data=data.get('data'),
            action=data.get('action'),
            now_ms=int(app_ctx.time.time() * 1000),
        )
        return app_ctx.jsonify({'success': True, 'operations': operations})
    except Exception as e:
        app_ctx.logger.error(f"Algolia sync error: {e}")
        return app_ctx.jsonify({'error': str(e)}), 500


def migrate_search_tokens(app_ctx, request):
    provided = str(request.headers.get('x-migration-token', '') or '')
    expected = str(app_ctx.MIGRATION_TOKEN or '')
    if not expected or not hmac.compare_digest(provided, expected):
        return app_ctx.jsonify({'error': 'Unauthorized. Provide x-migration-token header.'}), 401
    if app_ctx.db is None:
        return app_ctx.jsonify({'error': 'Database not available'}), 503
    try:
        stats, error_details = search_service.backfill_search_tokens(
            app_ctx.db,
            app_ctx.time.time(),
            apply=True,
            logger=app_ctx.logger,
        )
        app_ctx.log_event(app_ctx.logging.INFO, 'search_tokens_migrated', **stats)
        return app_ctx.jsonify({
            'success': True,
            'message': 'Migration completed',
            'stats': stats,
            'errors': error_details[:10],
        })
    except Exception as e:
        app_ctx.logger.error(f"Search token migration failed: {e}")
        return app_ctx.jsonify({'error': 'Migration failed', 'details': str(e)}), 500


def recompute_leaderboard_user(app_ctx, request, uid):
    _, auth_error = app_ctx.authorize_request(request, 'admin')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    try:
        accuracy = leaderboard_service.recompute_user(app_ctx.db, uid, logger=app_ctx.logger)
        return app_ctx.jsonify({'success': True, 'userId': uid, 'accuracy': accuracy})
    except Exception as e:
        app_ctx.logger.error(f"Leaderboard recompute failed for {uid}: {e}")
        return app_ctx.jsonify({'error': 'Recompute failed'}), 500


def rebuild_leaderboard(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'admin')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    start_after = str(request.args.get('startAfter', '') or '').strip()
    try:
        processed, next_cursor = leaderboard_service.rebuild_batch(app_ctx.db, start_after, logger=app_ctx.logger)
        return app_ctx.jsonify({'success': True, 'processed': processed, 'nextStartAfter': next_cursor})
    except Exception as e:
        app_ctx.logger.error(f"Leaderboard rebuild batch failed after {start_after or 'start'}: {e}")
        return app_ctx.jsonify({'error': 'Rebuild failed'}), 500


def finalize_leaderboard(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'admin')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    try:
        entries = leaderboard_service.refresh_top(app_ctx.db, app_ctx.time.time(), firestore_module=app_ctx.firestore)
        return app_ctx.jsonify({'success': True, 'users': entries})
    except Exception as e:
        app_ctx.logger.error(f"Leaderboard finalize failed: {e}")
        return app_ctx.jsonify({'error': 'Finalize failed'}), 500


def extract_index_link(message, link=''):
    if link:
        return link
    match = INDEX_LINK_RE.search(message or '')
    return match.group(0) if match else ''


def report_missing_index(app_ctx, request):
    data = request.get_json(silent=True) or {}
    message = str(data.get('message', '') or '')
    link = str(data.get('link', '') or '').strip()
    if not link and INDEX_ERROR_MARKER not in message:
        return app_ctx.jsonify({'success': False, 'reason': 'Not an index error'})
    create_link = extract_index_link(message, link)
    if not create_link:
        return app_ctx.jsonify({'success': False, 'reason': 'Could not extract creation link'})

    allowed, retry_after = app_ctx.check_rate_limit(
        key=f"index-report:{app_ctx.normalize_rate_limit_key_part(request.remote_addr or 'unknown')}",
        limit=app_ctx.INDEX_REPORT_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=app_ctx.INDEX_REPORT_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not allowed:
        return app_ctx.build_rate_limited_response('Too many index reports. Please wait a moment.', retry_after)
    if app_ctx.db is None:
        return app_ctx.jsonify({'success': False, 'error': 'Database not available'}), 503

    try:
        now_ts = app_ctx.time.time()
        ref = system_repo.detected_index_ref(app_ctx.db, hashlib.sha256(create_link.encode('utf-8')).hexdigest())
        snapshot = ref.get()
        if snapshot.exists:
            existing = snapshot.to_dict() or {}
            ref.update({
                'occurrences': app_ctx.firestore.Increment(1),
                'lastSeen': now_ts,
                'path': data.get('path') or existing.get('path'),
            })
        else:
            ref.set({
                'createLink': create_link,
                'message': message,
                'queryInfo': data.get('queryInfo') or 'Unknown',
                'path': data.get('path') or 'Unknown',
                'occurrences': 1,
                'firstSeen': now_ts,
                'lastSeen': now_ts,
                'status': 'MISSING',
            })
        return app_ctx.jsonify({'success': True})
    except Exception as e:
        app_ctx.logger.error(f"Failed to report missing index: {e}")
        return app_ctx.jsonify({'success': False, 'error': 'Internal Server Error'}), 500
