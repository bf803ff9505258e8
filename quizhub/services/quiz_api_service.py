"""Business logic handlers for quiz session APIs."""

import random

from quizhub.repositories import attempts_repo, leaderboard_repo, questions_repo, quizzes_repo
from quizhub.services import quiz_rules

MAX_MOCK_QUIZ_QUESTIONS = 100
DEFAULT_QUIZ_PAGE_SIZE = 20
MAX_QUIZ_PAGE_SIZE = 100


def _snapshot_payload(snapshot):
    payload = snapshot.to_dict() or {}
    payload['id'] = snapshot.id
    return payload


def _enrolled_series_ids(app_ctx, user_id):
    return [
        (doc.to_dict() or {}).get('seriesId')
        for doc in quizzes_repo.list_active_enrollments(app_ctx.db, user_id)
    ]


def validate_quiz(app_ctx, request):
    data = request.get_json(silent=True) or {}
    quiz_id = str(data.get('quizId', '') or '').strip()
    user_id = str(data.get('userId', '') or '').strip()
    user_role = str(data.get('userRole', '') or 'student').strip().lower()
    if not quiz_id or not user_id:
        return app_ctx.jsonify({'valid': False, 'error': 'Missing required fields: quizId and userId'}), 400
    if app_ctx.db is None:
        return app_ctx.jsonify({'valid': False, 'error': 'Database not available'}), 500

    try:
        quiz_snapshot = quizzes_repo.get_quiz(app_ctx.db, quiz_id)
        if not quiz_snapshot.exists:
            return app_ctx.jsonify({'valid': False, 'error': 'Quiz not found'}), 404
        quiz = _snapshot_payload(quiz_snapshot)

        if user_role in quiz_rules.PREVIEW_ROLES:
            return app_ctx.jsonify({
                'valid': True,
                'mode': 'preview',
                'quiz': quiz,
                'userRole': user_role,
                'message': f"{user_role.capitalize()} preview access granted",
            })

        errors = []
        if not quiz.get('published'):
            errors.append(quiz_rules.NOT_PUBLISHED_ERROR)
        errors.extend(quiz_rules.schedule_errors(quiz, app_ctx.time.time(), app_ctx.QUIZ_SCHEDULE_TZ))

        series_ids = quiz_rules.required_series(quiz)
        if series_ids:
            try:
                if not quiz_rules.is_enrolled(_enrolled_series_ids(app_ctx, user_id), series_ids):
                    errors.append(quiz_rules.NOT_ENROLLED_ERROR)
            except Exception as e:
                app_ctx.logger.warning(f"Enrollment check failed for {user_id} on quiz {quiz_id}: {e}")

        if errors:
            return app_ctx.jsonify({'valid': False, 'errors': errors, 'primaryError': errors[0]}), 403

        max_attempts = quiz_rules.max_attempts_for(quiz)
        current_attempts = 0
        try:
            attempt_snapshot = attempts_repo.attempt_ref(app_ctx.db, user_id, quiz_id).get()
            if attempt_snapshot.exists:
                current_attempts = quiz_rules.completed_attempt_count(attempt_snapshot.to_dict() or {})
        except Exception as e:
            app_ctx.logger.warning(f"Attempt lookup failed for {user_id} on quiz {quiz_id}: {e}")

        if current_attempts >= max_attempts:
            return app_ctx.jsonify({
                'valid': False,
                'errors': [quiz_rules.MAX_ATTEMPTS_ERROR],
                'primaryError': quiz_rules.MAX_ATTEMPTS_PRIMARY,
            }), 403

        return app_ctx.jsonify({
            'valid': True,
            'mode': 'attempt',
            'quiz': quiz,
            'userRole': user_role,
            'currentAttemptCount': current_attempts,
            'maxAttempts': max_attempts,
        })
    except Exception as e:
        app_ctx.logger.error(f"Error validating quiz {quiz_id} for {user_id}: {e}")
        return app_ctx.jsonify({'valid': False, 'error': 'Could not validate quiz access'}), 500


def autosave_quiz(app_ctx, request):
    data = request.get_json(silent=True) or {}
    quiz_id = str(data.get('quizId', '') or '').strip()
    user_id = str(data.get('userId', '') or '').strip()
    if not quiz_id or not user_id:
        return app_ctx.jsonify({'error': 'Missing required fields'}), 400

    allowed, retry_after = app_ctx.check_rate_limit(
        key=f"autosave:{app_ctx.normalize_rate_limit_key_part(user_id)}",
        limit=app_ctx.AUTOSAVE_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=app_ctx.AUTOSAVE_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not allowed:
        return app_ctx.build_rate_limited_response('Too many save requests. Please wait a moment.', retry_after)
    if app_ctx.db is None:
        return app_ctx.jsonify({'error': 'Database not available'}), 500

    try:
        attempts_repo.attempt_ref(app_ctx.db, user_id, quiz_id).set({
            'answers': data.get('answers') or {},
            'flags': data.get('flags') or {},
            'currentIndex': data.get('currentIndex') or 0,
            'remainingTime': data.get('remainingTime') or 0,
            'completed': False,
            'lastSaved': app_ctx.time.time(),
        }, merge=True)
        return app_ctx.jsonify({'success': True, 'message': 'Progress saved'})
    except Exception as e:
        app_ctx.logger.error(f"Autosave failed for {user_id} on quiz {quiz_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to save progress'}), 500


def submit_quiz(app_ctx, request):
    data = request.get_json(silent=True) or {}
    quiz_id = str(data.get('quizId', '') or '').strip()
    user_id = str(data.get('userId', '') or '').strip()
    answers = data.get('answers')
    if not quiz_id or not user_id or not isinstance(answers, dict):
        return app_ctx.jsonify({'error': 'Missing required fields'}), 400
    if app_ctx.db is None:
        return app_ctx.jsonify({'error': 'Database not available'}), 500

    now_ts = app_ctx.time.time()
    client_timestamp = data.get('timestamp') or int(now_ts * 1000)
    try:
        submission_ref = attempts_repo.submission_ref(
            app_ctx.db,
            quiz_rules.submission_key(user_id, quiz_id, client_timestamp),
        )
        existing = submission_ref.get()
        if existing.exists:
            return app_ctx.jsonify({
                'success': True,
                'cached': True,
                'message': 'Submission already processed',
                'result': existing.to_dict() or {},
            })

        quiz_snapshot = quizzes_repo.get_quiz(app_ctx.db, quiz_id)
        if not quiz_snapshot.exists:
            return app_ctx.jsonify({'error': 'Quiz not found'}), 404
        quiz = quiz_snapshot.to_dict() or {}
        selected_questions = quiz.get('selectedQuestions') or []
        time_logs = data.get('timeLogs') or {}
        score, total, question_results = quiz_rules.score_submission(selected_questions, answers, time_logs)
        attempt_number = data.get('attemptNumber') or 1

        result = {
            'quizId': quiz_id,
            'title': quiz.get('title') or 'Untitled Quiz',
            'score': score,
            'total': total,
            'timestamp': now_ts,
            'answers': answers,
            'flags': data.get('flags') or {},
            'timeLogs': time_logs,
            'attemptNumber': attempt_number,
            'submittedAt': now_ts,
        }
        batch = app_ctx.db.batch()
        batch.set(attempts_repo.result_ref(app_ctx.db, user_id, quiz_id), result)
        batch.set(attempts_repo.attempt_ref(app_ctx.db, user_id, quiz_id), {
            'completed': True,
            'submittedAt': now_ts,
            'remainingTime': 0,
            'attemptNumber': attempt_number,
        }, merge=True)
        batch.set(submission_ref, dict(result, processedAt=now_ts))
        batch.commit()
    except Exception as e:
        app_ctx.logger.error(f"Quiz submission failed for {user_id} on quiz {quiz_id}: {e}")
        return app_ctx.jsonify({'error': 'Submission failed'}), 500

    app_ctx.log_event(
        app_ctx.logging.INFO,
        'quiz_submitted',
        user_id=user_id,
        quiz_id=quiz_id,
        score=score,
        total=total,
    )
    app_ctx.start_background_task(
        app_ctx.run_post_submit_updates,
        user_id,
        answers,
        score,
        question_results,
        quiz.get('subject'),
    )
    return app_ctx.jsonify({
        'success': True,
        'score': score,
        'total': total,
        'message': 'Quiz submitted successfully',
    })


def get_leaderboard(app_ctx, request):
    if app_ctx.db is None:
        return app_ctx.jsonify({'error': 'Database not available'}), 500
    try:
        top = leaderboard_repo.get_top(app_ctx.db)
        return app_ctx.jsonify({
            'users': top.get('users') or [],
            'lastUpdated': top.get('lastUpdated'),
        })
    except Exception as e:
        app_ctx.logger.error(f"Error loading leaderboard: {e}")
        return app_ctx.jsonify({'error': 'Could not load leaderboard'}), 500


def list_quizzes(app_ctx, request):
    user_ctx, auth_error = app_ctx.authorize_request(request, 'user')
    if auth_error:
        message, status = auth_error
        return app_ctx.jsonify({'error': message}), status
    limit = app_ctx.sanitize_int(request.args.get('limit'), DEFAULT_QUIZ_PAGE_SIZE, 1, MAX_QUIZ_PAGE_SIZE)
    try:
        docs = quizzes_repo.list_quizzes_page(
            app_ctx.db,
            limit + 1,
            quiz_type=str(request.args.get('type', '') or '').strip(),
            subject=str(request.args.get('subject', '') or '').strip(),
            start_after_id=str(request.args.get('startAfter', '') or '').strip(),
        )
        has_more = len(docs) > limit
        quizzes = [_snapshot_payload(doc) for doc in docs[:limit]]
        return app_ctx.jsonify({
            'success': True,
            'data': quizzes,
            'pagination': {
                'limit': limit,
                'count': len(quizzes),
                'hasMore': has_more,
                'nextCursor': quizzes[-1]['id'] if has_more and quizzes else None,
            },
        })
    except Exception as e:
        app_ctx.logger.error(f"Error listing quizzes for {user_ctx['uid']}: {e}")
        return app_ctx.jsonify({'error': 'Could not load quizzes'}), 500


def pick_questions(pool, used_ids, count, rng=random):
    """Prefer questions the user has not seen yet, each group shuffled."""
    unused = [question for question in pool if question['id'] not in used_ids]
    used = [question for question in pool if question['id'] in used_ids]
    rng.shuffle(unused)
    rng.shuffle(used)
    selected = unused[:count]
    if len(selected) < count:
        selected.extend(used[:count - len(selected)])
    return selected


def question_snapshot(question):
    return {
        'id': question['id'],
        'questionText': question.get('questionText', ''),
        'options': question.get('options') or [],
        'correctAnswer': question.get('correctAnswer') or '',
        'explanation': question.get('explanation') or '',
        'enableExplanation': bool(question.get('enableExplanation')),
        'subject': question.get('subject') or '',
        'chapter': question.get('chapter') or '',
    }


def create_mock_quiz(app_ctx, request):
    user_ctx, auth_error = app_ctx.authorize_request(request, 'user')
    if auth_error:
        message, status = auth_error
        return app_ctx.jsonify({'error': message}), status
    uid = user_ctx['uid']
    data = request.get_json(silent=True) or {}
    subjects = [str(subject) for subject in (data.get('subjects') or []) if subject]
    chapters = [str(chapter) for chapter in (data.get('chapters') or []) if chapter]
    per_subject = data.get('questionsPerSubject') or {}
    if not subjects or not chapters or not isinstance(per_subject, dict):
        return app_ctx.jsonify({'error': 'Missing required fields'}), 400
    requested = {subject: app_ctx.sanitize_int(per_subject.get(subject), 0, 0, MAX_MOCK_QUIZ_QUESTIONS) for subject in subjects}
    if sum(requested.values()) > MAX_MOCK_QUIZ_QUESTIONS:
        return app_ctx.jsonify({'error': f"Total questions cannot exceed {MAX_MOCK_QUIZ_QUESTIONS}"}), 400

    db = app_ctx.db
    try:
        selected = []
        for subject in subjects:
            count = requested[subject]
            if count <= 0:
                continue
            usage_snapshot = attempts_repo.question_usage_ref(db, uid, subject).get()
            used_ids = set((usage_snapshot.to_dict() or {}).get('usedQuestions') or []) if usage_snapshot.exists else set()
            pool = [
                _snapshot_payload(doc)
                for doc in questions_repo.list_by_subject(db, subject, questions_repo.MOCK_QUESTIONS_COLLECTION)
            ]
            pool = [question for question in pool if question.get('chapter') in chapters and not question.get('isDeleted')]
            selected.extend(pick_questions(pool, used_ids, count))

        if not selected:
            return app_ctx.jsonify({'error': 'No questions found matching your criteria.'}), 404

        now_ts = app_ctx.time.time()
        title = str(data.get('title', '') or '').strip()[:200]
        if not title:
            title = f"{', '.join(subject[:3] for subject in subjects)} Mock"
        quiz_ref = quizzes_repo.new_user_quiz_ref(db)
        by_subject = {}
        for question in selected:
            by_subject.setdefault(question.get('subject') or '', []).append(question['id'])

        @app_ctx.firestore.transactional
        def _create(txn):
            usage_updates = {}
            for subject, question_ids in by_subject.items():
                usage_ref = attempts_repo.question_usage_ref(db, uid, subject)
                usage_snapshot = usage_ref.get(transaction=txn)
                existing = list((usage_snapshot.to_dict() or {}).get('usedQuestions') or []) if usage_snapshot.exists else []
                usage_updates[subject] = (usage_ref, existing + [qid for qid in question_ids if qid not in existing])
            txn.set(quiz_ref, {
                'title': title,
                'createdBy': uid,
                'subjects': subjects,
                'chapters': chapters,
                'duration': app_ctx.sanitize_int(data.get('duration'), 60, 1, 600),
                'questionCount': len(selected),
                'questionsPerPage': app_ctx.sanitize_int(data.get('questionsPerPage'), 10, 1, MAX_MOCK_QUIZ_QUESTIONS),
                'selectedQuestions': [question_snapshot(question) for question in selected],
                'createdAt': now_ts,
            })
            for usage_ref, used_questions in usage_updates.values():
                txn.set(usage_ref, {'usedQuestions': used_questions, 'updatedAt': now_ts}, merge=True)
            for question in selected:
                txn.update(
                    questions_repo.question_ref(db, question['id'], questions_repo.MOCK_QUESTIONS_COLLECTION),
                    {'usedInQuizzes': app_ctx.firestore.Increment(1)},
                )

        _create(db.transaction())
        return app_ctx.jsonify({'success': True, 'quizId': quiz_ref.id, 'questionCount': len(selected)})
    except Exception as e:
        app_ctx.logger.error(f"Error creating mock quiz for {uid}: {e}")
        return app_ctx.jsonify({'error': 'Could not create mock quiz'}), 500


def submit_mock_quiz(app_ctx, request, quiz_id):
    user_ctx, auth_error = app_ctx.authorize_request(request, 'user')
    if auth_error:
        message, status = auth_error
        return app_ctx.jsonify({'error': message}), status
    uid = user_ctx['uid']
    data = request.get_json(silent=True) or {}
    answers = data.get('answers')
    if not isinstance(answers, dict):
        return app_ctx.jsonify({'error': 'Missing required fields'}), 400

    db = app_ctx.db
    now_ts = app_ctx.time.time()
    try:
        quiz_snapshot = quizzes_repo.get_user_quiz(db, quiz_id)
        if not quiz_snapshot.exists:
            return app_ctx.jsonify({'error': 'Quiz not found'}), 404
        quiz = quiz_snapshot.to_dict() or {}
        if quiz.get('createdBy') != uid:
            return app_ctx.jsonify({'error': 'Forbidden'}), 403

        attempt_ref = attempts_repo.user_attempt_ref(db, uid, quiz_id)
        attempt_snapshot = attempt_ref.get()
        attempt = (attempt_snapshot.to_dict() or {}) if attempt_snapshot.exists else {}
        if attempt.get('completed'):
            return app_ctx.jsonify({'error': 'This quiz has already been submitted'}), 409

        selected_questions = quiz.get('selectedQuestions') or []
        score, total, question_results = quiz_rules.score_submission(selected_questions, answers)
        attempt_ref.set({
            'submittedAt': now_ts,
            'answers': answers,
            'flags': data.get('flags') or {},
            'completed': True,
            'remainingTime': 0,
            'attemptNumber': int(attempt.get('attemptNumber') or 0) + 1,
            'quizType': 'user',
            'score': score,
            'total': total,
        }, merge=True)
    except Exception as e:
        app_ctx.logger.error(f"Mock quiz submission failed for {uid} on quiz {quiz_id}: {e}")
        return app_ctx.jsonify({'error': 'Submission failed'}), 500

    app_ctx.log_event(
        app_ctx.logging.INFO,
        'mock_quiz_submitted',
        user_id=uid,
        quiz_id=quiz_id,
        score=score,
        total=total,
    )
    app_ctx.start_background_task(
        app_ctx.run_mock_submit_updates,
        uid,
        answers,
        score,
        question_results,
        quiz.get('subjects'),
    )
    return app_ctx.jsonify({'success': True, 'score': score, 'total': total})
