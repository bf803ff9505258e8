"""Business logic handlers for student administration APIs."""

from quizhub.repositories import attempts_repo, system_repo, users_repo
from quizhub.repositories.query_utils import ASCENDING, DESCENDING, chunked

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
RECENT_ATTEMPTS_LIMIT = 10
SORTABLE_FIELDS = {'createdAt', 'fullName', 'email', 'stats.overallAccuracy', 'stats.totalQuizzes', 'leaderboardAccuracy'}
BULK_CONFIRMATION_TEXT = 'DELETE'
EMPTY_STATS = {'totalQuizzes': 0, 'totalQuestions': 0, 'totalCorrect': 0, 'overallAccuracy': 0}


def _require_admin_claim(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return app_ctx.jsonify({'success': False, 'error': 'Unauthorized'}), 401
    if not app_ctx.claims_admin(decoded_token):
        return app_ctx.jsonify({'success': False, 'error': 'Forbidden: Admins only'}), 403
    return None


def student_summary(snapshot):
    data = snapshot.to_dict() or {}
    return {
        'id': snapshot.id,
        'fullName': data.get('fullName') or '',
        'email': data.get('email') or '',
        'phone': data.get('phone') or '',
        'photoURL': data.get('photoURL'),
        'createdAt': data.get('createdAt'),
        'stats': data.get('stats') or dict(EMPTY_STATS),
    }


def matches_search(student, query):
    lowered = query.lower()
    return (
        lowered in student['fullName'].lower()
        or lowered in student['email'].lower()
        or (bool(student['phone']) and query in student['phone'])
    )


def list_students(app_ctx, request):
    auth_error = _require_admin_claim(app_ctx, request)
    if auth_error:
        return auth_error
    if app_ctx.db is None:
        return app_ctx.jsonify({'success': False, 'error': 'Database not available'}), 503

    limit = app_ctx.sanitize_int(request.args.get('limit'), DEFAULT_PAGE_SIZE, 1, MAX_PAGE_SIZE)
    sort_by = str(request.args.get('sortBy', '') or 'createdAt').strip()
    if sort_by not in SORTABLE_FIELDS:
        return app_ctx.jsonify({'success': False, 'error': f"Unsupported sortBy: {sort_by}"}), 400
    direction = ASCENDING if str(request.args.get('sortOrder', '')).strip().lower() == 'asc' else DESCENDING
    search = str(request.args.get('search', '') or '').strip()

    try:
        docs = users_repo.list_students_page(
            app_ctx.db,
            sort_by,
            direction,
            limit,
            start_after_uid=str(request.args.get('startAfter', '') or '').strip(),
        )
        students = [student_summary(doc) for doc in docs]
        if search:
            students = [student for student in students if matches_search(student, search)]
        return app_ctx.jsonify({
            'success': True,
            'data': students,
            'pagination': {
                'limit': limit,
                'count': len(students),
                'nextCursor': docs[-1].id if docs else None,
            },
        })
    except Exception as e:
        app_ctx.logger.error(f"Error fetching students: {e}")
        return app_ctx.jsonify({'success': False, 'error': 'Failed to fetch students'}), 500


def get_student(app_ctx, request, student_id):
    auth_error = _require_admin_claim(app_ctx, request)
    if auth_error:
        return auth_error
    student_id = str(student_id or '').strip()
    if not student_id:
        return app_ctx.jsonify({'success': False, 'error': 'Student ID is required'}), 400
    if app_ctx.db is None:
        return app_ctx.jsonify({'success': False, 'error': 'Database not available'}), 503

    try:
        snapshot = users_repo.get_doc(app_ctx.db, student_id)
        if not snapshot.exists:
            return app_ctx.jsonify({'success': False, 'error': 'Student not found'}), 404
        data = snapshot.to_dict() or {}
        recent_attempts = []
        for doc in attempts_repo.list_recent_attempts(app_ctx.db, student_id, RECENT_ATTEMPTS_LIMIT):
            attempt = doc.to_dict() or {}
            attempt['id'] = doc.id
            recent_attempts.append(attempt)
        payload = student_summary(snapshot)
        payload['stats'] = data.get('stats') or {}
        payload['usedMockQuestionIds'] = data.get('usedMockQuestionIds') or []
        payload['recentAttempts'] = recent_attempts
        return app_ctx.jsonify({'success': True, 'data': payload})
    except Exception as e:
        app_ctx.logger.error(f"Error fetching student {student_id}: {e}")
        return app_ctx.jsonify({'success': False, 'error': 'Failed to fetch student'}), 500


def delete_student_attempts(db, uid):
    """Remove quiz attempts and their result documents for one user."""
    refs = []
    for attempt in attempts_repo.list_attempts(db, uid):
        refs.append(attempts_repo.result_ref(db, uid, attempt.id))
        refs.append(attempt.reference)
    for chunk in chunked(refs):
        batch = db.batch()
        for ref in chunk:
            batch.delete(ref)
        batch.commit()
    return len(refs)


def bulk_delete_students(app_ctx, request):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return app_ctx.jsonify({'success': False, 'error': 'Invalid JSON in request body'}), 400
    student_ids = data.get('studentIds')
    if not isinstance(student_ids, list) or not student_ids:
        return app_ctx.jsonify({'success': False, 'error': 'studentIds array is required'}), 400
    student_ids = [str(student_id).strip() for student_id in student_ids if str(student_id or '').strip()]
    if len(student_ids) > 1 and data.get('confirmationText') != BULK_CONFIRMATION_TEXT:
        return app_ctx.jsonify({'success': False, 'error': 'Type DELETE to confirm bulk operation'}), 400

    admin_ctx, auth_error = app_ctx.authorize_request(request, 'superadmin')
    if auth_error:
        message, status = auth_error
        return app_ctx.jsonify({'success': False, 'error': message}), status

    db = app_ctx.db
    deletion_type = 'bulk' if len(student_ids) > 1 else 'single'
    results = {'deleted': 0, 'failed': 0, 'errors': []}
    for student_id in student_ids:
        try:
            snapshot = users_repo.get_doc(db, student_id)
            if not snapshot.exists:
                results['failed'] += 1
                results['errors'].append({'studentId': student_id, 'error': 'Student not found'})
                continue
            student = snapshot.to_dict() or {}
            try:
                app_ctx.auth.delete_user(student.get('uid') or student_id)
            except app_ctx.auth.UserNotFoundError:
                pass
            try:
                delete_student_attempts(db, student_id)
            except Exception as e:
                app_ctx.logger.warning(f"Failed to delete attempts for {student_id}: {e}")
            users_repo.doc_ref(db, student_id).delete()
            try:
                system_repo.add_audit_log(db, {
                    'action': 'student_deleted',
                    'studentId': student_id,
                    'studentName': student.get('fullName') or 'Unknown',
                    'studentEmail': student.get('email'),
                    'deletedAt': app_ctx.time.time(),
                    'deletedBy': admin_ctx['uid'],
                    'deletedByName': admin_ctx['user'].get('fullName') or '',
                    'deletedByEmail': admin_ctx['email'],
                    'deletionType': deletion_type,
                })
            except Exception as e:
                app_ctx.logger.warning(f"Failed to write audit log for {student_id}: {e}")
            results['deleted'] += 1
        except Exception as e:
            app_ctx.logger.error(f"Error deleting student {student_id}: {e}")
            results['failed'] += 1
            results['errors'].append({'studentId': student_id, 'error': str(e) or 'Unknown error'})

    app_ctx.log_event(
        app_ctx.logging.INFO,
        'students_deleted',
        admin_uid=admin_ctx['uid'],
        deleted=results['deleted'],
        failed=results['failed'],
    )
    if results['failed'] == 0:
        message = f"Successfully deleted {results['deleted']} student(s)"
    else:
        message = f"Deleted {results['deleted']}, failed {results['failed']}"
    return app_ctx.jsonify({
        'success': results['deleted'] > 0,
        'deleted': results['deleted'],
        'failed': results['failed'],
        'errors': results['errors'],
        'message': message,
    })
