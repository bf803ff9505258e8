"""Business logic handlers for PDF and DOCX exports."""

from quizhub.repositories import attempts_repo, quizzes_repo, users_repo
from quizhub.services import export_service

EXPORT_FORMATS = {'pdf', 'docx'}


def _truthy_arg(value, default=True):
    if value is None:
        return default
    return str(value).strip().lower() in {'1', 'true', 'yes', 'on'}


def _load_quiz(db, quiz_id):
    snapshot = quizzes_repo.get_quiz(db, quiz_id)
    if snapshot.exists:
        return snapshot.to_dict() or {}
    snapshot = db.collection(quizzes_repo.USER_QUIZZES_COLLECTION).document(quiz_id).get()
    if snapshot.exists:
        return snapshot.to_dict() or {}
    return None


def export_result_card(app_ctx, request, quiz_id):
    user_ctx, auth_error = app_ctx.authorize_request(request, 'user')
    if auth_error:
        message, status = auth_error
        return app_ctx.jsonify({'error': message}), status
    user_id = str(request.args.get('userId', '') or user_ctx['uid']).strip()
    if user_id != user_ctx['uid'] and not user_ctx['isAdmin']:
        return app_ctx.jsonify({'error': 'Forbidden'}), 403
    if not export_service.REPORTLAB_AVAILABLE:
        return app_ctx.jsonify({
            'error': 'PDF export is currently unavailable on this server. Install dependency: pip install reportlab'
        }), 503

    try:
        result_snapshot = attempts_repo.result_ref(app_ctx.db, user_id, quiz_id).get()
        if not result_snapshot.exists:
            return app_ctx.jsonify({'error': 'Result not found'}), 404
        quiz = _load_quiz(app_ctx.db, quiz_id)
        if quiz is None:
            return app_ctx.jsonify({'error': 'Quiz not found'}), 404
        user_snapshot = users_repo.get_doc(app_ctx.db, user_id)
        student_name = (user_snapshot.to_dict() or {}).get('fullName') if user_snapshot.exists else ''

        summary = export_service.build_result_summary(result_snapshot.to_dict() or {}, quiz, student_name)
        pdf_io = export_service.build_result_card_pdf(summary, app_ctx.time.time())
        return app_ctx.send_file(
            pdf_io,
            mimetype=export_service.PDF_MIME_TYPE,
            as_attachment=True,
            download_name=export_service.safe_filename(summary['title'], 'Result.pdf'),
        )
    except Exception as e:
        app_ctx.logger.error(f"Error exporting result card for {user_id} on quiz {quiz_id}: {e}")
        return app_ctx.jsonify({'error': 'Could not export result card'}), 500


def export_questions(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        message, status = auth_error
        return app_ctx.jsonify({'error': message}), status
    data = request.get_json(silent=True) or {}
    questions = data.get('questions')
    if not isinstance(questions, list):
        return app_ctx.jsonify({'error': 'Questions array is required'}), 400
    if len(questions) > export_service.MAX_EXPORT_QUESTIONS:
        return app_ctx.jsonify({'error': f"At most {export_service.MAX_EXPORT_QUESTIONS} questions can be exported"}), 400
    export_format = str(data.get('format', '') or 'pdf').strip().lower()
    if export_format not in EXPORT_FORMATS:
        return app_ctx.jsonify({'error': 'format must be pdf or docx'}), 400
    title = str(data.get('title', '') or '').strip()[:200] or 'Question Bank'
    include_answers = _truthy_arg(data.get('includeAnswers'))
    questions = [question for question in questions if isinstance(question, dict)]

    try:
        if export_format == 'docx':
            file_io = export_service.build_questions_docx(title, questions, include_answers=include_answers)
            mimetype = export_service.DOCX_MIME_TYPE
        else:
            if not export_service.REPORTLAB_AVAILABLE:
                return app_ctx.jsonify({
                    'error': 'PDF export is currently unavailable on this server. Install dependency: pip install reportlab'
                }), 503
            file_io = export_service.build_questions_pdf(title, questions, include_answers=include_answers)
            mimetype = export_service.PDF_MIME_TYPE
        return app_ctx.send_file(
            file_io,
            mimetype=mimetype,
            as_attachment=True,
            download_name=export_service.safe_filename(title, f"questions.{export_format}"),
        )
    except Exception as e:
        app_ctx.logger.error(f"Error exporting questions as {export_format}: {e}")
        return app_ctx.jsonify({'error': 'Could not export questions'}), 500
