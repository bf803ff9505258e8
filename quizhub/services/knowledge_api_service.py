"""Business logic handlers for knowledge base ingestion APIs."""

from quizhub.repositories import knowledge_repo
from quizhub.services import knowledge_service, pdf_service

DEFAULT_ANALYZE_MIME_TYPE = 'image/jpeg'


def _auth_failure(app_ctx, auth_error):
    message, status = auth_error
    return app_ctx.jsonify({'error': message}), status


def analyze_document(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    file_data = str(data.get('fileData', '') or '')
    mime_type = str(data.get('mimeType', '') or DEFAULT_ANALYZE_MIME_TYPE).strip()
    if not file_data:
        return app_ctx.jsonify({'error': 'No file data provided'}), 400
    if len(file_data) > knowledge_service.MAX_INLINE_BASE64_CHARS:
        return app_ctx.jsonify({'error': 'File too large for direct analysis. Split the PDF into pages first.'}), 413
    if app_ctx.gemini_client is None:
        return app_ctx.jsonify({'error': 'AI service is not configured'}), 503

    try:
        file_bytes = pdf_service.decode_base64_payload(file_data)
    except pdf_service.PdfInputError as e:
        return app_ctx.jsonify({'error': str(e)}), 400
    try:
        result = knowledge_service.analyze_page(app_ctx.gemini_client, app_ctx.ANALYSIS_MODEL, file_bytes, mime_type)
        return app_ctx.jsonify({'success': True, 'data': result})
    except ValueError as e:
        app_ctx.logger.warning(f"Document analysis returned unusable JSON: {e}")
        return app_ctx.jsonify({'error': str(e)}), 502
    except Exception as e:
        app_ctx.logger.error(f"Document analysis failed: {e}")
        return app_ctx.jsonify({'error': 'Analysis failed', 'details': str(e)}), 500


def save_document(app_ctx, request):
    user_ctx, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    text = str(data.get('text', '') or '').strip()
    if not text:
        return app_ctx.jsonify({'error': 'Text content is required'}), 400
    metadata = knowledge_service.clean_metadata(data.get('metadata'))
    if not metadata['subject']:
        return app_ctx.jsonify({'error': 'metadata.subject is required'}), 400
    if app_ctx.gemini_client is None:
        return app_ctx.jsonify({'error': 'AI service is not configured'}), 503

    try:
        doc_id = knowledge_service.save_page(
            app_ctx.db,
            app_ctx.embed_text,
            text=text,
            description=str(data.get('description', '') or '').strip(),
            chapter=str(data.get('chapter', '') or '').strip(),
            page_number=str(data.get('pageNumber', '') or data.get('page_number', '') or '').strip(),
            file_name=str(data.get('fileName', '') or '').strip(),
            metadata=metadata,
            now_ts=app_ctx.time.time(),
        )
    except Exception as e:
        app_ctx.logger.error(f"Failed to save knowledge page: {e}")
        return app_ctx.jsonify({'error': 'Failed to save document', 'details': str(e)}), 500

    app_ctx.log_event(
        app_ctx.logging.INFO,
        'knowledge_page_saved',
        doc_id=doc_id,
        subject=metadata['subject'],
        doc_type=metadata['type'],
        uid=user_ctx['uid'],
    )
    return app_ctx.jsonify({'success': True, 'id': doc_id})


def list_documents(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    limit = app_ctx.sanitize_int(
        request.args.get('limit'),
        knowledge_service.DEFAULT_PAGE_SIZE,
        1,
        knowledge_service.MAX_PAGE_SIZE,
    )
    try:
        payload = knowledge_service.list_documents(
            app_ctx.db,
            limit=limit,
            subject=str(request.args.get('subject', '') or '').strip(),
            doc_type=str(request.args.get('type', '') or '').strip(),
            chapter=str(request.args.get('chapter', '') or '').strip(),
            start_after_id=str(request.args.get('startAfter', '') or '').strip(),
        )
        payload['success'] = True
        return app_ctx.jsonify(payload)
    except Exception as e:
        app_ctx.logger.error(f"Failed to list knowledge documents: {e}")
        return app_ctx.jsonify({'error': 'Failed to fetch documents'}), 500


def knowledge_stats(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    try:
        return app_ctx.jsonify({'success': True, 'stats': knowledge_service.collection_stats(app_ctx.db)})
    except Exception as e:
        app_ctx.logger.error(f"Failed to compute knowledge stats: {e}")
        return app_ctx.jsonify({'error': 'Failed to fetch stats'}), 500


def delete_document(app_ctx, request, doc_id):
    user_ctx, auth_error = app_ctx.authorize_request(request, 'admin')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    doc_id = str(doc_id or '').strip()
    if not doc_id:
        return app_ctx.jsonify({'error': 'Document ID is required'}), 400
    try:
        if not knowledge_repo.chunk_ref(app_ctx.db, doc_id).get().exists:
            return app_ctx.jsonify({'error': 'Document not found'}), 404
        knowledge_repo.delete_chunk(app_ctx.db, doc_id)
    except Exception as e:
        app_ctx.logger.error(f"Failed to delete knowledge document {doc_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to delete document'}), 500
    app_ctx.log_event(app_ctx.logging.INFO, 'knowledge_page_deleted', doc_id=doc_id, uid=user_ctx['uid'])
    return app_ctx.jsonify({'success': True})


def split_pdf(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    try:
        pages = pdf_service.split_pages(pdf_service.decode_base64_payload(data.get('pdfBase64')))
    except pdf_service.PdfInputError as e:
        return app_ctx.jsonify({'error': str(e)}), 400
    except Exception as e:
        app_ctx.logger.error(f"PDF split failed: {e}")
        return app_ctx.jsonify({'error': 'Failed to split PDF'}), 500
    return app_ctx.jsonify({'success': True, 'pages': pages, 'totalPages': len(pages)})


def extract_pdf_text(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    try:
        text, page_count = pdf_service.extract_text(
            pdf_service.decode_base64_payload(data.get('pdfBase64') or data.get('fileData'))
        )
    except pdf_service.PdfInputError as e:
        return app_ctx.jsonify({'error': str(e)}), 400
    except Exception as e:
        app_ctx.logger.error(f"PDF text extraction failed: {e}")
        return app_ctx.jsonify({'error': 'Failed to extract text'}), 500
    return app_ctx.jsonify({'success': True, 'text': text, 'totalPages': page_count})


def detect_chapter(app_ctx, request):
    _, auth_error = app_ctx.authorize_request(request, 'staff')
    if auth_error:
        return _auth_failure(app_ctx, auth_error)
    data = request.get_json(silent=True) or {}
    if not data.get('image'):
        return app_ctx.jsonify({'error': 'Image is required'}), 400
    if app_ctx.gemini_client is None:
        return app_ctx.jsonify({'error': 'AI service is not configured'}), 503
    try:
        image_bytes = pdf_service.decode_base64_payload(data.get('image'))
    except pdf_service.PdfInputError as e:
        return app_ctx.jsonify({'error': str(e)}), 400
    try:
        result = knowledge_service.detect_chapter_start(
            app_ctx.gemini_client,
            app_ctx.ANALYSIS_MODEL,
            image_bytes,
            str(data.get('mimeType', '') or DEFAULT_ANALYZE_MIME_TYPE).strip(),
        )
        return app_ctx.jsonify(result)
    except Exception as e:
        app_ctx.logger.error(f"Chapter detection failed: {e}")
        return app_ctx.jsonify({'error': 'Chapter detection failed'}), 500
