import os
import sys
import uuid
import threading
import time
import json
import re
import logging

import requests
from flask import Flask, request, jsonify, send_file, Response, stream_with_context, g
from google import genai
from dotenv import load_dotenv
from werkzeug.exceptions import RequestEntityTooLarge
try:
    import sentry_sdk
except Exception:
    sentry_sdk = None
try:
    from algoliasearch.search.client import SearchClientSync
except Exception:
    SearchClientSync = None
import firebase_admin
from firebase_admin import credentials, auth, firestore

from quizhub.logging_config import configure_logging, get_logger, log_event as emit_log_event
from quizhub.repositories import system_repo
from quizhub.services import (
    admin_api_service,
    ai_api_service,
    ai_service,
    auth_service,
    exports_api_service,
    knowledge_api_service,
    leaderboard_service,
    quiz_api_service,
    quiz_rules,
    rate_limit_service,
    student_stats_service,
    students_api_service,
    tagging_service,
    tutor_api_service,
    tutor_service,
)

load_dotenv()
app = Flask(__name__)
app.secret_key = os.getenv('FLASK_SECRET_KEY', os.urandom(32).hex())
LOG_LEVEL = (os.getenv('LOG_LEVEL', 'INFO') or 'INFO').strip().upper()
configure_logging(LOG_LEVEL)
logger = get_logger()


def log_event(level, event, **fields):
    emit_log_event(logger, level, event, **fields)


def safe_int_env(name, default=0, minimum=1, maximum=100000):
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except Exception:
        value = int(default)
    return min(max(value, minimum), maximum)


def env_list(name):
    return [part.strip() for part in (os.getenv(name, '') or '').split(',') if part.strip()]


MAX_CONTENT_LENGTH = 60 * 1024 * 1024
app.config['MAX_CONTENT_LENGTH'] = MAX_CONTENT_LENGTH

# --- Gemini Setup ---
GEMINI_API_KEY = (os.getenv('GEMINI_API_KEY', '') or '').strip()
if GEMINI_API_KEY:
    try:
        gemini_client = genai.Client(api_key=GEMINI_API_KEY)
    except Exception as e:
        gemini_client = None
        logger.info(f"Gemini client disabled: {e}")
else:
    gemini_client = None
    logger.info("GEMINI_API_KEY not set; AI features are disabled.")

GENERATION_MODEL = os.getenv('GEMINI_GENERATION_MODEL', 'gemini-2.5-flash')
BULK_MODEL = os.getenv('GEMINI_BULK_MODEL', 'gemini-2.0-flash')
TAGGING_PREVIEW_MODEL = os.getenv('GEMINI_TAGGING_PREVIEW_MODEL', 'gemini-2.5-flash')
TUTOR_MODEL = os.getenv('GEMINI_TUTOR_MODEL', 'gemini-2.5-flash')
SUPPORT_MODEL = os.getenv('GEMINI_SUPPORT_MODEL', 'gemini-2.5-flash')
ANALYSIS_MODEL = os.getenv('GEMINI_ANALYSIS_MODEL', 'gemini-2.5-flash')
EMBEDDING_MODEL = os.getenv('GEMINI_EMBEDDING_MODEL', 'gemini-embedding-001')

# --- Firebase Setup ---
db = None
firebase_init_error = ''
try:
    if os.path.exists('firebase-credentials.json'):
        cred = credentials.Certificate('firebase-credentials.json')
    else:
        firebase_creds_raw = (os.getenv('FIREBASE_CREDENTIALS', '') or '').strip()
        if not firebase_creds_raw:
            raise ValueError("FIREBASE_CREDENTIALS is not set and firebase-credentials.json was not found.")
        cred = credentials.Certificate(json.loads(firebase_creds_raw))
    if not firebase_admin._apps:
        firebase_admin.initialize_app(cred)
    db = firestore.client()
except Exception as e:
    firebase_init_error = str(e)
    logger.info(f"Firebase initialization skipped: {firebase_init_error}")

# --- Algolia Setup ---
ALGOLIA_APP_ID = (os.getenv('ALGOLIA_APP_ID', '') or '').strip()
ALGOLIA_ADMIN_KEY = (os.getenv('ALGOLIA_ADMIN_KEY', '') or '').strip()
search_client = None
if ALGOLIA_APP_ID and ALGOLIA_ADMIN_KEY and SearchClientSync is not None:
    try:
        search_client = SearchClientSync(ALGOLIA_APP_ID, ALGOLIA_ADMIN_KEY)
    except Exception as e:
        logger.info(f"Algolia client disabled: {e}")

MIGRATION_TOKEN = (os.getenv('MIGRATION_TOKEN', '') or '').strip()
PLATFORM_NAME = (os.getenv('PLATFORM_NAME', 'QuizHub') or 'QuizHub').strip()
SUPPORT_CONTACT = (os.getenv('SUPPORT_CONTACT', 'the support team') or 'the support team').strip()
SUPPORT_CONTEXT_URLS = env_list('SUPPORT_CONTEXT_URLS')
QUIZ_SCHEDULE_TZ = quiz_rules.resolve_timezone((os.getenv('QUIZ_SCHEDULE_TZ', 'UTC') or 'UTC').strip())
SENTRY_ENVIRONMENT = (os.getenv('SENTRY_ENVIRONMENT', os.getenv('FLASK_ENV', 'production')) or 'production').strip()

AUTOSAVE_RATE_LIMIT_WINDOW_SECONDS = safe_int_env('AUTOSAVE_RATE_LIMIT_WINDOW_SECONDS', 60, minimum=10, maximum=3600)
AUTOSAVE_RATE_LIMIT_MAX_REQUESTS = safe_int_env('AUTOSAVE_RATE_LIMIT_MAX_REQUESTS', 10, minimum=1, maximum=1000)
AI_RATE_LIMIT_WINDOW_SECONDS = safe_int_env('AI_RATE_LIMIT_WINDOW_SECONDS', 600, minimum=10, maximum=86400)
AI_RATE_LIMIT_MAX_REQUESTS = safe_int_env('AI_RATE_LIMIT_MAX_REQUESTS', 30, minimum=1, maximum=1000)
TUTOR_RATE_LIMIT_WINDOW_SECONDS = safe_int_env('TUTOR_RATE_LIMIT_WINDOW_SECONDS', 600, minimum=10, maximum=86400)
TUTOR_RATE_LIMIT_MAX_REQUESTS = safe_int_env('TUTOR_RATE_LIMIT_MAX_REQUESTS', 40, minimum=1, maximum=1000)
SUPPORT_RATE_LIMIT_WINDOW_SECONDS = safe_int_env('SUPPORT_RATE_LIMIT_WINDOW_SECONDS', 600, minimum=10, maximum=86400)
SUPPORT_RATE_LIMIT_MAX_REQUESTS = safe_int_env('SUPPORT_RATE_LIMIT_MAX_REQUESTS', 30, minimum=1, maximum=1000)
INDEX_REPORT_RATE_LIMIT_WINDOW_SECONDS = safe_int_env('INDEX_REPORT_RATE_LIMIT_WINDOW_SECONDS', 60, minimum=10, maximum=3600)
INDEX_REPORT_RATE_LIMIT_MAX_REQUESTS = safe_int_env('INDEX_REPORT_RATE_LIMIT_MAX_REQUESTS', 20, minimum=1, maximum=1000)
TAGGING_THROTTLE_SECONDS = safe_int_env('TAGGING_THROTTLE_SECONDS', 2, minimum=0, maximum=60)
RATE_LIMIT_WINDOWS = {}
RATE_LIMIT_LOCK = threading.Lock()
RATE_LIMIT_COUNTER_COLLECTION = system_repo.RATE_LIMIT_COUNTER_COLLECTION
RATE_LIMIT_FIRESTORE_ENABLED = str(os.getenv('RATE_LIMIT_FIRESTORE_ENABLED', '1')).strip().lower() in {'1', 'true', 'yes', 'on'}

# --- In-process caches (per process, reset on restart) ---
TUTOR_RESPONSE_CACHE = {}
TUTOR_CACHE_LOCK = threading.Lock()
EMBEDDING_CACHE = {}
EMBEDDING_CACHE_LOCK = threading.Lock()
SUPPORT_CONTEXT_STATE = {}
SUPPORT_CONTEXT_LOCK = threading.Lock()
TAGGING_WORKERS = set()
TAGGING_WORKERS_LOCK = threading.Lock()

http_get = requests.get


@app.before_request
def attach_sentry_route_context():
    request_id = str(request.headers.get('X-Request-ID', '') or '').strip()[:120] or uuid.uuid4().hex
    g.request_id = request_id
    if not sentry_sdk:
        return
    try:
        scope = sentry_sdk.get_current_scope()
        scope.set_tag('request.id', request_id)
        scope.set_tag('route.path', request.path)
        scope.set_tag('route.method', request.method)
        scope.set_tag('route.endpoint', request.endpoint or '')
        scope.set_tag('route.environment', SENTRY_ENVIRONMENT or 'production')
    except Exception:
        pass


@app.after_request
def attach_request_id(response):
    request_id = str(getattr(g, 'request_id', '') or '').strip()
    if request_id:
        response.headers['X-Request-ID'] = request_id
    return response


@app.errorhandler(RequestEntityTooLarge)
def handle_request_entity_too_large(_error):
    return jsonify({'error': 'Request too large. Split large PDFs into pages before uploading.'}), 413


# =============================================
# HELPER FUNCTIONS
# =============================================

def verify_firebase_token(request):
    return auth_service.verify_firebase_token(request, auth_module=auth, logger=logger)


def claims_admin(decoded_token):
    return auth_service.claims_admin(decoded_token)


def authorize_request(request, level):
    return auth_service.authorize_request(request, level, auth_module=auth, db=db, logger=logger)


def check_rate_limit(key, limit, window_seconds):
    return rate_limit_service.check_rate_limit(
        key,
        limit,
        window_seconds,
        firestore_enabled=RATE_LIMIT_FIRESTORE_ENABLED,
        db=db,
        firestore_module=firestore,
        counter_collection=RATE_LIMIT_COUNTER_COLLECTION,
        in_memory_windows=RATE_LIMIT_WINDOWS,
        in_memory_lock=RATE_LIMIT_LOCK,
        time_module=time,
        logger=logger,
    )


def build_rate_limited_response(message, retry_after):
    response = jsonify({
        'error': message,
        'retry_after_seconds': int(max(1, retry_after)),
    })
    response.status_code = 429
    response.headers['Retry-After'] = str(int(max(1, retry_after)))
    return response


def normalize_rate_limit_key_part(value, fallback='anon', max_len=120):
    raw = str(value or '').strip().lower()
    if not raw:
        return fallback
    safe = re.sub(r'[^a-z0-9_.:@-]+', '_', raw)
    return safe[:max_len] if safe else fallback


def sanitize_int(value, default=0, min_value=0, max_value=10_000_000):
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    if parsed < min_value:
        return min_value
    if parsed > max_value:
        return max_value
    return parsed


def start_background_task(target, *args):
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


def run_post_submit_updates(uid, answers, score, question_results, quiz_subject):
    """Follow-up writes after a quiz submission; each step logs and continues on failure."""
    now_ts = time.time()
    try:
        student_stats_service.update_student_stats(
            db,
            uid,
            kind=student_stats_service.KIND_ADMIN,
            answers=answers,
            score=score,
            question_results=question_results,
            quiz_subject=quiz_subject,
            now_ts=now_ts,
            firestore_module=firestore,
        )
    except Exception as e:
        logger.error(f"Student stats update failed for {uid}: {e}")
    try:
        student_stats_service.record_question_performance(db, question_results, firestore_module=firestore)
    except Exception as e:
        logger.error(f"Question performance update failed for {uid}: {e}")
    try:
        leaderboard_service.recompute_user(db, uid, logger=logger)
        leaderboard_service.refresh_top(db, now_ts, firestore_module=firestore)
    except Exception as e:
        logger.error(f"Leaderboard refresh failed for {uid}: {e}")


def run_mock_submit_updates(uid, answers, score, question_results, quiz_subjects):
    try:
        student_stats_service.update_student_stats(
            db,
            uid,
            kind=student_stats_service.KIND_USER,
            answers=answers,
            score=score,
            question_results=question_results,
            quiz_subject=quiz_subjects,
            now_ts=time.time(),
            firestore_module=firestore,
        )
    except Exception as e:
        logger.error(f"Mock quiz stats update failed for {uid}: {e}")


def generate_ai_text(prompt_text, model=None, response_mime_type=None, extra_parts=None):
    return ai_service.generate_text(
        gemini_client,
        model or GENERATION_MODEL,
        prompt_text,
        extra_parts=extra_parts,
        config=ai_service.build_generation_config(response_mime_type=response_mime_type),
    )


def generate_ai_json(prompt_text, model=None):
    raw_text = generate_ai_text(prompt_text, model=model, response_mime_type='application/json')
    return ai_service.extract_json_payload(raw_text)


def embed_text(text):
    return ai_service.embed_text(gemini_client, EMBEDDING_MODEL, text)


def embed_query(text):
    cached = tutor_service.get_cached_embedding(EMBEDDING_CACHE, EMBEDDING_CACHE_LOCK, text)
    if cached is not None:
        return cached
    embedding = embed_text(text)
    tutor_service.set_cached_embedding(EMBEDDING_CACHE, EMBEDDING_CACHE_LOCK, text, embedding)
    return embedding


def generate_tag_reply(model, prompt_text, extra_parts):
    return generate_ai_text(prompt_text, model=model, extra_parts=extra_parts)


def process_tagging_batch(job_id):
    return tagging_service.process_next_batch(
        db,
        job_id,
        generate_reply=generate_tag_reply,
        http_get=http_get,
        firestore_module=firestore,
        time_module=time,
        logger=logger,
    )


def _run_tagging_worker(job_id):
    try:
        outcome, batches = tagging_service.run_job(
            db,
            job_id,
            generate_reply=generate_tag_reply,
            http_get=http_get,
            firestore_module=firestore,
            time_module=time,
            logger=logger,
            throttle_seconds=TAGGING_THROTTLE_SECONDS,
        )
        log_event(logging.INFO, 'tagging_job_stopped', job_id=job_id, status=outcome.get('status'), batches=batches)
    except Exception as e:
        logger.error(f"Auto-tag worker for {job_id} crashed: {e}")
    finally:
        with TAGGING_WORKERS_LOCK:
            TAGGING_WORKERS.discard(job_id)


def start_tagging_worker(job_id):
    """Start a daemon worker unless one is already running for the job in this process."""
    with TAGGING_WORKERS_LOCK:
        if job_id in TAGGING_WORKERS:
            return False
        TAGGING_WORKERS.add(job_id)
    start_background_task(_run_tagging_worker, job_id)
    return True


# =============================================
# ROUTE IMPLEMENTATIONS
# =============================================

def quiz_validate_impl():
    return quiz_api_service.validate_quiz(sys.modules[__name__], request)


def quiz_autosave_impl():
    return quiz_api_service.autosave_quiz(sys.modules[__name__], request)


def quiz_submit_impl():
    return quiz_api_service.submit_quiz(sys.modules[__name__], request)


def leaderboard_impl():
    return quiz_api_service.get_leaderboard(sys.modules[__name__], request)


def quizzes_list_impl():
    return quiz_api_service.list_quizzes(sys.modules[__name__], request)


def mock_quiz_create_impl():
    return quiz_api_service.create_mock_quiz(sys.modules[__name__], request)


def mock_quiz_submit_impl(quiz_id):
    return quiz_api_service.submit_mock_quiz(sys.modules[__name__], request, quiz_id)


def students_list_impl():
    return students_api_service.list_students(sys.modules[__name__], request)


def student_detail_impl(student_id):
    return students_api_service.get_student(sys.modules[__name__], request, student_id)


def students_bulk_delete_impl():
    return students_api_service.bulk_delete_students(sys.modules[__name__], request)


def find_repeated_impl():
    return admin_api_service.find_repeated_questions(sys.modules[__name__], request)


def mock_questions_sync_impl():
    return admin_api_service.sync_mock_questions(sys.modules[__name__], request)


def sync_algolia_impl():
    return admin_api_service.sync_algolia(sys.modules[__name__], request)


def migrate_search_tokens_impl():
    return admin_api_service.migrate_search_tokens(sys.modules[__name__], request)


def leaderboard_recompute_impl(uid):
    return admin_api_service.recompute_leaderboard_user(sys.modules[__name__], request, uid)


def leaderboard_rebuild_impl():
    return admin_api_service.rebuild_leaderboard(sys.modules[__name__], request)


def leaderboard_finalize_impl():
    return admin_api_service.finalize_leaderboard(sys.modules[__name__], request)


def report_index_impl():
    return admin_api_service.report_missing_index(sys.modules[__name__], request)


def ai_generate_impl():
    return ai_api_service.generate_questions(sys.modules[__name__], request)


def ai_bulk_generate_impl():
    return ai_api_service.bulk_generate(sys.modules[__name__], request)


def ai_generate_mcq_impl():
    return ai_api_service.generate_from_text(sys.modules[__name__], request)


def ai_auto_tag_preview_impl():
    return ai_api_service.auto_tag_preview(sys.modules[__name__], request)


def ai_deduplicate_preview_impl():
    return ai_api_service.deduplicate_preview(sys.modules[__name__], request)


def auto_tag_start_impl():
    return ai_api_service.start_tagging_job(sys.modules[__name__], request)


def auto_tag_process_impl():
    return ai_api_service.process_tagging_batch(sys.modules[__name__], request)


def auto_tag_status_impl():
    return ai_api_service.tagging_job_status(sys.modules[__name__], request)


def auto_tag_pause_impl():
    return ai_api_service.pause_tagging_job(sys.modules[__name__], request)


def auto_tag_resume_impl():
    return ai_api_service.resume_tagging_job(sys.modules[__name__], request)


def tutor_impl():
    return tutor_api_service.tutor(sys.modules[__name__], request)


def tutor_feedback_impl():
    return tutor_api_service.tutor_feedback(sys.modules[__name__], request)


def chat_tutor_impl():
    return tutor_api_service.chat_tutor(sys.modules[__name__], request)


def tutor_analytics_impl():
    return tutor_api_service.tutor_analytics(sys.modules[__name__], request)


def chat_support_impl():
    return tutor_api_service.chat_support(sys.modules[__name__], request)


def knowledge_analyze_impl():
    return knowledge_api_service.analyze_document(sys.modules[__name__], request)


def knowledge_save_impl():
    return knowledge_api_service.save_document(sys.modules[__name__], request)


def knowledge_documents_impl():
    return knowledge_api_service.list_documents(sys.modules[__name__], request)


def knowledge_stats_impl():
    return knowledge_api_service.knowledge_stats(sys.modules[__name__], request)


def knowledge_delete_impl(doc_id):
    return knowledge_api_service.delete_document(sys.modules[__name__], request, doc_id)


def knowledge_split_pdf_impl():
    return knowledge_api_service.split_pdf(sys.modules[__name__], request)


def knowledge_extract_text_impl():
    return knowledge_api_service.extract_pdf_text(sys.modules[__name__], request)


def knowledge_detect_chapter_impl():
    return knowledge_api_service.detect_chapter(sys.modules[__name__], request)


def result_card_pdf_impl(quiz_id):
    return exports_api_service.export_result_card(sys.modules[__name__], request, quiz_id)


def export_questions_impl():
    return exports_api_service.export_questions(sys.modules[__name__], request)


@app.route('/healthz')
def healthz():
    return jsonify({'status': 'ok'}), 200


from quizhub.blueprints import ALL_BLUEPRINTS  # noqa: E402

for _blueprint in ALL_BLUEPRINTS:
    app.register_blueprint(_blueprint)
