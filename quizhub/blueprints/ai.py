from flask import Blueprint

ai_bp = Blueprint('ai_api', __name__)


@ai_bp.route('/api/ai/generate', methods=['POST'])
def generate_questions():
    from quizhub import runtime

    return runtime.ai_generate_impl()


@ai_bp.route('/api/ai/bulk-generate', methods=['POST'])
def bulk_generate():
    from quizhub import runtime

    return runtime.ai_bulk_generate_impl()


@ai_bp.route('/api/ai/generate-mcq', methods=['POST'])
def generate_from_text():
    from quizhub import runtime

    return runtime.ai_generate_mcq_impl()


@ai_bp.route('/api/ai/auto-tag', methods=['POST'])
def auto_tag_preview():
    from quizhub import runtime

    return runtime.ai_auto_tag_preview_impl()


@ai_bp.route('/api/ai/deduplicate-preview', methods=['POST'])
def deduplicate_preview():
    from quizhub import runtime

    return runtime.ai_deduplicate_preview_impl()


@ai_bp.route('/api/ai/auto-tag/start', methods=['POST'])
def start_tagging_job():
    from quizhub import runtime

    return runtime.auto_tag_start_impl()


@ai_bp.route('/api/ai/auto-tag/process', methods=['POST'])
def process_tagging_batch():
    from quizhub import runtime

    return runtime.auto_tag_process_impl()


@ai_bp.route('/api/ai/auto-tag/status', methods=['GET'])
def tagging_job_status():
    from quizhub import runtime

    return runtime.auto_tag_status_impl()


@ai_bp.route('/api/ai/auto-tag/pause', methods=['POST'])
def pause_tagging_job():
    from quizhub import runtime

    return runtime.auto_tag_pause_impl()


@ai_bp.route('/api/ai/auto-tag/resume', methods=['POST'])
def resume_tagging_job():
    from quizhub import runtime

    return runtime.auto_tag_resume_impl()
