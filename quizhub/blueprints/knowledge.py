from flask import Blueprint

knowledge_bp = Blueprint('knowledge_api', __name__)


@knowledge_bp.route('/api/knowledge/analyze', methods=['POST'])
def analyze_document():
    from quizhub import runtime

    return runtime.knowledge_analyze_impl()


@knowledge_bp.route('/api/knowledge/save', methods=['POST'])
def save_document():
    from quizhub import runtime

    return runtime.knowledge_save_impl()


@knowledge_bp.route('/api/knowledge/documents', methods=['GET'])
def list_documents():
    from quizhub import runtime

    return runtime.knowledge_documents_impl()


@knowledge_bp.route('/api/knowledge/documents/<doc_id>', methods=['DELETE'])
def delete_document(doc_id):
    from quizhub import runtime

    return runtime.knowledge_delete_impl(doc_id)


@knowledge_bp.route('/api/knowledge/stats', methods=['GET'])
def knowledge_stats():
    from quizhub import runtime

    return runtime.knowledge_stats_impl()


@knowledge_bp.route('/api/knowledge/split-pdf', methods=['POST'])
def split_pdf():
    from quizhub import runtime

    return runtime.knowledge_split_pdf_impl()


@knowledge_bp.route('/api/knowledge/extract-text', methods=['POST'])
def extract_pdf_text():
    from quizhub import runtime

    return runtime.knowledge_extract_text_impl()


@knowledge_bp.route('/api/knowledge/detect-chapter', methods=['POST'])
def detect_chapter():
    from quizhub import runtime

    return runtime.knowledge_detect_chapter_impl()
