from flask import Blueprint

exports_bp = Blueprint('exports_api', __name__)


@exports_bp.route('/api/results/<quiz_id>/pdf', methods=['GET'])
def export_result_card(quiz_id):
    from quizhub import runtime

    return runtime.result_card_pdf_impl(quiz_id)


@exports_bp.route('/api/exports/questions', methods=['POST'])
def export_questions():
    from quizhub import runtime

    return runtime.export_questions_impl()
