from flask import Blueprint

tutor_bp = Blueprint('tutor_api', __name__)


@tutor_bp.route('/api/tutor', methods=['POST'])
def tutor():
    from quizhub import runtime

    return runtime.tutor_impl()


@tutor_bp.route('/api/tutor/feedback', methods=['POST'])
def tutor_feedback():
    from quizhub import runtime

    return runtime.tutor_feedback_impl()


@tutor_bp.route('/api/admin/chat-tutor', methods=['POST'])
def chat_tutor():
    from quizhub import runtime

    return runtime.chat_tutor_impl()


@tutor_bp.route('/api/admin/tutor-analytics', methods=['GET'])
def tutor_analytics():
    from quizhub import runtime

    return runtime.tutor_analytics_impl()


@tutor_bp.route('/api/chat-support', methods=['POST'])
def chat_support():
    from quizhub import runtime

    return runtime.chat_support_impl()
