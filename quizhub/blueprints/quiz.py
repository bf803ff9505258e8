from flask import Blueprint

quiz_bp = Blueprint('quiz_api', __name__)


@quiz_bp.route('/api/quiz/validate', methods=['POST'])
def validate_quiz():
    from quizhub import runtime

    return runtime.quiz_validate_impl()


@quiz_bp.route('/api/quiz/autosave', methods=['POST'])
def autosave_quiz():
    from quizhub import runtime

    return runtime.quiz_autosave_impl()


@quiz_bp.route('/api/quiz/submit', methods=['POST'])
def submit_quiz():
    from quizhub import runtime

    return runtime.quiz_submit_impl()


@quiz_bp.route('/api/leaderboard', methods=['GET'])
def get_leaderboard():
    from quizhub import runtime

    return runtime.leaderboard_impl()


@quiz_bp.route('/api/quizzes', methods=['GET'])
def list_quizzes():
    from quizhub import runtime

    return runtime.quizzes_list_impl()


@quiz_bp.route('/api/quizzes/mock', methods=['POST'])
def create_mock_quiz():
    from quizhub import runtime

    return runtime.mock_quiz_create_impl()


@quiz_bp.route('/api/quizzes/mock/<quiz_id>/submit', methods=['POST'])
def submit_mock_quiz(quiz_id):
    from quizhub import runtime

    return runtime.mock_quiz_submit_impl(quiz_id)
