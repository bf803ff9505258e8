from flask import Blueprint

admin_bp = Blueprint('admin_api', __name__)


@admin_bp.route('/api/admin/mock-questions/find-repeated', methods=['POST'])
def find_repeated_questions():
    from quizhub import runtime

    return runtime.find_repeated_impl()


@admin_bp.route('/api/admin/mock-questions/sync', methods=['POST'])
def sync_mock_questions():
    from quizhub import runtime

    return runtime.mock_questions_sync_impl()


@admin_bp.route('/api/admin/sync-algolia', methods=['POST'])
def sync_algolia():
    from quizhub import runtime

    return runtime.sync_algolia_impl()


@admin_bp.route('/api/admin/migrate-search-tokens', methods=['GET', 'POST'])
def migrate_search_tokens():
    from quizhub import runtime

    return runtime.migrate_search_tokens_impl()


@admin_bp.route('/api/admin/leaderboard/recompute/<uid>', methods=['POST'])
def recompute_leaderboard_user(uid):
    from quizhub import runtime

    return runtime.leaderboard_recompute_impl(uid)


@admin_bp.route('/api/admin/leaderboard/rebuild', methods=['POST'])
def rebuild_leaderboard():
    from quizhub import runtime

    return runtime.leaderboard_rebuild_impl()


@admin_bp.route('/api/admin/leaderboard/finalize', methods=['POST'])
def finalize_leaderboard():
    from quizhub import runtime

    return runtime.leaderboard_finalize_impl()


@admin_bp.route('/api/admin/report-index', methods=['POST'])
def report_missing_index():
    from quizhub import runtime

    return runtime.report_index_impl()
