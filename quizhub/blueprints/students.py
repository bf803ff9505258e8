from flask import Blueprint

students_bp = Blueprint('students_api', __name__)


@students_bp.route('/api/students', methods=['GET'])
def list_students():
    from quizhub import runtime

    return runtime.students_list_impl()


@students_bp.route('/api/students/<student_id>', methods=['GET'])
def get_student(student_id):
    from quizhub import runtime

    return runtime.student_detail_impl(student_id)


@students_bp.route('/api/students/bulk-delete', methods=['POST'])
def bulk_delete_students():
    from quizhub import runtime

    return runtime.students_bulk_delete_impl()
