from .quiz import quiz_bp
from .students import students_bp
from .admin import admin_bp
from .ai import ai_bp
from .tutor import tutor_bp
from .knowledge import knowledge_bp
from .exports import exports_bp

ALL_BLUEPRINTS = (quiz_bp, students_bp, admin_bp, ai_bp, tutor_bp, knowledge_bp, exports_bp)

__all__ = ['quiz_bp', 'students_bp', 'admin_bp', 'ai_bp', 'tutor_bp', 'knowledge_bp', 'exports_bp', 'ALL_BLUEPRINTS']
