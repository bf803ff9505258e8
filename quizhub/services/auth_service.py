"""Firebase token verification and role resolution for API handlers."""

from quizhub.repositories import users_repo

ACCESS_LEVELS = ('user', 'staff', 'admin', 'superadmin')
FORBIDDEN_MESSAGES = {
    'staff': 'Insufficient permissions. Staff access required.',
    'admin': 'Insufficient permissions. Admin access required.',
    'superadmin': 'Insufficient permissions. Superadmin access required.',
}


def extract_bearer_token(request):
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return ''
    return auth_header.split('Bearer ', 1)[1].strip()


def verify_firebase_token(request, auth_module, logger):
    """Return the decoded Firebase token dict, or None when invalid/missing."""
    token = extract_bearer_token(request)
    if not token:
        return None
    try:
        return auth_module.verify_id_token(token)
    except Exception as exc:
        if logger is not None:
            logger.info(f"Token verification failed: {exc}")
        return None


def _truthy_flag(value):
    return value is True or value == 'true'


def resolve_role_flags(user_data):
    user_data = user_data or {}
    role = user_data.get('role')
    is_superadmin = _truthy_flag(user_data.get('superadmin')) or role == 'superadmin'
    is_admin = is_superadmin or _truthy_flag(user_data.get('admin')) or role == 'admin'
    subjects = user_data.get('subjects')
    has_subjects = isinstance(subjects, (list, dict)) and len(subjects) > 0
    is_teacher = role == 'teacher' or has_subjects
    return {
        'role': role if isinstance(role, str) and role else 'student',
        'isSuperadmin': is_superadmin,
        'isAdmin': is_admin,
        'isTeacher': is_teacher,
        'isStaff': is_admin or is_teacher,
    }


def satisfies_level(flags, level):
    if level == 'superadmin':
        return flags['isSuperadmin']
    if level == 'admin':
        return flags['isAdmin']
    if level == 'staff':
        return flags['isStaff']
    return True


def claims_admin(decoded_token):
    """Custom-claim check used by endpoints that trust the token alone."""
    if not decoded_token:
        return False
    return decoded_token.get('role') == 'admin' or decoded_token.get('admin') is True


def authorize_request(request, level, *, auth_module, db, logger):
    """Return ``(user_context, None)`` or ``(None, (message, status))``."""
    if level not in ACCESS_LEVELS:
        raise ValueError(f"Unknown access level: {level}")
    decoded_token = verify_firebase_token(request, auth_module, logger)
    if not decoded_token:
        return None, ('Unauthorized', 401)
    if db is None:
        return None, ('Database not available', 503)
    uid = decoded_token['uid']
    snapshot = users_repo.get_doc(db, uid)
    if not snapshot.exists:
        return None, ('User not found in database', 403)
    user_data = snapshot.to_dict() or {}
    flags = resolve_role_flags(user_data)
    if not satisfies_level(flags, level):
        return None, (FORBIDDEN_MESSAGES[level], 403)
    context = {'uid': uid, 'email': decoded_token.get('email', ''), 'user': user_data}
    context.update(flags)
    return context, None
