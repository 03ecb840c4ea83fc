from functools import wraps
from flask import current_app, jsonify, request, session
from models import Log, Result, User, db
from exam_status import exam_status
from scoring import rank_results


def add_log(who_id, email, role, event_type, meta=None):
    """Helper function to add log entries"""
    entry = Log(who_user_id=who_id, email=email, role=role, event_type=event_type, meta=meta or {})
    db.session.add(entry)
    db.session.commit()

def audit(event_type, meta=None):
    """add_log on behalf of whoever owns the current session"""
    add_log(session.get('user_id'), session.get('email'), session.get('role'), event_type, meta)

def start_session(user):
    session.clear()
    session['user_id'] = user.id
    session['email'] = user.email
    session['role'] = user.role
    session['student_id'] = user.student_id

def current_user():
    uid = session.get('user_id')
    return db.session.get(User, uid) if uid else None

def paper_store():
    return current_app.extensions['paper_store']

def payload():
    """JSON body, falling back to form fields"""
    return request.get_json(silent=True) or request.form.to_dict() or {}

def login_required(fn):
    """Decorator for routes open to any logged-in user"""
    @wraps(fn)
    def wrapper(*a, **kw):
        if not session.get('user_id'):
            return jsonify({'ok': False, 'msg': 'not_logged_in'}), 401
        return fn(*a, **kw)
    return wrapper

def admin_required(fn):
    """Decorator to protect admin routes"""
    @wraps(fn)
    def wrapper(*a, **kw):
        if not session.get('user_id'):
            return jsonify({'ok': False, 'msg': 'not_logged_in'}), 401
        if session.get('role') != 'admin':
            return jsonify({'ok': False, 'msg': 'admin_only'}), 403
        return fn(*a, **kw)
    return wrapper

def student_required(fn):
    """Decorator to protect student routes"""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not session.get('user_id'):
            return jsonify({'ok': False, 'msg': 'not_logged_in'}), 401
        if session.get('role') != 'student' or not session.get('student_id'):
            return jsonify({'ok': False, 'msg': 'student_only'}), 403
        return fn(*args, **kwargs)
    return wrapper

# ===== JSON shapes =====

def _iso(value):
    return value.isoformat() if value else None

def user_to_dict(u):
    return {
        'id': u.id,
        'email': u.email,
        'name': u.name,
        'role': u.role,
        'isAdmin': u.role == 'admin',
        'studentId': u.student_id,
        'profileImage': u.profile_image,
        'notificationPreferences': {
            'email': u.email_notifications,
            'sms': u.sms_notifications,
            'emailExamResults': u.email_exam_results,
            'emailUpcomingExams': u.email_upcoming_exams,
            'smsExamResults': u.sms_exam_results,
            'smsUpcomingExams': u.sms_upcoming_exams,
        },
    }

def student_to_dict(s):
    return {
        'id': s.id,
        'name': s.name,
        'email': s.email,
        'class': s.class_name,
        'enrollmentDate': _iso(s.enrollment_date),
        'phone': s.phone,
        'address': s.address,
        'guardianName': s.guardian_name,
        'guardianPhone': s.guardian_phone,
        'profileImage': s.profile_image,
        'hasLogin': s.user is not None,
    }

def exam_to_dict(e, now):
    # status is resolved against the caller's clock read, never taken from the row
    return {
        'id': e.id,
        'name': e.name,
        'subject': e.subject,
        'date': _iso(e.date),
        'duration': e.duration,
        'totalMarks': e.total_marks,
        'status': exam_status(e, now),
        'description': e.description,
    }

def result_to_dict(r, now, rank=None, total=None):
    out = {
        'id': r.id,
        'studentId': r.student_id,
        'examId': r.exam_id,
        'score': r.score,
        'percentage': r.percentage,
        'submittedAt': _iso(r.submitted_at),
        'student': {'id': r.student.id, 'name': r.student.name, 'email': r.student.email, 'class': r.student.class_name} if r.student else None,
        'exam': exam_to_dict(r.exam, now) if r.exam else None,
    }
    if rank is not None:
        out['rank'] = rank
        out['totalParticipants'] = total
    return out

def ranked_results(results, now):
    """Serialize results with rank and totalParticipants computed per exam."""
    ranks = {}
    for exam_id in {r.exam_id for r in results}:
        peers = Result.query.filter_by(exam_id=exam_id).all()
        ranks.update(rank_results(peers))
    out = []
    for r in results:
        rank, total = ranks.get(r.id, (None, None))
        out.append(result_to_dict(r, now, rank, total))
    return out
