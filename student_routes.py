from datetime import datetime
from flask import Blueprint, jsonify, session
from werkzeug.security import check_password_hash
from models import User, Student, Exam, Result, db
from schemas import LoginIn, ProfilePatch, NotificationPrefsIn
from exam_status import COMPLETED, exam_status
from scoring import average_percentage
from utils import (add_log, audit, start_session, current_user, payload, student_required,
                   user_to_dict, student_to_dict, exam_to_dict, ranked_results)

student_bp = Blueprint('student', __name__)

def _current_student():
    return db.session.get(Student, session.get('student_id'))

def _my_results(student_id, now):
    results = (Result.query.filter_by(student_id=student_id)
               .order_by(Result.submitted_at.desc(), Result.id.desc()).all())
    return ranked_results(results, now)

def _open_exams(now):
    exams = Exam.query.order_by(Exam.date.asc()).all()
    return [exam_to_dict(e, now) for e in exams if exam_status(e, now) != COMPLETED]

@student_bp.route('/api/auth/student/login', methods=['POST'])
def student_login():
    creds = LoginIn.model_validate(payload())
    student = Student.query.filter_by(email=creds.email).first()
    if not student or not student.password_hash or not check_password_hash(student.password_hash, creds.password):
        add_log(None, creds.email, 'student', 'student_login_failed', {})
        return jsonify({'ok': False, 'msg': 'invalid_credentials'}), 401
    user = student.user
    if user is None:
        # every student with a password gets a login account
        user = User(email=student.email, name=student.name, role='student',
                    password_hash=student.password_hash)
        student.user = user
        db.session.commit()
    start_session(user)
    add_log(user.id, user.email, 'student', 'student_login', {'student_id': student.id})
    return jsonify({'ok': True, 'user': user_to_dict(user), 'student': student_to_dict(student)})

@student_bp.route('/api/student/dashboard', methods=['GET'])
@student_required
def api_student_dashboard():
    student = _current_student()
    if not student:
        return jsonify({'ok': False, 'msg': 'student_not_found'}), 404
    now = datetime.utcnow()
    history = _my_results(student.id, now)
    ranks = [r['rank'] for r in history if r.get('rank') is not None]
    return jsonify({'ok': True, 'dashboard': {
        'student': student_to_dict(student),
        'totalExams': len(history),
        'averageScore': average_percentage(student.results),
        'bestRank': min(ranks) if ranks else None,
        'availableExams': _open_exams(now),
        'examHistory': history,
    }})

@student_bp.route('/api/student/exams', methods=['GET'])
@student_required
def api_student_exams():
    return jsonify({'ok': True, 'exams': _open_exams(datetime.utcnow())})

@student_bp.route('/api/student/results', methods=['GET'])
@student_required
def api_student_results():
    return jsonify({'ok': True, 'results': _my_results(session.get('student_id'), datetime.utcnow())})

@student_bp.route('/api/student/profile', methods=['GET'])
@student_required
def api_student_profile():
    student = _current_student()
    user = current_user()
    if not student or not user:
        return jsonify({'ok': False, 'msg': 'student_not_found'}), 404
    return jsonify({'ok': True, 'student': student_to_dict(student), 'user': user_to_dict(user)})

@student_bp.route('/api/student/profile', methods=['PUT'])
@student_required
def api_update_student_profile():
    student = _current_student()
    user = current_user()
    if not student or not user:
        return jsonify({'ok': False, 'msg': 'student_not_found'}), 404
    changes = ProfilePatch.model_validate(payload()).model_dump(exclude_unset=True)
    for field, value in changes.items():
        if field == 'name' and value is None:
            continue
        setattr(student, field, value)
    user.name = student.name
    user.profile_image = student.profile_image
    db.session.commit()
    audit('update_profile', {'student_id': student.id, 'fields': sorted(changes)})
    return jsonify({'ok': True, 'student': student_to_dict(student), 'user': user_to_dict(user)})

@student_bp.route('/api/student/notifications', methods=['PUT'])
@student_required
def api_update_notifications():
    prefs = NotificationPrefsIn.model_validate(payload())
    user = current_user()
    if not user:
        return jsonify({'ok': False, 'msg': 'user_not_found'}), 404
    changed = []
    for field, value in prefs.model_dump(exclude_none=True).items():
        setattr(user, field, value)
        changed.append(field)
    db.session.commit()
    audit('update_notifications', {'fields': changed})
    return jsonify({'ok': True, 'notificationPreferences': user_to_dict(user)['notificationPreferences']})
