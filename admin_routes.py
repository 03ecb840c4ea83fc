import logging
from datetime import datetime
from flask import Blueprint, request, jsonify
from werkzeug.security import check_password_hash, generate_password_hash
from models import User, Student, Exam, Result, Log, db, EXAM_STATUSES
from schemas import LoginIn, ExamIn, ExamPatch, StudentIn, StudentPatch, ResultIn, ResultPatch
from exam_status import exam_status, resolve_status, sweep_exam_statuses
from scoring import compute_percentage, average_percentage, top_performers
from utils import (add_log, audit, start_session, payload, paper_store, admin_required, login_required,
                   user_to_dict, student_to_dict, exam_to_dict, ranked_results)

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__)

@admin_bp.route('/api/auth/login', methods=['POST'])
def admin_login():
    creds = LoginIn.model_validate(payload())
    user = User.query.filter_by(email=creds.email, role='admin').first()
    if not user or not check_password_hash(user.password_hash, creds.password):
        add_log(None, creds.email, 'admin', 'admin_login_failed', {})
        return jsonify({'ok': False, 'msg': 'invalid_credentials'}), 401
    start_session(user)
    add_log(user.id, user.email, 'admin', 'admin_login', {})
    return jsonify({'ok': True, 'user': user_to_dict(user)})

@admin_bp.route('/api/statistics', methods=['GET'])
@admin_required
def api_statistics():
    now = datetime.utcnow()
    counts = {status: 0 for status in EXAM_STATUSES}
    for exam in Exam.query.all():
        counts[exam_status(exam, now)] += 1
    return jsonify({'ok': True, 'statistics': {
        'totalStudents': Student.query.count(),
        'totalExams': sum(counts.values()),
        'upcomingExams': counts['upcoming'],
        'activeExams': counts['active'],
        'completedExams': counts['completed'],
        'totalResults': Result.query.count(),
    }})

# API Routes - Students

def _email_taken(email, student=None):
    other = Student.query.filter_by(email=email).first()
    if other and other is not student:
        return True
    user = User.query.filter_by(email=email).first()
    return bool(user and (student is None or user.student_id != student.id))

def _set_student_password(student, password):
    student.password_hash = generate_password_hash(password)
    if student.user is None:
        student.user = User(email=student.email, name=student.name, role='student',
                            password_hash=student.password_hash)
    else:
        student.user.password_hash = student.password_hash

@admin_bp.route('/api/students', methods=['GET'])
@admin_required
def api_list_students():
    students = Student.query.order_by(Student.name.asc()).all()
    return jsonify({'ok': True, 'students': [student_to_dict(s) for s in students]})

@admin_bp.route('/api/students/<int:student_id>', methods=['GET'])
@admin_required
def api_get_student(student_id):
    student = db.session.get(Student, student_id)
    if not student:
        return jsonify({'ok': False, 'msg': 'student_not_found'}), 404
    return jsonify({'ok': True, 'student': student_to_dict(student)})

@admin_bp.route('/api/students', methods=['POST'])
@admin_required
def api_create_student():
    data = StudentIn.model_validate(payload())
    if _email_taken(data.email):
        return jsonify({'ok': False, 'msg': 'email_exists'}), 409
    student = Student(
        name=data.name,
        email=data.email,
        class_name=data.class_name,
        enrollment_date=data.enrollment_date or datetime.utcnow(),
        phone=data.phone,
        address=data.address,
        guardian_name=data.guardian_name,
        guardian_phone=data.guardian_phone,
        profile_image=data.profile_image,
    )
    if data.password:
        _set_student_password(student, data.password)
    db.session.add(student)
    db.session.commit()
    audit('create_student', {'student_id': student.id})
    return jsonify({'ok': True, 'student': student_to_dict(student)}), 201

@admin_bp.route('/api/students/<int:student_id>', methods=['PUT'])
@admin_required
def api_update_student(student_id):
    student = db.session.get(Student, student_id)
    if not student:
        return jsonify({'ok': False, 'msg': 'student_not_found'}), 404
    patch = StudentPatch.model_validate(payload())
    changes = patch.model_dump(exclude_unset=True)
    if 'email' in changes and changes['email'] != student.email and _email_taken(changes['email'], student):
        return jsonify({'ok': False, 'msg': 'email_exists'}), 409
    password = changes.pop('password', None)
    for field, value in changes.items():
        if field in ('name', 'email', 'class_name', 'enrollment_date') and value is None:
            continue
        setattr(student, field, value)
    if student.user is not None:
        student.user.email = student.email
        student.user.name = student.name
    if password:
        _set_student_password(student, password)
    db.session.commit()
    audit('update_student', {'student_id': student.id, 'fields': sorted(changes)})
    return jsonify({'ok': True, 'student': student_to_dict(student)})

@admin_bp.route('/api/students/<int:student_id>', methods=['DELETE'])
@admin_required
def api_delete_student(student_id):
    student = db.session.get(Student, student_id)
    if not student:
        return jsonify({'ok': False, 'msg': 'student_not_found'}), 404
    db.session.delete(student)  # results and login go with it
    db.session.commit()
    audit('delete_student', {'student_id': student_id})
    return jsonify({'ok': True, 'msg': 'student_deleted'})

# API Routes - Exam Management

@admin_bp.route('/api/exams', methods=['GET'])
@login_required
def api_list_exams():
    now = datetime.utcnow()
    status = request.args.get('status')
    if status and status not in EXAM_STATUSES:
        return jsonify({'ok': False, 'msg': 'bad_status'}), 400
    exams = Exam.query.order_by(Exam.date.asc()).all()
    out = [exam_to_dict(e, now) for e in exams]
    if status:
        out = [e for e in out if e['status'] == status]
    return jsonify({'ok': True, 'exams': out})

@admin_bp.route('/api/exams/<int:exam_id>', methods=['GET'])
@login_required
def api_get_exam(exam_id):
    exam = db.session.get(Exam, exam_id)
    if not exam:
        return jsonify({'ok': False, 'msg': 'exam_not_found'}), 404
    return jsonify({'ok': True, 'exam': exam_to_dict(exam, datetime.utcnow())})

@admin_bp.route('/api/exams', methods=['POST'])
@admin_required
def api_create_exam():
    data = ExamIn.model_validate(payload())
    now = datetime.utcnow()
    exam = Exam(
        name=data.name,
        subject=data.subject,
        date=data.date,
        duration=data.duration,
        total_marks=data.total_marks,
        description=data.description,
        status=resolve_status(data.date, data.duration, now),
    )
    db.session.add(exam)
    db.session.commit()
    audit('create_exam', {'exam_id': exam.id})
    return jsonify({'ok': True, 'exam': exam_to_dict(exam, now)}), 201

@admin_bp.route('/api/exams/<int:exam_id>', methods=['PUT'])
@admin_required
def api_update_exam(exam_id):
    exam = db.session.get(Exam, exam_id)
    if not exam:
        return jsonify({'ok': False, 'msg': 'exam_not_found'}), 404
    changes = ExamPatch.model_validate(payload()).model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is None and field != 'description':
            continue
        setattr(exam, field, value)
    now = datetime.utcnow()
    exam.status = exam_status(exam, now)
    recomputed = 0
    if 'total_marks' in changes and changes['total_marks'] is not None:
        for result in exam.results:
            result.percentage = compute_percentage(result.score, exam.total_marks)
            recomputed += 1
    db.session.commit()
    audit('update_exam', {'exam_id': exam.id, 'fields': sorted(changes), 'results_recomputed': recomputed})
    return jsonify({'ok': True, 'exam': exam_to_dict(exam, now)})

@admin_bp.route('/api/exams/<int:exam_id>', methods=['DELETE'])
@admin_required
def api_delete_exam(exam_id):
    exam = db.session.get(Exam, exam_id)
    if not exam:
        return jsonify({'ok': False, 'msg': 'exam_not_found'}), 404
    # paper documents first: an exam row is never removed while its papers remain
    res = paper_store().delete_all_for_exam(exam.id)
    if not res.is_ok:
        return jsonify({'ok': False, 'msg': 'storage_error'}), 500
    db.session.delete(exam)
    db.session.commit()
    audit('delete_exam', {'exam_id': exam_id, 'papers_removed': res.value})
    return jsonify({'ok': True, 'msg': 'exam_deleted', 'papersRemoved': res.value})

@admin_bp.route('/api/exams/sweep-status', methods=['POST'])
@admin_required
def api_sweep_status():
    changed = sweep_exam_statuses()
    audit('sweep_status', {'changed': [e.id for e in changed]})
    return jsonify({'ok': True, 'updated': [{'id': e.id, 'status': e.status} for e in changed]})

@admin_bp.route('/api/exams/<int:exam_id>/top-performers', methods=['GET'])
@admin_required
def api_top_performers(exam_id):
    exam = db.session.get(Exam, exam_id)
    if not exam:
        return jsonify({'ok': False, 'msg': 'exam_not_found'}), 404
    limit = request.args.get('limit', default=10, type=int)
    results = Result.query.filter_by(exam_id=exam_id).all()
    return jsonify({
        'ok': True,
        'averagePercentage': average_percentage(results),
        'results': ranked_results(top_performers(results, max(1, limit)), datetime.utcnow()),
    })

# API Routes - Results

@admin_bp.route('/api/results', methods=['GET'])
@admin_required
def api_list_results():
    q = Result.query
    exam_id = request.args.get('examId', type=int)
    student_id = request.args.get('studentId', type=int)
    if exam_id:
        q = q.filter_by(exam_id=exam_id)
    if student_id:
        q = q.filter_by(student_id=student_id)
    results = q.order_by(Result.submitted_at.desc()).all()
    return jsonify({'ok': True, 'results': ranked_results(results, datetime.utcnow())})

@admin_bp.route('/api/results/<int:result_id>', methods=['GET'])
@admin_required
def api_get_result(result_id):
    result = db.session.get(Result, result_id)
    if not result:
        return jsonify({'ok': False, 'msg': 'result_not_found'}), 404
    return jsonify({'ok': True, 'result': ranked_results([result], datetime.utcnow())[0]})

@admin_bp.route('/api/results', methods=['POST'])
@admin_required
def api_create_result():
    data = ResultIn.model_validate(payload())
    student = db.session.get(Student, data.student_id)
    if not student:
        return jsonify({'ok': False, 'msg': 'student_not_found'}), 404
    exam = db.session.get(Exam, data.exam_id)
    if not exam:
        return jsonify({'ok': False, 'msg': 'exam_not_found'}), 404
    if Result.query.filter_by(student_id=student.id, exam_id=exam.id).first():
        return jsonify({'ok': False, 'msg': 'result_exists'}), 409
    result = Result(
        student_id=student.id,
        exam_id=exam.id,
        score=data.score,
        percentage=compute_percentage(data.score, exam.total_marks),
        submitted_at=data.submitted_at or datetime.utcnow(),
    )
    db.session.add(result)
    db.session.commit()
    audit('create_result', {'result_id': result.id, 'exam_id': exam.id, 'student_id': student.id})
    return jsonify({'ok': True, 'result': ranked_results([result], datetime.utcnow())[0]}), 201

@admin_bp.route('/api/results/<int:result_id>', methods=['PUT'])
@admin_required
def api_update_result(result_id):
    result = db.session.get(Result, result_id)
    if not result:
        return jsonify({'ok': False, 'msg': 'result_not_found'}), 404
    patch = ResultPatch.model_validate(payload())
    if patch.score is not None:
        result.score = patch.score
        result.percentage = compute_percentage(patch.score, result.exam.total_marks)
    if patch.submitted_at is not None:
        result.submitted_at = patch.submitted_at
    db.session.commit()
    audit('update_result', {'result_id': result.id, 'score': result.score})
    return jsonify({'ok': True, 'result': ranked_results([result], datetime.utcnow())[0]})

@admin_bp.route('/api/results/<int:result_id>', methods=['DELETE'])
@admin_required
def api_delete_result(result_id):
    result = db.session.get(Result, result_id)
    if not result:
        return jsonify({'ok': False, 'msg': 'result_not_found'}), 404
    db.session.delete(result)
    db.session.commit()
    audit('delete_result', {'result_id': result_id})
    return jsonify({'ok': True, 'msg': 'result_deleted'})

@admin_bp.route('/api/admin/logs', methods=['GET'])
@admin_required
def api_view_logs():
    q = Log.query
    etype = request.args.get('event_type')
    uid = request.args.get('user_id', type=int)
    if etype:
        q = q.filter_by(event_type=etype)
    if uid:
        q = q.filter_by(who_user_id=uid)
    logs = q.order_by(Log.created_at.desc(), Log.id.desc()).limit(2000).all()
    out = []
    for l in logs:
        out.append({
            "id": l.id,
            "who_user_id": l.who_user_id,
            "email": l.email,
            "role": l.role,
            "event_type": l.event_type,
            "meta": l.meta,
            "created_at": l.created_at.isoformat()
        })
    return jsonify({"ok":True, "logs": out})
