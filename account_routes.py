from flask import Blueprint, jsonify, session
from werkzeug.security import check_password_hash, generate_password_hash
from models import User, Student, db
from schemas import AccountPatch, PasswordChangeIn
from utils import audit, current_user, payload, login_required, user_to_dict

account_bp = Blueprint('account', __name__)

def _own_account(user_id):
    """The session's user when it owns ``user_id``, else an error response."""
    if user_id != session.get('user_id'):
        return None, (jsonify({'ok': False, 'msg': 'not_your_account'}), 403)
    user = current_user()
    if not user:
        return None, (jsonify({'ok': False, 'msg': 'user_not_found'}), 404)
    return user, None

def _email_in_use(email, user):
    other = User.query.filter_by(email=email).first()
    if other and other.id != user.id:
        return True
    student = Student.query.filter_by(email=email).first()
    return bool(student and student.id != user.student_id)

@account_bp.route('/api/users/<int:user_id>', methods=['PUT'])
@login_required
def api_update_account(user_id):
    user, err = _own_account(user_id)
    if err:
        return err
    changes = AccountPatch.model_validate(payload()).model_dump(exclude_unset=True)
    if changes.get('email') and changes['email'] != user.email and _email_in_use(changes['email'], user):
        return jsonify({'ok': False, 'msg': 'email_exists'}), 409
    for field, value in changes.items():
        if field in ('name', 'email') and value is None:
            continue
        setattr(user, field, value)
    # a student's record mirrors its login
    if user.student is not None:
        user.student.name = user.name
        user.student.email = user.email
        user.student.profile_image = user.profile_image
    db.session.commit()
    session['email'] = user.email
    audit('update_account', {'user_id': user.id, 'fields': sorted(changes)})
    return jsonify({'ok': True, 'user': user_to_dict(user)})

@account_bp.route('/api/users/<int:user_id>/change-password', methods=['POST'])
@login_required
def api_change_password(user_id):
    user, err = _own_account(user_id)
    if err:
        return err
    data = PasswordChangeIn.model_validate(payload())
    if not check_password_hash(user.password_hash, data.current_password):
        audit('change_password_failed', {'user_id': user.id})
        return jsonify({'ok': False, 'msg': 'invalid_current_password'}), 400
    user.password_hash = generate_password_hash(data.new_password)
    if user.student is not None:
        user.student.password_hash = user.password_hash
    db.session.commit()
    audit('change_password', {'user_id': user.id})
    return jsonify({'ok': True, 'msg': 'password_changed'})
