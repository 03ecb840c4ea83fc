import uuid
from datetime import datetime, timezone
from flask import Blueprint, request, jsonify
from models import Exam, db
from paper_store import StoreResult
from schemas import QuestionIn, QuestionCreate, QuestionPatch, PaperFileIn
from utils import audit, payload, paper_store, admin_required

question_bp = Blueprint('questions', __name__)

_STATUS = {
    StoreResult.NOT_FOUND: 404,
    StoreResult.CONFLICT: 409,
    StoreResult.ERROR: 500,
}

def _failure(res, not_found_msg='paper_not_found'):
    msg = {
        StoreResult.NOT_FOUND: not_found_msg,
        StoreResult.CONFLICT: 'version_conflict',
        StoreResult.ERROR: 'storage_error',
    }[res.kind]
    return jsonify({'ok': False, 'msg': msg}), _STATUS[res.kind]

def _exam_or_404(exam_id):
    exam = db.session.get(Exam, exam_id) if exam_id is not None else None
    if not exam:
        return None, (jsonify({'ok': False, 'msg': 'exam_not_found'}), 404)
    return exam, None

def _records(items):
    """Stored question records for a full overwrite, in the order given."""
    now = datetime.now(timezone.utc).isoformat()
    out = []
    for i, item in enumerate(items):
        record = {'id': item.id or str(uuid.uuid4())}
        record.update((k, v) for k, v in item.stored_fields().items() if v is not None)
        record.update(orderIndex=i, createdAt=item.created_at or now, updatedAt=now)
        out.append(record)
    return out

# ----- single questions -----

@question_bp.route('/api/questions/<int:paper_id>', methods=['GET'])
@admin_required
def api_get_questions(paper_id):
    exam_id = request.args.get('examId', type=int)
    res = paper_store().get_questions(paper_id, exam_id)
    if not res.is_ok:
        return _failure(res)
    return jsonify({'ok': True, 'questions': res.value})

@question_bp.route('/api/questions/<int:paper_id>', methods=['POST'])
@admin_required
def api_add_question(paper_id):
    data = QuestionCreate.model_validate(payload())
    exam, err = _exam_or_404(data.exam_id)
    if err:
        return err
    res = paper_store().add_question(paper_id, exam.id, data.stored_fields(), exam_name=exam.name)
    if not res.is_ok:
        return _failure(res)
    audit('add_question', {'exam_id': exam.id, 'paper_id': paper_id, 'question_id': res.value['id']})
    return jsonify({'ok': True, 'question': res.value}), 201

@question_bp.route('/api/questions/<int:paper_id>/<question_id>', methods=['PUT'])
@admin_required
def api_update_question(paper_id, question_id):
    patch = QuestionPatch.model_validate(payload())
    changes = patch.changes()

    def merge(stored):
        # the merged question must still be valid as a whole
        return QuestionIn.model_validate({**stored, **changes}).stored_fields()

    res = paper_store().update_question(paper_id, patch.exam_id, question_id, merge)
    if res.kind == StoreResult.INVALID:
        raise res.cause
    if not res.is_ok:
        return _failure(res, 'question_not_found')
    audit('update_question', {'exam_id': patch.exam_id, 'paper_id': paper_id, 'question_id': question_id})
    return jsonify({'ok': True, 'question': res.value})

@question_bp.route('/api/questions/<int:paper_id>/<question_id>', methods=['DELETE'])
@admin_required
def api_delete_question(paper_id, question_id):
    exam_id = request.args.get('examId', type=int)
    if exam_id is None:
        return jsonify({'ok': False, 'msg': 'exam_id_required'}), 400
    res = paper_store().delete_question(paper_id, exam_id, question_id)
    if not res.is_ok:
        return _failure(res, 'question_not_found')
    audit('delete_question', {'exam_id': exam_id, 'paper_id': paper_id, 'question_id': question_id})
    return jsonify({'ok': True, 'msg': 'question_deleted'})

# ----- whole paper documents -----

@question_bp.route('/api/question-file/<int:paper_id>', methods=['GET'])
@admin_required
def api_get_question_file(paper_id):
    exam_id = request.args.get('examId', type=int)
    res = paper_store().get_document(paper_id, exam_id)
    if not res.is_ok:
        return _failure(res)
    return jsonify({'ok': True, 'paper': res.value})

@question_bp.route('/api/question-file/<int:paper_id>', methods=['PUT'])
@admin_required
def api_save_question_file(paper_id):
    data = PaperFileIn.model_validate(payload())
    exam, err = _exam_or_404(data.exam_id)
    if err:
        return err
    store = paper_store()
    if data.questions is None:
        res = store.update_paper_details(paper_id, exam.id, title=data.title,
                                         instructions=data.instructions, exam_name=exam.name,
                                         expected_version=data.version)
    else:
        ids = [q.id for q in data.questions if q.id]
        if len(ids) != len(set(ids)):
            return jsonify({'ok': False, 'msg': 'duplicate_question_id'}), 400
        res = store.save_questions(paper_id, exam.id, _records(data.questions),
                                   expected_version=data.version, title=data.title,
                                   instructions=data.instructions, exam_name=exam.name)
    if not res.is_ok:
        return _failure(res)
    audit('save_question_file', {'exam_id': exam.id, 'paper_id': paper_id,
                                 'questions': res.value['metadata']['totalQuestions']})
    return jsonify({'ok': True, 'paper': res.value})

@question_bp.route('/api/question-file/<int:paper_id>', methods=['DELETE'])
@admin_required
def api_delete_question_file(paper_id):
    exam_id = request.args.get('examId', type=int)
    res = paper_store().delete_all_questions(paper_id, exam_id)
    if not res.is_ok:
        return _failure(res)
    audit('delete_question_file', {'exam_id': exam_id, 'paper_id': paper_id})
    return jsonify({'ok': True, 'msg': 'paper_deleted'})

@question_bp.route('/api/exams/<int:exam_id>/question-files', methods=['GET'])
@admin_required
def api_list_question_files(exam_id):
    exam, err = _exam_or_404(exam_id)
    if err:
        return err
    res = paper_store().get_all_questions_by_exam_id(exam.id)
    if not res.is_ok:
        return _failure(res)
    return jsonify({'ok': True, 'examId': exam.id, 'papers': res.value})
