import pytest
from pydantic import ValidationError

from schemas import ExamIn, QuestionIn, QuestionPatch, StudentIn, format_errors


def test_multiple_choice_needs_two_options():
    with pytest.raises(ValidationError):
        QuestionIn.model_validate({'question': 'Q?', 'type': 'multiple_choice',
                                   'options': ['A'], 'correctAnswer': 'A', 'marks': 2})


def test_multiple_choice_with_matching_answer():
    q = QuestionIn.model_validate({'question': 'Q?', 'type': 'multiple_choice',
                                   'options': [' A ', 'B', ''], 'correctAnswer': 'A', 'marks': 2})
    assert q.options == ['A', 'B']
    assert q.stored_fields()['correctAnswer'] == 'A'


def test_answer_must_be_one_of_the_options():
    with pytest.raises(ValidationError):
        QuestionIn.model_validate({'question': 'Q?', 'type': 'multiple_choice',
                                   'options': ['A', 'B'], 'correctAnswer': 'C', 'marks': 1})


def test_written_question_drops_choice_fields():
    q = QuestionIn.model_validate({'question': 'Explain.', 'type': 'written',
                                   'options': ['x', 'y'], 'correctAnswer': 'x', 'marks': 5})
    fields = q.stored_fields()
    assert fields['options'] is None
    assert fields['correctAnswer'] is None


@pytest.mark.parametrize('legacy, canonical', [
    ('mcq', 'multiple_choice'),
    ('short_answer', 'written'),
    ('essay', 'written'),
])
def test_legacy_types_are_normalised(legacy, canonical):
    body = {'question': 'Q?', 'type': legacy, 'marks': 1,
            'options': ['A', 'B'], 'correctAnswer': 'B'}
    assert QuestionIn.model_validate(body).type == canonical


def test_true_false_gets_default_options():
    q = QuestionIn.model_validate({'question': 'Sky is blue?', 'type': 'true_false',
                                   'correctAnswer': 'True', 'marks': 1})
    assert q.type == 'multiple_choice'
    assert q.options == ['True', 'False']


@pytest.mark.parametrize('body', [
    {'question': '', 'type': 'written', 'marks': 1},
    {'question': 'Q?', 'type': 'written', 'marks': 0},
    {'question': 'Q?', 'type': 'matching', 'marks': 1},
])
def test_invalid_questions_rejected(body):
    with pytest.raises(ValidationError):
        QuestionIn.model_validate(body)


def test_question_patch_reports_only_sent_fields():
    patch = QuestionPatch.model_validate({'examId': 3, 'marks': 4})
    assert patch.changes() == {'marks': 4}


def test_exam_dates_are_stored_as_naive_utc():
    exam = ExamIn.model_validate({'name': 'Finals', 'subject': 'History',
                                  'date': '2026-05-01T10:00:00+02:00', 'duration': 60, 'totalMarks': 80})
    assert exam.date.tzinfo is None
    assert exam.date.hour == 8


def test_format_errors_names_fields():
    with pytest.raises(ValidationError) as info:
        StudentIn.model_validate({'name': 'Al', 'email': 'not-an-email', 'class': '9B'})
    assert [e['field'] for e in format_errors(info.value)] == ['email']
