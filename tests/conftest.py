from datetime import datetime, timedelta

import pytest

from app import create_app
from models import db
from object_storage import LocalBucket
from paper_store import PaperDocumentStore

ADMIN_EMAIL = 'admin@school.edu'
ADMIN_PASSWORD = 'admin-pass'


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'STORAGE_DIR': str(tmp_path / 'storage'),
        'ADMIN_EMAIL': ADMIN_EMAIL,
        'ADMIN_PASSWORD': ADMIN_PASSWORD,
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    res = client.post('/api/auth/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})
    assert res.status_code == 200
    return client


@pytest.fixture
def bucket(tmp_path):
    b = LocalBucket(str(tmp_path / 'objects'), 'exam-questions')
    b.ensure()
    return b


@pytest.fixture
def store(bucket):
    return PaperDocumentStore(bucket)


@pytest.fixture
def create_exam(admin_client):
    """POST an exam and return its JSON; starts an hour from now unless told otherwise."""
    def _create(**overrides):
        body = {
            'name': 'Algebra Midterm',
            'subject': 'Mathematics',
            'date': (datetime.utcnow() + timedelta(hours=1)).isoformat(),
            'duration': 90,
            'totalMarks': 100,
        }
        body.update(overrides)
        res = admin_client.post('/api/exams', json=body)
        assert res.status_code == 201, res.get_json()
        return res.get_json()['exam']
    return _create


@pytest.fixture
def create_student(admin_client):
    def _create(**overrides):
        body = {'name': 'Ada Lovelace', 'email': 'ada@school.edu', 'class': '10A'}
        body.update(overrides)
        res = admin_client.post('/api/students', json=body)
        assert res.status_code == 201, res.get_json()
        return res.get_json()['student']
    return _create


@pytest.fixture
def create_result(admin_client):
    def _create(student_id, exam_id, score):
        res = admin_client.post('/api/results', json={'studentId': student_id, 'examId': exam_id, 'score': score})
        assert res.status_code == 201, res.get_json()
        return res.get_json()['result']
    return _create
