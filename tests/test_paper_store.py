import json

from object_storage import LocalBucket
from paper_store import PaperDocumentStore, StoreResult, document_path


def mcq(text='2 + 2?', marks=2):
    return {'question': text, 'type': 'multiple_choice', 'options': ['3', '4'],
            'correctAnswer': '4', 'marks': marks}


def written(text='Explain gravity.', marks=5):
    return {'question': text, 'type': 'written', 'marks': marks}


class MeddlingBucket(LocalBucket):
    """Bumps the stored document behind the reader's back on the first N reads."""

    def __init__(self, root, name, interruptions):
        super().__init__(root, name)
        self.interruptions = interruptions

    def download_with_etag(self, path):
        data, etag = super().download_with_etag(path)
        if self.interruptions:
            self.interruptions -= 1
            doc = json.loads(data)
            doc['title'] = f"edited {self.interruptions}"
            self.upload(path, json.dumps(doc).encode('utf-8'))
        return data, etag


def test_missing_paper_has_no_questions(store):
    res = store.get_questions(7, 1)
    assert res.is_ok and res.value == []
    assert store.get_document(7, 1).kind == StoreResult.NOT_FOUND


def test_documents_are_filed_by_exam_id(store, bucket):
    store.add_question(3, 12, mcq(), exam_name='Algebra')
    assert document_path(3, 12) == 'exam-12/paper-3-questions.json'
    assert bucket.list('exam-12') == ['paper-3-questions.json']


def test_save_then_get_round_trip(store):
    questions = [dict(mcq(), id='q1', orderIndex=0), dict(written(), id='q2', orderIndex=1)]
    saved = store.save_questions(1, 4, questions, title='Paper A', instructions='No calculators')
    assert saved.is_ok
    assert saved.value['metadata']['totalQuestions'] == 2
    assert saved.value['metadata']['totalMarks'] == 7

    got = store.get_questions(1, 4)
    assert got.value == questions
    doc = store.get_document(1).value
    assert doc['examId'] == 4
    assert doc['title'] == 'Paper A'
    assert doc['version'] == saved.value['version']


def test_adds_get_sequential_order_index(store):
    ids = []
    for i in range(4):
        res = store.add_question(2, 5, written(f'Q{i}'))
        assert res.is_ok
        ids.append(res.value['id'])
    questions = store.get_questions(2, 5).value
    assert [q['orderIndex'] for q in questions] == [0, 1, 2, 3]
    assert len(set(ids)) == 4


def test_update_question_removes_fields_patched_to_none(store):
    q = store.add_question(1, 1, mcq()).value
    res = store.update_question(1, 1, q['id'], {'type': 'written', 'options': None,
                                                'correctAnswer': None, 'orderIndex': 9})
    assert res.is_ok
    updated = res.value
    assert updated['type'] == 'written'
    assert 'options' not in updated and 'correctAnswer' not in updated
    assert updated['orderIndex'] == 0
    assert updated['createdAt'] == q['createdAt']


def test_update_unknown_question(store):
    store.add_question(1, 1, mcq())
    assert store.update_question(1, 1, 'nope', {'marks': 3}).kind == StoreResult.NOT_FOUND
    assert store.update_question(9, 1, 'nope', {'marks': 3}).kind == StoreResult.NOT_FOUND


def test_delete_question_twice(store):
    first = store.add_question(1, 1, written('A')).value
    store.add_question(1, 1, written('B'))
    store.add_question(1, 1, written('C'))

    assert store.delete_question(1, 1, first['id']).is_ok
    before = store.get_document(1, 1).value

    again = store.delete_question(1, 1, first['id'])
    assert again.kind == StoreResult.NOT_FOUND
    after = store.get_document(1, 1).value
    assert after == before
    assert [q['question'] for q in after['questions']] == ['B', 'C']
    assert [q['orderIndex'] for q in after['questions']] == [0, 1]


def test_stale_version_is_rejected(store):
    v1 = store.save_questions(1, 1, []).value['version']
    v2 = store.save_questions(1, 1, [dict(written(), id='a', orderIndex=0)], expected_version=v1)
    assert v2.is_ok
    stale = store.save_questions(1, 1, [], expected_version=v1)
    assert stale.kind == StoreResult.CONFLICT
    assert len(store.get_questions(1, 1).value) == 1


def test_expected_empty_version_means_create_only(store):
    assert store.save_questions(1, 1, [], expected_version='').is_ok
    assert store.save_questions(1, 1, [], expected_version='').kind == StoreResult.CONFLICT


def test_concurrent_edit_is_retried(tmp_path):
    bucket = MeddlingBucket(str(tmp_path), 'papers', interruptions=0)
    store = PaperDocumentStore(bucket, max_retries=3)
    store.initialize()
    store.add_question(1, 1, written('first'))

    bucket.interruptions = 1
    res = store.add_question(1, 1, written('second'))
    assert res.is_ok
    assert [q['question'] for q in store.get_questions(1, 1).value] == ['first', 'second']


def test_gives_up_after_max_retries(tmp_path):
    bucket = MeddlingBucket(str(tmp_path), 'papers', interruptions=0)
    store = PaperDocumentStore(bucket, max_retries=2)
    store.initialize()
    store.add_question(1, 1, written('first'))

    bucket.interruptions = 5
    res = store.add_question(1, 1, written('second'))
    assert res.kind == StoreResult.CONFLICT
    bucket.interruptions = 0
    assert [q['question'] for q in store.get_questions(1, 1).value] == ['first']


def test_corrupt_document_is_an_error(store, bucket):
    bucket.upload(document_path(1, 1), b'not json')
    assert store.get_questions(1, 1).kind == StoreResult.ERROR


def test_papers_by_exam_and_bulk_delete(store):
    store.add_question(2, 8, written('p2'))
    store.add_question(1, 8, written('p1'))
    store.add_question(1, 9, written('other exam'))

    papers = store.get_all_questions_by_exam_id(8).value
    assert [p['paperId'] for p in papers] == [1, 2]

    assert store.delete_all_questions(2).is_ok
    assert store.delete_all_questions(2).kind == StoreResult.NOT_FOUND
    assert store.delete_all_for_exam(8).value == 1
    assert store.get_all_questions_by_exam_id(8).value == []
    assert store.get_questions(1, 9).value[0]['question'] == 'other exam'


def test_rejected_merge_leaves_document_unchanged(store):
    q = store.add_question(1, 1, mcq()).value
    before = store.get_document(1, 1).value

    def reject(stored):
        raise ValueError('marks must be positive')

    res = store.update_question(1, 1, q['id'], reject)
    assert res.kind == StoreResult.INVALID
    assert store.get_document(1, 1).value == before


def test_merge_runs_against_the_latest_read(tmp_path):
    bucket = MeddlingBucket(str(tmp_path), 'papers', interruptions=0)
    store = PaperDocumentStore(bucket, max_retries=3)
    store.initialize()
    q = store.add_question(1, 1, written('first', marks=2)).value
    seen = []

    def double_marks(stored):
        seen.append(stored['marks'])
        return {'marks': stored['marks'] * 2}

    bucket.interruptions = 1
    res = store.update_question(1, 1, q['id'], double_marks)
    assert res.is_ok
    assert len(seen) == 2
    assert res.value['marks'] == 4
