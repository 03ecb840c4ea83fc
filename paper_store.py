"""Question papers persisted as JSON documents in object storage.

One document per (exam, paper) pair, filed under a folder named after the
exam id::

    exam-<examId>/paper-<paperId>-questions.json

The document is the only source of truth for a paper's questions. Every write
is conditional on the etag read beforehand, so concurrent editors cannot
silently overwrite each other: read-modify-write operations retry on a
precondition failure and give up with a ``conflict`` result after
``max_retries`` attempts.

No method raises. Each returns a ``StoreResult`` whose ``kind`` tells callers
whether they got data, found nothing, lost a race, sent a rejected change or hit
a backend failure.
"""
import json
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Optional

from object_storage import ObjectNotFound, PreconditionFailed, StorageError

logger = logging.getLogger(__name__)

PAPER_FILE_RE = re.compile(r'^paper-(\d+)-questions\.json$')
EXAM_FOLDER_RE = re.compile(r'^exam-(\d+)$')

# fields a question patch may never touch
_PROTECTED_FIELDS = ('id', 'createdAt', 'orderIndex')


@dataclass
class StoreResult:
    kind: str
    value: Any = None
    cause: Optional[BaseException] = None

    OK = 'ok'
    NOT_FOUND = 'not_found'
    CONFLICT = 'conflict'
    INVALID = 'invalid'
    ERROR = 'error'

    @classmethod
    def ok(cls, value=None):
        return cls(cls.OK, value)

    @classmethod
    def not_found(cls):
        return cls(cls.NOT_FOUND)

    @classmethod
    def conflict(cls, cause=None):
        return cls(cls.CONFLICT, cause=cause)

    @classmethod
    def invalid(cls, cause):
        return cls(cls.INVALID, cause=cause)

    @classmethod
    def error(cls, cause):
        return cls(cls.ERROR, cause=cause)

    @property
    def is_ok(self):
        return self.kind == self.OK

    def map(self, fn):
        return StoreResult.ok(fn(self.value)) if self.is_ok else self


def folder_for(exam_id):
    return f'exam-{int(exam_id)}'


def document_path(paper_id, exam_id):
    return f'{folder_for(exam_id)}/paper-{int(paper_id)}-questions.json'


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def _guarded(op):
    """Turn any exception escaping a store operation into an error result."""
    @wraps(op)
    def wrapper(self, *args, **kwargs):
        try:
            return op(self, *args, **kwargs)
        except Exception as e:
            logger.exception('paper store %s failed', op.__name__)
            return StoreResult.error(e)
    return wrapper


def _reindexed(questions):
    out = []
    for i, q in enumerate(questions):
        out.append(q if q.get('orderIndex') == i else {**q, 'orderIndex': i})
    return out


class PaperDocumentStore:
    def __init__(self, bucket, max_retries=3):
        self.bucket = bucket
        self.max_retries = max(1, int(max_retries))

    def initialize(self):
        self.bucket.ensure()
        logger.info('paper store using bucket %s at %s', self.bucket.name,
                    getattr(self.bucket, 'base_dir', '?'))

    # ----- low level -----

    def _load(self, path):
        raw, etag = self.bucket.download_with_etag(path)
        try:
            doc = json.loads(raw.decode('utf-8'))
        except ValueError as e:
            raise StorageError(f'corrupt paper document {path}: {e}') from e
        if not isinstance(doc, dict):
            raise StorageError(f'corrupt paper document {path}: not an object')
        return doc, etag

    def _write(self, path, doc, if_match=None):
        data = json.dumps(doc, indent=2).encode('utf-8')
        return self.bucket.upload(path, data, upsert=True, if_match=if_match)

    def _locate(self, paper_id, exam_id=None):
        """Storage path for a paper, scanning exam folders when exam_id is unknown."""
        if exam_id is not None:
            return document_path(paper_id, exam_id)
        file_name = f'paper-{int(paper_id)}-questions.json'
        for folder in self.bucket.list():
            if EXAM_FOLDER_RE.match(folder) and file_name in self.bucket.list(folder):
                return f'{folder}/{file_name}'
        return None

    @staticmethod
    def _build(paper_id, exam_id, questions, base=None, title=None,
               instructions=None, exam_name=None):
        base = base or {}
        return {
            'paperId': int(paper_id),
            'examId': int(exam_id),
            'examName': exam_name if exam_name is not None else base.get('examName'),
            'title': title if title is not None else base.get('title', ''),
            'instructions': instructions if instructions is not None else base.get('instructions', ''),
            'questions': questions,
            'metadata': {
                'totalQuestions': len(questions),
                'totalMarks': sum(int(q.get('marks') or 0) for q in questions),
                'lastUpdated': _now_iso(),
            },
        }

    def _mutate(self, paper_id, exam_id, change, create_missing=True, expected_version=None, **details):
        """Read-modify-write with an etag precondition.

        ``change`` receives a copy of the current question list and returns
        either ``(questions, value)`` or a StoreResult to stop early. It may be
        called more than once when another writer gets in between.
        With ``expected_version`` the document must still carry that version
        ('' meaning "does not exist yet"), otherwise the result is ``conflict``.
        Returns ok((value, document)).
        """
        path = document_path(paper_id, exam_id)
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                doc, etag = self._load(path)
            except ObjectNotFound:
                if not create_missing:
                    return StoreResult.not_found()
                doc, etag = None, ''
            if expected_version is not None and etag != expected_version:
                logger.info('rejected stale write to %s', path)
                return StoreResult.conflict(PreconditionFailed(path, expected_version, etag))
            current = list(doc.get('questions') or []) if doc else []
            outcome = change(current)
            if isinstance(outcome, StoreResult):
                return outcome
            questions, value = outcome
            new_doc = self._build(paper_id, exam_id, questions, base=doc, **details)
            try:
                new_doc['version'] = self._write(path, new_doc, if_match=etag)
            except PreconditionFailed as e:
                last_error = e
                logger.warning('concurrent write to %s (attempt %d/%d)', path, attempt, self.max_retries)
                continue
            return StoreResult.ok((value, new_doc))
        return StoreResult.conflict(last_error)

    # ----- reads -----

    @_guarded
    def get_document(self, paper_id, exam_id=None):
        path = self._locate(paper_id, exam_id)
        if path is None:
            return StoreResult.not_found()
        try:
            doc, etag = self._load(path)
        except ObjectNotFound:
            return StoreResult.not_found()
        doc['version'] = etag
        return StoreResult.ok(doc)

    @_guarded
    def get_questions(self, paper_id, exam_id=None):
        """Questions of a paper; an empty list when the paper was never saved."""
        res = self.get_document(paper_id, exam_id)
        if res.kind == StoreResult.NOT_FOUND:
            return StoreResult.ok([])
        return res.map(lambda doc: doc.get('questions') or [])

    @_guarded
    def get_all_questions_by_exam_id(self, exam_id):
        folder = folder_for(exam_id)
        papers = []
        for name in self.bucket.list(folder):
            m = PAPER_FILE_RE.match(name)
            if not m:
                continue
            try:
                doc, _ = self._load(f'{folder}/{name}')
            except ObjectNotFound:
                # removed between list and download
                continue
            papers.append({
                'paperId': int(m.group(1)),
                'title': doc.get('title', ''),
                'questions': doc.get('questions') or [],
            })
        papers.sort(key=lambda p: p['paperId'])
        return StoreResult.ok(papers)

    # ----- writes -----

    @_guarded
    def save_questions(self, paper_id, exam_id, questions, expected_version=None,
                       title=None, instructions=None, exam_name=None):
        """Overwrite the whole document.

        Without ``expected_version`` the write is unconditional and the last
        writer wins. With it, the write only happens if the stored document
        still carries that version ('' meaning "does not exist yet").
        """
        path = document_path(paper_id, exam_id)
        base = None
        if title is None or instructions is None or exam_name is None:
            try:
                base, _ = self._load(path)
            except ObjectNotFound:
                base = None
        doc = self._build(paper_id, exam_id, list(questions), base=base, title=title,
                          instructions=instructions, exam_name=exam_name)
        try:
            doc['version'] = self._write(path, doc, if_match=expected_version)
        except PreconditionFailed as e:
            logger.info('rejected stale write to %s', path)
            return StoreResult.conflict(e)
        return StoreResult.ok(doc)

    @_guarded
    def update_paper_details(self, paper_id, exam_id, title=None, instructions=None, exam_name=None,
                             expected_version=None):
        res = self._mutate(paper_id, exam_id, lambda qs: (qs, None), expected_version=expected_version,
                           title=title, instructions=instructions, exam_name=exam_name)
        return res.map(lambda pair: pair[1])

    @_guarded
    def add_question(self, paper_id, exam_id, data, exam_name=None):
        def append(questions):
            now = _now_iso()
            record = {'id': str(uuid.uuid4())}
            record.update((k, v) for k, v in data.items() if v is not None and k not in _PROTECTED_FIELDS)
            record.update(orderIndex=len(questions), createdAt=now, updatedAt=now)
            return questions + [record], record

        res = self._mutate(paper_id, exam_id, append, exam_name=exam_name)
        return res.map(lambda pair: pair[0])

    @_guarded
    def update_question(self, paper_id, exam_id, question_id, patch):
        """Apply ``patch`` to one question. Keys patched to None are removed.

        ``patch`` is either a dict of changes or a callable that receives the
        stored question and returns one. The callable runs against every fresh
        read, so changes derived from the stored question never revert another
        writer's edit. A ValueError from it gives an ``invalid`` result.
        """
        def apply(questions):
            for i, q in enumerate(questions):
                if q.get('id') == question_id:
                    break
            else:
                return StoreResult.not_found()
            try:
                changes = patch(dict(q)) if callable(patch) else patch
            except ValueError as e:
                return StoreResult.invalid(e)
            updated = dict(q)
            for key, value in changes.items():
                if key in _PROTECTED_FIELDS:
                    continue
                if value is None:
                    updated.pop(key, None)
                else:
                    updated[key] = value
            updated['updatedAt'] = _now_iso()
            questions[i] = updated
            return questions, updated

        res = self._mutate(paper_id, exam_id, apply, create_missing=False)
        return res.map(lambda pair: pair[0])

    @_guarded
    def delete_question(self, paper_id, exam_id, question_id):
        def remove(questions):
            remaining = [q for q in questions if q.get('id') != question_id]
            if len(remaining) == len(questions):
                return StoreResult.not_found()
            return _reindexed(remaining), True

        res = self._mutate(paper_id, exam_id, remove, create_missing=False)
        return res.map(lambda pair: pair[0])

    @_guarded
    def delete_all_questions(self, paper_id, exam_id=None):
        """Remove a paper document entirely."""
        path = self._locate(paper_id, exam_id)
        if path is None or not self.bucket.remove([path]):
            return StoreResult.not_found()
        logger.info('deleted paper document %s', path)
        return StoreResult.ok(True)

    @_guarded
    def delete_all_for_exam(self, exam_id):
        folder = folder_for(exam_id)
        paths = [f'{folder}/{name}' for name in self.bucket.list(folder) if PAPER_FILE_RE.match(name)]
        removed = self.bucket.remove(paths) if paths else []
        if removed:
            logger.info('deleted %d paper document(s) of exam %s', len(removed), exam_id)
        return StoreResult.ok(len(removed))
