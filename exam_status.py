"""Exam lifecycle status.

An exam's status is a pure function of its scheduled start, its duration and
the current time. The ``status`` column on ``exams`` is only a cache that
``sweep_exam_statuses`` keeps in line.
"""
import logging
from datetime import datetime, timedelta

from models import Exam, db

logger = logging.getLogger(__name__)

UPCOMING = 'upcoming'
ACTIVE = 'active'
COMPLETED = 'completed'


def resolve_status(start_at, duration_minutes, now):
    """Return 'upcoming', 'active' or 'completed'.

    Both boundaries are inclusive: the exam is active at exactly ``start_at``
    and still active at exactly ``start_at + duration``.
    """
    if now < start_at:
        return UPCOMING
    if now <= start_at + timedelta(minutes=duration_minutes):
        return ACTIVE
    return COMPLETED


def exam_status(exam, now):
    return resolve_status(exam.date, exam.duration, now)


def sweep_exam_statuses(now=None):
    """Persist the resolved status of every exam whose stored status is stale.

    Reads the clock once for the whole pass. Returns the list of exams that
    were changed.
    """
    now = now or datetime.utcnow()
    changed = []
    for exam in Exam.query.order_by(Exam.id.asc()).all():
        status = exam_status(exam, now)
        if status != exam.status:
            logger.info('exam %s status %s -> %s', exam.id, exam.status, status)
            exam.status = status
            changed.append(exam)
    if changed:
        db.session.commit()
    return changed
