from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

EXAM_STATUSES = ('upcoming', 'active', 'completed')
USER_ROLES = ('admin', 'student')

class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False)  # 'admin' or 'student'
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', ondelete='CASCADE'), nullable=True, unique=True)
    profile_image = db.Column(db.Text, nullable=True)
    # notification preferences
    email_notifications = db.Column(db.Boolean, nullable=False, default=True)
    sms_notifications = db.Column(db.Boolean, nullable=False, default=False)
    email_exam_results = db.Column(db.Boolean, nullable=False, default=True)
    email_upcoming_exams = db.Column(db.Boolean, nullable=False, default=True)
    sms_exam_results = db.Column(db.Boolean, nullable=False, default=False)
    sms_upcoming_exams = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student = db.relationship('Student', back_populates='user')

class Log(db.Model):
    __tablename__ = 'logs'
    id = db.Column(db.Integer, primary_key=True)
    who_user_id = db.Column(db.Integer, nullable=True)         # optional user id who performed the action
    email = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(30), nullable=True)
    event_type = db.Column(db.String(120), nullable=False)
    meta = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

class Student(db.Model):
    __tablename__ = 'students'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    class_name = db.Column('class', db.String(50), nullable=False)
    enrollment_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    phone = db.Column(db.String(50), nullable=True)
    address = db.Column(db.Text, nullable=True)
    guardian_name = db.Column(db.String(255), nullable=True)
    guardian_phone = db.Column(db.String(50), nullable=True)
    profile_image = db.Column(db.Text, nullable=True)
    password_hash = db.Column(db.String(256), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', back_populates='student', uselist=False, cascade='all, delete-orphan')
    results = db.relationship('Result', back_populates='student', cascade='all, delete-orphan')

class Exam(db.Model):
    __tablename__ = 'exams'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(255), nullable=False)
    date = db.Column(db.DateTime, nullable=False)  # scheduled start, naive UTC
    duration = db.Column(db.Integer, nullable=False, default=60)  # minutes
    total_marks = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='upcoming')
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    results = db.relationship('Result', back_populates='exam', cascade='all, delete-orphan')

class Result(db.Model):
    __tablename__ = 'results'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False, index=True)
    exam_id = db.Column(db.Integer, db.ForeignKey('exams.id'), nullable=False, index=True)
    score = db.Column(db.Float, nullable=False)
    percentage = db.Column(db.Float, nullable=False)
    submitted_at = db.Column(db.DateTime, default=datetime.utcnow)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student = db.relationship('Student', back_populates='results')
    exam = db.relationship('Exam', back_populates='results')
