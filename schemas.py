"""Request payload schemas.

Every externally supplied body is validated here, once, at the API boundary.
Field names are camelCase on the wire and snake_case in Python.
"""
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

QUESTION_TYPES = ('multiple_choice', 'written')

# Older clients used other names for the same two kinds of question.
QUESTION_TYPE_ALIASES = {
    'mcq': 'multiple_choice',
    'true_false': 'multiple_choice',
    'short_answer': 'written',
    'essay': 'written',
}


def _naive_utc(value):
    if value is not None and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_naive_utc)]


def format_errors(exc):
    """Flatten a pydantic ValidationError into JSON-safe dicts."""
    out = []
    for err in exc.errors():
        out.append({
            'field': '.'.join(str(p) for p in err.get('loc', ())) or None,
            'msg': err.get('msg'),
        })
    return out


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra='ignore',
    )


# ---------- auth ----------

class LoginIn(ApiModel):
    email: EmailStr
    password: str = Field(min_length=1)


class PasswordChangeIn(ApiModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class AccountPatch(ApiModel):
    """Fields any user may change on their own login account."""
    name: Optional[str] = Field(default=None, min_length=2)
    email: Optional[EmailStr] = None
    profile_image: Optional[str] = None


class NotificationPrefsIn(ApiModel):
    email_notifications: Optional[bool] = None
    sms_notifications: Optional[bool] = None
    email_exam_results: Optional[bool] = None
    email_upcoming_exams: Optional[bool] = None
    sms_exam_results: Optional[bool] = None
    sms_upcoming_exams: Optional[bool] = None


# ---------- exams ----------

class ExamIn(ApiModel):
    name: str = Field(min_length=2)
    subject: str = Field(min_length=1)
    date: UtcDatetime
    duration: int = Field(ge=1)
    total_marks: int = Field(ge=1)
    description: Optional[str] = None


class ExamPatch(ApiModel):
    name: Optional[str] = Field(default=None, min_length=2)
    subject: Optional[str] = Field(default=None, min_length=1)
    date: Optional[UtcDatetime] = None
    duration: Optional[int] = Field(default=None, ge=1)
    total_marks: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = None


# ---------- students ----------

class StudentIn(ApiModel):
    name: str = Field(min_length=2)
    email: EmailStr
    class_name: str = Field(alias='class', min_length=1)
    enrollment_date: Optional[UtcDatetime] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    profile_image: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6)


class StudentPatch(ApiModel):
    name: Optional[str] = Field(default=None, min_length=2)
    email: Optional[EmailStr] = None
    class_name: Optional[str] = Field(default=None, alias='class', min_length=1)
    enrollment_date: Optional[UtcDatetime] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    profile_image: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6)


class ProfilePatch(ApiModel):
    """Fields a student may change on their own record."""
    name: Optional[str] = Field(default=None, min_length=2)
    phone: Optional[str] = None
    address: Optional[str] = None
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    profile_image: Optional[str] = None


# ---------- results ----------

class ResultIn(ApiModel):
    student_id: int
    exam_id: int
    score: float = Field(ge=0)
    submitted_at: Optional[UtcDatetime] = None


class ResultPatch(ApiModel):
    score: Optional[float] = Field(default=None, ge=0)
    submitted_at: Optional[UtcDatetime] = None


# ---------- questions ----------

def _normalise_question_type(data):
    if isinstance(data, dict) and isinstance(data.get('type'), str):
        key = data['type'].strip().lower()
        data = dict(data)
        data['type'] = QUESTION_TYPE_ALIASES.get(key, key)
        if key == 'true_false' and not data.get('options'):
            data['options'] = ['True', 'False']
    return data


class QuestionIn(ApiModel):
    question: str = Field(min_length=1)
    type: Literal['multiple_choice', 'written']
    options: Optional[List[str]] = None
    correct_answer: Optional[str] = None
    marks: int = Field(gt=0)

    @model_validator(mode='before')
    @classmethod
    def normalise_legacy_type(cls, data):
        return _normalise_question_type(data)

    @model_validator(mode='after')
    def check_type_fields(self):
        if self.type == 'written':
            self.options = None
            self.correct_answer = None
            return self
        options = [o.strip() for o in self.options or [] if o and o.strip()]
        if len(options) < 2:
            raise ValueError('multiple choice questions need at least two non-empty options')
        answer = (self.correct_answer or '').strip()
        if not answer:
            raise ValueError('correctAnswer is required for multiple choice questions')
        if answer not in options:
            raise ValueError('correctAnswer must match one of the options')
        self.options = options
        self.correct_answer = answer
        return self

    def stored_fields(self):
        """Question fields as stored, type-specific keys set to None when absent."""
        return {
            'question': self.question,
            'type': self.type,
            'options': self.options,
            'correctAnswer': self.correct_answer,
            'marks': self.marks,
        }


class QuestionCreate(QuestionIn):
    exam_id: int


class QuestionPatch(ApiModel):
    exam_id: int
    question: Optional[str] = Field(default=None, min_length=1)
    type: Optional[str] = None
    options: Optional[List[str]] = None
    correct_answer: Optional[str] = None
    marks: Optional[int] = Field(default=None, gt=0)

    def changes(self):
        """The question fields the client actually sent, camelCased."""
        return self.model_dump(by_alias=True, exclude_unset=True, exclude={'exam_id'})


class QuestionRecordIn(QuestionIn):
    """A complete question as sent in a full paper overwrite."""
    id: Optional[str] = Field(default=None, min_length=1)
    order_index: Optional[int] = Field(default=None, ge=0)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class PaperFileIn(ApiModel):
    exam_id: int
    title: Optional[str] = None
    instructions: Optional[str] = None
    questions: Optional[List[QuestionRecordIn]] = None
    version: Optional[str] = None
