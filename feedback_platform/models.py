import sqlite3
from datetime import datetime, timezone

from sqlalchemy import event
from sqlalchemy.engine import Engine
from werkzeug.security import generate_password_hash, check_password_hash

from feedback_platform import db

ROLES = ('admin', 'assessor', 'student')
ASSESSMENT_STATUSES = ('draft', 'completed')


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores REFERENCES clauses unless asked per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    email = db.Column(db.String(120), nullable=False)
    full_name = db.Column(db.String(120), nullable=False)
    role = db.Column(db.String(10), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "fullName": self.full_name,
            "role": self.role,
            "createdAt": _iso(self.created_at),
        }


class School(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    address = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "createdAt": _iso(self.created_at),
        }


class SchoolClass(db.Model):
    __tablename__ = 'school_class'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    school_id = db.Column(db.Integer, db.ForeignKey('school.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    school = db.relationship('School', backref=db.backref('classes', lazy=True))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "schoolId": self.school_id,
            "createdAt": _iso(self.created_at),
        }


class Student(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    class_id = db.Column(db.Integer, db.ForeignKey('school_class.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    user = db.relationship('User')
    school_class = db.relationship('SchoolClass', backref=db.backref('students', lazy=True))

    def to_dict(self, with_user=True):
        data = {
            "id": self.id,
            "userId": self.user_id,
            "classId": self.class_id,
            "createdAt": _iso(self.created_at),
        }
        if with_user:
            data["user"] = self.user.to_dict() if self.user else None
        return data


# Access scope: which schools an assessor may work in
assessor_school = db.Table(
    'assessor_school',
    db.Column('assessor_id', db.Integer, db.ForeignKey('assessor.id', ondelete='CASCADE'), primary_key=True),
    db.Column('school_id', db.Integer, db.ForeignKey('school.id', ondelete='CASCADE'), primary_key=True),
)


class Assessor(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    user = db.relationship('User')
    schools = db.relationship('School', secondary=assessor_school, lazy=True,
                              backref=db.backref('assessors', lazy=True))

    @property
    def school_ids(self):
        return sorted(school.id for school in self.schools)

    def to_dict(self, with_user=True):
        data = {
            "id": self.id,
            "userId": self.user_id,
            "schoolIds": self.school_ids,
            "createdAt": _iso(self.created_at),
        }
        if with_user:
            data["user"] = self.user.to_dict() if self.user else None
        return data


class RubricTemplate(db.Model):
    __tablename__ = 'rubric_template'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    # Ordered list of {"id", "name", "description"}
    criteria = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    @property
    def criterion_ids(self):
        return [criterion["id"] for criterion in self.criteria or []]

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "criteria": list(self.criteria or []),
            "createdAt": _iso(self.created_at),
        }


class Task(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    rubric_template_id = db.Column(db.Integer, db.ForeignKey('rubric_template.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    rubric_template = db.relationship('RubricTemplate', backref=db.backref('tasks', lazy=True))

    def to_dict(self, with_rubric=False):
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "rubricTemplateId": self.rubric_template_id,
            "createdAt": _iso(self.created_at),
        }
        if with_rubric:
            data["rubricTemplate"] = self.rubric_template.to_dict() if self.rubric_template else None
        return data


class ClassTask(db.Model):
    __tablename__ = 'class_task'

    id = db.Column(db.Integer, primary_key=True)
    class_id = db.Column(db.Integer, db.ForeignKey('school_class.id'), nullable=False)
    task_id = db.Column(db.Integer, db.ForeignKey('task.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    school_class = db.relationship('SchoolClass', backref=db.backref('class_tasks', lazy=True))
    task = db.relationship('Task', backref=db.backref('class_tasks', lazy=True))

    def to_dict(self, with_task=False):
        data = {
            "id": self.id,
            "classId": self.class_id,
            "taskId": self.task_id,
            "createdAt": _iso(self.created_at),
        }
        if with_task:
            data["task"] = self.task.to_dict() if self.task else None
        return data


class Assessment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id'), nullable=False)
    assessor_id = db.Column(db.Integer, db.ForeignKey('assessor.id'), nullable=False)
    task_id = db.Column(db.Integer, db.ForeignKey('task.id'), nullable=False)
    status = db.Column(db.String(10), nullable=False, default='draft')

    # Criterion id (as string, JSON keys) -> score 1..5
    scores = db.Column(db.JSON, nullable=False, default=dict)
    total_score = db.Column(db.Float, nullable=False, default=0.0)
    feedback = db.Column(db.Text)
    criterion_feedback = db.Column(db.JSON, nullable=True, default=dict)
    pdf_path = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    student = db.relationship('Student', backref=db.backref('assessments', lazy=True))
    assessor = db.relationship('Assessor', backref=db.backref('assessments', lazy=True))
    task = db.relationship('Task', backref=db.backref('assessments', lazy=True))

    @property
    def is_completed(self):
        return self.status == 'completed'

    def to_dict(self, with_relations=True):
        data = {
            "id": self.id,
            "studentId": self.student_id,
            "assessorId": self.assessor_id,
            "taskId": self.task_id,
            "status": self.status,
            "scores": dict(self.scores or {}),
            "totalScore": self.total_score,
            "feedback": self.feedback,
            "criterionFeedback": dict(self.criterion_feedback or {}),
            "pdfPath": self.pdf_path,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if with_relations:
            data["student"] = self.student.to_dict() if self.student else None
            data["assessor"] = self.assessor.to_dict() if self.assessor else None
            data["task"] = self.task.to_dict(with_rubric=True) if self.task else None
        return data
