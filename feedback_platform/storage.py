"""Repository layer between the route handlers and the database.

Handlers only ever talk to the ``Storage`` returned by ``get_storage()``;
``SqlStorage`` is the Flask-SQLAlchemy implementation installed by
``create_app``. Create/update methods take plain dicts keyed by model
attribute name (what ``schemas.changes`` produces).
"""

import abc
import logging

from flask import current_app

from feedback_platform.models import (
    User, School, SchoolClass, Student, Assessor, RubricTemplate, Task, ClassTask, Assessment, utcnow,
)

logger = logging.getLogger(__name__)


def get_storage():
    return current_app.extensions['storage']


def total_of(scores):
    return float(sum(scores.values())) if scores else 0.0


def _json_keyed(mapping):
    # JSON object keys are strings; store criterion ids that way
    return {str(key): value for key, value in (mapping or {}).items()}


class Storage(abc.ABC):
    """get / list / create / update / delete per entity, plus derived queries."""

    # Users
    @abc.abstractmethod
    def get_user(self, user_id): ...

    @abc.abstractmethod
    def get_user_by_username(self, username): ...

    @abc.abstractmethod
    def create_user(self, data): ...

    # Schools
    @abc.abstractmethod
    def get_school(self, school_id): ...

    @abc.abstractmethod
    def list_schools(self): ...

    @abc.abstractmethod
    def create_school(self, data): ...

    @abc.abstractmethod
    def update_school(self, school_id, data): ...

    @abc.abstractmethod
    def delete_school(self, school_id): ...

    # Classes
    @abc.abstractmethod
    def get_class(self, class_id): ...

    @abc.abstractmethod
    def list_classes(self, school_id=None): ...

    @abc.abstractmethod
    def create_class(self, data): ...

    @abc.abstractmethod
    def update_class(self, class_id, data): ...

    @abc.abstractmethod
    def delete_class(self, class_id): ...

    # Students
    @abc.abstractmethod
    def get_student(self, student_id): ...

    @abc.abstractmethod
    def list_students(self, class_id=None): ...

    @abc.abstractmethod
    def create_student(self, student_data, user_data): ...

    @abc.abstractmethod
    def update_student(self, student_id, data): ...

    @abc.abstractmethod
    def delete_student(self, student_id): ...

    @abc.abstractmethod
    def get_student_by_user_id(self, user_id): ...

    # Assessors
    @abc.abstractmethod
    def get_assessor(self, assessor_id): ...

    @abc.abstractmethod
    def list_assessors(self): ...

    @abc.abstractmethod
    def create_assessor(self, assessor_data, user_data): ...

    @abc.abstractmethod
    def update_assessor(self, assessor_id, data): ...

    @abc.abstractmethod
    def delete_assessor(self, assessor_id): ...

    @abc.abstractmethod
    def get_assessor_by_user_id(self, user_id): ...

    # Rubric templates
    @abc.abstractmethod
    def get_rubric_template(self, template_id): ...

    @abc.abstractmethod
    def list_rubric_templates(self): ...

    @abc.abstractmethod
    def create_rubric_template(self, data): ...

    @abc.abstractmethod
    def update_rubric_template(self, template_id, data): ...

    @abc.abstractmethod
    def delete_rubric_template(self, template_id): ...

    # Tasks
    @abc.abstractmethod
    def get_task(self, task_id): ...

    @abc.abstractmethod
    def list_tasks(self, rubric_template_id=None): ...

    @abc.abstractmethod
    def create_task(self, data): ...

    @abc.abstractmethod
    def update_task(self, task_id, data): ...

    @abc.abstractmethod
    def delete_task(self, task_id): ...

    # Class tasks
    @abc.abstractmethod
    def get_class_task(self, class_task_id): ...

    @abc.abstractmethod
    def list_class_tasks(self, class_id=None, task_id=None): ...

    @abc.abstractmethod
    def create_class_task(self, data): ...

    @abc.abstractmethod
    def delete_class_task(self, class_task_id): ...

    # Assessments
    @abc.abstractmethod
    def get_assessment(self, assessment_id): ...

    @abc.abstractmethod
    def get_assessment_by_pdf_path(self, pdf_path): ...

    @abc.abstractmethod
    def list_assessments(self, student_id=None, assessor_id=None, task_id=None, status=None,
                         school_id=None, class_id=None, since=None): ...

    @abc.abstractmethod
    def create_assessment(self, data): ...

    @abc.abstractmethod
    def update_assessment(self, assessment_id, data): ...

    @abc.abstractmethod
    def delete_assessment(self, assessment_id): ...

    # Derived queries
    @abc.abstractmethod
    def classes_for_assessor(self, assessor_id): ...

    @abc.abstractmethod
    def students_for_class(self, class_id): ...

    @abc.abstractmethod
    def tasks_for_class(self, class_id): ...

    def assessments_for_student(self, student_id):
        return self.list_assessments(student_id=student_id)

    def assessments_for_class(self, class_id):
        return self.list_assessments(class_id=class_id)


class SqlStorage(Storage):
    def __init__(self, session):
        self.session = session

    # --- helpers ---
    def _get(self, model, row_id):
        return self.session.get(model, row_id)

    def _add(self, row):
        self.session.add(row)
        self.session.commit()
        return row

    def _update(self, model, row_id, data):
        row = self._get(model, row_id)
        if row is None:
            return None
        for key, value in data.items():
            setattr(row, key, value)
        self.session.commit()
        return row

    def _delete(self, model, row_id):
        row = self._get(model, row_id)
        if row is None:
            return False
        self.session.delete(row)
        self.session.commit()
        return True

    def _new_user(self, data, role):
        user = User(
            username=data['username'],
            email=data['email'],
            full_name=data['full_name'],
            role=role,
        )
        user.set_password(data['password'])
        return user

    # --- users ---
    def get_user(self, user_id):
        return self._get(User, user_id)

    def get_user_by_username(self, username):
        return User.query.filter_by(username=username).first()

    def create_user(self, data):
        user = self._add(self._new_user(data, data['role']))
        logger.info("Created user %s (%s)", user.username, user.role)
        return user

    # --- schools ---
    def get_school(self, school_id):
        return self._get(School, school_id)

    def list_schools(self):
        return School.query.order_by(School.id).all()

    def create_school(self, data):
        return self._add(School(**data))

    def update_school(self, school_id, data):
        return self._update(School, school_id, data)

    def delete_school(self, school_id):
        return self._delete(School, school_id)

    # --- classes ---
    def get_class(self, class_id):
        return self._get(SchoolClass, class_id)

    def list_classes(self, school_id=None):
        query = SchoolClass.query
        if school_id is not None:
            query = query.filter_by(school_id=school_id)
        return query.order_by(SchoolClass.id).all()

    def create_class(self, data):
        return self._add(SchoolClass(**data))

    def update_class(self, class_id, data):
        return self._update(SchoolClass, class_id, data)

    def delete_class(self, class_id):
        return self._delete(SchoolClass, class_id)

    # --- students ---
    def get_student(self, student_id):
        return self._get(Student, student_id)

    def list_students(self, class_id=None):
        query = Student.query
        if class_id is not None:
            query = query.filter_by(class_id=class_id)
        return query.order_by(Student.id).all()

    def create_student(self, student_data, user_data):
        student = Student(class_id=student_data['class_id'], user=self._new_user(user_data, 'student'))
        self._add(student)
        logger.info("Created student %s for user %s", student.id, student.user.username)
        return student

    def update_student(self, student_id, data):
        return self._update(Student, student_id, data)

    def delete_student(self, student_id):
        student = self._get(Student, student_id)
        if student is None:
            return False
        user = student.user
        self.session.delete(student)
        self.session.flush()
        if user is not None:
            self.session.delete(user)
        self.session.commit()
        logger.info("Deleted student %s and its user", student_id)
        return True

    def get_student_by_user_id(self, user_id):
        return Student.query.filter_by(user_id=user_id).first()

    # --- assessors ---
    def get_assessor(self, assessor_id):
        return self._get(Assessor, assessor_id)

    def list_assessors(self):
        return Assessor.query.order_by(Assessor.id).all()

    def _schools(self, school_ids):
        if not school_ids:
            return []
        return School.query.filter(School.id.in_(school_ids)).all()

    def create_assessor(self, assessor_data, user_data):
        assessor = Assessor(
            user=self._new_user(user_data, 'assessor'),
            schools=self._schools(assessor_data.get('school_ids')),
        )
        self._add(assessor)
        logger.info("Created assessor %s for user %s", assessor.id, assessor.user.username)
        return assessor

    def update_assessor(self, assessor_id, data):
        assessor = self._get(Assessor, assessor_id)
        if assessor is None:
            return None
        if data.get('school_ids') is not None:
            assessor.schools = self._schools(data['school_ids'])
        self.session.commit()
        return assessor

    def delete_assessor(self, assessor_id):
        assessor = self._get(Assessor, assessor_id)
        if assessor is None:
            return False
        user = assessor.user
        self.session.delete(assessor)
        self.session.flush()
        if user is not None:
            self.session.delete(user)
        self.session.commit()
        logger.info("Deleted assessor %s and its user", assessor_id)
        return True

    def get_assessor_by_user_id(self, user_id):
        return Assessor.query.filter_by(user_id=user_id).first()

    # --- rubric templates ---
    def get_rubric_template(self, template_id):
        return self._get(RubricTemplate, template_id)

    def list_rubric_templates(self):
        return RubricTemplate.query.order_by(RubricTemplate.id).all()

    def create_rubric_template(self, data):
        return self._add(RubricTemplate(**data))

    def update_rubric_template(self, template_id, data):
        return self._update(RubricTemplate, template_id, data)

    def delete_rubric_template(self, template_id):
        return self._delete(RubricTemplate, template_id)

    # --- tasks ---
    def get_task(self, task_id):
        return self._get(Task, task_id)

    def list_tasks(self, rubric_template_id=None):
        query = Task.query
        if rubric_template_id is not None:
            query = query.filter_by(rubric_template_id=rubric_template_id)
        return query.order_by(Task.id).all()

    def create_task(self, data):
        return self._add(Task(**data))

    def update_task(self, task_id, data):
        return self._update(Task, task_id, data)

    def delete_task(self, task_id):
        return self._delete(Task, task_id)

    # --- class tasks ---
    def get_class_task(self, class_task_id):
        return self._get(ClassTask, class_task_id)

    def list_class_tasks(self, class_id=None, task_id=None):
        query = ClassTask.query
        if class_id is not None:
            query = query.filter_by(class_id=class_id)
        if task_id is not None:
            query = query.filter_by(task_id=task_id)
        return query.order_by(ClassTask.id).all()

    def create_class_task(self, data):
        return self._add(ClassTask(**data))

    def delete_class_task(self, class_task_id):
        return self._delete(ClassTask, class_task_id)

    # --- assessments ---
    def get_assessment(self, assessment_id):
        return self._get(Assessment, assessment_id)

    def get_assessment_by_pdf_path(self, pdf_path):
        return Assessment.query.filter_by(pdf_path=pdf_path).first()

    def list_assessments(self, student_id=None, assessor_id=None, task_id=None, status=None,
                         school_id=None, class_id=None, since=None):
        # Every supplied filter narrows the result (AND)
        query = Assessment.query
        if student_id is not None:
            query = query.filter(Assessment.student_id == student_id)
        if assessor_id is not None:
            query = query.filter(Assessment.assessor_id == assessor_id)
        if task_id is not None:
            query = query.filter(Assessment.task_id == task_id)
        if status is not None:
            query = query.filter(Assessment.status == status)
        if class_id is not None or school_id is not None:
            query = query.join(Student, Assessment.student_id == Student.id)
            if class_id is not None:
                query = query.filter(Student.class_id == class_id)
            if school_id is not None:
                query = query.join(SchoolClass, Student.class_id == SchoolClass.id)
                query = query.filter(SchoolClass.school_id == school_id)
        if since is not None:
            query = query.filter(Assessment.updated_at >= since)
        return query.order_by(Assessment.id).all()

    def create_assessment(self, data):
        data = dict(data)
        scores = _json_keyed(data.pop('scores', None))
        criterion_feedback = _json_keyed(data.pop('criterion_feedback', None))
        now = utcnow()
        assessment = Assessment(
            scores=scores,
            total_score=total_of(scores),
            criterion_feedback=criterion_feedback,
            created_at=now,
            updated_at=now,
            **data
        )
        return self._add(assessment)

    def update_assessment(self, assessment_id, data):
        data = dict(data)
        if 'scores' in data:
            data['scores'] = _json_keyed(data['scores'])
            data['total_score'] = total_of(data['scores'])
        if 'criterion_feedback' in data:
            data['criterion_feedback'] = _json_keyed(data['criterion_feedback'])
        data['updated_at'] = utcnow()
        return self._update(Assessment, assessment_id, data)

    def delete_assessment(self, assessment_id):
        return self._delete(Assessment, assessment_id)

    # --- derived queries ---
    def classes_for_assessor(self, assessor_id):
        assessor = self._get(Assessor, assessor_id)
        if assessor is None:
            return []
        school_ids = assessor.school_ids
        if not school_ids:
            return []
        return SchoolClass.query.filter(SchoolClass.school_id.in_(school_ids)).order_by(SchoolClass.id).all()

    def students_for_class(self, class_id):
        return self.list_students(class_id=class_id)

    def tasks_for_class(self, class_id):
        return [class_task.task for class_task in self.list_class_tasks(class_id=class_id) if class_task.task]
