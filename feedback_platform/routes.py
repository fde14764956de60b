import logging
from datetime import timedelta
from io import BytesIO

from flask import Blueprint, current_app, jsonify, request, send_file, send_from_directory

from feedback_platform import schemas
from feedback_platform.auth import (
    admin_required, assessor_required, authenticate, current_user, login_required, login_user, logout_user,
)
from feedback_platform.documents import PDF_URL_PREFIX, pdf_filename, render_assessment_pdf, store_assessment_pdf
from feedback_platform.errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationFailed
from feedback_platform.models import ASSESSMENT_STATUSES, utcnow
from feedback_platform.pdf_report import build_summary_report
from feedback_platform.schemas import changes, parse
from feedback_platform.scoring import (
    criterion_averages, finite_or_zero, format_relative_time, group_average, summarize_assessments,
)
from feedback_platform.storage import get_storage

logger = logging.getLogger(__name__)

routes = Blueprint('routes', __name__)

REPORT_PERIODS = {
    'week': (7, 'Last Week'),
    'month': (30, 'Last Month'),
    'quarter': (90, 'Last Quarter'),
    'year': (365, 'Last Year'),
    'all': (None, 'All Time'),
}


# --- HELPERS ---
def _body():
    data = request.get_json(force=True, silent=False)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return data


def _int_arg(name):
    value = request.args.get(name)
    if value is None or value == '':
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationFailed.for_field("Invalid filter", name, f"{name} must be an integer")


def _found(row, message):
    if row is None:
        raise NotFound(message)
    return row


def _no_content():
    return '', 204


def _require_ref(getter, row_id, field, label, message):
    if row_id is not None and getter(row_id) is None:
        raise ValidationFailed.for_field(message, field, f"{label} {row_id} does not exist")


def _student_scope():
    """The caller's own student id when the caller is a student, else None."""
    user = current_user()
    if user.role != 'student':
        return None
    student = get_storage().get_student_by_user_id(user.id)
    if student is None:
        raise Forbidden("Forbidden - no student record for this user")
    return student.id


def _check_student_access(student_id):
    own = _student_scope()
    if own is not None and own != student_id:
        raise Forbidden("Forbidden - You do not have access to this student's assessments")


def _status_arg():
    status = request.args.get('status') or None
    if status is not None and status not in ASSESSMENT_STATUSES:
        raise ValidationFailed.for_field("Invalid filter", 'status', f"status must be one of {', '.join(ASSESSMENT_STATUSES)}")
    return status


def _assessment_dicts(assessments):
    # Rows whose relations have gone missing are left out
    return [a.to_dict() for a in assessments if a.student and a.assessor and a.task]


# --- AUTH ROUTES ---
@routes.route('/api/auth/login', methods=['POST'])
def login():
    payload = parse(schemas.LoginRequest, _body(), 'Invalid login data')
    user = authenticate(payload.username, payload.password)
    if user is None:
        raise Unauthorized('Invalid username or password')
    login_user(user)
    return jsonify({"user": user.to_dict()})


@routes.route('/api/auth/logout', methods=['POST'])
def logout():
    logout_user()
    return jsonify({"message": "Logged out successfully"})


@routes.route('/api/auth/status')
def auth_status():
    user = current_user()
    if user is None:
        return jsonify({"authenticated": False})
    return jsonify({"authenticated": True, "user": user.to_dict()})


@routes.route('/api/user')
@login_required
def user_profile():
    storage = get_storage()
    user = current_user()
    data = user.to_dict()

    # Role-specific details
    if user.role == 'assessor':
        assessor = storage.get_assessor_by_user_id(user.id)
        if assessor:
            data['assessorId'] = assessor.id
            data['schoolIds'] = assessor.school_ids
    elif user.role == 'student':
        student = storage.get_student_by_user_id(user.id)
        if student:
            data['studentId'] = student.id
            data['classId'] = student.class_id
            cls = storage.get_class(student.class_id)
            if cls:
                data['class'] = cls.to_dict()
                school = storage.get_school(cls.school_id)
                if school:
                    data['school'] = school.to_dict()
    return jsonify(data)


# --- SCHOOL ROUTES ---
@routes.route('/api/schools')
@login_required
def list_schools():
    return jsonify([school.to_dict() for school in get_storage().list_schools()])


@routes.route('/api/schools/<int:id>')
@login_required
def get_school(id):
    return jsonify(_found(get_storage().get_school(id), 'School not found').to_dict())


@routes.route('/api/schools', methods=['POST'])
@admin_required
def create_school():
    payload = parse(schemas.SchoolCreate, _body(), 'Invalid school data')
    school = get_storage().create_school(payload.model_dump())
    logger.info("Created school %s", school.id)
    return jsonify(school.to_dict()), 201


@routes.route('/api/schools/<int:id>', methods=['PUT'])
@admin_required
def update_school(id):
    payload = parse(schemas.SchoolUpdate, _body(), 'Invalid school data')
    school = get_storage().update_school(id, changes(payload))
    return jsonify(_found(school, 'School not found').to_dict())


@routes.route('/api/schools/<int:id>', methods=['DELETE'])
@admin_required
def delete_school(id):
    if not get_storage().delete_school(id):
        raise NotFound('School not found')
    logger.info("Deleted school %s", id)
    return _no_content()


# --- CLASS ROUTES ---
@routes.route('/api/classes')
@login_required
def list_classes():
    classes = get_storage().list_classes(school_id=_int_arg('schoolId'))
    return jsonify([cls.to_dict() for cls in classes])


@routes.route('/api/classes/<int:id>')
@login_required
def get_class(id):
    return jsonify(_found(get_storage().get_class(id), 'Class not found').to_dict())


@routes.route('/api/classes/<int:id>/details')
@login_required
def get_class_details(id):
    storage = get_storage()
    cls = _found(storage.get_class(id), 'Class not found')
    data = cls.to_dict()
    data['school'] = cls.school.to_dict() if cls.school else None
    data['students'] = [student.to_dict() for student in storage.students_for_class(id)]
    data['classTasks'] = [ct.to_dict(with_task=True) for ct in storage.list_class_tasks(class_id=id)]
    return jsonify(data)


@routes.route('/api/classes', methods=['POST'])
@admin_required
def create_class():
    storage = get_storage()
    payload = parse(schemas.ClassCreate, _body(), 'Invalid class data')
    _require_ref(storage.get_school, payload.school_id, 'schoolId', 'School', 'Invalid class data')
    cls = storage.create_class(payload.model_dump())
    logger.info("Created class %s", cls.id)
    return jsonify(cls.to_dict()), 201


@routes.route('/api/classes/<int:id>', methods=['PUT'])
@admin_required
def update_class(id):
    storage = get_storage()
    payload = parse(schemas.ClassUpdate, _body(), 'Invalid class data')
    data = changes(payload)
    _require_ref(storage.get_school, data.get('school_id'), 'schoolId', 'School', 'Invalid class data')
    return jsonify(_found(storage.update_class(id, data), 'Class not found').to_dict())


@routes.route('/api/classes/<int:id>', methods=['DELETE'])
@admin_required
def delete_class(id):
    if not get_storage().delete_class(id):
        raise NotFound('Class not found')
    logger.info("Deleted class %s", id)
    return _no_content()


# --- STUDENT ROUTES ---
@routes.route('/api/students')
@login_required
def list_students():
    students = get_storage().list_students(class_id=_int_arg('classId'))
    return jsonify([student.to_dict() for student in students])


@routes.route('/api/students/<int:id>')
@login_required
def get_student(id):
    return jsonify(_found(get_storage().get_student(id), 'Student not found').to_dict())


@routes.route('/api/students', methods=['POST'])
@admin_required
def create_student():
    storage = get_storage()
    body = _body()
    student_data = parse(schemas.StudentCreate, body.get('student'), 'Invalid student data')
    user_data = parse(schemas.UserCreate, body.get('user'), 'Invalid student data')
    _require_ref(storage.get_class, student_data.class_id, 'classId', 'Class', 'Invalid student data')
    if storage.get_user_by_username(user_data.username):
        raise Conflict('Username already exists')
    student = storage.create_student(student_data.model_dump(), user_data.model_dump())
    return jsonify(student.to_dict()), 201


@routes.route('/api/students/<int:id>', methods=['PUT'])
@admin_required
def update_student(id):
    storage = get_storage()
    payload = parse(schemas.StudentUpdate, _body(), 'Invalid student data')
    data = changes(payload)
    _require_ref(storage.get_class, data.get('class_id'), 'classId', 'Class', 'Invalid student data')
    return jsonify(_found(storage.update_student(id, data), 'Student not found').to_dict())


@routes.route('/api/students/<int:id>', methods=['DELETE'])
@admin_required
def delete_student(id):
    if not get_storage().delete_student(id):
        raise NotFound('Student not found')
    return _no_content()


@routes.route('/api/students/<int:id>/assessments')
@login_required
def student_assessments(id):
    _check_student_access(id)
    return jsonify(_assessment_dicts(get_storage().assessments_for_student(id)))


@routes.route('/api/students/<int:id>/progress')
@login_required
def student_progress(id):
    storage = get_storage()
    _check_student_access(id)
    _found(storage.get_student(id), 'Student not found')
    task_id = _int_arg('taskId')
    assessments = storage.list_assessments(student_id=id, task_id=task_id)
    records = _assessment_dicts(assessments)

    if task_id is not None:
        rubrics = [_found(storage.get_task(task_id), 'Task not found').rubric_template]
    else:
        rubrics = [a.task.rubric_template for a in assessments if a.task]
    criteria, seen = [], set()
    for rubric in rubrics:
        for criterion in (rubric.criteria if rubric else []):
            if criterion['id'] not in seen:
                seen.add(criterion['id'])
                criteria.append(criterion)

    completed = sorted((r for r in records if r['status'] == 'completed'),
                       key=lambda r: (r['updatedAt'] or '', r['id']))
    improvement = 0.0
    if len(completed) >= 2:
        improvement = finite_or_zero(completed[-1]['totalScore']) - finite_or_zero(completed[0]['totalScore'])

    summary = summarize_assessments(records)
    return jsonify({
        "studentId": id,
        "completed": summary['completed'],
        "averageScore": round(summary['average_score'], 2),
        "improvement": round(improvement, 2),
        "criteria": [dict(entry, average=round(entry['average'], 2))
                     for entry in criterion_averages(records, criteria)],
        "timeline": [
            {
                "assessmentId": record['id'],
                "taskName": record['task']['name'],
                "totalScore": record['totalScore'],
                "updatedAt": record['updatedAt'],
                "updatedRelative": format_relative_time(record['updatedAt']),
            }
            for record in completed
        ],
    })


# --- ASSESSOR ROUTES ---
@routes.route('/api/assessors')
@admin_required
def list_assessors():
    return jsonify([assessor.to_dict() for assessor in get_storage().list_assessors()])


@routes.route('/api/assessors/<int:id>')
@admin_required
def get_assessor(id):
    return jsonify(_found(get_storage().get_assessor(id), 'Assessor not found').to_dict())


def _check_school_ids(school_ids, message):
    storage = get_storage()
    missing = [school_id for school_id in school_ids or [] if storage.get_school(school_id) is None]
    if missing:
        raise ValidationFailed.for_field(message, 'schoolIds', f"Unknown school ids: {missing}")


@routes.route('/api/assessors', methods=['POST'])
@admin_required
def create_assessor():
    storage = get_storage()
    body = _body()
    assessor_data = parse(schemas.AssessorCreate, body.get('assessor'), 'Invalid assessor data')
    user_data = parse(schemas.UserCreate, body.get('user'), 'Invalid assessor data')
    _check_school_ids(assessor_data.school_ids, 'Invalid assessor data')
    if storage.get_user_by_username(user_data.username):
        raise Conflict('Username already exists')
    assessor = storage.create_assessor(assessor_data.model_dump(), user_data.model_dump())
    return jsonify(assessor.to_dict()), 201


@routes.route('/api/assessors/<int:id>', methods=['PUT'])
@admin_required
def update_assessor(id):
    payload = parse(schemas.AssessorUpdate, _body(), 'Invalid assessor data')
    data = changes(payload)
    _check_school_ids(data.get('school_ids'), 'Invalid assessor data')
    return jsonify(_found(get_storage().update_assessor(id, data), 'Assessor not found').to_dict())


@routes.route('/api/assessors/<int:id>', methods=['DELETE'])
@admin_required
def delete_assessor(id):
    if not get_storage().delete_assessor(id):
        raise NotFound('Assessor not found')
    return _no_content()


@routes.route('/api/assessors/<int:id>/classes')
@login_required
def assessor_classes(id):
    storage = get_storage()
    user = current_user()
    if user.role != 'admin':
        own = storage.get_assessor_by_user_id(user.id) if user.role == 'assessor' else None
        if own is None or own.id != id:
            raise Forbidden("Forbidden - You do not have access to this assessor's classes")
    return jsonify([cls.to_dict() for cls in storage.classes_for_assessor(id)])


# --- RUBRIC TEMPLATE ROUTES ---
@routes.route('/api/rubric-templates')
@login_required
def list_rubric_templates():
    return jsonify([template.to_dict() for template in get_storage().list_rubric_templates()])


@routes.route('/api/rubric-templates/<int:id>')
@login_required
def get_rubric_template(id):
    return jsonify(_found(get_storage().get_rubric_template(id), 'Rubric template not found').to_dict())


@routes.route('/api/rubric-templates', methods=['POST'])
@admin_required
def create_rubric_template():
    payload = parse(schemas.RubricTemplateCreate, _body(), 'Invalid rubric template data')
    template = get_storage().create_rubric_template(payload.model_dump())
    logger.info("Created rubric template %s with %d criteria", template.id, len(template.criteria))
    return jsonify(template.to_dict()), 201


@routes.route('/api/rubric-templates/<int:id>', methods=['PUT'])
@admin_required
def update_rubric_template(id):
    payload = parse(schemas.RubricTemplateUpdate, _body(), 'Invalid rubric template data')
    template = get_storage().update_rubric_template(id, changes(payload))
    return jsonify(_found(template, 'Rubric template not found').to_dict())


@routes.route('/api/rubric-templates/<int:id>', methods=['DELETE'])
@admin_required
def delete_rubric_template(id):
    if not get_storage().delete_rubric_template(id):
        raise NotFound('Rubric template not found')
    return _no_content()


# --- TASK ROUTES ---
@routes.route('/api/tasks')
@login_required
def list_tasks():
    tasks = get_storage().list_tasks(rubric_template_id=_int_arg('rubricTemplateId'))
    return jsonify([task.to_dict() for task in tasks])


@routes.route('/api/tasks/<int:id>')
@login_required
def get_task(id):
    return jsonify(_found(get_storage().get_task(id), 'Task not found').to_dict(with_rubric=True))


@routes.route('/api/tasks', methods=['POST'])
@admin_required
def create_task():
    storage = get_storage()
    payload = parse(schemas.TaskCreate, _body(), 'Invalid task data')
    _require_ref(storage.get_rubric_template, payload.rubric_template_id, 'rubricTemplateId',
                 'Rubric template', 'Invalid task data')
    task = storage.create_task(payload.model_dump())
    return jsonify(task.to_dict()), 201


@routes.route('/api/tasks/<int:id>', methods=['PUT'])
@admin_required
def update_task(id):
    storage = get_storage()
    payload = parse(schemas.TaskUpdate, _body(), 'Invalid task data')
    data = changes(payload)
    _require_ref(storage.get_rubric_template, data.get('rubric_template_id'), 'rubricTemplateId',
                 'Rubric template', 'Invalid task data')
    return jsonify(_found(storage.update_task(id, data), 'Task not found').to_dict())


@routes.route('/api/tasks/<int:id>', methods=['DELETE'])
@admin_required
def delete_task(id):
    if not get_storage().delete_task(id):
        raise NotFound('Task not found')
    return _no_content()


# --- CLASS TASK ROUTES ---
@routes.route('/api/class-tasks')
@login_required
def list_class_tasks():
    class_tasks = get_storage().list_class_tasks(class_id=_int_arg('classId'), task_id=_int_arg('taskId'))
    return jsonify([ct.to_dict() for ct in class_tasks])


@routes.route('/api/class-tasks', methods=['POST'])
@admin_required
def create_class_task():
    storage = get_storage()
    payload = parse(schemas.ClassTaskCreate, _body(), 'Invalid class task data')
    _require_ref(storage.get_class, payload.class_id, 'classId', 'Class', 'Invalid class task data')
    _require_ref(storage.get_task, payload.task_id, 'taskId', 'Task', 'Invalid class task data')
    if storage.list_class_tasks(class_id=payload.class_id, task_id=payload.task_id):
        raise Conflict('Task is already assigned to this class')
    class_task = storage.create_class_task(payload.model_dump())
    return jsonify(class_task.to_dict()), 201


@routes.route('/api/class-tasks/<int:id>', methods=['DELETE'])
@admin_required
def delete_class_task(id):
    if not get_storage().delete_class_task(id):
        raise NotFound('Class task not found')
    return _no_content()


# --- ASSESSOR WORKFLOW ROUTES ---
@routes.route('/api/classes/<int:id>/students')
@assessor_required
def class_students(id):
    return jsonify([student.to_dict() for student in get_storage().students_for_class(id)])


@routes.route('/api/classes/<int:id>/tasks')
@assessor_required
def class_tasks(id):
    return jsonify([task.to_dict() for task in get_storage().tasks_for_class(id)])


@routes.route('/api/classes/<int:id>/assessments')
@assessor_required
def class_assessments(id):
    return jsonify(_assessment_dicts(get_storage().assessments_for_class(id)))


# --- ASSESSMENT ROUTES ---
def _validate_assessment(student_id, assessor_id, task_id, scores, criterion_feedback):
    storage = get_storage()
    message = 'Invalid assessment data'
    _require_ref(storage.get_student, student_id, 'studentId', 'Student', message)
    _require_ref(storage.get_assessor, assessor_id, 'assessorId', 'Assessor', message)
    task = storage.get_task(task_id)
    if task is None:
        raise ValidationFailed.for_field(message, 'taskId', f"Task {task_id} does not exist")

    # Scores and notes must refer to criteria of the task's rubric
    allowed = set(str(cid) for cid in task.rubric_template.criterion_ids) if task.rubric_template else set()
    errors = []
    for field, mapping in (('scores', scores), ('criterionFeedback', criterion_feedback)):
        for key in (mapping or {}):
            if str(key) not in allowed:
                errors.append({"loc": [field, str(key)], "msg": f"Criterion {key} is not part of the task's rubric",
                               "type": "value_error"})
    if errors:
        raise ValidationFailed(message, errors)


def _attach_pdf(assessment):
    path = store_assessment_pdf(assessment, current_app.config['PDF_DIRECTORY'])
    return get_storage().update_assessment(assessment.id, {'pdf_path': path})


@routes.route('/api/assessments')
@login_required
def list_assessments():
    own = _student_scope()
    student_id = own if own is not None else _int_arg('studentId')
    assessments = get_storage().list_assessments(
        student_id=student_id,
        assessor_id=_int_arg('assessorId'),
        task_id=_int_arg('taskId'),
        status=_status_arg(),
        school_id=_int_arg('schoolId'),
        class_id=_int_arg('classId'),
    )
    return jsonify(_assessment_dicts(assessments))


@routes.route('/api/assessments/<int:id>')
@login_required
def get_assessment(id):
    assessment = _found(get_storage().get_assessment(id), 'Assessment not found')
    _check_student_access(assessment.student_id)
    return jsonify(assessment.to_dict())


@routes.route('/api/assessments/<int:id>/pdf')
@login_required
def assessment_pdf(id):
    assessment = _found(get_storage().get_assessment(id), 'Assessment not found')
    _check_student_access(assessment.student_id)
    return send_file(BytesIO(render_assessment_pdf(assessment)), mimetype='application/pdf',
                     download_name=pdf_filename(assessment))


@routes.route('/api/assessments', methods=['POST'])
@assessor_required
def create_assessment():
    payload = parse(schemas.AssessmentCreate, _body(), 'Invalid assessment data')
    _validate_assessment(payload.student_id, payload.assessor_id, payload.task_id,
                         payload.scores, payload.criterion_feedback)
    assessment = get_storage().create_assessment(payload.model_dump())
    logger.info("Created assessment %s (%s)", assessment.id, assessment.status)

    # Completed assessments get their feedback PDF straight away
    if assessment.is_completed:
        assessment = _attach_pdf(assessment)
    return jsonify(assessment.to_dict()), 201


@routes.route('/api/assessments/<int:id>', methods=['PUT'])
@assessor_required
def update_assessment(id):
    storage = get_storage()
    payload = parse(schemas.AssessmentUpdate, _body(), 'Invalid assessment data')
    current = _found(storage.get_assessment(id), 'Assessment not found')
    was_completed, had_pdf = current.is_completed, bool(current.pdf_path)

    data = changes(payload)
    _validate_assessment(
        data.get('student_id', current.student_id),
        data.get('assessor_id', current.assessor_id),
        data.get('task_id', current.task_id),
        data['scores'] if 'scores' in data else current.scores,
        data['criterion_feedback'] if 'criterion_feedback' in data else current.criterion_feedback,
    )
    assessment = _found(storage.update_assessment(id, data), 'Assessment not found')

    if assessment.is_completed and (not was_completed or not had_pdf):
        assessment = _attach_pdf(assessment)
    return jsonify(assessment.to_dict())


@routes.route('/api/assessments/<int:id>', methods=['DELETE'])
@assessor_required
def delete_assessment(id):
    if not get_storage().delete_assessment(id):
        raise NotFound('Assessment not found')
    logger.info("Deleted assessment %s", id)
    return _no_content()


# --- REPORTS & DASHBOARD ---
@routes.route('/api/reports/assessments')
@admin_required
def assessment_report():
    storage = get_storage()
    period = request.args.get('period', 'all')
    if period not in REPORT_PERIODS:
        raise ValidationFailed.for_field('Invalid report filter', 'period',
                                         f"period must be one of {', '.join(REPORT_PERIODS)}")
    days, period_label = REPORT_PERIODS[period]
    since = utcnow() - timedelta(days=days) if days else None

    school_id, class_id = _int_arg('schoolId'), _int_arg('classId')
    school = storage.get_school(school_id) if school_id is not None else None
    cls = storage.get_class(class_id) if class_id is not None else None

    assessments = storage.list_assessments(
        status=_status_arg(),
        task_id=_int_arg('taskId'),
        school_id=school_id,
        class_id=class_id,
        since=since,
    )
    filename, pdf_bytes = build_summary_report(
        _assessment_dicts(assessments),
        period=period_label,
        school_filter=school.name if school else 'all',
        class_filter=cls.name if cls else 'all',
    )
    return send_file(BytesIO(pdf_bytes), mimetype='application/pdf', as_attachment=True,
                     download_name=filename)


@routes.route('/api/dashboard/stats')
@admin_required
def dashboard_stats():
    storage = get_storage()
    students = storage.list_students()
    records = _assessment_dicts(storage.list_assessments())

    school_of_student = {}
    for student in students:
        if student.school_class is not None:
            school_of_student[student.id] = student.school_class.school_id
    averages = group_average(records, key=lambda record: school_of_student.get(record['studentId']))

    summary = summarize_assessments(records)
    return jsonify({
        "schools": len(storage.list_schools()),
        "classes": len(storage.list_classes()),
        "students": len(students),
        "assessors": len(storage.list_assessors()),
        "tasks": len(storage.list_tasks()),
        "assessments": {
            "total": summary['total'],
            "completed": summary['completed'],
            "completionRate": summary['completion_rate'],
            "averageScore": round(summary['average_score'], 2),
        },
        "schoolAverages": [
            {"schoolId": school.id, "name": school.name, "averageScore": round(averages[school.id], 2)}
            for school in storage.list_schools() if school.id in averages
        ],
    })


# --- STORED DOCUMENTS ---
@routes.route('/pdfs/<path:filename>')
@login_required
def stored_pdf(filename):
    assessment = _found(get_storage().get_assessment_by_pdf_path(f"{PDF_URL_PREFIX}/{filename}"),
                        'Document not found')
    _check_student_access(assessment.student_id)
    return send_from_directory(current_app.config['PDF_DIRECTORY'], filename, mimetype='application/pdf')
