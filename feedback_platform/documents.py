import logging
import os
import re

from werkzeug.utils import secure_filename

from feedback_platform.pdf_report import build_feedback_pdf

logger = logging.getLogger(__name__)

PDF_URL_PREFIX = '/pdfs'


def _squash(text):
    return re.sub(r'\s+', '', text or '')


def pdf_filename(assessment):
    student_name = assessment.student.user.full_name if assessment.student else ''
    task_name = assessment.task.name if assessment.task else ''
    filename = secure_filename(f"{_squash(student_name)}_{_squash(task_name)}.pdf")
    if filename in ('', '_.pdf', '.pdf'):
        filename = f"assessment_{assessment.id}.pdf"
    return filename


def feedback_criteria(assessment):
    """Rubric criteria in rubric order, paired with the scores given."""
    rubric = assessment.task.rubric_template if assessment.task else None
    scores = assessment.scores or {}
    notes = assessment.criterion_feedback or {}
    criteria = []
    for criterion in (rubric.criteria if rubric else []):
        key = str(criterion['id'])
        if key not in scores:
            continue
        criteria.append({
            'name': criterion['name'],
            'description': criterion.get('description'),
            'score': scores[key],
            'feedback': notes.get(key, ''),
        })
    return criteria


def render_assessment_pdf(assessment):
    student_user = assessment.student.user if assessment.student else None
    assessor_user = assessment.assessor.user if assessment.assessor else None
    return build_feedback_pdf(
        student_name=student_user.full_name if student_user else 'Unknown',
        assessor_name=assessor_user.full_name if assessor_user else 'Unknown',
        task_name=assessment.task.name if assessment.task else 'Unknown',
        criteria=feedback_criteria(assessment),
        total_score=assessment.total_score,
        date=assessment.updated_at,
        overall_feedback=assessment.feedback or '',
    )


def store_assessment_pdf(assessment, directory):
    """Write the feedback PDF under ``directory``; returns its public path."""
    filename = pdf_filename(assessment)
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, filename), 'wb') as handle:
        handle.write(render_assessment_pdf(assessment))
    logger.info("Stored feedback PDF %s for assessment %s", filename, assessment.id)
    return f"{PDF_URL_PREFIX}/{filename}"
