"""Demo data for local development and tests."""

import logging

from feedback_platform.documents import store_assessment_pdf

logger = logging.getLogger(__name__)

WRITING_CRITERIA = [
    {"id": 1, "name": "Content Knowledge",
     "description": "Understanding of key concepts and subject matter"},
    {"id": 2, "name": "Analysis & Critical Thinking",
     "description": "Ability to analyze information, draw conclusions, and think critically"},
    {"id": 3, "name": "Organization & Structure",
     "description": "Logical organization and clear structure of ideas and information"},
    {"id": 4, "name": "Language & Communication",
     "description": "Use of appropriate language, grammar, and ability to communicate ideas"},
    {"id": 5, "name": "Creativity & Innovation",
     "description": "Original thinking, creative solutions, and innovative approaches"},
]

SAMPLE_FEEDBACK = (
    "Jordan demonstrates excellent organization and structure in their essay. Their analytical "
    "skills are strong, showing good critical thinking in their interpretation of the text. Areas "
    "for improvement include expanding content knowledge with more specific examples from the text, "
    "and working on grammar and sentence structure for clearer communication. Overall, this is a "
    "solid effort with great potential for further development."
)


def seed_demo_data(storage, pdf_directory=None):
    """Populate an empty database; does nothing once an admin exists."""
    if storage.get_user_by_username('admin'):
        return False

    storage.create_user({
        'username': 'admin', 'password': 'admin123', 'email': 'admin@example.com',
        'full_name': 'Admin User', 'role': 'admin',
    })

    westside = storage.create_school({'name': 'Westside High School', 'address': '123 West Street'})
    eastside = storage.create_school({'name': 'Eastside Academy', 'address': '456 East Avenue'})

    english = storage.create_class({'name': 'English 10A', 'school_id': westside.id})
    storage.create_class({'name': 'Science 11B', 'school_id': westside.id})
    storage.create_class({'name': 'Literature 12C', 'school_id': eastside.id})

    assessor = storage.create_assessor(
        {'school_ids': [westside.id, eastside.id]},
        {'username': 'assessor', 'password': 'assessor123', 'email': 'assessor@example.com',
         'full_name': 'John Smith'},
    )

    jordan = storage.create_student(
        {'class_id': english.id},
        {'username': 'student1', 'password': 'student123', 'email': 'student1@example.com',
         'full_name': 'Jordan Smith'},
    )
    storage.create_student(
        {'class_id': english.id},
        {'username': 'student2', 'password': 'student123', 'email': 'student2@example.com',
         'full_name': 'Emma Johnson'},
    )

    rubric = storage.create_rubric_template({
        'name': 'Writing Skills Rubric',
        'description': 'Rubric for evaluating writing skills',
        'criteria': WRITING_CRITERIA,
    })

    essay = storage.create_task({
        'name': 'Text Response Essay',
        'description': 'Write a response to the provided text',
        'rubric_template_id': rubric.id,
    })
    creative = storage.create_task({
        'name': 'Creative Writing Assignment',
        'description': 'Create an original piece of creative writing',
        'rubric_template_id': rubric.id,
    })

    storage.create_class_task({'class_id': english.id, 'task_id': essay.id})
    storage.create_class_task({'class_id': english.id, 'task_id': creative.id})

    sample = storage.create_assessment({
        'student_id': jordan.id,
        'assessor_id': assessor.id,
        'task_id': essay.id,
        'status': 'completed',
        'scores': {1: 3, 2: 4, 3: 5, 4: 3, 5: 4},
        'feedback': SAMPLE_FEEDBACK,
    })
    if pdf_directory:
        storage.update_assessment(sample.id, {'pdf_path': store_assessment_pdf(sample, pdf_directory)})

    logger.info("Seeded demo data")
    return True
