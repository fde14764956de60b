import os

import pytest


def _criteria_scores(value=4, count=5):
    return {str(i): value for i in range(1, count + 1)}


# --- schools / classes ---
def test_school_crud(admin_client):
    resp = admin_client.post("/api/schools", json={"name": "Northside College", "address": "1 North Rd"})
    assert resp.status_code == 201
    school = resp.get_json()
    assert school["name"] == "Northside College"

    resp = admin_client.put(f"/api/schools/{school['id']}", json={"address": "2 North Rd"})
    assert resp.status_code == 200
    assert resp.get_json() == {**school, "address": "2 North Rd"}

    assert admin_client.get(f"/api/schools/{school['id']}").get_json()["address"] == "2 North Rd"
    assert admin_client.delete(f"/api/schools/{school['id']}").status_code == 204
    assert admin_client.get(f"/api/schools/{school['id']}").status_code == 404


def test_school_validation_names_the_field(admin_client):
    resp = admin_client.post("/api/schools", json={"address": "Nowhere"})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["message"] == "Invalid school data"
    assert [err["loc"] for err in body["errors"]] == [["name"]]


def test_missing_rows_are_not_found(admin_client):
    assert admin_client.get("/api/schools/99").status_code == 404
    assert admin_client.put("/api/classes/99", json={"name": "X"}).status_code == 404
    assert admin_client.delete("/api/tasks/99").status_code == 404
    resp = admin_client.get("/api/assessments/99")
    assert resp.status_code == 404
    assert resp.get_json()["message"] == "Assessment not found"


def test_class_requires_existing_school(admin_client):
    resp = admin_client.post("/api/classes", json={"name": "Maths 9", "schoolId": 99})
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["loc"] == ["schoolId"]

    resp = admin_client.post("/api/classes", json={"name": "Maths 9", "schoolId": 2})
    assert resp.status_code == 201
    assert resp.get_json()["schoolId"] == 2
    assert [c["name"] for c in admin_client.get("/api/classes?schoolId=2").get_json()] == ["Literature 12C", "Maths 9"]


def test_deleting_referenced_rows_conflicts(admin_client):
    resp = admin_client.delete("/api/classes/1")
    assert resp.status_code == 409
    assert resp.get_json()["message"] == "Operation conflicts with existing records"
    assert admin_client.delete("/api/schools/1").status_code == 409
    assert admin_client.delete("/api/rubric-templates/1").status_code == 409
    # The session is usable again afterwards
    assert admin_client.get("/api/classes/1").status_code == 200


def test_class_details(admin_client):
    data = admin_client.get("/api/classes/1/details").get_json()
    assert data["school"]["name"] == "Westside High School"
    assert [s["user"]["fullName"] for s in data["students"]] == ["Jordan Smith", "Emma Johnson"]
    assert [ct["task"]["name"] for ct in data["classTasks"]] == ["Text Response Essay", "Creative Writing Assignment"]


# --- students / assessors ---
def test_student_create_and_delete(admin_client):
    payload = {
        "student": {"classId": 3},
        "user": {"username": "student3", "password": "pw123", "email": "s3@example.com", "fullName": "Liam Brown"},
    }
    resp = admin_client.post("/api/students", json=payload)
    assert resp.status_code == 201
    student = resp.get_json()
    assert student["classId"] == 3
    assert student["user"]["role"] == "student"
    assert "password" not in student["user"]

    assert admin_client.post("/api/students", json=payload).status_code == 409

    assert admin_client.delete(f"/api/students/{student['id']}").status_code == 204
    resp = admin_client.post("/api/auth/login", json={"username": "student3", "password": "pw123"})
    assert resp.status_code == 401


def test_student_create_validates_both_parts(admin_client):
    resp = admin_client.post("/api/students", json={"student": {}, "user": {"username": "x"}})
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["loc"] == ["classId"]

    resp = admin_client.post("/api/students", json={"student": {"classId": 99},
                                                     "user": {"username": "x", "password": "p",
                                                              "email": "x@example.com", "fullName": "X"}})
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["loc"] == ["classId"]


def test_assessor_create_update_and_classes(admin_client):
    resp = admin_client.post("/api/assessors", json={
        "assessor": {"schoolIds": [2]},
        "user": {"username": "marker", "password": "pw", "email": "m@example.com", "fullName": "Mia Marker"},
    })
    assert resp.status_code == 201
    assessor = resp.get_json()
    assert assessor["schoolIds"] == [2]
    assert assessor["user"]["role"] == "assessor"

    resp = admin_client.put(f"/api/assessors/{assessor['id']}", json={"schoolIds": [1, 2]})
    assert resp.get_json()["schoolIds"] == [1, 2]
    resp = admin_client.put(f"/api/assessors/{assessor['id']}", json={"schoolIds": [42]})
    assert resp.status_code == 400

    classes = admin_client.get(f"/api/assessors/{assessor['id']}/classes").get_json()
    assert len(classes) == 3


def test_assessor_sees_only_own_classes(assessor_client):
    assert len(assessor_client.get("/api/assessors/1/classes").get_json()) == 3
    assert assessor_client.get("/api/assessors/2/classes").status_code == 403


# --- rubric templates / tasks / class tasks ---
def test_rubric_template_rejects_duplicate_criterion_ids(admin_client):
    resp = admin_client.post("/api/rubric-templates", json={
        "name": "Oral Skills",
        "criteria": [{"id": 1, "name": "Clarity"}, {"id": 1, "name": "Pace"}],
    })
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["loc"] == ["criteria"]


def test_task_and_class_task_flow(admin_client):
    rubric = admin_client.post("/api/rubric-templates", json={
        "name": "Oral Skills",
        "criteria": [{"id": 1, "name": "Clarity"}, {"id": 2, "name": "Pace", "description": "Speaking speed"}],
    }).get_json()
    assert [c["name"] for c in rubric["criteria"]] == ["Clarity", "Pace"]

    resp = admin_client.post("/api/tasks", json={"name": "Speech", "rubricTemplateId": 99})
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["loc"] == ["rubricTemplateId"]

    task = admin_client.post("/api/tasks", json={"name": "Speech", "rubricTemplateId": rubric["id"]}).get_json()
    detail = admin_client.get(f"/api/tasks/{task['id']}").get_json()
    assert detail["rubricTemplate"]["name"] == "Oral Skills"

    resp = admin_client.post("/api/class-tasks", json={"classId": 3, "taskId": task["id"]})
    assert resp.status_code == 201
    class_task = resp.get_json()
    assert admin_client.post("/api/class-tasks", json={"classId": 3, "taskId": task["id"]}).status_code == 409

    listed = admin_client.get("/api/class-tasks?classId=3").get_json()
    assert [ct["taskId"] for ct in listed] == [task["id"]]
    assert admin_client.delete(f"/api/class-tasks/{class_task['id']}").status_code == 204
    assert admin_client.get("/api/class-tasks?classId=3").get_json() == []


def test_assessor_workflow_lists(assessor_client):
    students = assessor_client.get("/api/classes/1/students").get_json()
    assert [s["user"]["username"] for s in students] == ["student1", "student2"]
    tasks = assessor_client.get("/api/classes/1/tasks").get_json()
    assert [t["name"] for t in tasks] == ["Text Response Essay", "Creative Writing Assignment"]
    assessments = assessor_client.get("/api/classes/1/assessments").get_json()
    assert [a["id"] for a in assessments] == [1]


# --- assessments ---
def test_completed_assessment_gets_stored_pdf(app, assessor_client):
    resp = assessor_client.post("/api/assessments", json={
        "studentId": 2, "assessorId": 1, "taskId": 1, "status": "completed",
        "scores": _criteria_scores(4), "feedback": "Strong work throughout.",
        "criterionFeedback": {"1": "Good use of evidence."},
    })
    assert resp.status_code == 201
    assessment = resp.get_json()
    assert assessment["totalScore"] == 20.0
    assert assessment["scores"] == _criteria_scores(4)
    assert assessment["criterionFeedback"] == {"1": "Good use of evidence."}
    assert assessment["pdfPath"] == "/pdfs/EmmaJohnson_TextResponseEssay.pdf"
    assert assessment["student"]["user"]["fullName"] == "Emma Johnson"
    assert len(assessment["task"]["rubricTemplate"]["criteria"]) == 5
    assert os.path.exists(os.path.join(app.config["PDF_DIRECTORY"], "EmmaJohnson_TextResponseEssay.pdf"))

    resp = assessor_client.get(assessment["pdfPath"])
    assert resp.status_code == 200
    assert resp.mimetype == "application/pdf"
    assert resp.data.startswith(b"%PDF")


def test_total_score_ignores_client_value(assessor_client):
    resp = assessor_client.post("/api/assessments", json={
        "studentId": 2, "assessorId": 1, "taskId": 2, "scores": {"1": 2, "3": 3}, "totalScore": 50,
    })
    assert resp.status_code == 201
    assert resp.get_json()["totalScore"] == 5.0
    assert resp.get_json()["status"] == "draft"
    assert resp.get_json()["pdfPath"] is None


def test_draft_becomes_completed(assessor_client):
    draft = assessor_client.post("/api/assessments", json={
        "studentId": 2, "assessorId": 1, "taskId": 2, "scores": {"1": 3},
    }).get_json()

    resp = assessor_client.put(f"/api/assessments/{draft['id']}", json={
        "status": "completed", "scores": _criteria_scores(5),
    })
    assert resp.status_code == 200
    updated = resp.get_json()
    assert updated["status"] == "completed"
    assert updated["totalScore"] == 25.0
    assert updated["pdfPath"] == "/pdfs/EmmaJohnson_CreativeWritingAssignment.pdf"


@pytest.mark.parametrize(
    "scores, loc",
    [
        ({"1": 6}, ["scores"]),
        ({"1": 0}, ["scores"]),
        ({"9": 3}, ["scores", "9"]),
    ],
)
def test_assessment_score_validation(assessor_client, scores, loc):
    resp = assessor_client.post("/api/assessments", json={
        "studentId": 1, "assessorId": 1, "taskId": 1, "scores": scores,
    })
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["loc"] == loc


def test_assessment_references_must_exist(assessor_client):
    resp = assessor_client.post("/api/assessments", json={"studentId": 99, "assessorId": 1, "taskId": 1})
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["loc"] == ["studentId"]

    resp = assessor_client.post("/api/assessments", json={"studentId": 1, "assessorId": 1, "taskId": 1,
                                                         "status": "archived"})
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["loc"] == ["status"]


def test_assessment_list_filters(admin_client, assessor_client):
    assessor_client.post("/api/assessments", json={"studentId": 2, "assessorId": 1, "taskId": 2})
    assert len(admin_client.get("/api/assessments").get_json()) == 2
    assert [a["id"] for a in admin_client.get("/api/assessments?status=completed").get_json()] == [1]
    assert admin_client.get("/api/assessments?schoolId=2").get_json() == []
    assert len(admin_client.get("/api/assessments?classId=1&assessorId=1").get_json()) == 2
    assert admin_client.get("/api/assessments?status=bogus").status_code == 400


def test_students_only_see_their_own_assessments(assessor_client, student_client):
    assessor_client.post("/api/assessments", json={"studentId": 2, "assessorId": 1, "taskId": 2})

    own = student_client.get("/api/assessments").get_json()
    assert [a["studentId"] for a in own] == [1]
    assert [a["studentId"] for a in student_client.get("/api/assessments?studentId=2").get_json()] == [1]
    assert student_client.get("/api/students/1/assessments").status_code == 200
    assert student_client.get("/api/students/2/assessments").status_code == 403
    assert student_client.get("/api/assessments/2").status_code == 403


def test_feedback_pdf_download(student_client):
    resp = student_client.get("/api/assessments/1/pdf")
    assert resp.status_code == 200
    assert resp.mimetype == "application/pdf"
    assert "JordanSmith_TextResponseEssay.pdf" in resp.headers["Content-Disposition"]


def test_delete_assessment(assessor_client):
    assert assessor_client.delete("/api/assessments/1").status_code == 204
    assert assessor_client.get("/api/assessments/1").status_code == 404
    assert assessor_client.delete("/api/assessments/1").status_code == 404


# --- reports / dashboard ---
def test_assessment_report_download(admin_client):
    resp = admin_client.get("/api/reports/assessments?period=month&schoolId=1")
    assert resp.status_code == 200
    assert resp.mimetype == "application/pdf"
    disposition = resp.headers["Content-Disposition"]
    assert disposition.startswith("attachment")
    assert "Comprehensive_Assessment_Report_" in disposition
    assert resp.data.startswith(b"%PDF")


def test_assessment_report_rejects_unknown_period(admin_client):
    resp = admin_client.get("/api/reports/assessments?period=decade")
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["loc"] == ["period"]


def test_dashboard_stats(admin_client, assessor_client):
    assessor_client.post("/api/assessments", json={"studentId": 2, "assessorId": 1, "taskId": 2})
    stats = admin_client.get("/api/dashboard/stats").get_json()
    assert stats["schools"] == 2
    assert stats["classes"] == 3
    assert stats["students"] == 2
    assert stats["assessors"] == 1
    assert stats["tasks"] == 2
    assert stats["assessments"] == {"total": 2, "completed": 1, "completionRate": 50, "averageScore": 19.0}
    assert stats["schoolAverages"] == [{"schoolId": 1, "name": "Westside High School", "averageScore": 19.0}]


def test_json_errors_for_unknown_routes(admin_client):
    resp = admin_client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert "message" in resp.get_json()


# --- partial updates ---
@pytest.mark.parametrize(
    "url, field",
    [
        ("/api/schools/1", "name"),
        ("/api/classes/1", "name"),
        ("/api/classes/1", "schoolId"),
        ("/api/students/1", "classId"),
        ("/api/assessors/1", "schoolIds"),
        ("/api/rubric-templates/1", "name"),
        ("/api/rubric-templates/1", "criteria"),
        ("/api/tasks/1", "name"),
        ("/api/tasks/1", "rubricTemplateId"),
    ],
)
def test_admin_updates_reject_null_required_fields(admin_client, url, field):
    resp = admin_client.put(url, json={field: None})
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["loc"] == [field]


@pytest.mark.parametrize("field", ["studentId", "assessorId", "taskId", "status", "scores"])
def test_assessment_update_rejects_null_required_fields(assessor_client, field):
    resp = assessor_client.put("/api/assessments/1", json={field: None})
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["loc"] == [field]
    assert assessor_client.get("/api/assessments/1").get_json()["status"] == "completed"


def test_nullable_fields_can_be_cleared(admin_client, assessor_client):
    resp = admin_client.put("/api/schools/1", json={"address": None})
    assert resp.status_code == 200
    assert resp.get_json()["address"] is None

    resp = assessor_client.put("/api/assessments/1", json={"feedback": None})
    assert resp.status_code == 200
    assert resp.get_json()["feedback"] is None


def test_user_role_comes_from_the_endpoint(admin_client):
    resp = admin_client.post("/api/students", json={
        "student": {"classId": 1},
        "user": {"username": "sneaky", "password": "pw", "email": "s@example.com", "fullName": "Sam Sneaky",
                 "role": "admin"},
    })
    assert resp.status_code == 201
    assert resp.get_json()["user"]["role"] == "student"


def test_non_integer_filters_are_rejected(admin_client):
    resp = admin_client.get("/api/assessments?schoolId=abc")
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["loc"] == ["schoolId"]
    assert admin_client.get("/api/classes?schoolId=1.5").status_code == 400
    assert len(admin_client.get("/api/classes?schoolId=").get_json()) == 3


# --- stored documents ---
def test_stored_pdfs_are_scoped_to_their_student(assessor_client, student_client):
    created = assessor_client.post("/api/assessments", json={
        "studentId": 2, "assessorId": 1, "taskId": 1, "status": "completed", "scores": _criteria_scores(3),
    }).get_json()
    assert created["pdfPath"] == "/pdfs/EmmaJohnson_TextResponseEssay.pdf"

    assert student_client.get(created["pdfPath"]).status_code == 403
    assert student_client.get("/pdfs/JordanSmith_TextResponseEssay.pdf").status_code == 200
    assert assessor_client.get(created["pdfPath"]).status_code == 200
    assert student_client.get("/pdfs/Nobody_Nothing.pdf").status_code == 404


# --- progress ---
def test_student_progress(assessor_client, student_client):
    assessor_client.post("/api/assessments", json={
        "studentId": 1, "assessorId": 1, "taskId": 2, "status": "completed", "scores": _criteria_scores(5),
    })
    assessor_client.post("/api/assessments", json={"studentId": 1, "assessorId": 1, "taskId": 2, "scores": {"1": 1}})

    progress = student_client.get("/api/students/1/progress").get_json()
    assert progress["studentId"] == 1
    assert progress["completed"] == 2
    assert progress["averageScore"] == 22.0
    assert progress["improvement"] == 6.0
    assert len(progress["criteria"]) == 5
    assert progress["criteria"][0] == {"criterionId": 1, "name": "Content Knowledge", "average": 4.0, "count": 2}
    assert [entry["taskName"] for entry in progress["timeline"]] == [
        "Text Response Essay", "Creative Writing Assignment",
    ]
    assert progress["timeline"][-1]["updatedRelative"] == "just now"


def test_student_progress_for_one_task(assessor_client, student_client):
    assessor_client.post("/api/assessments", json={
        "studentId": 1, "assessorId": 1, "taskId": 2, "status": "completed", "scores": _criteria_scores(5),
    })
    progress = student_client.get("/api/students/1/progress?taskId=2").get_json()
    assert progress["completed"] == 1
    assert progress["improvement"] == 0.0
    assert progress["criteria"][0]["average"] == 5.0
    assert progress["criteria"][0]["count"] == 1


def test_student_progress_access(admin_client, student_client):
    assert student_client.get("/api/students/2/progress").status_code == 403
    assert admin_client.get("/api/students/99/progress").status_code == 404
    assert admin_client.get("/api/students/2/progress?taskId=99").status_code == 404
    assert admin_client.get("/api/students/2/progress?taskId=x").status_code == 400

    empty = admin_client.get("/api/students/2/progress").get_json()
    assert empty["completed"] == 0
    assert empty["criteria"] == []
    assert empty["timeline"] == []
