"""HTTP surface: role guards, response envelope and the marks workflow end to end."""

import bcrypt
import pytest

from conftest import add_attendance, make_record

SCHEME_BODY = {
    "department": "ECE",
    "semester": 5,
    "subject_code": " ec501 ",
    "subject_name": "Signals",
    "components": [
        {"name": "Quiz", "max_marks": 20, "weightage": 20},
        {"name": "Midterm", "max_marks": 50, "weightage": 30},
        {"name": "Project", "max_marks": 100, "weightage": 50},
    ],
}

MARKS = [
    {"component_name": "Quiz", "component_id": "c-quiz", "marks_obtained": 8, "max_marks": 10},
    {"component_name": "Midterm", "component_id": "c-mid", "marks_obtained": 24, "max_marks": 30},
    {"component_name": "Lab", "component_id": "c-lab", "marks_obtained": 54, "max_marks": 60},
]


def _add_student(store, student_id="stu-1", number="CS2301"):
    store.users[student_id] = {
        "id": student_id,
        "email": f"{student_id}@gradeflow.dev",
        "name": f"Student {student_id}",
        "role": "student",
        "department": "CSE",
        "semester": 3,
        "enrollment_number": number,
    }
    return {"Authorization": f"Bearer mock-{student_id}@gradeflow.dev"}


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_unknown_token_is_rejected(client):
    response = client.get("/api/schemes", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


# ---------------------------------------------------------------------------
# Schemes
# ---------------------------------------------------------------------------
def test_admin_creates_scheme(client, store, admin_headers):
    response = client.post("/api/schemes", json=SCHEME_BODY, headers=admin_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["subject_code"] == "EC501"
    assert body["data"]["created_by"] == "u-admin"
    assert [(e.action, e.entity_type) for e in store.audit] == [("CREATE", "EVALUATION_SCHEME")]

    duplicate = client.post("/api/schemes", json=SCHEME_BODY, headers=admin_headers)
    assert duplicate.status_code == 400


def test_faculty_cannot_create_scheme(client, faculty_headers):
    response = client.post("/api/schemes", json=SCHEME_BODY, headers=faculty_headers)
    assert response.status_code == 403


def test_scheme_weightage_over_100_is_rejected(client, admin_headers):
    body = dict(SCHEME_BODY, components=[{"name": "Quiz", "max_marks": 10, "weightage": 60}] * 2)
    response = client.post("/api/schemes", json=body, headers=admin_headers)
    assert response.status_code == 422


def test_missing_scheme_uses_error_envelope(client, admin_headers):
    response = client.get("/api/schemes/sub-missing", headers=admin_headers)

    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "data": {"subject_id": "sub-missing"},
        "message": "Evaluation scheme not found",
    }


def test_delete_scheme_deactivates(client, store, admin_headers):
    response = client.delete("/api/schemes/sub-cs301", headers=admin_headers)

    assert response.status_code == 200
    assert store.schemes["sub-cs301"].is_active is False


def test_download_template(client, faculty_headers):
    response = client.get("/api/schemes/sub-cs301/template", headers=faculty_headers)

    assert response.status_code == 200
    assert response.text == "enrollmentNumber,Enrollment Number,Quiz,Midterm,Lab\n"


# ---------------------------------------------------------------------------
# Marks
# ---------------------------------------------------------------------------
def test_faculty_enters_marks(client, store, faculty_headers):
    _add_student(store)
    add_attendance(store, "stu-1", "sub-cs301", attended=80)

    response = client.post(
        "/api/marks",
        json={"student_id": "stu-1", "subject_id": "sub-cs301", "marks": MARKS, "grace_marks_applied": 3},
        headers=faculty_headers,
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["weighted_marks"] == 86.0
    assert data["attendance_bonus"] == 5
    assert data["final_marks"] == 94.0
    assert data["status"] == "calculated"
    assert data["entered_by"] == "u-faculty"
    assert store.audit[-1].action == "CREATE"


def test_marks_for_unknown_student_is_404(client, faculty_headers):
    response = client.post(
        "/api/marks",
        json={"student_id": "stu-ghost", "subject_id": "sub-cs301", "marks": MARKS},
        headers=faculty_headers,
    )

    assert response.status_code == 404
    assert response.json()["message"] == "Student not found"


def test_update_marks_recalculates(client, store, faculty_headers):
    record = make_record()
    store.marks[record.id] = record

    response = client.put(
        f"/api/marks/{record.id}",
        json={"grace_marks_applied": 4},
        headers=faculty_headers,
    )

    assert response.status_code == 200
    assert response.json()["data"]["final_marks"] == 90.0


def test_student_sees_only_own_marks(client, store):
    headers = _add_student(store, "stu-1")
    _add_student(store, "stu-2", "CS2302")
    for student_id in ("stu-1", "stu-2"):
        record = make_record(student_id)
        store.marks[record.id] = record

    listing = client.get("/api/marks", headers=headers)
    assert [r["student_id"] for r in listing.json()["data"]] == ["stu-1"]

    other = client.get("/api/marks/m-stu-2", headers=headers)
    assert other.status_code == 403


def test_recalculate_subject(client, store, faculty_headers):
    store.marks["m-stu-1"] = make_record("stu-1")
    store.marks["m-broken"] = {"id": "m-broken", "student_id": "stu-9", "subject_id": "sub-cs301"}

    response = client.post("/api/marks/recalculate/sub-cs301", headers=faculty_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert [r["final_marks"] for r in data["results"]] == [86.0]
    assert [e["student_id"] for e in data["errors"]] == ["stu-9"]


def test_recalculate_missing_scheme_is_404(client, faculty_headers):
    response = client.post("/api/marks/recalculate/sub-missing", headers=faculty_headers)
    assert response.status_code == 404


def test_bulk_upload(client, store, faculty_headers):
    _add_student(store, "stu-1", "CS2301")
    csv_body = b"enrollmentNumber,Quiz,Midterm,Lab\nCS2301,8,24,54\nCS0000,1,1,1\n"

    response = client.post(
        "/api/marks/bulk",
        data={"subject_id": "sub-cs301"},
        files={"file": ("marks.csv", csv_body, "text/csv")},
        headers=faculty_headers,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total_processed"] == 2
    assert [s["final_marks"] for s in data["success"]] == [86.0]
    assert [e["error"] for e in data["errors"]] == ["Student not found"]
    assert store.audit[-1].action == "UPLOAD"


def test_bulk_upload_rejects_other_files(client, faculty_headers):
    response = client.post(
        "/api/marks/bulk",
        data={"subject_id": "sub-cs301"},
        files={"file": ("marks.xlsx", b"binary", "application/octet-stream")},
        headers=faculty_headers,
    )
    assert response.status_code == 400


@pytest.mark.parametrize("headers_fixture, expected", [("faculty_headers", 403), ("admin_headers", 200)])
def test_approval_requires_admin_or_hod(client, store, request, headers_fixture, expected):
    record = make_record()
    store.marks[record.id] = record

    response = client.put(f"/api/marks/approve/{record.id}", headers=request.getfixturevalue(headers_fixture))

    assert response.status_code == expected
    if expected == 200:
        assert store.marks[record.id].status == "approved"
        assert store.marks[record.id].approved_by == "u-admin"


# ---------------------------------------------------------------------------
# Attendance, analytics, audit
# ---------------------------------------------------------------------------
def test_attendance_attended_over_total_is_rejected(client, faculty_headers):
    response = client.post(
        "/api/attendance",
        json={"student_id": "stu-1", "subject_id": "sub-cs301", "total_classes": 10,
              "attended_classes": 12, "month": 3, "year": 2025},
        headers=faculty_headers,
    )
    assert response.status_code == 400


def test_attendance_upsert_keeps_one_record_per_month(client, store, faculty_headers):
    body = {"student_id": "stu-1", "subject_id": "sub-cs301", "total_classes": 20,
            "attended_classes": 15, "month": 3, "year": 2025}
    client.post("/api/attendance", json=body, headers=faculty_headers)
    response = client.post("/api/attendance", json=dict(body, attended_classes=19), headers=faculty_headers)

    assert response.status_code == 200
    assert response.json()["data"]["percentage"] == 95
    assert len(store.attendance) == 1


def test_class_statistics_ignore_drafts(client, store, faculty_headers):
    store.marks["m-stu-1"] = make_record("stu-1").model_copy(update={"final_marks": 80, "status": "calculated"})
    store.marks["m-stu-2"] = make_record("stu-2").model_copy(update={"final_marks": 30, "status": "approved"})
    store.marks["m-stu-3"] = make_record("stu-3")

    response = client.get("/api/analytics/class-statistics/sub-cs301", headers=faculty_headers)

    assert response.json()["data"] == {
        "total_students": 2,
        "average_marks": 55.0,
        "highest_marks": 80.0,
        "lowest_marks": 30.0,
        "pass_count": 1,
        "fail_count": 1,
        "pass_percentage": 50,
    }


def test_audit_logs_are_admin_only_and_paginated(client, admin_headers, faculty_headers):
    client.delete("/api/schemes/sub-cs301", headers=admin_headers)

    assert client.get("/api/audit-logs", headers=faculty_headers).status_code == 403

    body = client.get("/api/audit-logs?limit=10", headers=admin_headers).json()
    assert body["pagination"] == {"total": 1, "page": 1, "pages": 1}
    entry = body["data"][0]
    assert (entry["action"], entry["entity_type"], entry["entity_id"]) == ("DELETE", "EVALUATION_SCHEME", "sub-cs301")
    assert entry["ip_address"] == "testclient"


def test_audit_logs_reject_bad_dates(client, admin_headers):
    response = client.get("/api/audit-logs?start_date=yesterday", headers=admin_headers)
    assert response.status_code == 400


def test_mock_login_then_me(client, store):
    _add_student(store)
    store.users["stu-1"]["password_hash"] = bcrypt.hashpw(b"secret", bcrypt.gensalt()).decode("utf-8")

    bad = client.post("/api/auth/login", json={"email": "stu-1@gradeflow.dev", "password": "wrong"})
    assert bad.status_code == 401

    login = client.post("/api/auth/login", json={"email": "STU-1@gradeflow.dev", "password": "secret"})
    assert login.status_code == 200
    token = login.json()["data"]["token"]
    assert token == "mock-stu-1@gradeflow.dev"
    assert store.audit[-1].action == "LOGIN"

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"}).json()["data"]
    assert (me["user_id"], me["role"], me["enrollment_number"]) == ("stu-1", "student", "CS2301")


def test_export_marks_sheet(client, store, faculty_headers):
    _add_student(store, "stu-1", "CS2301")
    store.marks["m-stu-1"] = make_record("stu-1").model_copy(update={
        "weighted_marks": 86, "attendance_bonus": 5, "grace_marks_applied": 3,
        "final_marks": 94, "status": "approved",
    })

    csv_export = client.get("/api/analytics/export/sub-cs301/csv", headers=faculty_headers)
    assert csv_export.status_code == 200
    assert csv_export.text.splitlines() == [
        "Enrollment,Student,Weighted,Attendance Bonus,Grace,Final,Status",
        "CS2301,Student stu-1,86.00,5,3,94.00,approved",
    ]

    pdf_export = client.get("/api/analytics/export/sub-cs301/pdf", headers=faculty_headers)
    assert pdf_export.status_code == 200
    assert pdf_export.content.startswith(b"%PDF")


def test_marks_create_rejects_negative_grace(client, store, faculty_headers):
    _add_student(store)
    response = client.post(
        "/api/marks",
        json={"student_id": "stu-1", "subject_id": "sub-cs301", "marks": MARKS, "grace_marks_applied": -1},
        headers=faculty_headers,
    )
    assert response.status_code == 422


# ---------------------------------------------------------------------------
# Student progress and report card
# ---------------------------------------------------------------------------
def _approved(student_id, final_marks):
    return make_record(student_id).model_copy(update={"final_marks": final_marks, "status": "approved"})


def test_student_progress(client, store, faculty_headers):
    _add_student(store)
    store.marks["m-stu-1"] = _approved("stu-1", 94)

    response = client.get("/api/analytics/student-progress/stu-1", headers=faculty_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert [(s["subject_code"], s["final_marks"]) for s in data["subject_wise"]] == [("CS301", 94.0)]
    assert data["semester_wise"] == [{"semester": 3, "total_final_marks": 94.0, "subject_count": 1}]


def test_student_progress_is_own_only_for_students(client, store):
    headers = _add_student(store, "stu-1")
    _add_student(store, "stu-2", "CS2302")
    store.marks["m-stu-1"] = _approved("stu-1", 94)

    assert client.get("/api/analytics/student-progress/stu-1", headers=headers).status_code == 200
    assert client.get("/api/analytics/student-progress/stu-2", headers=headers).status_code == 403
    assert client.get("/api/analytics/report-card/stu-2?semester=3", headers=headers).status_code == 403


def test_report_card(client, store):
    headers = _add_student(store)
    store.marks["m-stu-1"] = _approved("stu-1", 94)

    response = client.get("/api/analytics/report-card/stu-1?semester=3", headers=headers)

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert "report_card_CS2301_sem3.pdf" in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")


def test_report_card_errors(client, store, faculty_headers):
    _add_student(store)

    missing_student = client.get("/api/analytics/report-card/stu-ghost?semester=3", headers=faculty_headers)
    assert missing_student.status_code == 404
    assert missing_student.json()["message"] == "Student not found"

    no_marks = client.get("/api/analytics/report-card/stu-1?semester=3", headers=faculty_headers)
    assert no_marks.status_code == 404
    assert no_marks.json()["message"] == "No marks found for this semester"
