"""
CBT Exam Engine - Authentication API Tests
"""
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from cbt.models.audit import AuditLog
from cbt.services.audit_log import AuditAction
from tests.conftest import ADMIN_PASSWORD, STUDENT_PASSWORD, create_exam


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test the health check endpoint."""
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"


@pytest.mark.asyncio
async def test_student_login_lists_active_exams(client: AsyncClient, db_session, student, sample_exam):
    """Login returns a token and only the exams open to the student's class."""
    await create_exam(db_session, subject="English", is_active=False)
    await create_exam(db_session, subject="Physics", class_level="SS2")

    response = await client.post("/api/v1/students/login", json={
        "admission_number": " jss1-001 ",
        "password": STUDENT_PASSWORD,
    })
    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["access_token"]
    assert data["student"]["full_name"] == "John Doe"
    assert data["student"]["class_level"] == "JSS1"
    assert [e["subject"] for e in data["active_exams"]] == ["Mathematics"]


@pytest.mark.asyncio
async def test_student_login_wrong_password(client: AsyncClient, db_session, student):
    response = await client.post("/api/v1/students/login", json={
        "admission_number": "JSS1-001",
        "password": "wrong",
    })
    assert response.status_code == 401

    # The failed attempt is kept in the audit trail
    rows = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.STUDENT_LOGIN_FAILED.value)
    )).scalars().all()
    assert len(rows) == 1
    assert rows[0].user_identifier == "JSS1-001"
    assert "password" not in (rows[0].event_data or {})


@pytest.mark.asyncio
async def test_student_login_unknown_admission_number(client: AsyncClient, student):
    response = await client.post("/api/v1/students/login", json={
        "admission_number": "JSS1-999",
        "password": STUDENT_PASSWORD,
    })
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_get_current_student(client: AsyncClient, student, student_headers):
    response = await client.get("/api/v1/students/me", headers=student_headers)
    assert response.status_code == 200
    assert response.json()["admission_number"] == "JSS1-001"


@pytest.mark.asyncio
async def test_admin_token_is_not_a_student_token(client: AsyncClient, admin_headers):
    response = await client.get("/api/v1/students/me", headers=admin_headers)
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_admin_login(client: AsyncClient, admin):
    response = await client.post("/api/v1/admin/login", json={
        "username": "admin",
        "password": ADMIN_PASSWORD,
    })
    assert response.status_code == 200
    assert response.json()["access_token"]

    response = await client.post("/api/v1/admin/login", json={
        "username": "admin",
        "password": "nope",
    })
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unauthenticated_request_rejected(client: AsyncClient):
    response = await client.get("/api/v1/admin/exams")
    assert response.status_code in (401, 403)
