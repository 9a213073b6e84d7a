import pytest

from app.core.security import verify_password
from app.main import app
from app.models.user import Faculty, Student


pytestmark = pytest.mark.asyncio


async def forgot(client, email):
    return await client.post("/api/v1/auth/forgot-password", json={"email": email})


async def verify(client, email, otp):
    return await client.post("/api/v1/auth/verify-otp", json={"email": email, "otp": otp})


async def reset(client, email, otp, new_password):
    return await client.post(
        "/api/v1/auth/reset-password",
        json={"email": email, "otp": otp, "newPassword": new_password},
    )


async def test_full_recovery_flow(client, outbox, create_student):
    student, old_password = await create_student()

    resp = await forgot(client, f"  {student.email.upper()} ")
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "OTP sent to your email address successfully"}
    assert outbox.sent[-1][0] == student.email
    code = outbox.last_code

    v = await verify(client, student.email, code)
    assert v.status_code == 200 and v.json()["success"] is True

    r = await reset(client, student.email, code, "Abcdefgh1")
    assert r.status_code == 200
    assert r.json()["message"] == "Password reset successfully"

    refreshed = await Student.get(id=student.id)
    assert verify_password("Abcdefgh1", refreshed.password_hash)
    assert not verify_password(old_password, refreshed.password_hash)

    login = await client.post("/api/v1/auth/login", json={"email": student.email, "password": "Abcdefgh1"})
    assert login.status_code == 200

    # The code is consumed
    again = await reset(client, student.email, code, "Abcdefgh2")
    assert again.status_code == 400
    assert again.json()["error"] == "otp_not_found"


async def test_unknown_email_is_404(client):
    resp = await forgot(client, "ghost@example.com")
    assert resp.status_code == 404
    assert resp.json()["error"] == "email_not_found"


async def test_missing_email_is_400(client):
    resp = await client.post("/api/v1/auth/forgot-password", json={})
    assert resp.status_code == 400
    assert resp.json()["error"] == "missing_fields"


async def test_new_request_supersedes_old_code(client, outbox, create_faculty):
    faculty, _ = await create_faculty()
    await forgot(client, faculty.email)
    first = outbox.last_code
    await forgot(client, faculty.email)
    second = outbox.last_code
    if first != second:
        stale = await verify(client, faculty.email, first)
        assert stale.status_code == 400
        assert stale.json()["error"] == "invalid_otp"
    ok = await verify(client, faculty.email, second)
    assert ok.status_code == 200


async def test_three_wrong_codes_lock_the_request(client, outbox, create_student):
    student, _ = await create_student()
    await forgot(client, student.email)
    code = outbox.last_code
    wrong = "100000" if code != "100000" else "100001"

    for _ in range(2):
        miss = await verify(client, student.email, wrong)
        assert miss.status_code == 400
        assert miss.json()["error"] == "invalid_otp"
    locked = await verify(client, student.email, wrong)
    assert locked.status_code == 429
    assert locked.json()["error"] == "too_many_attempts"

    after = await verify(client, student.email, code)
    assert after.status_code == 400
    assert after.json()["error"] == "otp_not_found"


async def test_reset_requires_verified_code_and_strong_password(client, outbox, create_student):
    student, _ = await create_student()
    await forgot(client, student.email)
    code = outbox.last_code

    unverified = await reset(client, student.email, code, "Abcdefgh1")
    assert unverified.status_code == 400
    assert unverified.json()["error"] == "otp_not_verified"

    await verify(client, student.email, code)
    weak = await reset(client, student.email, code, "abc")
    assert weak.status_code == 400
    assert weak.json()["error"] == "weak_password"


async def test_numeric_otp_accepted(client, outbox, create_student):
    student, _ = await create_student()
    await forgot(client, student.email)
    resp = await verify(client, student.email, int(outbox.last_code))
    assert resp.status_code == 200


async def test_expired_code(client, outbox, create_student):
    student, _ = await create_student()
    await forgot(client, student.email)
    record = app.state.recovery.ledger.get(student.email)
    record.expires_at = record.expires_at.replace(year=2000)

    resp = await verify(client, student.email, outbox.last_code)
    assert resp.status_code == 400
    assert resp.json()["error"] == "otp_expired"
    assert student.email not in app.state.recovery.ledger


async def test_reset_updates_owner_table_only(client, outbox, create_faculty):
    faculty, _ = await create_faculty()
    await forgot(client, faculty.email)
    code = outbox.last_code
    await verify(client, faculty.email, code)
    await reset(client, faculty.email, code, "NewFacultyPass1")

    refreshed = await Faculty.get(id=faculty.id)
    assert verify_password("NewFacultyPass1", refreshed.password_hash)
