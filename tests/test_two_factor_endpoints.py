from datetime import timedelta

import pytest
import pytest_asyncio

from twofactor.core import crypto
from twofactor.models import User
from twofactor.services import totp

from conftest import KNOWN_SECRET, START, auth_headers, create_user, wrong_code

API = "/api/v1"


@pytest_asyncio.fixture
async def headers(user):
    return auth_headers(user)


async def _stored_secret(session_factory, user_id) -> str:
    async with session_factory() as session:
        stored = await session.get(User, user_id)
        return crypto.decrypt(stored.two_factor_secret)


async def _start(client, headers) -> dict:
    response = await client.post(f"{API}/two-factor/setup/start", headers=headers)
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_setup_flow_end_to_end(client, headers, user, session_factory):
    started = await _start(client, headers)
    assert set(started) == {"token", "expires_at"}
    assert started["expires_at"].startswith("2025-09-05T14:05:00")

    qr = await client.get(f"{API}/two-factor/setup/qr", params={"token": started["token"]}, headers=headers)
    assert qr.status_code == 200
    body = qr.json()
    assert body["qr_code_url"].startswith("otpauth://totp/TwoFactor:")
    assert body["qr_code_svg"].startswith("data:image/svg+xml;base64,")
    assert "secret" not in body
    assert "recovery_codes" not in body

    status = await client.get(f"{API}/two-factor/setup/status", params={"token": started["token"]}, headers=headers)
    assert status.json()["status"] == "pending"

    secret = await _stored_secret(session_factory, user.id)
    confirm = await client.post(
        f"{API}/two-factor/setup/confirm",
        json={"token": started["token"], "code": totp.code_at(secret, START)},
        headers=headers,
    )
    assert confirm.status_code == 200
    assert confirm.json()["status"] == "confirmed"
    assert "secret" not in confirm.json()

    status = await client.get(f"{API}/two-factor/setup/status", params={"token": started["token"]}, headers=headers)
    assert status.json()["status"] == "confirmed"

    me = await client.get(f"{API}/user", headers=headers)
    assert me.json()["two_factor_enabled"] is True
    assert me.json()["two_factor_confirmed"] is True
    assert me.json()["recovery_codes_remaining"] == 8


@pytest.mark.asyncio
async def test_expired_session_returns_gone(client, headers, user, session_factory, clock):
    started = await _start(client, headers)
    secret = await _stored_secret(session_factory, user.id)
    clock.advance(seconds=301)

    qr = await client.get(f"{API}/two-factor/setup/qr", params={"token": started["token"]}, headers=headers)
    assert qr.status_code == 410
    assert qr.json()["code"] == "session_expired"

    confirm = await client.post(
        f"{API}/two-factor/setup/confirm",
        json={"token": started["token"], "code": totp.code_at(secret, clock.now())},
        headers=headers,
    )
    assert confirm.status_code == 410

    status = await client.get(f"{API}/two-factor/setup/status", params={"token": started["token"]}, headers=headers)
    assert status.status_code == 200
    assert status.json()["status"] == "expired"


@pytest.mark.asyncio
async def test_confirmed_session_conflicts(client, headers, user, session_factory):
    started = await _start(client, headers)
    secret = await _stored_secret(session_factory, user.id)
    await client.post(
        f"{API}/two-factor/setup/confirm",
        json={"token": started["token"], "code": totp.code_at(secret, START)},
        headers=headers,
    )

    qr = await client.get(f"{API}/two-factor/setup/qr", params={"token": started["token"]}, headers=headers)
    assert qr.status_code == 409
    assert qr.json()["code"] == "already_confirmed"

    restart = await client.post(f"{API}/two-factor/setup/start", headers=headers)
    assert restart.status_code == 409


@pytest.mark.asyncio
async def test_wrong_code_is_unprocessable(client, headers, user, session_factory):
    started = await _start(client, headers)
    secret = await _stored_secret(session_factory, user.id)
    code = wrong_code(secret, START)

    response = await client.post(
        f"{API}/two-factor/setup/confirm",
        json={"token": started["token"], "code": code},
        headers=headers,
    )

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "invalid_code"
    assert body["message"] == "The provided two factor authentication code is invalid."
    assert code not in response.text


@pytest.mark.asyncio
async def test_session_of_another_user_is_not_found(client, headers, db):
    started = await _start(client, headers)
    other = await create_user(db, email="other@example.com")

    response = await client.get(
        f"{API}/two-factor/setup/status",
        params={"token": started["token"]},
        headers=auth_headers(other),
    )

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


@pytest.mark.asyncio
async def test_malformed_token_is_a_validation_error(client, headers):
    response = await client.get(f"{API}/two-factor/setup/qr", params={"token": "nope"}, headers=headers)
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_malformed_code_is_not_echoed(client, headers):
    started = await _start(client, headers)
    response = await client.post(
        f"{API}/two-factor/setup/confirm",
        json={"token": started["token"], "code": "12345"},
        headers=headers,
    )
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"
    assert "12345" not in response.text


@pytest.mark.asyncio
async def test_endpoints_require_authentication(client):
    response = await client.post(f"{API}/two-factor/setup/start")
    assert response.status_code == 401
    assert response.json()["code"] == "unauthorized"


@pytest.mark.asyncio
async def test_legacy_enable_and_confirm(client, headers, user, session_factory):
    enabled = await client.post(f"{API}/two-factor/enable", headers=headers)
    assert enabled.status_code == 200
    body = enabled.json()
    assert body["token"]
    assert body["qr_code_url"].startswith("otpauth://totp/")
    assert "secret" not in body
    assert "recovery_codes" not in body

    qr = await client.get(f"{API}/two-factor/qr-code", headers=headers)
    assert qr.status_code == 200
    assert qr.json()["qr_code_url"] == body["qr_code_url"]

    secret = await _stored_secret(session_factory, user.id)
    confirm = await client.post(
        f"{API}/two-factor/confirm", json={"code": totp.code_at(secret, START)}, headers=headers
    )
    assert confirm.status_code == 200

    status = await client.get(f"{API}/two-factor/setup/status", params={"token": body["token"]}, headers=headers)
    assert status.json()["status"] == "confirmed"


@pytest.mark.asyncio
async def test_legacy_endpoints_without_secret(client, headers):
    confirm = await client.post(f"{API}/two-factor/confirm", json={"code": "123456"}, headers=headers)
    assert confirm.status_code == 400
    assert confirm.json()["code"] == "two_factor_not_enabled"

    qr = await client.get(f"{API}/two-factor/qr-code", headers=headers)
    assert qr.status_code == 400

    codes = await client.post(f"{API}/two-factor/recovery-codes", headers=headers)
    assert codes.status_code == 400


@pytest.mark.asyncio
async def test_disable_cancels_pending_setup(client, headers):
    started = await _start(client, headers)

    response = await client.post(f"{API}/two-factor/disable", headers=headers)
    assert response.status_code == 200

    status = await client.get(f"{API}/two-factor/setup/status", params={"token": started["token"]}, headers=headers)
    assert status.json()["status"] == "cancelled"

    me = await client.get(f"{API}/user", headers=headers)
    assert me.json()["two_factor_enabled"] is False
    assert me.json()["recovery_codes_remaining"] == 0


@pytest.mark.asyncio
async def test_regenerated_recovery_codes_replace_old_ones(client, headers):
    await _start(client, headers)

    first = await client.post(f"{API}/two-factor/recovery-codes", headers=headers)
    second = await client.post(f"{API}/two-factor/recovery-codes", headers=headers)

    assert first.status_code == 200
    assert len(first.json()["recovery_codes"]) == 8
    assert set(first.json()["recovery_codes"]).isdisjoint(second.json()["recovery_codes"])


# ─── Login challenge ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_login_without_two_factor_returns_token(client, user):
    response = await client.post(f"{API}/login", json={"email": user.email, "password": "Password123!"})
    assert response.status_code == 200
    body = response.json()
    assert body["two_factor"] is False
    assert body["access_token"]


@pytest.mark.asyncio
async def test_login_with_bad_password_is_unauthorized(client, user):
    response = await client.post(f"{API}/login", json={"email": user.email, "password": "wrong-password"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_with_two_factor_requires_challenge(client, db):
    enrolled = await create_user(
        db,
        email="enrolled@example.com",
        secret=KNOWN_SECRET,
        recovery_codes=["ABCDEFGHJK"],
        confirmed_at=START - timedelta(days=1),
    )

    login = await client.post(f"{API}/login", json={"email": enrolled.email, "password": "Password123!"})
    assert login.status_code == 200
    assert login.json()["two_factor"] is True
    assert login.json()["access_token"] is None
    assert login.json()["user_id"] == str(enrolled.id)

    rejected = await client.post(
        f"{API}/verify-two-factor",
        json={"user_id": str(enrolled.id), "code": wrong_code(KNOWN_SECRET, START)},
    )
    assert rejected.status_code == 422

    accepted = await client.post(
        f"{API}/verify-two-factor",
        json={"user_id": str(enrolled.id), "code": totp.code_at(KNOWN_SECRET, START)},
    )
    assert accepted.status_code == 200
    assert accepted.json()["access_token"]
    assert accepted.json()["two_factor_enabled"] is True


@pytest.mark.asyncio
async def test_recovery_code_completes_login_once(client, db):
    enrolled = await create_user(
        db,
        email="enrolled@example.com",
        secret=KNOWN_SECRET,
        recovery_codes=["ABCDEFGHJK"],
        confirmed_at=START,
    )
    payload = {"user_id": str(enrolled.id), "code": "abcde-fghjk"}

    assert (await client.post(f"{API}/verify-two-factor", json=payload)).status_code == 200
    assert (await client.post(f"{API}/verify-two-factor", json=payload)).status_code == 422


@pytest.mark.asyncio
async def test_verify_for_unknown_user_looks_like_a_wrong_code(client):
    response = await client.post(
        f"{API}/verify-two-factor",
        json={"user_id": "00000000-0000-4000-8000-000000000000", "code": "123456"},
    )
    assert response.status_code == 422
    assert response.json()["code"] == "invalid_code"


@pytest.mark.asyncio
async def test_verify_for_unconfirmed_user_looks_like_a_wrong_code(client, user, db):
    pending = await create_user(db, email="pending@example.com", secret=KNOWN_SECRET)
    unknown = await client.post(
        f"{API}/verify-two-factor",
        json={"user_id": "00000000-0000-4000-8000-000000000000", "code": "123456"},
    )

    for account in (user, pending):
        response = await client.post(
            f"{API}/verify-two-factor",
            json={"user_id": str(account.id), "code": totp.code_at(KNOWN_SECRET, START)},
        )
        assert response.status_code == 422
        assert response.json() == unknown.json()


@pytest.mark.asyncio
async def test_logout_revokes_the_token(client, headers):
    response = await client.post(f"{API}/logout", headers=headers)
    assert response.status_code == 204

    me = await client.get(f"{API}/user", headers=headers)
    assert me.status_code == 401
