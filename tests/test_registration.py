import asyncio
import smtplib

import pytest
from fastapi import HTTPException
from sqlalchemy import func, select

import taskboard.routes.auth as auth_routes
from taskboard.models.team import Team
from taskboard.models.user import User
from taskboard.routes.auth import (
    send_member_verification,
    send_verification,
    verify_email,
    verify_email_code,
    verify_member_email,
    verify_member_email_code,
)
from taskboard.schemas import CodeVerification, LeaderSignup, MemberSignup, TokenVerification
from taskboard.services.notifications import NotificationService

pytestmark = pytest.mark.anyio


def _leader_signup(**overrides):
    payload = {
        "email": "founder@example.com",
        "name": "Fay Founder",
        "password": "secret!1",
        "teamName": "Alpha",
    }
    payload.update(overrides)
    return LeaderSignup.model_validate(payload)


def _member_signup(**overrides):
    payload = {
        "email": "joiner@example.com",
        "name": "Jo Joiner",
        "password": "secret!1",
        "teamCode": "ALPHA1",
    }
    payload.update(overrides)
    return MemberSignup.model_validate(payload)


async def _start_leader(session_factory, store, notifications, **overrides):
    async with session_factory() as session:
        return await send_verification(
            body=_leader_signup(**overrides), db=session, store=store, notifications=notifications
        )


async def _count_users(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count(User.id)))


# ---------------------------------------------------------------------------
# Leader flow
# ---------------------------------------------------------------------------

async def test_leader_registration_by_code_creates_team_and_leader(session_factory, leader_store, notifications):
    sent = await _start_leader(session_factory, leader_store, notifications)
    assert sent["emailSent"] is True
    assert len(leader_store) == 1

    _, to, _, token, code, _ = notifications.named("verification")[0]
    assert to == "founder@example.com"
    assert token == sent["verificationToken"]

    async with session_factory() as session:
        result = await verify_email_code(
            body=CodeVerification(code=code), db=session, store=leader_store, notifications=notifications
        )

    assert result["teamName"] == "Alpha"
    assert len(result["teamCode"]) == 6
    assert result["user"].role == "leader"
    assert result["user"].status == "approved"
    assert result["user"].email_verified is True
    assert len(leader_store) == 0

    async with session_factory() as session:
        team = await session.scalar(select(Team).where(Team.team_code == result["teamCode"]))
        assert team.leader_id == result["user"].id

    assert notifications.named("team_code")[0][3] == result["teamCode"]


async def test_leader_registration_by_token(session_factory, leader_store, notifications):
    sent = await _start_leader(session_factory, leader_store, notifications)

    async with session_factory() as session:
        result = await verify_email(
            body=TokenVerification(token=sent["verificationToken"]),
            db=session,
            store=leader_store,
            notifications=notifications,
        )

    assert result["user"].email == "founder@example.com"


async def test_consumed_code_cannot_create_second_user(session_factory, leader_store, notifications):
    await _start_leader(session_factory, leader_store, notifications)
    code = notifications.named("verification")[0][4]

    async with session_factory() as session:
        await verify_email_code(
            body=CodeVerification(code=code), db=session, store=leader_store, notifications=notifications
        )

    async with session_factory() as session:
        with pytest.raises(HTTPException) as info:
            await verify_email_code(
                body=CodeVerification(code=code), db=session, store=leader_store, notifications=notifications
            )
    assert info.value.status_code == 400
    assert await _count_users(session_factory) == 1


async def test_racing_verifications_for_one_email_create_one_user(session_factory, leader_store, notifications):
    first = await _start_leader(session_factory, leader_store, notifications)
    second = await _start_leader(session_factory, leader_store, notifications, teamName="Bravo")

    async def _verify(token):
        async with session_factory() as session:
            try:
                return await verify_email(
                    body=TokenVerification(token=token), db=session, store=leader_store, notifications=notifications
                )
            except HTTPException as exc:
                return exc

    outcomes = await asyncio.gather(_verify(first["verificationToken"]), _verify(second["verificationToken"]))

    created = [o for o in outcomes if isinstance(o, dict)]
    refused = [o for o in outcomes if isinstance(o, HTTPException)]
    assert len(created) == 1
    assert [(e.status_code, e.detail) for e in refused] == [(400, "User already exists with this email")]
    assert len(leader_store) == 0
    assert await _count_users(session_factory) == 1


async def test_expired_token_is_rejected(session_factory, leader_store, notifications, clock):
    sent = await _start_leader(session_factory, leader_store, notifications)
    clock.advance(3601)

    async with session_factory() as session:
        with pytest.raises(HTTPException) as info:
            await verify_email(
                body=TokenVerification(token=sent["verificationToken"]),
                db=session,
                store=leader_store,
                notifications=notifications,
            )
    assert info.value.status_code == 400
    assert info.value.detail == "Verification token has expired"
    assert await _count_users(session_factory) == 0


async def test_malformed_code_is_rejected(session_factory, leader_store, notifications):
    async with session_factory() as session:
        with pytest.raises(HTTPException) as info:
            await verify_email_code(
                body=CodeVerification(code="12ab56"), db=session, store=leader_store, notifications=notifications
            )
    assert info.value.detail == "Invalid verification code format"


async def test_weak_password_is_rejected(session_factory, leader_store, notifications):
    with pytest.raises(HTTPException) as info:
        await _start_leader(session_factory, leader_store, notifications, password="abcdefg")
    assert info.value.status_code == 400
    assert info.value.detail == "Password must include at least 1 special character"
    assert len(leader_store) == 0


async def test_registered_email_is_rejected_case_insensitively(session_factory, seed, leader_store, notifications):
    await seed.team(leader_email="lead@example.com")

    with pytest.raises(HTTPException) as info:
        await _start_leader(session_factory, leader_store, notifications, email="LEAD@example.com")
    assert info.value.detail == "Email already registered"


# ---------------------------------------------------------------------------
# Team code allocation
# ---------------------------------------------------------------------------

def _scripted_codes(monkeypatch, codes):
    remaining = iter(codes)
    monkeypatch.setattr(auth_routes, "generate_team_code", lambda: next(remaining))


async def test_team_code_allocation_survives_four_collisions(
    monkeypatch, session_factory, seed, leader_store, notifications
):
    taken = [f"TAKEN{i}" for i in range(1, 5)]
    for i, code in enumerate(taken):
        await seed.team(team_code=code, team_name=f"Team {i}", leader_email=f"lead{i}@example.com")
    _scripted_codes(monkeypatch, taken + ["FRESH1"])

    sent = await _start_leader(session_factory, leader_store, notifications)
    async with session_factory() as session:
        result = await verify_email(
            body=TokenVerification(token=sent["verificationToken"]),
            db=session,
            store=leader_store,
            notifications=notifications,
        )

    assert result["teamCode"] == "FRESH1"


async def test_team_code_exhaustion_fails_and_keeps_pre_registration(
    monkeypatch, session_factory, seed, leader_store, notifications
):
    taken = [f"TAKEN{i}" for i in range(1, 6)]
    for i, code in enumerate(taken):
        await seed.team(team_code=code, team_name=f"Team {i}", leader_email=f"lead{i}@example.com")
    _scripted_codes(monkeypatch, taken + ["NEVER1"])

    sent = await _start_leader(session_factory, leader_store, notifications)
    async with session_factory() as session:
        with pytest.raises(HTTPException) as info:
            await verify_email(
                body=TokenVerification(token=sent["verificationToken"]),
                db=session,
                store=leader_store,
                notifications=notifications,
            )

    assert info.value.status_code == 500
    assert info.value.detail["error"] == "Failed to generate unique team code"
    assert leader_store.get(sent["verificationToken"]) is not None
    assert await _count_users(session_factory) == 5


# ---------------------------------------------------------------------------
# Member flow
# ---------------------------------------------------------------------------

async def test_member_registration_lands_in_pending(session_factory, seed, member_store, notifications):
    await seed.team()

    async with session_factory() as session:
        sent = await send_member_verification(
            body=_member_signup(teamCode="alpha1"), db=session, store=member_store, notifications=notifications
        )
    assert sent["teamName"] == "Alpha"

    async with session_factory() as session:
        result = await verify_member_email(
            body=TokenVerification(token=sent["verificationToken"]),
            db=session,
            store=member_store,
            notifications=notifications,
        )

    assert result["user"].status == "pending"
    assert result["user"].role == "member"
    assert result["user"].team_code == "ALPHA1"

    _, to, leader_name, member_name, member_email, team_name = notifications.named("new_member")[0]
    assert to == "lead@example.com"
    assert (member_name, member_email, team_name) == ("Jo Joiner", "joiner@example.com", "Alpha")


async def test_member_registration_by_code(session_factory, seed, member_store, notifications):
    await seed.team()
    async with session_factory() as session:
        await send_member_verification(
            body=_member_signup(), db=session, store=member_store, notifications=notifications
        )
    code = notifications.named("verification")[0][4]

    async with session_factory() as session:
        result = await verify_member_email_code(
            body=CodeVerification(code=code), db=session, store=member_store, notifications=notifications
        )
    assert result["user"].status == "pending"


async def test_member_registration_needs_existing_team(session_factory, member_store, notifications):
    async with session_factory() as session:
        with pytest.raises(HTTPException) as info:
            await send_member_verification(
                body=_member_signup(teamCode="NOPE00"), db=session, store=member_store, notifications=notifications
            )
    assert info.value.detail == "Invalid team code"
    assert len(member_store) == 0


# ---------------------------------------------------------------------------
# Email failures
# ---------------------------------------------------------------------------

def _broken_smtp(to, subject, html, text, settings):
    raise smtplib.SMTPException("relay refused")


async def _no_sleep(seconds):
    return None


async def test_email_failure_keeps_the_registration(session_factory, leader_store):
    broken = NotificationService(sender=_broken_smtp, sleep=_no_sleep)

    sent = await _start_leader(session_factory, leader_store, broken)
    assert sent["emailSent"] is False
    assert sent["emailMethod"] == "console_fallback"
    [(_, entry)] = list(leader_store)

    async with session_factory() as session:
        result = await verify_email_code(
            body=CodeVerification(code=entry.numeric_code), db=session, store=leader_store, notifications=broken
        )

    assert result["emailSent"] is False
    assert result["emailMethod"] == "console_fallback"
    async with session_factory() as session:
        team = await session.scalar(select(Team).where(Team.team_code == result["teamCode"]))
        leader = await session.scalar(select(User).where(User.email == "founder@example.com"))
    assert team is not None
    assert team.leader_id == leader.id
    assert leader.role == "leader"
