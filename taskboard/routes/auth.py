# taskboard/routes/auth.py
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.auth_token import create_access_token, get_current_user
from taskboard.database import get_db, transaction
from taskboard.errors import server_error
from taskboard.models.team import Team
from taskboard.models.user import MemberStatus, User, UserRole
from taskboard.retry import RetryExhausted, retry
from taskboard.roles import Leader, Member, actor_for, login_denial
from taskboard.schemas import (
    CodeVerification,
    LeaderSignup,
    LoginRequest,
    MemberSignup,
    MemberStatusCheck,
    TokenVerification,
    UserRead,
)
from taskboard.security import hash_password, password_problem, verify_password
from taskboard.security_tokens import (
    generate_numeric_code,
    generate_team_code,
    generate_verification_token,
)
from taskboard.services.notifications import NotificationService, get_notification_service
from taskboard.services.registrations import (
    PreRegistration,
    PreRegistrationStore,
    get_leader_registrations,
    get_member_registrations,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

TEAM_CODE_ATTEMPTS = 5


class TeamCodeExhausted(Exception):
    pass


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

async def email_taken(db: AsyncSession, email: str) -> bool:
    return await db.scalar(select(User.id).where(User.email == email)) is not None


async def allocate_team_code(db: AsyncSession, attempts: int = TEAM_CODE_ATTEMPTS) -> str:
    """Pick a team code no existing team uses, giving up after ``attempts`` collisions."""

    async def _candidate():
        code = generate_team_code()
        taken = await db.scalar(select(Team.id).where(Team.team_code == code))
        return None if taken is not None else code

    try:
        return await retry(
            _candidate,
            attempts=attempts,
            accept=lambda code: code is not None,
            label="Team code allocation",
        )
    except RetryExhausted as exc:
        raise TeamCodeExhausted("Failed to generate unique team code") from exc


def _check_password(password: str) -> None:
    problem = password_problem(password)
    if problem:
        raise HTTPException(status_code=400, detail=problem)


async def _raise_if_email_claimed(db: AsyncSession, email: str, exc: IntegrityError) -> None:
    """A concurrent verification for the same email won the insert; the claim is spent."""

    if await email_taken(db, email):
        logger.info("Registration for %s lost to a concurrent verification", email)
        raise HTTPException(status_code=400, detail="User already exists with this email") from exc


def _claim_by_token(store: PreRegistrationStore, token: str) -> PreRegistration:
    entry, expired = store.lookup(token)
    if expired:
        raise HTTPException(status_code=400, detail="Verification token has expired")
    if entry is None:
        raise HTTPException(status_code=400, detail="Invalid or expired verification token")
    store.pop(token)
    return entry


def _claim_by_code(store: PreRegistrationStore, code: str) -> tuple[str, PreRegistration]:
    if len(code) != 6 or not (code.isascii() and code.isdigit()):
        raise HTTPException(status_code=400, detail="Invalid verification code format")
    match = store.find_by_code(code)
    if match is None:
        raise HTTPException(status_code=400, detail="Invalid or expired verification code")
    token, entry = match
    store.pop(token)
    return token, entry


# -------------------------------------------------------------------
# Leader registration
# -------------------------------------------------------------------

@router.post("/send-verification")
async def send_verification(
    body: LeaderSignup,
    db: AsyncSession = Depends(get_db),
    store: PreRegistrationStore = Depends(get_leader_registrations),
    notifications: NotificationService = Depends(get_notification_service),
):
    _check_password(body.password)
    if await email_taken(db, body.email):
        raise HTTPException(status_code=400, detail="Email already registered")

    token = generate_verification_token()
    code = generate_numeric_code()
    store.put(
        token,
        PreRegistration(
            email=body.email,
            name=body.name,
            password=body.password,
            numeric_code=code,
            team_name=body.team_name,
            expires_at=store.expiry_from_now(),
        ),
    )
    logger.info("Leader verification issued for %s (team %s)", body.email, body.team_name)

    email = await notifications.send_verification_email(body.email, body.name, token, code)
    return {
        "success": True,
        "message": "Verification sent successfully",
        "verificationToken": token,
        "emailSent": email.success,
        "emailMethod": email.method,
    }


async def complete_leader_registration(
    db: AsyncSession,
    store: PreRegistrationStore,
    notifications: NotificationService,
    token: str,
    entry: PreRegistration,
) -> dict:
    """Turn a claimed pre-registration into a team plus its leader."""

    if await email_taken(db, entry.email):
        raise HTTPException(status_code=400, detail="User already exists with this email")

    try:
        async with transaction(db):
            team_code = await allocate_team_code(db)
            team = Team(team_code=team_code, team_name=entry.team_name)
            leader = User(
                email=entry.email,
                password_hash=hash_password(entry.password),
                name=entry.name,
                role=UserRole.LEADER.value,
                team_code=team_code,
                status=MemberStatus.APPROVED.value,
                email_verified=True,
            )
            db.add_all([team, leader])
            await db.flush()
            team.leader_id = leader.id
    except TeamCodeExhausted as exc:
        store.restore(token, entry)
        logger.error("Leader registration for %s failed: %s", entry.email, exc)
        raise server_error("Failed to generate unique team code", exc)
    except SQLAlchemyError as exc:
        if isinstance(exc, IntegrityError):
            await _raise_if_email_claimed(db, entry.email, exc)
        store.restore(token, entry)
        logger.error("Database error during leader registration for %s", entry.email, exc_info=True)
        raise server_error("Internal server error during registration", exc)

    logger.info("Leader registration completed for %s. Team: %s (%s)", leader.name, team.team_name, team_code)

    email = await notifications.send_team_code_to_leader(leader.email, leader.name, team_code, team.team_name)
    return {
        "success": True,
        "message": "Team created successfully!",
        "user": UserRead.model_validate(leader),
        "teamCode": team_code,
        "teamName": team.team_name,
        "emailSent": email.success,
        "emailMethod": email.method,
    }


@router.post("/verify-email")
async def verify_email(
    body: TokenVerification,
    db: AsyncSession = Depends(get_db),
    store: PreRegistrationStore = Depends(get_leader_registrations),
    notifications: NotificationService = Depends(get_notification_service),
):
    entry = _claim_by_token(store, body.token)
    return await complete_leader_registration(db, store, notifications, body.token, entry)


@router.post("/verify-email-code")
async def verify_email_code(
    body: CodeVerification,
    db: AsyncSession = Depends(get_db),
    store: PreRegistrationStore = Depends(get_leader_registrations),
    notifications: NotificationService = Depends(get_notification_service),
):
    token, entry = _claim_by_code(store, body.code)
    return await complete_leader_registration(db, store, notifications, token, entry)


# -------------------------------------------------------------------
# Member registration
# -------------------------------------------------------------------

@router.post("/send-member-verification")
async def send_member_verification(
    body: MemberSignup,
    db: AsyncSession = Depends(get_db),
    store: PreRegistrationStore = Depends(get_member_registrations),
    notifications: NotificationService = Depends(get_notification_service),
):
    _check_password(body.password)

    team_name = await db.scalar(select(Team.team_name).where(Team.team_code == body.team_code))
    if team_name is None:
        raise HTTPException(status_code=400, detail="Invalid team code")
    if await email_taken(db, body.email):
        raise HTTPException(status_code=400, detail="User already exists with this email")

    token = generate_verification_token()
    code = generate_numeric_code()
    store.put(
        token,
        PreRegistration(
            email=body.email,
            name=body.name,
            password=body.password,
            numeric_code=code,
            team_code=body.team_code,
            team_name=team_name,
            expires_at=store.expiry_from_now(),
        ),
    )
    logger.info("Member verification issued for %s (team %s)", body.email, body.team_code)

    email = await notifications.send_verification_email(body.email, body.name, token, code, team_name)
    return {
        "success": True,
        "message": "Verification sent successfully",
        "teamName": team_name,
        "verificationToken": token,
        "emailSent": email.success,
        "emailMethod": email.method,
    }


async def complete_member_registration(
    db: AsyncSession,
    store: PreRegistrationStore,
    notifications: NotificationService,
    token: str,
    entry: PreRegistration,
) -> dict:
    """Create the member as pending and tell the team leader."""

    if await email_taken(db, entry.email):
        raise HTTPException(status_code=400, detail="User already exists with this email")

    try:
        async with transaction(db):
            team = await db.scalar(select(Team).where(Team.team_code == entry.team_code))
            if team is None:
                raise HTTPException(status_code=400, detail="Invalid team code")
            member = User(
                email=entry.email,
                password_hash=hash_password(entry.password),
                name=entry.name,
                role=UserRole.MEMBER.value,
                team_code=entry.team_code,
                status=MemberStatus.PENDING.value,
                email_verified=True,
            )
            db.add(member)
            leader = await db.scalar(
                select(User).where(User.team_code == entry.team_code, User.role == UserRole.LEADER.value)
            )
    except SQLAlchemyError as exc:
        if isinstance(exc, IntegrityError):
            await _raise_if_email_claimed(db, entry.email, exc)
        store.restore(token, entry)
        logger.error("Database error during member registration for %s", entry.email, exc_info=True)
        raise server_error("Internal server error during registration", exc)

    logger.info("Member registration completed for %s. Status: pending approval", member.name)

    if leader is not None:
        await notifications.send_new_member_notification(
            leader.email, leader.name, member.name, member.email, team.team_name
        )

    return {
        "success": True,
        "message": "Member registration successful! Please wait for team leader approval.",
        "user": UserRead.model_validate(member),
        "teamName": team.team_name,
    }


@router.post("/verify-member-email")
async def verify_member_email(
    body: TokenVerification,
    db: AsyncSession = Depends(get_db),
    store: PreRegistrationStore = Depends(get_member_registrations),
    notifications: NotificationService = Depends(get_notification_service),
):
    entry = _claim_by_token(store, body.token)
    return await complete_member_registration(db, store, notifications, body.token, entry)


@router.post("/verify-member-email-code")
async def verify_member_email_code(
    body: CodeVerification,
    db: AsyncSession = Depends(get_db),
    store: PreRegistrationStore = Depends(get_member_registrations),
    notifications: NotificationService = Depends(get_notification_service),
):
    token, entry = _claim_by_code(store, body.code)
    return await complete_member_registration(db, store, notifications, token, entry)


# -------------------------------------------------------------------
# Login & status
# -------------------------------------------------------------------

@router.post("/login")
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    user = await db.scalar(select(User).where(User.email == body.email, User.team_code == body.team_code))
    if user is None or not verify_password(body.password, user.password_hash):
        logger.info("Login failed for %s (team %s)", body.email, body.team_code)
        raise HTTPException(status_code=401, detail="Invalid email, password, or team code")

    denial = login_denial(actor_for(user))
    if denial:
        raise HTTPException(status_code=403, detail=denial)

    logger.info("Login successful: %s (%s)", user.name, user.role)
    return {
        "message": "Login successful",
        "user": UserRead.model_validate(user),
        "token": create_access_token(user),
    }


@router.post("/check-member-status")
async def check_member_status(body: MemberStatusCheck, db: AsyncSession = Depends(get_db)):
    user = await db.scalar(select(User).where(User.email == body.email, User.team_code == body.team_code))
    if user is None:
        return {"canLogin": False, "message": "No account found with these credentials"}

    actor = actor_for(user)
    if isinstance(actor, Leader):
        return {
            "canLogin": True,
            "status": MemberStatus.APPROVED.value,
            "role": UserRole.LEADER.value,
            "name": user.name,
            "email_verified": user.email_verified,
        }
    if isinstance(actor, Member):
        denial = login_denial(actor)
        if denial is None:
            return {
                "canLogin": True,
                "status": actor.status.value,
                "role": UserRole.MEMBER.value,
                "name": user.name,
                "email_verified": user.email_verified,
            }
        return {"canLogin": False, "status": actor.status.value, "message": denial, "name": user.name}
    return {"canLogin": False, "message": "Unable to login"}


@router.get("/me", response_model=UserRead)
async def read_me(current_user: User = Depends(get_current_user)):
    return UserRead.model_validate(current_user)


@router.get("/health")
async def auth_health(
    leaders: PreRegistrationStore = Depends(get_leader_registrations),
    members: PreRegistrationStore = Depends(get_member_registrations),
):
    return {
        "status": "OK",
        "service": "Auth API",
        "leaderPreRegistrations": len(leaders),
        "memberPreRegistrations": len(members),
    }
