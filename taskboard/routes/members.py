# taskboard/routes/members.py

from datetime import datetime, timezone
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.database import get_db, transaction
from taskboard.deps.permissions import require_team_leader
from taskboard.models.subtask import Subtask, SubtaskProgress, SubtaskStatus
from taskboard.models.team import Team
from taskboard.models.user import MemberStatus, User, UserRole
from taskboard.schemas import ApproveMember, LeaderAction, MemberSummary, RejectMember, UserRead
from taskboard.services.notifications import NotificationService, get_notification_service

logger = logging.getLogger(__name__)

# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def _now() -> datetime:
    return datetime.now(timezone.utc)


async def transition_member(
    db: AsyncSession,
    *,
    user_id: int,
    team_code: str,
    from_status: MemberStatus,
    values: dict,
) -> bool:
    """One guarded UPDATE moving a member out of ``from_status``; True if a row changed."""
    result = await db.execute(
        update(User)
        .where(
            User.id == user_id,
            User.team_code == team_code,
            User.role == UserRole.MEMBER.value,
            User.status == from_status.value,
        )
        .values(updated_at=_now(), **values)
    )
    return result.rowcount == 1


async def release_subtasks(db: AsyncSession, user_id: int) -> int:
    """Put every subtask assigned to ``user_id`` back up for grabs."""
    result = await db.execute(
        update(Subtask)
        .where(Subtask.assigned_to == user_id)
        .values(
            assigned_to=None,
            status=SubtaskStatus.AVAILABLE.value,
            progress=SubtaskProgress.NOT_STARTED.value,
            updated_at=_now(),
        )
    )
    return result.rowcount or 0


async def _load_user(db: AsyncSession, user_id: int) -> User:
    return (
        await db.execute(select(User).where(User.id == user_id).execution_options(populate_existing=True))
    ).scalar_one()


async def _approve(
    db: AsyncSession,
    notifications: NotificationService,
    body: ApproveMember,
    from_status: MemberStatus,
    not_found: str,
) -> dict:
    leader = await require_team_leader(
        db, body.approved_by, body.team_code, "Only the team leader can approve members"
    )

    values = {
        "status": MemberStatus.APPROVED.value,
        "approved_by": leader.id,
        "approved_at": _now(),
    }
    if from_status is MemberStatus.REJECTED:
        values.update(rejected_by=None, rejected_at=None)

    async with transaction(db):
        changed = await transition_member(
            db, user_id=body.user_id, team_code=body.team_code, from_status=from_status, values=values
        )
        if not changed:
            raise HTTPException(status_code=404, detail=not_found)
        member = await _load_user(db, body.user_id)
        team_name = await db.scalar(select(Team.team_name).where(Team.team_code == body.team_code))

    logger.info("Approved member %s in team %s by %s", member.id, body.team_code, leader.id)

    email = await notifications.send_member_approval(
        member.email, member.name, leader.name or "Team Leader", team_name or "Your Team"
    )
    return {
        "message": "Member approved successfully",
        "user": UserRead.model_validate(member),
        "emailSent": email.success,
        "emailMethod": email.method,
    }


# -------------------------------------------------------------------
# Router
# -------------------------------------------------------------------

router = APIRouter(prefix="/auth", tags=["Members"])


@router.post("/approve-member")
async def approve_member(
    body: ApproveMember,
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
):
    return await _approve(db, notifications, body, MemberStatus.PENDING, "User not found or already processed")


@router.post("/approve-rejected-member")
async def approve_rejected_member(
    body: ApproveMember,
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
):
    return await _approve(
        db, notifications, body, MemberStatus.REJECTED, "Rejected member not found or already processed"
    )


@router.post("/reject-member")
async def reject_member(body: RejectMember, db: AsyncSession = Depends(get_db)):
    leader = await require_team_leader(
        db, body.rejected_by, body.team_code, "Only the team leader can reject members"
    )

    async with transaction(db):
        changed = await transition_member(
            db,
            user_id=body.user_id,
            team_code=body.team_code,
            from_status=MemberStatus.PENDING,
            values={
                "status": MemberStatus.REJECTED.value,
                "rejected_by": leader.id,
                "rejected_at": _now(),
            },
        )
        if not changed:
            raise HTTPException(status_code=404, detail="User not found or already processed")
        member = await _load_user(db, body.user_id)

    logger.info("Rejected member %s in team %s by %s", member.id, body.team_code, leader.id)
    return {"message": "Member request rejected", "user": UserRead.model_validate(member)}


@router.delete("/delete-rejected-member/{user_id}")
async def delete_rejected_member(user_id: int, body: LeaderAction, db: AsyncSession = Depends(get_db)):
    member = await db.scalar(
        select(User).where(
            User.id == user_id,
            User.role == UserRole.MEMBER.value,
            User.status == MemberStatus.REJECTED.value,
        )
    )
    if member is None:
        raise HTTPException(status_code=404, detail="Rejected member not found")

    await require_team_leader(db, body.leader_id, member.team_code, "Only the team leader can delete members")
    payload = UserRead.model_validate(member)

    async with transaction(db):
        await release_subtasks(db, user_id)
        result = await db.execute(
            delete(User).where(User.id == user_id, User.status == MemberStatus.REJECTED.value)
        )
        if result.rowcount != 1:
            raise HTTPException(status_code=404, detail="Rejected member not found")

    logger.info("Deleted rejected member %s", user_id)
    return {"message": "Rejected member deleted permanently", "user": payload}


@router.delete("/team/{team_code}/member/{member_id}")
async def delete_team_member(
    team_code: str,
    member_id: int,
    body: LeaderAction,
    db: AsyncSession = Depends(get_db),
):
    team_code = team_code.upper()
    await require_team_leader(db, body.leader_id, team_code, "Only team leader can delete members")

    if member_id == body.leader_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete yourself")

    member_exists = await db.scalar(
        select(User.id).where(
            User.id == member_id,
            User.team_code == team_code,
            User.role == UserRole.MEMBER.value,
        )
    )
    if member_exists is None:
        raise HTTPException(status_code=404, detail="Member not found in your team")

    async with transaction(db):
        released = await release_subtasks(db, member_id)
        await db.execute(delete(User).where(User.id == member_id))

    logger.info("Deleted member %s from team %s; %s subtask(s) released", member_id, team_code, released)
    return {"message": "Member deleted successfully", "releasedSubtasks": released}


# Listings -----------------------------------------------------------

def _summary(user: User, **counts) -> MemberSummary:
    return MemberSummary(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        status=user.status,
        email_verified=user.email_verified,
        created_at=user.created_at,
        updated_at=user.updated_at,
        **counts,
    )


async def _members_with_status(db: AsyncSession, team_code: str, member_status: MemberStatus, order_by):
    rows = await db.execute(
        select(User)
        .where(
            User.team_code == team_code.upper(),
            User.role == UserRole.MEMBER.value,
            User.status == member_status.value,
        )
        .order_by(order_by.desc(), User.id.desc())
    )
    return rows.scalars().all()


@router.get("/team/{team_code}/all-members", response_model=List[MemberSummary])
async def get_team_members(team_code: str, db: AsyncSession = Depends(get_db)):
    members = await _members_with_status(db, team_code, MemberStatus.APPROVED, User.created_at)
    if not members:
        return []

    counts = await db.execute(
        select(
            Subtask.assigned_to,
            func.count(Subtask.id),
            func.count(case((Subtask.status == SubtaskStatus.COMPLETED.value, 1))),
        )
        .where(Subtask.assigned_to.in_([m.id for m in members]))
        .group_by(Subtask.assigned_to)
    )
    by_member = {row[0]: (row[1], row[2]) for row in counts.all()}
    return [
        _summary(m, assigned_tasks=by_member.get(m.id, (0, 0))[0], completed_tasks=by_member.get(m.id, (0, 0))[1])
        for m in members
    ]


@router.get("/team/{team_code}/pending-requests", response_model=List[MemberSummary])
async def get_pending_requests(team_code: str, db: AsyncSession = Depends(get_db)):
    members = await _members_with_status(db, team_code, MemberStatus.PENDING, User.created_at)
    return [_summary(m) for m in members]


@router.get("/team/{team_code}/rejected-members", response_model=List[MemberSummary])
async def get_rejected_members(team_code: str, db: AsyncSession = Depends(get_db)):
    members = await _members_with_status(db, team_code, MemberStatus.REJECTED, User.updated_at)
    return [_summary(m) for m in members]
