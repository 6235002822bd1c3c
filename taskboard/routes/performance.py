# taskboard/routes/performance.py
from __future__ import annotations

from typing import Iterable, List, Mapping

from fastapi import APIRouter, Depends
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.database import get_db
from taskboard.models.subtask import Subtask, SubtaskProgress
from taskboard.models.user import MemberStatus, User, UserRole
from taskboard.schemas import MemberPerformance

router = APIRouter(prefix="/performance", tags=["Performance"])

_IN_PROGRESS = (SubtaskProgress.IN_PROGRESS.value, SubtaskProgress.TESTING.value)
_PENDING = (SubtaskProgress.NOT_STARTED.value, SubtaskProgress.ASSIGNED.value)


# --------- helpers ---------
def completion_rate(completed: int, total: int) -> int:
    """Percentage rounded half up; 0 when nothing is assigned."""
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


def rank_performance(rows: Iterable[MemberPerformance]) -> List[MemberPerformance]:
    return sorted(rows, key=lambda r: (r.completion_rate, r.completed_tasks), reverse=True)


def summarize(member: User, stats: Mapping[str, int] | None) -> MemberPerformance:
    stats = stats or {}
    total = stats.get("total_tasks", 0)
    completed = stats.get("completed_tasks", 0)
    return MemberPerformance(
        id=member.id,
        name=member.name,
        email=member.email,
        total_tasks=total,
        completed_tasks=completed,
        in_progress_tasks=stats.get("in_progress_tasks", 0),
        pending_tasks=stats.get("pending_tasks", 0),
        completion_rate=completion_rate(completed, total),
    )


# --------- GET /performance/team/{team_code} ---------
@router.get("/team/{team_code}", response_model=List[MemberPerformance])
async def get_team_performance(team_code: str, db: AsyncSession = Depends(get_db)):
    """
    Per-member subtask statistics for the approved members of a team,
    best completion rate first (ties: more completed subtasks first).
    """
    members = (
        await db.execute(
            select(User).where(
                User.team_code == team_code.upper(),
                User.role == UserRole.MEMBER.value,
                User.status == MemberStatus.APPROVED.value,
            )
        )
    ).scalars().all()
    if not members:
        return []

    stmt = (
        select(
            Subtask.assigned_to.label("member_id"),
            func.count(Subtask.id).label("total_tasks"),
            func.count(case((Subtask.progress == SubtaskProgress.COMPLETED.value, 1))).label("completed_tasks"),
            func.count(case((Subtask.progress.in_(_IN_PROGRESS), 1))).label("in_progress_tasks"),
            func.count(case((Subtask.progress.in_(_PENDING), 1))).label("pending_tasks"),
        )
        .where(Subtask.assigned_to.in_([m.id for m in members]))
        .group_by(Subtask.assigned_to)
    )
    stats = {row.member_id: row._mapping for row in (await db.execute(stmt)).all()}

    return rank_performance(summarize(m, stats.get(m.id)) for m in members)
