# taskboard/routes/tasks.py

from collections import defaultdict
from datetime import datetime, timezone
import logging
from typing import Dict, Iterable, List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import case, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.database import get_db, transaction
from taskboard.deps.permissions import load_actor, require_team_leader
from taskboard.models.subtask import (
    PROGRESS_ORDER,
    Subtask,
    SubtaskProgress,
    SubtaskStatus,
    derive_status,
)
from taskboard.models.task import Task
from taskboard.models.user import User
from taskboard.roles import actor_for, can_be_assigned, leads_team, works_in_team
from taskboard.schemas import (
    AssignSubtask,
    ProgressUpdate,
    SubtaskRead,
    SubtaskUpdate,
    TaskCreate,
    TaskRead,
    TaskUpdate,
    UserAction,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["Tasks"])

TASK_FILTERS = ("active", "completed", "all")
VALID_PROGRESS = frozenset(PROGRESS_ORDER)


# -------------------------------------------------------------------
# Loading helpers
# -------------------------------------------------------------------

def _now() -> datetime:
    return datetime.now(timezone.utc)


async def subtasks_by_task(db: AsyncSession, task_ids: Iterable[int]) -> Dict[int, List[Subtask]]:
    """All subtasks of ``task_ids`` in a single query, grouped by task."""
    task_ids = list(task_ids)
    grouped: Dict[int, List[Subtask]] = defaultdict(list)
    if not task_ids:
        return grouped

    rows = await db.execute(
        select(Subtask)
        .where(Subtask.task_id.in_(task_ids))
        .order_by(Subtask.created_at.asc(), Subtask.id.asc())
        .execution_options(populate_existing=True)
    )
    for subtask in rows.scalars().all():
        grouped[subtask.task_id].append(subtask)
    return grouped


def task_read(task: Task, subtasks: List[Subtask]) -> TaskRead:
    return TaskRead.model_validate(task).model_copy(
        update={
            "subtasks": [SubtaskRead.model_validate(s) for s in subtasks],
            "total_subtasks": len(subtasks),
            "completed_subtasks": sum(1 for s in subtasks if s.status == SubtaskStatus.COMPLETED.value),
        }
    )


async def _get_task(db: AsyncSession, task_id: int) -> Task:
    task = (
        await db.execute(select(Task).where(Task.id == task_id).execution_options(populate_existing=True))
    ).scalar_one_or_none()
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


async def _get_subtask(db: AsyncSession, subtask_id: int) -> Subtask:
    subtask = (
        await db.execute(
            select(Subtask).where(Subtask.id == subtask_id).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if subtask is None:
        raise HTTPException(status_code=404, detail="Subtask not found")
    return subtask


async def _task_with_subtasks(db: AsyncSession, task_id: int) -> TaskRead:
    task = await _get_task(db, task_id)
    grouped = await subtasks_by_task(db, [task.id])
    return task_read(task, grouped[task.id])


async def _require_assignable(db: AsyncSession, user_ids: Iterable[int], team_code: str) -> None:
    """400 unless every id is an approved member of ``team_code``."""
    wanted = set(user_ids)
    if not wanted:
        return
    rows = await db.execute(select(User).where(User.id.in_(wanted)))
    users = {u.id: u for u in rows.scalars().all()}
    for user_id in wanted:
        user = users.get(user_id)
        if user is None or not can_be_assigned(actor_for(user), team_code):
            raise HTTPException(
                status_code=400,
                detail="Assigned user must be an approved member of this team",
            )


async def _require_creator_or_leader(db: AsyncSession, user_id: int, task: Task, detail: str) -> User:
    user, actor = await load_actor(db, user_id)
    if user.id != task.created_by and not leads_team(actor, task.team_code):
        raise HTTPException(status_code=403, detail=detail)
    return user


# -------------------------------------------------------------------
# Tasks
# -------------------------------------------------------------------

@router.post("/create")
async def create_task(body: TaskCreate, db: AsyncSession = Depends(get_db)):
    team_code = body.team_code.upper()
    await require_team_leader(db, body.created_by, team_code, "Only team leaders can create tasks")

    if not body.subtasks:
        raise HTTPException(status_code=400, detail="At least one subtask is required")

    if body.assign_specific:
        await _require_assignable(
            db, (s.assigned_to for s in body.subtasks if s.assigned_to is not None), team_code
        )

    async with transaction(db):
        task = Task(
            title=body.title,
            description=body.description,
            team_code=team_code,
            created_by=body.created_by,
        )
        db.add(task)
        await db.flush()

        for item in body.subtasks:
            preassigned = body.assign_specific and item.assigned_to is not None
            db.add(
                Subtask(
                    task_id=task.id,
                    title=item.title,
                    description=item.description,
                    deadline=item.deadline,
                    assigned_to=item.assigned_to if preassigned else None,
                    status=(SubtaskStatus.ASSIGNED if preassigned else SubtaskStatus.AVAILABLE).value,
                    progress=(SubtaskProgress.ASSIGNED if preassigned else SubtaskProgress.NOT_STARTED).value,
                )
            )
        task_id = task.id

    logger.info("Task %s created in team %s with %s subtask(s)", task_id, team_code, len(body.subtasks))
    task_out = await _task_with_subtasks(db, task_id)
    return {"message": "Task created successfully", "task": task_out}


async def _team_tasks(db: AsyncSession, stmt) -> List[TaskRead]:
    tasks = (await db.execute(stmt.order_by(Task.created_at.desc(), Task.id.desc()))).scalars().all()
    if not tasks:
        return []
    grouped = await subtasks_by_task(db, (t.id for t in tasks))
    return [task_read(t, grouped[t.id]) for t in tasks]


@router.get("/team/{team_code}", response_model=List[TaskRead])
async def get_team_tasks(team_code: str, db: AsyncSession = Depends(get_db)):
    return await _team_tasks(db, select(Task).where(Task.team_code == team_code.upper()))


@router.get("/team/{team_code}/status/{task_filter}", response_model=List[TaskRead])
async def get_team_tasks_by_status(team_code: str, task_filter: str, db: AsyncSession = Depends(get_db)):
    if task_filter not in TASK_FILTERS:
        raise HTTPException(status_code=400, detail="Status must be one of: active, completed, all")

    stmt = select(Task).where(Task.team_code == team_code.upper())
    unfinished = (
        select(Subtask.id)
        .where(Subtask.task_id == Task.id, Subtask.status != SubtaskStatus.COMPLETED.value)
        .exists()
    )
    if task_filter == "active":
        stmt = stmt.where(unfinished)
    elif task_filter == "completed":
        has_subtasks = select(Subtask.id).where(Subtask.task_id == Task.id).exists()
        stmt = stmt.where(has_subtasks, ~unfinished)
    return await _team_tasks(db, stmt)


@router.get("/team/{team_code}/available", response_model=List[SubtaskRead])
async def get_available_subtasks(team_code: str, db: AsyncSession = Depends(get_db)):
    rows = await db.execute(
        select(Subtask)
        .join(Task, Task.id == Subtask.task_id)
        .where(Task.team_code == team_code.upper(), Subtask.status == SubtaskStatus.AVAILABLE.value)
        .order_by(Subtask.created_at.desc(), Subtask.id.desc())
    )
    return [SubtaskRead.model_validate(s) for s in rows.scalars().all()]


@router.get("/user/{user_id}/subtasks", response_model=List[SubtaskRead])
async def get_user_subtasks(user_id: int, db: AsyncSession = Depends(get_db)):
    stage = case(
        {progress: position for position, progress in enumerate(PROGRESS_ORDER)},
        value=Subtask.progress,
        else_=len(PROGRESS_ORDER),
    )
    rows = await db.execute(
        select(Subtask)
        .where(Subtask.assigned_to == user_id)
        .order_by(stage, Subtask.created_at.desc(), Subtask.id.desc())
    )
    return [SubtaskRead.model_validate(s) for s in rows.scalars().all()]


# -------------------------------------------------------------------
# Subtasks
# -------------------------------------------------------------------

@router.put("/subtask/{subtask_id}/take")
async def take_subtask(subtask_id: int, body: UserAction, db: AsyncSession = Depends(get_db)):
    _, actor = await load_actor(db, body.user_id)

    async with transaction(db):
        # Lock only the subtask row; joined eager loads cannot be combined with FOR UPDATE.
        row = (
            await db.execute(
                select(Subtask.id, Subtask.status, Task.team_code)
                .join(Task, Task.id == Subtask.task_id)
                .where(Subtask.id == subtask_id)
                .with_for_update(of=Subtask)
            )
        ).first()
        if row is None:
            raise HTTPException(status_code=404, detail="Subtask not found")
        if not works_in_team(actor, row.team_code):
            raise HTTPException(status_code=403, detail="Only approved team members can take subtasks")
        if row.status != SubtaskStatus.AVAILABLE.value:
            raise HTTPException(status_code=400, detail="This subtask is no longer available")

        result = await db.execute(
            update(Subtask)
            .where(Subtask.id == subtask_id, Subtask.status == SubtaskStatus.AVAILABLE.value)
            .values(
                assigned_to=body.user_id,
                status=SubtaskStatus.TAKEN.value,
                progress=SubtaskProgress.IN_PROGRESS.value,
                updated_at=_now(),
            )
        )
        if result.rowcount != 1:
            raise HTTPException(status_code=400, detail="This subtask is no longer available")

    logger.info("Subtask %s taken by user %s", subtask_id, body.user_id)
    updated = SubtaskRead.model_validate(await _get_subtask(db, subtask_id))
    return {"message": "Subtask assigned to you successfully", "subtask": updated}


@router.put("/subtask/{subtask_id}/assign-to")
async def assign_subtask(subtask_id: int, body: AssignSubtask, db: AsyncSession = Depends(get_db)):
    subtask = await _get_subtask(db, subtask_id)
    team_code = subtask.team_code
    await require_team_leader(db, body.assigned_by, team_code, "Only team leaders can assign subtasks")
    await _require_assignable(db, [body.user_id], team_code)

    async with transaction(db):
        await db.execute(
            update(Subtask)
            .where(Subtask.id == subtask_id)
            .values(
                assigned_to=body.user_id,
                status=SubtaskStatus.ASSIGNED.value,
                progress=SubtaskProgress.ASSIGNED.value,
                updated_at=_now(),
            )
        )

    logger.info("Subtask %s assigned to user %s by %s", subtask_id, body.user_id, body.assigned_by)
    updated = SubtaskRead.model_validate(await _get_subtask(db, subtask_id))
    return {"message": "Subtask assigned to member successfully", "subtask": updated}


@router.put("/subtask/{subtask_id}/progress")
async def update_progress(subtask_id: int, body: ProgressUpdate, db: AsyncSession = Depends(get_db)):
    if body.progress not in VALID_PROGRESS:
        raise HTTPException(status_code=400, detail="Invalid progress value")

    subtask = await _get_subtask(db, subtask_id)
    user, actor = await load_actor(db, body.user_id)
    if subtask.assigned_to != user.id and not leads_team(actor, subtask.team_code):
        raise HTTPException(status_code=403, detail="You can only update your own subtasks")

    new_status = derive_status(subtask.status, body.progress)
    async with transaction(db):
        await db.execute(
            update(Subtask)
            .where(Subtask.id == subtask_id)
            .values(progress=body.progress, status=new_status, updated_at=_now())
        )

    logger.info("Subtask %s progress -> %s (status %s)", subtask_id, body.progress, new_status)
    updated = SubtaskRead.model_validate(await _get_subtask(db, subtask_id))
    return {"message": "Progress updated successfully", "subtask": updated}


@router.put("/subtask/{subtask_id}")
async def edit_subtask(subtask_id: int, body: SubtaskUpdate, db: AsyncSession = Depends(get_db)):
    subtask = await _get_subtask(db, subtask_id)
    team_code = subtask.team_code
    await require_team_leader(db, body.user_id, team_code, "Only team leaders can edit subtasks")

    if body.assigned_to is not None:
        await _require_assignable(db, [body.assigned_to], team_code)
        status, progress = SubtaskStatus.ASSIGNED, SubtaskProgress.ASSIGNED
    else:
        status, progress = SubtaskStatus.AVAILABLE, SubtaskProgress.NOT_STARTED

    async with transaction(db):
        await db.execute(
            update(Subtask)
            .where(Subtask.id == subtask_id)
            .values(
                title=body.title,
                description=body.description,
                deadline=body.deadline,
                assigned_to=body.assigned_to,
                status=status.value,
                progress=progress.value,
                updated_at=_now(),
            )
        )

    updated = SubtaskRead.model_validate(await _get_subtask(db, subtask_id))
    return {"message": "Subtask updated successfully", "subtask": updated}


@router.delete("/subtask/{subtask_id}")
async def delete_subtask(subtask_id: int, body: UserAction, db: AsyncSession = Depends(get_db)):
    subtask = await _get_subtask(db, subtask_id)
    await _require_creator_or_leader(
        db, body.user_id, subtask.task, "Only the task creator or team leader can delete subtasks"
    )

    async with transaction(db):
        await db.execute(delete(Subtask).where(Subtask.id == subtask_id))

    logger.info("Subtask %s deleted by user %s", subtask_id, body.user_id)
    return {"message": "Subtask deleted successfully"}


# -------------------------------------------------------------------
# Single task
# -------------------------------------------------------------------

@router.get("/{task_id}", response_model=TaskRead)
async def get_task(task_id: int, db: AsyncSession = Depends(get_db)):
    return await _task_with_subtasks(db, task_id)


@router.put("/{task_id}")
async def update_task(task_id: int, body: TaskUpdate, db: AsyncSession = Depends(get_db)):
    task = await _get_task(db, task_id)
    await _require_creator_or_leader(
        db, body.user_id, task, "Only the task creator or team leader can edit this task"
    )

    async with transaction(db):
        await db.execute(
            update(Task)
            .where(Task.id == task_id)
            .values(title=body.title, description=body.description, updated_at=_now())
        )

    task_out = await _task_with_subtasks(db, task_id)
    return {"message": "Task updated successfully", "task": task_out}


@router.delete("/{task_id}")
async def delete_task(task_id: int, body: UserAction, db: AsyncSession = Depends(get_db)):
    task = await _get_task(db, task_id)
    await _require_creator_or_leader(
        db, body.user_id, task, "Only the task creator or team leader can delete this task"
    )

    async with transaction(db):
        removed = await db.execute(delete(Subtask).where(Subtask.task_id == task_id))
        await db.execute(delete(Task).where(Task.id == task_id))

    logger.info("Task %s deleted by user %s with %s subtask(s)", task_id, body.user_id, removed.rowcount)
    return {"message": "Task deleted successfully"}

