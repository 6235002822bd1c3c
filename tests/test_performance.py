import pytest

from taskboard.models.subtask import SubtaskProgress
from taskboard.models.user import MemberStatus
from taskboard.routes.performance import completion_rate, get_team_performance, rank_performance
from taskboard.schemas import MemberPerformance


@pytest.mark.parametrize(
    "completed, total, expected",
    [
        (0, 0, 0),
        (3, 4, 75),
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),  # 12.5 rounds half up
        (4, 4, 100),
    ],
)
def test_completion_rate(completed, total, expected):
    assert completion_rate(completed, total) == expected


def test_ties_are_broken_by_completed_count():
    rows = [
        MemberPerformance(id=1, name="a", email="a@example.com", total_tasks=2, completed_tasks=1, completion_rate=50),
        MemberPerformance(id=2, name="b", email="b@example.com", total_tasks=4, completed_tasks=2, completion_rate=50),
        MemberPerformance(id=3, name="c", email="c@example.com", total_tasks=1, completed_tasks=1, completion_rate=100),
    ]
    assert [r.id for r in rank_performance(rows)] == [3, 2, 1]


@pytest.mark.anyio
async def test_team_performance(session_factory, seed):
    leader = await seed.team()
    star = await seed.member(email="star@example.com", name="Star")
    idle = await seed.member(email="idle@example.com", name="Idle")
    await seed.member(email="pending@example.com", status=MemberStatus.PENDING)
    await seed.task(
        created_by=leader.id,
        subtasks=[
            ("a", star.id, SubtaskProgress.COMPLETED),
            ("b", star.id, SubtaskProgress.COMPLETED),
            ("c", star.id, SubtaskProgress.COMPLETED),
            ("d", star.id, SubtaskProgress.TESTING),
            ("e", None, SubtaskProgress.NOT_STARTED),
        ],
    )

    async with session_factory() as session:
        rows = await get_team_performance(team_code="ALPHA1", db=session)

    assert [r.email for r in rows] == ["star@example.com", "idle@example.com"]
    top, bottom = rows
    assert (top.total_tasks, top.completed_tasks, top.in_progress_tasks, top.pending_tasks) == (4, 3, 1, 0)
    assert top.completion_rate == 75
    assert (bottom.total_tasks, bottom.completion_rate) == (0, 0)


@pytest.mark.anyio
async def test_team_without_members_has_no_rows(session_factory, seed):
    await seed.team()
    async with session_factory() as session:
        assert await get_team_performance(team_code="ALPHA1", db=session) == []
