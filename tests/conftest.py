import sys
from pathlib import Path
from typing import List, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from taskboard.database import build_session_factory, init_models
from taskboard.models.subtask import Subtask, SubtaskProgress, SubtaskStatus
from taskboard.models.task import Task
from taskboard.models.team import Team
from taskboard.models.user import MemberStatus, User, UserRole
from taskboard.security import hash_password
from taskboard.services.notifications import METHOD_CONSOLE, EmailResult
from taskboard.services.registrations import PreRegistrationStore

PASSWORD = "secret!1"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'taskboard.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def leader_store(clock):
    return PreRegistrationStore("leader", ttl_seconds=3600, sweep_interval=3600, clock=clock)


@pytest.fixture
def member_store(clock):
    return PreRegistrationStore("member", ttl_seconds=3600, sweep_interval=3600, clock=clock)


class RecordingNotifications:
    """Stands in for NotificationService; remembers every call."""

    def __init__(self):
        self.calls: List[tuple] = []

    def _record(self, name, *args) -> EmailResult:
        self.calls.append((name, *args))
        return EmailResult(success=True, method=METHOD_CONSOLE)

    async def send_verification_email(self, to, name, token, code, team_name=None):
        return self._record("verification", to, name, token, code, team_name)

    async def send_team_code_to_leader(self, to, name, team_code, team_name):
        return self._record("team_code", to, name, team_code, team_name)

    async def send_new_member_notification(self, to, leader_name, member_name, member_email, team_name):
        return self._record("new_member", to, leader_name, member_name, member_email, team_name)

    async def send_member_approval(self, to, member_name, leader_name, team_name):
        return self._record("approval", to, member_name, leader_name, team_name)

    def named(self, name):
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def notifications():
    return RecordingNotifications()


class Seed:
    """Direct inserts for arranging database state."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._password_hash = hash_password(PASSWORD)

    async def team(self, team_code: str = "ALPHA1", team_name: str = "Alpha", leader_email: str = "lead@example.com") -> User:
        async with self.session_factory() as session:
            leader = User(
                email=leader_email,
                password_hash=self._password_hash,
                name="Lena Leader",
                role=UserRole.LEADER.value,
                team_code=team_code,
                status=MemberStatus.APPROVED.value,
                email_verified=True,
            )
            team = Team(team_code=team_code, team_name=team_name)
            session.add_all([team, leader])
            await session.flush()
            team.leader_id = leader.id
            await session.commit()
            return leader

    async def member(
        self,
        team_code: str = "ALPHA1",
        email: str = "member@example.com",
        status: MemberStatus = MemberStatus.APPROVED,
        name: str = "Max Member",
    ) -> User:
        async with self.session_factory() as session:
            member = User(
                email=email,
                password_hash=self._password_hash,
                name=name,
                role=UserRole.MEMBER.value,
                team_code=team_code,
                status=status.value,
                email_verified=True,
            )
            session.add(member)
            await session.commit()
            return member

    async def task(
        self,
        created_by: int,
        team_code: str = "ALPHA1",
        subtasks: Optional[list] = None,
        title: str = "Launch",
    ) -> Task:
        """``subtasks`` is a list of (title, assigned_to, progress) tuples."""
        async with self.session_factory() as session:
            task = Task(title=title, team_code=team_code, created_by=created_by)
            session.add(task)
            await session.flush()
            for sub_title, assigned_to, progress in subtasks or [("Write docs", None, SubtaskProgress.NOT_STARTED)]:
                if assigned_to is None:
                    status = SubtaskStatus.AVAILABLE
                elif progress is SubtaskProgress.COMPLETED:
                    status = SubtaskStatus.COMPLETED
                else:
                    status = SubtaskStatus.ASSIGNED
                session.add(
                    Subtask(
                        task_id=task.id,
                        title=sub_title,
                        assigned_to=assigned_to,
                        status=status.value,
                        progress=progress.value,
                    )
                )
            await session.commit()
            return task


@pytest.fixture
def seed(session_factory):
    return Seed(session_factory)
