"""Import every model so ``Base.metadata`` knows all tables."""

from taskboard.models.user import MemberStatus, User, UserRole  # noqa: F401
from taskboard.models.team import Team  # noqa: F401
from taskboard.models.task import Task  # noqa: F401
from taskboard.models.subtask import Subtask, SubtaskProgress, SubtaskStatus  # noqa: F401
