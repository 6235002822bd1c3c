"""Leader/member variants used by every authorization check.

A user row is turned into exactly one of :class:`Leader` or :class:`Member`.
Checks below handle both variants explicitly and raise on anything else, so
adding a role means revisiting each of them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from taskboard.models.user import MemberStatus, UserRole


@dataclass(frozen=True, slots=True)
class Leader:
    user_id: int
    team_code: str


@dataclass(frozen=True, slots=True)
class Member:
    user_id: int
    team_code: str
    status: MemberStatus


Actor = Union[Leader, Member]


class UnknownRole(Exception):
    pass


def actor_for(user) -> Actor:
    if user.role == UserRole.LEADER.value:
        return Leader(user_id=user.id, team_code=user.team_code)
    if user.role == UserRole.MEMBER.value:
        status = MemberStatus(user.status) if user.email_verified else MemberStatus.UNVERIFIED
        return Member(user_id=user.id, team_code=user.team_code, status=status)
    raise UnknownRole(user.role)


def _unknown(actor) -> UnknownRole:
    return UnknownRole(type(actor).__name__)


def login_denial(actor: Actor) -> Optional[str]:
    """Why ``actor`` may not log in, or None when login is allowed."""
    if isinstance(actor, Leader):
        return None
    if isinstance(actor, Member):
        if actor.status is MemberStatus.APPROVED:
            return None
        if actor.status is MemberStatus.PENDING:
            return "Your membership is pending approval from the team leader"
        if actor.status is MemberStatus.REJECTED:
            return "Your membership request was rejected. Please contact your team leader."
        return "Please verify your email address before logging in"
    raise _unknown(actor)


def leads_team(actor: Actor, team_code: str) -> bool:
    if isinstance(actor, Leader):
        return actor.team_code == team_code
    if isinstance(actor, Member):
        return False
    raise _unknown(actor)


def works_in_team(actor: Actor, team_code: str) -> bool:
    """Leader of the team, or an approved member of it."""
    if isinstance(actor, Leader):
        return actor.team_code == team_code
    if isinstance(actor, Member):
        return actor.team_code == team_code and actor.status is MemberStatus.APPROVED
    raise _unknown(actor)


def can_be_assigned(actor: Actor, team_code: str) -> bool:
    """Subtasks go to approved members of the same team only."""
    if isinstance(actor, Leader):
        return False
    if isinstance(actor, Member):
        return actor.team_code == team_code and actor.status is MemberStatus.APPROVED
    raise _unknown(actor)
