# taskboard/schemas.py
# ------------------------------------------------------------
# Pydantic v2 schemas, organized by domain.
# Request bodies use the camelCase keys the dashboard sends.
# ------------------------------------------------------------
from datetime import datetime
import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic_core import PydanticCustomError


_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


def _required_text(value):
    """Blank strings count as missing, like absent keys."""
    if value is None:
        return value
    if not isinstance(value, str):
        raise TypeError("Expected string input")
    cleaned = _CONTROL_CHAR_RE.sub("", value).strip()
    if not cleaned:
        raise PydanticCustomError("missing", "Field required")
    return cleaned


def _optional_text(value):
    if value is None:
        return value
    if not isinstance(value, str):
        raise TypeError("Expected string input")
    cleaned = _CONTROL_CHAR_RE.sub("", value).strip()
    return cleaned or None


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============================================================
# Registration & login
# ============================================================

class _Signup(_Body):
    email: EmailStr
    name: str
    password: str

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value):
        value = _required_text(value)
        return value.lower() if value else value

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, value):
        return _required_text(value)

    @field_validator("password", mode="before")
    @classmethod
    def _require_password(cls, value):
        # Passwords are checked for blankness but never altered.
        if isinstance(value, str) and not value.strip():
            raise PydanticCustomError("missing", "Field required")
        return value


class LeaderSignup(_Signup):
    team_name: str = Field(alias="teamName", max_length=100)

    @field_validator("team_name", mode="before")
    @classmethod
    def _clean_team_name(cls, value):
        return _required_text(value)


class MemberSignup(_Signup):
    team_code: str = Field(alias="teamCode")

    @field_validator("team_code", mode="before")
    @classmethod
    def _clean_team_code(cls, value):
        value = _required_text(value)
        return value.upper() if value else value


class TokenVerification(_Body):
    token: str

    @field_validator("token", mode="before")
    @classmethod
    def _clean_token(cls, value):
        return _required_text(value)


class CodeVerification(_Body):
    code: str

    @field_validator("code", mode="before")
    @classmethod
    def _clean_code(cls, value):
        if isinstance(value, int):
            value = str(value)
        return _required_text(value)


class LoginRequest(_Body):
    email: str
    password: str
    team_code: str = Field(alias="teamCode")

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value):
        value = _required_text(value)
        return value.lower() if value else value

    @field_validator("team_code", mode="before")
    @classmethod
    def _clean_team_code(cls, value):
        value = _required_text(value)
        return value.upper() if value else value


class MemberStatusCheck(_Body):
    email: str
    team_code: str = Field(alias="teamCode")

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value):
        value = _required_text(value)
        return value.lower() if value else value

    @field_validator("team_code", mode="before")
    @classmethod
    def _clean_team_code(cls, value):
        value = _required_text(value)
        return value.upper() if value else value


# ============================================================
# Member approval
# ============================================================

class _TeamScoped(_Body):
    user_id: int = Field(alias="userId")
    team_code: str = Field(alias="teamCode")

    @field_validator("team_code", mode="before")
    @classmethod
    def _clean_team_code(cls, value):
        value = _required_text(value)
        return value.upper() if value else value


class ApproveMember(_TeamScoped):
    approved_by: int = Field(alias="approvedBy")


class RejectMember(_TeamScoped):
    rejected_by: int = Field(alias="rejectedBy")


class LeaderAction(_Body):
    leader_id: int = Field(alias="leaderId")


# ============================================================
# Tasks & subtasks
# ============================================================

class SubtaskIn(_Body):
    title: str = Field(max_length=200)
    description: Optional[str] = None
    assigned_to: Optional[int] = Field(default=None, alias="assignedTo")
    deadline: Optional[datetime] = None

    @field_validator("title", mode="before")
    @classmethod
    def _clean_title(cls, value):
        return _required_text(value)

    @field_validator("description", mode="before")
    @classmethod
    def _clean_description(cls, value):
        return _optional_text(value)

    @field_validator("assigned_to", mode="before")
    @classmethod
    def _empty_assignee(cls, value):
        return None if value in ("", 0) else value


class TaskCreate(_Body):
    title: str = Field(max_length=200)
    description: Optional[str] = None
    team_code: str = Field(alias="teamCode")
    created_by: int = Field(alias="createdBy")
    subtasks: List[SubtaskIn]
    assign_specific: bool = Field(default=False, alias="assignSpecific")

    @field_validator("title", "team_code", mode="before")
    @classmethod
    def _clean_required(cls, value):
        return _required_text(value)

    @field_validator("description", mode="before")
    @classmethod
    def _clean_description(cls, value):
        return _optional_text(value)


class TaskUpdate(_Body):
    title: str = Field(max_length=200)
    description: Optional[str] = None
    user_id: int = Field(alias="userId")

    @field_validator("title", mode="before")
    @classmethod
    def _clean_title(cls, value):
        return _required_text(value)

    @field_validator("description", mode="before")
    @classmethod
    def _clean_description(cls, value):
        return _optional_text(value)


class UserAction(_Body):
    user_id: int = Field(alias="userId")


class AssignSubtask(_Body):
    user_id: int = Field(alias="userId")
    assigned_by: int = Field(alias="assignedBy")


class ProgressUpdate(_Body):
    progress: str
    user_id: int = Field(alias="userId")

    @field_validator("progress", mode="before")
    @classmethod
    def _clean_progress(cls, value):
        return _required_text(value)


class SubtaskUpdate(SubtaskIn):
    user_id: int = Field(alias="userId")


# ============================================================
# Responses
# ============================================================

class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    role: str
    team_code: str
    status: str
    email_verified: bool
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MemberSummary(BaseModel):
    id: int
    name: str
    email: str
    role: str
    status: str
    email_verified: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    assigned_tasks: Optional[int] = None
    completed_tasks: Optional[int] = None


class SubtaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: int
    title: str
    description: Optional[str] = None
    assigned_to: Optional[int] = None
    status: str
    progress: str
    deadline: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    assigned_to_name: Optional[str] = None
    assigned_to_email: Optional[str] = None
    task_title: Optional[str] = None
    team_code: Optional[str] = None


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    team_code: str
    created_by: Optional[int] = None
    created_by_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    total_subtasks: int = 0
    completed_subtasks: int = 0
    subtasks: List[SubtaskRead] = Field(default_factory=list)


class MemberPerformance(BaseModel):
    id: int
    name: str
    email: str
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    pending_tasks: int = 0
    completion_rate: int = 0
