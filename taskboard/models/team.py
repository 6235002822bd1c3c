from sqlalchemy import Column, DateTime, Integer, String

from taskboard.database import Base
from taskboard.models.user import utcnow


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    team_code = Column(String(16), unique=True, nullable=False, index=True)
    team_name = Column(String(100), nullable=False)
    # Back-reference to the leader; set once the leader row exists.
    leader_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
