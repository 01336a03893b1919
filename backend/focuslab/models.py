"""SQLModel data models.

This module defines the engine's tables using SQLModel. Timestamps are
written as UTC; use ``clock.as_utc`` when reading them back because SQLite
returns naive datetimes.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import Column, ForeignKey, Integer, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from .modes import FocusMode


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = (SessionStatus.COMPLETED, SessionStatus.CANCELLED)


class PerformanceSource(str, Enum):
    FOCUS_SESSION = "focus_session"
    STUDY_SESSION = "study_session"
    ASSESSMENT = "assessment"


class FocusSession(SQLModel, table=True):
    """One timed focus/break activity.

    Status only changes through the state machine in ``sessions.py``.
    ``version`` is bumped on every transition and used as a
    compare-and-set guard against concurrent writers.
    """
    __tablename__ = "focus_session"

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(index=True)
    mode: FocusMode
    status: SessionStatus = Field(default=SessionStatus.PENDING, index=True)
    subject_id: Optional[int] = Field(default=None, index=True)
    habit_id: Optional[int] = Field(default=None, index=True)
    planned_duration_minutes: int
    focus_duration_minutes: Optional[int] = None
    break_duration_minutes: Optional[int] = None
    start_time: Optional[datetime] = Field(default=None, index=True)
    end_time: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    accumulated_pause_minutes: int = 0
    actual_duration_minutes: Optional[int] = None
    effectiveness: Optional[int] = None
    distractions: int = 0
    notes: Optional[str] = None
    version: int = 0
    created_at: datetime = Field(default_factory=_utcnow)


class Habit(SQLModel, table=True):
    """A multi-day consistency goal (21, 66 or a custom number of days)."""
    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(index=True)
    name: str
    mode: FocusMode
    target_days: int
    focus_duration_minutes: Optional[int] = None
    break_duration_minutes: Optional[int] = None
    sessions_per_day: int = 1
    subject_id: Optional[int] = Field(default=None, index=True)
    start_date: date
    target_date: date
    current_streak: int = 0
    longest_streak: int = 0
    completed_days: int = 0
    total_sessions: int = 0
    average_effectiveness: Optional[float] = None
    is_active: bool = True
    completed_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    entries: List["HabitEntry"] = Relationship(
        back_populates="habit",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "passive_deletes": True},
    )


class HabitEntry(SQLModel, table=True):
    """One calendar day's record for a habit; unique per (habit, day)."""
    __tablename__ = "habit_entry"
    __table_args__ = (UniqueConstraint("habit_id", "day", name="uq_habit_entry_day"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    habit_id: int = Field(
        sa_column=Column(Integer, ForeignKey("habit.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    owner_id: int = Field(index=True)
    day: date = Field(index=True)
    completed: bool = False
    effectiveness: Optional[int] = None
    notes: Optional[str] = None
    planned_sessions: int = 1
    completed_sessions: int = 0
    updated_at: datetime = Field(default_factory=_utcnow)
    habit: Optional[Habit] = Relationship(back_populates="entries")


class PerformancePoint(SQLModel, table=True):
    """A 0-100 score sample feeding the learning curve. Never updated."""
    __tablename__ = "performance_point"

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(index=True)
    subject_id: Optional[int] = Field(default=None, index=True)
    recorded_at: datetime = Field(index=True)
    score: float
    source: PerformanceSource
    duration_minutes: Optional[int] = None
    session_id: Optional[int] = None


class StudyRecord(SQLModel, table=True):
    """A manually logged block of study time."""
    __tablename__ = "study_record"

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(index=True)
    subject_id: Optional[int] = Field(default=None, index=True)
    start_time: datetime = Field(index=True)
    duration_minutes: int
    productivity: Optional[int] = None
    created_at: datetime = Field(default_factory=_utcnow)
