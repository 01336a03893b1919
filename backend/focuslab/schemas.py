"""Pydantic request schemas used by the API.

Only shapes and types are checked here; range checks (effectiveness
1-10, target days 7-365, ...) live in the services so they raise the
same ``ValidationError`` whether called over HTTP or directly.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel


class SessionCreateIn(BaseModel):
    """Payload for creating a focus session."""
    mode: str
    planned_duration_minutes: int
    focus_duration_minutes: Optional[int] = None
    break_duration_minutes: Optional[int] = None
    subject_id: Optional[int] = None
    habit_id: Optional[int] = None
    start_immediately: bool = True


class SessionCompleteIn(BaseModel):
    effectiveness: Optional[int] = None
    distractions: Optional[int] = None
    notes: Optional[str] = None


class HabitCreateIn(BaseModel):
    """Payload for creating a habit."""
    name: str
    mode: str
    target_days: int
    focus_duration_minutes: Optional[int] = None
    break_duration_minutes: Optional[int] = None
    sessions_per_day: int = 1
    subject_id: Optional[int] = None
    start_date: Optional[date] = None


class HabitEntryIn(BaseModel):
    """One day's entry; logging the same date again overwrites it."""
    date: date
    completed: bool
    effectiveness: Optional[int] = None
    completed_sessions: Optional[int] = None
    notes: Optional[str] = None


class StudyRecordIn(BaseModel):
    start_time: datetime
    duration_minutes: int
    subject_id: Optional[int] = None
    productivity: Optional[int] = None


class AssessmentIn(BaseModel):
    subject_id: Optional[int] = None
    score: float
    recorded_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
