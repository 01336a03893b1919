"""Focus session state machine.

Pure functions over a ``FocusSession`` row and a ``now`` timestamp; they
never touch the database. ``services.SessionService`` loads the row under
a per-session lock, applies one of these and persists the result.

    PENDING --start--> ACTIVE <--pause/resume--> PAUSED
    ACTIVE|PAUSED --complete--> COMPLETED
    PENDING|ACTIVE|PAUSED --cancel--> CANCELLED

All durations are whole minutes, rounded where they are computed.
"""

from datetime import datetime
from typing import Callable, Dict, Optional

from .clock import as_utc, round_minutes
from .errors import InvalidTransition, ValidationError
from .models import FocusSession, SessionStatus
from .modes import FocusMode, resolve_durations

ALLOWED_FROM = {
    "start": (SessionStatus.PENDING, SessionStatus.PAUSED),
    "pause": (SessionStatus.ACTIVE,),
    "resume": (SessionStatus.PAUSED,),
    "complete": (SessionStatus.ACTIVE, SessionStatus.PAUSED),
    "cancel": (SessionStatus.PENDING, SessionStatus.ACTIVE, SessionStatus.PAUSED),
}


def new_session(
    owner_id: int,
    mode: FocusMode,
    planned_duration_minutes: int,
    now: datetime,
    focus_duration_minutes: Optional[int] = None,
    break_duration_minutes: Optional[int] = None,
    subject_id: Optional[int] = None,
    habit_id: Optional[int] = None,
    start_immediately: bool = True,
) -> FocusSession:
    """Build (but do not persist) a new session.

    Custom sessions must say how long focus and break periods are; every
    other mode falls back to its preset.
    """
    try:
        mode = FocusMode(mode)
    except ValueError as exc:
        raise ValidationError(f"unknown focus mode: {mode}") from exc
    if planned_duration_minutes is None or planned_duration_minutes <= 0:
        raise ValidationError("plannedDurationMinutes must be a positive number of minutes")
    if mode == FocusMode.CUSTOM and (focus_duration_minutes is None or break_duration_minutes is None):
        raise ValidationError("custom sessions need both focusDurationMinutes and breakDurationMinutes")
    focus, rest = resolve_durations(mode, focus_duration_minutes, break_duration_minutes)
    if (focus is not None and focus <= 0) or (rest is not None and rest < 0):
        raise ValidationError("focus duration must be positive and break duration non-negative")
    now = as_utc(now)
    return FocusSession(
        owner_id=owner_id,
        mode=mode,
        status=SessionStatus.ACTIVE if start_immediately else SessionStatus.PENDING,
        subject_id=subject_id,
        habit_id=habit_id,
        planned_duration_minutes=planned_duration_minutes,
        focus_duration_minutes=focus,
        break_duration_minutes=rest,
        start_time=now if start_immediately else None,
        created_at=now,
    )


def _require(session: FocusSession, operation: str) -> None:
    status = SessionStatus(session.status)
    if status not in ALLOWED_FROM[operation]:
        raise InvalidTransition(operation, status.value)


def _close_pause(session: FocusSession, now: datetime) -> None:
    if session.paused_at is not None:
        paused = round_minutes(as_utc(now) - as_utc(session.paused_at))
        session.accumulated_pause_minutes += max(0, paused)
        session.paused_at = None


def _finish(session: FocusSession, now: datetime, status: SessionStatus) -> None:
    _close_pause(session, now)
    session.end_time = as_utc(now)
    session.status = status
    if session.start_time is None:
        session.actual_duration_minutes = 0
        return
    elapsed = round_minutes(session.end_time - as_utc(session.start_time))
    session.actual_duration_minutes = max(0, elapsed - session.accumulated_pause_minutes)


def start(session: FocusSession, now: datetime) -> FocusSession:
    # leaving PAUSED through start() drops the open pause without counting it
    _require(session, "start")
    if session.start_time is None:
        session.start_time = as_utc(now)
    session.paused_at = None
    session.status = SessionStatus.ACTIVE
    return session


def pause(session: FocusSession, now: datetime) -> FocusSession:
    _require(session, "pause")
    session.status = SessionStatus.PAUSED
    session.paused_at = as_utc(now)
    return session


def resume(session: FocusSession, now: datetime) -> FocusSession:
    _require(session, "resume")
    _close_pause(session, now)
    session.status = SessionStatus.ACTIVE
    return session


def complete(
    session: FocusSession,
    now: datetime,
    effectiveness: Optional[int] = None,
    distractions: Optional[int] = None,
    notes: Optional[str] = None,
) -> FocusSession:
    _require(session, "complete")
    if effectiveness is not None and not 1 <= effectiveness <= 10:
        raise ValidationError("effectiveness must be between 1 and 10")
    if distractions is not None and distractions < 0:
        raise ValidationError("distractions cannot be negative")
    _finish(session, now, SessionStatus.COMPLETED)
    if effectiveness is not None:
        session.effectiveness = effectiveness
    if distractions is not None:
        session.distractions = distractions
    if notes is not None:
        session.notes = notes
    return session


def cancel(session: FocusSession, now: datetime) -> FocusSession:
    _require(session, "cancel")
    _finish(session, now, SessionStatus.CANCELLED)
    return session


TRANSITIONS: Dict[str, Callable[..., FocusSession]] = {
    "start": start,
    "pause": pause,
    "resume": resume,
    "complete": complete,
    "cancel": cancel,
}
