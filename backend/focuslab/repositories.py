"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (sessions,
habits, habit entries, performance points, study records). ``create``
methods commit; ``add``/``upsert``/``claim`` only stage work inside the
caller's transaction so a service can group several writes into one
commit.
"""

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import models
from .errors import ConflictError
from .modes import LEGACY_MODES


class FocusSessionRepository:
    """CRUD and compare-and-set claims for `FocusSession` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, focus_session: models.FocusSession) -> models.FocusSession:
        self.session.add(focus_session)
        self.session.commit()
        self.session.refresh(focus_session)
        return focus_session

    def get(self, owner_id: int, session_id: int) -> Optional[models.FocusSession]:
        """Return the session if it exists and belongs to ``owner_id``.

        Always re-reads the row so a retry after a lost claim sees the
        winner's state.
        """
        row = self.session.get(models.FocusSession, session_id, populate_existing=True)
        if row is None or row.owner_id != owner_id:
            return None
        return row

    def list_for_owner(
        self,
        owner_id: int,
        status: Optional[models.SessionStatus] = None,
        limit: int = 50,
    ) -> List[models.FocusSession]:
        """Newest first."""
        stmt = select(models.FocusSession).where(models.FocusSession.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(models.FocusSession.status == status)
        stmt = stmt.order_by(models.FocusSession.created_at.desc(), models.FocusSession.id.desc()).limit(limit)
        return self.session.exec(stmt).all()

    def claim(self, session_id: int, expected_version: int) -> bool:
        """Bump ``version`` only if nobody else has since the row was read.

        Runs on the session's connection without autoflush, so pending
        in-memory changes to the row are not written by this statement.
        """
        table = models.FocusSession.__table__
        stmt = (
            update(table)
            .where(table.c.id == session_id, table.c.version == expected_version)
            .values(version=expected_version + 1)
        )
        result = self.session.connection().execute(stmt)
        return result.rowcount == 1

    def list_completed(
        self,
        owner_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[models.FocusSession]:
        """Completed sessions whose start falls in ``[start, end)``."""
        stmt = select(models.FocusSession).where(
            models.FocusSession.owner_id == owner_id,
            models.FocusSession.status == models.SessionStatus.COMPLETED,
        )
        if start is not None:
            stmt = stmt.where(models.FocusSession.start_time >= start)
        if end is not None:
            stmt = stmt.where(models.FocusSession.start_time < end)
        return self.session.exec(stmt.order_by(models.FocusSession.start_time)).all()

    def list_legacy(self, owner_id: int) -> List[models.FocusSession]:
        stmt = select(models.FocusSession).where(
            models.FocusSession.owner_id == owner_id,
            models.FocusSession.mode.in_(LEGACY_MODES),
        )
        return self.session.exec(stmt.order_by(models.FocusSession.created_at, models.FocusSession.id)).all()


class HabitRepository:
    """CRUD operations for `Habit` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, habit: models.Habit) -> models.Habit:
        self.session.add(habit)
        self.session.commit()
        self.session.refresh(habit)
        return habit

    def get(self, owner_id: int, habit_id: int) -> Optional[models.Habit]:
        row = self.session.get(models.Habit, habit_id, populate_existing=True)
        if row is None or row.owner_id != owner_id:
            return None
        return row

    def list_for_owner(self, owner_id: int, status: str = "all") -> List[models.Habit]:
        """``status`` is one of active, completed, paused or all."""
        stmt = select(models.Habit).where(models.Habit.owner_id == owner_id)
        if status == "active":
            stmt = stmt.where(models.Habit.is_active == True)  # noqa: E712
        elif status == "completed":
            stmt = stmt.where(models.Habit.completed_date.is_not(None))
        elif status == "paused":
            stmt = stmt.where(models.Habit.is_active == False, models.Habit.completed_date.is_(None))  # noqa: E712
        return self.session.exec(stmt.order_by(models.Habit.created_at.desc(), models.Habit.id.desc())).all()

    def find_by_name(self, owner_id: int, name: str) -> Optional[models.Habit]:
        stmt = select(models.Habit).where(models.Habit.owner_id == owner_id, models.Habit.name == name)
        return self.session.exec(stmt).first()


class HabitEntryRepository:
    """Per-day entries of a habit; at most one row per (habit, day)."""
    def __init__(self, session: Session):
        self.session = session

    def get_for_day(self, habit_id: int, day: date) -> Optional[models.HabitEntry]:
        stmt = select(models.HabitEntry).where(
            models.HabitEntry.habit_id == habit_id,
            models.HabitEntry.day == day,
        )
        return self.session.exec(stmt).first()

    def list_for_habit(self, habit_id: int) -> List[models.HabitEntry]:
        stmt = select(models.HabitEntry).where(models.HabitEntry.habit_id == habit_id)
        return self.session.exec(stmt.order_by(models.HabitEntry.day.desc())).all()

    def list_for_habits(self, habit_ids: List[int], start: date, end: date) -> List[models.HabitEntry]:
        """Entries of any of ``habit_ids`` whose day falls in ``[start, end]``."""
        if not habit_ids:
            return []
        stmt = select(models.HabitEntry).where(
            models.HabitEntry.habit_id.in_(habit_ids),
            models.HabitEntry.day >= start,
            models.HabitEntry.day <= end,
        )
        return self.session.exec(stmt.order_by(models.HabitEntry.day)).all()

    def upsert(self, entry: models.HabitEntry) -> models.HabitEntry:
        """Flush a new or modified entry.

        A unique-constraint failure means another writer created the same
        day first; it surfaces as ``ConflictError`` so the caller can retry
        against the row that now exists.
        """
        self.session.add(entry)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("habit entry for that day was written concurrently") from exc
        return entry


class PerformanceRepository:
    """Append-only store of `PerformancePoint` samples."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, point: models.PerformancePoint) -> models.PerformancePoint:
        self.session.add(point)
        return point

    def list_for_owner(self, owner_id: int, subject_id: Optional[int] = None) -> List[models.PerformancePoint]:
        stmt = select(models.PerformancePoint).where(models.PerformancePoint.owner_id == owner_id)
        if subject_id is not None:
            stmt = stmt.where(models.PerformancePoint.subject_id == subject_id)
        stmt = stmt.order_by(models.PerformancePoint.recorded_at, models.PerformancePoint.id)
        return self.session.exec(stmt).all()


class StudyRecordRepository:
    """Manually logged study time."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, record: models.StudyRecord) -> models.StudyRecord:
        self.session.add(record)
        return record

    def list_for_owner(
        self,
        owner_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[models.StudyRecord]:
        stmt = select(models.StudyRecord).where(models.StudyRecord.owner_id == owner_id)
        if start is not None:
            stmt = stmt.where(models.StudyRecord.start_time >= start)
        if end is not None:
            stmt = stmt.where(models.StudyRecord.start_time < end)
        return self.session.exec(stmt.order_by(models.StudyRecord.start_time)).all()
