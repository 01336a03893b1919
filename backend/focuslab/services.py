"""Business logic services used by HTTP controllers.

Services are built per request around one SQLModel ``Session`` and get
everything else (clock, lock registry, timezone, insight dispatcher)
injected. They validate input, serialise writers with ``KeyedLocks``,
run the pure state machine / streak / aggregation code and persist the
results through repositories.
"""

import json
import logging
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Callable, Iterator, List, Optional, TypeVar, Union

from sqlmodel import Session

from . import aggregation, models, repositories, sessions, streaks, trends
from .clock import Clock, as_utc, local_day
from .database import store_errors
from .errors import ConflictError, NotFound, ValidationError
from .insights import InsightDispatcher
from .modes import FocusMode, map_legacy_mode, resolve_durations
from .utils.cancellation import CancelToken
from .utils.locks import KeyedLocks

session_logger = logging.getLogger("focuslab.sessions")
habit_logger = logging.getLogger("focuslab.habits")

T = TypeVar("T")

HABIT_STATUSES = ("active", "completed", "paused", "all")
MIGRATION_MIN_EFFECTIVENESS = 7
MIGRATION_TARGET_DAYS = 21


@contextmanager
def _transaction(db: Session) -> Iterator[None]:
    """Roll back on any failure; storage outages become ``DependencyUnavailable``."""
    with store_errors():
        try:
            yield
        except Exception:
            db.rollback()
            raise


def _retry_once(what: str, fn: Callable[[], T], logger: logging.Logger = session_logger) -> T:
    try:
        return fn()
    except ConflictError:
        logger.info("conflict_retry %s", json.dumps({"operation": what}, ensure_ascii=True))
        return fn()


def _parse_mode(mode: Union[str, FocusMode]) -> FocusMode:
    try:
        return FocusMode(mode)
    except ValueError as exc:
        raise ValidationError(f"unknown focus mode: {mode}") from exc


def _check_effectiveness(value: Optional[int], field: str = "effectiveness") -> None:
    if value is not None and not 1 <= value <= 10:
        raise ValidationError(f"{field} must be between 1 and 10")


class HabitService:
    """Create habits, log daily entries and report progress."""
    def __init__(
        self,
        session: Session,
        clock: Clock,
        locks: KeyedLocks,
        tz: tzinfo = timezone.utc,
        insights: Optional[InsightDispatcher] = None,
    ):
        self.session = session
        self.clock = clock
        self.locks = locks
        self.tz = tz
        self.insights = insights
        self.habit_repo = repositories.HabitRepository(session)
        self.entry_repo = repositories.HabitEntryRepository(session)
        self.last_insight_job: Optional[dict] = None

    def create(
        self,
        owner_id: int,
        name: str,
        mode: Union[str, FocusMode],
        target_days: int,
        focus_duration_minutes: Optional[int] = None,
        break_duration_minutes: Optional[int] = None,
        sessions_per_day: int = 1,
        subject_id: Optional[int] = None,
        start_date: Optional[date] = None,
    ) -> models.Habit:
        """Create a habit starting today (local) unless ``start_date`` is given."""
        mode = _parse_mode(mode)
        if not name or len(name.strip()) < 3:
            raise ValidationError("habit name must be at least 3 characters")
        if not 7 <= target_days <= 365:
            raise ValidationError("targetDays must be between 7 and 365")
        if not 1 <= sessions_per_day <= 10:
            raise ValidationError("sessionsPerDay must be between 1 and 10")
        focus, rest = resolve_durations(mode, focus_duration_minutes, break_duration_minutes)
        if mode == FocusMode.CUSTOM and (focus is None or rest is None):
            raise ValidationError("custom habits need both focusDurationMinutes and breakDurationMinutes")
        start_date = start_date or local_day(self.clock.now(), self.tz)
        habit = models.Habit(
            owner_id=owner_id,
            name=name.strip(),
            mode=mode,
            target_days=target_days,
            focus_duration_minutes=focus,
            break_duration_minutes=rest,
            sessions_per_day=sessions_per_day,
            subject_id=subject_id,
            start_date=start_date,
            target_date=start_date + timedelta(days=target_days),
            created_at=self.clock.now(),
        )
        with _transaction(self.session):
            return self.habit_repo.create(habit)

    def get(self, owner_id: int, habit_id: int) -> models.Habit:
        with store_errors():
            habit = self.habit_repo.get(owner_id, habit_id)
        if habit is None:
            raise NotFound(f"habit {habit_id} not found")
        return habit

    def list(self, owner_id: int, status: str = "all") -> List[models.Habit]:
        if status not in HABIT_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(HABIT_STATUSES)}")
        with store_errors():
            return self.habit_repo.list_for_owner(owner_id, status)

    def entries(self, owner_id: int, habit_id: int) -> List[models.HabitEntry]:
        habit = self.get(owner_id, habit_id)
        with store_errors():
            return self.entry_repo.list_for_habit(habit.id)

    def log_entry(
        self,
        owner_id: int,
        habit_id: int,
        day: Union[date, datetime],
        completed: bool,
        effectiveness: Optional[int] = None,
        completed_sessions: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> models.HabitEntry:
        """Upsert the entry for ``day`` and recompute the habit's statistics.

        Logging the same day twice leaves one entry holding the latest
        values. Writers to the same habit are serialised.
        """
        _check_effectiveness(effectiveness)
        if completed_sessions is not None and completed_sessions < 0:
            raise ValidationError("completedSessions cannot be negative")
        day = local_day(day, self.tz)

        def _attempt() -> models.HabitEntry:
            with _transaction(self.session):
                habit = self.get(owner_id, habit_id)
                entry = self._entry_for(habit, day)
                entry.completed = completed
                if effectiveness is not None:
                    entry.effectiveness = effectiveness
                if completed_sessions is not None:
                    entry.completed_sessions = completed_sessions
                if notes is not None:
                    entry.notes = notes
                self._save(habit, entry)
                self.session.commit()
                self.session.refresh(entry)
                return entry

        with self.locks.hold(f"habit:{habit_id}"):
            entry = _retry_once("log_entry", _attempt, habit_logger)
            habit = self.get(owner_id, habit_id)

        habit_logger.info(
            "habit_entry_logged %s",
            json.dumps(
                {
                    "habit_id": habit.id,
                    "owner_id": owner_id,
                    "day": day.isoformat(),
                    "completed": entry.completed,
                    "current_streak": habit.current_streak,
                    "longest_streak": habit.longest_streak,
                },
                ensure_ascii=True,
            ),
        )
        if self.insights is not None:
            self.last_insight_job = self.insights.submit(
                "habit_progress", streaks.habit_progress(habit, local_day(self.clock.now(), self.tz))
            )
        return entry

    def record_completed_session(
        self,
        habit: models.Habit,
        day: date,
        effectiveness: Optional[int] = None,
    ) -> models.HabitEntry:
        """Count one finished session towards ``day``.

        Runs inside the caller's transaction; the caller must hold the
        habit's lock. The day counts as completed once its completed
        sessions reach the planned number.
        """
        entry = self._entry_for(habit, day)
        entry.completed_sessions += 1
        entry.completed = entry.completed or entry.completed_sessions >= entry.planned_sessions
        if effectiveness is not None:
            entry.effectiveness = effectiveness
        self._save(habit, entry)
        return entry

    def progress(self, owner_id: int, habit_id: int) -> dict:
        habit = self.get(owner_id, habit_id)
        return streaks.habit_progress(habit, local_day(self.clock.now(), self.tz))

    def migrate_legacy_sessions(self, owner_id: int) -> dict:
        """Turn effective legacy-mode sessions into 21-day habits.

        Each legacy mode gets at most one habit, named ``Migrated <MODE>
        Sessions`` and using the mode's current-day equivalent. A session
        rated below 7, or whose mode already has such a habit, is skipped.
        A session whose habit cannot be created is reported in ``errors``.
        """
        migrated = skipped = 0
        errors: List[str] = []
        with self.locks.hold(f"habit-migration:{owner_id}"):
            with store_errors():
                legacy = repositories.FocusSessionRepository(self.session).list_legacy(owner_id)
            for row in legacy:
                mode = FocusMode(row.mode)
                name = f"Migrated {mode.value} Sessions"
                with store_errors():
                    existing = self.habit_repo.find_by_name(owner_id, name)
                if existing is not None or (row.effectiveness or 0) < MIGRATION_MIN_EFFECTIVENESS:
                    skipped += 1
                    continue
                try:
                    self.create(
                        owner_id,
                        name,
                        map_legacy_mode(mode).enhanced,
                        MIGRATION_TARGET_DAYS,
                        focus_duration_minutes=row.focus_duration_minutes,
                        break_duration_minutes=row.break_duration_minutes,
                        subject_id=row.subject_id,
                    )
                except ValidationError as exc:
                    errors.append(f"session {row.id}: {exc.message}")
                    continue
                migrated += 1

        habit_logger.info(
            "legacy_sessions_migrated %s",
            json.dumps(
                {"owner_id": owner_id, "migrated": migrated, "skipped": skipped, "errors": len(errors)},
                ensure_ascii=True,
            ),
        )
        return {"migrated": migrated, "skipped": skipped, "errors": errors}

    def _entry_for(self, habit: models.Habit, day: date) -> models.HabitEntry:
        entry = self.entry_repo.get_for_day(habit.id, day)
        if entry is None:
            entry = models.HabitEntry(
                habit_id=habit.id,
                owner_id=habit.owner_id,
                day=day,
                planned_sessions=habit.sessions_per_day,
            )
        return entry

    def _save(self, habit: models.Habit, entry: models.HabitEntry) -> None:
        now = self.clock.now()
        entry.updated_at = now
        self.entry_repo.upsert(entry)
        streaks.apply_statistics(habit, self.entry_repo.list_for_habit(habit.id), now)
        self.session.add(habit)


class SessionService:
    """Drive focus sessions through their lifecycle."""
    def __init__(
        self,
        session: Session,
        clock: Clock,
        locks: KeyedLocks,
        tz: tzinfo = timezone.utc,
        insights: Optional[InsightDispatcher] = None,
    ):
        self.session = session
        self.clock = clock
        self.locks = locks
        self.tz = tz
        self.insights = insights
        self.repo = repositories.FocusSessionRepository(session)
        self.performance_repo = repositories.PerformanceRepository(session)
        self.habits = HabitService(session, clock, locks, tz)
        self.last_insight_job: Optional[dict] = None

    def create(
        self,
        owner_id: int,
        mode: Union[str, FocusMode],
        planned_duration_minutes: int,
        focus_duration_minutes: Optional[int] = None,
        break_duration_minutes: Optional[int] = None,
        subject_id: Optional[int] = None,
        habit_id: Optional[int] = None,
        start_immediately: bool = True,
    ) -> models.FocusSession:
        """Create a session, ACTIVE right away unless ``start_immediately`` is false."""
        if habit_id is not None:
            self.habits.get(owner_id, habit_id)
        row = sessions.new_session(
            owner_id,
            _parse_mode(mode),
            planned_duration_minutes,
            self.clock.now(),
            focus_duration_minutes=focus_duration_minutes,
            break_duration_minutes=break_duration_minutes,
            subject_id=subject_id,
            habit_id=habit_id,
            start_immediately=start_immediately,
        )
        with _transaction(self.session):
            row = self.repo.create(row)
        self._log("create", row, previous=None)
        return row

    def get(self, owner_id: int, session_id: int) -> models.FocusSession:
        with store_errors():
            row = self.repo.get(owner_id, session_id)
        if row is None:
            raise NotFound(f"session {session_id} not found")
        return row

    def list(
        self,
        owner_id: int,
        status: Optional[Union[str, models.SessionStatus]] = None,
        limit: int = 50,
    ) -> List[models.FocusSession]:
        if status is not None:
            try:
                status = models.SessionStatus(status)
            except ValueError as exc:
                raise ValidationError(f"unknown session status: {status}") from exc
        if not 1 <= limit <= 500:
            raise ValidationError("limit must be between 1 and 500")
        with store_errors():
            return self.repo.list_for_owner(owner_id, status, limit)

    def start(self, owner_id: int, session_id: int) -> models.FocusSession:
        return self.transition(owner_id, session_id, "start")

    def pause(self, owner_id: int, session_id: int) -> models.FocusSession:
        return self.transition(owner_id, session_id, "pause")

    def resume(self, owner_id: int, session_id: int) -> models.FocusSession:
        return self.transition(owner_id, session_id, "resume")

    def cancel(self, owner_id: int, session_id: int) -> models.FocusSession:
        return self.transition(owner_id, session_id, "cancel")

    def complete(
        self,
        owner_id: int,
        session_id: int,
        effectiveness: Optional[int] = None,
        distractions: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> models.FocusSession:
        row = self.transition(
            owner_id, session_id, "complete",
            effectiveness=effectiveness, distractions=distractions, notes=notes,
        )
        if self.insights is not None:
            self.last_insight_job = self.insights.submit("session_completed", {
                "session_id": row.id,
                "mode": FocusMode(row.mode).value,
                "subject_id": row.subject_id,
                "planned_duration_minutes": row.planned_duration_minutes,
                "actual_duration_minutes": row.actual_duration_minutes,
                "effectiveness": row.effectiveness,
                "distractions": row.distractions,
            })
        return row

    def transition(self, owner_id: int, session_id: int, operation: str, **kwargs) -> models.FocusSession:
        """Apply ``operation`` as one read-modify-write under the session lock.

        The row is claimed with a version compare-and-set before it is
        written; losing the claim is retried once against fresh state.
        """
        if operation not in sessions.TRANSITIONS:
            raise ValidationError(f"unknown operation: {operation}")

        def _attempt():
            with _transaction(self.session):
                row = self.get(owner_id, session_id)
                previous = models.SessionStatus(row.status)
                expected = row.version
                sessions.TRANSITIONS[operation](row, self.clock.now(), **kwargs)
                if not self.repo.claim(row.id, expected):
                    raise ConflictError("session was modified concurrently")
                row.version = expected + 1
                if operation == "complete":
                    self._on_complete(row)
                self.session.add(row)
                self.session.commit()
                self.session.refresh(row)
                return row, previous

        with self.locks.hold(f"session:{session_id}"):
            row, previous = _retry_once(operation, _attempt)
        self._log(operation, row, previous)
        return row

    def _on_complete(self, row: models.FocusSession) -> None:
        if row.habit_id is not None:
            habit = self.habits.get(row.owner_id, row.habit_id)
            with self.locks.hold(f"habit:{habit.id}"):
                self.habits.record_completed_session(
                    habit, local_day(row.end_time, self.tz), row.effectiveness
                )
        if row.effectiveness is not None:
            self.performance_repo.add(models.PerformancePoint(
                owner_id=row.owner_id,
                subject_id=row.subject_id,
                recorded_at=as_utc(row.end_time),
                score=float(row.effectiveness * 10),
                source=models.PerformanceSource.FOCUS_SESSION,
                duration_minutes=row.actual_duration_minutes,
                session_id=row.id,
            ))

    def _log(self, operation: str, row: models.FocusSession, previous: Optional[models.SessionStatus]) -> None:
        session_logger.info(
            "session_transition %s",
            json.dumps(
                {
                    "session_id": row.id,
                    "owner_id": row.owner_id,
                    "operation": operation,
                    "from": previous.value if previous else None,
                    "to": models.SessionStatus(row.status).value,
                    "accumulated_pause_minutes": row.accumulated_pause_minutes,
                    "actual_duration_minutes": row.actual_duration_minutes,
                },
                ensure_ascii=True,
            ),
        )


class StudyService:
    """Manually logged study time and external assessment scores."""
    def __init__(self, session: Session, clock: Clock):
        self.session = session
        self.clock = clock
        self.record_repo = repositories.StudyRecordRepository(session)
        self.performance_repo = repositories.PerformanceRepository(session)

    def log_study_record(
        self,
        owner_id: int,
        start_time: datetime,
        duration_minutes: int,
        subject_id: Optional[int] = None,
        productivity: Optional[int] = None,
    ) -> models.StudyRecord:
        """Store a study block; a productivity score also becomes a performance point."""
        if duration_minutes is None or duration_minutes <= 0:
            raise ValidationError("durationMinutes must be positive")
        _check_effectiveness(productivity, "productivity")
        record = models.StudyRecord(
            owner_id=owner_id,
            subject_id=subject_id,
            start_time=as_utc(start_time),
            duration_minutes=duration_minutes,
            productivity=productivity,
            created_at=self.clock.now(),
        )
        with _transaction(self.session):
            self.record_repo.add(record)
            if productivity is not None:
                self.performance_repo.add(models.PerformancePoint(
                    owner_id=owner_id,
                    subject_id=subject_id,
                    recorded_at=as_utc(start_time),
                    score=float(productivity * 10),
                    source=models.PerformanceSource.STUDY_SESSION,
                    duration_minutes=duration_minutes,
                ))
            self.session.commit()
            self.session.refresh(record)
        return record

    def record_assessment(
        self,
        owner_id: int,
        subject_id: Optional[int],
        score: float,
        recorded_at: Optional[datetime] = None,
        duration_minutes: Optional[int] = None,
    ) -> models.PerformancePoint:
        if score is None or not 0 <= score <= 100:
            raise ValidationError("score must be between 0 and 100")
        if duration_minutes is not None and duration_minutes < 0:
            raise ValidationError("durationMinutes cannot be negative")
        point = models.PerformancePoint(
            owner_id=owner_id,
            subject_id=subject_id,
            recorded_at=as_utc(recorded_at) if recorded_at else self.clock.now(),
            score=float(score),
            source=models.PerformanceSource.ASSESSMENT,
            duration_minutes=duration_minutes,
        )
        with _transaction(self.session):
            self.performance_repo.add(point)
            self.session.commit()
            self.session.refresh(point)
        return point


class ReportService:
    """Read-only reports. Takes no locks; reads whatever is committed."""
    def __init__(
        self,
        session: Session,
        clock: Clock,
        tz: tzinfo = timezone.utc,
        max_report_days: int = aggregation.MAX_REPORT_DAYS,
    ):
        self.session = session
        self.clock = clock
        self.tz = tz
        self.max_report_days = max_report_days
        self.session_repo = repositories.FocusSessionRepository(session)
        self.record_repo = repositories.StudyRecordRepository(session)
        self.habit_repo = repositories.HabitRepository(session)
        self.entry_repo = repositories.HabitEntryRepository(session)
        self.performance_repo = repositories.PerformanceRepository(session)

    def _range(self, start: date, end: date) -> aggregation.DateRange:
        date_range = aggregation.DateRange(start, end)
        if date_range.days > self.max_report_days:
            raise ValidationError(f"range cannot span more than {self.max_report_days} days")
        return date_range

    def _samples(self, owner_id: int, date_range: Optional[aggregation.DateRange]) -> List[aggregation.Sample]:
        start = end = None
        if date_range is not None:
            start, end = date_range.utc_bounds(self.tz)
        with store_errors():
            return aggregation.to_samples(
                self.session_repo.list_completed(owner_id, start, end),
                self.record_repo.list_for_owner(owner_id, start, end),
            )

    def time_report(
        self,
        owner_id: int,
        start: date,
        end: date,
        subject_id: Optional[int] = None,
        monthly_goal_hours: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
    ) -> dict:
        if monthly_goal_hours is not None and monthly_goal_hours <= 0:
            raise ValidationError("monthlyGoalHours must be positive")
        date_range = self._range(start, end)
        return aggregation.time_report(
            self._samples(owner_id, date_range), date_range, self.tz,
            subject_id=subject_id, monthly_goal_hours=monthly_goal_hours, cancel=cancel,
        )

    def study_patterns(
        self,
        owner_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
        subject_id: Optional[int] = None,
        cancel: Optional[CancelToken] = None,
    ) -> dict:
        date_range = self._range(start, end) if start and end else None
        samples = self._samples(owner_id, date_range)
        if subject_id is not None:
            samples = [s for s in samples if s.subject_id == subject_id]
        return aggregation.study_patterns(samples, self.tz, cancel)

    def learning_curve(
        self,
        owner_id: int,
        subject_id: Optional[int] = None,
        window_size: int = 30,
        resample: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> dict:
        if window_size < 1:
            raise ValidationError("windowSize must be at least 1")
        with store_errors():
            points = self.performance_repo.list_for_owner(owner_id, subject_id)
        return trends.learning_curve(points, window_size, self.tz, resample=resample, cancel=cancel)

    def legacy_mode_summary(self, owner_id: int) -> dict:
        with store_errors():
            return aggregation.legacy_mode_summary(self.session_repo.list_legacy(owner_id))

    def habit_analytics(self, owner_id: int, period: str = "month", subject_id: Optional[int] = None) -> dict:
        """Overview of the habits created during the last ``period``."""
        if period not in streaks.ANALYTICS_PERIODS:
            raise ValidationError(f"period must be one of {', '.join(streaks.ANALYTICS_PERIODS)}")
        today = local_day(self.clock.now(), self.tz)
        start = streaks.period_start(today, period)
        with store_errors():
            habits = self.habit_repo.list_for_owner(owner_id, "all")
            if subject_id is not None:
                habits = [h for h in habits if h.subject_id == subject_id]
            entries = self.entry_repo.list_for_habits([h.id for h in habits], start, today)
        return streaks.habit_analytics(habits, entries, start, today, self.tz)
