"""FastAPI application entrypoint and HTTP controllers.

Controllers are intentionally thin: they read the caller id from the
``X-User-Id`` header, delegate to services and return JSON. Engine errors
are mapped to HTTP statuses in one exception handler.

Endpoints implemented:
- POST /sessions, GET /sessions, GET /sessions/{id}
- POST /sessions/{id}/start|pause|resume|complete|cancel
- POST /habits, GET /habits, POST /habits/{id}/entries, GET /habits/{id}/progress
- POST /study-records, POST /assessments
- GET /reports/time, /reports/patterns, /reports/learning-curve, /reports/legacy-modes
- GET /insights/{job_id}
- GET /health
"""

import json
import logging
import time
import uuid
from datetime import date
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.engine import Engine
from sqlmodel import Session

from . import models, services
from .clock import Clock, SystemClock, as_utc
from .config import settings
from .database import build_engine, create_db_and_tables
from .errors import EngineError, NotFound, ValidationError
from .insights import InsightDispatcher, InsightGenerator
from .schemas import (
    AssessmentIn,
    HabitCreateIn,
    HabitEntryIn,
    SessionCompleteIn,
    SessionCreateIn,
    StudyRecordIn,
)
from .utils.cancellation import CancelToken
from .utils.job_store import JobStore
from .utils.locks import KeyedLocks

logger = logging.getLogger("focuslab.api")

STATUS_BY_KIND = {
    "validation_error": 400,
    "not_found": 404,
    "invalid_transition": 409,
    "conflict": 409,
    "dependency_unavailable": 503,
    "cancelled": 408,
}


def _iso(value):
    if value is None:
        return None
    if hasattr(value, "tzinfo"):
        return as_utc(value).isoformat()
    return value.isoformat()


def _enum(value):
    return getattr(value, "value", value)


def session_out(row: models.FocusSession) -> dict:
    return {
        "id": row.id,
        "owner_id": row.owner_id,
        "mode": _enum(row.mode),
        "status": _enum(row.status),
        "subject_id": row.subject_id,
        "habit_id": row.habit_id,
        "planned_duration_minutes": row.planned_duration_minutes,
        "focus_duration_minutes": row.focus_duration_minutes,
        "break_duration_minutes": row.break_duration_minutes,
        "start_time": _iso(row.start_time),
        "end_time": _iso(row.end_time),
        "paused_at": _iso(row.paused_at),
        "accumulated_pause_minutes": row.accumulated_pause_minutes,
        "actual_duration_minutes": row.actual_duration_minutes,
        "effectiveness": row.effectiveness,
        "distractions": row.distractions,
        "notes": row.notes,
    }


def habit_out(habit: models.Habit) -> dict:
    return {
        "id": habit.id,
        "name": habit.name,
        "mode": _enum(habit.mode),
        "target_days": habit.target_days,
        "focus_duration_minutes": habit.focus_duration_minutes,
        "break_duration_minutes": habit.break_duration_minutes,
        "sessions_per_day": habit.sessions_per_day,
        "subject_id": habit.subject_id,
        "start_date": _iso(habit.start_date),
        "target_date": _iso(habit.target_date),
        "current_streak": habit.current_streak,
        "longest_streak": habit.longest_streak,
        "completed_days": habit.completed_days,
        "total_sessions": habit.total_sessions,
        "average_effectiveness": habit.average_effectiveness,
        "is_active": habit.is_active,
        "completed_date": _iso(habit.completed_date),
    }


def entry_out(entry: models.HabitEntry) -> dict:
    return {
        "id": entry.id,
        "habit_id": entry.habit_id,
        "date": entry.day.isoformat(),
        "completed": entry.completed,
        "effectiveness": entry.effectiveness,
        "planned_sessions": entry.planned_sessions,
        "completed_sessions": entry.completed_sessions,
        "notes": entry.notes,
    }


def create_app(
    engine: Optional[Engine] = None,
    clock: Optional[Clock] = None,
    insight_generator: Optional[InsightGenerator] = None,
) -> FastAPI:
    """Build the application around an engine, a clock and an optional insight generator."""
    app = FastAPI(title="Focus Session & Habit Analytics API")
    engine = engine or build_engine()
    clock = clock or SystemClock()
    tz = settings.tz
    locks = KeyedLocks(timeout_seconds=settings.LOCK_TIMEOUT_SECONDS)
    jobs = JobStore(max_jobs=settings.INSIGHT_JOB_MAX_JOBS, ttl_seconds=settings.INSIGHT_JOB_TTL_SECONDS)
    dispatcher = InsightDispatcher(insight_generator, jobs, timeout_seconds=settings.INSIGHT_TIMEOUT_SECONDS)
    app.state.engine = engine
    app.state.clock = clock
    app.state.locks = locks
    app.state.insights = dispatcher

    if settings.ALLOW_DEV_CORS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    create_db_and_tables(engine)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
        request.state.request_id = req_id
        started = time.perf_counter()
        response: Response
        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
            logger.exception(
                "request_failed %s",
                json.dumps(
                    {
                        "request_id": req_id,
                        "path": request.url.path,
                        "method": request.method,
                        "duration_ms": elapsed_ms,
                    },
                    ensure_ascii=True,
                ),
            )
            raise
        response.headers["X-Request-ID"] = req_id
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
        return response

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        status = STATUS_BY_KIND.get(exc.kind, 500)
        if status >= 500:
            logger.warning("engine_error %s", json.dumps({"path": request.url.path, **exc.to_dict()}))
        return JSONResponse(status_code=status, content={"detail": exc.to_dict()})

    def get_session() -> Iterator[Session]:
        with Session(engine) as session:
            yield session

    def current_owner(x_user_id: Optional[str] = Header(default=None)) -> int:
        if not x_user_id or not x_user_id.strip().isdigit():
            raise ValidationError("X-User-Id header must be a numeric user id")
        return int(x_user_id)

    def session_service(db: Session = Depends(get_session)) -> services.SessionService:
        return services.SessionService(db, clock, locks, tz, dispatcher)

    def habit_service(db: Session = Depends(get_session)) -> services.HabitService:
        return services.HabitService(db, clock, locks, tz, dispatcher)

    def study_service(db: Session = Depends(get_session)) -> services.StudyService:
        return services.StudyService(db, clock)

    def report_service(db: Session = Depends(get_session)) -> services.ReportService:
        return services.ReportService(db, clock, tz, settings.MAX_REPORT_DAYS)

    def report_deadline() -> CancelToken:
        return CancelToken(timeout_seconds=settings.REPORT_TIMEOUT_SECONDS)

    @app.get("/health")
    def health():
        """Lightweight health check for uptime monitoring."""
        return {"status": "ok"}

    @app.post("/sessions", status_code=201)
    def create_session(
        payload: SessionCreateIn,
        owner_id: int = Depends(current_owner),
        svc: services.SessionService = Depends(session_service),
    ):
        row = svc.create(
            owner_id,
            payload.mode,
            payload.planned_duration_minutes,
            focus_duration_minutes=payload.focus_duration_minutes,
            break_duration_minutes=payload.break_duration_minutes,
            subject_id=payload.subject_id,
            habit_id=payload.habit_id,
            start_immediately=payload.start_immediately,
        )
        return session_out(row)

    @app.get("/sessions")
    def list_sessions(
        status: Optional[str] = None,
        limit: int = 50,
        owner_id: int = Depends(current_owner),
        svc: services.SessionService = Depends(session_service),
    ):
        return [session_out(row) for row in svc.list(owner_id, status, limit)]

    @app.get("/sessions/{session_id}")
    def get_session_route(
        session_id: int,
        owner_id: int = Depends(current_owner),
        svc: services.SessionService = Depends(session_service),
    ):
        return session_out(svc.get(owner_id, session_id))

    @app.post("/sessions/{session_id}/start")
    def start_session(session_id: int, owner_id: int = Depends(current_owner),
                      svc: services.SessionService = Depends(session_service)):
        return session_out(svc.start(owner_id, session_id))

    @app.post("/sessions/{session_id}/pause")
    def pause_session(session_id: int, owner_id: int = Depends(current_owner),
                      svc: services.SessionService = Depends(session_service)):
        return session_out(svc.pause(owner_id, session_id))

    @app.post("/sessions/{session_id}/resume")
    def resume_session(session_id: int, owner_id: int = Depends(current_owner),
                       svc: services.SessionService = Depends(session_service)):
        return session_out(svc.resume(owner_id, session_id))

    @app.post("/sessions/{session_id}/cancel")
    def cancel_session(session_id: int, owner_id: int = Depends(current_owner),
                       svc: services.SessionService = Depends(session_service)):
        return session_out(svc.cancel(owner_id, session_id))

    @app.post("/sessions/{session_id}/complete")
    def complete_session(
        session_id: int,
        payload: Optional[SessionCompleteIn] = None,
        owner_id: int = Depends(current_owner),
        svc: services.SessionService = Depends(session_service),
    ):
        """Complete a session; the response carries the insight job id when one was queued."""
        payload = payload or SessionCompleteIn()
        row = svc.complete(
            owner_id, session_id,
            effectiveness=payload.effectiveness,
            distractions=payload.distractions,
            notes=payload.notes,
        )
        out = session_out(row)
        out["insight_job_id"] = svc.last_insight_job["job_id"] if svc.last_insight_job else None
        return out

    @app.post("/habits", status_code=201)
    def create_habit(
        payload: HabitCreateIn,
        owner_id: int = Depends(current_owner),
        svc: services.HabitService = Depends(habit_service),
    ):
        habit = svc.create(
            owner_id,
            payload.name,
            payload.mode,
            payload.target_days,
            focus_duration_minutes=payload.focus_duration_minutes,
            break_duration_minutes=payload.break_duration_minutes,
            sessions_per_day=payload.sessions_per_day,
            subject_id=payload.subject_id,
            start_date=payload.start_date,
        )
        return habit_out(habit)

    @app.get("/habits")
    def list_habits(
        status: str = "all",
        owner_id: int = Depends(current_owner),
        svc: services.HabitService = Depends(habit_service),
    ):
        return [habit_out(h) for h in svc.list(owner_id, status)]

    @app.post("/habits/migrate-legacy")
    def migrate_legacy_sessions(
        owner_id: int = Depends(current_owner),
        svc: services.HabitService = Depends(habit_service),
    ):
        return svc.migrate_legacy_sessions(owner_id)

    @app.post("/habits/{habit_id}/entries")
    def log_habit_entry(
        habit_id: int,
        payload: HabitEntryIn,
        owner_id: int = Depends(current_owner),
        svc: services.HabitService = Depends(habit_service),
    ):
        entry = svc.log_entry(
            owner_id, habit_id, payload.date, payload.completed,
            effectiveness=payload.effectiveness,
            completed_sessions=payload.completed_sessions,
            notes=payload.notes,
        )
        return entry_out(entry)

    @app.get("/habits/{habit_id}/entries")
    def list_habit_entries(
        habit_id: int,
        owner_id: int = Depends(current_owner),
        svc: services.HabitService = Depends(habit_service),
    ):
        return [entry_out(e) for e in svc.entries(owner_id, habit_id)]

    @app.get("/habits/{habit_id}/progress")
    def habit_progress(
        habit_id: int,
        owner_id: int = Depends(current_owner),
        svc: services.HabitService = Depends(habit_service),
    ):
        out = svc.progress(owner_id, habit_id)
        out["completed_date"] = _iso(out["completed_date"])
        return out

    @app.post("/study-records", status_code=201)
    def log_study_record(
        payload: StudyRecordIn,
        owner_id: int = Depends(current_owner),
        svc: services.StudyService = Depends(study_service),
    ):
        record = svc.log_study_record(
            owner_id, payload.start_time, payload.duration_minutes,
            subject_id=payload.subject_id, productivity=payload.productivity,
        )
        return {
            "id": record.id,
            "subject_id": record.subject_id,
            "start_time": _iso(record.start_time),
            "duration_minutes": record.duration_minutes,
            "productivity": record.productivity,
        }

    @app.post("/assessments", status_code=201)
    def record_assessment(
        payload: AssessmentIn,
        owner_id: int = Depends(current_owner),
        svc: services.StudyService = Depends(study_service),
    ):
        point = svc.record_assessment(
            owner_id, payload.subject_id, payload.score,
            recorded_at=payload.recorded_at, duration_minutes=payload.duration_minutes,
        )
        return {
            "id": point.id,
            "subject_id": point.subject_id,
            "recorded_at": _iso(point.recorded_at),
            "score": point.score,
            "source": _enum(point.source),
        }

    @app.get("/reports/time")
    def time_report(
        start: date,
        end: date,
        subject_id: Optional[int] = None,
        monthly_goal_hours: Optional[float] = None,
        owner_id: int = Depends(current_owner),
        svc: services.ReportService = Depends(report_service),
        cancel: CancelToken = Depends(report_deadline),
    ):
        return svc.time_report(owner_id, start, end, subject_id, monthly_goal_hours, cancel=cancel)

    @app.get("/reports/patterns")
    def study_patterns(
        start: Optional[date] = None,
        end: Optional[date] = None,
        subject_id: Optional[int] = None,
        owner_id: int = Depends(current_owner),
        svc: services.ReportService = Depends(report_service),
        cancel: CancelToken = Depends(report_deadline),
    ):
        return svc.study_patterns(owner_id, start, end, subject_id, cancel=cancel)

    @app.get("/reports/learning-curve")
    def learning_curve(
        subject_id: Optional[int] = None,
        window_size: int = 30,
        resample: bool = False,
        owner_id: int = Depends(current_owner),
        svc: services.ReportService = Depends(report_service),
        cancel: CancelToken = Depends(report_deadline),
    ):
        return svc.learning_curve(owner_id, subject_id, window_size, resample, cancel=cancel)

    @app.get("/reports/legacy-modes")
    def legacy_modes(
        owner_id: int = Depends(current_owner),
        svc: services.ReportService = Depends(report_service),
    ):
        return svc.legacy_mode_summary(owner_id)

    @app.get("/reports/habits")
    def habit_analytics(
        period: str = "month",
        subject_id: Optional[int] = None,
        owner_id: int = Depends(current_owner),
        svc: services.ReportService = Depends(report_service),
    ):
        return svc.habit_analytics(owner_id, period, subject_id)

    @app.get("/insights/{job_id}")
    def get_insight_job(job_id: str):
        """Poll a background insight job."""
        job = dispatcher.get_job(job_id)
        if not job:
            raise NotFound("insight job not found")
        return job

    return app


if not logging.getLogger().handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

app = create_app()
