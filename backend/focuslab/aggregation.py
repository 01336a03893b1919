"""Read-side rollups of study time.

Completed focus sessions and manually logged study records are both
turned into ``Sample`` objects first; every report below works on
samples only. Cancelled sessions never become samples. Nothing here
writes or locks anything.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .clock import as_utc, day_start, local_day
from .errors import ValidationError
from .models import FocusSession, SessionStatus, StudyRecord
from .modes import FocusMode, is_legacy, map_legacy_mode
from .trends import classify, linear_fit
from .utils.cancellation import CancelToken, check

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

MIN_BUCKET_SAMPLES = 2
MIN_SLOT_EFFICIENCY = 60.0
MAX_TIME_SLOTS = 10
DURATION_BIN_MINUTES = 15
DEFAULT_SESSION_MINUTES = 45
MIN_SESSION_MINUTES = 15
MAX_SESSION_MINUTES = 120
MAX_REPORT_DAYS = 366


@dataclass(frozen=True)
class Sample:
    start_time: datetime
    duration_minutes: int
    effectiveness: Optional[float]
    subject_id: Optional[int]
    source: str


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of calendar days."""
    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValidationError("range end must not be before range start")
        if self.start <= date.min or self.end >= date.max:
            raise ValidationError("range must lie between 0001-01-02 and 9999-12-30")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def each_day(self) -> Iterator[date]:
        for offset in range(self.days):
            yield self.start + timedelta(days=offset)

    def utc_bounds(self, tz: tzinfo) -> Tuple[datetime, datetime]:
        """Half-open ``[start, end)`` in UTC covering every day of the range."""
        return day_start(self.start, tz), day_start(self.end + timedelta(days=1), tz)


def to_samples(sessions: Iterable[FocusSession], records: Iterable[StudyRecord] = ()) -> List[Sample]:
    samples = []
    for s in sessions:
        if SessionStatus(s.status) != SessionStatus.COMPLETED:
            continue
        if s.start_time is None or s.actual_duration_minutes is None:
            continue
        samples.append(Sample(as_utc(s.start_time), s.actual_duration_minutes, s.effectiveness,
                              s.subject_id, "focus_session"))
    for r in records:
        samples.append(Sample(as_utc(r.start_time), r.duration_minutes, r.productivity,
                              r.subject_id, "study_session"))
    return samples


def _hours(minutes: float) -> float:
    return round(minutes / 60, 2)


def _subject_order(subject_id: Optional[int]):
    return (subject_id is None, subject_id or 0)


def daily_breakdown(
    samples: Sequence[Sample],
    date_range: DateRange,
    tz: tzinfo,
    cancel: Optional[CancelToken] = None,
) -> List[dict]:
    """Minutes per calendar day, split by subject, keyed on start day."""
    per_day: Dict[date, Dict[Optional[int], int]] = defaultdict(lambda: defaultdict(int))
    counts: Dict[date, int] = defaultdict(int)
    for sample in samples:
        day = local_day(sample.start_time, tz)
        if date_range.start <= day <= date_range.end:
            per_day[day][sample.subject_id] += sample.duration_minutes
            counts[day] += 1

    out = []
    for day in date_range.each_day():
        check(cancel, "daily breakdown")
        subjects = per_day.get(day, {})
        total = sum(subjects.values())
        out.append({
            "date": day.isoformat(),
            "total_minutes": total,
            "total_hours": _hours(total),
            "sessions": counts.get(day, 0),
            "subjects": [
                {"subject_id": sid, "minutes": minutes, "hours": _hours(minutes)}
                for sid, minutes in sorted(subjects.items(), key=lambda kv: _subject_order(kv[0]))
            ],
        })
    return out


def weekly_rollup(daily: Sequence[dict], date_range: DateRange) -> dict:
    """Totals and most/least studied subject across ``daily``.

    Sessions without a subject count towards the totals but not towards
    the subject ranking. Ties go to the lowest (earliest created) id.
    """
    total = sum(d["total_minutes"] for d in daily)
    per_subject: Dict[int, int] = defaultdict(int)
    for d in daily:
        for s in d["subjects"]:
            if s["subject_id"] is not None:
                per_subject[s["subject_id"]] += s["minutes"]

    most = least = None
    if per_subject:
        ranked = sorted(per_subject.items())
        most_id, most_minutes = max(ranked, key=lambda kv: kv[1])
        least_id, least_minutes = min(ranked, key=lambda kv: kv[1])
        most = {"subject_id": most_id, "hours": _hours(most_minutes)}
        least = {"subject_id": least_id, "hours": _hours(least_minutes)}
    return {
        "total_hours": _hours(total),
        "average_per_day": _hours(total / date_range.days),
        "most_studied_subject": most,
        "least_studied_subject": least,
    }


def monthly_summary(daily: Sequence[dict], date_range: DateRange, goal_hours: Optional[float] = None) -> dict:
    total = sum(d["total_minutes"] for d in daily)
    fit = linear_fit([d["total_minutes"] / 60 for d in daily])
    goal_progress = 0.0
    if goal_hours:
        goal_progress = round(total / 60 / goal_hours * 100, 1)
    return {
        "total_hours": _hours(total),
        "average_per_week": _hours(total / (date_range.days / 7)),
        "progress_trend": classify(fit.slope * 7) if fit else "stable",
        "monthly_goal_progress": goal_progress,
    }


def time_report(
    samples: Sequence[Sample],
    date_range: DateRange,
    tz: tzinfo,
    subject_id: Optional[int] = None,
    monthly_goal_hours: Optional[float] = None,
    cancel: Optional[CancelToken] = None,
) -> dict:
    if subject_id is not None:
        samples = [s for s in samples if s.subject_id == subject_id]
    daily = daily_breakdown(samples, date_range, tz, cancel)
    check(cancel, "time report")
    return {
        "range": {"start": date_range.start.isoformat(), "end": date_range.end.isoformat()},
        "daily": daily,
        "weekly": weekly_rollup(daily, date_range),
        "monthly": monthly_summary(daily, date_range, monthly_goal_hours),
    }


def _scored(samples: Sequence[Sample]) -> List[Sample]:
    return [s for s in samples if s.effectiveness and s.duration_minutes > 0]


def optimal_time_slots(samples: Sequence[Sample], tz: tzinfo, cancel: Optional[CancelToken] = None) -> List[dict]:
    """Best (weekday, hour) slots by effectiveness-weighted time.

    Buckets with fewer than two samples, or at most 60% efficiency, are
    left out as unreliable.
    """
    buckets: Dict[Tuple[int, int], List[float]] = {}
    for i, sample in enumerate(_scored(samples)):
        if i % 500 == 0:
            check(cancel, "time slot analysis")
        local = sample.start_time.astimezone(tz)
        bucket = buckets.setdefault((local.weekday(), local.hour), [0.0, 0.0, 0])
        bucket[0] += sample.duration_minutes
        bucket[1] += sample.duration_minutes * sample.effectiveness / 10
        bucket[2] += 1

    slots = []
    for (weekday, hour), (total, effective, count) in sorted(buckets.items()):
        efficiency = effective * 100 / total
        if count >= MIN_BUCKET_SAMPLES and efficiency > MIN_SLOT_EFFICIENCY:
            slots.append({
                "day_of_week": DAY_NAMES[weekday],
                "hour": hour,
                "efficiency": round(efficiency),
                "sessions": count,
                "_raw": efficiency,
            })
    slots.sort(key=lambda s: s["_raw"], reverse=True)
    for slot in slots:
        del slot["_raw"]
    return slots[:MAX_TIME_SLOTS]


def optimal_session_duration(samples: Sequence[Sample]) -> dict:
    """Duration bin (15 min wide) with the best average effectiveness."""
    scored = _scored(samples)
    if not scored:
        return {
            "recommended_duration": DEFAULT_SESSION_MINUTES,
            "break_frequency": 10,
            "focus_mode_preference": FocusMode.POMODORO.value,
        }

    bins: Dict[int, List[float]] = {}
    for sample in scored:
        key = sample.duration_minutes // DURATION_BIN_MINUTES * DURATION_BIN_MINUTES
        bins.setdefault(key, []).append(sample.effectiveness)

    best, best_score = DEFAULT_SESSION_MINUTES, 0.0
    for minutes, scores in sorted(bins.items()):
        average = sum(scores) / len(scores)
        if len(scores) >= MIN_BUCKET_SAMPLES and average > best_score:
            best, best_score = minutes, average
    recommended = max(MIN_SESSION_MINUTES, min(MAX_SESSION_MINUTES, best))

    mean_duration = sum(s.duration_minutes for s in scored) / len(scored)
    if mean_duration <= 30:
        preference = FocusMode.POMODORO
    elif mean_duration >= 60:
        preference = FocusMode.DEEP_WORK
    else:
        preference = FocusMode.CUSTOM
    return {
        "recommended_duration": recommended,
        "break_frequency": round(recommended * 0.2),
        "focus_mode_preference": preference.value,
    }


def subject_efficiency(samples: Sequence[Sample]) -> List[dict]:
    per_subject: Dict[int, List[float]] = {}
    for sample in _scored(samples):
        if sample.subject_id is None:
            continue
        data = per_subject.setdefault(sample.subject_id, [0.0, 0.0, 0])
        data[0] += sample.duration_minutes
        data[1] += sample.duration_minutes * sample.effectiveness / 10
        data[2] += 1
    out = [
        {
            "subject_id": sid,
            "average_efficiency": round(effective * 100 / total),
            "optimal_session_length": round(total / count),
            "sessions": count,
        }
        for sid, (total, effective, count) in sorted(per_subject.items())
        if count >= MIN_BUCKET_SAMPLES
    ]
    out.sort(key=lambda row: row["average_efficiency"], reverse=True)
    return out


def study_patterns(samples: Sequence[Sample], tz: tzinfo, cancel: Optional[CancelToken] = None) -> dict:
    slots = optimal_time_slots(samples, tz, cancel)
    check(cancel, "study patterns")
    return {
        "optimal_time_slots": slots,
        "session_duration": optimal_session_duration(samples),
        "subject_efficiency": subject_efficiency(samples),
    }


def legacy_mode_summary(sessions: Iterable[FocusSession]) -> dict:
    """How much a user still relies on legacy modes, and what to move to."""
    distribution: Dict[str, int] = defaultdict(int)
    scores: Dict[str, List[int]] = defaultdict(list)
    for s in sessions:
        mode = FocusMode(s.mode)
        if not is_legacy(mode):
            continue
        distribution[mode.value] += 1
        if s.effectiveness:
            scores[mode.value].append(s.effectiveness)

    suggestions = []
    for mode, count in sorted(distribution.items()):
        values = scores.get(mode, [])
        average = sum(values) / len(values) if values else 0.0
        if average >= 8:
            habit_days = 66
        elif average >= 6:
            habit_days = 30
        else:
            habit_days = 21
        suggestions.append({
            "mode": mode,
            "enhanced_mode": map_legacy_mode(FocusMode(mode)).enhanced.value,
            "sessions": count,
            "average_effectiveness": round(average, 1),
            "recommended_habit_days": habit_days,
        })
    return {
        "total": sum(distribution.values()),
        "distribution": dict(distribution),
        "suggestions": suggestions,
    }
