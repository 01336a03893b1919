"""Streak and habit-progress calculations.

Statistics are always recomputed from the full entry history, so logging
the same day twice gives the same numbers as logging it once.
"""

import calendar
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Dict, Iterable, List, Optional

from .clock import as_utc, local_day
from .models import Habit, HabitEntry
from .modes import FocusMode

MILESTONES = (7, 14, 21, 30, 50, 66, 100)
MILESTONE_REWARDS = {
    7: "One week warrior!",
    14: "Two weeks strong!",
    21: "Habit foundation built!",
    30: "Monthly champion!",
    50: "Halfway hero!",
    66: "Habit master!",
    100: "Century achiever!",
}

ANALYTICS_PERIODS = ("week", "month", "quarter", "year")
PERIOD_MONTHS = {"month": 1, "quarter": 3, "year": 12}


@dataclass(frozen=True)
class StreakStats:
    current_streak: int
    longest_streak: int
    completed_days: int


def compute_streaks(entries: Iterable[HabitEntry]) -> StreakStats:
    """Scan entries newest first.

    The current streak is the run of completed, day-after-day entries that
    begins at the newest entry. A missing day ends a run exactly like an
    entry with ``completed=False``.
    """
    ordered = sorted(entries, key=lambda e: e.day, reverse=True)
    current = longest = run = completed_days = 0
    counting_current = True
    previous: Optional[date] = None
    for entry in ordered:
        contiguous = previous is not None and (previous - entry.day).days == 1
        if entry.completed:
            completed_days += 1
            run = run + 1 if (contiguous and run > 0) else 1
        else:
            run = 0
        if counting_current:
            if entry.completed and (previous is None or contiguous):
                current += 1
            else:
                counting_current = False
        longest = max(longest, run)
        previous = entry.day
    return StreakStats(current, longest, completed_days)


def apply_statistics(habit: Habit, entries: List[HabitEntry], now: datetime) -> Habit:
    """Refresh the habit's denormalised counters from ``entries``.

    ``completed_date`` is stamped the first time the target is reached and
    is not cleared if an entry is later flipped back to incomplete.
    """
    stats = compute_streaks(entries)
    habit.current_streak = stats.current_streak
    habit.longest_streak = stats.longest_streak
    habit.completed_days = stats.completed_days
    habit.total_sessions = sum(e.completed_sessions for e in entries)
    scored = [e.effectiveness for e in entries if e.completed and e.effectiveness is not None]
    habit.average_effectiveness = round(sum(scored) / len(scored), 2) if scored else None
    if habit.completed_date is None and stats.completed_days >= habit.target_days:
        habit.completed_date = now
        habit.is_active = False
    return habit


def next_milestone(completed_days: int, target_days: int) -> int:
    """First milestone above ``completed_days``; the target once all are passed."""
    for milestone in MILESTONES:
        if milestone > completed_days:
            return milestone
    return target_days


def milestone_reward(day: int) -> str:
    return MILESTONE_REWARDS.get(day, "Habit completed!")


def motivation_level(current_streak: int) -> str:
    if current_streak >= 7:
        return "High"
    if current_streak >= 3:
        return "Medium"
    return "Low"


def motivation(current_streak: int, is_on_track: bool, progress_percentage: float) -> dict:
    level = motivation_level(current_streak)
    if level == "High":
        message = f"Amazing! {current_streak} days streak - you're building real momentum!"
        tips = ["Keep the momentum going - you're in the zone!"]
    elif level == "Medium":
        message = f"Good job! {current_streak} days streak - keep it going!"
        tips = ["You're building momentum - don't break the chain!"]
    else:
        message = "Every day counts - start your streak today!"
        tips = ["Focus on just getting started - that's often the hardest part"]
    if not is_on_track:
        tips.append("Don't worry about being behind - consistency matters more than perfection")
        tips.append("Consider reducing session difficulty to make it easier to maintain")
    if progress_percentage > 80:
        tips.append("You're almost there! The finish line is in sight!")
    return {"level": level, "message": message, "tips": tips}


def habit_progress(habit: Habit, today: date) -> dict:
    """Progress summary for one habit as of ``today``.

    A habit is on track when its completion percentage is at least 80% of
    the share of the target period that has already elapsed.
    """
    percentage = habit.completed_days / habit.target_days * 100
    days_since_start = max(0, (today - habit.start_date).days)
    expected = min(100.0, days_since_start / habit.target_days * 100)
    on_track = percentage >= expected * 0.8
    milestone = next_milestone(habit.completed_days, habit.target_days)
    return {
        "habit_id": habit.id,
        "name": habit.name,
        "current_streak": habit.current_streak,
        "longest_streak": habit.longest_streak,
        "completed_days": habit.completed_days,
        "target_days": habit.target_days,
        "progress_percentage": round(percentage),
        "days_remaining": max(0, habit.target_days - habit.completed_days),
        "is_on_track": on_track,
        "next_milestone_day": milestone,
        "next_milestone": {"day": milestone, "reward": milestone_reward(milestone)},
        "motivation_level": motivation_level(habit.current_streak),
        "motivation": motivation(habit.current_streak, on_track, percentage),
        "is_active": habit.is_active,
        "completed_date": habit.completed_date,
    }


def period_start(today: date, period: str) -> date:
    """First day of the analytics window ending on ``today``.

    Stepping back whole months clamps to the last day of the target month
    (31 March minus one month is 29 February in a leap year).
    """
    if period == "week":
        return today - timedelta(days=7)
    months = PERIOD_MONTHS[period]
    year, month = divmod(today.year * 12 + today.month - 1 - months, 12)
    month += 1
    return date(year, month, min(today.day, calendar.monthrange(year, month)[1]))


def _half_up(value: float) -> int:
    return int(value + 0.5)


def _weekly_progress(entries: List[HabitEntry], start: date, end: date) -> List[dict]:
    weeks = []
    week_start = start
    while week_start <= end:
        week_end = min(end, week_start + timedelta(days=6))
        in_week = [e for e in entries if week_start <= e.day <= week_end]
        completed = sum(1 for e in in_week if e.completed)
        weeks.append({
            "week_start": week_start.isoformat(),
            "week_end": week_end.isoformat(),
            "logged_days": len(in_week),
            "completed_days": completed,
            "completion_rate": _half_up(completed * 100 / len(in_week)) if in_week else 0,
        })
        week_start = week_end + timedelta(days=1)
    return weeks


def _subject_performance(habits: List[Habit], entries: List[HabitEntry]) -> List[dict]:
    by_subject: Dict[Optional[int], List[Habit]] = {}
    for habit in habits:
        by_subject.setdefault(habit.subject_id, []).append(habit)
    rows = []
    for subject_id, group in by_subject.items():
        ids = {h.id for h in group}
        done = [e for e in entries if e.habit_id in ids and e.completed]
        scored = [e.effectiveness for e in done if e.effectiveness is not None]
        rows.append({
            "subject_id": subject_id,
            "habits": len(group),
            "average_streak": _half_up(sum(h.longest_streak for h in group) / len(group)),
            "completed_days": len(done),
            "average_effectiveness": round(sum(scored) / len(scored), 2) if scored else None,
        })
    rows.sort(key=lambda r: (r["subject_id"] is None, r["subject_id"] or 0))
    return rows


def habit_analytics(
    habits: Iterable[Habit],
    entries: Iterable[HabitEntry],
    start: date,
    end: date,
    tz: tzinfo,
) -> dict:
    """Overview of the habits created in ``[start, end]``.

    Only entries of those habits that fall inside the window count
    towards weekly progress and subject performance. The most successful
    method is the most common mode; ties go to the habit created first.
    """
    selected = sorted(
        (h for h in habits if start <= local_day(h.created_at, tz) <= end),
        key=lambda h: (as_utc(h.created_at), h.id),
    )
    ids = {h.id for h in selected}
    window = [e for e in entries if e.habit_id in ids and start <= e.day <= end]

    counts = Counter(FocusMode(h.mode).value for h in selected)
    best_method = None
    for habit in selected:
        mode = FocusMode(habit.mode).value
        if best_method is None or counts[mode] > counts[best_method]:
            best_method = mode

    durations = [h.focus_duration_minutes for h in selected if h.focus_duration_minutes]
    return {
        "period": {"start": start.isoformat(), "end": end.isoformat()},
        "total_habits": len(selected),
        "active_habits": sum(1 for h in selected if h.is_active),
        "completed_habits": sum(1 for h in selected if h.completed_date is not None),
        "average_streak_length": _half_up(sum(h.longest_streak for h in selected) / len(selected)) if selected else 0,
        "most_successful_method": best_method,
        "optimal_session_minutes": _half_up(sum(durations) / len(durations)) if durations else None,
        "weekly_progress": _weekly_progress(window, start, end),
        "subject_performance": _subject_performance(selected, window),
    }
