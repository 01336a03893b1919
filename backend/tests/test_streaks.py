import random
from datetime import date, datetime, timedelta, timezone

import pytest

from focuslab import streaks
from focuslab.errors import NotFound, ValidationError
from focuslab.models import Habit, HabitEntry

DAY1 = date(2024, 3, 4)


def _entries(pattern, start=DAY1):
    """``pattern`` is a string like "11111 01": 1 done, 0 not done, space = no entry."""
    out = []
    for offset, flag in enumerate(pattern):
        if flag != " ":
            out.append(HabitEntry(habit_id=1, owner_id=1, day=start + timedelta(days=offset), completed=flag == "1"))
    return out


def test_missed_day_resets_current_streak():
    stats = streaks.compute_streaks(_entries("1111101"))
    assert (stats.current_streak, stats.longest_streak, stats.completed_days) == (1, 5, 6)


def test_gap_breaks_streak_like_an_incomplete_day():
    stats = streaks.compute_streaks(_entries("11111 1"))
    assert (stats.current_streak, stats.longest_streak) == (1, 5)
    assert stats.completed_days == 6


def test_no_entries_means_no_streak():
    stats = streaks.compute_streaks([])
    assert (stats.current_streak, stats.longest_streak, stats.completed_days) == (0, 0, 0)


def test_latest_incomplete_entry_zeroes_current_streak():
    stats = streaks.compute_streaks(_entries("1110"))
    assert (stats.current_streak, stats.longest_streak) == (0, 3)


def test_entry_order_does_not_matter():
    entries = _entries("11011100111")
    shuffled = list(entries)
    random.Random(3).shuffle(shuffled)
    assert streaks.compute_streaks(shuffled) == streaks.compute_streaks(entries)


def test_longest_is_never_below_current():
    rng = random.Random(11)
    for _ in range(200):
        pattern = "".join(rng.choice("10 ") for _ in range(rng.randint(0, 30)))
        stats = streaks.compute_streaks(_entries(pattern))
        assert stats.longest_streak >= stats.current_streak
        assert stats.completed_days == pattern.count("1")


@pytest.mark.parametrize("completed, target, expected", [
    (0, 21, 7), (7, 21, 14), (20, 21, 21), (21, 21, 30), (50, 66, 66), (0, 10, 7), (7, 10, 14),
    (66, 100, 100), (100, 100, 100), (120, 150, 150),
])
def test_next_milestone(completed, target, expected):
    assert streaks.next_milestone(completed, target) == expected


@pytest.mark.parametrize("streak, level", [(0, "Low"), (2, "Low"), (3, "Medium"), (6, "Medium"), (7, "High")])
def test_motivation_level(streak, level):
    assert streaks.motivation_level(streak) == level


def test_progress_on_track():
    habit = Habit(owner_id=1, name="Read", mode="POMODORO_CLASSIC", target_days=20,
                  start_date=DAY1, target_date=DAY1 + timedelta(days=20), completed_days=4)
    progress = streaks.habit_progress(habit, DAY1 + timedelta(days=5))
    assert progress["progress_percentage"] == 20
    assert progress["days_remaining"] == 16
    assert progress["is_on_track"] is True
    behind = streaks.habit_progress(habit, DAY1 + timedelta(days=10))
    assert behind["is_on_track"] is False


def test_log_entry_is_idempotent(habit_service):
    habit = habit_service.create(1, "Daily review", "POMODORO_CLASSIC", 21, start_date=DAY1)
    habit_service.log_entry(1, habit.id, DAY1, True, effectiveness=7)
    first = habit_service.get(1, habit.id)
    snapshot = (first.current_streak, first.longest_streak, first.completed_days)
    habit_service.log_entry(1, habit.id, DAY1, True, effectiveness=7)
    again = habit_service.get(1, habit.id)
    assert (again.current_streak, again.longest_streak, again.completed_days) == snapshot == (1, 1, 1)
    assert len(habit_service.entries(1, habit.id)) == 1


def test_log_entry_scenario_through_service(habit_service):
    habit = habit_service.create(1, "Spaced repetition", "POMODORO_CLASSIC", 21, start_date=DAY1)
    for offset, done in enumerate([True] * 5 + [False, True]):
        habit_service.log_entry(1, habit.id, DAY1 + timedelta(days=offset), done, effectiveness=8 if done else None)
    habit = habit_service.get(1, habit.id)
    assert (habit.current_streak, habit.longest_streak, habit.completed_days) == (1, 5, 6)
    assert habit.average_effectiveness == 8.0


def test_log_entry_accepts_datetimes_in_local_zone(db, clock, locks):
    from focuslab.services import HabitService
    tokyo = timezone(timedelta(hours=9))
    svc = HabitService(db, clock, locks, tz=tokyo)
    habit = svc.create(1, "Late night study", "POMODORO_CLASSIC", 21, start_date=DAY1)
    entry = svc.log_entry(1, habit.id, datetime(2024, 3, 4, 20, 0, tzinfo=timezone.utc), True)
    assert entry.day == date(2024, 3, 5)


def test_reaching_target_completes_the_habit(habit_service, clock):
    habit = habit_service.create(1, "One week", "POMODORO_CLASSIC", 7, start_date=DAY1)
    for offset in range(7):
        habit_service.log_entry(1, habit.id, DAY1 + timedelta(days=offset), True)
    done = habit_service.get(1, habit.id)
    assert done.is_active is False
    stamped = done.completed_date
    assert stamped is not None

    clock.advance(days=1)
    habit_service.log_entry(1, habit.id, DAY1, False)
    still = habit_service.get(1, habit.id)
    assert still.completed_date == stamped
    assert still.is_active is False
    assert [h.id for h in habit_service.list(1, "completed")] == [habit.id]
    assert habit_service.list(1, "active") == []


@pytest.mark.parametrize("kwargs", [
    {"name": "ab"},
    {"target_days": 6},
    {"target_days": 366},
    {"sessions_per_day": 0},
    {"sessions_per_day": 11},
    {"mode": "NAPPING"},
])
def test_create_habit_validation(habit_service, kwargs):
    args = {"name": "Valid habit", "mode": "POMODORO_CLASSIC", "target_days": 21, **kwargs}
    with pytest.raises(ValidationError):
        habit_service.create(1, **args)


def test_create_habit_sets_target_date_and_presets(habit_service):
    habit = habit_service.create(1, "Deep blocks", "DEEP_WORK_90", 66, start_date=DAY1)
    assert habit.target_date == DAY1 + timedelta(days=66)
    assert (habit.focus_duration_minutes, habit.break_duration_minutes) == (90, 20)


def test_log_entry_unknown_habit(habit_service):
    with pytest.raises(NotFound):
        habit_service.log_entry(1, 404, DAY1, True)


def test_log_entry_rejects_bad_effectiveness(habit_service):
    habit = habit_service.create(1, "Valid habit", "POMODORO_CLASSIC", 21, start_date=DAY1)
    with pytest.raises(ValidationError):
        habit_service.log_entry(1, habit.id, DAY1, True, effectiveness=0)


def test_milestone_rewards():
    assert streaks.milestone_reward(21) == "Habit foundation built!"
    assert streaks.milestone_reward(150) == "Habit completed!"


def test_motivation_tips_follow_progress():
    behind = streaks.motivation(1, is_on_track=False, progress_percentage=10)
    assert behind["level"] == "Low"
    assert behind["message"] == "Every day counts - start your streak today!"
    assert len(behind["tips"]) == 3
    almost = streaks.motivation(9, is_on_track=True, progress_percentage=85)
    assert almost["message"].startswith("Amazing! 9 days streak")
    assert almost["tips"][-1] == "You're almost there! The finish line is in sight!"


def test_progress_carries_milestone_reward_and_motivation():
    habit = Habit(owner_id=1, name="Read", mode="POMODORO_CLASSIC", target_days=21,
                  start_date=DAY1, target_date=DAY1 + timedelta(days=21), completed_days=21, current_streak=21)
    progress = streaks.habit_progress(habit, DAY1 + timedelta(days=21))
    assert progress["next_milestone_day"] == 30
    assert progress["next_milestone"] == {"day": 30, "reward": "Monthly champion!"}
    assert progress["motivation"]["level"] == progress["motivation_level"] == "High"


@pytest.mark.parametrize("today, period, expected", [
    (date(2024, 3, 11), "week", date(2024, 3, 4)),
    (date(2024, 3, 31), "month", date(2024, 2, 29)),
    (date(2024, 1, 15), "quarter", date(2023, 10, 15)),
    (date(2024, 2, 29), "year", date(2023, 2, 28)),
])
def test_period_start(today, period, expected):
    assert streaks.period_start(today, period) == expected


def _habit(habit_id, mode, created_day, longest=0, subject_id=None, is_active=True, completed=False, focus=25):
    return Habit(id=habit_id, owner_id=1, name=f"Habit {habit_id}", mode=mode, target_days=21,
                 start_date=created_day, target_date=created_day + timedelta(days=21),
                 longest_streak=longest, subject_id=subject_id, is_active=is_active,
                 completed_date=datetime(2024, 3, 20, tzinfo=timezone.utc) if completed else None,
                 focus_duration_minutes=focus,
                 created_at=datetime(created_day.year, created_day.month, created_day.day, 8, tzinfo=timezone.utc))


def test_habit_analytics_overview():
    start, end = date(2024, 3, 1), date(2024, 3, 14)
    habits = [
        _habit(1, "DEEP_WORK_90", date(2024, 3, 2), longest=5, subject_id=2, focus=90),
        _habit(2, "POMODORO_CLASSIC", date(2024, 3, 3), longest=2, subject_id=1, is_active=False, completed=True),
        _habit(3, "DEEP_WORK_90", date(2024, 3, 4), longest=4, subject_id=2, focus=90),
        _habit(4, "POMODORO_CLASSIC", date(2024, 2, 1), longest=40),
    ]
    entries = [
        HabitEntry(habit_id=1, owner_id=1, day=date(2024, 3, 2), completed=True, effectiveness=8),
        HabitEntry(habit_id=1, owner_id=1, day=date(2024, 3, 3), completed=False),
        HabitEntry(habit_id=3, owner_id=1, day=date(2024, 3, 9), completed=True, effectiveness=6),
        HabitEntry(habit_id=2, owner_id=1, day=date(2024, 3, 10), completed=True),
        HabitEntry(habit_id=4, owner_id=1, day=date(2024, 3, 10), completed=True),
    ]
    out = streaks.habit_analytics(habits, entries, start, end, timezone.utc)

    assert (out["total_habits"], out["active_habits"], out["completed_habits"]) == (3, 2, 1)
    assert out["average_streak_length"] == 4
    assert out["most_successful_method"] == "DEEP_WORK_90"
    assert out["optimal_session_minutes"] == 68
    assert [(w["week_start"], w["logged_days"], w["completed_days"], w["completion_rate"])
            for w in out["weekly_progress"]] == [("2024-03-01", 2, 1, 50), ("2024-03-08", 2, 2, 100)]
    assert out["subject_performance"] == [
        {"subject_id": 1, "habits": 1, "average_streak": 2, "completed_days": 1, "average_effectiveness": None},
        {"subject_id": 2, "habits": 2, "average_streak": 5, "completed_days": 2, "average_effectiveness": 7.0},
    ]


def test_habit_analytics_without_habits():
    out = streaks.habit_analytics([], [], date(2024, 3, 1), date(2024, 3, 7), timezone.utc)
    assert out["total_habits"] == 0
    assert out["average_streak_length"] == 0
    assert out["most_successful_method"] is None
    assert out["optimal_session_minutes"] is None
    assert out["weekly_progress"][0]["completion_rate"] == 0


def test_most_successful_method_tie_goes_to_first_created():
    habits = [_habit(1, "MINDFUL_25", date(2024, 3, 2)), _habit(2, "RULE_52_17", date(2024, 3, 3))]
    out = streaks.habit_analytics(habits, [], date(2024, 3, 1), date(2024, 3, 7), timezone.utc)
    assert out["most_successful_method"] == "MINDFUL_25"


def test_habit_analytics_through_report_service(habit_service, report_service, clock):
    first = habit_service.create(1, "Recall drills", "ACTIVE_RECALL_30", 21, subject_id=3)
    habit_service.create(1, "Reading", "POMODORO_CLASSIC", 21, subject_id=4)
    habit_service.create(2, "Someone else", "POMODORO_CLASSIC", 21)
    habit_service.log_entry(1, first.id, clock.now(), True, effectiveness=9)

    overview = report_service.habit_analytics(1, "week")
    assert overview["total_habits"] == 2
    assert overview["period"]["end"] == "2024-03-04"
    only_three = report_service.habit_analytics(1, "month", subject_id=3)
    assert only_three["total_habits"] == 1
    assert only_three["subject_performance"][0]["average_effectiveness"] == 9.0
    with pytest.raises(ValidationError):
        report_service.habit_analytics(1, "decade")


def test_migrate_legacy_sessions(session_service, habit_service, clock):
    def finished(mode, effectiveness, **kwargs):
        row = session_service.create(1, mode, 25, **kwargs)
        clock.advance(minutes=25)
        session_service.complete(1, row.id, effectiveness=effectiveness)

    finished("POMODORO", 8, subject_id=5)
    finished("POMODORO", 9)
    finished("DEEP_WORK", 6)
    finished("CUSTOM", 7, focus_duration_minutes=40, break_duration_minutes=8)
    finished("POMODORO_CLASSIC", 10)

    result = habit_service.migrate_legacy_sessions(1)
    assert result == {"migrated": 2, "skipped": 2, "errors": []}

    habits = {h.name: h for h in habit_service.list(1)}
    assert set(habits) == {"Migrated POMODORO Sessions", "Migrated CUSTOM Sessions"}
    pomodoro = habits["Migrated POMODORO Sessions"]
    assert (pomodoro.mode, pomodoro.target_days, pomodoro.subject_id) == ("POMODORO_CLASSIC", 21, 5)
    custom = habits["Migrated CUSTOM Sessions"]
    assert (custom.focus_duration_minutes, custom.break_duration_minutes) == (40, 8)

    again = habit_service.migrate_legacy_sessions(1)
    assert again == {"migrated": 0, "skipped": 4, "errors": []}
