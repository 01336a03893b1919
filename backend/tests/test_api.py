import time

from fastapi.testclient import TestClient

from focuslab import services
from focuslab.errors import DependencyUnavailable
from focuslab.main import create_app

USER = {"X-User-Id": "1"}
OTHER = {"X-User-Id": "2"}


def test_health_and_request_id(client):
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers["X-Request-ID"] == "abc123"


def test_session_lifecycle_over_http(client, clock):
    created = client.post("/sessions", json={"mode": "POMODORO_CLASSIC", "planned_duration_minutes": 25,
                                             "subject_id": 4}, headers=USER)
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "ACTIVE"
    assert (body["focus_duration_minutes"], body["break_duration_minutes"]) == (25, 5)
    sid = body["id"]

    clock.advance(minutes=10)
    assert client.post(f"/sessions/{sid}/pause", headers=USER).json()["status"] == "PAUSED"
    clock.advance(minutes=5)
    assert client.post(f"/sessions/{sid}/resume", headers=USER).json()["status"] == "ACTIVE"
    clock.advance(minutes=5)
    done = client.post(f"/sessions/{sid}/complete", json={"effectiveness": 9}, headers=USER)
    assert done.status_code == 200
    assert done.json()["actual_duration_minutes"] == 15
    assert done.json()["accumulated_pause_minutes"] == 5
    assert done.json()["insight_job_id"] is None

    again = client.post(f"/sessions/{sid}/complete", headers=USER)
    assert again.status_code == 409
    assert again.json()["detail"]["kind"] == "invalid_transition"

    assert client.get(f"/sessions/{sid}", headers=OTHER).status_code == 404
    listed = client.get("/sessions", params={"status": "COMPLETED"}, headers=USER).json()
    assert [s["id"] for s in listed] == [sid]


def test_validation_errors_are_400(client):
    r = client.post("/sessions", json={"mode": "CUSTOM", "planned_duration_minutes": 30,
                                       "focus_duration_minutes": 25}, headers=USER)
    assert r.status_code == 400
    assert r.json()["detail"]["kind"] == "validation_error"

    missing_user = client.get("/sessions")
    assert missing_user.status_code == 400


def test_habit_flow_over_http(client):
    created = client.post("/habits", json={"name": "Evening recall", "mode": "ACTIVE_RECALL_30",
                                           "target_days": 21, "start_date": "2024-03-04"}, headers=USER)
    assert created.status_code == 201
    habit = created.json()
    assert habit["target_date"] == "2024-03-25"

    for day in ("2024-03-04", "2024-03-05", "2024-03-06"):
        r = client.post(f"/habits/{habit['id']}/entries",
                        json={"date": day, "completed": True, "effectiveness": 8}, headers=USER)
        assert r.status_code == 200
        assert r.json()["date"] == day

    progress = client.get(f"/habits/{habit['id']}/progress", headers=USER).json()
    assert progress["current_streak"] == 3
    assert progress["longest_streak"] == 3
    assert progress["progress_percentage"] == 14
    assert progress["days_remaining"] == 18
    assert progress["next_milestone_day"] == 7
    assert progress["motivation_level"] == "Medium"

    entries = client.get(f"/habits/{habit['id']}/entries", headers=USER).json()
    assert [e["date"] for e in entries] == ["2024-03-06", "2024-03-05", "2024-03-04"]
    assert [h["id"] for h in client.get("/habits", params={"status": "active"}, headers=USER).json()] == [habit["id"]]
    assert client.get(f"/habits/{habit['id']}/progress", headers=OTHER).status_code == 404


def test_reports_over_http(client, clock):
    sid = client.post("/sessions", json={"mode": "DEEP_WORK", "planned_duration_minutes": 90,
                                         "subject_id": 1}, headers=USER).json()["id"]
    clock.advance(minutes=90)
    client.post(f"/sessions/{sid}/complete", json={"effectiveness": 8}, headers=USER)
    client.post("/study-records", json={"start_time": "2024-03-05T18:00:00Z", "duration_minutes": 30,
                                        "subject_id": 2, "productivity": 6}, headers=USER)
    client.post("/assessments", json={"subject_id": 1, "score": 72,
                                      "recorded_at": "2024-03-06T10:00:00Z"}, headers=USER)

    report = client.get("/reports/time", params={"start": "2024-03-04", "end": "2024-03-10",
                                                 "monthly_goal_hours": 20}, headers=USER)
    assert report.status_code == 200
    weekly = report.json()["weekly"]
    assert weekly["total_hours"] == 2.0
    assert weekly["most_studied_subject"]["subject_id"] == 1
    assert report.json()["monthly"]["monthly_goal_progress"] == 10.0

    bad_range = client.get("/reports/time", params={"start": "2024-03-10", "end": "2024-03-04"}, headers=USER)
    assert bad_range.status_code == 400

    curve = client.get("/reports/learning-curve", params={"subject_id": 1}, headers=USER).json()
    assert [p["score"] for p in curve["points"]] == [80.0, 72.0]
    assert curve["trend"] == "declining"

    patterns = client.get("/reports/patterns", headers=USER).json()
    assert set(patterns) == {"optimal_time_slots", "session_duration", "subject_efficiency"}

    legacy = client.get("/reports/legacy-modes", headers=USER).json()
    assert legacy["distribution"] == {"DEEP_WORK": 1}
    assert legacy["suggestions"][0]["recommended_habit_days"] == 66


def test_insight_jobs_are_pollable(engine, clock):
    class Generator:
        def generate_insights(self, summary):
            return {"tips": [f"You focused for {summary['actual_duration_minutes']} minutes"]}

    client = TestClient(create_app(engine=engine, clock=clock, insight_generator=Generator()))
    sid = client.post("/sessions", json={"mode": "POMODORO", "planned_duration_minutes": 25}, headers=USER).json()["id"]
    clock.advance(minutes=25)
    job_id = client.post(f"/sessions/{sid}/complete", headers=USER).json()["insight_job_id"]
    assert job_id

    deadline = time.time() + 5
    status = None
    while time.time() < deadline:
        poll = client.get(f"/insights/{job_id}")
        assert poll.status_code == 200
        status = poll.json()["status"]
        if status in ("succeeded", "failed"):
            break
        time.sleep(0.05)
    assert status == "succeeded"
    assert client.get(f"/insights/{job_id}").json()["result"]["tips"] == ["You focused for 25 minutes"]
    assert client.get("/insights/nope").status_code == 404


def test_storage_outage_is_503(client, monkeypatch):
    def unavailable(self, owner_id, status=None, limit=50):
        raise DependencyUnavailable("persistence store unavailable")

    monkeypatch.setattr(services.SessionService, "list", unavailable)
    r = client.get("/sessions", headers=USER)
    assert r.status_code == 503
    assert r.json() == {"detail": {"kind": "dependency_unavailable", "message": "persistence store unavailable"}}


def test_report_range_limits_over_http(client):
    too_long = client.get("/reports/time", params={"start": "2023-01-01", "end": "2024-03-10"}, headers=USER)
    assert too_long.status_code == 400
    assert too_long.json()["detail"]["kind"] == "validation_error"
    last_day = client.get("/reports/time", params={"start": "9999-12-30", "end": "9999-12-31"}, headers=USER)
    assert last_day.status_code == 400


def test_habit_analytics_and_legacy_migration_over_http(client, clock):
    sid = client.post("/sessions", json={"mode": "DEEP_WORK", "planned_duration_minutes": 90,
                                         "subject_id": 7}, headers=USER).json()["id"]
    clock.advance(minutes=90)
    client.post(f"/sessions/{sid}/complete", json={"effectiveness": 9}, headers=USER)

    migrated = client.post("/habits/migrate-legacy", headers=USER)
    assert migrated.status_code == 200
    assert migrated.json() == {"migrated": 1, "skipped": 0, "errors": []}
    habits = client.get("/habits", headers=USER).json()
    assert [(h["name"], h["mode"], h["target_days"]) for h in habits] == [("Migrated DEEP_WORK Sessions", "DEEP_WORK_90", 21)]

    overview = client.get("/reports/habits", params={"period": "week"}, headers=USER)
    assert overview.status_code == 200
    body = overview.json()
    assert body["total_habits"] == 1
    assert body["most_successful_method"] == "DEEP_WORK_90"
    assert body["optimal_session_minutes"] == 90
    assert body["subject_performance"][0]["subject_id"] == 7

    assert client.get("/reports/habits", params={"period": "decade"}, headers=USER).status_code == 400
    assert client.get("/reports/habits", headers=OTHER).json()["total_habits"] == 0
