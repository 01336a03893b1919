"""In-memory background job store with TTL and size-based eviction."""

from __future__ import annotations

import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional


class JobStore:
    """Run callables on daemon threads and keep their results for a while.

    Finished jobs are dropped once older than ``ttl_seconds``. When more
    than ``max_jobs`` are held, the oldest finished jobs go first, then the
    oldest pending ones.
    """

    def __init__(self, max_jobs: int = 500, ttl_seconds: int = 3600):
        self._jobs: dict[str, dict] = {}
        self._finished_at: dict[str, float] = {}
        self._lock = threading.Lock()
        self._max_jobs = max_jobs
        self._ttl_seconds = ttl_seconds

    def submit(self, *, kind: str, worker: Callable[[], dict], run: bool = True) -> dict:
        self._cleanup()
        job_id = uuid.uuid4().hex
        job = {
            "job_id": job_id,
            "kind": kind,
            "status": "queued",
            "created_at": datetime.now(timezone.utc).isoformat(),
            "finished_at": None,
            "result": None,
            "error": None,
        }
        with self._lock:
            self._jobs[job_id] = job
            self._evict_overflow()

        if run:
            thread = threading.Thread(
                target=self._run_job,
                kwargs={"job_id": job_id, "worker": worker},
                daemon=True,
            )
            thread.start()
        return {"job_id": job_id, "status": "queued"}

    def get(self, job_id: str) -> Optional[dict]:
        self._cleanup()
        with self._lock:
            job = self._jobs.get(job_id)
            return dict(job) if job else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _run_job(self, *, job_id: str, worker: Callable[[], dict]) -> None:
        with self._lock:
            if job_id not in self._jobs:
                return
            self._jobs[job_id]["status"] = "running"
        try:
            result = worker()
            self._finish(job_id, "succeeded", result=result)
        except Exception as exc:
            self._finish(job_id, "failed", error=str(exc))

    def _finish(self, job_id: str, status: str, result: Optional[dict] = None, error: Optional[str] = None) -> None:
        with self._lock:
            if job_id not in self._jobs:
                return
            self._jobs[job_id]["status"] = status
            self._jobs[job_id]["result"] = result
            self._jobs[job_id]["error"] = error
            self._jobs[job_id]["finished_at"] = datetime.now(timezone.utc).isoformat()
            self._finished_at[job_id] = time.monotonic()

    def _evict_overflow(self) -> None:
        # caller holds self._lock
        overflow = len(self._jobs) - self._max_jobs
        if overflow <= 0:
            return
        finished = sorted(self._finished_at, key=self._finished_at.get)
        pending = [job_id for job_id in self._jobs if job_id not in self._finished_at]
        for job_id in (finished + pending)[:overflow]:
            self._jobs.pop(job_id, None)
            self._finished_at.pop(job_id, None)

    def _cleanup(self) -> None:
        cutoff = time.monotonic() - self._ttl_seconds
        with self._lock:
            expired = [job_id for job_id, ts in self._finished_at.items() if ts < cutoff]
            for job_id in expired:
                self._jobs.pop(job_id, None)
                self._finished_at.pop(job_id, None)
