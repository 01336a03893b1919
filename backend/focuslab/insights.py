"""Optional insight generation.

The engine never depends on insights being produced. ``InsightDispatcher``
hands a summary to an injected ``InsightGenerator`` on a background job;
a slow or failing generator is logged and otherwise ignored.
"""

import json
import logging
import queue
import threading
from typing import Optional, Protocol

from .errors import DependencyUnavailable
from .utils.job_store import JobStore

logger = logging.getLogger("focuslab.insights")


class InsightGenerator(Protocol):
    def generate_insights(self, summary: dict) -> dict:
        """Return ``{"tips": [...], "recommendations": [...]}`` for ``summary``."""
        ...


class NullInsightGenerator:
    """Generator used when no external service is configured."""

    def generate_insights(self, summary: dict) -> dict:
        return {"tips": [], "recommendations": []}


def _run_with_timeout(generator: InsightGenerator, summary: dict, timeout_s: float) -> dict:
    """Call the generator in a daemon thread and give up after ``timeout_s``."""
    out: queue.Queue = queue.Queue(maxsize=1)

    def _work():
        try:
            out.put((True, generator.generate_insights(summary)))
        except Exception as exc:
            out.put((False, exc))

    t = threading.Thread(target=_work, daemon=True)
    t.start()
    try:
        ok, value = out.get(timeout=timeout_s)
    except queue.Empty as exc:
        raise DependencyUnavailable(f"insight generator timed out after {timeout_s:.0f}s") from exc
    if not ok:
        raise DependencyUnavailable("insight generator failed") from value
    return value


def _normalise(result: Optional[dict]) -> dict:
    result = result or {}
    return {
        "tips": [str(t) for t in result.get("tips") or []],
        "recommendations": [str(r) for r in result.get("recommendations") or []],
    }


class InsightDispatcher:
    def __init__(self, generator: Optional[InsightGenerator], jobs: JobStore, timeout_seconds: float = 10.0):
        self.generator = generator
        self.jobs = jobs
        self.timeout_seconds = timeout_seconds

    def generate(self, kind: str, summary: dict) -> dict:
        """Run the generator synchronously; raises ``DependencyUnavailable``."""
        try:
            return _normalise(_run_with_timeout(self.generator, summary, self.timeout_seconds))
        except DependencyUnavailable as exc:
            cause = exc.__cause__
            logger.warning(
                "insight_failed %s",
                json.dumps(
                    {
                        "kind": kind,
                        "reason": exc.message,
                        "error": cause.__class__.__name__ if cause else None,
                    },
                    ensure_ascii=True,
                ),
            )
            raise

    def submit(self, kind: str, summary: dict) -> Optional[dict]:
        """Queue insight generation; returns the job handle or ``None``.

        Never raises: insights are not on the correctness path of the
        operation that triggered them.
        """
        if self.generator is None:
            return None
        try:
            return self.jobs.submit(kind=kind, worker=lambda: self.generate(kind, summary))
        except Exception:
            logger.exception("insight_submit_failed %s", json.dumps({"kind": kind}))
            return None

    def get_job(self, job_id: str) -> Optional[dict]:
        return self.jobs.get(job_id)
