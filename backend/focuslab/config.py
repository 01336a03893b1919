"""Application settings and validation."""

import os
from datetime import timezone, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    TIMEZONE: str
    LOCK_TIMEOUT_SECONDS: float
    INSIGHT_TIMEOUT_SECONDS: float
    REPORT_TIMEOUT_SECONDS: float
    MAX_REPORT_DAYS: int
    INSIGHT_JOB_TTL_SECONDS: int
    INSIGHT_JOB_MAX_JOBS: int
    ALLOW_DEV_CORS: bool
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'focuslab.db'}")
        self.TIMEZONE = os.getenv("TIMEZONE", "UTC")
        self.LOCK_TIMEOUT_SECONDS = float(os.getenv("LOCK_TIMEOUT_SECONDS", "5"))
        self.INSIGHT_TIMEOUT_SECONDS = float(os.getenv("INSIGHT_TIMEOUT_SECONDS", "10"))
        self.REPORT_TIMEOUT_SECONDS = float(os.getenv("REPORT_TIMEOUT_SECONDS", "30"))
        self.MAX_REPORT_DAYS = int(os.getenv("MAX_REPORT_DAYS", "366"))
        self.INSIGHT_JOB_TTL_SECONDS = int(os.getenv("INSIGHT_JOB_TTL_SECONDS", "3600"))
        self.INSIGHT_JOB_MAX_JOBS = int(os.getenv("INSIGHT_JOB_MAX_JOBS", "500"))
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    def _validate(self):
        if self.LOCK_TIMEOUT_SECONDS <= 0:
            raise RuntimeError("LOCK_TIMEOUT_SECONDS must be positive")
        if self.INSIGHT_TIMEOUT_SECONDS <= 0:
            raise RuntimeError("INSIGHT_TIMEOUT_SECONDS must be positive")
        if self.REPORT_TIMEOUT_SECONDS <= 0:
            raise RuntimeError("REPORT_TIMEOUT_SECONDS must be positive")
        if self.MAX_REPORT_DAYS < 1:
            raise RuntimeError("MAX_REPORT_DAYS must be at least 1")
        if self.INSIGHT_JOB_MAX_JOBS < 1:
            raise RuntimeError("INSIGHT_JOB_MAX_JOBS must be at least 1")
        # resolve eagerly so a typo fails at start-up rather than on the first report
        self.tz

    @property
    def tz(self) -> tzinfo:
        """Zone used to decide which calendar day a timestamp belongs to."""
        if self.TIMEZONE.upper() == "UTC":
            return timezone.utc
        try:
            return ZoneInfo(self.TIMEZONE)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise RuntimeError(f"unknown TIMEZONE: {self.TIMEZONE}") from exc


settings = Settings()
