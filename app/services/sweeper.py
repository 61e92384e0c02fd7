from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
import threading
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from app.core.config import Settings, settings as default_settings
from app.services.ledger import ReservationLedger

logger = logging.getLogger(__name__)

JOB_ID = "sweep-expired-reservations"


class ReservationSweeper:
    """Periodic release of expired reservations.

    Built and started by the host process; creating one schedules nothing.
    """

    def __init__(
        self,
        ledger: ReservationLedger,
        settings: Settings = default_settings,
        interval_minutes: Optional[float] = None,
        expiry: Optional[timedelta] = None,
        scheduler=None,
    ) -> None:
        self._ledger = ledger
        self._enabled = settings.sweep_enabled
        self._interval_minutes = (
            settings.sweep_interval_minutes if interval_minutes is None else interval_minutes
        )
        self._expiry = (
            timedelta(minutes=settings.reservation_minutes) if expiry is None else expiry
        )
        self._scheduler = scheduler
        self._lock = threading.Lock()
        self._running = False
        self._last_run_at: Optional[datetime] = None
        self._last_released: Optional[int] = None
        self._last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self, run_immediately: bool = True) -> bool:
        with self._lock:
            if self._running:
                logger.warning("Reservation sweeper already running")
                return False
            if self._scheduler is None:
                self._scheduler = BackgroundScheduler(timezone=timezone.utc)
            job_options = {}
            # next_run_time=None would add the job paused.
            if run_immediately:
                job_options["next_run_time"] = datetime.now(timezone.utc)
            self._scheduler.add_job(
                self.run_once,
                "interval",
                minutes=self._interval_minutes,
                id=JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                **job_options,
            )
            if not self._scheduler.running:
                self._scheduler.start()
            self._running = True
        logger.info(
            "Reservation sweeper started (every %s minutes, expiry %s)",
            self._interval_minutes,
            self._expiry,
        )
        return True

    def stop(self) -> bool:
        with self._lock:
            if not self._running:
                logger.warning("Reservation sweeper is not running")
                return False
            self._scheduler.remove_job(JOB_ID)
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            self._running = False
        logger.info("Reservation sweeper stopped")
        return True

    def run_once(self) -> int:
        self._last_run_at = datetime.now(timezone.utc)
        try:
            released = self._ledger.sweep_expired(self._expiry)
        except Exception as exc:
            # The scheduler would only log it; keep it visible in status().
            logger.exception("Reservation sweep failed, retrying on next tick")
            self._last_error = str(exc)
            self._last_released = 0
            return 0
        self._last_error = None
        self._last_released = released
        return released

    def status(self) -> dict:
        next_run_at = None
        if self._running and self._scheduler is not None:
            job = self._scheduler.get_job(JOB_ID)
            next_run_at = getattr(job, "next_run_time", None)
        return {
            "enabled": self._enabled,
            "running": self._running,
            "interval_minutes": self._interval_minutes,
            "expiry_minutes": self._expiry.total_seconds() / 60,
            "last_run_at": self._last_run_at,
            "last_released": self._last_released,
            "last_error": self._last_error,
            "next_run_at": next_run_at,
        }
