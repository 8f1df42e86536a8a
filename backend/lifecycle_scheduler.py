"""Scheduler integration for subscription lifecycle sweeps."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from threading import Event, Lock, Thread
from typing import Dict, List, Optional

from backend.app.services.subscriptions import get_subscription_service
from backend.app.subscriptions import SweepOutcome

logger = logging.getLogger(__name__)


class LifecycleJob(str, Enum):
    SUBSCRIPTION_STATUS = "subscription_status"
    STALE_INVOICES = "stale_invoices"
    PENDING_DOWNGRADES = "pending_downgrades"


JOB_INTERVALS: Dict[LifecycleJob, float] = {
    LifecycleJob.SUBSCRIPTION_STATUS: 60 * 60,
    LifecycleJob.STALE_INVOICES: 6 * 60 * 60,
    LifecycleJob.PENDING_DOWNGRADES: 60 * 60,
}

_scheduler_lock = Lock()
_workers: Dict[str, "_LifecycleWorker"] = {}


def _empty_metrics() -> Dict[str, object]:
    return {
        "runs": 0,
        "transitioned": 0,
        "skipped": 0,
        "failures": 0,
        "last_run_at": None,
        "last_success_at": None,
        "last_error": None,
    }


_JOB_METRICS: Dict[str, Dict[str, object]] = {job.value: _empty_metrics() for job in LifecycleJob}
_metrics_lock = Lock()


def _record_run_start(job: LifecycleJob, started_at: datetime) -> None:
    with _metrics_lock:
        metrics = _JOB_METRICS[job.value]
        metrics["runs"] = int(metrics.get("runs", 0)) + 1
        metrics["last_run_at"] = started_at


def _record_run_success(job: LifecycleJob, completed_at: datetime, outcomes: List[SweepOutcome]) -> None:
    with _metrics_lock:
        metrics = _JOB_METRICS[job.value]
        metrics["transitioned"] = int(metrics.get("transitioned", 0)) + sum(o.transitioned for o in outcomes)
        metrics["skipped"] = int(metrics.get("skipped", 0)) + sum(o.skipped for o in outcomes)
        errors = [error for outcome in outcomes for error in outcome.errors]
        if errors:
            metrics["failures"] = int(metrics.get("failures", 0)) + len(errors)
            metrics["last_error"] = errors[-1]
        else:
            metrics["last_success_at"] = completed_at
            metrics["last_error"] = None


def _record_run_failure(job: LifecycleJob, error: Exception) -> None:
    with _metrics_lock:
        metrics = _JOB_METRICS[job.value]
        metrics["failures"] = int(metrics.get("failures", 0)) + 1
        metrics["last_error"] = f"{type(error).__name__}: {error}"


def _run_sweeps(job: LifecycleJob, now: datetime) -> List[SweepOutcome]:
    jobs = get_subscription_service().lifecycle
    if job is LifecycleJob.SUBSCRIPTION_STATUS:
        return [jobs.process_expired_trials(now), jobs.process_past_due_subscriptions(now)]
    if job is LifecycleJob.STALE_INVOICES:
        return [jobs.expire_stale_invoices(now)]
    return [jobs.apply_pending_downgrades(now)]


def run_lifecycle_job(job: LifecycleJob, *, now: Optional[datetime] = None) -> List[SweepOutcome]:
    current_time = now or datetime.now(timezone.utc)
    if current_time.tzinfo is None:
        current_time = current_time.replace(tzinfo=timezone.utc)

    _record_run_start(job, current_time)
    try:
        outcomes = _run_sweeps(job, current_time)
    except Exception as exc:
        _record_run_failure(job, exc)
        logger.exception("Lifecycle job failed", extra={"job": job.value})
        raise
    _record_run_success(job, current_time, outcomes)
    logger.info(
        "Lifecycle job completed",
        extra={
            "job": job.value,
            "transitioned": sum(outcome.transitioned for outcome in outcomes),
            "skipped": sum(outcome.skipped for outcome in outcomes),
        },
    )
    return outcomes


class _LifecycleWorker(Thread):
    def __init__(self, job: LifecycleJob, *, initial_delay: float, interval: float):
        super().__init__(daemon=True, name=f"lifecycle-{job.value}")
        self.job = job
        self._initial_delay = max(0.0, initial_delay)
        self._interval = max(1.0, interval)
        self._stop_event = Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:  # pragma: no cover - thread execution
        if self._stop_event.wait(self._initial_delay):
            return
        while not self._stop_event.is_set():
            try:
                run_lifecycle_job(self.job)
            except Exception:
                # Logged inside run_lifecycle_job; keep the schedule going.
                pass
            if self._stop_event.wait(self._interval):
                break


def start_lifecycle_scheduler(*, initial_delay: float = 30.0) -> None:
    with _scheduler_lock:
        if _workers:
            return
        for job, interval in JOB_INTERVALS.items():
            _workers[job.value] = _LifecycleWorker(job, initial_delay=initial_delay, interval=interval)
        for worker in _workers.values():
            worker.start()
        logger.info(
            "Lifecycle scheduler started",
            extra={"jobs": sorted(_workers), "initial_delay_seconds": initial_delay},
        )


def shutdown_lifecycle_scheduler() -> None:
    with _scheduler_lock:
        workers = list(_workers.values())
        for worker in workers:
            worker.stop()
        for worker in workers:
            worker.join(timeout=1.0)
        _workers.clear()
        logger.info("Lifecycle scheduler stopped")


def get_lifecycle_metrics() -> Dict[str, Dict[str, object]]:
    with _metrics_lock:
        snapshot: Dict[str, Dict[str, object]] = {}
        for key, value in _JOB_METRICS.items():
            snapshot[key] = {
                **value,
                "last_run_at": value["last_run_at"].isoformat() if value.get("last_run_at") else None,
                "last_success_at": value["last_success_at"].isoformat() if value.get("last_success_at") else None,
            }
        return snapshot


def _reset_metrics_for_testing() -> None:  # pragma: no cover - used in tests only
    with _metrics_lock:
        for key in _JOB_METRICS:
            _JOB_METRICS[key] = _empty_metrics()
