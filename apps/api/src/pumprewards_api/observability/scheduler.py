"""Run history for scheduled points jobs."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from threading import Lock
from typing import Dict

from pumprewards_api.core.timeutils import utcnow


@dataclass
class JobRunState:
    job_id: str
    task: str
    runs: int = 0
    successes: int = 0
    failures: int = 0
    attempt_failures: int = 0
    retries: int = 0
    runtime_seconds: float = 0.0
    last_attempts: int = 0
    last_error: str | None = None
    last_success_at: str | None = None
    last_failure_at: str | None = None

    def as_dict(self) -> Dict[str, object]:
        return asdict(self)


class JobSchedulerObservabilityStore:
    """Per-job counters fed by the scheduler's retry wrapper."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: Dict[str, JobRunState] = {}

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()

    def _state(self, job_id: str, task: str) -> JobRunState:
        state = self._jobs.get(job_id)
        if state is None:
            state = self._jobs[job_id] = JobRunState(job_id=job_id, task=task)
        return state

    def record_dispatch(self, job_id: str, task: str) -> None:
        with self._lock:
            self._state(job_id, task).runs += 1

    def record_attempt_failure(self, job_id: str, task: str, *, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.attempt_failures += 1
            state.last_attempts = attempts
            state.last_error = error

    def record_retry(self, job_id: str, task: str) -> None:
        with self._lock:
            self._state(job_id, task).retries += 1

    def record_success(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.successes += 1
            state.runtime_seconds += runtime_seconds
            state.last_attempts = attempts
            state.last_error = None
            state.last_success_at = utcnow().isoformat()

    def record_run_failure(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.failures += 1
            state.runtime_seconds += runtime_seconds
            state.last_attempts = attempts
            state.last_failure_at = utcnow().isoformat()

    def job(self, job_id: str) -> JobRunState | None:
        with self._lock:
            state = self._jobs.get(job_id)
            return JobRunState(**asdict(state)) if state else None

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            return {job_id: state.as_dict() for job_id, state in self._jobs.items()}


_SCHEDULER_STORE = JobSchedulerObservabilityStore()


def get_scheduler_store() -> JobSchedulerObservabilityStore:
    return _SCHEDULER_STORE


__all__ = ["JobRunState", "JobSchedulerObservabilityStore", "get_scheduler_store"]
