"""
Tracking for archive saves running in the background.

Write progress is reported from the writer's worker thread, so every
mutation goes through the registry lock.
"""
from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional


JobStatus = Literal["queued", "running", "completed", "failed"]


@dataclass
class SaveJob:
    id: str
    full_name: str
    category: str
    status: JobStatus = "queued"
    stage: Optional[str] = None
    files_fetched: int = 0
    files_written: int = 0
    last_file: Optional[str] = None
    result: Optional[Dict[str, object]] = None
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def duration_ms(self) -> float:
        return (self.updated_at - self.created_at) * 1000.0


class SaveJobRegistry:
    """In-memory registry of save jobs, newest last."""

    def __init__(self, history_size: int = 100) -> None:
        self._jobs: Dict[str, SaveJob] = {}
        self._lock = threading.Lock()
        self.history_size = history_size

    def create(self, full_name: str, category: str) -> SaveJob:
        job = SaveJob(id=str(uuid.uuid4()), full_name=full_name, category=category)
        with self._lock:
            self._jobs[job.id] = job
            self._prune()
        return job

    def _prune(self) -> None:
        finished = [job.id for job in self._jobs.values() if job.status in ("completed", "failed")]
        while len(self._jobs) > self.history_size and finished:
            self._jobs.pop(finished.pop(0))

    def list(self) -> List[SaveJob]:
        with self._lock:
            return list(self._jobs.values())

    def get(self, job_id: str) -> Optional[SaveJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def _touch(self, job_id: str) -> SaveJob:
        job = self._jobs[job_id]
        job.updated_at = time.time()
        return job

    def start(self, job_id: str) -> None:
        with self._lock:
            self._touch(job_id).status = "running"

    def update_stage(self, job_id: str, stage: str) -> None:
        with self._lock:
            self._touch(job_id).stage = stage

    def file_fetched(self, job_id: str, path: str) -> None:
        with self._lock:
            job = self._touch(job_id)
            job.files_fetched += 1
            job.last_file = path

    def file_written(self, job_id: str, path: str) -> None:
        with self._lock:
            job = self._touch(job_id)
            job.files_written += 1
            job.last_file = path

    def complete(self, job_id: str, result: Dict[str, object]) -> None:
        with self._lock:
            job = self._touch(job_id)
            job.status = "completed"
            job.result = result

    def fail(self, job_id: str, error: str) -> None:
        with self._lock:
            job = self._touch(job_id)
            job.status = "failed"
            job.error = error
