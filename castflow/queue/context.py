"""Per-job progress and log reporting."""

from typing import Any

from rq.job import Job

from castflow.core.logging import get_job_logger

MAX_META_LOGS = 200


class JobContext:
    """Progress and log sink for a running job.

    Messages go to the structured log and, when running under RQ, to the
    job's ``meta`` so they can be inspected alongside the job.
    """

    def __init__(self, job: Job | None, stage: str) -> None:
        self.job = job
        self.stage = stage
        self.logger = get_job_logger(self.id, stage)

    @property
    def id(self) -> str | None:
        return self.job.id if self.job is not None else None

    def _save_meta(self) -> None:
        if self.job is not None:
            self.job.save_meta()

    def log(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, **kwargs)
        if self.job is not None:
            logs = self.job.meta.setdefault("logs", [])
            logs.append(message)
            del logs[:-MAX_META_LOGS]
            self._save_meta()

    def update_progress(self, progress: int | float | dict[str, Any]) -> None:
        """Record job progress, either a percentage or a phase marker."""
        self.logger.debug("Progress", progress=progress)
        if self.job is not None:
            self.job.meta["progress"] = progress
            self._save_meta()
