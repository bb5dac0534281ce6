"""Background job manager for transcription runs and retries.

Uses a single-thread ThreadPoolExecutor so jobs queue up and execute
one at a time, which keeps SQLite to a single writer.
Jobs are stored in-memory; on process restart they are lost,
but each video's status in the DB is always the source of truth.
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from flask import Flask

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    job_id: str
    user_email: str
    action: str  # transcribe|retry
    subject: str  # user email for transcribe, video id for retry
    state: str = "queued"  # queued|running|success|error
    stage: str = ""
    message: str = ""
    payload: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    result: dict | None = None

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "action": self.action,
            "subject": self.subject,
            "state": self.state,
            "stage": self.stage,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "result": self.result,
        }


class JobManager:

    def __init__(self, logs_dir: str):
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="tubechat-job",
        )
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._logs_dir = logs_dir
        (Path(logs_dir) / "jobs").mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(
        self,
        action: str,
        user_email: str,
        subject: str,
        app: Flask,
        payload: dict | None = None,
    ) -> Job:
        job = Job(
            job_id=uuid.uuid4().hex[:12],
            user_email=user_email,
            action=action,
            subject=subject,
            payload=payload or {},
        )
        with self._lock:
            self._jobs[job.job_id] = job
        self._executor.submit(self._execute, job, app)
        logger.info("Job %s submitted: %s %s", job.job_id, action, subject)
        return job

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def active_for(self, subject: str) -> Job | None:
        with self._lock:
            for job in self._jobs.values():
                if job.subject == subject and job.state in ("queued", "running"):
                    return job
        return None

    def log_path(self, job_id: str) -> Path:
        return Path(self._logs_dir) / "jobs" / f"{job_id}.log"

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _update(self, job: Job, **kwargs) -> None:
        with self._lock:
            for key, value in kwargs.items():
                setattr(job, key, value)
            job.updated_at = _utcnow()

    def _log(self, job: Job, msg: str) -> None:
        ts = _utcnow().strftime("%Y-%m-%d %H:%M:%S")
        log_path = self.log_path(job.job_id)
        try:
            with open(log_path, "a", encoding="utf-8") as f:
                f.write(f"{ts} [{job.action}] {msg}\n")
        except OSError:
            logger.warning("Failed to write job log: %s", log_path)

    # ------------------------------------------------------------------
    # Executor entry point
    # ------------------------------------------------------------------

    def _execute(self, job: Job, app: Flask) -> None:
        with app.app_context():
            session = app.config["session_factory"]()
            settings = app.config["settings"]

            self._update(job, state="running", stage="starting")
            self._log(job, f"Starting {job.action} for {job.subject}")

            try:
                if job.action == "transcribe":
                    self._do_transcribe(job, session, settings, app)
                elif job.action == "retry":
                    self._do_retry(job, session, settings, app)
                else:
                    raise ValueError(f"Unknown action: {job.action}")

                self._update(job, state="success", stage="done")
                self._log(job, "Job completed successfully")

            except Exception as e:
                logger.exception("Job %s failed", job.job_id)
                self._update(job, state="error", message=str(e))
                self._log(job, f"ERROR: {e}")
            finally:
                session.close()

    # ------------------------------------------------------------------
    # Action runners: update stage/result but never set state
    # ------------------------------------------------------------------

    def _do_transcribe(self, job, session, settings, app):
        from tubechat.api import transcribe_videos

        items = job.payload.get("items", [])
        self._update(job, stage="transcribing")
        self._log(job, f"Transcribing {len(items)} selected videos...")
        result = transcribe_videos(
            session,
            items,
            job.user_email,
            batch_size=job.payload.get("batch_size"),
            settings=settings,
            transcriber=app.config["transcriber_factory"](settings),
            embedder=app.config["embedder_factory"](settings),
        )
        self._update(job, result=result)
        if result["quota_exceeded"]:
            self._log(
                job,
                f"Quota exceeded: needs {result['hours_needed']} h, "
                f"{result['hours_left']} h left",
            )
        self._log(
            job,
            f"Transcription complete: {result['total_transcribed']}/"
            f"{result['total_attempts']} transcribed, "
            f"{result['total_embedded']} embedded",
        )

    def _do_retry(self, job, session, settings, app):
        from tubechat.api import retry_video

        self._update(job, stage="retrying")
        self._log(job, f"Retrying video {job.subject}...")
        result = retry_video(
            session,
            job.subject,
            job.user_email,
            settings=settings,
            transcriber=app.config["transcriber_factory"](settings),
            embedder=app.config["embedder_factory"](settings),
        )
        self._update(job, result=result)
        if not result["success"]:
            raise RuntimeError(result["error"] or "Retry failed")
        self._log(job, f"Retry succeeded ({result['action']})")
