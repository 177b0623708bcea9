"""
Queued processing of inbound messages.

Queued mode decouples ingestion from generation: `enqueue` persists the inbound message
with status "queued" plus a job row, and returns immediately with the tracking id. A
worker (`process_pending_messages`) picks up pending jobs in id order, runs the pipeline
orchestrator for each and records the outcome on the job. The orchestrator stores the
outbound reply under the same tracking id, which is what status polling reads back.

The worker is driven by APScheduler's asyncio scheduler with an interval trigger so it
shares FastAPI's event loop; start/stop are wired to the application's startup and
shutdown events. Jobs live in the `message_jobs` SQLite table (stdlib sqlite3).
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import CONFIG
from monitoring.metrics import QUEUE_JOBS_TOTAL
from provider_api.base import MessageStore, OverrideStore
from shared.models import Message, MessageStatus, OverrideKey, RunOverride

logger = logging.getLogger(__name__)

JOB_PENDING = "pending"
JOB_COMPLETE = "complete"
JOB_ERROR = "error"


def now_iso_utc() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_queue(db_path: str) -> None:
    """Create the `message_jobs` table if missing."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(db_path)
    try:
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS message_jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_id INTEGER NOT NULL,
                options_json TEXT,
                status TEXT NOT NULL,
                error TEXT,
                enqueued_at TEXT NOT NULL,
                processed_at TEXT
            )
            """
        )
        con.execute("CREATE INDEX IF NOT EXISTS idx_message_jobs_status ON message_jobs(status)")
        con.commit()
    finally:
        con.close()


class MessageQueue:
    """
    SQLite-backed job queue in front of the pipeline orchestrator.

    Args:
        orchestrator: Runs one message through the pipeline (`process(message, options=...)`).
        messages: Message persistence shared with the orchestrator.
        db_path: SQLite file holding the job table.
        config: Application configuration (the `queue` section).
        overrides: Where a queued message's prompt/model choice is recorded for the worker.
    """

    def __init__(self, orchestrator, messages: MessageStore, db_path: str, config: Optional[Dict[str, Any]] = None,
                 overrides: Optional[OverrideStore] = None):
        self.orchestrator = orchestrator
        self.messages = messages
        self.overrides = overrides
        self.db_path = db_path
        config = config if config is not None else CONFIG
        queue_config = config.get("queue", {})
        self.poll_interval = float(queue_config.get("poll_interval_seconds", 2))
        self.batch_size = int(queue_config.get("batch_size", 10))
        self.scheduler: Optional[AsyncIOScheduler] = None
        init_queue(db_path)

    def enqueue(self, message: Message, options: Optional[Dict[str, Any]] = None,
                run_override: Optional[RunOverride] = None) -> Message:
        """
        Persist `message` as queued and add a pending job for it.

        The worker runs without a caller, so a `run_override` is recorded as the message's
        persisted override before the job becomes visible; the classifier reads it back.
        """
        message.status = MessageStatus.QUEUED
        self.messages.save(message)
        if run_override is not None and not run_override.is_empty:
            if self.overrides is None:
                raise ValueError("Queued overrides need an override store")
            if run_override.prompt_topic:
                self.overrides.set(message.id, OverrideKey.PROMPT_ID.value, run_override.prompt_topic)
            if run_override.model_id:
                self.overrides.set(message.id, OverrideKey.MODEL_ID.value, str(run_override.model_id))
        con = sqlite3.connect(self.db_path)
        try:
            con.execute(
                "INSERT INTO message_jobs (message_id, options_json, status, enqueued_at) VALUES (?, ?, ?, ?)",
                (message.id, json.dumps(options or {}), JOB_PENDING, now_iso_utc()),
            )
            con.commit()
        finally:
            con.close()
        logger.info("Message queued", extra={'message_id': message.id, 'tracking_id': message.tracking_id})
        return message

    def fetch_pending(self, limit: int) -> List[Dict[str, Any]]:
        con = sqlite3.connect(self.db_path)
        try:
            cur = con.execute(
                """
                SELECT id, message_id, options_json FROM message_jobs
                WHERE status = ? ORDER BY id ASC LIMIT ?
                """,
                (JOB_PENDING, int(limit)),
            )
            jobs = []
            for job_id, message_id, options_json in cur.fetchall():
                try:
                    options = json.loads(options_json or "{}")
                except json.JSONDecodeError:
                    options = {}
                jobs.append({"id": job_id, "message_id": message_id, "options": options})
            return jobs
        finally:
            con.close()

    def mark_job(self, job_id: int, status: str, error: Optional[str] = None) -> None:
        con = sqlite3.connect(self.db_path)
        try:
            con.execute(
                "UPDATE message_jobs SET status = ?, error = ?, processed_at = ? WHERE id = ?",
                (status, error, now_iso_utc(), int(job_id)),
            )
            con.commit()
        finally:
            con.close()

    def job_status(self, message_id: int) -> Optional[Dict[str, Any]]:
        """Latest job row for `message_id`, or None when it was never queued."""
        con = sqlite3.connect(self.db_path)
        try:
            cur = con.execute(
                """
                SELECT status, error, enqueued_at, processed_at FROM message_jobs
                WHERE message_id = ? ORDER BY id DESC LIMIT 1
                """,
                (int(message_id),),
            )
            row = cur.fetchone()
        finally:
            con.close()
        if row is None:
            return None
        return {"status": row[0], "error": row[1], "enqueued_at": row[2], "processed_at": row[3]}

    def process_pending_messages(self, limit: Optional[int] = None) -> Dict[str, int]:
        """
        Run the orchestrator for up to `limit` pending jobs.

        Returns:
            Dict[str, int]: Counts of processed, completed and failed jobs.
        """
        summary = {"processed": 0, "complete": 0, "error": 0}
        for job in self.fetch_pending(limit or self.batch_size):
            summary["processed"] += 1
            message = self.messages.get(job["message_id"])
            if message is None:
                self._finish(job["id"], JOB_ERROR, summary, f"Message {job['message_id']} not found")
                continue
            try:
                result = self.orchestrator.process(message, options=job["options"])
            except Exception as e:
                logger.error("Queued job crashed", exc_info=True,
                             extra={'message_id': message.id, 'user_id': message.user_id, 'stage': 'queue',
                                    'error': str(e)})
                self._finish(job["id"], JOB_ERROR, summary, str(e))
                continue
            if result.success:
                self._finish(job["id"], JOB_COMPLETE, summary)
            else:
                self._finish(job["id"], JOB_ERROR, summary, result.error)
        if summary["processed"]:
            logger.info("Queue batch processed", extra=summary)
        return summary

    def _finish(self, job_id: int, status: str, summary: Dict[str, int], error: Optional[str] = None) -> None:
        self.mark_job(job_id, status, error)
        QUEUE_JOBS_TOTAL.labels(outcome=status).inc()
        summary[status] += 1

    def run_worker_job(self) -> None:
        """Scheduler entry point; a failing batch is logged and retried on the next tick."""
        try:
            self.process_pending_messages()
        except Exception as exc:
            logger.warning("Queue worker run failed: %s", exc)

    def start(self) -> None:
        """Start polling for pending jobs on the running event loop."""
        if self.scheduler is not None:
            return
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self.run_worker_job,
            trigger=IntervalTrigger(seconds=self.poll_interval),
            id="message_queue_worker",
            coalesce=True,
            max_instances=1,
        )
        scheduler.start()
        self.scheduler = scheduler
        logger.info("Queue worker started", extra={'poll_interval_seconds': self.poll_interval})

    def shutdown(self) -> None:
        if self.scheduler is None:
            return
        try:
            self.scheduler.shutdown(wait=False)
        finally:
            self.scheduler = None
