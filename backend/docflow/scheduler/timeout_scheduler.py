"""Timeout Scheduler - Expires stale pending tasks

Runs outside the engine: it only finds PENDING tasks older than
task_timeout_minutes and calls WorkflowEngine.timeout() for each one, so the
routing, atomicity and audit rules are exactly those of a manual rejection.
"""
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config.settings import settings
from ..domain.errors import DomainError
from ..engine.engine import WorkflowEngine
from ..utils.logger import get_logger, set_correlation_id
from ..utils.idgen import generate_correlation_id
from ..utils.time import minutes_ago

logger = get_logger(__name__)

SWEEP_BATCH_SIZE = 500


class TimeoutScheduler:
    """APScheduler job that sweeps timed-out tasks"""

    def __init__(
        self,
        engine: Optional[WorkflowEngine] = None,
        timeout_minutes: Optional[int] = None,
        interval_seconds: Optional[int] = None
    ):
        self.engine = engine or WorkflowEngine()
        self.timeout_minutes = (
            timeout_minutes if timeout_minutes is not None else settings.task_timeout_minutes
        )
        self.interval_seconds = interval_seconds or settings.scheduler_interval_seconds
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._is_running = False

    def start(self) -> None:
        """Start the scheduler"""
        if self._is_running:
            logger.warning("Timeout scheduler already running")
            return

        self.scheduler = AsyncIOScheduler()
        # Sync job: APScheduler runs it in its thread pool, off the event loop
        self.scheduler.add_job(
            self.sweep,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id="expire_pending_tasks",
            name="Expire timed-out pending tasks",
            replace_existing=True,
            max_instances=1
        )
        self.scheduler.start()
        self._is_running = True
        logger.info(
            "Timeout scheduler started",
            extra={"action": "timeout_sweep", "status": f"every {self.interval_seconds}s"}
        )

    def stop(self) -> None:
        """Stop the scheduler"""
        if self.scheduler:
            self.scheduler.shutdown()
            self._is_running = False
            logger.info("Timeout scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._is_running

    def sweep(self) -> int:
        """Time out every overdue pending task; returns how many were expired"""
        if self.timeout_minutes <= 0:
            return 0

        set_correlation_id(generate_correlation_id())
        cutoff = minutes_ago(self.timeout_minutes)
        try:
            tasks = self.engine.task_repo.list_pending_created_before(cutoff, limit=SWEEP_BATCH_SIZE)
        except Exception as e:
            logger.error(f"Error loading overdue tasks: {e}")
            return 0

        expired = 0
        for task in tasks:
            try:
                self.engine.timeout(
                    task.task_id,
                    reason=f"No decision within {self.timeout_minutes} minutes"
                )
                expired += 1
            except DomainError as e:
                # Task moved on between the query and the timeout
                logger.info(
                    f"Skipped timeout for task {task.task_id}: {e.message}",
                    extra={"task_id": task.task_id, "instance_id": task.instance_id}
                )
            except Exception as e:
                logger.error(
                    f"Failed to time out task {task.task_id}: {e}",
                    extra={"task_id": task.task_id, "instance_id": task.instance_id}
                )

        if expired:
            logger.info(f"Timed out {expired} pending tasks", extra={"action": "timeout_sweep"})
        return expired


# Global scheduler instance
_scheduler: Optional[TimeoutScheduler] = None


def get_scheduler() -> TimeoutScheduler:
    """Get or create scheduler instance"""
    global _scheduler
    if _scheduler is None:
        _scheduler = TimeoutScheduler()
    return _scheduler


def start_scheduler() -> None:
    """Start the global scheduler"""
    get_scheduler().start()


def stop_scheduler() -> None:
    """Stop the global scheduler"""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None
