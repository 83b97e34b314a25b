"""
PATS Auto-Close Scheduler Service

Closes active sessions in the background once every game in them has
been graded, using APScheduler.
"""

import atexit
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pats.errors import PATSError
from pats.models import PATSSession
from pats.models.pats_session import STATUS_ACTIVE

logger = logging.getLogger(__name__)


class SchedulerService:
    """Manages the background auto-close job"""

    def __init__(self, app=None, manager=None):
        self.scheduler = None
        self.app = app
        self.manager = manager
        self.is_running = False
        self.stats = self._empty_stats()

        if app:
            self.init_app(app)

    @staticmethod
    def _empty_stats():
        return {
            "last_run": None,
            "total_runs": 0,
            "successful_runs": 0,
            "failed_runs": 0,
            "sessions_closed": 0,
            "last_error": None,
        }

    def init_app(self, app):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        if self.manager is None:
            from pats.services.session_manager import session_manager

            self.manager = session_manager

        # Register shutdown
        atexit.register(self.shutdown)

        # Start scheduler if enabled
        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        """Start the background scheduler"""
        if self.is_running:
            return

        try:
            self.scheduler.remove_all_jobs()
            self._add_core_jobs()
            self.scheduler.start()
            self.is_running = True

            logger.info("Scheduler started successfully")

        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self):
        """Stop the background scheduler"""
        if not self.is_running:
            return

        try:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Scheduler stopped")

        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}")

    def shutdown(self):
        """Graceful shutdown"""
        self.stop()

    def _add_core_jobs(self):
        interval = self.app.config.get("AUTO_CLOSE_INTERVAL_MINUTES", 5)

        self.scheduler.add_job(
            func=self._auto_close_job,
            trigger=IntervalTrigger(minutes=interval),
            id="auto_close_sessions",
            name="Auto-close Decided Sessions",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )

        logger.info(f"Auto-close job added (every {interval} minutes)")

    def _auto_close_job(self):
        with self.app.app_context():
            self.close_decided_sessions()

    def close_decided_sessions(self):
        """
        Close every active session whose games have all been graded

        Returns:
            list: ids of the sessions that were closed
        """
        closed = []
        failed = False

        sessions = PATSSession.query.filter_by(status=STATUS_ACTIVE).all()
        for session in sessions:
            if not session.all_games_decided:
                continue
            session_id = session.id
            try:
                self.manager.close_session(session_id)
                closed.append(session_id)
                logger.info(f"Auto-closed session {session_id}")
            except PATSError as e:
                failed = True
                self.stats["last_error"] = e.message
                logger.error(f"Auto-close of session {session_id} failed: {e.message}")

        self._update_stats(not failed, len(closed))
        return closed

    def _update_stats(self, success, sessions_closed=0):
        self.stats["last_run"] = datetime.now(timezone.utc)
        self.stats["total_runs"] += 1

        if success:
            self.stats["successful_runs"] += 1
            self.stats["sessions_closed"] += sessions_closed
            self.stats["last_error"] = None
        else:
            self.stats["failed_runs"] += 1
            self.stats["sessions_closed"] += sessions_closed

    def get_status(self):
        """Get scheduler status information"""
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                next_run = job.next_run_time
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                        "trigger": str(job.trigger),
                    }
                )

        return {"is_running": self.is_running, "jobs": jobs, "stats": self.stats}


# Global scheduler instance
scheduler_service = SchedulerService()
