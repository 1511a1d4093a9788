from __future__ import annotations

import atexit
import os

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger


def start_scheduler(app):
    """
    Daily overdue sweep in a background thread.
    - Job runs inside an app context (needs the DB session).
    - Skipped in the debug reloader's watcher process so the job is not registered twice.
    - Scheduler is kept in app.extensions["apscheduler"].
    """
    if app.debug and os.environ.get("WERKZEUG_RUN_MAIN") != "true":
        app.logger.info("[scheduler] Debug reloader secondary process: scheduler skipped.")
        return None

    from schoollib.tasks.overdue_sweep import run_overdue_sweep_job

    hour = app.config.get("OVERDUE_SWEEP_HOUR", 0)
    scheduler = BackgroundScheduler(timezone="UTC")

    def _job_wrapper():
        try:
            run_overdue_sweep_job(app)
        except Exception as ex:
            # the thread must survive; the next run retries
            app.logger.exception(f"[scheduler] overdue_sweep job error: {ex}")

    scheduler.add_job(
        func=_job_wrapper,
        trigger=CronTrigger(hour=hour, minute=0, timezone="UTC"),
        id="overdue_sweep_job",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=3600,
    )

    scheduler.start()
    app.logger.info(f"[scheduler] Overdue sweep scheduled daily at {hour:02d}:00 UTC.")

    app.extensions["apscheduler"] = scheduler
    atexit.register(stop_scheduler, app)
    return scheduler


def stop_scheduler(app):
    scheduler = app.extensions.get("apscheduler")
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        app.logger.info("[scheduler] Scheduler shutdown.")
