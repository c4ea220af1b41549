import os
import time
from threading import Thread

import requests
import schedule
import uvicorn
from fastapi import FastAPI
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from shared.app_logging.logger import setup_logging

# Setup logging
logger = setup_logging("scheduler")

ORCHESTRATOR_URL = os.getenv("ORCHESTRATOR_URL", "http://orchestrator:8000")
CRON_SECRET = os.getenv("CRON_SECRET", "")
SCHEDULE_TIME = os.getenv("SCHEDULE_TIME", "06:00")

REQUEST_TIMEOUT = float(os.getenv('SCHEDULER_HTTP_TIMEOUT', '30'))
STATUS_TIMEOUT = float(os.getenv('SCHEDULER_STATUS_TIMEOUT', '15'))
STATUS_MAX_ATTEMPTS = int(os.getenv('SCHEDULER_STATUS_MAX_ATTEMPTS', '35'))
STATUS_POLL_SECONDS = float(os.getenv('SCHEDULER_STATUS_POLL_SECONDS', '10'))


class JobStillRunning(Exception):
    """The latest job run is still marked as started."""


def auth_headers():
    return {"x-cron-secret": CRON_SECRET}


@retry(stop=stop_after_attempt(3), wait=wait_fixed(5), retry=retry_if_exception_type(requests.exceptions.ConnectionError))
def trigger_orchestrator():
    """Trigger a pipeline run; the orchestrator acknowledges before doing the work."""
    url = f"{ORCHESTRATOR_URL}/api/orchestrator"
    logger.info(f"Triggering orchestrator at {url}")
    response = requests.post(url, headers=auth_headers(), timeout=REQUEST_TIMEOUT)
    response.raise_for_status()
    data = response.json()
    logger.info(f"Orchestrator accepted run {data.get('run_id', '?')}: {data.get('message', 'ok')}")
    return data


@retry(
    stop=stop_after_attempt(STATUS_MAX_ATTEMPTS),
    wait=wait_fixed(STATUS_POLL_SECONDS),
    retry=retry_if_exception_type((JobStillRunning, requests.exceptions.RequestException)),
)
def wait_for_job():
    """Poll the job status until the heartbeat row leaves 'started'."""
    url = f"{ORCHESTRATOR_URL}/api/job-status"
    response = requests.get(url, headers=auth_headers(), timeout=STATUS_TIMEOUT)
    response.raise_for_status()
    job_run = response.json().get("job_run")

    if not job_run or job_run.get("status") == "started":
        raise JobStillRunning("Job has not finished yet")
    return job_run


def daily_job():
    """The job to be run daily."""
    logger.info("Starting daily job...")

    try:
        trigger_orchestrator()
    except Exception:
        logger.exception("Failed to trigger orchestrator")
        return None

    try:
        job_run = wait_for_job()
    except RetryError:
        logger.warning("Job still running after %s status checks; deferring to next schedule", STATUS_MAX_ATTEMPTS)
        return None

    if job_run.get("status") == "success":
        logger.info(
            f"✅ Daily job completed: {job_run.get('inserted_count', 0)} inserted, "
            f"{job_run.get('duplicate_count', 0)} duplicates, "
            f"{job_run.get('images_enriched_count', 0)} images in {job_run.get('duration_ms')}ms"
        )
    else:
        logger.error(f"❌ Daily job failed: {job_run.get('error_message')}")
    return job_run


def run_schedule():
    """Run the scheduler."""
    schedule.every().day.at(SCHEDULE_TIME).do(daily_job)
    logger.info(f"Daily job scheduled at {SCHEDULE_TIME}")

    while True:
        schedule.run_pending()
        time.sleep(1)


# FastAPI app for health checks
app = FastAPI()


@app.get("/health")
def health_check():
    return {"status": "ok", "scheduled_at": SCHEDULE_TIME}


def run_fastapi():
    """Run the FastAPI app."""
    uvicorn.run(app, host="0.0.0.0", port=8005)


if __name__ == "__main__":
    # Run the scheduler in a separate thread
    scheduler_thread = Thread(target=run_schedule, daemon=True)
    scheduler_thread.start()

    # Run the FastAPI app in the main thread
    run_fastapi()
