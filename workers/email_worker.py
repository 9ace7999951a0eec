"""
Consumes notification jobs and sends the emails.

Run with:  python -m workers.email_worker
"""

import smtplib
import threading
from core.config import settings
from core.logging_config import setup_logging
from core.queue import create_notification_queue
from services.email_service import process_job
from utils.logger import get_logger

logger = get_logger(__name__)


def run_worker(queue, stop_event: threading.Event, poll_timeout: int = 5) -> int:
    """
    Processes jobs until stop_event is set.

    A job whose email fails to send is logged and dropped; the queue keeps
    moving.

    Returns:
        Number of jobs processed successfully
    """
    processed = 0
    logger.info("Email worker started")

    while not stop_event.is_set():
        job = queue.dequeue(timeout=poll_timeout)
        if job is None:
            continue

        try:
            process_job(job)
            processed += 1
            logger.info("Job completed", extra={"job_id": job.get("id"), "job_kind": job.get("kind")})
        except (smtplib.SMTPException, OSError, KeyError) as e:
            logger.error(
                f"Job failed: {str(e)}",
                extra={"job_id": job.get("id"), "job_kind": job.get("kind"), "error_type": type(e).__name__}
            )

    logger.info("Email worker stopped", extra={"processed": processed})
    return processed


def main():
    setup_logging(log_level=settings.LOG_LEVEL, log_dir=settings.LOG_DIR)
    queue = create_notification_queue(
        settings.NOTIFICATION_QUEUE_URL,
        settings.NOTIFICATION_QUEUE_NAME,
        settings.NOTIFICATION_QUEUE_MAX_LENGTH,
        timeout=settings.STORE_TIMEOUT_SECONDS
    )
    stop_event = threading.Event()
    try:
        run_worker(queue, stop_event)
    except KeyboardInterrupt:
        stop_event.set()
    finally:
        queue.close()


if __name__ == "__main__":
    main()
