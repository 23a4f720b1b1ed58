"""
Async job processing with Celery.
For background side effects like new-appointment push notifications.
"""

from celery import Celery
from bizagent.config import config

# Redis broker when configured; otherwise the in-memory transport (single process, dev/tests)
celery_app = Celery(
    'bizagent',
    broker=config.REDIS_URL or 'memory://',
    backend=config.REDIS_URL or 'cache+memory://'
)

# Celery configuration
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_track_started=True,
    task_time_limit=60,
    worker_prefetch_multiplier=1,
)


@celery_app.task(name='send_new_appointment_push')
def send_new_appointment_push_task(business_id: str, appointment_id: str, title: str, body: str):
    """
    Deliver a "new appointment" push to the business owner's webhook.

    Returns:
        dict: {"status": "success" | "skipped" | "error", ...}
    """
    import httpx
    from bizagent.logging_config import logger

    if not config.PUSH_WEBHOOK_URL:
        logger.info("push_skipped_no_webhook", business_id=business_id, appointment_id=appointment_id)
        return {"status": "skipped", "appointment_id": appointment_id}

    payload = {
        "business_id": business_id,
        "appointment_id": appointment_id,
        "title": title,
        "body": body,
        "tag": f"new-apt-{appointment_id}",
    }

    try:
        with httpx.Client(timeout=10.0) as client:
            resp = client.post(config.PUSH_WEBHOOK_URL, json=payload)
            resp.raise_for_status()

        logger.info("push_delivered", business_id=business_id, appointment_id=appointment_id)
        return {"status": "success", "appointment_id": appointment_id}

    except httpx.HTTPError as e:
        logger.error("push_delivery_failed", business_id=business_id, appointment_id=appointment_id, error=str(e))
        return {"status": "error", "message": str(e)}
