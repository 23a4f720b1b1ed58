"""Fire-and-forget owner notifications."""

from datetime import datetime
from typing import Optional

from bizagent.config import config
from bizagent.logging_config import get_logger

logger = get_logger(__name__)


def build_new_appointment_push(business_name: Optional[str], client_name: str,
                               master_name: Optional[str], start_time: datetime) -> tuple[str, str]:
    """Return (title, body) of the new-appointment push."""
    title = f"Новий запис: {business_name or 'Бізнес'}"
    body = f"Новий запис: {client_name} → {master_name or 'Спеціаліст'}, {start_time.strftime('%d.%m, %H:%M')}"
    return title, body


def notify_new_appointment(business_id: str, appointment_id: str, business_name: Optional[str],
                           client_name: str, master_name: Optional[str], start_time: datetime) -> bool:
    """
    Enqueue the push without waiting for delivery.

    Returns True when the task was enqueued. Failures are logged and never
    propagate to the caller.
    """
    if not config.PUSH_NOTIFICATIONS_ENABLED:
        return False

    title, body = build_new_appointment_push(business_name, client_name, master_name, start_time)
    try:
        from bizagent.celery_tasks import send_new_appointment_push_task

        send_new_appointment_push_task.delay(business_id, appointment_id, title, body)
        logger.info("push_enqueued", business_id=business_id, appointment_id=appointment_id)
        return True
    except Exception as e:
        logger.warning("push_enqueue_failed", business_id=business_id, appointment_id=appointment_id, error=str(e)[:300])
        return False
