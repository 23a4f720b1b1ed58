"""
Fixed Ukrainian replies of the business agent.

Every deterministic text the owner sees (action outcomes, offline and
fallback replies, help) is retrieved from this module. Tool summaries have
their own vocabulary in bizagent.formatter.
"""

from typing import Dict

AGENT_REPLIES: Dict[str, str] = {
    # Availability
    "offline": "AI-помічник тимчасово недоступний (перевищено ліміт запитів). Спробуйте приблизно через {seconds} с.",
    "not_configured": "AI-помічник не налаштований, тому відповідаю лише на команди.",
    "disabled": "AI-чат вимкнено для цього бізнесу. Команди працюють як завжди.",
    "llm_failed": "Не вдалося отримати відповідь від AI. Спробуйте ще раз трохи згодом.",
    "help": (
        "Приклади команд: «client: Ім'я, 0671234567», «service: Стрижка, 500, 45», "
        "«appointment: Ім'я, 0671234567, Майстер, 2025-05-01T10:00, Послуга», "
        "«cancel: <id>», «reschedule: <id>, 2025-05-01T12:00», «sms: 0671234567, текст», "
        "«note: текст», «вільні слоти Олена завтра»."
    ),
    "tool_unknown": (
        "Не зовсім зрозумів. Можу показати KPI, записи, хто працює, вільні слоти, "
        "клієнтів, нотатки, нагадування чи інбокс. Напишіть, що потрібно."
    ),
    "unknown_action": "Не зрозумів, що саме зробити. Сформулюйте, будь ласка, інакше.",

    # Validation / resolution
    "missing_fields": "Не вистачає даних: {fields}. Уточніть, будь ласка.",
    "invalid_phone": "Невірний номер телефону. Формат: 0XXXXXXXXX або +380XXXXXXXXX.",
    "client_not_found": "Клієнта не знайдено.",
    "master_not_found": "Майстра «{name}» не знайдено.",
    "service_not_found": "Послугу «{name}» не знайдено.",
    "appointment_not_found": "Запис не знайдено.",
    "note_not_found": "Нотатку не знайдено.",
    "reminder_not_found": "Нагадування не знайдено.",
    "segment_not_found": "Сегмент не знайдено.",
    "business_not_found": "Бізнес не знайдено.",
    "phone_taken": "Номер {phone} вже належить іншому клієнту.",
    "invalid_time_range": "Вкажіть час у форматі ГГ:ХХ-ГГ:ХХ, кінець пізніше за початок.",
    "invalid_working_hours": "Не вдалося розібрати графік. Приклад: «пн-пт 09:00-18:00».",
    "invalid_status": "Невідомий статус «{status}». Можливі: Pending, Confirmed, Done, Cancelled.",
    "time_conflict": (
        "На цей час у майстра {master} вже є запис ({start}–{end}). "
        "Запитайте вільні слоти, наприклад: «вільні слоти {master} {date}»."
    ),

    # Appointments
    "appointment_created": "Готово, запис створено.",
    "appointment_rescheduled": "Запис перенесено на {start}.",
    "appointment_cancelled": "Запис скасовано.",
    "appointment_already_cancelled": "Цей запис уже скасовано.",
    "appointment_updated": "Запис оновлено.",

    # Clients
    "client_created": "Клієнта {name} додано.",
    "client_updated": "Дані клієнта {name} оновлено.",
    "client_deactivated": "Клієнта {name} деактивовано.",
    "tag_added": "Тег «{tag}» додано клієнту {name}.",
    "tag_removed": "Тег «{tag}» прибрано у клієнта {name}.",

    # Masters
    "master_created": "Майстра {name} додано.",
    "master_updated": "Дані майстра {name} оновлено.",
    "master_deactivated": "Майстра {name} деактивовано.",
    "master_hours_updated": "Графік майстра {name} оновлено.",
    "override_set": "Виняток у графіку {name} на {date} збережено.",
    "override_cleared": "Виняток у графіку {name} на {date} прибрано.",

    # Services
    "service_created": "Послугу «{name}» створено: {price} грн, {duration} хв.",
    "service_updated": "Послугу «{name}» оновлено.",
    "service_deactivated": "Послугу «{name}» деактивовано.",

    # Notes, reminders, segments
    "note_created": "Нотатку додано.",
    "note_updated": "Нотатку оновлено.",
    "note_deleted": "Нотатку видалено.",
    "reminder_created": "Нагадування створено.",
    "reminder_updated": "Нагадування оновлено.",
    "reminder_deleted": "Нагадування видалено.",
    "segment_created": "Сегмент «{name}» створено, клієнтів: {count}.",
    "segment_updated": "Сегмент «{name}» оновлено, клієнтів: {count}.",
    "segment_deleted": "Сегмент «{name}» видалено.",

    # SMS and business
    "sms_sent": "SMS надіслано на {phone}.",
    "sms_failed": "Не вдалося надіслати SMS. Спробуйте пізніше.",
    "sms_not_configured": "SMS-сервіс не налаштований.",
    "business_updated": "Дані бізнесу оновлено.",
    "business_hours_updated": "Графік роботи бізнесу оновлено.",

    # Phone continuation
    "ask_phone": "Вкажіть, будь ласка, номер телефону клієнта.",
}

FALLBACK_REPLY = "Готово."


def get_reply_text(key: str, **variables) -> str:
    """
    Get a fixed Ukrainian reply by key.
    Never returns an empty string; missing placeholders leave the template as is.
    """
    template = AGENT_REPLIES.get(key)
    if not isinstance(template, str) or not template.strip():
        return FALLBACK_REPLY

    try:
        text = template.format(**variables) if variables else template
    except (KeyError, IndexError, ValueError):
        text = template

    return text if text.strip() else FALLBACK_REPLY
