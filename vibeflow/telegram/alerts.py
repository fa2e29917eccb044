from __future__ import annotations

import logging

from telegram.error import TelegramError
from telegram.ext import Application

from vibeflow.ai.errors import FailureClassification


logger = logging.getLogger(__name__)


_HINTS = {
    FailureClassification.RATE_LIMITED: "users are hitting Gemini rate limits or quota",
    FailureClassification.SERVICE_UNAVAILABLE: "Gemini looks overloaded or down",
    FailureClassification.EMPTY_RESULT: "the model keeps returning empty output, check prompts and model name",
    FailureClassification.UNKNOWN: "unexpected errors, check the logs and network",
}


def ai_failure_alert_text(operation: str, classification: FailureClassification, count: int) -> str:
    hint = _HINTS.get(classification, "check the logs")
    return f"Alert: AI {operation} has failed {count} times in a row ({classification.value}): {hint}."


async def maybe_send_ai_failure_alert(
    application: Application,
    alert_chat_id: int,
    operation: str,
    classification: FailureClassification,
    count: int,
    threshold: int,
) -> bool:
    """Notify the admin chat once, when the failure streak reaches the threshold."""
    if threshold <= 0 or not alert_chat_id or count != threshold:
        return False

    try:
        await application.bot.send_message(
            chat_id=alert_chat_id,
            text=ai_failure_alert_text(operation, classification, count),
        )
    except TelegramError:
        logger.exception("failed to send alert chat_id=%s", alert_chat_id)
        return False
    return True
