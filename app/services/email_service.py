# app/services/email_service.py
import logging
import re
from typing import Iterable, List, Optional, Union

import requests

from app.config import settings

logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"
EMAIL_PATTERN = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_PATTERN.fullmatch(email) is not None


def _recipients(to: Union[str, Iterable[str], None]) -> List[str]:
    candidates = [to] if isinstance(to, str) or to is None else list(to)
    return [e for e in candidates if is_valid_email(e)]


def send_email(
    to: Union[str, Iterable[str], None],
    subject: str,
    html: str,
    tags: Optional[List[str]] = None,
) -> bool:
    """
    Transactional email through Brevo.

    Never raises: order and payment state is already committed when
    mail goes out, so a failed send is logged and reported as False.
    """

    recipients = _recipients(to)
    if not recipients:
        logger.warning(f"No valid recipients for '{subject}': {to}")
        return False

    if not settings.BREVO_API_KEY:
        logger.warning(f"BREVO_API_KEY not configured, skipping email '{subject}'")
        return False

    payload = {
        "sender": {"email": settings.MAIL_FROM, "name": settings.STORE_NAME},
        "to": [{"email": e} for e in recipients],
        "subject": subject,
        "htmlContent": html,
    }
    if tags:
        payload["tags"] = tags

    try:
        response = requests.post(
            BREVO_API_URL,
            json=payload,
            headers={"api-key": settings.BREVO_API_KEY},
            timeout=10,
        )
    except requests.RequestException:
        logger.exception(f"Brevo request failed for '{subject}'")
        return False

    if not response.ok:
        logger.error(f"Brevo rejected '{subject}' ({response.status_code}): {response.text}")
        return False

    logger.info(f"Email '{subject}' sent to {recipients}")
    return True
