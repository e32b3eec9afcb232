import os

from app.config import settings
from app.services.email_service import send_email
from app.utils.template import render_template


def _tag(template: str) -> str:
    # "user_emails/payment_success.html" -> "payment_success"
    return os.path.splitext(os.path.basename(template))[0]


def send_user_email(template, subject, user, **ctx) -> bool:
    html = render_template(template, **ctx)
    return send_email(to=user.email, subject=subject, html=html, tags=[_tag(template)])


def send_admin_email(template, subject, **ctx) -> bool:
    if not settings.ADMIN_EMAILS:
        return False
    html = render_template(template, **ctx)
    return send_email(to=settings.ADMIN_EMAILS, subject=subject, html=html, tags=["admin", _tag(template)])
