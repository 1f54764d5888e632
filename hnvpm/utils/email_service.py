"""Outbound email over SMTP."""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from hnvpm.config import get_settings

logger = logging.getLogger(__name__)


def send_email(subject: str, recipient: str, html: str) -> bool:
    settings = get_settings()
    if not settings.smtp_configured:
        logger.info("SMTP not configured; skipping email '%s' to %s", subject, recipient)
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>"
    msg["To"] = recipient
    msg.attach(MIMEText(html, "html"))

    try:
        with smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT, timeout=20) as server:
            if settings.SMTP_USE_TLS:
                server.starttls()
            if settings.SMTP_USERNAME:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            server.sendmail(settings.SMTP_FROM_EMAIL, [recipient], msg.as_string())
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send email '%s' to %s", subject, recipient)
        return False
    logger.info("Sent email '%s' to %s", subject, recipient)
    return True


def send_verification_email(recipient: str, name: str, token: str) -> bool:
    link = f"{get_settings().FRONTEND_URL}/verify-email/{token}"
    html = (
        f"<p>Hi {name},</p>"
        f"<p>Please confirm your email address to keep full access to your account:</p>"
        f'<p><a href="{link}">{link}</a></p>'
    )
    return send_email("Verify your email address", recipient, html)


def send_expiry_warning_email(recipient: str, name: str, plan_name: str, days_remaining: int) -> bool:
    link = f"{get_settings().FRONTEND_URL}/billing"
    html = (
        f"<p>Hi {name},</p>"
        f"<p>Your {plan_name} subscription ends in {days_remaining} day(s). "
        f'Renew now to avoid losing access: <a href="{link}">{link}</a></p>'
    )
    return send_email("Your subscription is expiring soon", recipient, html)


def send_invitation_email(recipient: str, name: str, inviter: str, organization: str, token: str) -> bool:
    link = f"{get_settings().FRONTEND_URL}/accept-invitation?token={token}"
    html = (
        f"<p>Hi {name},</p>"
        f"<p>{inviter} has invited you to join <strong>{organization}</strong>.</p>"
        f'<p><a href="{link}">{link}</a></p>'
        f"<p>This invitation expires in {get_settings().INVITATION_EXPIRE_DAYS} days.</p>"
    )
    return send_email(f"You're invited to join {organization}", recipient, html)
