import logging
import smtplib
from email.message import EmailMessage

import config

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str) -> bool:
    """Send a plain-text email. Without SMTP settings the message is only logged."""
    if not config.SMTP_HOST:
        logger.info("SMTP not configured, email to %s not sent: %s\n%s", to_email, subject, body)
        return False

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = config.SMTP_FROM
    msg["To"] = to_email
    msg.set_content(body)

    try:
        with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT) as server:
            server.starttls()
            if config.SMTP_USER:
                server.login(config.SMTP_USER, config.SMTP_PASSWORD or "")
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Failed to send email to %s: %s", to_email, exc)
        return False

    logger.info("Email sent to %s: %s", to_email, subject)
    return True


def send_magic_link(to_email: str, link: str) -> bool:
    body = (
        "Hi!\n\n"
        "Use the link below to sign in to Freestuff. It expires in "
        f"{config.MAGIC_LINK_MAX_AGE // 60} minutes and works once.\n\n"
        f"{link}\n\n"
        "If you did not ask for this, you can ignore this email.\n"
    )
    return send_email(to_email, "Your Freestuff sign-in link", body)
