"""
Async-safe email sender.

smtplib is blocking; every send runs in asyncio.get_running_loop().run_in_executor
so that the FastAPI event loop is never blocked waiting for SMTP.
"""
import asyncio
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from deseo.core.config import settings

logger = logging.getLogger("deseo.mailer")


def _build_message(to_email: str, subject: str, text_body: str, html_body: str) -> MIMEMultipart:
    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = formataddr((settings.email_from_name, settings.smtp_from_email))
    message["To"] = to_email
    message.attach(MIMEText(text_body, "plain", "utf-8"))
    message.attach(MIMEText(html_body, "html", "utf-8"))
    return message


def _send_sync(message: MIMEMultipart) -> None:
    """Blocking SMTP send – must be run in an executor."""
    if settings.smtp_use_tls:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as server:
            server.starttls()
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(message)
    else:
        with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=15) as server:
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(message)


async def _send_async(message: MIMEMultipart) -> bool:
    """Run blocking SMTP send in a thread pool; report whether it went out."""
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, _send_sync, message)
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send email to %s subject=%r", message["To"], message["Subject"])
        return False
    logger.info("Email sent to %s subject=%r", message["To"], message["Subject"])
    return True


async def send_magic_link_email(to_email: str, magic_link: str) -> bool:
    if not settings.smtp_host:
        if settings.is_local:
            logger.info("SMTP not configured. Magic link for %s: %s", to_email, magic_link)
            return True
        logger.error("SMTP not configured; magic link for %s was not sent", to_email)
        return False

    app_name = settings.email_from_name
    subject = f"Sign in to {app_name}"
    text_body = (
        f"Click here to sign in: {magic_link}\n\n"
        f"This link will expire in {settings.magic_link_expire_minutes} minutes. "
        "If you didn't request this email, you can safely ignore it."
    )
    safe_link = html.escape(magic_link, quote=True)
    html_body = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<h1>Welcome to {html.escape(app_name)}!</h1>"
        "<p>Click the link below to sign in to your account:</p>"
        f'<p><a href="{safe_link}">Sign In</a></p>'
        f"<p>This link will expire in {settings.magic_link_expire_minutes} minutes. "
        "If you didn't request this email, you can safely ignore it.</p>"
        "</div>"
    )
    return await _send_async(_build_message(to_email, subject, text_body, html_body))
