"""Outbound email for verification codes, reset links and login alerts."""
from html import escape
import logging
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from app.config import get_settings
from app.models.session import DeviceSession

logger = logging.getLogger(__name__)
settings = get_settings()


def send_email(to_email: str, subject: str, html_content: str) -> bool:
    """Send an HTML email over SMTP. Returns False when not sent.

    Delivery is skipped entirely when SMTP_HOST is not configured.
    """
    if not settings.smtp_host:
        logger.info(f"SMTP not configured, skipping email: {subject}")
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.smtp_from_email
    msg["To"] = to_email

    # Plain text fallback
    plain_text = html_content.replace("<br>", "\n").replace("</p>", "\n\n")
    plain_text = re.sub(r"<[^>]+>", "", plain_text)

    msg.attach(MIMEText(plain_text, "plain"))
    msg.attach(MIMEText(html_content, "html"))

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
            server.starttls()
            if settings.smtp_user and settings.smtp_password:
                server.login(settings.smtp_user, settings.smtp_password)
            server.send_message(msg)
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email '{subject}': {e}")
        return False


def send_verification_email(to_email: str, token: str, code: str) -> bool:
    link = f"{settings.public_base_url}/auth/verify-email/{token}"
    html = f"""
    <html>
    <body style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h1>Verify your email</h1>
        <p>Your verification code is:</p>
        <p style="font-size: 28px; letter-spacing: 6px;"><strong>{code}</strong></p>
        <p>Enter it at <a href="{link}">{link}</a>. The code expires in
        {settings.verification_code_expire_minutes} minutes.</p>
    </body>
    </html>
    """
    return send_email(to_email, f"{settings.app_name}: verify your email", html)


def send_password_reset_email(to_email: str, token: str, code: str) -> bool:
    link = f"{settings.public_base_url}/auth/forgot-password/{token}"
    html = f"""
    <html>
    <body style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h1>Reset your password</h1>
        <p>Open <a href="{link}">this link</a> and enter the code below:</p>
        <p style="font-size: 28px; letter-spacing: 6px;"><strong>{code}</strong></p>
        <p>If you did not ask for a reset you can ignore this email.</p>
    </body>
    </html>
    """
    return send_email(to_email, f"{settings.app_name}: password reset", html)


def send_login_alert(to_email: str, session: DeviceSession) -> bool:
    if not settings.login_alerts_enabled:
        return False

    html = f"""
    <html>
    <body style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h1>New sign-in</h1>
        <p>Your account was just used to sign in.</p>
        <p>
            Device: {escape(session.device_name or "Unknown Device")}<br>
            Location: {escape(session.location or "Unknown")}<br>
            IP address: {escape(session.ip_address or "Unknown")}<br>
            Time: {session.created_at} UTC
        </p>
        <p>If this wasn't you, sign out that device from your profile and change your password.</p>
    </body>
    </html>
    """
    return send_email(to_email, f"{settings.app_name}: new sign-in", html)
