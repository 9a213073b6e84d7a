# app/core/notify.py
"""
Outbound OTP delivery through the Brevo transactional email API.
Without BREVO_API_KEY the code is only logged (development mode).
"""
import logging

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """The configured email channel refused or failed to deliver."""


def _render(otp_code: str, name: str, minutes: int) -> tuple[str, str]:
    html_body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h1 style="color: #2563eb;">{settings.email_from_name}</h1>
        <h2>Hello {name},</h2>
        <p>We received a request to reset your password. Use the following 6-digit OTP to complete your password reset:</p>
        <div style="font-size: 32px; font-weight: bold; letter-spacing: 8px;">{otp_code}</div>
        <p>This OTP will expire in <strong>{minutes} minutes</strong>. If you didn't request this password reset, please ignore this email.</p>
        <p style="color: #6b7280; font-size: 14px;">Never share this OTP with anyone.</p>
    </div>
    """
    text_body = f"""
Password Reset Request

Hello {name},

Your OTP code is: {otp_code}

This code will expire in {minutes} minutes.

If you did not request this, please ignore this email.
    """
    return html_body, text_body


async def send_otp_email(to_email: str, otp_code: str, name: str = "User", minutes: int = 10) -> None:
    """Send the OTP to ``to_email``; log it instead when email is not configured."""
    if not settings.brevo_api_key:
        logger.warning("[notify] DEV MODE - OTP for %s: %s", to_email, otp_code)
        return

    html_body, text_body = _render(otp_code, name, minutes)
    headers = {
        "api-key": settings.brevo_api_key,
        "Content-Type": "application/json",
    }
    payload = {
        "sender": {"name": settings.email_from_name, "email": settings.email_from_address},
        "to": [{"email": to_email}],
        "subject": f"Password Reset OTP - {settings.email_from_name}",
        "htmlContent": html_body,
        "textContent": text_body,
    }

    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            resp = await client.post(settings.brevo_api_url, json=payload, headers=headers)
            resp.raise_for_status()
        logger.info("[notify] OTP sent to %s", to_email)
    except httpx.HTTPStatusError as e:
        logger.error("[notify] Brevo rejected OTP mail to %s: %s %s", to_email, e.response.status_code, e.response.text)
        raise NotificationError(f"Brevo API error: {e.response.status_code}") from e
    except httpx.HTTPError as e:
        logger.error("[notify] failed to send OTP mail to %s: %r", to_email, e)
        raise NotificationError(str(e)) from e
