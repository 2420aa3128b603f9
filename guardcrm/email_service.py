"""
Email Service using Resend
Builds simple branded HTML bodies inline and sends them through the Resend API
"""

import html
import logging
from datetime import datetime
from typing import Optional, Union

import resend

from .config import EMAIL_FROM_ADDRESS, FRONTEND_URL, RESEND_API_KEY

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY

BRAND_COLOR = "#1e3a5f"


class EmailDeliveryError(Exception):
    """Email could not be handed to the provider"""


def render_layout(title: str, paragraphs: list[str], cta: Optional[tuple[str, str]] = None) -> str:
    """Minimal responsive layout. Paragraph text is escaped; cta is (label, url)."""
    body = "".join(
        f'<p style="margin:0 0 16px;font-size:15px;line-height:1.5;color:#334155">{html.escape(p)}</p>'
        for p in paragraphs
    )
    button = ""
    if cta:
        label, url = cta
        button = (
            f'<a href="{html.escape(url, quote=True)}" style="display:inline-block;padding:12px 24px;'
            f'background:{BRAND_COLOR};color:#ffffff;text-decoration:none;border-radius:6px">'
            f"{html.escape(label)}</a>"
        )
    return (
        '<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;padding:24px">'
        f'<h2 style="color:{BRAND_COLOR};margin:0 0 20px">{html.escape(title)}</h2>'
        f"{body}{button}"
        '<p style="margin-top:32px;font-size:12px;color:#94a3b8">Sent by GuardCRM</p>'
        "</div>"
    )


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    html_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        html_content: Rendered HTML body
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    recipients = [to] if isinstance(to, str) else to
    sender = from_address or EMAIL_FROM_ADDRESS

    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise EmailDeliveryError("Email service not configured")

    try:
        logger.info(f"📧 Sending email via Resend to: {recipients}")
        response = resend.Emails.send(
            {"from": sender, "to": recipients, "subject": subject, "html": html_content}
        )
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise EmailDeliveryError(f"Failed to send email: {str(e)}") from e


# ============================================
# Pre-built emails for common events
# ============================================


async def send_lead_assigned_email(
    to: str, manager_name: str, lead_name: str, lead_email: str, reason: str, lead_id: int
) -> dict:
    """Notify a manager that a lead was assigned to them"""
    content = render_layout(
        "New lead assigned",
        [
            f"Hi {manager_name},",
            f"{lead_name} ({lead_email}) has been assigned to you.",
            reason,
        ],
        cta=("Open lead", f"{FRONTEND_URL}/dashboard/leads/{lead_id}"),
    )
    return await send_email(to=to, subject=f"New lead assigned: {lead_name}", html_content=content)


APPLICATION_EMAIL_TEMPLATES = {
    "application-invitation": (
        "Complete your guard application",
        "Thanks for your interest in joining our security team. Please complete your application to continue.",
    ),
    "application-received-confirmation": (
        "We received your application",
        "Your application has been received and will be reviewed by our hiring team shortly.",
    ),
    "interview-scheduled": (
        "Your interview is scheduled",
        "Good news! We would like to meet you. A hiring manager will share the interview details with you.",
    ),
    "application-approved": (
        "Your application has been approved",
        "Congratulations! Your application has been approved. We will be in touch about onboarding.",
    ),
    "application-rejected": (
        "Update on your application",
        "Thank you for applying. After careful review we will not be moving forward at this time.",
    ),
    "welcome-guard": (
        "Welcome to the team",
        "Your guard profile has been created. You can now sign in to view and confirm your shifts.",
    ),
}


async def send_application_stage_email(to: str, applicant_name: str, template: str) -> dict:
    """Stage-driven applicant email; template is a key of APPLICATION_EMAIL_TEMPLATES"""
    if template not in APPLICATION_EMAIL_TEMPLATES:
        raise ValueError(f"Unknown application email template: {template}")
    subject, message = APPLICATION_EMAIL_TEMPLATES[template]
    content = render_layout(subject, [f"Hi {applicant_name},", message])
    return await send_email(to=to, subject=subject, html_content=content)


async def send_notification_email(to: str, title: str, message: str, priority: str) -> dict:
    prefix = "[URGENT] " if priority in ("urgent", "emergency") else ""
    content = render_layout(title, [message], cta=("Open GuardCRM", f"{FRONTEND_URL}/dashboard"))
    return await send_email(to=to, subject=f"{prefix}{title}", html_content=content)


async def send_digest_email(to: str, recipient_name: str, grouped: dict[str, list[str]], period: str) -> dict:
    """grouped maps category -> notification titles"""
    total = sum(len(items) for items in grouped.values())
    paragraphs = [f"Hi {recipient_name}, you have {total} unread notifications this {period}."]
    for category, titles in sorted(grouped.items()):
        paragraphs.append(f"{category.capitalize()} ({len(titles)}): " + "; ".join(titles[:5]))
    content = render_layout(
        f"Your {period} summary", paragraphs, cta=("View notifications", f"{FRONTEND_URL}/notifications")
    )
    return await send_email(to=to, subject=f"Your GuardCRM {period} digest", html_content=content)


async def send_renewal_alert_email(
    to: str,
    contract_title: str,
    client_name: str,
    days_before: int,
    end_date: datetime,
    churn_risk: str,
    retention_strategy: Optional[str],
) -> dict:
    paragraphs = [
        f"The contract \"{contract_title}\" with {client_name} ends on {end_date.date().isoformat()} "
        f"({days_before} days).",
        f"Churn risk: {churn_risk}.",
    ]
    if retention_strategy:
        paragraphs.append(f"Suggested strategy: {retention_strategy}")
    content = render_layout("Contract renewal reminder", paragraphs)
    return await send_email(
        to=to, subject=f"Renewal in {days_before} days: {contract_title}", html_content=content
    )


async def send_certification_expiry_email(
    to: str, guard_name: str, certification_type: str, expires_at: datetime
) -> dict:
    content = render_layout(
        "Certification expiring soon",
        [
            f"The {certification_type} certification for {guard_name} expires on "
            f"{expires_at.date().isoformat()}.",
            "Please renew it before expiry to stay eligible for shifts that require it.",
        ],
    )
    return await send_email(
        to=to, subject=f"{certification_type} certification expiring", html_content=content
    )
