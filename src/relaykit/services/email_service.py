"""SendGrid email service for workspace invites.

Uses asyncio.to_thread to wrap the synchronous SendGrid client.
"""

import asyncio
import html
import logging

import sendgrid
from sendgrid.helpers.mail import Email, HtmlContent, Mail, To

logger = logging.getLogger(__name__)


def _get_config():
    """Get email config from app settings (lazy to avoid import-time issues)."""
    from relaykit.app.config import get_settings
    s = get_settings()
    return s.sendgrid_api_key, s.invite_from_email


def _get_client() -> sendgrid.SendGridAPIClient:
    """Return a configured SendGrid API client."""
    api_key, _ = _get_config()
    return sendgrid.SendGridAPIClient(api_key=api_key)


def _build_invite_html(workspace_name: str, invite_url: str, expires_days: int) -> str:
    name = html.escape(workspace_name or "a RelayKit workspace")
    url = html.escape(invite_url, quote=True)
    return f"""<!DOCTYPE html>
<html>
<body style="font-family: -apple-system, Helvetica, Arial, sans-serif; color: #1a1a1a;">
    <p>You've been invited to join <strong>{name}</strong> on RelayKit.</p>
    <p><a href="{url}" style="display:inline-block;padding:10px 18px;background:#111;color:#fff;border-radius:6px;text-decoration:none;">Accept invite</a></p>
    <p style="color:#666;font-size:13px;">This link expires in {expires_days} days. If you weren't expecting it, ignore this email.</p>
</body>
</html>
"""


def _send_mail(mail: Mail) -> bool:
    """Synchronous send via SendGrid. Returns True on success."""
    client = _get_client()
    response = client.send(mail)
    if response.status_code in (200, 201, 202):
        return True
    logger.error(
        "SendGrid returned status %s: %s",
        response.status_code,
        response.body,
    )
    return False


# ---------------------------------------------------------------------------
# Public async API
# ---------------------------------------------------------------------------


async def send_invite_email(email: str, workspace_name: str, invite_url: str, expires_days: int) -> bool:
    """Send a workspace invite.

    Returns:
        True on success, False on failure or when SendGrid isn't configured.
    """
    api_key, from_email = _get_config()
    if not api_key or not from_email:
        logger.warning("SendGrid not configured, skipping invite email to %s", email)
        return False

    try:
        mail = Mail(
            from_email=Email(from_email, "RelayKit"),
            to_emails=To(email),
            subject=f"You're invited to {workspace_name} on RelayKit",
            html_content=HtmlContent(_build_invite_html(workspace_name, invite_url, expires_days)),
        )
        result = await asyncio.to_thread(_send_mail, mail)
        if result:
            logger.info("Invite email sent to %s", email)
        return result
    except Exception:
        logger.exception("Failed to send invite email to %s", email)
        return False
