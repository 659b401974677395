"""
Email notifications to parents about new group updates.

Sending happens after the response is returned (FastAPI background task)
with its own database session. Failures are logged and never reach the
request that created the update.
"""
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import List

import aiosmtplib
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.config import settings
from ..core.database import AsyncSessionLocal
from ..models.parent import Parent
from ..models.student import Student
from ..models.update import Update
import logging

logger = logging.getLogger(__name__)

FALLBACK_CONTENT = "Check out the latest update from your dance group!"


async def collect_parent_emails(db: AsyncSession, group_id: int) -> List[str]:
    """Distinct parent addresses of the students currently in the group"""
    result = await db.execute(
        select(Parent.email)
        .join(Student, Student.parent_id == Parent.id)
        .filter(Student.group_id == group_id)
        .distinct()
        .order_by(Parent.email)
    )
    return [email for email in result.scalars().all() if email]


def build_update_message(update: Update, recipients: List[str]) -> MIMEMultipart:
    group = update.group
    update_url = f"{settings.frontend_url}/groups/{group.id}"
    content = update.content or FALLBACK_CONTENT
    posted_on = update.created_at.strftime("%d.%m.%Y") if update.created_at else ""
    author_name = update.author.name if update.author else ""

    message = MIMEMultipart("alternative")
    message["From"] = f'"{settings.school_name}" <{settings.smtp_from_email or settings.smtp_username}>'
    message["To"] = ", ".join(recipients)
    message["Subject"] = f"New Update from {group.name} - {settings.school_name}"

    text = (
        f"New Update from {group.name}\n\n"
        f"{content}\n\n"
        f"View the update at: {update_url}\n\n"
        f"Posted by {author_name} on {posted_on}\n"
    )
    media_note = "<p>This update includes media files.</p>" if update.media else ""
    html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
          <h2 style="color: #333;">New Update from {escape(group.name)}</h2>
          <p style="color: #666;">{escape(content)}</p>
          {media_note}
          <a href="{update_url}" style="display: inline-block; padding: 10px 20px; background-color: #007bff; color: white; text-decoration: none; border-radius: 5px; margin-top: 20px;">
            View Update
          </a>
          <p style="color: #999; font-size: 12px; margin-top: 30px;">
            Posted by {escape(author_name)} on {posted_on}
          </p>
        </div>
    """

    message.attach(MIMEText(text, "plain", "utf-8"))
    message.attach(MIMEText(html, "html", "utf-8"))
    return message


async def deliver(message: MIMEMultipart) -> None:
    await aiosmtplib.send(
        message,
        hostname=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        start_tls=settings.smtp_use_tls,
    )


async def notify_update(db: AsyncSession, update_id: int) -> int:
    """Send the update to its group's parents, returns the number of recipients"""
    if not settings.email_enabled:
        logger.warning("Email configuration not set. Skipping update notification.")
        return 0

    result = await db.execute(
        select(Update)
        .filter(Update.id == update_id)
        .options(selectinload(Update.group), selectinload(Update.author))
        .execution_options(populate_existing=True)
    )
    update = result.scalar_one_or_none()
    if update is None or update.group is None:
        logger.warning(f"Update {update_id} vanished before notification")
        return 0

    recipients = await collect_parent_emails(db, update.group_id)
    if not recipients:
        logger.info(f"No parent emails for group {update.group_id}, nothing to send")
        return 0

    await deliver(build_update_message(update, recipients))
    logger.info(f"Update notification sent to {len(recipients)} parents")
    return len(recipients)


async def send_update_notification(update_id: int) -> None:
    """Background task entry point"""
    try:
        async with AsyncSessionLocal() as session:
            await notify_update(session, update_id)
    except Exception as e:
        logger.error(f"Error sending email notifications for update {update_id}: {e}", exc_info=True)
