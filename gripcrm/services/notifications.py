"""
Email notifications.

Every public method is best-effort: delivery problems are logged and
swallowed so the calling operation never fails because of email.
"""
import html
import smtplib
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Optional

import structlog

from ..config import Settings, settings as default_settings
from ..models.models import Customer, Ticket, User, ensure_utc


logger = structlog.get_logger(__name__)


def _esc(value) -> str:
    return html.escape(str(value or ""))


def _fmt_date(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d") if value else ""


def _fmt_datetime(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC") if value else ""


def _layout(heading: str, heading_color: str, box_style: str, box_title_color: str, details: str, description: str) -> str:
    return f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: {heading_color};">{heading}</h2>
        <div style="{box_style}">
          <h3 style="margin-top: 0; color: {box_title_color};">Ticket Details</h3>
          {details}
        </div>
        <div style="background-color: #fff; padding: 20px; border: 1px solid #dee2e6; border-radius: 8px;">
          <h4 style="margin-top: 0;">Description</h4>
          <p>{_esc(description)}</p>
        </div>
        <div style="margin-top: 30px; padding-top: 20px; border-top: 1px solid #dee2e6; color: #6c757d; font-size: 14px;">
          <p>This is an automated notification from Grip CRM. Please do not reply to this email.</p>
        </div>
      </div>
    """


def render_assignment_email(ticket: Ticket, customer: Customer, assigned_by: Optional[User] = None) -> str:
    stage = ticket.stage.value if ticket.stage else ""
    priority = ticket.priority.value if ticket.priority else ""
    rows = [
        f"<p><strong>Title:</strong> {_esc(ticket.title)}</p>",
        f"<p><strong>Customer:</strong> {_esc(customer.name)}</p>",
        f"<p><strong>Priority:</strong> {_esc(priority.upper())}</p>",
        f"<p><strong>Stage:</strong> {_esc(stage.replace('_', ' ').upper())}</p>",
    ]
    if ticket.due_date:
        rows.append(f"<p><strong>Due Date:</strong> {_fmt_date(ticket.due_date)}</p>")
    if assigned_by:
        rows.append(f"<p><strong>Assigned by:</strong> {_esc(assigned_by.name)}</p>")
    return _layout(
        "New Ticket Assignment",
        "#333",
        "background-color: #f8f9fa; padding: 20px; border-radius: 8px; margin: 20px 0;",
        "#495057",
        "\n          ".join(rows),
        ticket.description,
    )


def days_overdue(due_date: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    if not due_date:
        return None
    now = now or datetime.now(timezone.utc)
    seconds = (now - ensure_utc(due_date)).total_seconds()
    # Partial days count as a full day
    return int(-(-seconds // 86400))


def render_overdue_email(ticket: Ticket, customer: Customer) -> str:
    overdue = days_overdue(ticket.due_date)
    priority = ticket.priority.value if ticket.priority else ""
    rows = [
        f"<p><strong>Title:</strong> {_esc(ticket.title)}</p>",
        f"<p><strong>Customer:</strong> {_esc(customer.name)}</p>",
        f"<p><strong>Priority:</strong> {_esc(priority.upper())}</p>",
        f"<p><strong>Due Date:</strong> {_fmt_date(ticket.due_date)}</p>",
        f"<p><strong>Days Overdue:</strong> {overdue if overdue is not None else 'N/A'}</p>",
    ]
    return _layout(
        "Overdue Ticket Alert",
        "#dc3545",
        "background-color: #f8d7da; padding: 20px; border-radius: 8px; margin: 20px 0; border: 1px solid #f5c6cb;",
        "#721c24",
        "\n          ".join(rows),
        ticket.description,
    )


def render_completed_email(ticket: Ticket, customer: Customer) -> str:
    rows = [
        f"<p><strong>Title:</strong> {_esc(ticket.title)}</p>",
        f"<p><strong>Customer:</strong> {_esc(customer.name)}</p>",
        f"<p><strong>Completed At:</strong> {_fmt_datetime(ticket.completed_at)}</p>",
    ]
    return _layout(
        "Ticket Completed",
        "#28a745",
        "background-color: #d4edda; padding: 20px; border-radius: 8px; margin: 20px 0; border: 1px solid #c3e6cb;",
        "#155724",
        "\n          ".join(rows),
        ticket.description,
    )


class Notifier:
    """Sends CRM emails over SMTP when SMTP is configured."""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings

    @property
    def enabled(self) -> bool:
        return bool(self.config.enable_email and self.config.smtp_host and self.config.mail_from)

    def send_email(self, to: str, subject: str, html_body: str, text_body: Optional[str] = None) -> bool:
        """Returns True when the message was handed to the SMTP server."""
        if not self.enabled:
            logger.info("email_skipped", to=to, subject=subject, reason="smtp_not_configured")
            return False
        try:
            msg = EmailMessage()
            msg["Subject"] = subject
            msg["From"] = self.config.mail_from
            msg["To"] = to
            msg.set_content(text_body or subject)
            msg.add_alternative(html_body, subtype="html")
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port) as s:
                if self.config.smtp_tls:
                    s.starttls()
                if self.config.smtp_username and self.config.smtp_password:
                    s.login(self.config.smtp_username, self.config.smtp_password)
                s.send_message(msg)
            return True
        except Exception as e:
            logger.warning("email_send_failed", to=to, subject=subject, error=str(e))
            return False

    def send_ticket_assignment(
        self, recipient: User, ticket: Ticket, customer: Customer, assigned_by: Optional[User] = None
    ) -> None:
        try:
            sent = self.send_email(
                recipient.email,
                f"Ticket Assigned: {ticket.title}",
                render_assignment_email(ticket, customer, assigned_by),
            )
            if sent:
                logger.info("assignment_notification_sent", to=recipient.email, ticket_id=str(ticket.id))
        except Exception as e:
            logger.warning("assignment_notification_failed", ticket_id=str(ticket.id), error=str(e))

    def send_ticket_overdue(self, recipient: User, ticket: Ticket, customer: Customer) -> None:
        try:
            sent = self.send_email(
                recipient.email,
                f"Overdue Ticket: {ticket.title}",
                render_overdue_email(ticket, customer),
            )
            if sent:
                logger.info("overdue_notification_sent", to=recipient.email, ticket_id=str(ticket.id))
        except Exception as e:
            logger.warning("overdue_notification_failed", ticket_id=str(ticket.id), error=str(e))

    def send_ticket_completed(self, recipient: User, ticket: Ticket, customer: Customer) -> None:
        try:
            sent = self.send_email(
                recipient.email,
                f"Ticket Completed: {ticket.title}",
                render_completed_email(ticket, customer),
            )
            if sent:
                logger.info("completion_notification_sent", to=recipient.email, ticket_id=str(ticket.id))
        except Exception as e:
            logger.warning("completion_notification_failed", ticket_id=str(ticket.id), error=str(e))

    def send_verification_email(self, user: User) -> None:
        if not user.verification_token:
            return
        link = f"{self.config.public_base_url}/verify/{user.verification_token}"
        self.send_email(
            user.email,
            f"Verify your {self.config.app_name} account",
            f"<p>Hi {_esc(user.name)},</p><p>Confirm your email address: <a href=\"{_esc(link)}\">{_esc(link)}</a></p>",
            text_body=f"Confirm your email address: {link}",
        )

    def send_password_reset_email(self, user: User) -> None:
        if not user.reset_token:
            return
        link = f"{self.config.public_base_url}/reset-password/{user.reset_token}"
        self.send_email(
            user.email,
            f"Reset your {self.config.app_name} password",
            f"<p>Click to reset your password: <a href=\"{_esc(link)}\">{_esc(link)}</a></p>",
            text_body=f"Click to reset your password: {link}",
        )
