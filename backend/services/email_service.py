"""
Email delivery for recommendation requests and reminders.
"""
import smtplib
from datetime import datetime
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from config import settings, logger
from core.dispatch import ReminderNotification


class NotificationError(Exception):
    """Raised when an email could not be delivered."""


def format_deadline(deadline: datetime) -> str:
    return f"{deadline.strftime('%B')} {deadline.day}, {deadline.year}"


def portal_url(secure_token: str) -> str:
    return f"{settings.APP_URL}/recommendation/{secure_token}"


def plural_days(days: int) -> str:
    return f"{days} day{'s' if days != 1 else ''}"


class EmailNotifier:
    def __init__(self, smtp_server: str = None, smtp_port: int = None,
                 sender_email: str = None, sender_password: str = None):
        self.smtp_server = smtp_server or settings.SMTP_SERVER
        self.smtp_port = smtp_port or settings.SMTP_PORT
        self.sender_email = sender_email if sender_email is not None else settings.SENDER_EMAIL
        self.sender_password = sender_password if sender_password is not None else settings.SENDER_PASSWORD

    def is_configured(self) -> bool:
        return bool(self.sender_email and self.sender_password)

    def _send(self, to_email: str, subject: str, text_body: str, html_body: str) -> None:
        if not self.is_configured():
            raise NotificationError("Email service is not properly configured")

        message = MIMEMultipart("alternative")
        message["From"] = self.sender_email
        message["To"] = to_email
        message["Subject"] = subject
        message.attach(MIMEText(text_body, "plain"))
        message.attach(MIMEText(html_body, "html"))

        try:
            with smtplib.SMTP_SSL(self.smtp_server, self.smtp_port) as server:
                server.login(self.sender_email, self.sender_password)
                server.send_message(message)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed: {str(e)}")
            raise NotificationError("Failed to authenticate with email service") from e
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error while sending email to {to_email}: {str(e)}")
            raise NotificationError(f"Failed to send email: {e}") from e

        logger.info(f"Email sent to {to_email}: {subject}")

    def send_reminder(self, notification: ReminderNotification) -> None:
        """Remind a recipient about a pending recommendation letter."""
        remaining = plural_days(notification.days_until_deadline)
        deadline = format_deadline(notification.deadline)
        subject = f"Reminder: Recommendation Letter for {notification.student_name} - Due in {remaining}"

        text_body = f"""
Dear {notification.recipient_name},

{notification.urgency_message}

Request: {notification.request_title}
Student: {notification.student_name}
Deadline: {deadline}
Time remaining: {remaining}
Reminder #{notification.reminder_number}

Submit your recommendation letter here:
{notification.portal_url}

This is an automated reminder. Please do not reply to this email.
        """

        html_body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Recommendation Letter Reminder</h2>
  <p>Dear {notification.recipient_name},</p>
  <p><strong>{notification.urgency_message}</strong></p>
  <div style="background-color: #fff3cd; padding: 15px; border-radius: 5px;">
    <h3 style="margin-top: 0;">{notification.request_title}</h3>
    <p><strong>Student:</strong> {notification.student_name}</p>
    <p><strong>Deadline:</strong> {deadline}</p>
    <p><strong>Time remaining:</strong> {remaining}</p>
  </div>
  <p><a href="{notification.portal_url}">Submit Recommendation Letter</a></p>
  <p style="font-size: 12px; color: #666;">This is an automated reminder. Please do not reply to this email.</p>
</div>
        """

        self._send(notification.recipient_email, subject, text_body, html_body)

    def send_request(self, recipient_email: str, recipient_name: str, student_name: str,
                     request_title: str, deadline: datetime, secure_token: str,
                     draft_content: str = None) -> None:
        """Send the initial recommendation letter request to a recipient."""
        url = portal_url(secure_token)
        deadline_text = format_deadline(deadline)
        subject = f"Recommendation Letter Request - {student_name}"

        draft_text = f"\nDraft provided by {student_name}:\n{draft_content}\n" if draft_content else ""
        text_body = f"""
Dear {recipient_name},

{student_name} has requested a recommendation letter from you.

Request: {request_title}
Deadline: {deadline_text}
{draft_text}
Submit your recommendation letter here:
{url}

This link will expire on {deadline_text}.
        """

        draft_html = ""
        if draft_content:
            draft_html = f"""
  <div style="background-color: #fff3cd; padding: 15px; border-radius: 5px;">
    <h4 style="margin-top: 0;">Draft Content (Optional)</h4>
    <p>{draft_content.replace(chr(10), '<br>')}</p>
  </div>"""

        html_body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Recommendation Letter Request</h2>
  <p>Dear {recipient_name},</p>
  <p>{student_name} has requested a recommendation letter from you.</p>
  <div style="background-color: #f5f5f5; padding: 15px; border-radius: 5px;">
    <h3 style="margin-top: 0;">{request_title}</h3>
    <p><strong>Deadline:</strong> {deadline_text}</p>
  </div>{draft_html}
  <p><a href="{url}">Submit Recommendation Letter</a></p>
  <p>This link will expire on {deadline_text}.</p>
</div>
        """

        self._send(recipient_email, subject, text_body, html_body)


def get_notifier() -> EmailNotifier:
    """FastAPI dependency returning the configured email notifier."""
    return EmailNotifier()
