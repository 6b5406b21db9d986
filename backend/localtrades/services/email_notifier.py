"""
Email notifications for trades and clients.

Delivery is best effort: every public method returns False instead of
raising when SMTP is not configured or the send fails.
"""

import html
import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from localtrades import config
from localtrades.config import env_int

logger = logging.getLogger(__name__)

BRAND_NAME = "LocalTrades"


class EmailNotifier:
    def __init__(self):
        self.smtp_host = os.getenv("SMTP_HOST", "smtp.gmail.com")
        self.smtp_port = env_int("SMTP_PORT", 587)
        self.smtp_user = os.getenv("SMTP_USER")
        self.smtp_password = os.getenv("SMTP_PASSWORD")
        self.from_email = os.getenv("SMTP_FROM_EMAIL", self.smtp_user)
        self.dashboard_url = f"{config.APP_BASE_URL}/dashboard"

        if not self.smtp_user or not self.smtp_password:
            logger.warning("SMTP credentials not configured - email notifications disabled")
            self.enabled = False
        else:
            self.enabled = True

    def is_enabled(self) -> bool:
        return self.enabled

    def send_enquiry_notification(
        self,
        trade_email: str,
        trade_name: str,
        client_name: str,
        client_email: str,
        client_phone: str,
        job_description: str,
    ) -> bool:
        text_body = (
            f"Hi {trade_name},\n\n"
            f"You have received a new job enquiry through {BRAND_NAME}.\n\n"
            f"Client details\n"
            f"  Name: {client_name}\n"
            f"  Email: {client_email}\n"
            f"  Phone: {client_phone}\n\n"
            f"Job description\n  {job_description}\n\n"
            f"Log in to your dashboard to respond: {self.dashboard_url}\n"
        )
        html_body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #2563eb;">New Job Enquiry</h2>
  <p>Hi {html.escape(trade_name)},</p>
  <p>You have received a new job enquiry through {BRAND_NAME}.</p>
  <div style="background: #f8fafc; padding: 20px; border-radius: 8px; margin: 20px 0;">
    <h3 style="margin-top: 0;">Client Details</h3>
    <p><strong>Name:</strong> {html.escape(client_name)}</p>
    <p><strong>Email:</strong> {html.escape(client_email)}</p>
    <p><strong>Phone:</strong> {html.escape(client_phone)}</p>
    <h3>Job Description</h3>
    <p>{html.escape(job_description)}</p>
  </div>
  <p>Log in to your dashboard to respond to this enquiry.</p>
  <a href="{self.dashboard_url}">View Dashboard</a>
</div>
"""
        return self._send(
            to_email=trade_email,
            subject=f"New Job Enquiry - {BRAND_NAME}",
            text_body=text_body,
            html_body=html_body,
        )

    def send_welcome_email(self, email: str, name: str, role: str) -> bool:
        if role == "TRADE":
            next_steps = (
                "Your profile will appear in search once our team has verified it.\n"
                f"  - You'll receive your first {config.DEFAULT_FREE_QUOTA} enquiries for free\n"
                "  - After that, subscribe to continue receiving enquiries\n"
                "  - Respond to enquiries through your dashboard\n"
                "  - Build your reputation with verified work\n"
            )
        else:
            next_steps = (
                "You can now search for verified local tradespeople in your area.\n"
                "Simply enter your postcode and the type of work you need.\n"
            )
        text_body = (
            f"Hi {name},\n\n"
            f"Thank you for joining {BRAND_NAME}{' as a trade professional' if role == 'TRADE' else ''}.\n\n"
            f"{next_steps}\n"
            f"Go to your dashboard: {self.dashboard_url}\n"
        )
        return self._send(to_email=email, subject=f"Welcome to {BRAND_NAME}", text_body=text_body)

    def _send(self, to_email: str, subject: str, text_body: str, html_body: Optional[str] = None) -> bool:
        if not self.is_enabled():
            logger.info("Email notifications disabled - skipping '%s' to %s", subject, to_email)
            return False

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = self.from_email
            msg["To"] = to_email
            msg.attach(MIMEText(text_body, "plain", "utf-8"))
            if html_body:
                msg.attach(MIMEText(html_body, "html", "utf-8"))

            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

            logger.info("Email '%s' sent to %s", subject, to_email)
            return True
        except Exception:
            logger.exception("Failed to send email '%s' to %s", subject, to_email)
            return False


email_notifier = EmailNotifier()
