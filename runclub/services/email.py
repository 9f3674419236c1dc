import aiosmtplib
import logging
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional

from runclub.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def render(heading: str, body_html: str) -> str:
    return f"""
    <html>
    <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h1 style="color: #111827;">{heading}</h1>
        {body_html}
        <p style="color: #6B7280; font-size: 12px;">{settings.club_name}</p>
    </body>
    </html>
    """


class EmailService:
    """Transactional e-mail for registrations and refunds."""

    @staticmethod
    def build_message(to_email: str, subject: str, html_content: str, text_content: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((settings.club_name, settings.smtp_from or settings.smtp_user))
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(text_content)
        message.add_alternative(html_content, subtype="html")
        return message

    @staticmethod
    async def send_email(
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """Send one message; returns False instead of raising when delivery fails."""
        if not settings.smtp_user or not settings.smtp_password:
            logger.warning(f"SMTP not configured, not sending '{subject}' to {to_email}")
            return False

        message = EmailService.build_message(to_email, subject, html_content, text_content or subject)

        try:
            await aiosmtplib.send(
                message,
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_user,
                password=settings.smtp_password,
                start_tls=True
            )
        except aiosmtplib.SMTPException as e:
            logger.error(f"Could not send '{subject}' to {to_email}: {e}")
            return False

        logger.info(f"Sent '{subject}' to {to_email}")
        return True

    @staticmethod
    async def send_payment_confirmation(
        to_email: str,
        name: str,
        event_title: str,
        amount: float,
        currency: str
    ) -> bool:
        total = f"${amount:.2f} {currency.upper()}"
        dashboard_url = f"{settings.frontend_url}/miembros/dashboard"
        html_content = render("You're registered!", f"""
        <p>Hi {name},</p>
        <p>Your payment went through and your spot is confirmed:</p>
        <div style="background-color: #F3F4F6; padding: 20px; border-radius: 8px; margin: 20px 0;">
            <p style="margin: 5px 0;"><strong>Event:</strong> {event_title}</p>
            <p style="margin: 5px 0;"><strong>Total:</strong> {total}</p>
        </div>
        <p><a href="{dashboard_url}">View my events</a></p>
        <p>See you at the start line!</p>
        """)
        text_content = (
            f"Hi {name},\n\nYour payment of {total} for {event_title} went through "
            f"and your spot is confirmed.\n\nYour events: {dashboard_url}\n"
        )

        return await EmailService.send_email(
            to_email, f"Registration confirmed: {event_title}", html_content, text_content
        )

    @staticmethod
    async def send_refund_notice(
        to_email: str,
        name: str,
        event_title: str,
        amount: float,
        currency: str
    ) -> bool:
        total = f"${amount:.2f} {currency.upper()}"
        html_content = render("Refund issued", f"""
        <p>Hi {name},</p>
        <p>We refunded {total} for <strong>{event_title}</strong>.</p>
        <p>It usually takes 5 to 10 business days to appear on your original payment method.</p>
        """)
        text_content = (
            f"Hi {name},\n\nWe refunded {total} for {event_title}. It usually takes "
            f"5 to 10 business days to appear on your original payment method.\n"
        )

        return await EmailService.send_email(to_email, f"Refund issued: {event_title}", html_content, text_content)
