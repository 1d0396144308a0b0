import html
from functools import lru_cache
from typing import Annotated

from fastapi import Depends #type: ignore
from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType #type: ignore
from fastapi_mail.errors import ConnectionErrors #type: ignore
from loguru import logger

from elibrary.config import Settings, get_settings


VERIFICATION_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Email Verification - Libro Library</title>
</head>
<body style="font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="color: #4f46e5;">Verify Your Email Address</h1>
    <p>Hello <strong>{name}</strong>,</p>
    <p>Welcome to Libro Library! Use the code below to verify your email address:</p>
    <div style="text-align: center; margin: 30px 0;">
        <span style="display: inline-block; border: 2px solid #4f46e5; padding: 20px 30px; font-size: 32px; font-weight: bold; letter-spacing: 8px; font-family: 'Courier New', monospace;">{code}</span>
    </div>
    <p><strong>Important:</strong> this code expires in {hours} hours.</p>
    <p>Once verified you can browse the collection, borrow books and track your loans.</p>
    <p style="color: #6b7280; font-size: 14px;">If you didn't create an account with Libro Library, please ignore this email.</p>
</body>
</html>
"""


class EmailService:
    """Outbound email over SMTP through fastapi-mail."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._fm: FastMail | None = None

    @property
    def fm(self) -> FastMail:
        if self._fm is None:
            s = self.settings
            conf = ConnectionConfig(
                MAIL_USERNAME=s.smtp_username,
                MAIL_PASSWORD=s.smtp_password,
                MAIL_FROM=s.from_email,
                MAIL_PORT=s.smtp_port,
                MAIL_SERVER=s.smtp_server,
                MAIL_FROM_NAME=s.from_name,
                MAIL_STARTTLS=s.smtp_port != 465,
                MAIL_SSL_TLS=s.smtp_port == 465,
                USE_CREDENTIALS=True,
                VALIDATE_CERTS=True,
                SUPPRESS_SEND=1 if s.mail_suppress_send else 0,
            )
            self._fm = FastMail(conf)
        return self._fm

    async def send(self, to_address: str, subject: str, html_body: str) -> bool:
        if not self.settings.email_configured:
            logger.error("Email configuration is incomplete, not sending '{}' to {}", subject, to_address)
            return False
        try:
            message = MessageSchema(
                subject=subject,
                recipients=[to_address],
                body=html_body,
                subtype=MessageType.html,
            )
            await self.fm.send_message(message)
        except (ConnectionErrors, ValueError):
            logger.exception("Failed to send email to {}", to_address)
            return False
        logger.info("Email sent successfully to {}", to_address)
        return True

    async def send_verification(self, to_address: str, name: str, code: str) -> bool:
        body = VERIFICATION_TEMPLATE.format(
            name=html.escape(name),
            code=code,
            hours=self.settings.email_verification_expiry_hours,
        )
        return await self.send(to_address, "Verify Your Email - Libro Library", body)


@lru_cache()
def get_email_service() -> EmailService:
    return EmailService(get_settings())


EmailDep = Annotated[EmailService, Depends(get_email_service)]
