"""SMTP notification adapter.

Implements NotificationPort by rendering the named template and handing
the message to an SMTP server with aiosmtplib. One connection is opened
per message; transactional volume is low and bulk sends are paced by the
dashboard service.
"""

import asyncio
import logging
from collections.abc import Mapping
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Any

import aiosmtplib
from jinja2 import TemplateError

from outreach.core.models import DeliveryResult
from outreach.core.ports import NotificationPort

from .templates import EmailRenderer

logger = logging.getLogger(__name__)


class SMTPNotificationAdapter(NotificationPort):
    """Sends rendered emails through an SMTP relay."""

    def __init__(
        self,
        renderer: EmailRenderer,
        host: str,
        port: int = 587,
        from_address: str = "noreply@localhost",
        from_name: str = "",
        username: str = "",
        password: str = "",
        use_tls: bool = False,
        start_tls: bool = True,
        timeout: float = 30.0,
    ):
        """Initialize SMTP notification adapter.

        Args:
            renderer: Renders subject and bodies for a template name.
            host: SMTP server hostname.
            port: SMTP server port.
            from_address: Envelope and header sender address.
            from_name: Display name of the sender.
            username: Login user; no login when empty.
            password: Login password.
            use_tls: Connect with implicit TLS.
            start_tls: Upgrade a plain connection with STARTTLS.
            timeout: Connection and command timeout in seconds.
        """
        self.renderer = renderer
        self.host = host
        self.port = port
        self.from_address = from_address
        self.from_name = from_name
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.start_tls = start_tls and not use_tls
        self.timeout = timeout

    async def send(
        self,
        template_name: str,
        recipient: str,
        variables: Mapping[str, Any],
    ) -> DeliveryResult:
        """Render ``template_name`` and deliver it to ``recipient``."""
        try:
            message = self._build_message(template_name, recipient, variables)
        except TemplateError as e:
            logger.error(
                f"Failed to render email template {template_name}: {e}",
                extra={"template": template_name, "recipient": recipient},
            )
            return DeliveryResult(recipient=recipient, success=False, error=str(e))

        smtp = aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            timeout=self.timeout,
            use_tls=self.use_tls,
            start_tls=self.start_tls,
        )
        try:
            await smtp.connect()
            if self.username and self.password:
                await smtp.login(self.username, self.password)
            errors, response = await smtp.send_message(message)
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as e:
            logger.error(
                f"SMTP delivery of {template_name} to {recipient} failed: {e}",
                extra={"template": template_name, "recipient": recipient},
            )
            return DeliveryResult(recipient=recipient, success=False, error=str(e))
        finally:
            if smtp.is_connected:
                try:
                    await smtp.quit()
                except aiosmtplib.SMTPException:
                    smtp.close()

        if errors:
            detail = "; ".join(f"{address}: {reply}" for address, reply in errors.items())
            logger.error(
                f"SMTP server refused {recipient}: {detail}",
                extra={"template": template_name, "recipient": recipient},
            )
            return DeliveryResult(recipient=recipient, success=False, error=detail)

        logger.info(
            f"Sent {template_name} to {recipient}",
            extra={"template": template_name, "message_id": message["Message-ID"]},
        )
        logger.debug(f"SMTP response: {response}")
        return DeliveryResult(
            recipient=recipient, success=True, message_id=message["Message-ID"]
        )

    def _build_message(
        self, template_name: str, recipient: str, variables: Mapping[str, Any]
    ) -> EmailMessage:
        subject, html_body, text_body = self.renderer.render(template_name, variables)
        domain = self.from_address.rpartition("@")[2] or None

        message = EmailMessage()
        message["From"] = formataddr((self.from_name, self.from_address))
        message["To"] = recipient
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(domain=domain)
        message.set_content(text_body)
        message.add_alternative(html_body, subtype="html")
        return message
