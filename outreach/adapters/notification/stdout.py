"""Stdout notification adapter.

Implements NotificationPort by printing rendered emails to the terminal
instead of sending them. The default backend for development.
"""

import asyncio
import logging
import uuid
from collections.abc import Mapping
from typing import Any

from jinja2 import TemplateError

from outreach.core.models import DeliveryResult
from outreach.core.ports import NotificationPort

from .templates import EmailRenderer

logger = logging.getLogger(__name__)


class StdoutNotificationAdapter(NotificationPort):
    """Prints emails to stdout with human-readable formatting."""

    def __init__(self, renderer: EmailRenderer, verbose: bool = False):
        """Initialize stdout notification adapter.

        Args:
            renderer: Renders subject and bodies for a template name.
            verbose: If True, print the HTML body as well as the text body.
        """
        self.renderer = renderer
        self.verbose = verbose

    async def send(
        self,
        template_name: str,
        recipient: str,
        variables: Mapping[str, Any],
    ) -> DeliveryResult:
        """Render ``template_name`` and print it."""
        try:
            subject, html_body, text_body = self.renderer.render(template_name, variables)
        except TemplateError as e:
            logger.error(f"Failed to render email template {template_name}: {e}")
            return DeliveryResult(recipient=recipient, success=False, error=str(e))

        message_id = f"<{uuid.uuid4()}@stdout>"
        output = self._format_email(
            template_name, recipient, subject, html_body if self.verbose else text_body
        )
        await asyncio.to_thread(print, output)
        return DeliveryResult(recipient=recipient, success=True, message_id=message_id)

    @staticmethod
    def _format_email(template_name: str, recipient: str, subject: str, body: str) -> str:
        """Format one email as a framed block."""
        lines = [
            "=" * 80,
            f"EMAIL ({template_name})",
            "=" * 80,
            f"To: {recipient}",
            f"Subject: {subject}",
            "-" * 80,
            body,
            "=" * 80,
        ]
        return "\n".join(lines)
