"""HTTP mail API notification adapter.

Implements NotificationPort by posting rendered emails to a
transactional mail service's JSON endpoint. The request body carries
``from``, ``to``, ``subject``, ``html`` and ``text``; a 2xx response is
a successful hand-off and its ``id`` field, when present, becomes the
message id.
"""

import logging
from collections.abc import Mapping
from email.utils import formataddr
from typing import Any

import httpx
from jinja2 import TemplateError

from outreach.core.models import DeliveryResult
from outreach.core.ports import NotificationPort

from .templates import EmailRenderer

logger = logging.getLogger(__name__)


class HTTPMailAPINotificationAdapter(NotificationPort):
    """Delivers emails through an HTTP mail API."""

    def __init__(
        self,
        renderer: EmailRenderer,
        api_url: str,
        api_key: str,
        from_address: str,
        from_name: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize HTTP mail API notification adapter.

        Args:
            renderer: Renders subject and bodies for a template name.
            api_url: Endpoint that accepts one message per POST.
            api_key: Bearer token for the API.
            from_address: Sender address.
            from_name: Display name of the sender.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.renderer = renderer
        self.api_url = api_url
        self.api_key = api_key
        self.from_address = from_address
        self.from_name = from_name
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client.

        Returns:
            httpx.AsyncClient configured with API authentication.
        """
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(
        self,
        template_name: str,
        recipient: str,
        variables: Mapping[str, Any],
    ) -> DeliveryResult:
        """Render ``template_name`` and post it to the mail API."""
        try:
            subject, html_body, text_body = self.renderer.render(template_name, variables)
        except TemplateError as e:
            logger.error(
                f"Failed to render email template {template_name}: {e}",
                extra={"template": template_name, "recipient": recipient},
            )
            return DeliveryResult(recipient=recipient, success=False, error=str(e))

        try:
            client = await self._get_client()
            response = await client.post(
                self.api_url,
                json={
                    "from": formataddr((self.from_name, self.from_address)),
                    "to": [recipient],
                    "subject": subject,
                    "html": html_body,
                    "text": text_body,
                },
            )
        except httpx.HTTPError as e:
            logger.error(
                f"Mail API request for {template_name} to {recipient} failed: {e}",
                extra={"template": template_name, "recipient": recipient},
            )
            return DeliveryResult(recipient=recipient, success=False, error=str(e))

        if not response.is_success:
            logger.error(
                f"Mail API rejected {template_name} to {recipient}: {response.status_code}",
                extra={"template": template_name, "response": response.text},
            )
            return DeliveryResult(
                recipient=recipient,
                success=False,
                error=f"HTTP {response.status_code}: {response.text[:200]}",
            )

        message_id = self._message_id(response)
        logger.info(
            f"Sent {template_name} to {recipient}",
            extra={"template": template_name, "message_id": message_id},
        )
        return DeliveryResult(recipient=recipient, success=True, message_id=message_id)

    @staticmethod
    def _message_id(response: httpx.Response) -> str | None:
        try:
            payload = response.json()
        except ValueError:
            return None
        if isinstance(payload, dict) and payload.get("id") is not None:
            return str(payload["id"])
        return None
