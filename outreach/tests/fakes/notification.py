"""Fake NotificationPort implementation for testing."""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from outreach.core.models import DeliveryResult
from outreach.core.ports import NotificationPort


@dataclass
class SentEmail:
    """One captured send call."""

    template: str
    recipient: str
    variables: dict[str, Any] = field(default_factory=dict)


class FakeNotificationPort(NotificationPort):
    """In-memory notification adapter for testing.

    Captures all emails sent through this port for test assertions.
    Recipients in ``failing_recipients`` get a failed DeliveryResult;
    with ``should_raise`` every send raises instead.
    """

    def __init__(self) -> None:
        """Initialize with empty send history."""
        self.sent: list[SentEmail] = []
        self.send_call_count = 0
        self.failing_recipients: set[str] = set()
        self.should_raise: bool = False
        self.fail_message: str = "Notification failed"
        self.delay: float = 0.0
        self.closed = False

    async def send(
        self,
        template_name: str,
        recipient: str,
        variables: Mapping[str, Any],
    ) -> DeliveryResult:
        """Capture the email and report the scripted outcome."""
        self.send_call_count += 1
        if self.delay:
            await asyncio.sleep(self.delay)

        if self.should_raise:
            raise RuntimeError(self.fail_message)

        if recipient in self.failing_recipients:
            return DeliveryResult(recipient=recipient, success=False, error=self.fail_message)

        self.sent.append(SentEmail(template_name, recipient, dict(variables)))
        return DeliveryResult(
            recipient=recipient, success=True, message_id=f"<fake-{self.send_call_count}>"
        )

    async def close(self) -> None:
        self.closed = True

    def sent_to(self, recipient: str) -> list[SentEmail]:
        """Every captured email for ``recipient``."""
        return [email for email in self.sent if email.recipient == recipient]

    def templates(self) -> list[str]:
        """Template names of captured emails, in send order."""
        return [email.template for email in self.sent]
