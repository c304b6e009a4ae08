"""Fire-and-forget notification dispatch.

Emails are sent after the triggering write has been stored and never
affect its outcome. Each job optionally names a delivery flag on the
record (``email_sent``, ``admin_notified``, ...); on success the flag
and its ``<flag>_at`` timestamp are set in a best-effort follow-up
update. Failures at any step are logged and swallowed.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .documents import format_timestamp
from .models import DeliveryResult, EntityKind, utcnow
from .ports import EntityStorePort, NotificationPort, Predicate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationJob:
    """One email to send, plus the record flag to set when it is delivered.

    Attributes:
        template: Email template name.
        recipient: Destination address.
        variables: Values passed to the template.
        kind: Collection of the record to flag (optional).
        predicate: Selects the record to flag.
        flag: Boolean field set to True on delivery.
    """

    template: str
    recipient: str
    variables: Mapping[str, Any] = field(default_factory=dict)
    kind: EntityKind | None = None
    predicate: Predicate | None = None
    flag: str | None = None


@dataclass(frozen=True)
class MailingContext:
    """Site-wide values every notification needs.

    Attributes:
        admin_recipients: Addresses that receive admin notifications.
        site_url: Public base URL used for links in emails.
        event_id: Identifier stored on new registrations.
        event_name: Human-readable event name for email bodies.
        event_date: Human-readable event date for email bodies.
    """

    admin_recipients: tuple[str, ...] = ()
    site_url: str = "http://localhost:3000"
    event_id: str = "tech_grid_ai_finance_2025"
    event_name: str = "Tech Grid: AI in Finance 2025"
    event_date: str = ""

    def unsubscribe_url(self, token: str) -> str:
        return f"{self.site_url.rstrip('/')}/api/newsletter/unsubscribe?token={token}"

    def admin_jobs(
        self,
        template: str,
        variables: Mapping[str, Any],
        kind: EntityKind,
        predicate: Predicate,
    ) -> list[NotificationJob]:
        """One job per admin recipient, all flagging ``admin_notified``."""
        return [
            NotificationJob(
                template=template,
                recipient=recipient,
                variables=variables,
                kind=kind,
                predicate=predicate,
                flag="admin_notified",
            )
            for recipient in self.admin_recipients
        ]


class NotificationDispatcher:
    """Runs notification jobs in detached tasks.

    Tasks are tracked so they are not garbage collected mid-flight and
    so shutdown (or a test) can wait for them with drain().
    """

    def __init__(
        self,
        notification: NotificationPort,
        store: EntityStorePort,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.notification = notification
        self.store = store
        self.clock = clock
        self._tasks: set[asyncio.Task[int]] = set()

    @property
    def pending(self) -> int:
        """Number of batches still running."""
        return len(self._tasks)

    def dispatch(self, jobs: Iterable[NotificationJob], label: str) -> asyncio.Task[int]:
        """Start sending ``jobs`` in the background and return immediately.

        Args:
            jobs: Emails to send concurrently.
            label: Short description used in log lines.

        Returns:
            The task; its result is the number of delivered emails.
        """
        batch = tuple(jobs)
        task = asyncio.create_task(self._run_batch(batch, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def deliver(
        self, template: str, recipient: str, variables: Mapping[str, Any]
    ) -> DeliveryResult:
        """Send one email and wait for the outcome.

        Used where the caller reports delivery back (replies, bulk sends).
        Never raises for transport problems.
        """
        try:
            result = await self.notification.send(template, recipient, variables)
        except Exception as e:
            logger.error(
                f"Notification adapter raised while sending {template}: {e}",
                exc_info=True,
                extra={"template": template, "recipient": recipient},
            )
            return DeliveryResult(recipient=recipient, success=False, error=str(e))

        if not result.success:
            logger.warning(
                f"Failed to send {template} to {recipient}: {result.error}",
                extra={"template": template, "recipient": recipient},
            )
        return result

    async def drain(self) -> None:
        """Wait until every dispatched batch has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run_batch(self, jobs: tuple[NotificationJob, ...], label: str) -> int:
        results = await asyncio.gather(
            *(self._run_job(job) for job in jobs), return_exceptions=True
        )
        delivered = sum(1 for r in results if r is True)
        for r in results:
            if isinstance(r, BaseException):
                logger.error(f"Notification job crashed in {label}: {r}", exc_info=r)

        if delivered < len(jobs):
            logger.warning(
                f"{len(jobs) - delivered} email(s) failed to send for {label}",
                extra={"label": label, "delivered": delivered, "total": len(jobs)},
            )
        else:
            logger.info(
                f"All emails sent successfully for {label}",
                extra={"label": label, "delivered": delivered, "total": len(jobs)},
            )
        return delivered

    async def _run_job(self, job: NotificationJob) -> bool:
        result = await self.deliver(job.template, job.recipient, job.variables)
        if not result.success:
            return False

        if job.flag and job.kind is not None and job.predicate is not None:
            patch = {job.flag: True, f"{job.flag}_at": format_timestamp(self.clock())}
            try:
                updated = await self.store.find_one_and_update(
                    job.kind, job.predicate, patch
                )
            except Exception as e:
                logger.error(
                    f"Failed to record {job.flag} after sending {job.template}: {e}",
                    exc_info=True,
                )
            else:
                if updated is None:
                    logger.warning(
                        f"Record for {job.template} disappeared before {job.flag} "
                        f"could be recorded",
                        extra={"kind": job.kind.value, "flag": job.flag},
                    )
        return True
