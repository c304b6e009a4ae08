"""Contact-form intake."""

import logging
from collections.abc import Callable
from datetime import datetime

from .documents import contact_from_document, contact_to_document, format_timestamp
from .identifiers import new_token
from .models import Contact, ContactMetadata, EntityKind, utcnow
from .notifier import MailingContext, NotificationDispatcher, NotificationJob
from .ports import EntityStorePort
from .validation import ContactForm, RequestContext

logger = logging.getLogger(__name__)

CONTACT = EntityKind.CONTACT


class ContactService:
    """Stores contact submissions and acknowledges them by email."""

    def __init__(
        self,
        store: EntityStorePort,
        dispatcher: NotificationDispatcher,
        mailing: MailingContext,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.mailing = mailing
        self.clock = clock

    async def submit(
        self,
        form: ContactForm,
        context: RequestContext,
        source: str = "contact_form",
        notify: bool = True,
    ) -> Contact:
        """Validate and store a submission with status ``pending``.

        Args:
            form: Contact form; validated here.
            context: Request details stored in metadata.
            source: Metadata source marker.
            notify: Send the auto-reply and admin notification.

        Raises:
            ValidationFailedError: If the form is invalid.
        """
        form = form.validate()
        contact = Contact(
            contact_id=new_token(),
            name=form.name,
            email=form.email,
            phone=form.phone,
            subject=form.subject,
            message=form.message,
            metadata=ContactMetadata(
                timestamp=self.clock(),
                user_agent=context.user_agent,
                ip_address=context.ip_address,
                source=source,
            ),
        )
        stored = await self.store.create(CONTACT, contact_to_document(contact))
        contact = contact_from_document(stored)

        logger.info(
            f"New contact form submission from {contact.email}",
            extra={"contact_id": contact.contact_id, "subject": contact.subject},
        )
        if notify:
            self._notify_submitted(contact)
        return contact

    def _notify_submitted(self, contact: Contact) -> None:
        predicate = {"contact_id": contact.contact_id}
        variables = {
            "name": contact.name,
            "email": contact.email,
            "phone": contact.phone,
            "subject": contact.subject,
            "message": contact.message,
            "contact_id": contact.contact_id,
            "ip_address": contact.metadata.ip_address,
            "timestamp": format_timestamp(contact.metadata.timestamp),
            "site_url": self.mailing.site_url,
        }
        jobs = [
            NotificationJob(
                template="contact_auto_reply",
                recipient=contact.email,
                variables=variables,
                kind=CONTACT,
                predicate=predicate,
                flag="email_sent",
            )
        ]
        jobs.extend(
            self.mailing.admin_jobs(
                "contact_admin_notification", variables, CONTACT, predicate
            )
        )
        self.dispatcher.dispatch(jobs, f"contact {contact.contact_id}")
