"""Dashboard service: implements DashboardPort for admin operations.

This is a core service that orchestrates admin listings, record edits,
statistics and email campaigns by interacting with the entity store, the
record resolver and the subscription service. Every operation takes the
acting user explicitly and is logged with the actor's name for auditing.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from .contacts import ContactService
from .documents import (
    contact_from_document,
    format_timestamp,
    preferences_to_document,
    registration_from_document,
    subscription_from_document,
    template_from_document,
    template_to_document,
)
from .errors import (
    AlreadyRegisteredError,
    AlreadySubscribedError,
    DuplicateKeyError,
    InvalidTransitionError,
    PermissionDeniedError,
    ValidationFailedError,
)
from .identifiers import RecordResolver, new_token
from .models import (
    Actor,
    BulkSendResult,
    Contact,
    ContactStats,
    ContactStatus,
    DashboardOverview,
    EmailTemplate,
    EntityKind,
    Experience,
    NewsletterStats,
    NewsletterSubscription,
    Page,
    Preferences,
    RecentActivity,
    Registration,
    RegistrationStats,
    RegistrationStatus,
    RegistrationView,
    ReplyResult,
    SubscribeOutcome,
    SubscriptionStatus,
    utcnow,
)
from .notifier import MailingContext, NotificationDispatcher
from .ports import DashboardPort, EntityStorePort
from .query import Query
from .subscriptions import SubscriptionService
from .validation import (
    ContactForm,
    RegistrationForm,
    RequestContext,
    SubscribeForm,
    parse_choice,
    parse_flag,
    sanitize,
)

logger = logging.getLogger(__name__)

CONTACT = EntityKind.CONTACT
REGISTRATION = EntityKind.REGISTRATION
NEWSLETTER = EntityKind.NEWSLETTER
EMAIL_TEMPLATE = EntityKind.EMAIL_TEMPLATE

CONTACT_SEARCH_FIELDS = ("name", "email", "subject")
REGISTRATION_SEARCH_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "company",
    "registration_number",
)
SUBSCRIPTION_SEARCH_FIELDS = ("email",)

CONTACT_EDITABLE_FIELDS = frozenset({"name", "email", "phone", "subject", "message"})
REGISTRATION_EDITABLE_FIELDS = frozenset(
    {
        "first_name",
        "last_name",
        "email",
        "phone",
        "company",
        "job_title",
        "experience",
        "interests",
        "expectations",
        "newsletter",
    }
)

RECENT_LIMIT = 5
TEMPLATE_USAGE_ATTEMPTS = 3

E = TypeVar("E", bound=Enum)


def _zero_filled(counts: Mapping[Any, int], enum_type: type[E]) -> dict[str, int]:
    """Counts for every value of ``enum_type``, zero where absent."""
    return {member.value: int(counts.get(member.value, 0)) for member in enum_type}


class DashboardService(DashboardPort):
    """Core implementation of DashboardPort.

    Coordinates admin operations with the entity store, the record
    resolver, the subscription lifecycle and the notification dispatcher.
    All state changes are logged for audit trails.
    """

    def __init__(
        self,
        store: EntityStorePort,
        resolver: RecordResolver,
        subscriptions: SubscriptionService,
        contacts: ContactService,
        dispatcher: NotificationDispatcher,
        mailing: MailingContext,
        bulk_send_pause: float = 0.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the dashboard service.

        Args:
            store: EntityStorePort implementation for persistence.
            resolver: Resolves identifiers to records.
            subscriptions: Owns newsletter state transitions.
            contacts: Used for manual contact entry.
            dispatcher: Sends replies and campaign emails.
            mailing: Site-wide values for email variables.
            bulk_send_pause: Seconds to wait between campaign emails.
            clock: Source of the current time.
        """
        self.store = store
        self.resolver = resolver
        self.subscriptions = subscriptions
        self.contacts = contacts
        self.dispatcher = dispatcher
        self.mailing = mailing
        self.bulk_send_pause = bulk_send_pause
        self.clock = clock

    # ------------------------------------------------------------------
    # Overview
    # ------------------------------------------------------------------

    async def overview(self, actor: Actor) -> DashboardOverview:
        """Aggregate counts for every entity plus the newest records.

        Every status bucket is present, with zero counts on an empty store.
        """
        self._require(actor)
        contacts, registrations, newsletter, recent = await asyncio.gather(
            self._contact_stats(),
            self._registration_stats(),
            self._newsletter_stats(),
            self._recent_activity(),
        )
        return DashboardOverview(
            contacts=contacts,
            registrations=registrations,
            newsletter=newsletter,
            recent=recent,
        )

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def list_contacts(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        status: ContactStatus | None = None,
    ) -> Page[Contact]:
        self._require(actor)
        equals: dict[str, Any] = {}
        if status is not None:
            equals["status"] = parse_choice(ContactStatus, status, "status").value
        query = Query(equals=equals, search=search, search_fields=CONTACT_SEARCH_FIELDS)
        documents, total = await self._page(CONTACT, query, page, limit)
        return Page(
            items=tuple(contact_from_document(d) for d in documents),
            page=page,
            limit=limit,
            total=total,
        )

    async def get_contact(self, actor: Actor, identifier: str) -> Contact:
        self._require(actor)
        return contact_from_document(await self.resolver.get(CONTACT, identifier))

    async def add_contact(self, actor: Actor, form: ContactForm) -> Contact:
        """Enter a contact by hand. No emails are sent."""
        self._require(actor)
        contact = await self.contacts.submit(
            form, RequestContext(), source="admin_dashboard", notify=False
        )
        self._audit(actor, "Contact added", contact_id=contact.contact_id)
        return contact

    async def update_contact(
        self, actor: Actor, identifier: str, changes: Mapping[str, Any]
    ) -> Contact:
        """Edit contact fields; the result is validated like a new submission.

        Raises:
            ValidationFailedError: If a field is not editable or invalid.
            NotFoundError: If the identifier does not resolve.
        """
        self._require(actor)
        self._reject_unknown(changes, CONTACT_EDITABLE_FIELDS)
        current = contact_from_document(await self.resolver.get(CONTACT, identifier))
        merged = {
            name: changes.get(name, getattr(current, name))
            for name in CONTACT_EDITABLE_FIELDS
        }
        form = ContactForm(**merged).validate()
        patch = {name: getattr(form, name) for name in changes}
        updated = await self.resolver.update(CONTACT, current.contact_id, patch)
        assert updated is not None
        self._audit(actor, "Contact updated", contact_id=current.contact_id)
        return contact_from_document(updated)

    async def update_contact_status(
        self, actor: Actor, identifier: str, status: ContactStatus
    ) -> Contact:
        """Move a contact forward.

        Raises:
            InvalidTransitionError: If ``status`` is behind the current one,
                or the contact changed concurrently.
        """
        self._require(actor)
        status = parse_choice(ContactStatus, status, "status")
        current = contact_from_document(await self.resolver.get(CONTACT, identifier))
        previous = current.status
        current.advance_status(status)
        updated = await self.resolver.update(
            CONTACT,
            current.contact_id,
            {"status": current.status.value},
            guard={"status": previous.value},
        )
        if updated is None:
            raise InvalidTransitionError(
                f"Contact {current.contact_id} changed while updating its status"
            )
        self._audit(
            actor,
            f"Contact status {previous.value} -> {status.value}",
            contact_id=current.contact_id,
        )
        return contact_from_document(updated)

    async def reply_to_contact(
        self, actor: Actor, identifier: str, subject: str, message: str
    ) -> ReplyResult:
        """Email a reply; a delivered reply marks the contact responded."""
        self._require(actor)
        subject, message = sanitize(subject or ""), sanitize(message or "")
        self._require_text(subject=subject, message=message)
        contact = contact_from_document(await self.resolver.get(CONTACT, identifier))

        result = await self.dispatcher.deliver(
            "contact_reply",
            contact.email,
            {
                "name": contact.name,
                "subject": subject,
                "message": message,
                "original_subject": contact.subject,
                "replied_by": actor.name,
                "site_url": self.mailing.site_url,
            },
        )
        if not result.success:
            return ReplyResult(contact=contact, delivered=False)

        contact.mark_responded()
        updated = await self.resolver.update(
            CONTACT, contact.contact_id, {"status": contact.status.value}
        )
        assert updated is not None
        self._audit(actor, "Replied to contact", contact_id=contact.contact_id)
        return ReplyResult(contact=contact_from_document(updated), delivered=True)

    async def delete_contact(self, actor: Actor, identifier: str) -> Contact:
        self._require(actor)
        contact = contact_from_document(await self.resolver.delete(CONTACT, identifier))
        self._audit(actor, "Contact deleted", contact_id=contact.contact_id)
        return contact

    # ------------------------------------------------------------------
    # Registrations
    # ------------------------------------------------------------------

    async def list_registrations(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        status: RegistrationStatus | None = None,
        experience: str | None = None,
    ) -> Page[RegistrationView]:
        self._require(actor)
        equals: dict[str, Any] = {}
        if status is not None:
            equals["metadata.status"] = parse_choice(RegistrationStatus, status, "status").value
        if experience is not None:
            equals["experience"] = parse_choice(Experience, experience, "experience").value
        query = Query(
            equals=equals, search=search, search_fields=REGISTRATION_SEARCH_FIELDS
        )
        documents, total = await self._page(REGISTRATION, query, page, limit)
        views = [
            await self._registration_view(registration_from_document(d))
            for d in documents
        ]
        return Page(items=tuple(views), page=page, limit=limit, total=total)

    async def get_registration(self, actor: Actor, identifier: str) -> RegistrationView:
        self._require(actor)
        document = await self.resolver.get(REGISTRATION, identifier)
        return await self._registration_view(registration_from_document(document))

    async def update_registration(
        self, actor: Actor, identifier: str, changes: Mapping[str, Any]
    ) -> Registration:
        """Edit registration fields; the result is validated like a new form.

        Raises:
            ValidationFailedError: If a field is not editable or invalid.
            AlreadyRegisteredError: If the new email belongs to another record.
        """
        self._require(actor)
        self._reject_unknown(changes, REGISTRATION_EDITABLE_FIELDS)
        current = registration_from_document(
            await self.resolver.get(REGISTRATION, identifier)
        )
        merged: dict[str, Any] = {
            "first_name": current.first_name,
            "last_name": current.last_name,
            "email": current.email,
            "phone": current.phone,
            "company": current.company,
            "job_title": current.job_title,
            "experience": current.experience.value,
            "interests": tuple(sorted(current.interests)),
            "expectations": current.expectations,
            "newsletter": current.newsletter,
        }
        merged.update(changes)
        form = RegistrationForm(terms=current.terms, **merged).validate()
        patch: dict[str, Any] = {}
        for name in changes:
            value = getattr(form, name)
            patch[name] = sorted(value) if name == "interests" else value

        try:
            updated = await self.resolver.update(
                REGISTRATION, current.registration_id, patch
            )
        except DuplicateKeyError as e:
            if e.field == "email":
                raise AlreadyRegisteredError(form.email) from e
            raise
        assert updated is not None
        self._audit(
            actor, "Registration updated", registration_id=current.registration_id
        )
        return registration_from_document(updated)

    async def update_registration_status(
        self, actor: Actor, identifier: str, status: RegistrationStatus
    ) -> Registration:
        self._require(actor)
        status = parse_choice(RegistrationStatus, status, "status")
        updated = await self.resolver.update(
            REGISTRATION, identifier, {"metadata.status": status.value}
        )
        assert updated is not None
        registration = registration_from_document(updated)
        self._audit(
            actor,
            f"Registration status -> {status.value}",
            registration_id=registration.registration_id,
        )
        return registration

    async def add_registration_to_newsletter(
        self, actor: Actor, identifier: str
    ) -> SubscribeOutcome:
        """Subscribe a registrant's email and record the opt-in.

        Raises:
            AlreadySubscribedError: If the email is already active.
        """
        self._require(actor)
        registration = registration_from_document(
            await self.resolver.get(REGISTRATION, identifier)
        )
        outcome = await self.subscriptions.subscribe(
            SubscribeForm(email=registration.email),
            RequestContext(source_page="admin_dashboard"),
            source="admin_dashboard",
        )
        await self.resolver.update(
            REGISTRATION, registration.registration_id, {"newsletter": True}
        )
        self._audit(
            actor,
            "Registration added to newsletter",
            registration_id=registration.registration_id,
        )
        return outcome

    async def delete_registration(self, actor: Actor, identifier: str) -> Registration:
        self._require(actor)
        registration = registration_from_document(
            await self.resolver.delete(REGISTRATION, identifier)
        )
        self._audit(
            actor, "Registration deleted", registration_id=registration.registration_id
        )
        return registration

    # ------------------------------------------------------------------
    # Newsletter subscriptions
    # ------------------------------------------------------------------

    async def list_subscriptions(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        status: SubscriptionStatus | None = None,
        active: bool | None = None,
    ) -> Page[NewsletterSubscription]:
        self._require(actor)
        equals: dict[str, Any] = {}
        if status is not None:
            equals["metadata.status"] = parse_choice(SubscriptionStatus, status, "status").value
        if active is not None:
            equals["is_active"] = parse_flag(active, "active")
        query = Query(
            equals=equals, search=search, search_fields=SUBSCRIPTION_SEARCH_FIELDS
        )
        documents, total = await self._page(NEWSLETTER, query, page, limit)
        return Page(
            items=tuple(subscription_from_document(d) for d in documents),
            page=page,
            limit=limit,
            total=total,
        )

    async def get_subscription(
        self, actor: Actor, identifier: str
    ) -> NewsletterSubscription:
        self._require(actor)
        return subscription_from_document(await self.resolver.get(NEWSLETTER, identifier))

    async def update_subscription(
        self,
        actor: Actor,
        identifier: str,
        email: str | None = None,
        is_active: bool | None = None,
        preferences: Preferences | None = None,
    ) -> NewsletterSubscription:
        """Edit a subscription.

        ``is_active`` changes go through the subscription state machine, so
        ``metadata.status`` always follows. Every input is validated before
        anything is written, and the edit is stored as one update: either
        all of it applies or none of it does.

        Raises:
            ValidationFailedError: If the new email is invalid or
                ``is_active`` is not a boolean.
            AlreadySubscribedError: If the new email belongs to another record.
        """
        self._require(actor)
        if is_active is not None:
            is_active = parse_flag(is_active, "is_active")
        patch: dict[str, Any] = {}
        if email is not None:
            patch["email"] = SubscribeForm(email=email).validate().email
        if preferences is not None:
            patch["preferences"] = preferences_to_document(preferences)

        try:
            updated = await self.subscriptions.update(identifier, patch, is_active)
        except DuplicateKeyError as e:
            if e.field == "email":
                raise AlreadySubscribedError(patch["email"]) from e
            raise

        self._audit(
            actor, "Subscription updated", subscription_id=updated.subscription_id
        )
        return updated

    async def mark_subscription_bounced(
        self, actor: Actor, identifier: str
    ) -> NewsletterSubscription:
        self._require(actor)
        subscription = await self.subscriptions.mark_bounced(identifier)
        self._audit(
            actor, "Subscription marked bounced", subscription_id=subscription.subscription_id
        )
        return subscription

    async def delete_subscription(
        self, actor: Actor, identifier: str
    ) -> NewsletterSubscription:
        self._require(actor)
        subscription = subscription_from_document(
            await self.resolver.delete(NEWSLETTER, identifier)
        )
        self._audit(
            actor, "Subscription deleted", subscription_id=subscription.subscription_id
        )
        return subscription

    # ------------------------------------------------------------------
    # Email campaigns
    # ------------------------------------------------------------------

    async def create_template(
        self, actor: Actor, subject: str, body: str
    ) -> EmailTemplate:
        self._require(actor)
        subject, body = sanitize(subject or ""), (body or "").strip()
        self._require_text(subject=subject, body=body)
        template = EmailTemplate(
            template_id=new_token(),
            subject=subject,
            body=body,
            created_by=actor.name,
            created_at=self.clock(),
        )
        stored = await self.store.create(EMAIL_TEMPLATE, template_to_document(template))
        self._audit(actor, "Email template created", template_id=template.template_id)
        return template_from_document(stored)

    async def list_templates(self, actor: Actor) -> list[EmailTemplate]:
        self._require(actor)
        documents = await self.store.find(EMAIL_TEMPLATE)
        return [template_from_document(d) for d in documents]

    async def send_bulk_email(
        self,
        actor: Actor,
        subject: str,
        body: str,
        template_id: str | None = None,
    ) -> BulkSendResult:
        """Send to every active subscriber, one at a time.

        A template fills in whichever of subject/body is empty. Failures
        are counted per recipient; the run is never aborted.
        """
        self._require(actor)
        template: EmailTemplate | None = None
        if template_id:
            template = template_from_document(
                await self.resolver.get(EMAIL_TEMPLATE, template_id)
            )
            subject = subject or template.subject
            body = body or template.body
        self._require_text(subject=(subject or "").strip(), body=(body or "").strip())

        recipients = await self.store.find(
            NEWSLETTER, Query(equals={"is_active": True}), descending=False
        )
        sent = 0
        failed: list[str] = []
        for index, document in enumerate(recipients):
            if index and self.bulk_send_pause > 0:
                await asyncio.sleep(self.bulk_send_pause)
            email = document["email"]
            result = await self.dispatcher.deliver(
                "bulk_email",
                email,
                {
                    "subject": subject,
                    "body": body,
                    "email": email,
                    "unsubscribe_url": self.mailing.unsubscribe_url(
                        document["subscription_id"]
                    ),
                    "site_url": self.mailing.site_url,
                },
            )
            if result.success:
                sent += 1
            else:
                failed.append(email)

        if template is not None:
            await self._record_template_usage(template)

        outcome = BulkSendResult(sent=sent, failed=len(failed), failed_recipients=tuple(failed))
        self._audit(
            actor,
            f"Bulk email sent: {sent} delivered, {len(failed)} failed",
            template_id=template_id,
        )
        return outcome

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, actor: Actor) -> None:
        if actor is None or not actor.authenticated:
            raise PermissionDeniedError("Admin authentication required")

    def _audit(self, actor: Actor, message: str, **context: Any) -> None:
        logger.info(f"{message} via dashboard", extra={"actor": actor.name, **context})

    @staticmethod
    def _reject_unknown(changes: Mapping[str, Any], allowed: frozenset[str]) -> None:
        unknown = sorted(set(changes) - allowed)
        if unknown:
            raise ValidationFailedError({name: ["Field cannot be edited"] for name in unknown})

    @staticmethod
    def _require_text(**values: str) -> None:
        missing = {name: [f"{name.capitalize()} is required"] for name, v in values.items() if not v}
        if missing:
            raise ValidationFailedError(missing)

    async def _page(
        self, kind: EntityKind, query: Query, page: int, limit: int
    ) -> tuple[list[dict[str, Any]], int]:
        errors: dict[str, list[str]] = {}
        if page < 1:
            errors["page"] = ["Page must be at least 1"]
        if limit < 1:
            errors["limit"] = ["Limit must be at least 1"]
        if errors:
            raise ValidationFailedError(errors)

        documents, total = await asyncio.gather(
            self.store.find(kind, query, skip=(page - 1) * limit, limit=limit),
            self.store.count_documents(kind, query),
        )
        return documents, total

    async def _registration_view(self, registration: Registration) -> RegistrationView:
        return RegistrationView(
            registration=registration,
            newsletter_subscribed=await self.subscriptions.is_subscribed(registration.email),
        )

    async def _count_true(self, kind: EntityKind, field: str) -> int:
        return await self.store.count_documents(kind, Query(equals={field: True}))

    async def _contact_stats(self) -> ContactStats:
        by_status = await self.store.aggregate(CONTACT, "status")
        return ContactStats(
            total=await self.store.count_documents(CONTACT),
            by_status=_zero_filled(by_status, ContactStatus),
            emails_sent=await self._count_true(CONTACT, "email_sent"),
            admin_notified=await self._count_true(CONTACT, "admin_notified"),
        )

    async def _registration_stats(self) -> RegistrationStats:
        by_status = await self.store.aggregate(REGISTRATION, "metadata.status")
        by_experience = await self.store.aggregate(REGISTRATION, "experience")
        return RegistrationStats(
            total=await self.store.count_documents(REGISTRATION),
            by_status=_zero_filled(by_status, RegistrationStatus),
            by_experience=_zero_filled(by_experience, Experience),
            confirmations_sent=await self._count_true(REGISTRATION, "confirmation_email_sent"),
            admin_notified=await self._count_true(REGISTRATION, "admin_notified"),
            newsletter_opt_ins=await self._count_true(REGISTRATION, "newsletter"),
        )

    async def _newsletter_stats(self) -> NewsletterStats:
        by_status = await self.store.aggregate(NEWSLETTER, "metadata.status")
        return NewsletterStats(
            total=await self.store.count_documents(NEWSLETTER),
            active=await self._count_true(NEWSLETTER, "is_active"),
            by_status=_zero_filled(by_status, SubscriptionStatus),
            welcomes_sent=await self._count_true(NEWSLETTER, "welcome_email_sent"),
            admin_notified=await self._count_true(NEWSLETTER, "admin_notified"),
        )

    async def _recent_activity(self) -> RecentActivity:
        contacts = await self.store.find(CONTACT, limit=RECENT_LIMIT)
        registrations = await self.store.find(REGISTRATION, limit=RECENT_LIMIT)
        subscriptions = await self.store.find(NEWSLETTER, limit=RECENT_LIMIT)
        return RecentActivity(
            contacts=tuple(contact_from_document(d) for d in contacts),
            registrations=tuple(registration_from_document(d) for d in registrations),
            subscriptions=tuple(subscription_from_document(d) for d in subscriptions),
        )

    async def _record_template_usage(self, template: EmailTemplate) -> None:
        for _ in range(TEMPLATE_USAGE_ATTEMPTS):
            template.record_usage(self.clock())
            updated = await self.resolver.update(
                EMAIL_TEMPLATE,
                template.template_id,
                {
                    "usage_count": template.usage_count,
                    "last_used": format_timestamp(template.last_used),
                },
                guard={"usage_count": template.usage_count - 1},
            )
            if updated is not None:
                return
            template = template_from_document(
                await self.resolver.get(EMAIL_TEMPLATE, template.template_id)
            )
        logger.warning(
            f"Could not record usage of template {template.template_id}",
            extra={"template_id": template.template_id},
        )
