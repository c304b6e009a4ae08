"""Port interfaces for the outreach forms backend.

These abstract base classes define the boundaries between core
domain logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - EntityStorePort: Persist and query records as documents
   - NotificationPort: Deliver transactional and bulk email

2. **Driving Ports** (adapters/external systems call into core)
   - IntakePort: Public form submissions (contact, registration, newsletter)
   - DashboardPort: Admin operations, each on behalf of an Actor
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from .models import (
    Actor,
    BulkSendResult,
    Contact,
    ContactStatus,
    DashboardOverview,
    DeliveryResult,
    EmailTemplate,
    EntityKind,
    NewsletterSubscription,
    Page,
    Registration,
    RegistrationStatus,
    RegistrationView,
    ReplyResult,
    SubscribeOutcome,
    SubscriptionStatus,
)
from .query import DEFAULT_SORT, Query
from .validation import ContactForm, RegistrationForm, RequestContext, SubscribeForm

# Exact-match conditions on dotted paths, all of which must hold.
Predicate = Mapping[str, Any]


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class EntityStorePort(ABC):
    """Port for persisting and querying record documents.

    Documents are JSON-safe dictionaries (see core.documents). The store
    owns three fields on every document:
    - ``id``: 24-character lowercase hex internal id
    - ``created_at`` / ``updated_at``: ISO-8601 UTC timestamps

    Implementations must:
    - Enforce UNIQUE_FIELDS per kind, raising DuplicateKeyError
    - Make find_one_and_update / find_one_and_delete atomic per document
    - Raise UpstreamUnavailableError when the backend cannot be reached
    """

    @abstractmethod
    async def create(self, kind: EntityKind, document: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a new document.

        Args:
            kind: Collection to insert into.
            document: Record fields without store-owned fields.

        Returns:
            The stored document including ``id``, ``created_at``, ``updated_at``.

        Raises:
            DuplicateKeyError: If a unique field value already exists.
            UpstreamUnavailableError: If the backend is unreachable.
        """

    @abstractmethod
    async def find_one(
        self, kind: EntityKind, predicate: Predicate
    ) -> dict[str, Any] | None:
        """Return the first document matching every predicate condition.

        Returns:
            The document, or None if nothing matches.
        """

    @abstractmethod
    async def find(
        self,
        kind: EntityKind,
        query: Query | None = None,
        sort: str = DEFAULT_SORT,
        descending: bool = True,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return documents matching ``query`` in sorted order.

        Args:
            kind: Collection to read.
            query: Filter; None matches everything.
            sort: Dotted path to order by.
            descending: Newest first when sorting by timestamp.
            skip: Number of matching documents to skip.
            limit: Maximum number of documents; None for no limit.
        """

    @abstractmethod
    async def count_documents(self, kind: EntityKind, query: Query | None = None) -> int:
        """Count documents matching ``query``."""

    @abstractmethod
    async def find_one_and_update(
        self, kind: EntityKind, predicate: Predicate, patch: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        """Atomically apply ``patch`` to one document matching ``predicate``.

        Patch keys are dotted paths. The predicate is re-checked inside
        the same transaction as the write, so it can serve as a
        compare-and-set guard.

        Returns:
            The updated document, or None if nothing matched.

        Raises:
            DuplicateKeyError: If the patch collides on a unique field.
        """

    @abstractmethod
    async def find_one_and_delete(
        self, kind: EntityKind, predicate: Predicate
    ) -> dict[str, Any] | None:
        """Atomically delete one document matching ``predicate``.

        Returns:
            The deleted document, or None if nothing matched.
        """

    @abstractmethod
    async def aggregate(
        self, kind: EntityKind, group_by: str, query: Query | None = None
    ) -> dict[Any, int]:
        """Count matching documents grouped by the value at ``group_by``.

        Returns:
            Mapping of group value to count. Empty when no documents match.
        """

    @abstractmethod
    async def close(self) -> None:
        """Release connections held by the store."""


class NotificationPort(ABC):
    """Port for delivering email.

    Adapters render ``template_name`` with ``variables`` and hand the
    message to a transport. Transport failures are reported through the
    returned DeliveryResult rather than raised, so a failed email can
    never undo a write that already happened.
    """

    @abstractmethod
    async def send(
        self,
        template_name: str,
        recipient: str,
        variables: Mapping[str, Any],
    ) -> DeliveryResult:
        """Render and send one email.

        Args:
            template_name: Name of the email template to render.
            recipient: Destination address.
            variables: Values available to the template.

        Returns:
            DeliveryResult with success flag and error detail.
        """

    async def close(self) -> None:
        """Release transport resources. Default: nothing to release."""


# ============================================================================
# DRIVING PORTS (External systems call into core)
# ============================================================================


class IntakePort(ABC):
    """Port for public form submissions."""

    @abstractmethod
    async def submit_contact(self, form: ContactForm, context: RequestContext) -> Contact:
        """Store a contact-form submission and notify in the background.

        Raises:
            ValidationFailedError: If the form is invalid.
        """

    @abstractmethod
    async def register(
        self, form: RegistrationForm, context: RequestContext
    ) -> Registration:
        """Register an attendee for the event.

        Raises:
            ValidationFailedError: If the form is invalid.
            AlreadyRegisteredError: If the email is already registered.
            RegistrationNumberExhaustedError: If no unique number could be found.
        """

    @abstractmethod
    async def verify_registration(self, identifier: str) -> Registration:
        """Look up a registration by public token or registration number.

        Raises:
            NotFoundError: If nothing matches.
        """

    @abstractmethod
    async def subscribe(
        self, form: SubscribeForm, context: RequestContext
    ) -> SubscribeOutcome:
        """Subscribe an email to the newsletter, reactivating if inactive.

        Raises:
            ValidationFailedError: If the email is invalid.
            AlreadySubscribedError: If the email is already active.
        """

    @abstractmethod
    async def unsubscribe(
        self, identifier: str, reason: str | None = None
    ) -> NewsletterSubscription:
        """Unsubscribe by token or email.

        Raises:
            NotFoundError: If nothing matches.
            AlreadyUnsubscribedError: If already unsubscribed.
        """

    @abstractmethod
    async def resubscribe(self, identifier: str) -> NewsletterSubscription:
        """Reactivate an inactive subscription by token or email.

        Raises:
            NotFoundError: If nothing matches.
            AlreadySubscribedError: If the subscription is already active.
        """


class DashboardPort(ABC):
    """Port for admin operations.

    Every operation takes the acting user explicitly and raises
    PermissionDeniedError for an unauthenticated actor. Identifiers are
    resolved through the record resolver, so any accepted key (public
    token, business key, internal id) works.
    """

    @abstractmethod
    async def overview(self, actor: Actor) -> DashboardOverview:
        """Aggregate counts and recent records for the landing page."""

    @abstractmethod
    async def list_contacts(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        status: ContactStatus | None = None,
    ) -> Page[Contact]:
        """Page through contacts, newest first."""

    @abstractmethod
    async def get_contact(self, actor: Actor, identifier: str) -> Contact:
        """Fetch one contact."""

    @abstractmethod
    async def update_contact_status(
        self, actor: Actor, identifier: str, status: ContactStatus
    ) -> Contact:
        """Move a contact forward to ``status``."""

    @abstractmethod
    async def reply_to_contact(
        self, actor: Actor, identifier: str, subject: str, message: str
    ) -> ReplyResult:
        """Email a reply to a contact and mark it responded."""

    @abstractmethod
    async def delete_contact(self, actor: Actor, identifier: str) -> Contact:
        """Delete one contact and return it."""

    @abstractmethod
    async def list_registrations(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        status: RegistrationStatus | None = None,
        experience: str | None = None,
    ) -> Page[RegistrationView]:
        """Page through registrations with their newsletter flag."""

    @abstractmethod
    async def get_registration(self, actor: Actor, identifier: str) -> RegistrationView:
        """Fetch one registration with its newsletter flag."""

    @abstractmethod
    async def update_registration_status(
        self, actor: Actor, identifier: str, status: RegistrationStatus
    ) -> Registration:
        """Set a registration's attendance status."""

    @abstractmethod
    async def delete_registration(self, actor: Actor, identifier: str) -> Registration:
        """Delete one registration and return it."""

    @abstractmethod
    async def list_subscriptions(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        status: SubscriptionStatus | None = None,
        active: bool | None = None,
    ) -> Page[NewsletterSubscription]:
        """Page through newsletter subscriptions."""

    @abstractmethod
    async def get_subscription(
        self, actor: Actor, identifier: str
    ) -> NewsletterSubscription:
        """Fetch one subscription."""

    @abstractmethod
    async def delete_subscription(
        self, actor: Actor, identifier: str
    ) -> NewsletterSubscription:
        """Delete one subscription and return it."""

    @abstractmethod
    async def create_template(
        self, actor: Actor, subject: str, body: str
    ) -> EmailTemplate:
        """Store a reusable campaign template."""

    @abstractmethod
    async def list_templates(self, actor: Actor) -> list[EmailTemplate]:
        """All campaign templates, newest first."""

    @abstractmethod
    async def send_bulk_email(
        self,
        actor: Actor,
        subject: str,
        body: str,
        template_id: str | None = None,
    ) -> BulkSendResult:
        """Send one email to every active subscriber, one at a time."""
