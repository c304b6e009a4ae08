"""Domain models for the outreach forms backend.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Generic, TypeVar

from .errors import InvalidTransitionError


class EntityKind(Enum):
    """Record collections held by the entity store."""

    CONTACT = "contacts"
    REGISTRATION = "registrations"
    NEWSLETTER = "newsletter_subscriptions"
    EMAIL_TEMPLATE = "email_templates"


# Fields the store must keep unique within each collection.
UNIQUE_FIELDS: Mapping[EntityKind, tuple[str, ...]] = MappingProxyType(
    {
        EntityKind.CONTACT: ("contact_id",),
        EntityKind.REGISTRATION: ("registration_id", "email", "registration_number"),
        EntityKind.NEWSLETTER: ("subscription_id", "email"),
        EntityKind.EMAIL_TEMPLATE: ("template_id",),
    }
)

INTEREST_TAGS = frozenset(
    {
        "ai-trading",
        "risk-management",
        "fraud-detection",
        "robo-advisors",
        "regulatory-compliance",
    }
)

TOPIC_TAGS = frozenset(
    {
        "ai-finance",
        "trading-technology",
        "fintech-news",
        "event-updates",
        "industry-insights",
    }
)

DEFAULT_TOPICS = frozenset({"event-updates", "industry-insights"})

DEFAULT_UNSUBSCRIBE_REASON = "User requested"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# ============================================================================
# Contact
# ============================================================================


class ContactStatus(Enum):
    """Handling states for a contact-form submission.

    Statuses only move forward:
    - PENDING: submitted, nobody has handled it yet
    - PROCESSED: an admin has triaged it
    - RESPONDED: a reply has been sent
    """

    PENDING = "pending"
    PROCESSED = "processed"
    RESPONDED = "responded"


_CONTACT_STATUS_RANK = {
    ContactStatus.PENDING: 0,
    ContactStatus.PROCESSED: 1,
    ContactStatus.RESPONDED: 2,
}


@dataclass
class ContactMetadata:
    """Request context captured when a contact form is submitted."""

    timestamp: datetime
    user_agent: str = ""
    ip_address: str = ""
    source: str = "contact_form"


@dataclass
class Contact:
    """A contact-form submission.

    State Transitions:
        - PENDING → PROCESSED → RESPONDED (advance_status)
        - ANY → RESPONDED (mark_responded, used by the reply action)
    """

    contact_id: str
    name: str
    email: str
    phone: str
    subject: str
    message: str
    metadata: ContactMetadata
    status: ContactStatus = ContactStatus.PENDING
    email_sent: bool = False
    email_sent_at: datetime | None = None
    admin_notified: bool = False
    admin_notified_at: datetime | None = None
    internal_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def advance_status(self, target: ContactStatus) -> None:
        """Move the contact forward to ``target``.

        Setting the current status again is a no-op.

        Raises:
            InvalidTransitionError: If ``target`` is behind the current status.
        """
        if _CONTACT_STATUS_RANK[target] < _CONTACT_STATUS_RANK[self.status]:
            raise InvalidTransitionError(
                f"Cannot move contact from {self.status.value} back to {target.value}"
            )
        self.status = target

    def mark_responded(self) -> None:
        """Force the responded status after a reply was sent."""
        self.status = ContactStatus.RESPONDED


# ============================================================================
# Registration
# ============================================================================


class Experience(Enum):
    """Self-declared experience level of a conference attendee."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class RegistrationStatus(Enum):
    """Attendance states of a conference registration."""

    REGISTERED = "registered"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    ATTENDED = "attended"


@dataclass
class RegistrationMetadata:
    """Request context and event attendance status for a registration."""

    timestamp: datetime
    event_id: str
    user_agent: str = ""
    ip_address: str = ""
    source: str = "conference_registration"
    status: RegistrationStatus = RegistrationStatus.REGISTERED


@dataclass
class Registration:
    """A conference registration.

    ``email`` and ``registration_number`` are unique across all
    registrations; the number is allocated by the registration service.
    """

    registration_id: str
    first_name: str
    last_name: str
    email: str
    phone: str
    experience: Experience
    registration_number: str
    metadata: RegistrationMetadata
    company: str = ""
    job_title: str = ""
    interests: frozenset[str] = field(default_factory=frozenset)
    expectations: str = ""
    newsletter: bool = False
    terms: bool = True
    confirmation_email_sent: bool = False
    confirmation_email_sent_at: datetime | None = None
    admin_notified: bool = False
    admin_notified_at: datetime | None = None
    internal_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        """Normalize the email and validate registration invariants."""
        self.email = self.email.strip().lower()
        if not self.terms:
            raise ValueError("terms must be accepted for a registration")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def set_status(self, status: RegistrationStatus) -> None:
        """Set the attendance status (admin action)."""
        self.metadata.status = status


# ============================================================================
# Newsletter subscription
# ============================================================================


class SubscriptionStatus(Enum):
    """Lifecycle states for a newsletter subscription.

    There is no terminal state: every state can return to SUBSCRIBED.
    - SUBSCRIBED: receiving mail (the only state with is_active=True)
    - UNSUBSCRIBED: the subscriber opted out
    - BOUNCED: mail to the address bounced
    """

    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"
    BOUNCED = "bounced"


class Frequency(Enum):
    """How often a subscriber wants to receive the newsletter."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass
class SubscriptionMetadata:
    """Request context and lifecycle status for a subscription."""

    timestamp: datetime
    user_agent: str = ""
    ip_address: str = ""
    source: str = "newsletter_subscription"
    source_page: str = ""
    status: SubscriptionStatus = SubscriptionStatus.SUBSCRIBED


# Metadata keys a reactivation may overwrite; status and timestamp belong
# to the transition itself.
MERGEABLE_METADATA_FIELDS = frozenset(
    f.name for f in fields(SubscriptionMetadata)
) - {"status", "timestamp"}


@dataclass
class Preferences:
    """Delivery preferences of a subscriber."""

    frequency: Frequency = Frequency.WEEKLY
    topics: frozenset[str] = field(default_factory=frozenset)


@dataclass
class NewsletterSubscription:
    """A newsletter subscription keyed by lower-cased email.

    ``is_active`` is True exactly when ``metadata.status`` is SUBSCRIBED;
    every transition below keeps the two in lockstep.

    State Transitions:
        - UNSUBSCRIBED/BOUNCED → SUBSCRIBED (reactivate, resubscribe)
        - SUBSCRIBED/BOUNCED → UNSUBSCRIBED (unsubscribe)
        - SUBSCRIBED/UNSUBSCRIBED → BOUNCED (mark_bounced)
    """

    subscription_id: str
    email: str
    metadata: SubscriptionMetadata
    is_active: bool = True
    preferences: Preferences = field(default_factory=Preferences)
    tags: frozenset[str] = field(default_factory=frozenset)
    unsubscribed_at: datetime | None = None
    unsubscribe_reason: str | None = None
    welcome_email_sent: bool = False
    welcome_email_sent_at: datetime | None = None
    admin_notified: bool = False
    admin_notified_at: datetime | None = None
    internal_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        """Normalize the email and check the active/status invariant."""
        self.email = self.email.strip().lower()
        if self.is_active != (self.metadata.status is SubscriptionStatus.SUBSCRIBED):
            raise ValueError(
                f"is_active={self.is_active} is inconsistent with "
                f"status={self.metadata.status.value}"
            )

    @property
    def is_subscribed(self) -> bool:
        return self.is_active and self.metadata.status is SubscriptionStatus.SUBSCRIBED

    def reactivate(
        self, now: datetime, metadata: Mapping[str, Any] | None = None
    ) -> list[str]:
        """Return an inactive subscription to SUBSCRIBED.

        Supplied metadata overwrites only existing mergeable fields;
        unknown keys are dropped.

        Returns:
            The metadata keys that were ignored.

        Raises:
            InvalidTransitionError: If the subscription is already active.
        """
        if self.is_subscribed:
            raise InvalidTransitionError("Subscription is already active")
        self._activate(now)

        ignored: list[str] = []
        for key, value in (metadata or {}).items():
            if key in MERGEABLE_METADATA_FIELDS:
                setattr(self.metadata, key, value)
            else:
                ignored.append(key)
        return ignored

    def resubscribe(self, now: datetime) -> None:
        """Return an inactive subscription to SUBSCRIBED without touching metadata."""
        if self.is_subscribed:
            raise InvalidTransitionError("Subscription is already active")
        self._activate(now)

    def unsubscribe(self, now: datetime, reason: str | None = None) -> None:
        """Opt the subscriber out.

        Raises:
            InvalidTransitionError: If already unsubscribed.
        """
        if self.metadata.status is SubscriptionStatus.UNSUBSCRIBED:
            raise InvalidTransitionError("Subscription is already unsubscribed")
        self.metadata.status = SubscriptionStatus.UNSUBSCRIBED
        self.is_active = False
        self.unsubscribed_at = now
        self.unsubscribe_reason = reason or DEFAULT_UNSUBSCRIBE_REASON

    def mark_bounced(self) -> None:
        """Record that mail to this address bounced."""
        if self.metadata.status is SubscriptionStatus.BOUNCED:
            raise InvalidTransitionError("Subscription is already marked as bounced")
        self.metadata.status = SubscriptionStatus.BOUNCED
        self.is_active = False

    def _activate(self, now: datetime) -> None:
        self.is_active = True
        self.metadata.status = SubscriptionStatus.SUBSCRIBED
        self.metadata.timestamp = now
        self.unsubscribed_at = None
        self.unsubscribe_reason = None


# ============================================================================
# Email template
# ============================================================================


@dataclass
class EmailTemplate:
    """A reusable subject/body pair for bulk campaigns."""

    template_id: str
    subject: str
    body: str
    created_by: str = "admin"
    usage_count: int = 0
    last_used: datetime | None = None
    internal_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def record_usage(self, now: datetime) -> None:
        self.usage_count += 1
        self.last_used = now


# ============================================================================
# Admin-side value types
# ============================================================================


@dataclass(frozen=True)
class Actor:
    """The user on whose behalf a dashboard operation runs.

    Passed explicitly into every admin operation instead of living in
    ambient session state.
    """

    name: str
    authenticated: bool = False

    @classmethod
    def operator(cls, name: str) -> "Actor":
        """An authenticated admin actor."""
        return cls(name=name, authenticated=True)

    @classmethod
    def anonymous(cls) -> "Actor":
        return cls(name="anonymous", authenticated=False)


T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a filtered listing."""

    items: tuple[T, ...]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass(frozen=True)
class ContactStats:
    """Aggregate counts over all contacts."""

    total: int
    by_status: Mapping[str, int]  # every ContactStatus value present
    emails_sent: int
    admin_notified: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "by_status", MappingProxyType(dict(self.by_status)))


@dataclass(frozen=True)
class RegistrationStats:
    """Aggregate counts over all registrations."""

    total: int
    by_status: Mapping[str, int]  # every RegistrationStatus value present
    by_experience: Mapping[str, int]  # every Experience value present
    confirmations_sent: int
    admin_notified: int
    newsletter_opt_ins: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "by_status", MappingProxyType(dict(self.by_status)))
        object.__setattr__(
            self, "by_experience", MappingProxyType(dict(self.by_experience))
        )


@dataclass(frozen=True)
class NewsletterStats:
    """Aggregate counts over all newsletter subscriptions."""

    total: int
    active: int
    by_status: Mapping[str, int]  # every SubscriptionStatus value present
    welcomes_sent: int
    admin_notified: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "by_status", MappingProxyType(dict(self.by_status)))


@dataclass(frozen=True)
class RecentActivity:
    """Newest records of each kind, newest first."""

    contacts: tuple[Contact, ...]
    registrations: tuple[Registration, ...]
    subscriptions: tuple[NewsletterSubscription, ...]


@dataclass(frozen=True)
class DashboardOverview:
    """Everything the dashboard landing page shows."""

    contacts: ContactStats
    registrations: RegistrationStats
    newsletter: NewsletterStats
    recent: RecentActivity


@dataclass(frozen=True)
class RegistrationView:
    """A registration joined with its newsletter state at read time.

    WARNING: the contained Registration is mutable; the flag reflects the
    store at the moment the view was built.
    """

    registration: Registration
    newsletter_subscribed: bool


@dataclass(frozen=True)
class SubscribeOutcome:
    """Result of a subscribe call: the record and whether it was new."""

    subscription: NewsletterSubscription
    created: bool


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of sending one email."""

    recipient: str
    success: bool
    message_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class BulkSendResult:
    """Per-recipient summary of a bulk email run."""

    sent: int
    failed: int
    failed_recipients: tuple[str, ...] = ()

    @property
    def total(self) -> int:
        return self.sent + self.failed


@dataclass(frozen=True)
class ReplyResult:
    """Outcome of replying to a contact."""

    contact: Contact
    delivered: bool
