"""Core domain logic for the outreach forms backend.

This package contains zero external dependencies and represents
the pure business logic of the application. All adapters and
external integrations are handled by the adapters package.
"""

from .errors import (
    AlreadyRegisteredError,
    AlreadySubscribedError,
    AlreadyUnsubscribedError,
    DuplicateKeyError,
    InvalidTransitionError,
    NotFoundError,
    OutreachError,
    PermissionDeniedError,
    RegistrationNumberExhaustedError,
    UpstreamUnavailableError,
    ValidationFailedError,
)
from .models import (
    Actor,
    BulkSendResult,
    Contact,
    ContactStatus,
    DashboardOverview,
    DeliveryResult,
    EmailTemplate,
    EntityKind,
    Experience,
    Frequency,
    NewsletterSubscription,
    Page,
    Preferences,
    Registration,
    RegistrationStatus,
    RegistrationView,
    ReplyResult,
    SubscribeOutcome,
    SubscriptionStatus,
)
from .query import Query

__all__ = [
    "Actor",
    "AlreadyRegisteredError",
    "AlreadySubscribedError",
    "AlreadyUnsubscribedError",
    "BulkSendResult",
    "Contact",
    "ContactStatus",
    "DashboardOverview",
    "DeliveryResult",
    "DuplicateKeyError",
    "EmailTemplate",
    "EntityKind",
    "Experience",
    "Frequency",
    "InvalidTransitionError",
    "NewsletterSubscription",
    "NotFoundError",
    "OutreachError",
    "Page",
    "PermissionDeniedError",
    "Preferences",
    "Query",
    "Registration",
    "RegistrationNumberExhaustedError",
    "RegistrationStatus",
    "RegistrationView",
    "ReplyResult",
    "SubscribeOutcome",
    "SubscriptionStatus",
    "UpstreamUnavailableError",
    "ValidationFailedError",
]
