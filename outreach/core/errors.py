"""Typed error kinds raised by the core and translated by adapters.

Every expected failure of an intake or dashboard operation is one of
these types, so callers can branch on the class instead of parsing
messages. Unexpected failures (bugs, programming errors) propagate as
ordinary exceptions.
"""

from collections.abc import Mapping, Sequence


class OutreachError(Exception):
    """Base class for all expected failure kinds."""

    code = "error"


class ValidationFailedError(OutreachError):
    """One or more form fields violated their rules.

    Attributes:
        errors: Mapping of field name to the list of messages for that field.
    """

    code = "validation_failed"

    def __init__(self, errors: Mapping[str, Sequence[str]]):
        self.errors: dict[str, list[str]] = {
            field: list(messages) for field, messages in errors.items()
        }
        fields = ", ".join(sorted(self.errors))
        super().__init__(f"Validation failed for: {fields}")


class NotFoundError(OutreachError):
    """An identifier did not resolve to any record."""

    code = "not_found"

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"No {kind} record matches {identifier!r}")


class DuplicateKeyError(OutreachError):
    """A unique field already holds the value being written.

    Raised by store adapters; services decide whether to retry or to
    surface a domain error.
    """

    code = "duplicate_key"

    def __init__(self, kind: str, field: str):
        self.kind = kind
        self.field = field
        super().__init__(f"Duplicate value for {kind}.{field}")


class AlreadyRegisteredError(OutreachError):
    """The email address is already registered for the event."""

    code = "already_registered"

    def __init__(self, email: str):
        self.email = email
        super().__init__("Email address is already registered for this event")


class AlreadySubscribedError(OutreachError):
    """The email address already has an active subscription."""

    code = "already_subscribed"

    def __init__(self, email: str):
        self.email = email
        super().__init__("Email address is already subscribed to newsletter")


class AlreadyUnsubscribedError(OutreachError):
    """The subscription is already in the unsubscribed state."""

    code = "already_unsubscribed"

    def __init__(self, email: str):
        self.email = email
        super().__init__("Email is already unsubscribed")


class InvalidTransitionError(OutreachError):
    """A status change is not allowed from the record's current state."""

    code = "invalid_transition"


class RegistrationNumberExhaustedError(OutreachError):
    """Every generated registration number collided with an existing one."""

    code = "registration_number_exhausted"

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a unique registration number after {attempts} attempts"
        )


class PermissionDeniedError(OutreachError):
    """The acting user may not perform admin operations."""

    code = "permission_denied"


class UpstreamUnavailableError(OutreachError):
    """The storage backend or mail transport could not be reached."""

    code = "upstream_unavailable"


__all__ = [
    "AlreadyRegisteredError",
    "AlreadySubscribedError",
    "AlreadyUnsubscribedError",
    "DuplicateKeyError",
    "InvalidTransitionError",
    "NotFoundError",
    "OutreachError",
    "PermissionDeniedError",
    "RegistrationNumberExhaustedError",
    "UpstreamUnavailableError",
    "ValidationFailedError",
]
