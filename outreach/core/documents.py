"""Conversion between domain records and store documents.

Documents are JSON-safe dictionaries. Datetimes are stored as ISO-8601
UTC strings with microsecond precision so that lexical order equals
chronological order in every backend. Store-assigned fields (``id``,
``created_at``, ``updated_at``) are read back but never written here.
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from .models import (
    Contact,
    ContactMetadata,
    ContactStatus,
    EmailTemplate,
    Experience,
    Frequency,
    NewsletterSubscription,
    Preferences,
    Registration,
    RegistrationMetadata,
    RegistrationStatus,
    SubscriptionMetadata,
    SubscriptionStatus,
)


def format_timestamp(value: datetime | None) -> str | None:
    """Render a datetime as a sortable UTC ISO string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse a stored timestamp back into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid timestamp in document: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _required_timestamp(value: str | datetime | None) -> datetime:
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError("Document is missing a required timestamp")
    return parsed


def _stored_fields(document: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "internal_id": document.get("id"),
        "created_at": parse_timestamp(document.get("created_at")),
        "updated_at": parse_timestamp(document.get("updated_at")),
    }


# ============================================================================
# Contact
# ============================================================================


def contact_metadata_to_document(metadata: ContactMetadata) -> dict[str, Any]:
    return {
        "timestamp": format_timestamp(metadata.timestamp),
        "user_agent": metadata.user_agent,
        "ip_address": metadata.ip_address,
        "source": metadata.source,
    }


def contact_to_document(contact: Contact) -> dict[str, Any]:
    """Serialize a Contact for storage."""
    return {
        "contact_id": contact.contact_id,
        "name": contact.name,
        "email": contact.email,
        "phone": contact.phone,
        "subject": contact.subject,
        "message": contact.message,
        "metadata": contact_metadata_to_document(contact.metadata),
        "status": contact.status.value,
        "email_sent": contact.email_sent,
        "email_sent_at": format_timestamp(contact.email_sent_at),
        "admin_notified": contact.admin_notified,
        "admin_notified_at": format_timestamp(contact.admin_notified_at),
    }


def contact_from_document(document: Mapping[str, Any]) -> Contact:
    """Deserialize a stored Contact.

    Raises:
        ValueError: If the document is malformed.
    """
    try:
        metadata = document.get("metadata") or {}
        return Contact(
            contact_id=document["contact_id"],
            name=document["name"],
            email=document["email"],
            phone=document["phone"],
            subject=document["subject"],
            message=document["message"],
            metadata=ContactMetadata(
                timestamp=_required_timestamp(metadata.get("timestamp")),
                user_agent=metadata.get("user_agent", ""),
                ip_address=metadata.get("ip_address", ""),
                source=metadata.get("source", "contact_form"),
            ),
            status=ContactStatus(document.get("status", ContactStatus.PENDING.value)),
            email_sent=bool(document.get("email_sent", False)),
            email_sent_at=parse_timestamp(document.get("email_sent_at")),
            admin_notified=bool(document.get("admin_notified", False)),
            admin_notified_at=parse_timestamp(document.get("admin_notified_at")),
            **_stored_fields(document),
        )
    except KeyError as e:
        raise ValueError(f"Contact document is missing field {e}") from e


# ============================================================================
# Registration
# ============================================================================


def registration_metadata_to_document(metadata: RegistrationMetadata) -> dict[str, Any]:
    return {
        "timestamp": format_timestamp(metadata.timestamp),
        "user_agent": metadata.user_agent,
        "ip_address": metadata.ip_address,
        "source": metadata.source,
        "event_id": metadata.event_id,
        "status": metadata.status.value,
    }


def registration_to_document(registration: Registration) -> dict[str, Any]:
    """Serialize a Registration for storage."""
    return {
        "registration_id": registration.registration_id,
        "first_name": registration.first_name,
        "last_name": registration.last_name,
        "email": registration.email,
        "phone": registration.phone,
        "company": registration.company,
        "job_title": registration.job_title,
        "experience": registration.experience.value,
        "interests": sorted(registration.interests),
        "expectations": registration.expectations,
        "newsletter": registration.newsletter,
        "terms": registration.terms,
        "registration_number": registration.registration_number,
        "metadata": registration_metadata_to_document(registration.metadata),
        "confirmation_email_sent": registration.confirmation_email_sent,
        "confirmation_email_sent_at": format_timestamp(
            registration.confirmation_email_sent_at
        ),
        "admin_notified": registration.admin_notified,
        "admin_notified_at": format_timestamp(registration.admin_notified_at),
    }


def registration_from_document(document: Mapping[str, Any]) -> Registration:
    """Deserialize a stored Registration.

    Raises:
        ValueError: If the document is malformed.
    """
    try:
        metadata = document.get("metadata") or {}
        return Registration(
            registration_id=document["registration_id"],
            first_name=document["first_name"],
            last_name=document["last_name"],
            email=document["email"],
            phone=document["phone"],
            experience=Experience(document["experience"]),
            registration_number=document["registration_number"],
            metadata=RegistrationMetadata(
                timestamp=_required_timestamp(metadata.get("timestamp")),
                event_id=metadata.get("event_id", ""),
                user_agent=metadata.get("user_agent", ""),
                ip_address=metadata.get("ip_address", ""),
                source=metadata.get("source", "conference_registration"),
                status=RegistrationStatus(
                    metadata.get("status", RegistrationStatus.REGISTERED.value)
                ),
            ),
            company=document.get("company", ""),
            job_title=document.get("job_title", ""),
            interests=frozenset(document.get("interests") or ()),
            expectations=document.get("expectations", ""),
            newsletter=bool(document.get("newsletter", False)),
            terms=bool(document.get("terms", True)),
            confirmation_email_sent=bool(document.get("confirmation_email_sent", False)),
            confirmation_email_sent_at=parse_timestamp(
                document.get("confirmation_email_sent_at")
            ),
            admin_notified=bool(document.get("admin_notified", False)),
            admin_notified_at=parse_timestamp(document.get("admin_notified_at")),
            **_stored_fields(document),
        )
    except KeyError as e:
        raise ValueError(f"Registration document is missing field {e}") from e


# ============================================================================
# Newsletter subscription
# ============================================================================


def subscription_metadata_to_document(metadata: SubscriptionMetadata) -> dict[str, Any]:
    return {
        "timestamp": format_timestamp(metadata.timestamp),
        "user_agent": metadata.user_agent,
        "ip_address": metadata.ip_address,
        "source": metadata.source,
        "source_page": metadata.source_page,
        "status": metadata.status.value,
    }


def preferences_to_document(preferences: Preferences) -> dict[str, Any]:
    return {
        "frequency": preferences.frequency.value,
        "topics": sorted(preferences.topics),
    }


def subscription_to_document(subscription: NewsletterSubscription) -> dict[str, Any]:
    """Serialize a NewsletterSubscription for storage."""
    return {
        "subscription_id": subscription.subscription_id,
        "email": subscription.email,
        "is_active": subscription.is_active,
        "metadata": subscription_metadata_to_document(subscription.metadata),
        "preferences": preferences_to_document(subscription.preferences),
        "tags": sorted(subscription.tags),
        "unsubscribed_at": format_timestamp(subscription.unsubscribed_at),
        "unsubscribe_reason": subscription.unsubscribe_reason,
        "welcome_email_sent": subscription.welcome_email_sent,
        "welcome_email_sent_at": format_timestamp(subscription.welcome_email_sent_at),
        "admin_notified": subscription.admin_notified,
        "admin_notified_at": format_timestamp(subscription.admin_notified_at),
    }


def subscription_state_patch(subscription: NewsletterSubscription) -> dict[str, Any]:
    """The fields a lifecycle transition may change, as an update patch."""
    return {
        "is_active": subscription.is_active,
        "metadata": subscription_metadata_to_document(subscription.metadata),
        "unsubscribed_at": format_timestamp(subscription.unsubscribed_at),
        "unsubscribe_reason": subscription.unsubscribe_reason,
    }


def subscription_from_document(document: Mapping[str, Any]) -> NewsletterSubscription:
    """Deserialize a stored NewsletterSubscription.

    Raises:
        ValueError: If the document is malformed or breaks the
            is_active/status invariant.
    """
    try:
        metadata = document.get("metadata") or {}
        preferences = document.get("preferences") or {}
        return NewsletterSubscription(
            subscription_id=document["subscription_id"],
            email=document["email"],
            is_active=bool(document.get("is_active", True)),
            metadata=SubscriptionMetadata(
                timestamp=_required_timestamp(metadata.get("timestamp")),
                user_agent=metadata.get("user_agent", ""),
                ip_address=metadata.get("ip_address", ""),
                source=metadata.get("source", "newsletter_subscription"),
                source_page=metadata.get("source_page", ""),
                status=SubscriptionStatus(
                    metadata.get("status", SubscriptionStatus.SUBSCRIBED.value)
                ),
            ),
            preferences=Preferences(
                frequency=Frequency(preferences.get("frequency", Frequency.WEEKLY.value)),
                topics=frozenset(preferences.get("topics") or ()),
            ),
            tags=frozenset(document.get("tags") or ()),
            unsubscribed_at=parse_timestamp(document.get("unsubscribed_at")),
            unsubscribe_reason=document.get("unsubscribe_reason"),
            welcome_email_sent=bool(document.get("welcome_email_sent", False)),
            welcome_email_sent_at=parse_timestamp(document.get("welcome_email_sent_at")),
            admin_notified=bool(document.get("admin_notified", False)),
            admin_notified_at=parse_timestamp(document.get("admin_notified_at")),
            **_stored_fields(document),
        )
    except KeyError as e:
        raise ValueError(f"Subscription document is missing field {e}") from e


# ============================================================================
# Email template
# ============================================================================


def template_to_document(template: EmailTemplate) -> dict[str, Any]:
    """Serialize an EmailTemplate for storage."""
    return {
        "template_id": template.template_id,
        "subject": template.subject,
        "body": template.body,
        "created_by": template.created_by,
        "usage_count": template.usage_count,
        "last_used": format_timestamp(template.last_used),
        # Sort key shared with the other collections.
        "metadata": {"timestamp": format_timestamp(template.created_at)},
    }


def template_from_document(document: Mapping[str, Any]) -> EmailTemplate:
    """Deserialize a stored EmailTemplate."""
    try:
        return EmailTemplate(
            template_id=document["template_id"],
            subject=document["subject"],
            body=document["body"],
            created_by=document.get("created_by", "admin"),
            usage_count=int(document.get("usage_count", 0)),
            last_used=parse_timestamp(document.get("last_used")),
            **_stored_fields(document),
        )
    except KeyError as e:
        raise ValueError(f"Template document is missing field {e}") from e
