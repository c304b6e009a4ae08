"""Newsletter subscription lifecycle.

One subscription exists per lower-cased email. Subscribing an unknown
address creates it; subscribing an inactive address reactivates it;
subscribing an active address fails. Every state change is written as a
single conditional update, so concurrent requests for the same email
cannot both succeed.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from .documents import (
    format_timestamp,
    subscription_from_document,
    subscription_state_patch,
    subscription_to_document,
)
from .errors import (
    AlreadySubscribedError,
    AlreadyUnsubscribedError,
    DuplicateKeyError,
    InvalidTransitionError,
)
from .identifiers import RecordResolver, new_token
from .models import (
    DEFAULT_TOPICS,
    MERGEABLE_METADATA_FIELDS,
    EntityKind,
    NewsletterSubscription,
    Preferences,
    SubscribeOutcome,
    SubscriptionMetadata,
    utcnow,
)
from .notifier import MailingContext, NotificationDispatcher, NotificationJob
from .ports import EntityStorePort
from .validation import RequestContext, SubscribeForm, normalize_email, parse_flag

logger = logging.getLogger(__name__)

NEWSLETTER = EntityKind.NEWSLETTER


class SubscriptionService:
    """Owns every newsletter state transition.

    Used by the public intake, the registration opt-in and the admin
    dashboard, so the is_active/status invariant is enforced in one place.
    """

    def __init__(
        self,
        store: EntityStorePort,
        resolver: RecordResolver,
        dispatcher: NotificationDispatcher,
        mailing: MailingContext,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.mailing = mailing
        self.clock = clock

    async def subscribe(
        self,
        form: SubscribeForm,
        context: RequestContext,
        preferences: Preferences | None = None,
        tags: Iterable[str] | None = None,
        metadata: Mapping[str, Any] | None = None,
        source: str = "newsletter_subscription",
    ) -> SubscribeOutcome:
        """Create or reactivate the subscription for ``form.email``.

        Args:
            form: Newsletter form; validated here.
            context: Request details stored in metadata.
            preferences: Used only when a new subscription is created.
            tags: Used only when a new subscription is created.
            metadata: Extra metadata; on reactivation only known fields apply.
            source: Metadata source marker.

        Returns:
            SubscribeOutcome with ``created`` False for a reactivation.

        Raises:
            ValidationFailedError: If the email is invalid.
            AlreadySubscribedError: If the email is already active.
        """
        form = form.validate()
        supplied = {
            "user_agent": context.user_agent,
            "ip_address": context.ip_address,
            "source": source,
            "source_page": context.source_page or "unknown",
            **(metadata or {}),
        }

        existing = await self.store.find_one(NEWSLETTER, {"email": form.email})
        if existing is None:
            outcome = await self._create(form.email, supplied, preferences, tags)
        else:
            subscription = subscription_from_document(existing)
            if subscription.is_subscribed:
                raise AlreadySubscribedError(form.email)
            outcome = await self._reactivate(subscription, supplied)

        subscription = outcome.subscription
        logger.info(
            f"Newsletter subscription for {subscription.email}",
            extra={
                "subscription_id": subscription.subscription_id,
                "source_page": subscription.metadata.source_page,
                "created": outcome.created,
            },
        )
        self._notify_subscribed(subscription)
        return outcome

    async def unsubscribe(
        self, identifier: str, reason: str | None = None
    ) -> NewsletterSubscription:
        """Opt out by public token or email.

        Raises:
            NotFoundError: If no subscription matches.
            AlreadyUnsubscribedError: If the subscription is not active.
        """
        document = await self.resolver.get(NEWSLETTER, identifier)
        subscription = subscription_from_document(document)
        if not subscription.is_active:
            raise AlreadyUnsubscribedError(subscription.email)

        subscription.unsubscribe(self.clock(), reason)
        updated = await self.resolver.update(
            NEWSLETTER,
            subscription.subscription_id,
            subscription_state_patch(subscription),
            guard={"is_active": True},
        )
        if updated is None:
            raise AlreadyUnsubscribedError(subscription.email)

        logger.info(
            f"Newsletter unsubscription for {subscription.email}",
            extra={
                "subscription_id": subscription.subscription_id,
                "reason": subscription.unsubscribe_reason,
            },
        )
        return subscription_from_document(updated)

    async def resubscribe(self, identifier: str) -> NewsletterSubscription:
        """Reactivate an existing inactive subscription and resend the welcome.

        Raises:
            NotFoundError: If no subscription matches.
            AlreadySubscribedError: If the subscription is already active.
        """
        document = await self.resolver.get(NEWSLETTER, identifier)
        subscription = subscription_from_document(document)
        if subscription.is_subscribed:
            raise AlreadySubscribedError(subscription.email)

        subscription.resubscribe(self.clock())
        updated = await self.resolver.update(
            NEWSLETTER,
            subscription.subscription_id,
            subscription_state_patch(subscription),
            guard={"is_active": False},
        )
        if updated is None:
            raise AlreadySubscribedError(subscription.email)

        subscription = subscription_from_document(updated)
        logger.info(
            f"Newsletter resubscription for {subscription.email}",
            extra={"subscription_id": subscription.subscription_id},
        )
        self.dispatcher.dispatch(
            [self._welcome_job(subscription)],
            f"newsletter resubscription {subscription.subscription_id}",
        )
        return subscription

    async def mark_bounced(self, identifier: str) -> NewsletterSubscription:
        """Record that mail to the subscription bounced.

        Raises:
            NotFoundError: If no subscription matches.
            InvalidTransitionError: If it is already marked as bounced.
        """
        document = await self.resolver.get(NEWSLETTER, identifier)
        subscription = subscription_from_document(document)
        previous = subscription.metadata.status
        subscription.mark_bounced()
        updated = await self.resolver.update(
            NEWSLETTER,
            subscription.subscription_id,
            subscription_state_patch(subscription),
            guard={"metadata.status": previous.value},
        )
        if updated is None:
            raise InvalidTransitionError(
                f"Subscription {subscription.subscription_id} changed concurrently"
            )
        logger.info(
            f"Newsletter subscription {subscription.subscription_id} marked as bounced",
            extra={"subscription_id": subscription.subscription_id},
        )
        return subscription_from_document(updated)

    async def set_active(self, identifier: str, active: bool) -> NewsletterSubscription:
        """Drive the state machine from an admin ``is_active`` toggle.

        Setting the current value again is a no-op.
        """
        return await self.update(identifier, {}, active)

    async def update(
        self,
        identifier: str,
        changes: Mapping[str, Any],
        active: bool | None = None,
    ) -> NewsletterSubscription:
        """Apply an admin edit and an optional ``is_active`` change together.

        The transition is checked in memory first; field changes and the
        resulting state are then written as one update guarded on the
        current ``is_active`` value.

        Raises:
            ValidationFailedError: If ``active`` is not a boolean.
            NotFoundError: If no subscription matches.
            InvalidTransitionError: If the subscription changed concurrently.
            DuplicateKeyError: If ``changes`` moves the email onto another record.
        """
        if active is not None:
            active = parse_flag(active, "is_active")
        document = await self.resolver.get(NEWSLETTER, identifier)
        subscription = subscription_from_document(document)
        was_active = subscription.is_active

        patch = dict(changes)
        transition = active is not None and active != was_active
        if transition:
            if active:
                subscription.resubscribe(self.clock())
            else:
                subscription.unsubscribe(self.clock(), "Admin action")
            patch.update(subscription_state_patch(subscription))
        if not patch:
            return subscription

        updated = await self.resolver.update(
            NEWSLETTER,
            subscription.subscription_id,
            patch,
            guard={"is_active": was_active},
        )
        if updated is None:
            raise InvalidTransitionError(
                f"Subscription {subscription.subscription_id} changed concurrently"
            )

        subscription = subscription_from_document(updated)
        if transition:
            logger.info(
                f"Newsletter subscription {subscription.subscription_id} set "
                f"{'active' if subscription.is_active else 'inactive'} by admin",
                extra={"subscription_id": subscription.subscription_id},
            )
        if transition and subscription.is_active:
            self.dispatcher.dispatch(
                [self._welcome_job(subscription)],
                f"newsletter resubscription {subscription.subscription_id}",
            )
        return subscription

    async def is_subscribed(self, email: str) -> bool:
        """True if ``email`` has an active subscription."""
        document = await self.store.find_one(
            NEWSLETTER, {"email": normalize_email(email), "is_active": True}
        )
        return document is not None

    async def _create(
        self,
        email: str,
        supplied: Mapping[str, Any],
        preferences: Preferences | None,
        tags: Iterable[str] | None,
    ) -> SubscribeOutcome:
        preferences = preferences or Preferences()
        if not preferences.topics:
            preferences = Preferences(frequency=preferences.frequency, topics=DEFAULT_TOPICS)

        known = {k: v for k, v in supplied.items() if k in MERGEABLE_METADATA_FIELDS}
        subscription = NewsletterSubscription(
            subscription_id=new_token(),
            email=email,
            metadata=SubscriptionMetadata(timestamp=self.clock(), **known),
            preferences=preferences,
            tags=frozenset(tags or ()),
        )
        try:
            stored = await self.store.create(NEWSLETTER, subscription_to_document(subscription))
        except DuplicateKeyError as e:
            if e.field == "email":
                raise AlreadySubscribedError(email) from e
            raise
        return SubscribeOutcome(subscription=subscription_from_document(stored), created=True)

    async def _reactivate(
        self, subscription: NewsletterSubscription, supplied: Mapping[str, Any]
    ) -> SubscribeOutcome:
        ignored = subscription.reactivate(self.clock(), supplied)
        if ignored:
            logger.debug(
                f"Ignored unknown metadata keys on reactivation: {sorted(ignored)}",
                extra={"subscription_id": subscription.subscription_id},
            )

        updated = await self.store.find_one_and_update(
            NEWSLETTER,
            {"email": subscription.email, "is_active": False},
            subscription_state_patch(subscription),
        )
        if updated is None:
            # Another request reactivated it first, or it was deleted.
            raise AlreadySubscribedError(subscription.email)
        return SubscribeOutcome(subscription=subscription_from_document(updated), created=False)

    def _welcome_job(self, subscription: NewsletterSubscription) -> NotificationJob:
        return NotificationJob(
            template="newsletter_welcome",
            recipient=subscription.email,
            variables={
                "email": subscription.email,
                "subscription_id": subscription.subscription_id,
                "unsubscribe_url": self.mailing.unsubscribe_url(subscription.subscription_id),
                "site_url": self.mailing.site_url,
            },
            kind=NEWSLETTER,
            predicate={"subscription_id": subscription.subscription_id},
            flag="welcome_email_sent",
        )

    def _notify_subscribed(self, subscription: NewsletterSubscription) -> None:
        admin_variables = {
            "email": subscription.email,
            "source_page": subscription.metadata.source_page,
            "ip_address": subscription.metadata.ip_address,
            "timestamp": format_timestamp(subscription.metadata.timestamp),
        }
        jobs = [self._welcome_job(subscription)]
        jobs.extend(
            self.mailing.admin_jobs(
                "newsletter_admin_notification",
                admin_variables,
                NEWSLETTER,
                {"subscription_id": subscription.subscription_id},
            )
        )
        self.dispatcher.dispatch(
            jobs, f"newsletter subscription {subscription.subscription_id}"
        )


__all__ = ["SubscriptionService"]
