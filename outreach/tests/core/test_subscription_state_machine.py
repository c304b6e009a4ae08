"""Tests for the newsletter subscription state machine.

Covers every transition of NewsletterSubscription and the invariant
that ``is_active`` is True exactly when the status is SUBSCRIBED.
"""

from datetime import datetime, timedelta, timezone

import pytest

from outreach.core.errors import InvalidTransitionError
from outreach.core.models import (
    DEFAULT_UNSUBSCRIBE_REASON,
    NewsletterSubscription,
    SubscriptionMetadata,
    SubscriptionStatus,
)

CREATED = datetime(2025, 1, 10, 8, 30, tzinfo=timezone.utc)
LATER = CREATED + timedelta(days=3)


@pytest.fixture
def subscription() -> NewsletterSubscription:
    """An active subscription created from the footer form."""
    return NewsletterSubscription(
        subscription_id="3f1c2a9e-0000-4000-8000-000000000001",
        email=" Foo@Bar.com ",
        metadata=SubscriptionMetadata(
            timestamp=CREATED,
            user_agent="Mozilla/5.0",
            ip_address="203.0.113.7",
            source_page="footer",
        ),
    )


class TestInvariant:
    """is_active and metadata.status move in lockstep."""

    def test_new_subscription_is_active(self, subscription: NewsletterSubscription) -> None:
        assert subscription.is_active
        assert subscription.metadata.status is SubscriptionStatus.SUBSCRIBED
        assert subscription.is_subscribed

    def test_email_is_normalized(self, subscription: NewsletterSubscription) -> None:
        assert subscription.email == "foo@bar.com"

    def test_inconsistent_state_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="inconsistent"):
            NewsletterSubscription(
                subscription_id="s-1",
                email="a@b.co",
                is_active=True,
                metadata=SubscriptionMetadata(
                    timestamp=CREATED, status=SubscriptionStatus.UNSUBSCRIBED
                ),
            )

    def test_inactive_subscribed_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            NewsletterSubscription(
                subscription_id="s-1",
                email="a@b.co",
                is_active=False,
                metadata=SubscriptionMetadata(timestamp=CREATED),
            )


class TestUnsubscribe:
    def test_unsubscribe_records_time_and_reason(
        self, subscription: NewsletterSubscription
    ) -> None:
        subscription.unsubscribe(LATER, "Too many emails")

        assert not subscription.is_active
        assert subscription.metadata.status is SubscriptionStatus.UNSUBSCRIBED
        assert subscription.unsubscribed_at == LATER
        assert subscription.unsubscribe_reason == "Too many emails"

    def test_unsubscribe_without_reason_uses_default(
        self, subscription: NewsletterSubscription
    ) -> None:
        subscription.unsubscribe(LATER)
        assert subscription.unsubscribe_reason == DEFAULT_UNSUBSCRIBE_REASON

    def test_unsubscribe_twice_fails(self, subscription: NewsletterSubscription) -> None:
        subscription.unsubscribe(LATER)
        with pytest.raises(InvalidTransitionError):
            subscription.unsubscribe(LATER)

    def test_bounced_subscription_can_be_unsubscribed(
        self, subscription: NewsletterSubscription
    ) -> None:
        subscription.mark_bounced()
        subscription.unsubscribe(LATER)
        assert subscription.metadata.status is SubscriptionStatus.UNSUBSCRIBED
        assert not subscription.is_active


class TestReactivate:
    def test_reactivate_restores_subscribed_state(
        self, subscription: NewsletterSubscription
    ) -> None:
        subscription.unsubscribe(LATER, "Busy")
        reactivated_at = LATER + timedelta(days=1)

        ignored = subscription.reactivate(reactivated_at)

        assert ignored == []
        assert subscription.is_subscribed
        assert subscription.metadata.timestamp == reactivated_at
        assert subscription.unsubscribed_at is None
        assert subscription.unsubscribe_reason is None

    def test_reactivate_merges_only_known_metadata(
        self, subscription: NewsletterSubscription
    ) -> None:
        subscription.unsubscribe(LATER)

        ignored = subscription.reactivate(
            LATER,
            {
                "source_page": "pricing",
                "ip_address": "198.51.100.4",
                "utm_campaign": "spring",
                "status": "bounced",
            },
        )

        assert sorted(ignored) == ["status", "utm_campaign"]
        assert subscription.metadata.source_page == "pricing"
        assert subscription.metadata.ip_address == "198.51.100.4"
        assert subscription.metadata.user_agent == "Mozilla/5.0"
        assert subscription.metadata.status is SubscriptionStatus.SUBSCRIBED
        assert not hasattr(subscription.metadata, "utm_campaign")

    def test_reactivate_active_subscription_fails(
        self, subscription: NewsletterSubscription
    ) -> None:
        with pytest.raises(InvalidTransitionError):
            subscription.reactivate(LATER)

    def test_resubscribe_keeps_metadata(self, subscription: NewsletterSubscription) -> None:
        subscription.mark_bounced()
        subscription.resubscribe(LATER)

        assert subscription.is_subscribed
        assert subscription.metadata.source_page == "footer"
        assert subscription.metadata.timestamp == LATER


class TestBounce:
    def test_mark_bounced_deactivates(self, subscription: NewsletterSubscription) -> None:
        subscription.mark_bounced()
        assert subscription.metadata.status is SubscriptionStatus.BOUNCED
        assert not subscription.is_active
        assert not subscription.is_subscribed

    def test_mark_bounced_twice_fails(self, subscription: NewsletterSubscription) -> None:
        subscription.mark_bounced()
        with pytest.raises(InvalidTransitionError):
            subscription.mark_bounced()

    def test_unsubscribed_subscription_can_bounce(
        self, subscription: NewsletterSubscription
    ) -> None:
        subscription.unsubscribe(LATER)
        subscription.mark_bounced()
        assert subscription.metadata.status is SubscriptionStatus.BOUNCED
