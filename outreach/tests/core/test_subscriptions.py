"""Unit tests for the newsletter subscription service.

Exercises subscribe / unsubscribe / resubscribe / bounce through the
intake and dashboard entry points against the in-memory fakes,
including concurrent requests for the same email.
"""

import asyncio

import pytest

from outreach.core.errors import (
    AlreadySubscribedError,
    AlreadyUnsubscribedError,
    NotFoundError,
    ValidationFailedError,
)
from outreach.core.models import (
    DEFAULT_TOPICS,
    EntityKind,
    Frequency,
    Preferences,
    SubscriptionStatus,
)
from outreach.core.validation import RequestContext, SubscribeForm
from outreach.tests.fakes import ADMIN_EMAIL, Harness, make_harness

NEWSLETTER = EntityKind.NEWSLETTER


@pytest.fixture
def harness() -> Harness:
    return make_harness()


def footer() -> RequestContext:
    return RequestContext(
        user_agent="Mozilla/5.0", ip_address="203.0.113.7", source_page="footer"
    )


@pytest.mark.asyncio
class TestSubscribe:
    async def test_new_subscription(self, harness: Harness) -> None:
        outcome = await harness.intake.subscribe(
            SubscribeForm(email="reader@example.com"), footer()
        )

        subscription = outcome.subscription
        assert outcome.created
        assert subscription.is_active
        assert subscription.metadata.status is SubscriptionStatus.SUBSCRIBED
        assert subscription.metadata.source_page == "footer"
        assert subscription.metadata.source == "newsletter_subscription"
        assert subscription.preferences.frequency is Frequency.WEEKLY
        assert subscription.preferences.topics == DEFAULT_TOPICS
        assert subscription.internal_id is not None

    async def test_missing_source_page_is_recorded_as_unknown(self, harness: Harness) -> None:
        outcome = await harness.intake.subscribe(
            SubscribeForm(email="reader@example.com"), RequestContext()
        )
        assert outcome.subscription.metadata.source_page == "unknown"

    async def test_supplied_preferences_are_kept(self, harness: Harness) -> None:
        outcome = await harness.subscriptions.subscribe(
            SubscribeForm(email="reader@example.com"),
            footer(),
            preferences=Preferences(Frequency.DAILY, frozenset({"ai-finance"})),
            tags=["vip"],
        )
        assert outcome.subscription.preferences.frequency is Frequency.DAILY
        assert outcome.subscription.preferences.topics == frozenset({"ai-finance"})
        assert outcome.subscription.tags == frozenset({"vip"})

    async def test_invalid_email_is_rejected(self, harness: Harness) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            await harness.intake.subscribe(SubscribeForm(email="not-an-email"), footer())
        assert "email" in exc_info.value.errors
        assert harness.store.documents(NEWSLETTER) == []

    async def test_welcome_and_admin_emails_are_sent(self, harness: Harness) -> None:
        outcome = await harness.intake.subscribe(
            SubscribeForm(email="reader@example.com"), footer()
        )
        await harness.dispatcher.drain()

        welcome = harness.notification.sent_to("reader@example.com")
        assert [e.template for e in welcome] == ["newsletter_welcome"]
        token = outcome.subscription.subscription_id
        assert welcome[0].variables["unsubscribe_url"] == (
            f"https://techgrid.test/api/newsletter/unsubscribe?token={token}"
        )
        admin = harness.notification.sent_to(ADMIN_EMAIL)
        assert [e.template for e in admin] == ["newsletter_admin_notification"]

        stored = await harness.store.find_one(NEWSLETTER, {"subscription_id": token})
        assert stored is not None
        assert stored["welcome_email_sent"] is True
        assert stored["welcome_email_sent_at"] is not None
        assert stored["admin_notified"] is True

    async def test_notification_failure_does_not_fail_subscribe(
        self, harness: Harness
    ) -> None:
        harness.notification.should_raise = True

        outcome = await harness.intake.subscribe(
            SubscribeForm(email="reader@example.com"), footer()
        )
        await harness.dispatcher.drain()

        assert outcome.created
        stored = harness.store.documents(NEWSLETTER)[0]
        assert stored["is_active"] is True
        assert stored["welcome_email_sent"] is False


@pytest.mark.asyncio
class TestLifecycle:
    """The subscribe / unsubscribe / subscribe round trip for one address."""

    async def test_full_round_trip_keeps_one_record(self, harness: Harness) -> None:
        first = await harness.intake.subscribe(SubscribeForm(email="Foo@Bar.com"), footer())
        assert first.subscription.email == "foo@bar.com"

        with pytest.raises(AlreadySubscribedError):
            await harness.intake.subscribe(SubscribeForm(email="FOO@bar.COM "), footer())

        unsubscribed = await harness.intake.unsubscribe("foo@bar.com", "Too many emails")
        assert not unsubscribed.is_active
        assert unsubscribed.metadata.status is SubscriptionStatus.UNSUBSCRIBED
        assert unsubscribed.unsubscribed_at is not None
        assert unsubscribed.unsubscribe_reason == "Too many emails"

        with pytest.raises(AlreadyUnsubscribedError):
            await harness.intake.unsubscribe("foo@bar.com")

        again = await harness.intake.subscribe(
            SubscribeForm(email="foo@bar.com"), RequestContext(source_page="blog")
        )
        assert not again.created
        assert again.subscription.subscription_id == first.subscription.subscription_id
        assert again.subscription.is_active
        assert again.subscription.metadata.status is SubscriptionStatus.SUBSCRIBED
        assert again.subscription.metadata.source_page == "blog"
        assert again.subscription.unsubscribed_at is None
        assert again.subscription.unsubscribe_reason is None

        assert await harness.store.count_documents(NEWSLETTER) == 1

    async def test_unsubscribe_by_token(self, harness: Harness) -> None:
        outcome = await harness.intake.subscribe(
            SubscribeForm(email="reader@example.com"), footer()
        )
        result = await harness.intake.unsubscribe(outcome.subscription.subscription_id)
        assert result.unsubscribe_reason == "User requested"

    async def test_unsubscribe_unknown_identifier(self, harness: Harness) -> None:
        with pytest.raises(NotFoundError):
            await harness.intake.unsubscribe("nobody@example.com")

    async def test_reactivation_ignores_unknown_metadata(self, harness: Harness) -> None:
        await harness.intake.subscribe(SubscribeForm(email="reader@example.com"), footer())
        await harness.intake.unsubscribe("reader@example.com")

        await harness.subscriptions.subscribe(
            SubscribeForm(email="reader@example.com"),
            footer(),
            metadata={"utm_campaign": "spring", "source_page": "pricing"},
        )

        stored = harness.store.documents(NEWSLETTER)[0]
        assert "utm_campaign" not in stored["metadata"]
        assert stored["metadata"]["source_page"] == "pricing"
        assert stored["metadata"]["status"] == "subscribed"

    async def test_resubscribe_sends_welcome_again(self, harness: Harness) -> None:
        await harness.intake.subscribe(SubscribeForm(email="reader@example.com"), footer())
        await harness.intake.unsubscribe("reader@example.com")

        subscription = await harness.intake.resubscribe("READER@example.com")
        await harness.dispatcher.drain()

        assert subscription.is_subscribed
        welcomes = [
            e for e in harness.notification.sent_to("reader@example.com")
            if e.template == "newsletter_welcome"
        ]
        assert len(welcomes) == 2

    async def test_resubscribe_active_subscription_fails(self, harness: Harness) -> None:
        await harness.intake.subscribe(SubscribeForm(email="reader@example.com"), footer())
        with pytest.raises(AlreadySubscribedError):
            await harness.intake.resubscribe("reader@example.com")

    async def test_bounced_subscription(self, harness: Harness) -> None:
        await harness.intake.subscribe(SubscribeForm(email="reader@example.com"), footer())

        bounced = await harness.subscriptions.mark_bounced("reader@example.com")
        assert bounced.metadata.status is SubscriptionStatus.BOUNCED
        assert not bounced.is_active
        assert not await harness.subscriptions.is_subscribed("reader@example.com")

        with pytest.raises(AlreadyUnsubscribedError):
            await harness.intake.unsubscribe("reader@example.com")

        again = await harness.intake.subscribe(
            SubscribeForm(email="reader@example.com"), footer()
        )
        assert not again.created
        assert again.subscription.is_subscribed

    async def test_set_active_drives_state_machine(self, harness: Harness) -> None:
        await harness.intake.subscribe(SubscribeForm(email="reader@example.com"), footer())

        off = await harness.subscriptions.set_active("reader@example.com", False)
        assert off.metadata.status is SubscriptionStatus.UNSUBSCRIBED
        assert off.unsubscribe_reason == "Admin action"

        unchanged = await harness.subscriptions.set_active("reader@example.com", False)
        assert unchanged.unsubscribed_at == off.unsubscribed_at

        on = await harness.subscriptions.set_active("reader@example.com", True)
        assert on.is_subscribed

        await harness.dispatcher.drain()
        assert harness.notification.templates().count("newsletter_welcome") == 2

    async def test_set_active_rejects_strings(self, harness: Harness) -> None:
        await harness.intake.subscribe(SubscribeForm(email="reader@example.com"), footer())

        with pytest.raises(ValidationFailedError):
            await harness.subscriptions.set_active("reader@example.com", "false")

        assert await harness.subscriptions.is_subscribed("reader@example.com")

    async def test_is_subscribed_ignores_case(self, harness: Harness) -> None:
        await harness.intake.subscribe(SubscribeForm(email="reader@example.com"), footer())
        assert await harness.subscriptions.is_subscribed(" Reader@Example.COM")
        assert not await harness.subscriptions.is_subscribed("other@example.com")


@pytest.mark.asyncio
class TestConcurrency:
    async def test_concurrent_subscribe_creates_one_record(self, harness: Harness) -> None:
        results = await asyncio.gather(
            harness.intake.subscribe(SubscribeForm(email="race@example.com"), footer()),
            harness.intake.subscribe(SubscribeForm(email="RACE@example.com"), footer()),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], AlreadySubscribedError)
        assert await harness.store.count_documents(NEWSLETTER) == 1

    async def test_concurrent_reactivation_succeeds_once(self, harness: Harness) -> None:
        await harness.intake.subscribe(SubscribeForm(email="race@example.com"), footer())
        await harness.intake.unsubscribe("race@example.com")

        results = await asyncio.gather(
            harness.intake.subscribe(SubscribeForm(email="race@example.com"), footer()),
            harness.intake.subscribe(SubscribeForm(email="race@example.com"), footer()),
            return_exceptions=True,
        )

        outcomes = [r for r in results if not isinstance(r, BaseException)]
        assert len(outcomes) == 1
        assert not outcomes[0].created
        assert sum(isinstance(r, AlreadySubscribedError) for r in results) == 1

    async def test_concurrent_unsubscribe_succeeds_once(self, harness: Harness) -> None:
        await harness.intake.subscribe(SubscribeForm(email="race@example.com"), footer())

        results = await asyncio.gather(
            harness.intake.unsubscribe("race@example.com"),
            harness.intake.unsubscribe("race@example.com"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, AlreadyUnsubscribedError) for r in results) == 1
        stored = harness.store.documents(NEWSLETTER)[0]
        assert stored["is_active"] is False
        assert stored["metadata"]["status"] == "unsubscribed"
