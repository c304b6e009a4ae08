"""Intake service: implements IntakePort for the public site forms."""

from .contacts import ContactService
from .models import Contact, NewsletterSubscription, Registration, SubscribeOutcome
from .ports import IntakePort
from .registrations import RegistrationService
from .subscriptions import SubscriptionService
from .validation import ContactForm, RegistrationForm, RequestContext, SubscribeForm


class IntakeService(IntakePort):
    """Single entry point for the three public forms."""

    def __init__(
        self,
        contacts: ContactService,
        registrations: RegistrationService,
        subscriptions: SubscriptionService,
    ):
        self.contacts = contacts
        self.registrations = registrations
        self.subscriptions = subscriptions

    async def submit_contact(self, form: ContactForm, context: RequestContext) -> Contact:
        return await self.contacts.submit(form, context)

    async def register(
        self, form: RegistrationForm, context: RequestContext
    ) -> Registration:
        return await self.registrations.register(form, context)

    async def verify_registration(self, identifier: str) -> Registration:
        return await self.registrations.verify(identifier)

    async def subscribe(
        self, form: SubscribeForm, context: RequestContext
    ) -> SubscribeOutcome:
        return await self.subscriptions.subscribe(form, context)

    async def unsubscribe(
        self, identifier: str, reason: str | None = None
    ) -> NewsletterSubscription:
        return await self.subscriptions.unsubscribe(identifier, reason)

    async def resubscribe(self, identifier: str) -> NewsletterSubscription:
        """Reactivate and resend the welcome email."""
        return await self.subscriptions.resubscribe(identifier)
