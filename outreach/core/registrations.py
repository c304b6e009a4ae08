"""Conference registration intake."""

import logging
import secrets
from collections.abc import Callable
from datetime import datetime

from .documents import (
    format_timestamp,
    registration_from_document,
    registration_to_document,
)
from .errors import (
    AlreadyRegisteredError,
    AlreadySubscribedError,
    DuplicateKeyError,
    OutreachError,
    RegistrationNumberExhaustedError,
)
from .identifiers import RecordResolver, new_token
from .models import (
    EntityKind,
    Experience,
    Registration,
    RegistrationMetadata,
    utcnow,
)
from .notifier import MailingContext, NotificationDispatcher, NotificationJob
from .ports import EntityStorePort
from .subscriptions import SubscriptionService
from .validation import RegistrationForm, RequestContext, SubscribeForm

logger = logging.getLogger(__name__)

REGISTRATION = EntityKind.REGISTRATION


def make_registration_number(prefix: str, now: datetime) -> str:
    """``<prefix><year><4 random digits>``, e.g. TGS20250042."""
    return f"{prefix}{now.year}{secrets.randbelow(10_000):04d}"


class RegistrationService:
    """Creates registrations and allocates their registration numbers.

    Registration numbers are short and random, so collisions happen; a
    collision on ``registration_number`` is retried with a fresh number up
    to ``max_number_attempts`` times. A collision on ``email`` is never
    retried and surfaces as AlreadyRegisteredError.
    """

    def __init__(
        self,
        store: EntityStorePort,
        resolver: RecordResolver,
        dispatcher: NotificationDispatcher,
        subscriptions: SubscriptionService,
        mailing: MailingContext,
        number_prefix: str = "TGS",
        max_number_attempts: int = 5,
        number_factory: Callable[[str, datetime], str] = make_registration_number,
        clock: Callable[[], datetime] = utcnow,
    ):
        if max_number_attempts < 1:
            raise ValueError("max_number_attempts must be at least 1")
        self.store = store
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.subscriptions = subscriptions
        self.mailing = mailing
        self.number_prefix = number_prefix
        self.max_number_attempts = max_number_attempts
        self.number_factory = number_factory
        self.clock = clock

    async def register(
        self, form: RegistrationForm, context: RequestContext
    ) -> Registration:
        """Validate, store and acknowledge a registration.

        Raises:
            ValidationFailedError: If the form is invalid.
            AlreadyRegisteredError: If the email is already registered.
            RegistrationNumberExhaustedError: If every number attempt collided.
        """
        form = form.validate()

        if await self.store.find_one(REGISTRATION, {"email": form.email}) is not None:
            raise AlreadyRegisteredError(form.email)

        now = self.clock()
        registration = Registration(
            registration_id=new_token(),
            first_name=form.first_name,
            last_name=form.last_name,
            email=form.email,
            phone=form.phone,
            experience=Experience(form.experience),
            registration_number="",
            metadata=RegistrationMetadata(
                timestamp=now,
                event_id=self.mailing.event_id,
                user_agent=context.user_agent,
                ip_address=context.ip_address,
            ),
            company=form.company,
            job_title=form.job_title,
            interests=frozenset(form.interests),
            expectations=form.expectations,
            newsletter=form.newsletter,
            terms=form.terms,
        )
        registration = await self._insert(registration, now)

        logger.info(
            f"New conference registration from {registration.email}",
            extra={
                "registration_id": registration.registration_id,
                "registration_number": registration.registration_number,
                "experience": registration.experience.value,
            },
        )

        if registration.newsletter:
            await self._subscribe_to_newsletter(registration, context)

        self._notify_registered(registration)
        return registration

    async def verify(self, identifier: str) -> Registration:
        """Look up a registration by public token or registration number.

        Raises:
            NotFoundError: If nothing matches.
        """
        document = await self.resolver.get(REGISTRATION, identifier)
        return registration_from_document(document)

    async def _insert(self, registration: Registration, now: datetime) -> Registration:
        for attempt in range(1, self.max_number_attempts + 1):
            registration.registration_number = self.number_factory(self.number_prefix, now)
            try:
                stored = await self.store.create(
                    REGISTRATION, registration_to_document(registration)
                )
            except DuplicateKeyError as e:
                if e.field == "email":
                    raise AlreadyRegisteredError(registration.email) from e
                if e.field != "registration_number":
                    raise
                logger.warning(
                    f"Registration number {registration.registration_number} taken, "
                    f"retrying (attempt {attempt}/{self.max_number_attempts})"
                )
                continue
            return registration_from_document(stored)

        raise RegistrationNumberExhaustedError(self.max_number_attempts)

    async def _subscribe_to_newsletter(
        self, registration: Registration, context: RequestContext
    ) -> None:
        try:
            await self.subscriptions.subscribe(
                SubscribeForm(email=registration.email),
                RequestContext(
                    user_agent=context.user_agent,
                    ip_address=context.ip_address,
                    source_page="registration",
                ),
                source="registration_form",
            )
        except AlreadySubscribedError:
            logger.info(f"{registration.email} is already subscribed to the newsletter")
        except OutreachError as e:
            logger.warning(
                f"Newsletter subscription failed for {registration.email}: {e}",
                extra={"registration_id": registration.registration_id},
            )
        else:
            logger.info(
                f"Newsletter subscription added for {registration.email} via registration"
            )

    def _notify_registered(self, registration: Registration) -> None:
        predicate = {"registration_id": registration.registration_id}
        variables = {
            "first_name": registration.first_name,
            "last_name": registration.last_name,
            "full_name": registration.full_name,
            "email": registration.email,
            "phone": registration.phone,
            "company": registration.company,
            "job_title": registration.job_title,
            "experience": registration.experience.value,
            "interests": sorted(registration.interests),
            "expectations": registration.expectations,
            "newsletter": registration.newsletter,
            "registration_number": registration.registration_number,
            "registration_id": registration.registration_id,
            "ip_address": registration.metadata.ip_address,
            "timestamp": format_timestamp(registration.metadata.timestamp),
            "event_name": self.mailing.event_name,
            "event_date": self.mailing.event_date,
            "site_url": self.mailing.site_url,
        }
        jobs = [
            NotificationJob(
                template="registration_confirmation",
                recipient=registration.email,
                variables=variables,
                kind=REGISTRATION,
                predicate=predicate,
                flag="confirmation_email_sent",
            )
        ]
        jobs.extend(
            self.mailing.admin_jobs(
                "registration_admin_notification", variables, REGISTRATION, predicate
            )
        )
        self.dispatcher.dispatch(
            jobs, f"registration {registration.registration_id}"
        )
