"""CLI command implementations for the outreach backend.

Provides public form submissions and admin dashboard actions through a
command-line interface.

This adapter maps CLI commands to IntakePort and DashboardService
operations. It handles CLI-specific argument parsing, output formatting
and error reporting: every expected failure (an OutreachError) becomes a
``{"status": "error", ...}`` dictionary instead of an exception.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from outreach.core.dashboard_service import DashboardService
from outreach.core.documents import (
    contact_to_document,
    format_timestamp,
    registration_to_document,
    subscription_to_document,
    template_to_document,
)
from outreach.core.errors import OutreachError, ValidationFailedError
from outreach.core.models import (
    TOPIC_TAGS,
    Actor,
    BulkSendResult,
    Contact,
    DashboardOverview,
    EmailTemplate,
    Frequency,
    NewsletterSubscription,
    Page,
    Preferences,
    Registration,
    RegistrationView,
    ReplyResult,
    SubscribeOutcome,
)
from outreach.core.ports import IntakePort
from outreach.core.validation import (
    ContactForm,
    RegistrationForm,
    RequestContext,
    SubscribeForm,
)

logger = logging.getLogger(__name__)

CLI_USER_AGENT = "outreach-cli"


# ============================================================================
# Output rendering
# ============================================================================


def _stored(document: dict[str, Any], record: Any) -> dict[str, Any]:
    document["id"] = record.internal_id
    document["created_at"] = format_timestamp(record.created_at)
    document["updated_at"] = format_timestamp(record.updated_at)
    return document


def render_contact(contact: Contact) -> dict[str, Any]:
    return _stored(contact_to_document(contact), contact)


def render_registration(registration: Registration) -> dict[str, Any]:
    return _stored(registration_to_document(registration), registration)


def render_registration_view(view: RegistrationView) -> dict[str, Any]:
    data = render_registration(view.registration)
    data["newsletter_subscribed"] = view.newsletter_subscribed
    return data


def render_subscription(subscription: NewsletterSubscription) -> dict[str, Any]:
    return _stored(subscription_to_document(subscription), subscription)


def render_template(template: EmailTemplate) -> dict[str, Any]:
    return _stored(template_to_document(template), template)


def render_page(page: Page[Any], render: Callable[[Any], dict[str, Any]]) -> dict[str, Any]:
    return {
        "items": [render(item) for item in page.items],
        "pagination": {
            "page": page.page,
            "limit": page.limit,
            "total": page.total,
            "pages": page.pages,
        },
    }


def render_overview(overview: DashboardOverview) -> dict[str, Any]:
    contacts, registrations, newsletter = (
        overview.contacts,
        overview.registrations,
        overview.newsletter,
    )
    return {
        "contacts": {
            "total": contacts.total,
            "by_status": dict(contacts.by_status),
            "emails_sent": contacts.emails_sent,
            "admin_notified": contacts.admin_notified,
        },
        "registrations": {
            "total": registrations.total,
            "by_status": dict(registrations.by_status),
            "by_experience": dict(registrations.by_experience),
            "confirmations_sent": registrations.confirmations_sent,
            "admin_notified": registrations.admin_notified,
            "newsletter_opt_ins": registrations.newsletter_opt_ins,
        },
        "newsletter": {
            "total": newsletter.total,
            "active": newsletter.active,
            "by_status": dict(newsletter.by_status),
            "welcomes_sent": newsletter.welcomes_sent,
            "admin_notified": newsletter.admin_notified,
        },
        "recent": {
            "contacts": [render_contact(c) for c in overview.recent.contacts],
            "registrations": [render_registration(r) for r in overview.recent.registrations],
            "subscriptions": [render_subscription(s) for s in overview.recent.subscriptions],
        },
    }


def render_outcome(outcome: SubscribeOutcome) -> dict[str, Any]:
    return {
        "created": outcome.created,
        "subscription": render_subscription(outcome.subscription),
    }


def render_reply(result: ReplyResult) -> dict[str, Any]:
    return {"delivered": result.delivered, "contact": render_contact(result.contact)}


def render_bulk(result: BulkSendResult) -> dict[str, Any]:
    return {
        "sent": result.sent,
        "failed": result.failed,
        "total": result.total,
        "failed_recipients": list(result.failed_recipients),
    }


# ============================================================================
# Argument parsing
# ============================================================================


def parse_preferences(raw: Mapping[str, Any] | None) -> Preferences | None:
    """Build Preferences from CLI arguments.

    Raises:
        ValidationFailedError: On an unknown frequency or topic.
    """
    if raw is None:
        return None
    errors: dict[str, list[str]] = {}
    frequency = Frequency.WEEKLY
    try:
        frequency = Frequency(raw.get("frequency", Frequency.WEEKLY.value))
    except ValueError:
        allowed = ", ".join(f.value for f in Frequency)
        errors["frequency"] = [f"Frequency must be one of: {allowed}"]
    topics = frozenset(raw.get("topics") or ())
    unknown = sorted(topics - TOPIC_TAGS)
    if unknown:
        errors["topics"] = [f"Invalid topics: {', '.join(unknown)}"]
    if errors:
        raise ValidationFailedError(errors)
    return Preferences(frequency=frequency, topics=topics)


def _context(args: Mapping[str, Any]) -> RequestContext:
    return RequestContext(
        user_agent=CLI_USER_AGENT,
        ip_address=args.get("ip_address", ""),
        source_page=args.get("source_page", "cli"),
    )


def _contact_form(args: Mapping[str, Any]) -> ContactForm:
    return ContactForm(
        name=args.get("name", ""),
        email=args.get("email", ""),
        phone=args.get("phone", ""),
        subject=args.get("subject", ""),
        message=args.get("message", ""),
    )


def _registration_form(args: Mapping[str, Any]) -> RegistrationForm:
    return RegistrationForm(
        first_name=args.get("first_name", ""),
        last_name=args.get("last_name", ""),
        email=args.get("email", ""),
        phone=args.get("phone", ""),
        experience=args.get("experience", ""),
        terms=args.get("terms", False),
        company=args.get("company", ""),
        job_title=args.get("job_title", ""),
        interests=tuple(args.get("interests") or ()),
        expectations=args.get("expectations", ""),
        newsletter=args.get("newsletter", False),
    )


# ============================================================================
# Command handler
# ============================================================================


class CLICommandHandler:
    """Handles CLI commands by delegating to the intake and dashboard services.

    Dashboard commands run on behalf of the actor given at construction.
    """

    def __init__(self, intake: IntakePort, dashboard: DashboardService, actor: Actor):
        """Initialize the CLI command handler.

        Args:
            intake: IntakePort implementation for public form commands.
            dashboard: Dashboard service for admin commands.
            actor: The admin on whose behalf dashboard commands run.
        """
        self.intake = intake
        self.dashboard = dashboard
        self.actor = actor

    async def _run(
        self,
        operation: str,
        call: Callable[[], Awaitable[Any]],
        render: Callable[[Any], Any],
        message: str | None = None,
    ) -> dict[str, Any]:
        """Execute one operation and wrap its outcome for the terminal."""
        try:
            value = await call()
        except OutreachError as e:
            logger.error(f"{operation} failed: {e}")
            result: dict[str, Any] = {
                "status": "error",
                "operation": operation,
                "code": e.code,
                "message": str(e),
            }
            if isinstance(e, ValidationFailedError):
                result["errors"] = e.errors
            return result
        except ValueError as e:
            logger.error(f"{operation} failed: {e}")
            return {
                "status": "error",
                "operation": operation,
                "code": "validation_failed",
                "message": str(e),
            }

        result = {"status": "success", "operation": operation, "data": render(value)}
        if message:
            result["message"] = message
        return result

    # ------------------------------------------------------------------
    # Public intake
    # ------------------------------------------------------------------

    async def submit_contact(self, args: Mapping[str, Any]) -> dict[str, Any]:
        """Submit the contact form."""
        return await self._run(
            "contact",
            lambda: self.intake.submit_contact(_contact_form(args), _context(args)),
            render_contact,
            "Thank you for your message. We will get back to you soon!",
        )

    async def register(self, args: Mapping[str, Any]) -> dict[str, Any]:
        """Submit the conference registration form."""
        return await self._run(
            "register",
            lambda: self.intake.register(_registration_form(args), _context(args)),
            render_registration,
            "Registration successful! Check your email for confirmation.",
        )

    async def verify_registration(self, identifier: str) -> dict[str, Any]:
        return await self._run(
            "verify",
            lambda: self.intake.verify_registration(identifier),
            render_registration,
        )

    async def subscribe(self, args: Mapping[str, Any]) -> dict[str, Any]:
        return await self._run(
            "subscribe",
            lambda: self.intake.subscribe(
                SubscribeForm(email=args.get("email", "")), _context(args)
            ),
            render_outcome,
        )

    async def unsubscribe(self, identifier: str, reason: str | None = None) -> dict[str, Any]:
        return await self._run(
            "unsubscribe",
            lambda: self.intake.unsubscribe(identifier, reason),
            render_subscription,
            "Successfully unsubscribed from newsletter",
        )

    async def resubscribe(self, identifier: str) -> dict[str, Any]:
        return await self._run(
            "resubscribe",
            lambda: self.intake.resubscribe(identifier),
            render_subscription,
            "Successfully resubscribed to newsletter",
        )

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    async def overview(self, output_format: str = "json") -> dict[str, Any]:
        """Dashboard statistics, as JSON or as human-readable text."""
        if output_format not in ("json", "text"):
            return {
                "status": "error",
                "operation": "overview",
                "message": f"Unsupported format: {output_format}",
            }
        render = render_overview if output_format == "json" else self._format_overview_as_text
        return await self._run(
            "overview", lambda: self.dashboard.overview(self.actor), render
        )

    async def list_records(self, entity: str, args: Mapping[str, Any]) -> dict[str, Any]:
        """List contacts, registrations or subscriptions with paging and search."""
        page = int(args.get("page", 1))
        limit = int(args.get("limit", 10))
        search = args.get("search")
        if entity == "contacts":
            return await self._run(
                "list_contacts",
                lambda: self.dashboard.list_contacts(
                    self.actor, page, limit, search, args.get("status")
                ),
                lambda p: render_page(p, render_contact),
            )
        if entity == "registrations":
            return await self._run(
                "list_registrations",
                lambda: self.dashboard.list_registrations(
                    self.actor, page, limit, search, args.get("status"), args.get("experience")
                ),
                lambda p: render_page(p, render_registration_view),
            )
        if entity == "subscriptions":
            return await self._run(
                "list_subscriptions",
                lambda: self.dashboard.list_subscriptions(
                    self.actor, page, limit, search, args.get("status"), args.get("active")
                ),
                lambda p: render_page(p, render_subscription),
            )
        if entity == "templates":
            return await self._run(
                "list_templates",
                lambda: self.dashboard.list_templates(self.actor),
                lambda templates: [render_template(t) for t in templates],
            )
        return {
            "status": "error",
            "operation": "list",
            "message": f"Unknown entity: {entity}",
        }

    async def get_details(self, entity: str, identifier: str) -> dict[str, Any]:
        """Fetch one record by any accepted identifier."""
        if entity == "contact":
            return await self._run(
                "details",
                lambda: self.dashboard.get_contact(self.actor, identifier),
                render_contact,
            )
        if entity == "registration":
            return await self._run(
                "details",
                lambda: self.dashboard.get_registration(self.actor, identifier),
                render_registration_view,
            )
        if entity == "subscription":
            return await self._run(
                "details",
                lambda: self.dashboard.get_subscription(self.actor, identifier),
                render_subscription,
            )
        return {
            "status": "error",
            "operation": "details",
            "message": f"Unknown entity: {entity}",
        }

    async def set_status(self, entity: str, identifier: str, status: str) -> dict[str, Any]:
        """Change a contact or registration status, or bounce a subscription."""
        if entity == "contact":
            return await self._run(
                "status",
                lambda: self.dashboard.update_contact_status(self.actor, identifier, status),
                render_contact,
                f"Contact {identifier} is now {status}",
            )
        if entity == "registration":
            return await self._run(
                "status",
                lambda: self.dashboard.update_registration_status(
                    self.actor, identifier, status
                ),
                render_registration,
                f"Registration {identifier} is now {status}",
            )
        if entity == "subscription" and status == "bounced":
            return await self._run(
                "status",
                lambda: self.dashboard.mark_subscription_bounced(self.actor, identifier),
                render_subscription,
                f"Subscription {identifier} marked as bounced",
            )
        return {
            "status": "error",
            "operation": "status",
            "message": f"Cannot set status {status!r} on {entity}",
        }

    async def update_record(
        self, entity: str, identifier: str, changes: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Edit fields of a contact, registration or subscription."""
        if entity == "contact":
            return await self._run(
                "update",
                lambda: self.dashboard.update_contact(self.actor, identifier, changes),
                render_contact,
            )
        if entity == "registration":
            return await self._run(
                "update",
                lambda: self.dashboard.update_registration(self.actor, identifier, changes),
                render_registration,
            )
        if entity == "subscription":

            async def update_subscription() -> NewsletterSubscription:
                return await self.dashboard.update_subscription(
                    self.actor,
                    identifier,
                    email=changes.get("email"),
                    is_active=changes.get("is_active"),
                    preferences=parse_preferences(changes.get("preferences")),
                )

            return await self._run("update", update_subscription, render_subscription)
        return {
            "status": "error",
            "operation": "update",
            "message": f"Unknown entity: {entity}",
        }

    async def add_contact(self, args: Mapping[str, Any]) -> dict[str, Any]:
        return await self._run(
            "add_contact",
            lambda: self.dashboard.add_contact(self.actor, _contact_form(args)),
            render_contact,
        )

    async def reply_to_contact(
        self, identifier: str, subject: str, message: str
    ) -> dict[str, Any]:
        """Email a reply to a contact; an undelivered reply is reported as an error."""
        result = await self._run(
            "reply",
            lambda: self.dashboard.reply_to_contact(self.actor, identifier, subject, message),
            render_reply,
        )
        if result["status"] == "success" and not result["data"]["delivered"]:
            result["status"] = "error"
            result["message"] = "Failed to send reply email"
        return result

    async def add_registration_to_newsletter(self, identifier: str) -> dict[str, Any]:
        return await self._run(
            "add_to_newsletter",
            lambda: self.dashboard.add_registration_to_newsletter(self.actor, identifier),
            render_outcome,
        )

    async def delete_record(self, entity: str, identifier: str) -> dict[str, Any]:
        """Delete one record and return what was removed."""
        if entity == "contact":
            return await self._run(
                "delete",
                lambda: self.dashboard.delete_contact(self.actor, identifier),
                render_contact,
                f"Contact {identifier} deleted",
            )
        if entity == "registration":
            return await self._run(
                "delete",
                lambda: self.dashboard.delete_registration(self.actor, identifier),
                render_registration,
                f"Registration {identifier} deleted",
            )
        if entity == "subscription":
            return await self._run(
                "delete",
                lambda: self.dashboard.delete_subscription(self.actor, identifier),
                render_subscription,
                f"Subscription {identifier} deleted",
            )
        return {
            "status": "error",
            "operation": "delete",
            "message": f"Unknown entity: {entity}",
        }

    async def create_template(self, subject: str, body: str) -> dict[str, Any]:
        return await self._run(
            "create_template",
            lambda: self.dashboard.create_template(self.actor, subject, body),
            render_template,
        )

    async def send_bulk_email(
        self, subject: str, body: str, template_id: str | None = None
    ) -> dict[str, Any]:
        return await self._run(
            "bulk",
            lambda: self.dashboard.send_bulk_email(self.actor, subject, body, template_id),
            render_bulk,
        )

    def _format_overview_as_text(self, overview: DashboardOverview) -> str:
        """Format dashboard statistics as human-readable text."""
        lines = []

        lines.append(f"Contacts: {overview.contacts.total}")
        for status, count in overview.contacts.by_status.items():
            lines.append(f"  {status}: {count}")
        lines.append(f"  auto-replies sent: {overview.contacts.emails_sent}")
        lines.append("")

        lines.append(f"Registrations: {overview.registrations.total}")
        for status, count in overview.registrations.by_status.items():
            lines.append(f"  {status}: {count}")
        for level, count in overview.registrations.by_experience.items():
            lines.append(f"  experience {level}: {count}")
        lines.append(f"  newsletter opt-ins: {overview.registrations.newsletter_opt_ins}")
        lines.append("")

        lines.append(
            f"Newsletter: {overview.newsletter.total} "
            f"({overview.newsletter.active} active)"
        )
        for status, count in overview.newsletter.by_status.items():
            lines.append(f"  {status}: {count}")
        lines.append("")

        if overview.recent.registrations:
            lines.append("Recent registrations:")
            for registration in overview.recent.registrations:
                lines.append(
                    f"  - {registration.registration_number}: "
                    f"{registration.full_name} <{registration.email}>"
                )
            lines.append("")

        return "\n".join(lines)


async def run_command(
    handler: CLICommandHandler,
    command: str,
    args: dict[str, Any],
) -> dict[str, Any]:
    """Run a CLI command.

    Entry point for executing CLI commands. Maps command names to handler methods.

    Args:
        handler: CLICommandHandler instance.
        command: Command name (see the interactive help for the list).
        args: Dictionary of command arguments.

    Returns:
        Dictionary with command result.

    Raises:
        ValueError: If the command is not recognized or lacks a required argument.
    """
    if command == "contact":
        return await handler.submit_contact(args)

    elif command == "register":
        return await handler.register(args)

    elif command == "verify":
        _require_args(args, "identifier")
        return await handler.verify_registration(args["identifier"])

    elif command == "subscribe":
        return await handler.subscribe(args)

    elif command == "unsubscribe":
        _require_args(args, "identifier")
        return await handler.unsubscribe(args["identifier"], args.get("reason"))

    elif command == "resubscribe":
        _require_args(args, "identifier")
        return await handler.resubscribe(args["identifier"])

    elif command == "overview":
        return await handler.overview(args.get("format", "json"))

    elif command == "list":
        _require_args(args, "entity")
        return await handler.list_records(args["entity"], args)

    elif command == "details":
        _require_args(args, "entity", "identifier")
        return await handler.get_details(args["entity"], args["identifier"])

    elif command == "status":
        _require_args(args, "entity", "identifier", "status")
        return await handler.set_status(args["entity"], args["identifier"], args["status"])

    elif command == "update":
        _require_args(args, "entity", "identifier", "changes")
        return await handler.update_record(
            args["entity"], args["identifier"], args["changes"]
        )

    elif command == "add_contact":
        return await handler.add_contact(args)

    elif command == "reply":
        _require_args(args, "identifier")
        return await handler.reply_to_contact(
            args["identifier"], args.get("subject", ""), args.get("message", "")
        )

    elif command == "add_to_newsletter":
        _require_args(args, "identifier")
        return await handler.add_registration_to_newsletter(args["identifier"])

    elif command == "delete":
        _require_args(args, "entity", "identifier")
        return await handler.delete_record(args["entity"], args["identifier"])

    elif command == "template":
        return await handler.create_template(args.get("subject", ""), args.get("body", ""))

    elif command == "templates":
        return await handler.list_records("templates", args)

    elif command == "bulk":
        return await handler.send_bulk_email(
            args.get("subject", ""), args.get("body", ""), args.get("template_id")
        )

    else:
        raise ValueError(f"Unknown command: {command}. Use 'help' for available commands.")


def _require_args(args: Mapping[str, Any], *names: str) -> None:
    for name in names:
        if name not in args:
            raise ValueError(f"Missing required parameter: {name}")
