"""Public form inputs and their validation rules.

Each form is a plain dataclass holding raw user input. ``validate()``
returns a cleaned copy (HTML tags stripped, whitespace trimmed, email
lower-cased) or raises ValidationFailedError listing every failing
field. Nothing is silently corrected beyond that normalization.
"""

import re
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, TypeVar

from .errors import ValidationFailedError
from .models import INTEREST_TAGS, Experience

E = TypeVar("E", bound=Enum)

_TAG_PATTERN = re.compile(r"<[^>]*>")
_NAME_PATTERN = re.compile(r"^[a-zA-Z\s'-]+$")
_PHONE_PATTERN = re.compile(r"^\+?[\d\s\-().]{7,25}$")
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]{2,}$")

MAX_EMAIL_LENGTH = 320


def sanitize(value: str) -> str:
    """Remove HTML tags and surrounding whitespace."""
    return _TAG_PATTERN.sub("", value).strip()


def normalize_email(value: str) -> str:
    return sanitize(value).lower()


def parse_choice(enum_type: type[E], value: Any, field_name: str) -> E:
    """Convert admin input to a member of ``enum_type``.

    Raises:
        ValidationFailedError: If ``value`` is not one of the enum's values.
    """
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationFailedError(
            {field_name: [f"{field_name.capitalize()} must be one of: {allowed}"]}
        ) from None


def parse_flag(value: Any, field_name: str) -> bool:
    """Accept only real booleans; strings such as ``"false"`` are rejected."""
    if not isinstance(value, bool):
        raise ValidationFailedError({field_name: [f"{field_name} must be a boolean"]})
    return value


@dataclass(frozen=True)
class RequestContext:
    """Request details recorded in record metadata."""

    user_agent: str = ""
    ip_address: str = ""
    source_page: str = ""


class _Errors:
    """Collects messages per field in the order rules are applied."""

    def __init__(self) -> None:
        self._errors: dict[str, list[str]] = defaultdict(list)

    def add(self, field_name: str, message: str) -> None:
        self._errors[field_name].append(message)

    def raise_if_any(self) -> None:
        if self._errors:
            raise ValidationFailedError(self._errors)

    def check_email(self, value: str) -> None:
        if not value:
            self.add("email", "Email is required")
            return
        if not _EMAIL_PATTERN.match(value):
            self.add("email", "Please provide a valid email address")
        if len(value) > MAX_EMAIL_LENGTH:
            self.add("email", f"Email cannot exceed {MAX_EMAIL_LENGTH} characters")

    def check_phone(self, value: str) -> None:
        if not value:
            self.add("phone", "Phone number is required")
            return
        if not 7 <= len(value) <= 25:
            self.add("phone", "Phone number must be between 7 and 25 characters")
        if not _PHONE_PATTERN.match(value):
            self.add(
                "phone",
                "Please provide a valid phone number "
                "(numbers, spaces, dashes, parentheses allowed)",
            )

    def check_name(
        self, field_name: str, label: str, value: str, max_length: int
    ) -> None:
        if not value:
            self.add(field_name, f"{label} is required")
            return
        if not 2 <= len(value) <= max_length:
            self.add(field_name, f"{label} must be between 2 and {max_length} characters")
        if not _NAME_PATTERN.match(value):
            self.add(field_name, f"{label} contains invalid characters")

    def check_length(
        self,
        field_name: str,
        label: str,
        value: str,
        min_length: int,
        max_length: int,
    ) -> None:
        if not value:
            if min_length:
                self.add(field_name, f"{label} is required")
            return
        if min_length and not min_length <= len(value) <= max_length:
            self.add(
                field_name,
                f"{label} must be between {min_length} and {max_length} characters",
            )
        elif len(value) > max_length:
            self.add(field_name, f"{label} cannot exceed {max_length} characters")


@dataclass(frozen=True)
class ContactForm:
    """Contact-form submission as received from the site."""

    name: str
    email: str
    phone: str
    subject: str
    message: str

    def validate(self) -> "ContactForm":
        """Return the sanitized form.

        Raises:
            ValidationFailedError: If any field breaks its rules.
        """
        cleaned = ContactForm(
            name=sanitize(self.name),
            email=normalize_email(self.email),
            phone=sanitize(self.phone),
            subject=sanitize(self.subject),
            message=sanitize(self.message),
        )
        errors = _Errors()
        errors.check_name("name", "Name", cleaned.name, 100)
        errors.check_email(cleaned.email)
        errors.check_phone(cleaned.phone)
        errors.check_length("subject", "Subject", cleaned.subject, 5, 200)
        errors.check_length("message", "Message", cleaned.message, 10, 2000)
        errors.raise_if_any()
        return cleaned


@dataclass(frozen=True)
class RegistrationForm:
    """Conference registration as received from the site."""

    first_name: str
    last_name: str
    email: str
    phone: str
    experience: str
    terms: bool
    company: str = ""
    job_title: str = ""
    interests: Sequence[str] = field(default_factory=tuple)
    expectations: str = ""
    newsletter: bool = False

    def validate(self) -> "RegistrationForm":
        """Return the sanitized form.

        Raises:
            ValidationFailedError: If any field breaks its rules.
        """
        cleaned = replace(
            self,
            first_name=sanitize(self.first_name),
            last_name=sanitize(self.last_name),
            email=normalize_email(self.email),
            phone=sanitize(self.phone),
            experience=sanitize(self.experience or ""),
            company=sanitize(self.company or ""),
            job_title=sanitize(self.job_title or ""),
            interests=tuple(sanitize(i) for i in self.interests or ()),
            expectations=sanitize(self.expectations or ""),
        )
        errors = _Errors()
        errors.check_name("first_name", "First name", cleaned.first_name, 50)
        errors.check_name("last_name", "Last name", cleaned.last_name, 50)
        errors.check_email(cleaned.email)
        errors.check_phone(cleaned.phone)
        errors.check_length("company", "Company name", cleaned.company, 0, 100)
        errors.check_length("job_title", "Job title", cleaned.job_title, 0, 100)
        errors.check_length("expectations", "Expectations", cleaned.expectations, 0, 1000)

        allowed = [e.value for e in Experience]
        if not cleaned.experience:
            errors.add("experience", "Experience level is required")
        elif cleaned.experience not in allowed:
            errors.add("experience", f"Experience must be one of: {', '.join(allowed)}")

        invalid = [i for i in cleaned.interests if i not in INTEREST_TAGS]
        if invalid:
            errors.add("interests", f"Invalid interests: {', '.join(invalid)}")

        if cleaned.terms is not True:
            errors.add("terms", "Terms and conditions must be accepted")
        if not isinstance(cleaned.newsletter, bool):
            errors.add("newsletter", "Newsletter preference must be a boolean")

        errors.raise_if_any()
        return cleaned


@dataclass(frozen=True)
class SubscribeForm:
    """Newsletter sign-up as received from the site."""

    email: str

    def validate(self) -> "SubscribeForm":
        """Return the normalized form.

        Raises:
            ValidationFailedError: If the email is missing or malformed.
        """
        cleaned = SubscribeForm(email=normalize_email(self.email))
        errors = _Errors()
        errors.check_email(cleaned.email)
        errors.raise_if_any()
        return cleaned


__all__ = [
    "ContactForm",
    "RegistrationForm",
    "RequestContext",
    "SubscribeForm",
    "normalize_email",
    "parse_choice",
    "parse_flag",
    "sanitize",
]
