"""Email template rendering.

Every email is a pair of jinja2 templates: ``<name>.subject.txt`` and
``<name>.html``. The plain-text alternative comes from ``<name>.txt``
when one exists, otherwise from the HTML with tags removed. Built-in
templates cover every email the services send; a template directory
can override any of them by file name.
"""

import html
import logging
import re
from collections.abc import Mapping
from typing import Any

from jinja2 import (
    ChoiceLoader,
    DictLoader,
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateNotFound,
    select_autoescape,
)

logger = logging.getLogger(__name__)

_TAG_PATTERN = re.compile(r"<[^>]+>")
_BLANK_LINES = re.compile(r"\n\s*\n+")

_FOOTER = """
<p style="color: #666; font-size: 12px; margin-top: 30px;">
  Best regards,<br>The Tech Grid Series Team<br>
  <a href="{{ site_url }}">{{ site_url }}</a>
</p>
"""

DEFAULT_TEMPLATES: dict[str, str] = {
    # Contact form
    "contact_auto_reply.subject.txt": "Thank you for contacting us - The Tech Grid Series",
    "contact_auto_reply.html": """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Thank you for contacting us!</h2>
  <p>Dear {{ name }},</p>
  <p>We have received your message and will get back to you within 24-48 hours.</p>
  <div style="background: #f8f9fa; padding: 15px; border-radius: 5px;">
    <p><strong>Subject:</strong> {{ subject }}</p>
    <p><strong>Message:</strong></p>
    <p>{{ message }}</p>
  </div>
""" + _FOOTER + "</div>\n",
    "contact_admin_notification.subject.txt": "New Contact Form Submission: {{ subject }}",
    "contact_admin_notification.html": """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>New Contact Form Submission</h2>
  <p><strong>Name:</strong> {{ name }}</p>
  <p><strong>Email:</strong> {{ email }}</p>
  <p><strong>Phone:</strong> {{ phone }}</p>
  <p><strong>Subject:</strong> {{ subject }}</p>
  <p><strong>Message:</strong></p>
  <p>{{ message }}</p>
  <hr>
  <p style="color: #666; font-size: 12px;">
    Contact ID: {{ contact_id }}<br>
    Submitted: {{ timestamp }}<br>
    IP Address: {{ ip_address }}
  </p>
</div>
""",
    "contact_reply.subject.txt": "{{ subject }}",
    "contact_reply.html": """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <p>Dear {{ name }},</p>
  <p>{{ message }}</p>
  <p style="color: #666; font-size: 12px;">In reply to: {{ original_subject }}</p>
""" + _FOOTER + "</div>\n",
    # Conference registration
    "registration_confirmation.subject.txt": "Registration Confirmed: {{ event_name }}",
    "registration_confirmation.html": """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Registration Confirmed!</h2>
  <p>Dear {{ first_name }},</p>
  <p>Thank you for registering for <strong>{{ event_name }}</strong>.</p>
  <div style="background: #f8f9fa; padding: 15px; border-radius: 5px;">
    <p><strong>Registration Number:</strong> {{ registration_number }}</p>
    <p><strong>Name:</strong> {{ full_name }}</p>
    <p><strong>Email:</strong> {{ email }}</p>
    {%- if event_date %}
    <p><strong>Date:</strong> {{ event_date }}</p>
    {%- endif %}
  </div>
  <p>Please keep your registration number for your records.</p>
""" + _FOOTER + "</div>\n",
    "registration_admin_notification.subject.txt": (
        "New Conference Registration: {{ first_name }} {{ last_name }}"
    ),
    "registration_admin_notification.html": """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>New Conference Registration</h2>
  <p><strong>Name:</strong> {{ full_name }}</p>
  <p><strong>Email:</strong> {{ email }}</p>
  <p><strong>Phone:</strong> {{ phone }}</p>
  <p><strong>Company:</strong> {{ company or "Not provided" }}</p>
  <p><strong>Job Title:</strong> {{ job_title or "Not provided" }}</p>
  <p><strong>Experience:</strong> {{ experience }}</p>
  <p><strong>Interests:</strong> {{ interests | join(", ") if interests else "None selected" }}</p>
  <p><strong>Expectations:</strong> {{ expectations or "Not provided" }}</p>
  <p><strong>Newsletter:</strong> {{ "Yes" if newsletter else "No" }}</p>
  <hr>
  <p style="color: #666; font-size: 12px;">
    Registration Number: {{ registration_number }}<br>
    Registered: {{ timestamp }}<br>
    IP Address: {{ ip_address }}
  </p>
</div>
""",
    # Newsletter
    "newsletter_welcome.subject.txt": "Welcome to The Tech Grid Series Newsletter!",
    "newsletter_welcome.html": """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Welcome to The Tech Grid Series Newsletter!</h2>
  <p>Thank you for subscribing with {{ email }}.</p>
  <p>You will receive event updates, industry insights and the latest news
  on AI in finance.</p>
""" + _FOOTER + """
  <p style="color: #999; font-size: 11px;">
    Don't want these emails? <a href="{{ unsubscribe_url }}">Unsubscribe</a>
  </p>
</div>
""",
    "newsletter_admin_notification.subject.txt": "New Newsletter Subscription",
    "newsletter_admin_notification.html": """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>New Newsletter Subscription</h2>
  <p><strong>Email:</strong> {{ email }}</p>
  <p><strong>Source Page:</strong> {{ source_page }}</p>
  <hr>
  <p style="color: #666; font-size: 12px;">
    Subscribed: {{ timestamp }}<br>
    IP Address: {{ ip_address }}
  </p>
</div>
""",
    # Campaigns; the body is admin-authored HTML.
    "bulk_email.subject.txt": "{{ subject }}",
    "bulk_email.html": """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  {{ body | safe }}
  <p style="color: #999; font-size: 11px; margin-top: 30px;">
    You are receiving this email because {{ email }} is subscribed to
    The Tech Grid Series newsletter.
    <a href="{{ unsubscribe_url }}">Unsubscribe</a>
  </p>
</div>
""",
}


def html_to_text(markup: str) -> str:
    """Crude plain-text rendition of an HTML body."""
    text = markup.replace("<br>", "\n").replace("</p>", "</p>\n")
    text = html.unescape(_TAG_PATTERN.sub("", text))
    lines = (line.strip() for line in text.splitlines())
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


class EmailRenderer:
    """Renders subject, HTML body and text body for a named email."""

    def __init__(self, template_dir: str | None = None):
        """Initialize the renderer.

        Args:
            template_dir: Optional directory whose files override the
                built-in templates of the same name.
        """
        loaders = []
        if template_dir:
            loaders.append(FileSystemLoader(template_dir))
        loaders.append(DictLoader(DEFAULT_TEMPLATES))
        self.env = Environment(
            loader=ChoiceLoader(loaders),
            autoescape=select_autoescape(["html", "xml"]),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(
        self, template_name: str, variables: Mapping[str, Any]
    ) -> tuple[str, str, str]:
        """Render one email.

        Returns:
            Tuple of (subject, html_body, text_body).

        Raises:
            TemplateNotFound: If no subject or HTML template exists.
            jinja2.UndefinedError: If the template uses a missing variable.
        """
        context = dict(variables)
        subject = self.env.get_template(f"{template_name}.subject.txt").render(context)
        html_body = self.env.get_template(f"{template_name}.html").render(context)
        try:
            text_body = self.env.get_template(f"{template_name}.txt").render(context)
        except TemplateNotFound:
            text_body = html_to_text(html_body)

        # Header values must stay on one line.
        subject = " ".join(subject.split())
        logger.debug(f"Rendered email template {template_name}")
        return subject, html_body, text_body
