"""Notification adapters for delivering email.

Implementations support multiple output channels:
- Stdout (terminal pretty-print, for development)
- SMTP (any relay reachable with aiosmtplib)
- HTTP API (transactional mail services with a JSON endpoint)

All of them render through the shared jinja2 EmailRenderer.
"""
