"""External adapters for the outreach forms backend.

This package contains all external dependencies (SQLite, PostgreSQL,
SMTP, HTTP mail APIs, etc.) and provides implementations of the core
port interfaces.

Adapter Organization:

- store/: Adapters for record persistence (SQLite, PostgreSQL)
- notification/: Adapters for delivering email (stdout, SMTP, HTTP API)
- cli/: Command-line interface for intake and dashboard operations
"""
