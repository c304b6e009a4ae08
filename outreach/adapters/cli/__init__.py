"""Command-line interface adapters.

Provides CLI commands for the outreach backend:
- Public intake: contact, register, verify, subscribe, unsubscribe
- Dashboard: overview, listings, status changes, replies, campaigns
"""
