"""Fake/mock implementations of core ports for testing.

These in-memory implementations allow core domain logic to be tested
without external dependencies:

- FakeEntityStore: In-memory document store with unique-field enforcement
- FakeNotificationPort: Captured emails for assertion, with scripted failures
- FakeClock: Strictly increasing timestamps
- make_harness: Every core service wired to the fakes
"""

from .clock import FakeClock
from .notification import FakeNotificationPort, SentEmail
from .store import FakeEntityStore
from .wiring import ADMIN_EMAIL, Harness, make_harness, sequential_numbers

__all__ = [
    "ADMIN_EMAIL",
    "FakeClock",
    "FakeEntityStore",
    "FakeNotificationPort",
    "Harness",
    "SentEmail",
    "make_harness",
    "sequential_numbers",
]
