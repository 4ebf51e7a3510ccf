import threading

import pytest

from soa_switch.errors import ExchangeApiError, MailboxNotFound
from soa_switch.models import MailboxState


class FakeMailboxService:
    """In-memory stand-in for the Exchange admin client."""

    def __init__(self, mailboxes=None):
        # identity -> [is_directory_synced, is_cloud_managed]
        self.mailboxes = {key.lower(): list(value) for key, value in (mailboxes or {}).items()}
        self.fetch_calls = []
        self.apply_calls = []
        self.fetch_failures = {}
        self.apply_failures = {}
        self._lock = threading.Lock()

    def fetch_state(self, identity):
        with self._lock:
            self.fetch_calls.append(identity)
        failures = self.fetch_failures.get(identity.lower())
        if failures:
            raise failures.pop(0)
        entry = self.mailboxes.get(identity.lower())
        if entry is None:
            raise MailboxNotFound(identity)
        return MailboxState(
            identity=identity, is_directory_synced=entry[0], is_cloud_managed=entry[1]
        )

    def apply_cloud_managed(self, identity, value):
        with self._lock:
            self.apply_calls.append((identity, value))
        failures = self.apply_failures.get(identity.lower())
        if failures:
            raise failures.pop(0)
        self.mailboxes[identity.lower()][1] = value


class RecordingEvent(threading.Event):
    """Event whose waits return immediately and are remembered."""

    def __init__(self, cancel_after=None):
        super().__init__()
        self.waits = []
        self.cancel_after = cancel_after

    def wait(self, timeout=None):
        self.waits.append(timeout)
        if self.cancel_after is not None and len(self.waits) >= self.cancel_after:
            self.set()
        return self.is_set()


@pytest.fixture
def service():
    return FakeMailboxService(
        {
            "a@x.com": (True, False),
            "b@x.com": (False, False),
            "c@x.com": (True, True),
        }
    )


@pytest.fixture
def throttled():
    return ExchangeApiError("Too many requests, request is throttled", status_code=429)


@pytest.fixture
def exo_env(monkeypatch):
    monkeypatch.setenv("EXO_CLIENT_ID", "11111111-2222-3333-4444-555555555555")
    monkeypatch.setenv("EXO_TENANT_ID", "contoso.onmicrosoft.com")
    monkeypatch.setenv("EXO_AUTH_MODE", "device_code")
    for name in (
        "EXO_CLIENT_SECRET",
        "EXO_ORGANIZATION",
        "EXO_AUTHORITY",
        "EXO_ANCHOR_MAILBOX",
        "SOA_DEFAULT_MODE",
        "SOA_SIMULATE_ONLY",
        "SOA_REQUIRE_DIRSYNC",
        "RETRY_MAX_ATTEMPTS",
        "RETRY_INITIAL_DELAY",
        "RETRY_MAX_DELAY",
        "MAX_WORKERS",
        "EXO_TOKEN_CACHE",
        "EXO_ADMIN_BASE_URL",
        "EXO_PAGE_SIZE",
        "OUTCOME_HISTORY_DB",
        "SOA_IDENTITY_COLUMNS",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
