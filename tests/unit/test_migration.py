#!/usr/bin/env python3
"""
Unit tests for the migration wait protocol
"""

import socket
import threading
import time
import pytest
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from bwh.client import BWHClient
from bwh.errors import BWHError, TransportError, ValidationError, VE_LOCKED
from bwh.migration import (
    MigrationState, MigrationTimeout, MigrationWaiter, start_migration_nowait,
)
from bwh.types import LockingInfo, MigrateLocations, MigrateStartResult

INTERVAL = 0.1


def locked(percent=50, message="Copying disk", operation="Migration to USCA_FMT", updated=0):
    return BWHError(
        VE_LOCKED, "VE is locked",
        additional_error_info=operation,
        additional_locking_info=LockingInfo(percent, message, updated),
    )


def block_until_cancelled(session):
    """A start call the provider holds open until the waiter aborts it."""
    if session.cancelled.wait(30):
        raise TransportError("migrate/start: connection failed: aborted")
    return MigrateStartResult()


class FakeClient:
    """start_migration runs ``start``; each status poll consumes the next scripted reply."""

    timeout = 30

    def __init__(self, start=None, replies=()):
        self.start = start if start is not None else MigrateStartResult()
        self.replies = list(replies)
        self.start_calls = []
        self.poll_timeouts = []
        self.poll_calls = 0
        self.start_finished = threading.Event()

    def start_migration(self, location, timeout=None, session=None):
        self.start_calls.append((location, timeout))
        try:
            if isinstance(self.start, Exception):
                raise self.start
            if callable(self.start):
                return self.start(session)
            return self.start
        finally:
            self.start_finished.set()

    def get_migrate_locations(self, timeout=None):
        self.poll_calls += 1
        self.poll_timeouts.append(timeout)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


def run_waiter(client, timeout=5.0):
    events = []
    waiter = MigrationWaiter(client, "USCA_FMT", timeout=timeout, poll_interval=INTERVAL, on_event=events.append)
    return waiter, events


def migrate_workers_exit(timeout=2.0):
    for thread in threading.enumerate():
        if thread.name.startswith("bwh-migrate"):
            thread.join(timeout)
            if thread.is_alive():
                return False
    return True


class TestMigrationSuccess:

    def test_progress_reported_on_change_only(self):
        client = FakeClient(
            start=MigrateStartResult(notification_email="me@example.com", new_ips=["5.6.7.8", "2001:db8::"]),
            replies=[locked(), locked(), MigrateLocations(current_location="USCA_FMT")],
        )
        waiter, events = run_waiter(client)
        started = time.monotonic()

        outcome = waiter.run()

        elapsed = time.monotonic() - started
        kinds = [e.kind for e in events]
        # the second identical lock reply adds nothing
        assert kinds == ["accepted", "operation", "progress"]
        assert len([k for k in kinds if k != "accepted"]) == 2
        assert client.poll_calls == 3
        assert elapsed < 3 * INTERVAL + 0.5
        assert outcome.current_location == "USCA_FMT"
        assert waiter.state is MigrationState.UNLOCKED

    def test_new_progress_values_are_each_reported(self):
        client = FakeClient(replies=[
            locked(40, "Copying disk"),
            locked(80, "Copying disk"),
            MigrateLocations(current_location="JPOS_1"),
        ])
        waiter, events = run_waiter(client)
        waiter.run()
        progress = [(e.percent, e.message) for e in events if e.kind == "progress"]
        assert progress == [(40, "Copying disk"), (80, "Copying disk")]

    def test_accepted_payload_split_by_family(self):
        client = FakeClient(
            start=MigrateStartResult(notification_email="me@example.com", new_ips=["5.6.7.8", "2001:db8::"]),
            replies=[MigrateLocations(current_location="USCA_FMT")],
        )
        waiter, _ = run_waiter(client)
        outcome = waiter.run()
        assert outcome.accepted
        assert outcome.new_ipv4 == ["5.6.7.8"]
        assert outcome.new_ipv6 == ["2001:db8::"]
        assert outcome.notification_email == "me@example.com"

    def test_start_call_gets_overall_timeout(self):
        client = FakeClient(replies=[MigrateLocations(current_location="X")])
        waiter, _ = run_waiter(client, timeout=7)
        waiter.run()
        (location, timeout), = client.start_calls
        assert location == "USCA_FMT"
        # the remaining deadline, never the 900 s default
        assert 6 < timeout <= 7

    def test_status_calls_never_outlive_the_deadline(self):
        client = FakeClient(start=block_until_cancelled, replies=[locked()])
        waiter, _ = run_waiter(client, timeout=0.5)
        with pytest.raises(MigrationTimeout):
            waiter.run()
        assert client.poll_timeouts
        assert all(0 < t <= 0.5 for t in client.poll_timeouts)
        assert client.poll_timeouts[-1] < client.poll_timeouts[0]

    def test_status_call_timeout_is_the_client_timeout_when_shorter(self):
        client = FakeClient(replies=[MigrateLocations(current_location="X")])
        client.timeout = 2
        waiter, _ = run_waiter(client, timeout=60)
        waiter.run()
        assert client.poll_timeouts == [2]

    def test_progress_event_carries_seconds_since_update(self):
        client = FakeClient(replies=[locked(50, "Copying disk", updated=17), MigrateLocations(current_location="X")])
        waiter, events = run_waiter(client)
        waiter.run()
        progress = [e for e in events if e.kind == "progress"]
        assert len(progress) == 1
        assert progress[0].locking.last_status_update_s_ago == 17
        assert progress[0].last_update == 17
        assert progress[0].locking.describe() == "Progress: 50% complete - Copying disk (updated 17s ago)"

    def test_locked_start_error_is_ignored(self):
        client = FakeClient(start=locked(), replies=[MigrateLocations(current_location="USCA_FMT")])
        waiter, events = run_waiter(client)
        outcome = waiter.run()
        assert not outcome.accepted
        assert "accepted" not in [e.kind for e in events]

    def test_unlock_before_start_returns(self):
        client = FakeClient(start=block_until_cancelled, replies=[MigrateLocations(current_location="USCA_FMT")])
        waiter, _ = run_waiter(client)

        outcome = waiter.run()

        assert not outcome.accepted
        assert outcome.new_ipv4 == []
        # the held-open start call is aborted, not left to its own timeout
        assert client.start_finished.wait(1)
        assert migrate_workers_exit()


class TestMigrationFailure:

    def test_timeout_while_locked(self):
        client = FakeClient(replies=[locked()])
        waiter, _ = run_waiter(client, timeout=0.4)
        started = time.monotonic()

        with pytest.raises(MigrationTimeout) as exc:
            waiter.run()

        assert time.monotonic() - started < 0.4 + 0.5
        assert waiter.state is MigrationState.TIMED_OUT
        assert exc.value.last_progress.completed_percent == 50

    def test_timeout_aborts_start_call(self):
        client = FakeClient(start=block_until_cancelled, replies=[locked()])
        waiter, _ = run_waiter(client, timeout=0.4)
        with pytest.raises(MigrationTimeout):
            waiter.run()
        assert client.start_finished.wait(1)
        assert migrate_workers_exit()

    def test_start_domain_error_fails_without_probing(self):
        client = FakeClient(start=BWHError(1, "Invalid location"), replies=[MigrateLocations()])
        waiter = MigrationWaiter(client, "NOWHERE", timeout=5, poll_interval=1.0)

        with pytest.raises(BWHError) as exc:
            waiter.run()

        assert exc.value.code == 1
        assert client.poll_calls == 0
        assert waiter.state is MigrationState.FAILED

    def test_start_transport_error_fails(self):
        client = FakeClient(start=TransportError("connection reset"), replies=[MigrateLocations()])
        waiter = MigrationWaiter(client, "USCA_FMT", timeout=5, poll_interval=1.0)
        with pytest.raises(TransportError):
            waiter.run()
        assert client.poll_calls == 0

    def test_status_error_other_than_lock_is_fatal(self):
        client = FakeClient(
            start=block_until_cancelled,
            replies=[locked(), BWHError(700005, "Authentication failure")],
        )
        waiter, _ = run_waiter(client)
        with pytest.raises(BWHError) as exc:
            waiter.run()
        assert exc.value.is_authentication_error
        assert client.poll_calls == 2
        assert waiter.state is MigrationState.FAILED
        assert client.start_finished.wait(1)
        assert migrate_workers_exit()

    def test_run_only_once(self):
        client = FakeClient(replies=[MigrateLocations(current_location="X")])
        waiter, _ = run_waiter(client)
        waiter.run()
        with pytest.raises(RuntimeError):
            waiter.run()

    def test_empty_location_rejected(self):
        with pytest.raises(ValidationError):
            MigrationWaiter(FakeClient(), "  ")


@pytest.fixture
def silent_server():
    """Accepts connections and never answers, like a held-open migrate/start."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(8)
    yield f"http://127.0.0.1:{server.getsockname()[1]}/api/v1"
    server.close()


class TestStartCallOverHttp:

    def test_unlock_aborts_held_open_request(self, silent_server):
        client = BWHClient("private_key", "123456", base_url=silent_server)
        waiter, _ = run_waiter(client, timeout=30)
        started = time.monotonic()

        with patch.object(client, "get_migrate_locations",
                          side_effect=[locked(), MigrateLocations(current_location="USCA_FMT")]):
            outcome = waiter.run()

        assert not outcome.accepted
        assert migrate_workers_exit(timeout=2.0)
        assert time.monotonic() - started < 3

    def test_timeout_aborts_held_open_request(self, silent_server):
        client = BWHClient("private_key", "123456", base_url=silent_server)
        waiter, _ = run_waiter(client, timeout=0.5)

        with patch.object(client, "get_migrate_locations", side_effect=locked()):
            with pytest.raises(MigrationTimeout):
                waiter.run()

        assert migrate_workers_exit(timeout=2.0)


class TestStartNowait:

    def test_single_call(self):
        client = MagicMock()
        client.start_migration.return_value = MigrateStartResult(new_ips=["1.1.1.1"])
        result = start_migration_nowait(client, " USCA_FMT ", timeout=60)
        client.start_migration.assert_called_once_with("USCA_FMT", 60)
        client.get_migrate_locations.assert_not_called()
        assert result.new_ips == ["1.1.1.1"]

    def test_empty_location(self):
        client = MagicMock()
        with pytest.raises(ValidationError):
            start_migration_nowait(client, "")
        client.start_migration.assert_not_called()
