"""
Migration wait protocol.

``migrate/start`` only says the request was accepted, and the provider may
hold that connection open for the whole move. Completion is signalled by the
VPS unlocking, which shows up as ``migrate/getLocations`` answering without
the "locked" error. So the start call runs on a worker thread while this
module polls for the unlock on a fixed interval, relaying progress from the
lock metadata as it changes.

Usage:
    waiter = MigrationWaiter(client, "USCA_FMT", timeout=900, on_event=print)
    outcome = waiter.run()
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .errors import BWHError, ValidationError
from .transport import CancellableSession
from .types import LockingInfo, MigrateStartResult
from .validation import split_ips_by_family

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15 * 60
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_POLL_TIMEOUT = 30
MIN_CALL_TIMEOUT = 0.1


class MigrationState(Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass
class MigrationEvent:
    """Something the caller may want to show while waiting."""
    kind: str  # accepted, operation, progress
    state: MigrationState
    operation: str = ""
    percent: int = 0
    message: str = ""
    elapsed: float = 0.0
    locking: Optional[LockingInfo] = None

    @property
    def last_update(self) -> int:
        """Seconds since the provider last updated the lock progress."""
        return self.locking.last_status_update_s_ago if self.locking else 0


@dataclass
class MigrationOutcome:
    """Result of a migration that ended with the VPS unlocked."""
    location: str
    current_location: str
    accepted: bool = False
    notification_email: str = ""
    new_ipv4: List[str] = field(default_factory=list)
    new_ipv6: List[str] = field(default_factory=list)
    elapsed: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MigrationTimeout(Exception):
    """The deadline passed while the VPS was still locked."""

    def __init__(self, location: str, timeout: float, last_progress: Optional[LockingInfo] = None):
        self.location = location
        self.timeout = timeout
        self.last_progress = last_progress
        text = f"migration to {location} did not complete within {timeout:g}s"
        if last_progress is not None:
            text += f" (last seen: {last_progress.describe()})"
        super().__init__(text)


class MigrationWaiter:
    """
    Runs one migration and waits for the VPS to unlock.

    A single deadline (now + timeout) bounds the whole run. Neither call
    gets an HTTP timeout past it, and when the run ends for any reason the
    start call is aborted through its CancellableSession. A locked error from the start call is expected and
    ignored; any other error from either call ends the run at once.

    De-duplication state belongs to this instance; use a new waiter per
    migration.
    """

    def __init__(
        self,
        client,
        location: str,
        timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        on_event: Callable[[MigrationEvent], None] = None,
    ):
        if not location or not location.strip():
            raise ValidationError("location_id cannot be empty")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.client = client
        self.location = location.strip()
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.on_event = on_event

        self.state = MigrationState.IDLE
        self._started_at = 0.0
        self._accepted: Optional[MigrateStartResult] = None
        self._last_operation = ""
        self._last_progress = None  # (percent, message)
        self._last_locking: Optional[LockingInfo] = None

    # ── Public ───────────────────────────────────────────────────

    def run(self) -> MigrationOutcome:
        """
        Start the migration and block until the VPS unlocks.

        Raises:
            MigrationTimeout: the deadline passed first.
            BWHError / TransportError: a non-lock failure from either call.
        """
        if self.state is not MigrationState.IDLE:
            raise RuntimeError("MigrationWaiter.run() can only be called once")

        self._started_at = time.monotonic()
        deadline = self._started_at + self.timeout
        wake = threading.Event()
        session = CancellableSession()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="bwh-migrate")
        future = None
        try:
            future = executor.submit(self._start, session, deadline)
            future.add_done_callback(lambda _f: wake.set())
            self._transition(MigrationState.REQUESTED)
            logger.info(f"Migration to {self.location} requested (timeout={self.timeout:g}s)")

            start_handled = False
            next_poll = self._started_at + self.poll_interval
            while True:
                if not start_handled and future.done():
                    start_handled = True
                    wake.clear()
                    self._collect_start(future)

                now = time.monotonic()
                if now >= deadline:
                    self._transition(MigrationState.TIMED_OUT)
                    raise MigrationTimeout(self.location, self.timeout, self._last_locking)

                if now >= next_poll:
                    next_poll = now + self.poll_interval
                    current = self._poll(deadline)
                    if current is None:
                        continue
                    if not start_handled and future.done():
                        start_handled = True
                        self._collect_start(future)
                    return self._finish(current)

                wake.wait(min(next_poll, deadline) - now)
        finally:
            # unlock, timeout and failure all end the start call too
            session.cancel()
            executor.shutdown(wait=False)
            if future is not None:
                done, _ = wait([future], timeout=self.poll_interval)
                if not done:
                    logger.warning(f"Migration start call for {self.location} still running after cancel")

    # ── Internals ────────────────────────────────────────────────

    def _start(self, session: CancellableSession, deadline: float) -> MigrateStartResult:
        remaining = max(deadline - time.monotonic(), MIN_CALL_TIMEOUT)
        return self.client.start_migration(self.location, remaining, session=session)

    def _call_timeout(self, deadline: float) -> float:
        limit = getattr(self.client, "timeout", None) or DEFAULT_POLL_TIMEOUT
        return max(min(limit, deadline - time.monotonic()), MIN_CALL_TIMEOUT)

    def _elapsed(self) -> float:
        return time.monotonic() - self._started_at

    def _transition(self, state: MigrationState) -> None:
        if state is not self.state:
            logger.debug(f"Migration {self.location}: {self.state.value} -> {state.value}")
            self.state = state

    def _emit(self, kind: str, **kwargs) -> None:
        if self.on_event is None:
            return
        self.on_event(MigrationEvent(kind=kind, state=self.state, elapsed=self._elapsed(), **kwargs))

    def _collect_start(self, future: Future) -> None:
        try:
            result = future.result()
        except BWHError as e:
            if e.is_locked:
                logger.debug(f"Migration start for {self.location} returned locked; waiting for unlock")
                return
            self._transition(MigrationState.FAILED)
            raise
        except Exception:
            self._transition(MigrationState.FAILED)
            raise
        self._accepted = result
        logger.info(f"Migration to {self.location} accepted")
        self._emit("accepted")

    def _poll(self, deadline: float) -> Optional[str]:
        """Current location once unlocked, None while still locked."""
        try:
            locations = self.client.get_migrate_locations(timeout=self._call_timeout(deadline))
        except BWHError as e:
            if not e.is_locked:
                self._transition(MigrationState.FAILED)
                raise
            self._transition(MigrationState.LOCKED)
            self._relay_lock(e)
            return None
        except Exception:
            self._transition(MigrationState.FAILED)
            raise
        return locations.current_location

    def _relay_lock(self, err: BWHError) -> None:
        if err.additional_error_info and err.additional_error_info != self._last_operation:
            self._last_operation = err.additional_error_info
            self._emit("operation", operation=err.additional_error_info)

        locking = err.additional_locking_info
        if locking is None:
            return
        self._last_locking = locking
        progress = (locking.completed_percent, locking.friendly_progress_message)
        if progress != self._last_progress:
            self._last_progress = progress
            self._emit(
                "progress",
                percent=locking.completed_percent,
                message=locking.friendly_progress_message,
                locking=locking,
            )

    def _finish(self, current_location: str) -> MigrationOutcome:
        self._transition(MigrationState.UNLOCKED)
        outcome = MigrationOutcome(
            location=self.location,
            current_location=current_location,
            elapsed=self._elapsed(),
        )
        if self._accepted is not None:
            ipv4, ipv6 = split_ips_by_family(self._accepted.new_ips)
            outcome.accepted = True
            outcome.notification_email = self._accepted.notification_email
            outcome.new_ipv4 = ipv4
            outcome.new_ipv6 = ipv6
        logger.info(
            f"Migration finished: now in {current_location} after {outcome.elapsed:.0f}s"
        )
        return outcome


def start_migration_nowait(client, location: str, timeout: float = DEFAULT_TIMEOUT) -> MigrateStartResult:
    """Issue migrate/start once and return the accepted payload without waiting."""
    if not location or not location.strip():
        raise ValidationError("location_id cannot be empty")
    return client.start_migration(location.strip(), timeout)
