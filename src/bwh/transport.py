"""
Cancellable HTTP session.

``requests`` has no way to abort a call that is blocked reading a response,
and ``Session.close()`` only drops idle pooled connections. The migration
start call can be held open by the provider for the whole move, so the
waiter needs to cut it off when it stops waiting. CancellableSession tracks
every socket its adapter opens; ``cancel()`` shuts them down, which makes a
blocked read return at once with a connection error.

Usage:
    session = CancellableSession()
    # another thread: client.start_migration(loc, session=session)
    session.cancel()
"""

import logging
import socket
import threading

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

logger = logging.getLogger(__name__)


def _abort(conn) -> None:
    sock = getattr(conn, "sock", None)
    if not isinstance(sock, socket.socket):
        return
    try:
        # base shutdown: SSLSocket.shutdown would also drop its SSL object
        socket.socket.shutdown(sock, socket.SHUT_RDWR)
    except OSError:
        # already closed by its owner
        pass


class _ConnectionTracker:
    def __init__(self):
        self.cancelled = threading.Event()
        self._lock = threading.Lock()
        self._connections = []

    def register(self, conn) -> None:
        with self._lock:
            self._connections.append(conn)
            cancelled = self.cancelled.is_set()
        if cancelled:
            _abort(conn)

    def cancel(self) -> int:
        with self._lock:
            self.cancelled.set()
            connections = list(self._connections)
        for conn in connections:
            _abort(conn)
        return len(connections)


def _tracked_pool(pool_cls, conn_cls, tracker: _ConnectionTracker):
    class TrackedConnection(conn_cls):
        def connect(self):
            super().connect()
            tracker.register(self)

    return type(f"Tracked{pool_cls.__name__}", (pool_cls,), {"ConnectionCls": TrackedConnection})


class _TrackingAdapter(HTTPAdapter):
    def __init__(self, tracker: _ConnectionTracker, **kwargs):
        # init_poolmanager runs inside HTTPAdapter.__init__
        self._tracker = tracker
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            "http": _tracked_pool(HTTPConnectionPool, HTTPConnection, self._tracker),
            "https": _tracked_pool(HTTPSConnectionPool, HTTPSConnection, self._tracker),
        }


class CancellableSession(requests.Session):
    """A Session whose in-flight requests can be aborted from another thread."""

    def __init__(self):
        super().__init__()
        self._tracker = _ConnectionTracker()
        adapter = _TrackingAdapter(self._tracker)
        self.mount("https://", adapter)
        self.mount("http://", adapter)

    @property
    def cancelled(self) -> threading.Event:
        return self._tracker.cancelled

    def cancel(self) -> None:
        """Abort every open connection and refuse to keep new ones alive."""
        aborted = self._tracker.cancel()
        self.close()
        logger.debug(f"Session cancelled ({aborted} connection(s) aborted)")
