#!/usr/bin/env python3
"""
Unit tests for the cancellable HTTP session
"""

import socket
import threading
import time
import pytest
import requests
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from bwh.transport import CancellableSession


@pytest.fixture
def silent_server():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(8)
    yield f"http://127.0.0.1:{server.getsockname()[1]}"
    server.close()


def get_in_thread(session, url):
    errors = []

    def call():
        try:
            session.get(url, timeout=30)
        except requests.RequestException as e:
            errors.append(e)

    worker = threading.Thread(target=call, daemon=True)
    worker.start()
    return worker, errors


class TestCancellableSession:

    def test_cancel_aborts_blocked_read(self, silent_server):
        session = CancellableSession()
        worker, errors = get_in_thread(session, f"{silent_server}/migrate/start")
        time.sleep(0.3)
        started = time.monotonic()

        session.cancel()
        worker.join(2)

        assert not worker.is_alive()
        assert time.monotonic() - started < 2
        assert len(errors) == 1
        assert isinstance(errors[0], requests.ConnectionError)

    def test_connection_opened_after_cancel_is_aborted(self, silent_server):
        session = CancellableSession()
        session.cancel()
        worker, errors = get_in_thread(session, f"{silent_server}/migrate/start")
        worker.join(2)
        assert not worker.is_alive()
        assert isinstance(errors[0], requests.ConnectionError)

    def test_cancelled_flag(self):
        session = CancellableSession()
        assert not session.cancelled.is_set()
        session.cancel()
        assert session.cancelled.is_set()

    def test_cancel_without_requests(self):
        session = CancellableSession()
        session.cancel()
        session.cancel()
        assert session.cancelled.is_set()

    def test_adapters_mounted_for_both_schemes(self):
        session = CancellableSession()
        assert session.get_adapter("https://api.64clouds.com/v1") is session.get_adapter("http://localhost")
