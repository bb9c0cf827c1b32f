#!/usr/bin/env python3
"""
Unit tests for terminal formatting helpers
"""

import io
import pytest
import sys
from pathlib import Path

from rich.console import Console

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from bwh import display
from bwh.migration import MigrationEvent, MigrationState
from bwh.types import Backup, LockingInfo, Snapshot


@pytest.fixture
def output(monkeypatch):
    buffer = io.StringIO()
    monkeypatch.setattr(display, "console", Console(file=buffer, width=200, color_system=None))
    return buffer


class TestFormatBytes:

    @pytest.mark.parametrize("size, expected", [
        (0, "0 B"),
        (512, "512 B"),
        (1536, "1.5 KB"),
        (1024 ** 3 * 2, "2.0 GB"),
    ])
    def test_format(self, size, expected):
        assert display.format_bytes(size) == expected


class TestFormatDuration:

    @pytest.mark.parametrize("seconds, expected", [
        (30, "30s"),
        (45 * 60, "45m"),
        (3 * 3600, "3h"),
        (3 * 3600 + 20 * 60, "3h20m"),
        (2 * 86400 + 4 * 3600, "2 days 4h"),
        (22 * 86400, "3 weeks 1 days"),
        (56 * 86400, "2 months"),
    ])
    def test_format(self, seconds, expected):
        assert display.format_duration(seconds) == expected


class TestStatusStyle:

    def test_styles(self):
        assert display.status_style("Running") == "green"
        assert display.status_style("stopped") == "red"
        assert display.status_style("starting") == "yellow"


class TestRender:

    def test_sticky_snapshot_never_purges(self, output):
        display.render_snapshots([
            Snapshot("keep.tar.gz", size=2048, sticky=True, purges_in=99999),
            Snapshot("temp.tar.gz", size=512, purges_in=2 * 86400),
        ])
        text = output.getvalue()
        assert "never" in text
        assert "2 days" in text
        assert "2.0 KB" in text

    def test_empty_snapshots(self, output):
        display.render_snapshots([])
        assert "No snapshots found." in output.getvalue()

    def test_backups_listed_with_token(self, output):
        display.render_backups({"f" * 40: Backup("f" * 40, size=1024, os="debian-12", timestamp=1700000000)})
        text = output.getvalue()
        assert "f" * 40 in text
        assert "debian-12" in text


class TestMigrationEvents:

    def test_progress_shows_seconds_since_update(self, output):
        event = MigrationEvent(
            "progress", MigrationState.REQUESTED, percent=50, message="Copying disk",
            elapsed=3.0, locking=LockingInfo(50, "Copying disk", 17),
        )
        display.render_migration_event(event)
        assert "Progress: 50% complete - Copying disk (updated 17s ago)" in output.getvalue()

    def test_fresh_progress_has_no_update_age(self, output):
        event = MigrationEvent(
            "progress", MigrationState.REQUESTED, percent=80, message="Booting",
            elapsed=120.0, locking=LockingInfo(80, "Booting", 0),
        )
        display.render_migration_event(event)
        text = output.getvalue()
        assert "Progress: 80% complete - Booting" in text
        assert "ago" not in text
