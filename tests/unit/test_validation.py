#!/usr/bin/env python3
"""
Unit tests for client-side validation and IP helpers
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from bwh.errors import ValidationError
from bwh.validation import (
    aggregate_ipv4_ranges, ipv4_from_int, normalize_ipv6_subnet, read_ssh_keys_file,
    split_ips_by_family, validate_backup_token, validate_ip, validate_ipv4,
    validate_os_template, validate_ssh_keys,
)


class TestBackupToken:

    def test_valid(self):
        token = "0123456789abcdef0123456789abcdef01234567"
        assert validate_backup_token(token) == token

    def test_wrong_length(self):
        with pytest.raises(ValidationError, match="expected 40 characters, got 3"):
            validate_backup_token("abc")

    def test_uppercase_rejected(self):
        with pytest.raises(ValidationError, match="hexadecimal"):
            validate_backup_token("A" * 40)


class TestSSHKeys:

    def test_strips_and_accepts_known_types(self):
        keys = validate_ssh_keys(["  ssh-ed25519 AAAA me@host ", "ecdsa-sha2-nistp256 BBBB"])
        assert keys == ["ssh-ed25519 AAAA me@host", "ecdsa-sha2-nistp256 BBBB"]

    def test_rejects_type_only(self):
        with pytest.raises(ValidationError, match="position 1"):
            validate_ssh_keys(["ssh-rsa"])

    def test_read_file_skips_comments(self, tmp_path):
        path = tmp_path / "keys"
        path.write_text("# laptop\nssh-rsa AAAA one\n\nssh-ed25519 BBBB two\n", encoding="utf-8")
        assert read_ssh_keys_file(str(path)) == ["ssh-rsa AAAA one", "ssh-ed25519 BBBB two"]


class TestIPv6Subnet:

    def test_with_and_without_prefix_match(self):
        assert normalize_ipv6_subnet("2001:db8:1:2::/64") == normalize_ipv6_subnet("2001:db8:1:2::")

    def test_rejects_ipv4(self):
        with pytest.raises(ValidationError, match="IPv4"):
            normalize_ipv6_subnet("10.0.0.1")

    def test_rejects_garbage(self):
        with pytest.raises(ValidationError):
            normalize_ipv6_subnet("not-an-address")


class TestIPHelpers:

    def test_validate_ipv4(self):
        assert validate_ipv4(" 10.0.0.1 ") == "10.0.0.1"
        with pytest.raises(ValidationError):
            validate_ipv4("::1")

    def test_validate_ip(self):
        assert validate_ip("2001:db8::1") == "2001:db8::1"
        with pytest.raises(ValidationError):
            validate_ip("999.1.1.1")

    def test_split_by_family(self):
        assert split_ips_by_family(["1.2.3.4", "2001:db8::", "5.6.7.8"]) == (
            ["1.2.3.4", "5.6.7.8"], ["2001:db8::"],
        )

    def test_ipv4_from_int(self):
        assert ipv4_from_int(3232235777) == "192.168.1.1"

    def test_os_template(self):
        assert validate_os_template("debian-12", ["debian-12"]) == "debian-12"
        with pytest.raises(ValidationError):
            validate_os_template("arch", ["debian-12"])


class TestAggregateRanges:

    def test_runs_and_singletons(self):
        ranges, total = aggregate_ipv4_ranges(["10.0.0.1", "10.0.0.2", "10.0.0.4"])
        assert ranges == ["10.0.0.1-2", "10.0.0.4"]
        assert total == 3

    def test_dedup_and_sort(self):
        ranges, total = aggregate_ipv4_ranges(["10.0.0.3", "10.0.0.1", "10.0.0.2", "10.0.0.1"])
        assert ranges == ["10.0.0.1-3"]
        assert total == 3

    def test_run_across_octet(self):
        ranges, _ = aggregate_ipv4_ranges(["10.0.0.255", "10.0.1.0"])
        assert ranges == ["10.0.0.255-10.0.1.0"]

    def test_invalid_and_ipv6_ignored(self):
        assert aggregate_ipv4_ranges(["junk", "2001:db8::1"]) == ([], 0)
