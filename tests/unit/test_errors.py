#!/usr/bin/env python3
"""
Unit tests for the API error model
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from bwh.errors import (
    BWHError, TransportError, ValidationError, AUTHENTICATION_FAILURE, VE_LOCKED,
    get_bwh_error, is_authentication_error, is_locked_error,
)
from bwh.types import Envelope, LockingInfo


class TestRender:

    def test_code_and_message(self):
        assert str(BWHError(1, "Invalid location")) == "BWH API error 1: Invalid location"

    def test_code_only(self):
        assert str(BWHError(5)) == "BWH API error 5"

    def test_full_render(self):
        err = BWHError(
            VE_LOCKED,
            "VE is locked",
            additional_error_info="Migration to USCA_FMT",
            additional_locking_info=LockingInfo(50, "Copying disk", 12),
        )
        assert str(err) == (
            "BWH API error 788888: VE is locked\n"
            "Operation: Migration to USCA_FMT\n"
            "Progress: 50% complete - Copying disk (updated 12s ago)"
        )


class TestPredicates:

    def test_authentication(self):
        err = BWHError(AUTHENTICATION_FAILURE, "Authentication failure")
        assert err.is_authentication_error
        assert is_authentication_error(err)
        assert not is_locked_error(err)

    def test_locked(self):
        err = BWHError(VE_LOCKED)
        assert err.is_locked
        assert is_locked_error(err)
        assert not is_authentication_error(err)

    def test_non_bwh_errors_are_false(self):
        for exc in (TransportError("boom"), ValidationError("bad"), ValueError("x")):
            assert not is_locked_error(exc)
            assert not is_authentication_error(exc)

    def test_wrapped_error_is_found(self):
        inner = BWHError(VE_LOCKED)
        try:
            try:
                raise inner
            except BWHError as e:
                raise RuntimeError("failed to start VPS") from e
        except RuntimeError as outer:
            assert get_bwh_error(outer) is inner
            assert is_locked_error(outer)


class TestEnvelopeConversion:

    def test_from_envelope_round_trip(self):
        env = Envelope.from_dict({
            "error": VE_LOCKED,
            "message": "locked",
            "additionalLockingInfo": {"completed_percent": 1, "friendly_progress_message": "go"},
        })
        err = BWHError.from_envelope(env)
        assert err.code == VE_LOCKED
        assert Envelope.from_dict(err.to_dict()) == env

    def test_validation_error_is_value_error(self):
        assert isinstance(ValidationError("x"), ValueError)
