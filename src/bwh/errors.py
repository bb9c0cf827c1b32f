"""
Error model for the KiwiVM API.

The provider always answers HTTP 200 and reports failures in the JSON body:
a nonzero ``error`` field plus an optional message. When the VPS is busy
with another mutating operation the body also carries a description of that
operation and a live progress record.

Three kinds of failure are kept apart:
- TransportError: network, timeout, non-200 status, undecodable body
- BWHError: a nonzero envelope code, typed and inspectable
- ValidationError: input rejected locally before any request is sent
"""

from typing import Any, Dict, Optional

from .types import Envelope, LockingInfo

AUTHENTICATION_FAILURE = 700005
VE_LOCKED = 788888


class BWHError(Exception):
    """A domain error reported by the API through a nonzero envelope code."""

    def __init__(
        self,
        code: int,
        message: str = "",
        additional_error_info: str = "",
        additional_locking_info: Optional[LockingInfo] = None,
    ):
        self.code = code
        self.message = message
        self.additional_error_info = additional_error_info
        self.additional_locking_info = additional_locking_info
        super().__init__(self._render())

    @classmethod
    def from_envelope(cls, envelope: Envelope) -> "BWHError":
        return cls(
            code=envelope.error,
            message=envelope.message,
            additional_error_info=envelope.additional_error_info,
            additional_locking_info=envelope.additional_locking_info,
        )

    @property
    def is_authentication_error(self) -> bool:
        return self.code == AUTHENTICATION_FAILURE

    @property
    def is_locked(self) -> bool:
        return self.code == VE_LOCKED

    def to_envelope(self) -> Envelope:
        return Envelope(
            error=self.code,
            message=self.message,
            additional_error_info=self.additional_error_info,
            additional_locking_info=self.additional_locking_info,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire form of the envelope this error was built from."""
        return self.to_envelope().to_dict()

    def _render(self) -> str:
        if self.message:
            text = f"BWH API error {self.code}: {self.message}"
        else:
            text = f"BWH API error {self.code}"
        if self.additional_error_info:
            text += f"\nOperation: {self.additional_error_info}"
        if self.additional_locking_info is not None:
            text += f"\n{self.additional_locking_info.describe()}"
        return text

    def __repr__(self) -> str:
        return f"BWHError(code={self.code}, message={self.message!r})"


class TransportError(Exception):
    """The request did not produce a decodable API envelope."""


class ResponseDecodeError(TransportError):
    """The body was not JSON, or did not have the expected shape."""


class ValidationError(ValueError):
    """Input rejected client-side; no request was made."""


def get_bwh_error(exc: BaseException) -> Optional[BWHError]:
    """Find a BWHError in an exception or its explicit cause chain."""
    seen = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, BWHError):
            return exc
        seen.add(id(exc))
        exc = exc.__cause__
    return None


def is_authentication_error(exc: BaseException) -> bool:
    err = get_bwh_error(exc)
    return err is not None and err.is_authentication_error


def is_locked_error(exc: BaseException) -> bool:
    err = get_bwh_error(exc)
    return err is not None and err.is_locked
