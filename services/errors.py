"""Failure taxonomy for data acquisition."""

from __future__ import annotations

from typing import Optional

from models.acquisition import FailureKind


class AcquisitionError(Exception):
    """Base class for expected acquisition failures."""


class ValidationError(AcquisitionError):
    """A wire payload did not match the reading schema."""


class FetchError(AcquisitionError):
    """A batch request failed at the transport, HTTP or validation level."""

    def __init__(
        self,
        message: str,
        *,
        kind: FailureKind = FailureKind.network,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class StreamError(AcquisitionError):
    """The live stream could not be opened or broke after opening."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
