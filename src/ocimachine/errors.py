"""
Exception hierarchy for the OCI machine driver.

Every error raised to the orchestrator derives from DriverError, so a
caller can catch one type and still tell the failure kinds apart:
configuration problems fail before any network call, resolution
problems fail before a launch is submitted, provider errors wrap SDK
failures, and convergence errors report a wait that did not reach its
target state.
"""

from __future__ import annotations

from typing import Optional


class DriverError(Exception):
    """Base exception for all driver errors."""


class ConfigurationError(DriverError):
    """Raised when local configuration is missing or unusable."""


class ResolutionError(DriverError):
    """Raised when a human-readable name cannot be resolved to an OCID."""


class ImageNotFoundError(ResolutionError):
    """Raised when no available image matches the requested name."""

    def __init__(self, image_name: str) -> None:
        super().__init__(f"could not retrieve image id for an image named {image_name}")
        self.image_name = image_name


class ProviderError(DriverError):
    """Raised when an OCI API call fails."""


class InstanceStateError(DriverError):
    """Raised when the instance record cannot serve the requested operation."""


class ConvergenceError(DriverError):
    """Base for waits that ended without reaching the target state.

    Args:
        message: Human-readable description.
        resource_id: OCID of the resource being waited on.
        target_state: Lifecycle state the wait was converging to.
    """

    def __init__(
        self,
        message: str,
        resource_id: Optional[str] = None,
        target_state: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.resource_id = resource_id
        self.target_state = target_state


class ProviderReadError(ConvergenceError):
    """A status read failed mid-wait; the resource's real state is unknown."""


class ConvergenceTimeoutError(ConvergenceError):
    """The wait exhausted its attempt or time budget."""


class ConvergenceCancelledError(ConvergenceError):
    """The caller cancelled the wait."""
