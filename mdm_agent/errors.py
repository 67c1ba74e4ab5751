"""MDM agent exception hierarchy."""

from __future__ import annotations


class MdmAgentError(Exception):
    """Base exception for all agent errors."""


class ConfigError(MdmAgentError):
    """Raised when agent settings are invalid."""


class StoreError(MdmAgentError):
    """Persistence unavailable or corrupt. Fatal to the current transition."""


class PolicyError(MdmAgentError):
    """Policy application failed. The caller may retry."""

    retryable = True


class PolicyUnauthorized(PolicyError):
    """Device-admin capability was revoked."""


class PolicyUnavailable(PolicyError):
    """The device-policy service could not be reached."""


class LaunchError(MdmAgentError):
    """The lock UI could not be brought to the foreground."""


class ActivityStartRejected(LaunchError):
    """The platform refused to start the lock UI task."""
