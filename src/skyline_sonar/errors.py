"""
Exception hierarchy for the pose/filter/sonification pipeline.

Capability and dataset failures are surfaced to the caller as state
(see ``models.CapabilityStatus``); these classes exist so the collaborators
that detect them have something precise to raise and catch.
"""


class SkylineSonarError(Exception):
    """Base exception class for all Skyline Sonar errors."""
    pass


class CapabilityUnavailable(SkylineSonarError):
    """Position or heading sensing is unsupported or was denied."""

    def __init__(self, capability: str, reason: str = "") -> None:
        self.capability = capability
        self.reason = reason
        message = f"{capability} capability unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class DatasetUnavailable(SkylineSonarError):
    """The building dataset could not be loaded or parsed."""
    pass


class MalformedSample(SkylineSonarError):
    """A raw sensor sample is missing required fields or is out of range."""
    pass
