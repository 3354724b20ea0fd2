"""Remediation of risky access."""

from saasguard.core.remediation.revocation import (
    RevocationError,
    RevocationResult,
    RevocationService,
)

__all__ = ["RevocationError", "RevocationResult", "RevocationService"]
