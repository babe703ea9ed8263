"""
Error taxonomy for provisioning.

Adapters raise these; the Action boundary turns them into failed
receipts tagged with ``kind`` so the executor can decide whether to
retry and the reporter can explain what happened. Only
``ConfigurationError`` is allowed to stop a run, and only before the
first step executes.
"""

from __future__ import annotations


class ProvisionError(Exception):
    """Base class for all provisioning errors."""

    kind = "unexpected"
    retryable = False


class PreconditionError(ProvisionError):
    """A required external tool, file or release asset is missing."""

    kind = "precondition"


class TransientError(ProvisionError):
    """Network or API failure that may succeed on a later attempt."""

    kind = "transient"
    retryable = True


class PermissionDeniedError(ProvisionError):
    """A privileged operation was refused (sudo denied, chsh rejected)."""

    kind = "permission"


class ConfigurationError(ProvisionError):
    """The plan or configuration is invalid."""

    kind = "configuration"
