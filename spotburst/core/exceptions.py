"""Custom exception hierarchy for spotburst.

All spotburst-specific exceptions inherit from SpotburstError, enabling
users to catch all spotburst exceptions with a single except clause.

Two families live here:

- Run errors (``InvalidDescriptorError`` ... ``TeardownFailedError``) are what
  the caller sees. Each carries an ``ErrorKind`` and, once a run has started,
  the ``RunState`` the orchestrator had reached.
- Provider errors (``ProviderError`` and subclasses) are raised by provisioner
  clients. They carry a ``ProviderErrorCode`` so the orchestrator can decide
  whether to retry without inspecting message text.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from spotburst.types.core import RunState


class ErrorKind(StrEnum):
    """Kind of failure that ended (or prevented) a run."""

    SUBMISSION_FAILED = "submission-failed"
    POLL_FAILED = "poll-failed"
    CANCEL_FAILED = "cancel-failed"
    SETUP_FAILED = "setup-failed"
    TEARDOWN_FAILED = "teardown-failed"
    INVALID_DESCRIPTOR = "invalid-descriptor"
    INVALID_CONFIG = "invalid-config"


class SpotburstError(Exception):
    """Base exception for all spotburst errors."""

    kind: ErrorKind | None = None


# =============================================================================
# Validation
# =============================================================================


class InvalidDescriptorError(SpotburstError, ValueError):
    """Raised when a machine group descriptor is rejected."""

    kind = ErrorKind.INVALID_DESCRIPTOR


class InvalidConfigError(SpotburstError, ValueError):
    """Raised for invalid configuration or missing required settings."""

    kind = ErrorKind.INVALID_CONFIG


# =============================================================================
# Run Errors
# =============================================================================


class ProvisioningError(SpotburstError):
    """Raised when a run fails after it has started talking to the provider."""

    def __init__(self, message: str, *, state: RunState | None = None) -> None:
        super().__init__(message)
        self.state = state


class SubmissionFailedError(ProvisioningError):
    """A capacity request could not be submitted."""

    kind = ErrorKind.SUBMISSION_FAILED

    def __init__(self, group: str, message: str) -> None:
        self.group = group
        super().__init__(f"Submitting capacity for group '{group}' failed: {message}")


class PollFailedError(ProvisioningError):
    """Polling requests or instances hit a non-transient failure."""

    kind = ErrorKind.POLL_FAILED


class CancelFailedError(ProvisioningError):
    """Satisfied spot requests could not be cancelled."""

    kind = ErrorKind.CANCEL_FAILED


class SetupFailedError(ProvisioningError):
    """Connecting to a machine or running its setup failed."""

    kind = ErrorKind.SETUP_FAILED

    def __init__(self, group: str, instance_id: str, reason: str) -> None:
        self.group = group
        self.instance_id = instance_id
        self.reason = reason
        super().__init__(f"Setup of {instance_id} in group '{group}' failed: {reason}")


class TeardownFailedError(ProvisioningError):
    """Instances could not be terminated. They may still be running (and billed)."""

    kind = ErrorKind.TEARDOWN_FAILED

    def __init__(
        self,
        instance_ids: Sequence[str],
        reason: str,
        *,
        original: BaseException | None = None,
    ) -> None:
        self.instance_ids = tuple(instance_ids)
        self.reason = reason
        self.original = original
        super().__init__(
            f"Terminating {len(self.instance_ids)} instance(s) failed: {reason}. "
            f"Still running: {', '.join(self.instance_ids) or 'none'}"
        )


# =============================================================================
# Provider Errors
# =============================================================================


class ProviderErrorCode(StrEnum):
    """Classification of provider failures, decided by the provider client."""

    NOT_YET_VISIBLE = "not-yet-visible"
    THROTTLED = "throttled"
    TRANSPORT = "transport"
    OTHER = "other"


class ProviderError(SpotburstError):
    """Raised by a provisioner client when a control-plane call fails."""

    code: ProviderErrorCode = ProviderErrorCode.OTHER

    def __init__(self, message: str, *, provider_code: str | None = None) -> None:
        self.provider_code = provider_code
        super().__init__(message)

    @property
    def transient(self) -> bool:
        return self.code is not ProviderErrorCode.OTHER


class NotYetVisibleError(ProviderError):
    """Identifier was just created and is not visible yet (eventual consistency)."""

    code = ProviderErrorCode.NOT_YET_VISIBLE


class ThrottledError(ProviderError):
    """Provider rate limit hit."""

    code = ProviderErrorCode.THROTTLED


class ProviderTransportError(ProviderError):
    """Connection to the control plane dropped before a response arrived."""

    code = ProviderErrorCode.TRANSPORT


class SessionError(SpotburstError):
    """Raised by a session client when a remote session cannot be used."""
