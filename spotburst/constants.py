"""Centralized constants and enums for spotburst.

All magic strings and defaults are defined here to ensure consistency
and enable type-safe usage throughout the codebase.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# EC2 Spot Request States
# =============================================================================


class SpotRequestState(StrEnum):
    """Spot instance request state names."""

    OPEN = "open"
    ACTIVE = "active"
    CLOSED = "closed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_REQUEST_STATES: Final = frozenset(
    {SpotRequestState.CLOSED, SpotRequestState.CANCELLED, SpotRequestState.FAILED}
)

# =============================================================================
# EC2 Instance States
# =============================================================================


class InstanceState(StrEnum):
    """EC2 instance state names."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"


DEAD_INSTANCE_STATES: Final = frozenset({InstanceState.SHUTTING_DOWN, InstanceState.TERMINATED})

# =============================================================================
# Defaults
# =============================================================================

SSH_PORT: Final = 22
DEFAULT_DURATION_HOURS: Final = 1
MAX_DURATION_HOURS: Final = 255
DEFAULT_REGION: Final = "us-east-1"
