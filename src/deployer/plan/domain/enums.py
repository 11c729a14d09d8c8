"""
Plan domain enums.

Defines failure policies, transport kinds and execution states.
"""

from enum import Enum


class FailurePolicy(Enum):
    """
    What the engine does when a stage fails for a target.
    """

    ABORT = "abort"  # Stop the run for that target
    CONTINUE = "continue"  # Log and proceed to the next stage
    ROLLBACK = "rollback-to-previous"  # Run compensating commands, then stop

    @classmethod
    def parse(cls, value: str) -> "FailurePolicy":
        normalized = value.strip().lower().replace("_", "-")
        if normalized == "rollback":
            return cls.ROLLBACK
        return cls(normalized)


class TransportKind(Enum):
    """How commands reach a target."""

    LOCAL = "local"
    SSH = "ssh"


class CommandKind(Enum):
    RUN = "run"
    TRANSFER = "transfer"


class ResultStatus(Enum):
    """
    Terminal state of one stage on one target.
    """

    SUCCEEDED = "succeeded"
    FAILED = "failed"  # Command exited nonzero or timed out
    UNREACHABLE = "unreachable"  # Transport failed after retries
    CANCELLED = "cancelled"  # Run cancelled while in flight


class RunStatus(Enum):
    """Overall run status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"  # Every result succeeded
    FAILED = "failed"  # At least one result did not succeed
    CANCELLED = "cancelled"  # Cancellation signal received
