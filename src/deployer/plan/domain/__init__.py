"""
Plan domain.

Exports enums and models for deployment plans and their results.
"""

from deployer.plan.domain.enums import CommandKind, FailurePolicy, ResultStatus, RunStatus, TransportKind
from deployer.plan.domain.models import (
    Command,
    ExecutionReport,
    ExecutionResult,
    Plan,
    SourceSpec,
    Stage,
    Target,
)

__all__ = [
    "CommandKind",
    "FailurePolicy",
    "ResultStatus",
    "RunStatus",
    "TransportKind",
    "Command",
    "ExecutionReport",
    "ExecutionResult",
    "Plan",
    "SourceSpec",
    "Stage",
    "Target",
]
