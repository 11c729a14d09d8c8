"""
Execution engine and its collaborators.
"""

from deployer.engine.application.deploy_log import DeployLog, DeployLogEntry
from deployer.engine.application.engine import ExecutionEngine
from deployer.engine.application.runner import DeploymentRunner, RunOptions, select_targets

__all__ = [
    "DeployLog",
    "DeployLogEntry",
    "ExecutionEngine",
    "DeploymentRunner",
    "RunOptions",
    "select_targets",
]
