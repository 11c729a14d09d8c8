"""
Deployer Core - deployment orchestrator.

Loads a declarative plan, then runs its stages against local or remote
targets with ordering, bounded retries, rollback and cleanup guarantees.
"""

__version__ = "0.1.0"
