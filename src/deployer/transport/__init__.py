"""
Transport adapters.

- LocalShellTransport: /bin/sh on this machine
- SecureShellTransport: system ssh/scp clients
- DryRunTransport: records commands, runs nothing
"""

from deployer.transport.base import Transport
from deployer.transport.dry_run import DryRunTransport
from deployer.transport.factory import TRANSPORTS, TransportFactory, create_transport
from deployer.transport.local import LocalShellTransport
from deployer.transport.ssh import SecureShellTransport

__all__ = [
    "Transport",
    "LocalShellTransport",
    "SecureShellTransport",
    "DryRunTransport",
    "TRANSPORTS",
    "TransportFactory",
    "create_transport",
]
