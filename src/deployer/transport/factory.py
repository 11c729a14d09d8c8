"""
Transport factory.

Maps a target's transport kind to an adapter class. New remote-execution
mechanisms register here.
"""

from typing import Callable, Dict, Optional, Type

from deployer.plan.domain.enums import TransportKind
from deployer.plan.domain.models import Target
from deployer.secrets.provider import EnvironmentSecretProvider, SecretProvider
from deployer.transport.base import Transport
from deployer.transport.dry_run import DryRunTransport
from deployer.transport.local import LocalShellTransport
from deployer.transport.ssh import SecureShellTransport

TRANSPORTS: Dict[TransportKind, Type[Transport]] = {
    TransportKind.LOCAL: LocalShellTransport,
    TransportKind.SSH: SecureShellTransport,
}

TransportFactory = Callable[[Target], Transport]


def create_transport(
    target: Target,
    secrets: Optional[SecretProvider] = None,
    dry_run: bool = False,
) -> Transport:
    """
    Build the adapter for ``target``.

    The credential is resolved here, at execution time, never at load time.

    Raises:
        SecretNotFoundError: If the target names a credential the provider lacks
    """
    if dry_run:
        return DryRunTransport(target)

    credential = None
    if target.credential:
        secrets = secrets or EnvironmentSecretProvider()
        credential = secrets.lookup(target.credential)

    return TRANSPORTS[target.transport](target, credential=credential)
