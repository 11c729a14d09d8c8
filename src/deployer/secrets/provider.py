"""
Secret providers.

The plan only ever names a credential. A provider turns that name into a
CredentialHandle at execution time; the raw value is reachable through
``reveal()`` alone and is registered with the log redactor when revealed.
"""

import os
from abc import ABC, abstractmethod
from typing import Dict, Optional

from deployer.shared.domain.exceptions import SecretNotFoundError
from deployer.shared.infrastructure.logging import get_logger, register_secret

logger = get_logger(__name__)


class CredentialHandle:
    """Opaque reference to a resolved secret."""

    __slots__ = ("name", "_value")

    def __init__(self, name: str, value: str):
        self.name = name
        self._value = value

    def reveal(self) -> str:
        register_secret(self._value)
        return self._value

    def __repr__(self) -> str:
        return f"CredentialHandle(name={self.name!r})"

    __str__ = __repr__

    def __reduce__(self):
        raise TypeError("CredentialHandle cannot be serialized")


class SecretProvider(ABC):
    """Resolves credential names to handles."""

    @abstractmethod
    def lookup(self, name: str) -> CredentialHandle:
        """
        Resolve ``name``.

        Raises:
            SecretNotFoundError: If no secret with that name exists
        """


class EnvironmentSecretProvider(SecretProvider):
    """
    Reads secrets from environment variables.

    ``deploy_key`` resolves from ``DEPLOY_SECRET_DEPLOY_KEY``.
    """

    def __init__(self, prefix: str = "DEPLOY_SECRET_", environ: Optional[Dict[str, str]] = None):
        self.prefix = prefix
        self._environ = os.environ if environ is None else environ

    def variable_for(self, name: str) -> str:
        return self.prefix + name.upper().replace("-", "_").replace(".", "_")

    def lookup(self, name: str) -> CredentialHandle:
        variable = self.variable_for(name)
        value = self._environ.get(variable)
        if not value:
            raise SecretNotFoundError(f"Secret '{name}' not found (expected ${variable})", {"secret": name})
        logger.debug("secret_resolved", secret=name, source="environment")
        return CredentialHandle(name, value)


class StaticSecretProvider(SecretProvider):
    """In-memory provider, for tests and embedding."""

    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self._secrets = dict(secrets or {})

    def lookup(self, name: str) -> CredentialHandle:
        if name not in self._secrets:
            raise SecretNotFoundError(f"Secret '{name}' not found", {"secret": name})
        return CredentialHandle(name, self._secrets[name])
