from deployer.secrets.provider import (
    CredentialHandle,
    EnvironmentSecretProvider,
    SecretProvider,
    StaticSecretProvider,
)

__all__ = [
    "CredentialHandle",
    "SecretProvider",
    "EnvironmentSecretProvider",
    "StaticSecretProvider",
]
