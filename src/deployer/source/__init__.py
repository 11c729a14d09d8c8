from deployer.source.checkout import (
    GitCheckoutProvider,
    LocalDirectoryProvider,
    SourceCheckoutProvider,
    provider_for,
)

__all__ = [
    "SourceCheckoutProvider",
    "GitCheckoutProvider",
    "LocalDirectoryProvider",
    "provider_for",
]
