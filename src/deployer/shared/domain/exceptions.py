"""
Domain exceptions for Deployer.

All application errors inherit from DeployError. Each kind maps to a
distinct CLI exit code so callers can tell load, execution and transport
failures apart.
"""


class DeployError(Exception):
    """Base class for all Deployer exceptions."""

    exit_code: int = 1

    def __init__(self, message: str, context: dict = None):
        super().__init__(message)
        self.context = context or {}


class PlanLoadError(DeployError):
    """Raised when a plan definition is malformed. No execution is attempted."""

    exit_code = 2

    def __init__(self, message: str, location: str | None = None, context: dict = None):
        self.location = location
        if location:
            message = f"{location}: {message}"
        super().__init__(message, context)


class CommandError(DeployError):
    """Raised when a command exits with a nonzero status."""

    exit_code = 3

    def __init__(self, command: str, exit_code: int, stderr: str = "", context: dict = None):
        self.command = command
        self.returncode = exit_code
        self.stderr = stderr
        super().__init__(f"Command exited with status {exit_code}: {command}", context)


class TransportError(DeployError):
    """Raised on connection or authentication failure against a target."""

    exit_code = 4


class CancellationError(DeployError):
    """Raised when a run is cancelled by the user."""

    exit_code = 130
    non_retryable = True


class SecretNotFoundError(DeployError):
    """Raised when a credential reference cannot be resolved."""

    exit_code = 2
    non_retryable = True


class CheckoutError(DeployError):
    """Raised when the source tree cannot be fetched."""

    exit_code = 3


class DeployLogError(DeployError):
    """Raised when the deploy log cannot be opened for appending."""

    exit_code = 2
