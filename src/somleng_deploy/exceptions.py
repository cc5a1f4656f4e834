"""Errors raised by the installer stages."""


class DeployError(Exception):
    """Base class for failures that should stop a flow with exit code 1."""


class PrerequisiteError(DeployError):
    """A required tool, permission or host fact is missing."""


class ConfigurationError(DeployError):
    """The .env file or its template is missing or incomplete."""


class OrchestratorError(DeployError):
    """A docker compose command failed."""

    def __init__(self, message: str, returncode: int = None, output: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class ProvisioningError(DeployError):
    """An AWS resource could not be looked up or created."""
