"""Custom exception hierarchy for hcutils.

All hcutils-specific exceptions inherit from HcutilsError, enabling
callers to catch every failure of a run with a single except clause.
Teardown failures that occur next to another failure are reported
together as a PipelineError (an ExceptionGroup).
"""

from __future__ import annotations


class HcutilsError(Exception):
    """Base exception for all hcutils errors."""


class ConfigurationError(HcutilsError):
    """Raised for invalid configuration or missing required settings."""


class KeyGenError(HcutilsError):
    """Raised when the ephemeral key pair cannot be generated."""


class RegistrationError(HcutilsError):
    """Raised when the ephemeral public key cannot be registered."""


class ProvisionError(HcutilsError):
    """Raised when the temporary server cannot be created."""


class ReachabilityTimeout(HcutilsError):  # noqa: N818
    """Raised when a server does not open its SSH port in time."""

    def __init__(self, host: str, port: int, timeout: float) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        super().__init__(f"{host}:{port} not reachable after {timeout:.0f}s")


class ActionFailed(HcutilsError):  # noqa: N818
    """Raised when a provider action reaches the error state."""

    def __init__(self, action_id: int, command: str, message: str) -> None:
        self.action_id = action_id
        self.command = command
        self.message = message
        super().__init__(f"Action {action_id} ({command}) failed: {message}")


class TransportError(HcutilsError):
    """Raised when a provider API call fails."""


class SessionError(HcutilsError):
    """Raised when the SSH session cannot be established."""


class TransferError(HcutilsError):
    """Raised when the remote transfer command exits unsuccessfully."""

    def __init__(self, command: str, exit_status: int | None, stderr: str = "") -> None:
        self.command = command
        self.exit_status = exit_status
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr.strip() else ""
        super().__init__(f"Remote command exited with status {exit_status}{detail}")


class LocalIOError(HcutilsError):
    """Raised when the local source or destination file fails."""


class TeardownError(HcutilsError):
    """Raised when a compensating action fails during teardown."""


class VolumeNotFound(HcutilsError):  # noqa: N818
    """Raised when a volume id or name does not resolve."""

    def __init__(self, ref: str) -> None:
        self.ref = ref
        super().__init__(f"Volume not found: {ref}")


class AttachmentStateError(HcutilsError):
    """Raised on an attachment transition the volume's state does not allow."""


class PromptError(HcutilsError):
    """Raised when the operator's answer cannot be read."""


class CommandError(HcutilsError, ValueError):
    """Raised when a remote command cannot be built from a volume's attributes."""


class PipelineError(ExceptionGroup):  # noqa: N818
    """The triggering failure of a run together with every teardown failure."""

    def derive(self, excs):  # type: ignore[no-untyped-def, override]
        return PipelineError(self.message, excs)
