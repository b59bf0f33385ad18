"""hcutils - move Hetzner Cloud volumes to and from the local machine.

A temporary server is created for each run, the volume is attached to it,
its contents are streamed over SSH, and everything temporary is deleted
again, even when a step fails.

Example:
    from pathlib import Path

    from hcutils import Orchestrator, get_client, load_settings

    settings = load_settings()
    orchestrator = Orchestrator(get_client(settings), settings)
    orchestrator.download_volume("my-volume", Path("my-volume.tar.gz"))
"""

__version__ = "0.1.0"

from hcutils.client import get_client
from hcutils.commands import DownloadType, TransferDirection
from hcutils.config import Settings, load_settings
from hcutils.exceptions import (
    ActionFailed,
    AttachmentStateError,
    CommandError,
    ConfigurationError,
    HcutilsError,
    KeyGenError,
    LocalIOError,
    PipelineError,
    PromptError,
    ProvisionError,
    ReachabilityTimeout,
    RegistrationError,
    SessionError,
    TeardownError,
    TransferError,
    TransportError,
    VolumeNotFound,
)
from hcutils.orchestrator import DownloadResult, Orchestrator, UploadResult

__all__ = [
    "ActionFailed",
    "AttachmentStateError",
    "CommandError",
    "ConfigurationError",
    "DownloadResult",
    "DownloadType",
    "HcutilsError",
    "KeyGenError",
    "LocalIOError",
    "Orchestrator",
    "PipelineError",
    "PromptError",
    "ProvisionError",
    "ReachabilityTimeout",
    "RegistrationError",
    "SessionError",
    "Settings",
    "TeardownError",
    "TransferDirection",
    "TransferError",
    "TransportError",
    "UploadResult",
    "VolumeNotFound",
    "get_client",
    "load_settings",
]
