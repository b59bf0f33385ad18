"""Download and upload pipelines.

Both pipelines run strictly forward (provision, attach, transfer) and then
unwind their teardown stack, whether the forward part succeeded or not.
Once the SSH key is registered nothing the run created can leak: the key
and the temporary server are on the stack before any later step can fail.
"""

from __future__ import annotations

import socket
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from hcloud import Client
from hcloud.servers import BoundServer
from loguru import logger
from rich.console import Console
from rich.markup import escape

from hcutils.actions import ActionPoller
from hcutils.commands import (
    DownloadType,
    TransferDirection,
    default_output_name,
    download_command,
    upload_command,
)
from hcutils.config import Settings
from hcutils.exceptions import LocalIOError
from hcutils.instances import Connector, InstanceProvisioner, public_ipv4
from hcutils.keys import CredentialManager, EphemeralKey
from hcutils.prompt import Confirmer, ask_confirmation
from hcutils.teardown import Teardown, TeardownStep, combine_errors
from hcutils.transfer import TransferExecutor
from hcutils.volumes import VolumeManager


@dataclass(frozen=True, slots=True)
class DownloadResult:
    volume_id: int
    volume_name: str
    path: Path | None
    bytes_written: int = 0
    reattached: bool = False
    cancelled: bool = False


@dataclass(frozen=True, slots=True)
class UploadResult:
    volume_id: int
    volume_name: str
    source: Path
    bytes_sent: int


@dataclass(frozen=True, slots=True)
class _Provisioned:
    key: EphemeralKey
    server: BoundServer
    host: str
    key_step: TeardownStep


class Orchestrator:
    """Sequences credentials, server, volume and transfer for one run.

    Example:
        >>> orchestrator = Orchestrator(get_client(settings), settings)
        >>> orchestrator.download_volume("1234", Path("volume.tar.gz"))
    """

    def __init__(
        self,
        client: Client,
        settings: Settings,
        *,
        confirm: Confirmer = ask_confirmation,
        console: Console | None = None,
        executor: TransferExecutor | None = None,
        connect: Connector = socket.create_connection,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.console = console or Console()
        self.poller = ActionPoller(client, settings.poll_interval, sleep)
        self.credentials = CredentialManager(client, settings)
        self.provisioner = InstanceProvisioner(client, self.poller, settings, connect, sleep)
        self.volumes = VolumeManager(client, self.poller, settings, confirm, self.console)
        self.executor = executor or TransferExecutor(
            user=settings.ssh_user,
            port=settings.ssh_port,
            connect_timeout=settings.connect_timeout,
        )

    def _narrate(self, message: str) -> None:
        self.console.print(message)

    def _run[T](self, direction: TransferDirection, body: Callable[[Teardown], T]) -> T:
        teardown = Teardown()
        try:
            result = body(teardown)
        except Exception as e:
            logger.info("{direction} failed, tearing down: {error}", direction=direction, error=e)
            combined = combine_errors(e, teardown.unwind(self._narrate))
            if combined is e:
                raise
            raise combined from None
        except BaseException:
            for error in teardown.unwind(self._narrate):
                self.console.print(f"[red]Cleanup failed:[/red] {escape(str(error))}")
            raise

        combined = combine_errors(None, teardown.unwind(self._narrate))
        if combined is not None:
            raise combined
        return result

    def _provision(self, teardown: Teardown, location: str) -> _Provisioned:
        key = self.credentials.generate()
        ssh_key = self.credentials.register(key)
        key_step = teardown.push("Deleting SSH key", lambda: self.credentials.unregister(ssh_key))

        self._narrate("Creating temporary server...")
        server = self.provisioner.provision(location, ssh_key)
        teardown.push("Deleting temporary server", lambda: self.provisioner.destroy(server))
        return _Provisioned(key=key, server=server, host=public_ipv4(server), key_step=key_step)

    def download_volume(
        self,
        ref: str,
        destination: Path | None = None,
        dl_type: DownloadType = DownloadType.ARCHIVE,
    ) -> DownloadResult:
        """Copy a volume's contents into a local file.

        Args:
            ref: Volume id or name.
            destination: Output file, created or truncated. Defaults to
                volume-<id>.tar.gz or volume-<id>.img.gz.
            dl_type: Filesystem archive or raw block image.

        Returns:
            The result; ``cancelled`` is set when the operator declined to
            detach the volume, in which case nothing was touched.

        Raises:
            HcutilsError: The failure that stopped the run.
            PipelineError: The failure plus any teardown failures.
        """
        attachment = self.volumes.resolve(ref)
        volume = attachment.volume
        command = download_command(volume, dl_type)

        if not attachment.release_prior():
            self._narrate("Canceling")
            return DownloadResult(volume.id, volume.name, None, cancelled=True)

        path = destination or Path(default_output_name(volume.id, dl_type))

        def body(teardown: Teardown) -> DownloadResult:
            run = self._provision(teardown, volume.location.name)

            self._narrate("Waiting for server to start...")
            self.provisioner.wait_reachable(run.server)

            self._narrate("Attaching volume...")
            attachment.attach(run.server)

            self._narrate(f"Downloading volume {volume.name} to {path}...")
            written = self.executor.download(run.host, run.key.private_key, command, path)

            reattached = attachment.maybe_reattach()
            return DownloadResult(volume.id, volume.name, path, written, reattached=reattached)

        return self._run(TransferDirection.DOWNLOAD, body)

    def upload_volume(
        self,
        source: Path,
        size: int,
        location: str,
        name: str | None = None,
    ) -> UploadResult:
        """Create a volume and fill it from a local tar.gz archive.

        Args:
            source: Local gzip-compressed tar archive.
            size: Volume size in GB.
            location: Location of the new volume (e.g. fsn1).
            name: Volume name. Defaults to hcutil-uploaded-volume-<digits>.

        Raises:
            LocalIOError: If source is not a readable file (before any
                cloud resource is created).
            HcutilsError: The failure that stopped the run.
            PipelineError: The failure plus any teardown failures.
        """
        if not source.is_file():
            raise LocalIOError(f"Not a file: {source}")

        def body(teardown: Teardown) -> UploadResult:
            run = self._provision(teardown, location)
            # The server already carries the key.
            teardown.run_early(run.key_step)

            self._narrate("Waiting for server to start...")
            self.provisioner.wait_reachable(run.server)

            self._narrate("Creating volume...")
            volume = self.volumes.create(run.server, size, name)

            self._narrate(f"Uploading {source} to {volume.name}...")
            sent = self.executor.upload(run.host, run.key.private_key, upload_command(volume.id), source)
            return UploadResult(volume.id, volume.name, source, sent)

        return self._run(TransferDirection.UPLOAD, body)
