"""Volume attachment management.

A volume touched by a run moves through a small state machine:

    unattached ---------------------------> attached_to_ephemeral
    attached_to_other --(confirmed detach)--> unattached
    attached_to_ephemeral --(confirmed reattach)--> detaching --> attached_to_other

A volume is never attached to two servers: attaching to the temporary
server is only allowed from ``unattached``, and leaving another server
always goes through an explicit, operator-confirmed detach.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import requests
from hcloud import APIException, Client, HCloudException
from hcloud.actions import BoundAction
from hcloud.servers import BoundServer
from hcloud.volumes import BoundVolume
from loguru import logger
from rich.console import Console

from hcutils.actions import ActionPoller
from hcutils.config import Settings
from hcutils.exceptions import AttachmentStateError, TransportError, VolumeNotFound
from hcutils.naming import uploaded_volume_name
from hcutils.prompt import Confirmer


class AttachmentState(StrEnum):
    UNATTACHED = "unattached"
    ATTACHED_TO_OTHER = "attached_to_other"
    ATTACHED_TO_EPHEMERAL = "attached_to_ephemeral"
    DETACHING = "detaching"


@dataclass(frozen=True, slots=True)
class PriorAttachment:
    """Server a volume was attached to before the run detached it."""

    server_id: int
    server_name: str


def _call[T](description: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    try:
        return fn(*args, **kwargs)
    except (HCloudException, requests.RequestException) as e:
        raise TransportError(f"{description} failed: {e}") from e


class VolumeAttachment:
    """Attachment state of one volume for the duration of one run."""

    def __init__(
        self,
        manager: VolumeManager,
        volume: BoundVolume,
        prior: PriorAttachment | None,
    ) -> None:
        self._manager = manager
        self.volume = volume
        self.prior = prior
        self.state = AttachmentState.ATTACHED_TO_OTHER if prior else AttachmentState.UNATTACHED

    def _transition(self, expected: AttachmentState, new: AttachmentState) -> None:
        if self.state is not expected:
            raise AttachmentStateError(
                f"Volume {self.volume.name} is {self.state}, expected {expected} before {new}"
            )
        logger.debug("Volume {id}: {old} -> {new}", id=self.volume.id, old=self.state, new=new)
        self.state = new

    def release_prior(self) -> bool:
        """Detach the volume from its current server, with confirmation.

        Returns:
            True if the volume is now unattached (or never was attached),
            False if the operator declined. Nothing is touched on decline.
        """
        if self.prior is None:
            return True

        question = (
            f"Volume {self.volume.name} is attached to server {self.prior.server_name}. "
            "To download the volume, it needs to be detached. Do you want to detach it?\n"
            "Warning: This could possibly lead to data loss"
        )
        if not self._manager.confirm(question):
            logger.info("Detach of volume {id} declined", id=self.volume.id)
            return False

        self._manager.console.print(f"Detaching volume {self.volume.name}")
        self._manager.detach(self.volume)
        self._transition(AttachmentState.ATTACHED_TO_OTHER, AttachmentState.UNATTACHED)
        return True

    def attach(self, server: BoundServer, automount: bool = True) -> None:
        if self.state is not AttachmentState.UNATTACHED:
            raise AttachmentStateError(
                f"Volume {self.volume.name} is {self.state}; it must be detached first"
            )
        self._manager.attach(self.volume, server, automount=automount)
        self._transition(AttachmentState.UNATTACHED, AttachmentState.ATTACHED_TO_EPHEMERAL)

    def maybe_reattach(self) -> bool:
        """Offer to move the volume back to the server it came from.

        Returns:
            True if reattached. False if there was no prior owner or the
            operator declined, in which case the volume stays on the
            temporary server and ends up unattached once it is deleted.
        """
        if self.prior is None:
            return False

        question = (
            f"Volume {self.volume.name} was attached to server {self.prior.server_name}. "
            "Do you want to reattach it?"
        )
        if not self._manager.confirm(question):
            logger.info("Reattach of volume {id} declined", id=self.volume.id)
            return False

        self._manager.console.print(
            f"Reattaching volume {self.volume.name} to server {self.prior.server_name}"
        )
        self._transition(AttachmentState.ATTACHED_TO_EPHEMERAL, AttachmentState.DETACHING)
        self._manager.detach(self.volume)
        self._transition(AttachmentState.DETACHING, AttachmentState.UNATTACHED)

        owner = self._manager.server(self.prior.server_id)
        self._manager.attach(self.volume, owner, automount=None)
        self._transition(AttachmentState.UNATTACHED, AttachmentState.ATTACHED_TO_OTHER)
        return True


class VolumeManager:
    """Provider-side volume operations, each awaited through the poller."""

    def __init__(
        self,
        client: Client,
        poller: ActionPoller,
        settings: Settings,
        confirm: Confirmer,
        console: Console,
    ) -> None:
        self._client = client
        self._poller = poller
        self._settings = settings
        self.confirm = confirm
        self.console = console

    def resolve(self, ref: str) -> VolumeAttachment:
        """Look a volume up by numeric id or by name and capture its owner.

        A numeric ref that matches no id is retried as a name.

        Raises:
            VolumeNotFound: If nothing matches.
            TransportError: On API failure.
        """
        volume: BoundVolume | None = None
        if ref.isdigit():
            try:
                volume = self._client.volumes.get_by_id(int(ref))
            except APIException as e:
                if e.code != "not_found":
                    raise TransportError(f"Volume lookup failed: {e}") from e
            except (HCloudException, requests.RequestException) as e:
                raise TransportError(f"Volume lookup failed: {e}") from e
        if volume is None:
            volume = _call("Volume lookup", self._client.volumes.get_by_name, ref)

        if volume is None:
            raise VolumeNotFound(ref)

        prior = None
        if volume.server is not None:
            owner = self.server(volume.server.id)
            prior = PriorAttachment(server_id=owner.id, server_name=owner.name)
        logger.debug("Resolved volume {ref} to {id} (attached: {prior})", ref=ref, id=volume.id, prior=prior)
        return VolumeAttachment(self, volume, prior)

    def server(self, server_id: int) -> BoundServer:
        return _call(f"Server {server_id} lookup", self._client.servers.get_by_id, server_id)

    def detach(self, volume: BoundVolume) -> None:
        action: BoundAction = _call(f"Detach of volume {volume.id}", self._client.volumes.detach, volume)
        self._poller.wait(action)

    def attach(
        self, volume: BoundVolume, server: BoundServer, automount: bool | None = True,
    ) -> None:
        logger.info("Attaching volume {vid} to server {sid}", vid=volume.id, sid=server.id)
        action: BoundAction = _call(
            f"Attach of volume {volume.id}",
            self._client.volumes.attach,
            volume,
            server,
            automount=automount,
        )
        self._poller.wait(action)

    def create(self, server: BoundServer, size: int, name: str | None = None) -> BoundVolume:
        """Create a formatted volume, automounted on the given server."""
        name = name or uploaded_volume_name()
        response = _call(
            f"Creation of volume {name}",
            self._client.volumes.create,
            size=size,
            name=name,
            labels=dict(self._settings.labels),
            server=server,
            automount=True,
            format=self._settings.volume_format,
        )
        self._poller.wait(response.action)
        self._poller.wait_all(response.next_actions or ())
        logger.info("Created volume {name} ({id}), {size} GB", name=name, id=response.volume.id, size=size)
        return response.volume
