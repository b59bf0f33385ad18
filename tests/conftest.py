from __future__ import annotations

import contextlib
import gzip
import io
import itertools
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from hcloud import APIException
from rich.console import Console

from hcutils.config import Settings
from hcutils.orchestrator import Orchestrator

SERVER_IP = "203.0.113.10"


# =============================================================================
# Fake Hetzner Cloud client
# =============================================================================


@dataclass
class FakeAction:
    id: int
    status: str = "success"
    command: str = ""
    error: dict[str, str] | None = None


class FakeHetzner:
    """In-memory stand-in for hcloud.Client.

    Mirrors the subset of the SDK hcutils uses. Every call is appended to
    ``calls`` as "<resource>.<method>" so tests can assert ordering, and
    ``fail["servers.create"] = SomeError()`` makes that call raise.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(100)
        self.calls: list[str] = []
        self.fail: dict[str, Exception] = {}
        self.action_sequences: dict[int, list[FakeAction]] = {}
        self.failing_actions: dict[str, str] = {}
        self.ssh_keys_by_id: dict[int, SimpleNamespace] = {}
        self.servers_by_id: dict[int, SimpleNamespace] = {}
        self.volumes_by_id: dict[int, SimpleNamespace] = {}
        self.actions = SimpleNamespace(get_by_id=self._get_action)
        self.ssh_keys = SimpleNamespace(create=self._create_key, delete=self._delete_key)
        self.servers = SimpleNamespace(
            create=self._create_server,
            delete=self._delete_server,
            get_by_id=self._get_server,
        )
        self.volumes = SimpleNamespace(
            get_by_id=self._get_volume,
            get_by_name=self._get_volume_by_name,
            attach=self._attach,
            detach=self._detach,
            create=self._create_volume,
        )

    # -- helpers ---------------------------------------------------------------

    def _record(self, call: str) -> None:
        self.calls.append(call)
        if call in self.fail:
            raise self.fail[call]

    def _action(self, command: str) -> FakeAction:
        if command in self.failing_actions:
            return FakeAction(
                next(self._ids), "error", command,
                {"code": "action_failed", "message": self.failing_actions[command]},
            )
        return FakeAction(next(self._ids), "success", command)

    def add_server(self, name: str, server_id: int | None = None) -> SimpleNamespace:
        server = SimpleNamespace(
            id=server_id or next(self._ids),
            name=name,
            public_net=SimpleNamespace(ipv4=SimpleNamespace(ip=SERVER_IP)),
            labels={},
        )
        self.servers_by_id[server.id] = server
        return server

    def add_volume(
        self,
        volume_id: int,
        name: str,
        *,
        size: int = 10,
        location: str = "fsn1",
        server: SimpleNamespace | None = None,
    ) -> SimpleNamespace:
        volume = SimpleNamespace(
            id=volume_id,
            name=name,
            size=size,
            location=SimpleNamespace(name=location),
            linux_device=f"/dev/disk/by-id/scsi-0HC_Volume_{volume_id}",
            server=SimpleNamespace(id=server.id) if server else None,
            labels={},
        )
        self.volumes_by_id[volume_id] = volume
        return volume

    def attached_to(self, volume_id: int) -> int | None:
        server = self.volumes_by_id[volume_id].server
        return server.id if server else None

    # -- actions ---------------------------------------------------------------

    def _get_action(self, action_id: int) -> FakeAction:
        self._record("actions.get_by_id")
        sequence = self.action_sequences[action_id]
        return sequence.pop(0) if len(sequence) > 1 else sequence[0]

    # -- ssh keys --------------------------------------------------------------

    def _create_key(self, name: str, public_key: str, labels: dict[str, str] | None = None) -> SimpleNamespace:
        self._record("ssh_keys.create")
        key = SimpleNamespace(id=next(self._ids), name=name, public_key=public_key, labels=labels or {})
        self.ssh_keys_by_id[key.id] = key
        return key

    def _delete_key(self, ssh_key: SimpleNamespace) -> bool:
        self._record("ssh_keys.delete")
        if self.ssh_keys_by_id.pop(ssh_key.id, None) is None:
            raise APIException(code="not_found", message="ssh_key not found", details=None)
        return True

    # -- servers ---------------------------------------------------------------

    def _create_server(self, **kwargs: Any) -> SimpleNamespace:
        self._record("servers.create")
        server = self.add_server(kwargs["name"])
        server.labels = kwargs.get("labels") or {}
        server.location = kwargs.get("location")
        server.server_type = kwargs.get("server_type")
        server.image = kwargs.get("image")
        server.ssh_keys = kwargs.get("ssh_keys")
        return SimpleNamespace(server=server, action=self._action("create_server"), next_actions=[])

    def _delete_server(self, server: SimpleNamespace) -> FakeAction:
        self._record("servers.delete")
        if self.servers_by_id.pop(server.id, None) is None:
            raise APIException(code="not_found", message="server not found", details=None)
        for volume in self.volumes_by_id.values():
            if volume.server is not None and volume.server.id == server.id:
                volume.server = None
        return self._action("delete_server")

    def _get_server(self, server_id: int) -> SimpleNamespace:
        self._record("servers.get_by_id")
        return self.servers_by_id[server_id]

    # -- volumes ---------------------------------------------------------------

    def _get_volume(self, volume_id: int) -> SimpleNamespace:
        self._record("volumes.get_by_id")
        if volume_id not in self.volumes_by_id:
            raise APIException(code="not_found", message="volume not found", details=None)
        return self.volumes_by_id[volume_id]

    def _get_volume_by_name(self, name: str) -> SimpleNamespace | None:
        self._record("volumes.get_by_name")
        return next((v for v in self.volumes_by_id.values() if v.name == name), None)

    def _attach(self, volume: SimpleNamespace, server: SimpleNamespace, automount: bool | None = None) -> FakeAction:
        self._record("volumes.attach")
        if volume.server is not None:
            raise APIException(code="locked", message="volume already attached", details=None)
        volume.server = SimpleNamespace(id=server.id)
        return self._action("attach_volume")

    def _detach(self, volume: SimpleNamespace) -> FakeAction:
        self._record("volumes.detach")
        volume.server = None
        return self._action("detach_volume")

    def _create_volume(self, **kwargs: Any) -> SimpleNamespace:
        self._record("volumes.create")
        volume = self.add_volume(
            next(self._ids),
            kwargs["name"],
            size=kwargs["size"],
            location=kwargs["server"].location.name,
            server=kwargs["server"],
        )
        volume.labels = kwargs.get("labels") or {}
        volume.format = kwargs.get("format")
        return SimpleNamespace(
            volume=volume,
            action=self._action("create_volume"),
            next_actions=[self._action("attach_volume")],
        )


# =============================================================================
# Fake transfer executor and reachability probe
# =============================================================================


@dataclass
class FakeExecutor:
    """Records transfers; downloads write a gzip stream into the destination."""

    payload: bytes = field(default_factory=lambda: gzip.compress(b"volume contents"))
    error: BaseException | None = None
    downloads: list[tuple[str, str, Path]] = field(default_factory=list)
    uploads: list[tuple[str, str, Path]] = field(default_factory=list)

    def download(self, host: str, key: Any, command: str, destination: Path) -> int:
        self.downloads.append((host, command, destination))
        if self.error is not None:
            raise self.error
        destination.write_bytes(self.payload)
        return len(self.payload)

    def upload(self, host: str, key: Any, command: str, source: Path) -> int:
        self.uploads.append((host, command, source))
        if self.error is not None:
            raise self.error
        return source.stat().st_size


def open_port(address: tuple[str, int], timeout: float) -> contextlib.AbstractContextManager[None]:
    return contextlib.nullcontext()


def closed_port(address: tuple[str, int], timeout: float) -> contextlib.AbstractContextManager[None]:
    raise ConnectionRefusedError(f"{address} refused")


@dataclass
class Harness:
    orchestrator: Orchestrator
    hetzner: FakeHetzner
    executor: FakeExecutor
    prompts: list[str]
    output: io.StringIO


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(token="test-token", poll_interval=0.0, reachability_timeout=0.0)


@pytest.fixture
def hetzner() -> FakeHetzner:
    return FakeHetzner()


@pytest.fixture
def harness(hetzner: FakeHetzner, settings: Settings):
    def build(
        answers: Iterable[bool] = (),
        *,
        reachable: bool = True,
        executor: FakeExecutor | None = None,
    ) -> Harness:
        pending = list(answers)
        prompts: list[str] = []

        def confirm(question: str) -> bool:
            prompts.append(question)
            return pending.pop(0)

        output = io.StringIO()
        executor = executor or FakeExecutor()
        orchestrator = Orchestrator(
            hetzner,  # type: ignore[arg-type]
            settings,
            confirm=confirm,
            console=Console(file=output, width=200),
            executor=executor,  # type: ignore[arg-type]
            connect=open_port if reachable else closed_port,
            sleep=lambda _: None,
        )
        return Harness(orchestrator, hetzner, executor, prompts, output)

    return build
